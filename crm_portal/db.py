import sqlite3
from typing import Iterable

try:
    import psycopg2
    import psycopg2.extras
except ImportError:  # pragma: no cover - optional dependency for postgres
    psycopg2 = None

from flask import current_app, g


# Tables in dependency order; drop order is the reverse.
SCHEMA_TABLES = (
    "tenants",
    "users",
    "customers",
    "contacts",
    "service_categories",
    "service_subcategories",
    "units",
    "offers",
    "offer_details",
    "offer_history",
    "tasks",
    "notifications",
)

UPDATED_AT_TABLES = (
    "users",
    "customers",
    "contacts",
    "units",
    "offers",
    "offer_details",
    "tasks",
)


class Database:
    def __init__(self, backend: str, connection):
        self.backend = backend
        self._conn = connection

    def execute(self, sql: str, params: Iterable | None = None):
        if self.backend == "postgres":
            cursor = self._conn.cursor(cursor_factory=psycopg2.extras.RealDictCursor)
            if params:
                sql = _convert_qmark_to_pg(sql)
                cursor.execute(sql, list(params))
            else:
                cursor.execute(sql)
            return cursor
        return self._conn.execute(sql, params or ())

    def close(self):
        self._conn.close()


def _convert_qmark_to_pg(sql: str) -> str:
    return sql.replace("?", "%s")


def _connect_database(db_path: str) -> Database:
    if db_path.lower().startswith("postgres"):
        if psycopg2 is None:
            raise RuntimeError("psycopg2 is not installed.")
        conn = psycopg2.connect(db_path)
        conn.autocommit = True
        return Database("postgres", conn)

    # Autocommit: each store call is its own unit of work, as with a hosted backend.
    conn = sqlite3.connect(db_path, isolation_level=None, check_same_thread=False)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys = ON")
    return Database("sqlite", conn)


def get_db():
    if "db" not in g:
        db_path = current_app.config["DB_PATH"]
        g.db = _connect_database(db_path)
    return g.db


def close_db(_error=None):
    db = g.pop("db", None)
    if db is not None:
        db.close()


def init_db():
    db = get_db()
    if db.backend == "postgres":
        _init_db_postgres(db)
        return

    _init_db_sqlite(db)


def _init_db_sqlite(db: Database):
    _create_tables(db, timestamp_type="TEXT", bool_type="INTEGER", numeric_type="REAL")
    _create_indexes(db)


def _init_db_postgres(db: Database) -> None:
    _create_tables(db, timestamp_type="TIMESTAMP", bool_type="BOOLEAN", numeric_type="NUMERIC(12, 2)")
    _create_indexes(db)
    _create_postgres_updated_at_triggers(db)


def _create_tables(db: Database, *, timestamp_type: str, bool_type: str, numeric_type: str) -> None:
    ts = timestamp_type
    false_value = "0" if bool_type == "INTEGER" else "FALSE"

    db.execute(
        f"""
        CREATE TABLE IF NOT EXISTS tenants (
            id TEXT PRIMARY KEY,
            name TEXT NOT NULL,
            created_at {ts} NOT NULL DEFAULT CURRENT_TIMESTAMP
        )
        """
    )

    db.execute(
        f"""
        CREATE TABLE IF NOT EXISTS users (
            id TEXT PRIMARY KEY,
            email TEXT NOT NULL,
            full_name TEXT NOT NULL,
            password_hash TEXT,
            role TEXT NOT NULL DEFAULT 'user' CHECK (role IN ('user','admin')),
            status TEXT NOT NULL DEFAULT 'active' CHECK (status IN ('active','inactive')),
            tenant_id TEXT NOT NULL,
            created_at {ts} NOT NULL DEFAULT CURRENT_TIMESTAMP,
            updated_at {ts},
            UNIQUE (email, tenant_id)
        )
        """
    )

    db.execute(
        f"""
        CREATE TABLE IF NOT EXISTS customers (
            id TEXT PRIMARY KEY,
            company_name TEXT NOT NULL,
            afm TEXT,
            doy TEXT,
            customer_type TEXT,
            address TEXT,
            postal_code TEXT,
            town TEXT,
            telephone TEXT,
            email TEXT,
            webpage TEXT,
            fax_number TEXT,
            notes TEXT,
            status TEXT NOT NULL DEFAULT 'active' CHECK (status IN ('active','inactive')),
            primary_contact_id TEXT,
            created_by TEXT,
            tenant_id TEXT NOT NULL,
            created_at {ts} NOT NULL DEFAULT CURRENT_TIMESTAMP,
            updated_at {ts},
            deleted_at {ts}
        )
        """
    )

    db.execute(
        f"""
        CREATE TABLE IF NOT EXISTS contacts (
            id TEXT PRIMARY KEY,
            customer_id TEXT NOT NULL REFERENCES customers(id),
            full_name TEXT NOT NULL,
            position TEXT,
            telephone TEXT,
            mobile TEXT,
            email TEXT,
            internal_telephone TEXT,
            notes TEXT,
            status TEXT NOT NULL DEFAULT 'active' CHECK (status IN ('active','inactive')),
            tenant_id TEXT NOT NULL,
            created_at {ts} NOT NULL DEFAULT CURRENT_TIMESTAMP,
            updated_at {ts},
            deleted_at {ts}
        )
        """
    )

    db.execute(
        f"""
        CREATE TABLE IF NOT EXISTS service_categories (
            id TEXT PRIMARY KEY,
            name TEXT NOT NULL,
            tenant_id TEXT NOT NULL,
            created_at {ts} NOT NULL DEFAULT CURRENT_TIMESTAMP
        )
        """
    )

    db.execute(
        f"""
        CREATE TABLE IF NOT EXISTS service_subcategories (
            id TEXT PRIMARY KEY,
            category_id TEXT NOT NULL REFERENCES service_categories(id),
            name TEXT NOT NULL,
            tenant_id TEXT NOT NULL,
            created_at {ts} NOT NULL DEFAULT CURRENT_TIMESTAMP
        )
        """
    )

    db.execute(
        f"""
        CREATE TABLE IF NOT EXISTS units (
            id TEXT PRIMARY KEY,
            name TEXT NOT NULL,
            tenant_id TEXT NOT NULL,
            created_at {ts} NOT NULL DEFAULT CURRENT_TIMESTAMP,
            updated_at {ts}
        )
        """
    )

    db.execute(
        f"""
        CREATE TABLE IF NOT EXISTS offers (
            id TEXT PRIMARY KEY,
            customer_id TEXT NOT NULL REFERENCES customers(id),
            contact_id TEXT,
            source TEXT NOT NULL DEFAULT 'Email' CHECK (source IN ('Email','Phone','Site','Physical')),
            amount TEXT,
            requirements TEXT,
            customer_comments TEXT,
            our_comments TEXT,
            status TEXT NOT NULL DEFAULT 'wait_for_our_answer' CHECK (
                status IN ('wait_for_our_answer','wait_for_customer_answer','ready')
            ),
            result TEXT NOT NULL DEFAULT 'none' CHECK (
                result IN ('none','success','failed','cancel','waiting')
            ),
            assigned_to TEXT,
            hma {bool_type} NOT NULL DEFAULT {false_value},
            certificate TEXT,
            address TEXT,
            postal_code TEXT,
            town TEXT,
            created_by TEXT,
            updated_by TEXT,
            tenant_id TEXT NOT NULL,
            created_at {ts} NOT NULL DEFAULT CURRENT_TIMESTAMP,
            updated_at {ts},
            deleted_at {ts}
        )
        """
    )

    db.execute(
        f"""
        CREATE TABLE IF NOT EXISTS offer_details (
            id TEXT PRIMARY KEY,
            offer_id TEXT NOT NULL REFERENCES offers(id) ON DELETE CASCADE,
            category_id TEXT NOT NULL REFERENCES service_categories(id),
            subcategory_id TEXT REFERENCES service_subcategories(id),
            unit_id TEXT REFERENCES units(id),
            quantity {numeric_type} NOT NULL DEFAULT 1,
            price {numeric_type} NOT NULL DEFAULT 0,
            notes TEXT,
            created_by TEXT,
            tenant_id TEXT NOT NULL,
            created_at {ts} NOT NULL DEFAULT CURRENT_TIMESTAMP,
            updated_at {ts}
        )
        """
    )

    db.execute(
        f"""
        CREATE TABLE IF NOT EXISTS offer_history (
            id TEXT PRIMARY KEY,
            offer_id TEXT NOT NULL REFERENCES offers(id) ON DELETE CASCADE,
            previous_status TEXT,
            new_status TEXT,
            previous_assigned_to TEXT,
            new_assigned_to TEXT,
            previous_result TEXT,
            new_result TEXT,
            previous_amount TEXT,
            new_amount TEXT,
            previous_requirements TEXT,
            new_requirements TEXT,
            notes TEXT,
            changed_by TEXT,
            tenant_id TEXT NOT NULL,
            created_at {ts} NOT NULL DEFAULT CURRENT_TIMESTAMP
        )
        """
    )

    db.execute(
        f"""
        CREATE TABLE IF NOT EXISTS tasks (
            id TEXT PRIMARY KEY,
            title TEXT NOT NULL,
            description TEXT,
            status TEXT NOT NULL DEFAULT 'pending' CHECK (status IN ('pending','completed')),
            assigned_to TEXT,
            created_by TEXT,
            offer_id TEXT,
            customer_id TEXT,
            tenant_id TEXT NOT NULL,
            created_at {ts} NOT NULL DEFAULT CURRENT_TIMESTAMP,
            updated_at {ts},
            completed_at {ts}
        )
        """
    )

    db.execute(
        f"""
        CREATE TABLE IF NOT EXISTS notifications (
            id TEXT PRIMARY KEY,
            user_id TEXT NOT NULL,
            sender_id TEXT,
            message TEXT NOT NULL,
            type TEXT NOT NULL,
            is_read {bool_type} NOT NULL DEFAULT {false_value},
            related_task_id TEXT,
            tenant_id TEXT NOT NULL,
            created_at {ts} NOT NULL DEFAULT CURRENT_TIMESTAMP
        )
        """
    )


def _create_indexes(db: Database) -> None:
    statements = (
        "CREATE INDEX IF NOT EXISTS idx_customers_tenant ON customers (tenant_id, company_name)",
        "CREATE INDEX IF NOT EXISTS idx_contacts_customer ON contacts (customer_id, tenant_id)",
        "CREATE INDEX IF NOT EXISTS idx_offers_customer ON offers (customer_id, tenant_id, created_at)",
        "CREATE INDEX IF NOT EXISTS idx_offer_details_offer ON offer_details (offer_id, tenant_id)",
        "CREATE INDEX IF NOT EXISTS idx_offer_history_offer ON offer_history (offer_id, tenant_id)",
        "CREATE INDEX IF NOT EXISTS idx_subcategories_category ON service_subcategories (category_id)",
        "CREATE INDEX IF NOT EXISTS idx_tasks_assigned ON tasks (assigned_to, tenant_id, status)",
        "CREATE INDEX IF NOT EXISTS idx_notifications_user ON notifications (user_id, tenant_id, is_read)",
    )
    for statement in statements:
        db.execute(statement)


def _create_postgres_updated_at_triggers(db: Database) -> None:
    db.execute(
        """
        CREATE OR REPLACE FUNCTION set_updated_at()
        RETURNS TRIGGER AS $$
        BEGIN
            NEW.updated_at = CURRENT_TIMESTAMP;
            RETURN NEW;
        END;
        $$ LANGUAGE plpgsql;
        """
    )

    for table in UPDATED_AT_TABLES:
        db.execute(
            f"""
            DROP TRIGGER IF EXISTS trg_{table}_updated_at ON {table};
            CREATE TRIGGER trg_{table}_updated_at
            BEFORE UPDATE ON {table}
            FOR EACH ROW
            EXECUTE FUNCTION set_updated_at();
            """
        )


if psycopg2 is not None:
    DRIVER_ERRORS: tuple = (sqlite3.Error, psycopg2.Error)
else:  # pragma: no cover - depends on optional driver
    DRIVER_ERRORS = (sqlite3.Error,)
