"""Table-scoped query builder over the application database.

Repositories talk to the store the way a hosted backend client is used:
``store.table("offers").select().eq("customer_id", cid).order("created_at", ascending=False).execute()``.
Every successful write is fanned out to the realtime channel as a ``RowChange``.
"""

from __future__ import annotations

import logging
import re
import uuid
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Mapping, Sequence

from crm_portal.db import DRIVER_ERRORS, SCHEMA_TABLES, Database
from crm_portal.errors import StoreError
from crm_portal.realtime import DELETE, INSERT, UPDATE, RealtimeChannel, RowChange


_IDENTIFIER = re.compile(r"^[a-z_][a-z0-9_]*$")


class TenantScopeRequiredError(ValueError):
    """Raised when the store is opened without a tenant scope."""


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def new_id() -> str:
    return uuid.uuid4().hex


def _identifier(value: str) -> str:
    name = str(value or "").strip()
    if not _IDENTIFIER.match(name):
        raise StoreError(code="invalid_identifier", details=f"invalid identifier: {value!r}")
    return name


def _normalize_value(value: Any) -> Any:
    if isinstance(value, datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value.isoformat()
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, Decimal):
        return float(value)
    return value


def _row_to_dict(row: Any) -> Dict[str, Any]:
    return {key: _normalize_value(value) for key, value in dict(row).items()}


class Store:
    def __init__(self, db: Database, *, tenant_id: str | None, channel: RealtimeChannel | None = None) -> None:
        scope = str(tenant_id or "").strip()
        if not scope:
            raise TenantScopeRequiredError("tenant_id is required for store access")
        self.db = db
        self.tenant_id = scope
        self.channel = channel
        self._logger = logging.getLogger("crm_portal.store")

    def table(self, name: str) -> "TableQuery":
        table = _identifier(name)
        if table not in SCHEMA_TABLES:
            raise StoreError(code="unknown_table", details=f"unknown table: {name}")
        return TableQuery(self, table)

    def run(self, sql: str, params: Sequence[Any] = ()):
        try:
            return self.db.execute(sql, tuple(params))
        except DRIVER_ERRORS as exc:
            self._logger.warning("store_query_failed", extra={"error": str(exc)})
            raise StoreError(details=str(exc)) from exc

    def emit(self, event_type: str, table: str, *, new: Mapping[str, Any] | None = None, old: Mapping[str, Any] | None = None) -> None:
        if self.channel is None:
            return
        self.channel.publish(
            RowChange(
                event_type=event_type,
                table=table,
                tenant_id=self.tenant_id,
                new=dict(new or {}),
                old=dict(old or {}),
            )
        )


class TableQuery:
    def __init__(self, store: Store, table: str) -> None:
        self._store = store
        self._table = table
        self._columns = "*"
        self._clauses: List[str] = []
        self._params: List[Any] = []
        self._order: List[str] = []
        self._limit: int | None = None

    # -- filters -------------------------------------------------------

    def select(self, columns: str = "*") -> "TableQuery":
        raw = str(columns or "*").strip()
        if raw == "*":
            self._columns = "*"
        else:
            names = [_identifier(part) for part in raw.split(",") if part.strip()]
            self._columns = ", ".join(names) if names else "*"
        return self

    def eq(self, column: str, value: Any) -> "TableQuery":
        self._clauses.append(f"{_identifier(column)} = ?")
        self._params.append(value)
        return self

    def neq(self, column: str, value: Any) -> "TableQuery":
        self._clauses.append(f"{_identifier(column)} <> ?")
        self._params.append(value)
        return self

    def is_null(self, column: str) -> "TableQuery":
        self._clauses.append(f"{_identifier(column)} IS NULL")
        return self

    def not_null(self, column: str) -> "TableQuery":
        self._clauses.append(f"{_identifier(column)} IS NOT NULL")
        return self

    def in_(self, column: str, values: Iterable[Any]) -> "TableQuery":
        items = list(values)
        if not items:
            self._clauses.append("1 = 0")
            return self
        placeholders = ", ".join("?" for _ in items)
        self._clauses.append(f"{_identifier(column)} IN ({placeholders})")
        self._params.extend(items)
        return self

    def match_any(self, columns: Sequence[str], pattern: str) -> "TableQuery":
        """Case-insensitive LIKE across several columns joined with OR."""
        operator = "ILIKE" if self._store.db.backend == "postgres" else "LIKE"
        parts = [f"{_identifier(column)} {operator} ?" for column in columns]
        if not parts:
            return self
        self._clauses.append("(" + " OR ".join(parts) + ")")
        self._params.extend([pattern] * len(parts))
        return self

    def order(self, column: str, *, ascending: bool = True) -> "TableQuery":
        self._order.append(f"{_identifier(column)} {'ASC' if ascending else 'DESC'}")
        return self

    def limit(self, count: int) -> "TableQuery":
        self._limit = max(0, int(count))
        return self

    # -- reads ---------------------------------------------------------

    def _where(self) -> tuple[str, List[Any]]:
        clauses = ["tenant_id = ?", *self._clauses]
        params = [self._store.tenant_id, *self._params]
        return " AND ".join(clauses), params

    def execute(self) -> List[Dict[str, Any]]:
        where, params = self._where()
        sql = f"SELECT {self._columns} FROM {self._table} WHERE {where}"
        if self._order:
            sql += " ORDER BY " + ", ".join(self._order)
        if self._limit is not None:
            sql += f" LIMIT {self._limit}"
        rows = self._store.run(sql, params).fetchall()
        return [_row_to_dict(row) for row in rows]

    def single(self) -> Dict[str, Any] | None:
        self._limit = 1
        rows = self.execute()
        return rows[0] if rows else None

    def count(self) -> int:
        where, params = self._where()
        row = self._store.run(f"SELECT COUNT(*) AS total FROM {self._table} WHERE {where}", params).fetchone()
        if not row:
            return 0
        return int(row["total"] if not isinstance(row, tuple) else row[0])

    # -- writes --------------------------------------------------------

    def _fetch_by_ids(self, ids: Sequence[str]) -> List[Dict[str, Any]]:
        return TableQuery(self._store, self._table).in_("id", ids).execute()

    def insert(self, values: Mapping[str, Any]) -> Dict[str, Any]:
        record = {_identifier(key): value for key, value in dict(values).items()}
        record["id"] = str(record.get("id") or new_id())
        record["tenant_id"] = self._store.tenant_id
        record.setdefault("created_at", utc_now_iso())

        columns = list(record.keys())
        placeholders = ", ".join("?" for _ in columns)
        self._store.run(
            f"INSERT INTO {self._table} ({', '.join(columns)}) VALUES ({placeholders})",
            [record[column] for column in columns],
        )
        inserted = self._fetch_by_ids([record["id"]])
        row = inserted[0] if inserted else _row_to_dict(record)
        self._store.emit(INSERT, self._table, new=row)
        return row

    def update(self, values: Mapping[str, Any]) -> List[Dict[str, Any]]:
        changes = {_identifier(key): value for key, value in dict(values).items() if key not in {"id", "tenant_id"}}
        previous = self.execute()
        if not previous or not changes:
            return previous

        ids = [row["id"] for row in previous]
        assignments = ", ".join(f"{column} = ?" for column in changes)
        placeholders = ", ".join("?" for _ in ids)
        self._store.run(
            f"UPDATE {self._table} SET {assignments} WHERE tenant_id = ? AND id IN ({placeholders})",
            [*changes.values(), self._store.tenant_id, *ids],
        )
        current = {row["id"]: row for row in self._fetch_by_ids(ids)}
        updated = []
        for old_row in previous:
            new_row = current.get(old_row["id"])
            if new_row is None:
                continue
            updated.append(new_row)
            self._store.emit(UPDATE, self._table, new=new_row, old=old_row)
        return updated

    def delete(self) -> List[Dict[str, Any]]:
        previous = self.execute()
        if not previous:
            return []
        ids = [row["id"] for row in previous]
        placeholders = ", ".join("?" for _ in ids)
        self._store.run(
            f"DELETE FROM {self._table} WHERE tenant_id = ? AND id IN ({placeholders})",
            [self._store.tenant_id, *ids],
        )
        for old_row in previous:
            self._store.emit(DELETE, self._table, old=old_row)
        return previous
