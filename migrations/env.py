from __future__ import annotations

import os
from logging.config import fileConfig

from alembic import context
from sqlalchemy import create_engine, pool

from crm_portal.db_migrations import APP_URL_ATTRIBUTE, to_sqlalchemy_url


config = context.config

# Running inside `flask db ...` already configured logging.
if config.config_file_name is not None and APP_URL_ATTRIBUTE not in config.attributes:
    fileConfig(config.config_file_name)


def _database_url() -> str:
    app_url = config.attributes.get(APP_URL_ATTRIBUTE)
    if app_url:
        return app_url
    return to_sqlalchemy_url(os.environ.get("DATABASE_URL") or config.get_main_option("sqlalchemy.url") or "")


def run_migrations_offline() -> None:
    context.configure(url=_database_url(), target_metadata=None, literal_binds=True)
    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    engine = create_engine(_database_url(), poolclass=pool.NullPool)
    with engine.connect() as connection:
        context.configure(connection=connection, target_metadata=None)
        with context.begin_transaction():
            context.run_migrations()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
