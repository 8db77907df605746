from __future__ import annotations

from pathlib import Path

import click
from alembic import command
from alembic.config import Config as AlembicConfig
from flask import Flask


APP_URL_ATTRIBUTE = "crm_portal_db_url"


def _project_root() -> Path:
    return Path(__file__).resolve().parents[1]


def to_sqlalchemy_url(raw_db_path: str) -> str:
    """Turn DB_PATH (a URL or a plain sqlite file path) into a SQLAlchemy URL."""
    raw = (raw_db_path or "").strip()
    if not raw:
        raise RuntimeError("DB_PATH is not set for migrations.")
    if raw.startswith("postgres://"):
        return "postgresql://" + raw[len("postgres://") :]
    if raw.startswith(("postgresql://", "postgresql+", "sqlite://", "sqlite+")):
        return raw
    return "sqlite:///" + Path(raw).expanduser().resolve().as_posix()


def build_alembic_config(app: Flask) -> AlembicConfig:
    root = _project_root()
    alembic_ini = root / "alembic.ini"
    if not alembic_ini.exists():
        raise RuntimeError("alembic.ini not found in the project root.")

    alembic_cfg = AlembicConfig(str(alembic_ini))
    alembic_cfg.set_main_option("script_location", str((root / "migrations").as_posix()))
    url = to_sqlalchemy_url(app.config["DB_PATH"])
    alembic_cfg.set_main_option("sqlalchemy.url", url)
    alembic_cfg.attributes[APP_URL_ATTRIBUTE] = url
    return alembic_cfg


def register_db_cli(app: Flask) -> None:
    @app.cli.group("db")
    def db_group() -> None:
        """Schema migrations (Alembic)."""

    @db_group.command("upgrade")
    @click.argument("revision", required=False, default="head")
    def db_upgrade(revision: str) -> None:
        command.upgrade(build_alembic_config(app), revision)
        click.echo(f"Upgraded to {revision}.")

    @db_group.command("downgrade")
    @click.argument("revision", required=False, default="-1")
    def db_downgrade(revision: str) -> None:
        command.downgrade(build_alembic_config(app), revision)
        click.echo(f"Downgraded to {revision}.")

    @db_group.command("current")
    def db_current() -> None:
        command.current(build_alembic_config(app), verbose=True)

    @db_group.command("init")
    def db_init() -> None:
        """Create the schema without Alembic (development databases)."""
        from crm_portal.db import init_db

        init_db()
        click.echo("Schema created.")

    @db_group.command("seed-users")
    def db_seed_users() -> None:
        from crm_portal.application.auth_service import AuthService
        from crm_portal.db import get_db

        seeded = AuthService().seed_users(get_db(), app.config.get("APP_USERS"))
        click.echo(f"Seeded {seeded} user(s).")
