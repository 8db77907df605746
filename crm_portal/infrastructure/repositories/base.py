from __future__ import annotations

from typing import Any, Dict, Iterable, Mapping

from crm_portal.db import UPDATED_AT_TABLES
from crm_portal.infrastructure.store import Store, TableQuery, utc_now_iso


class BaseRepository:
    table_name = ""

    def __init__(self, store: Store) -> None:
        self.store = store
        self.tenant_id = store.tenant_id

    def query(self) -> TableQuery:
        return self.store.table(self.table_name)

    def get_by_id(self, record_id: str) -> dict | None:
        if not record_id:
            return None
        return self.query().eq("id", record_id).single()

    def insert(self, values: Mapping[str, Any]) -> dict:
        return self.query().insert(values)

    def update_fields(self, record_id: str, fields: Mapping[str, Any]) -> dict | None:
        changes: Dict[str, Any] = dict(fields)
        if not changes:
            return self.get_by_id(record_id)
        if self.table_name in UPDATED_AT_TABLES:
            changes.setdefault("updated_at", utc_now_iso())
        rows = self.query().eq("id", record_id).update(changes)
        return rows[0] if rows else None

    def delete_by_id(self, record_id: str) -> bool:
        return bool(self.query().eq("id", record_id).delete())

    @staticmethod
    def index_by_id(rows: Iterable[dict]) -> Dict[str, dict]:
        return {str(row["id"]): row for row in rows}
