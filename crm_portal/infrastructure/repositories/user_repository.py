from __future__ import annotations

from crm_portal.infrastructure.repositories.base import BaseRepository


class UserRepository(BaseRepository):
    table_name = "users"

    def find_by_email(self, email: str) -> dict | None:
        normalized = str(email or "").strip().lower()
        if not normalized:
            return None
        return self.query().eq("email", normalized).single()

    def list_active(self) -> list[dict]:
        return self.query().select("id, email, full_name, role").eq("status", "active").order("full_name").execute()


class TenantRepository:
    def __init__(self, db) -> None:
        self.db = db

    def ensure(self, tenant_id: str, name: str | None = None) -> None:
        row = self.db.execute("SELECT 1 FROM tenants WHERE id = ?", (tenant_id,)).fetchone()
        if row:
            return
        self.db.execute(
            "INSERT INTO tenants (id, name) VALUES (?, ?)",
            (tenant_id, name or tenant_id),
        )

    def exists(self, tenant_id: str) -> bool:
        row = self.db.execute("SELECT 1 FROM tenants WHERE id = ? LIMIT 1", (tenant_id,)).fetchone()
        return bool(row)
