from __future__ import annotations

from typing import Iterable

from werkzeug.security import check_password_hash, generate_password_hash

from crm_portal.domain.contracts import AuthLoginInput, AuthUser
from crm_portal.infrastructure.repositories import TenantRepository
from crm_portal.infrastructure.store import new_id
from crm_portal.access import normalize_role


class AuthService:
    def login(self, db, auth_input: AuthLoginInput, raw_users: object) -> AuthUser | None:
        email = (auth_input.email or "").strip().lower()
        password = auth_input.password or ""
        if not email or not password:
            return None

        db_user = self._find_user(db, email)
        if db_user and db_user.get("password_hash") and check_password_hash(db_user["password_hash"], password):
            if db_user.get("status") != "active":
                return None
            return self._to_auth_user(db_user)

        for user in self.parse_users(raw_users):
            if user["email"] == email and user["password"] == password:
                return self._to_auth_user(self.ensure_user(db, user))
        return None

    def seed_users(self, db, raw_users: object) -> int:
        seeded = 0
        for user in self.parse_users(raw_users):
            self.ensure_user(db, user)
            seeded += 1
        return seeded

    def ensure_user(self, db, user: dict) -> dict:
        TenantRepository(db).ensure(user["tenant_id"])
        row = db.execute(
            "SELECT id, email, full_name, role, status, tenant_id, password_hash FROM users WHERE email = ? AND tenant_id = ?",
            (user["email"], user["tenant_id"]),
        ).fetchone()
        if row:
            return dict(row)
        user_id = new_id()
        db.execute(
            """
            INSERT INTO users (id, email, full_name, password_hash, role, status, tenant_id)
            VALUES (?, ?, ?, ?, ?, 'active', ?)
            """,
            (
                user_id,
                user["email"],
                user["display_name"],
                generate_password_hash(user["password"]),
                user["role"],
                user["tenant_id"],
            ),
        )
        return {
            "id": user_id,
            "email": user["email"],
            "full_name": user["display_name"],
            "role": user["role"],
            "status": "active",
            "tenant_id": user["tenant_id"],
        }

    @staticmethod
    def _find_user(db, email: str) -> dict | None:
        row = db.execute(
            """
            SELECT id, email, full_name, password_hash, role, status, tenant_id
            FROM users
            WHERE email = ?
            ORDER BY created_at
            LIMIT 1
            """,
            (email,),
        ).fetchone()
        return dict(row) if row else None

    @staticmethod
    def _to_auth_user(row: dict) -> AuthUser:
        return AuthUser(
            id=str(row["id"]) if row.get("id") else None,
            email=row["email"],
            display_name=row.get("full_name") or row["email"].split("@")[0],
            tenant_id=row["tenant_id"],
            role=normalize_role(row.get("role"), default="user"),
        )

    @staticmethod
    def parse_users(raw_users: object) -> Iterable[dict]:
        if not raw_users:
            return []
        if isinstance(raw_users, str):
            entries = []
            for chunk in raw_users.replace("\n", ",").replace(";", ",").split(","):
                entry = chunk.strip()
                if entry:
                    entries.append(entry)
        elif isinstance(raw_users, (list, tuple, set)):
            entries = [str(item).strip() for item in raw_users if str(item).strip()]
        else:
            return []

        users = []
        for entry in entries:
            parts = [part.strip() for part in entry.split(":")]
            if len(parts) < 3:
                continue
            email, password, tenant_id = parts[0].lower(), parts[1], parts[2]
            display_name = parts[3] if len(parts) > 3 and parts[3] else email.split("@")[0]
            role = normalize_role(parts[4] if len(parts) > 4 else "user", default="user")
            users.append(
                {
                    "email": email,
                    "password": password,
                    "tenant_id": tenant_id,
                    "display_name": display_name,
                    "role": role,
                }
            )
        return users
