from __future__ import annotations

from crm_portal.infrastructure.repositories.base import BaseRepository
from crm_portal.infrastructure.store import utc_now_iso


class TaskRepository(BaseRepository):
    table_name = "tasks"

    def list_for_user(self, user_id: str, *, include_completed: bool = False) -> list[dict]:
        query = self.query().eq("assigned_to", user_id)
        if not include_completed:
            query = query.eq("status", "pending")
        return query.order("created_at", ascending=False).execute()

    def list_for_offer(self, offer_id: str) -> list[dict]:
        return self.query().eq("offer_id", offer_id).order("created_at").execute()

    def complete(self, task_id: str) -> dict | None:
        now = utc_now_iso()
        return self.update_fields(task_id, {"status": "completed", "completed_at": now})


class NotificationRepository(BaseRepository):
    table_name = "notifications"

    def list_for_user(self, user_id: str, *, unread_only: bool = False) -> list[dict]:
        query = self.query().eq("user_id", user_id)
        if unread_only:
            query = query.eq("is_read", False)
        return query.order("created_at", ascending=False).execute()

    def mark_read(self, notification_id: str) -> dict | None:
        return self.update_fields(notification_id, {"is_read": True})
