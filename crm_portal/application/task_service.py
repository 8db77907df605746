from __future__ import annotations

import logging

from crm_portal.core.event_bus import EventBus, OfferDeleted, TaskCreated, get_event_bus
from crm_portal.domain.contracts import FollowupPlan
from crm_portal.errors import NotFoundError, ValidationError
from crm_portal.infrastructure.repositories import CustomerRepository, NotificationRepository, TaskRepository
from crm_portal.infrastructure.store import Store
from crm_portal.ui_strings import followup_text


class TaskService:
    def __init__(self, store: Store, *, event_bus: EventBus | None = None) -> None:
        self.store = store
        self.tasks = TaskRepository(store)
        self.notifications = NotificationRepository(store)
        self.customers = CustomerRepository(store)
        self.event_bus = event_bus or get_event_bus()
        self.logger = logging.getLogger("crm_portal.tasks")

    def create_task(
        self,
        *,
        title: str,
        description: str | None = None,
        assigned_to: str | None = None,
        created_by: str | None = None,
        offer_id: str | None = None,
        customer_id: str | None = None,
    ) -> dict:
        title = str(title or "").strip()
        if not title:
            raise ValidationError(code="name_required", payload={"field": "title"})
        row = self.tasks.insert(
            {
                "title": title,
                "description": description,
                "status": "pending",
                "assigned_to": assigned_to,
                "created_by": created_by,
                "offer_id": offer_id,
                "customer_id": customer_id,
            }
        )
        self.event_bus.publish(
            TaskCreated(
                tenant_id=self.store.tenant_id,
                task_id=str(row["id"]),
                assigned_to=assigned_to,
                offer_id=offer_id,
            )
        )
        return row

    def create_followup(self, plan: FollowupPlan) -> dict:
        customer = self.customers.get_by_id(plan.customer_id) or {}
        context = {"customer": customer.get("company_name") or "", **plan.context}
        text = followup_text(plan.kind, **context)
        return self.create_task(
            title=text["title"],
            description=text["description"],
            assigned_to=plan.assigned_to,
            created_by=plan.created_by,
            offer_id=plan.offer_id,
            customer_id=plan.customer_id,
        )

    def list_for_user(self, user_id: str, *, include_completed: bool = False) -> list[dict]:
        return self.tasks.list_for_user(user_id, include_completed=include_completed)

    def complete_task(self, task_id: str, *, user_id: str | None = None) -> dict:
        task = self.tasks.get_by_id(task_id)
        if task is None:
            raise NotFoundError(code="task_not_found", payload={"task_id": task_id})
        if task["status"] == "completed":
            return task
        return self.tasks.complete(task_id) or task

    def complete_for_offer(self, offer_id: str) -> int:
        completed = 0
        for task in self.tasks.list_for_offer(offer_id):
            if task["status"] != "pending":
                continue
            self.tasks.complete(task["id"])
            completed += 1
        return completed

    def notify_assignee(self, event: TaskCreated) -> dict | None:
        if not event.assigned_to:
            return None
        task = self.tasks.get_by_id(event.task_id) or {}
        return self.notifications.insert(
            {
                "user_id": event.assigned_to,
                "sender_id": task.get("created_by"),
                "message": task.get("title") or "",
                "type": "task_assigned",
                "is_read": False,
                "related_task_id": event.task_id,
            }
        )

    def list_notifications(self, user_id: str, *, unread_only: bool = False) -> list[dict]:
        return self.notifications.list_for_user(user_id, unread_only=unread_only)

    def mark_notification_read(self, notification_id: str, *, user_id: str) -> dict:
        notification = self.notifications.get_by_id(notification_id)
        if notification is None or notification.get("user_id") != user_id:
            raise NotFoundError(payload={"notification_id": notification_id})
        return self.notifications.mark_read(notification_id) or notification

    def on_offer_deleted(self, event: OfferDeleted) -> None:
        completed = self.complete_for_offer(event.offer_id)
        if completed:
            self.logger.info("offer_tasks_closed", extra={"offer_id": event.offer_id, "completed": completed})
