"""Follow-up tasks created after an offer save, off the request path."""

from __future__ import annotations

import logging
import threading
from typing import Dict, List, Mapping

from flask import Flask

from crm_portal.application.task_service import TaskService
from crm_portal.core.event_bus import EventBus, OfferDeleted, OfferSaved, TaskCreated
from crm_portal.db import close_db
from crm_portal.domain.contracts import FollowupPlan
from crm_portal.errors import AppError
from crm_portal.infrastructure import get_store
from crm_portal.observability import bind_request_id, current_request_id, observe_followup_task
from crm_portal.ui_strings import EMPTY_RESULT, READY_STATUS


def plan_followups(
    previous: Mapping[str, object] | None,
    current: Mapping[str, object],
    *,
    actor_id: str | None,
) -> List[FollowupPlan]:
    offer_id = str(current.get("id") or "")
    customer_id = str(current.get("customer_id") or "")
    assignee = str(current.get("assigned_to") or "").strip() or None
    if not offer_id or not assignee:
        return []

    plans: List[FollowupPlan] = []

    def add(kind: str) -> None:
        plans.append(
            FollowupPlan(
                kind=kind,
                assigned_to=assignee,
                offer_id=offer_id,
                customer_id=customer_id,
                created_by=actor_id,
            )
        )

    if previous is None:
        if assignee != actor_id:
            add("offer_review")
    elif str(previous.get("assigned_to") or "") != assignee and assignee != actor_id:
        add("offer_reassigned")

    was_ready = previous is not None and previous.get("status") == READY_STATUS
    if current.get("status") == READY_STATUS and not was_ready:
        if (current.get("result") or EMPTY_RESULT) == EMPTY_RESULT:
            add("offer_result_pending")
    return plans


class FollowupDispatcher:
    def __init__(self, app: Flask, *, run_async: bool = True, logger: logging.Logger | None = None) -> None:
        self.app = app
        self.run_async = bool(run_async)
        self.logger = logger or logging.getLogger("crm_portal.tasks")
        self._threads: List[threading.Thread] = []

    def handle_offer_saved(self, event: OfferSaved) -> None:
        plans = plan_followups(event.previous, event.current, actor_id=event.actor_id)
        self.dispatch(event.tenant_id, plans)

    def dispatch(self, tenant_id: str, plans: List[FollowupPlan]) -> None:
        if not plans:
            return
        request_id = current_request_id()
        if not self.run_async:
            self._run(tenant_id, plans, request_id)
            return
        thread = threading.Thread(
            target=self._run,
            args=(tenant_id, plans, request_id),
            name="followup-tasks",
            daemon=True,
        )
        self._threads = [item for item in self._threads if item.is_alive()]
        self._threads.append(thread)
        thread.start()

    def join(self, timeout: float | None = None) -> None:
        for thread in list(self._threads):
            thread.join(timeout)

    def _run(self, tenant_id: str, plans: List[FollowupPlan], request_id: str) -> None:
        with self.app.app_context(), bind_request_id(request_id):
            try:
                service = TaskService(get_store(tenant_id))
                for plan in plans:
                    try:
                        service.create_followup(plan)
                        observe_followup_task("created")
                    except AppError:
                        observe_followup_task("failed")
                        self.logger.exception(
                            "followup_task_failed",
                            extra={"offer_id": plan.offer_id, "kind": plan.kind},
                        )
            finally:
                close_db()


def _notify_assignee(event: TaskCreated) -> None:
    TaskService(get_store(event.tenant_id)).notify_assignee(event)


def _close_offer_tasks(event: OfferDeleted) -> None:
    TaskService(get_store(event.tenant_id)).on_offer_deleted(event)


def register_event_handlers(bus: EventBus, dispatcher: FollowupDispatcher) -> Dict[type, object]:
    handlers = {
        OfferSaved: dispatcher.handle_offer_saved,
        TaskCreated: _notify_assignee,
        OfferDeleted: _close_offer_tasks,
    }
    for event_type, handler in handlers.items():
        bus.subscribe(event_type, handler)
    return handlers
