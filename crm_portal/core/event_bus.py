from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from threading import RLock
from typing import Callable, Dict, List, Type

from flask import current_app, has_app_context

from crm_portal.observability import observe_domain_event_emitted


EventHandler = Callable[["DomainEvent"], None]


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True, kw_only=True)
class DomainEvent:
    event_id: str = field(default_factory=lambda: uuid.uuid4().hex)
    occurred_at: datetime = field(default_factory=_utc_now)
    tenant_id: str = ""

    def __post_init__(self) -> None:
        normalized_event_id = str(self.event_id or "").strip() or uuid.uuid4().hex
        normalized_occurred_at = self.occurred_at if isinstance(self.occurred_at, datetime) else _utc_now()
        if normalized_occurred_at.tzinfo is None:
            normalized_occurred_at = normalized_occurred_at.replace(tzinfo=timezone.utc)
        object.__setattr__(self, "event_id", normalized_event_id)
        object.__setattr__(self, "occurred_at", normalized_occurred_at.astimezone(timezone.utc))
        object.__setattr__(self, "tenant_id", str(self.tenant_id or "").strip() or "unknown")


@dataclass(frozen=True, kw_only=True)
class OfferSaved(DomainEvent):
    offer_id: str
    customer_id: str
    created: bool
    actor_id: str | None = None
    previous: Dict[str, object] | None = None
    current: Dict[str, object] = field(default_factory=dict)


@dataclass(frozen=True, kw_only=True)
class OfferDeleted(DomainEvent):
    offer_id: str
    customer_id: str


@dataclass(frozen=True, kw_only=True)
class ContactDeleted(DomainEvent):
    contact_id: str
    customer_id: str


@dataclass(frozen=True, kw_only=True)
class TaskCreated(DomainEvent):
    task_id: str
    assigned_to: str | None
    offer_id: str | None = None


class EventBus:
    def __init__(self) -> None:
        self._lock = RLock()
        self._handlers: Dict[Type[DomainEvent], List[EventHandler]] = {}
        self._logger = logging.getLogger("crm_portal")

    def subscribe(self, event_type: Type[DomainEvent], handler: EventHandler) -> None:
        with self._lock:
            handlers = self._handlers.setdefault(event_type, [])
            handlers.append(handler)

    def unsubscribe(self, event_type: Type[DomainEvent], handler: EventHandler) -> None:
        with self._lock:
            handlers = self._handlers.get(event_type, [])
            if handler in handlers:
                handlers.remove(handler)

    def publish(self, event: DomainEvent) -> None:
        observe_domain_event_emitted(type(event).__name__)
        with self._lock:
            handlers = list(self._handlers.get(type(event), []))
        for handler in handlers:
            try:
                handler(event)
            except Exception:  # noqa: BLE001
                self._logger.exception("event_handler_failed", extra={"event_type": type(event).__name__})

    def clear(self) -> None:
        with self._lock:
            self._handlers.clear()


EXTENSION_KEY = "crm_event_bus"

_DEFAULT_EVENT_BUS = EventBus()


def init_event_bus(app) -> EventBus:
    bus = EventBus()
    app.extensions[EXTENSION_KEY] = bus
    return bus


def get_event_bus() -> EventBus:
    if has_app_context():
        bus = current_app.extensions.get(EXTENSION_KEY)
        if bus is not None:
            return bus
    return _DEFAULT_EVENT_BUS


def reset_event_bus_for_tests() -> None:
    _DEFAULT_EVENT_BUS.clear()
