from __future__ import annotations

import logging
import queue
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from threading import RLock
from typing import Any, Callable, Dict, List, Mapping

from crm_portal.observability import observe_realtime_delivered, observe_realtime_handler_failed


INSERT = "INSERT"
UPDATE = "UPDATE"
DELETE = "DELETE"
EVENT_TYPES = (INSERT, UPDATE, DELETE)

ChangeHandler = Callable[["RowChange"], None]


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


@dataclass(frozen=True)
class RowChange:
    """Row-level change notification, shaped like a hosted backend's realtime payload."""

    event_type: str
    table: str
    tenant_id: str
    new: Dict[str, Any] = field(default_factory=dict)
    old: Dict[str, Any] = field(default_factory=dict)
    commit_timestamp: str = field(default_factory=_utc_now_iso)

    def __post_init__(self) -> None:
        event_type = str(self.event_type or "").strip().upper()
        if event_type not in EVENT_TYPES:
            raise ValueError(f"unsupported event type: {self.event_type!r}")
        object.__setattr__(self, "event_type", event_type)
        object.__setattr__(self, "new", dict(self.new or {}))
        object.__setattr__(self, "old", dict(self.old or {}))

    @property
    def record_id(self) -> str | None:
        value = self.new.get("id") if self.new else None
        if value is None and self.old:
            value = self.old.get("id")
        return str(value) if value is not None else None

    @property
    def record(self) -> Dict[str, Any]:
        return self.old if self.event_type == DELETE else self.new

    def to_payload(self) -> Dict[str, Any]:
        return {
            "eventType": self.event_type,
            "table": self.table,
            "new": self.new,
            "old": self.old,
            "commit_timestamp": self.commit_timestamp,
        }


class Subscription:
    def __init__(
        self,
        channel: "RealtimeChannel",
        *,
        table: str,
        handler: ChangeHandler,
        filters: Mapping[str, Any] | None,
        tenant_id: str | None,
        events: tuple[str, ...],
    ) -> None:
        self.id = uuid.uuid4().hex
        self.table = table
        self.handler = handler
        self.filters = {key: value for key, value in dict(filters or {}).items()}
        self.tenant_id = tenant_id
        self.events = events
        self._channel = channel
        self.active = True

    def matches(self, change: RowChange) -> bool:
        if not self.active or change.table != self.table:
            return False
        if change.event_type not in self.events:
            return False
        if self.tenant_id and change.tenant_id != self.tenant_id:
            return False
        row = change.record
        for column, expected in self.filters.items():
            # Delete payloads may carry only the primary key; let the consumer decide.
            if column not in row:
                if change.event_type == DELETE:
                    continue
                return False
            if str(row.get(column)) != str(expected):
                return False
        return True

    def unsubscribe(self) -> None:
        self._channel.remove(self)


class RealtimeChannel:
    def __init__(self) -> None:
        self._lock = RLock()
        self._subscriptions: List[Subscription] = []
        self._logger = logging.getLogger("crm_portal.realtime")

    def subscribe(
        self,
        table: str,
        handler: ChangeHandler,
        *,
        filters: Mapping[str, Any] | None = None,
        tenant_id: str | None = None,
        events: tuple[str, ...] = EVENT_TYPES,
    ) -> Subscription:
        subscription = Subscription(
            self,
            table=str(table).strip(),
            handler=handler,
            filters=filters,
            tenant_id=str(tenant_id or "").strip() or None,
            events=tuple(str(event).upper() for event in events),
        )
        with self._lock:
            self._subscriptions.append(subscription)
        return subscription

    def remove(self, subscription: Subscription) -> None:
        with self._lock:
            subscription.active = False
            if subscription in self._subscriptions:
                self._subscriptions.remove(subscription)

    def publish(self, change: RowChange) -> int:
        with self._lock:
            targets = [sub for sub in self._subscriptions if sub.matches(change)]
        delivered = 0
        for subscription in targets:
            try:
                subscription.handler(change)
                delivered += 1
                observe_realtime_delivered(change.table, change.event_type)
            except Exception:  # noqa: BLE001
                observe_realtime_handler_failed(1)
                self._logger.exception(
                    "realtime_handler_failed",
                    extra={
                        "table": change.table,
                        "event_type": change.event_type,
                        "subscription_id": subscription.id,
                    },
                )
        return delivered

    def subscriber_count(self, table: str | None = None) -> int:
        with self._lock:
            if table is None:
                return len(self._subscriptions)
            return sum(1 for sub in self._subscriptions if sub.table == table)

    def clear(self) -> None:
        with self._lock:
            for subscription in self._subscriptions:
                subscription.active = False
            self._subscriptions.clear()


class ChangeFeed:
    """Buffers changes for one consumer, e.g. a server-sent-events response."""

    def __init__(
        self,
        channel: RealtimeChannel,
        table: str,
        *,
        filters: Mapping[str, Any] | None = None,
        tenant_id: str | None = None,
        max_pending: int = 256,
    ) -> None:
        self._queue: "queue.Queue[RowChange]" = queue.Queue(maxsize=max_pending)
        self._logger = logging.getLogger("crm_portal.realtime")
        self._subscription = channel.subscribe(table, self._enqueue, filters=filters, tenant_id=tenant_id)

    def _enqueue(self, change: RowChange) -> None:
        try:
            self._queue.put_nowait(change)
        except queue.Full:
            self._logger.warning(
                "change_feed_overflow",
                extra={"table": change.table, "record_id": change.record_id},
            )

    def get(self, timeout: float | None = None) -> RowChange | None:
        try:
            return self._queue.get(timeout=timeout)
        except queue.Empty:
            return None

    def close(self) -> None:
        self._subscription.unsubscribe()
