"""A customer's offer table kept current from row-change notifications."""

from __future__ import annotations

import logging
from threading import RLock
from typing import Any, Callable, Dict, List

from crm_portal.errors import AppError
from crm_portal.realtime import DELETE, INSERT, UPDATE, RealtimeChannel, RowChange, Subscription
from crm_portal.ui_strings import warning_message


OfferLoader = Callable[[str], List[Dict[str, Any]]]


class OfferListView:
    def __init__(
        self,
        customer_id: str,
        loader: OfferLoader,
        channel: RealtimeChannel,
        *,
        viewer_id: str | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self.customer_id = customer_id
        self.viewer_id = viewer_id
        self._loader = loader
        self._channel = channel
        self._lock = RLock()
        self._rows: List[Dict[str, Any]] = []
        self._in_flight: set[str] = set()
        self._subscription: Subscription | None = None
        self.tenant_id: str | None = None
        self.notices: List[Dict[str, str]] = []
        self.reload_count = 0
        self.logger = logger or logging.getLogger("crm_portal.offers")

    def load(self) -> List[Dict[str, Any]]:
        try:
            rows = list(self._loader(self.customer_id))
        except AppError:
            self.logger.exception("offer_list_load_failed", extra={"customer_id": self.customer_id})
            rows = []
        with self._lock:
            self._rows = [row for row in rows if not row.get("deleted_at")]
            self.reload_count += 1
        return self.rows()

    def attach(self, tenant_id: str | None = None) -> Subscription:
        if self._subscription is None:
            self.tenant_id = tenant_id
            self._subscription = self._channel.subscribe(
                "offers",
                self.apply,
                filters={"customer_id": self.customer_id},
                tenant_id=tenant_id,
            )
        return self._subscription

    def detach(self) -> None:
        if self._subscription is not None:
            self._subscription.unsubscribe()
            self._subscription = None

    def mark_in_flight(self, offer_id: str) -> None:
        with self._lock:
            self._in_flight.add(str(offer_id))

    def clear_in_flight(self, offer_id: str) -> None:
        with self._lock:
            self._in_flight.discard(str(offer_id))

    def is_in_flight(self, offer_id: str) -> bool:
        with self._lock:
            return str(offer_id) in self._in_flight

    def rows(self) -> List[Dict[str, Any]]:
        with self._lock:
            return [dict(row) for row in self._rows]

    def apply(self, change: RowChange) -> None:
        if change.event_type == INSERT:
            self._apply_insert(change)
        elif change.event_type == UPDATE:
            self._apply_update(change)
        elif change.event_type == DELETE:
            self._apply_delete(change)

    def _apply_insert(self, change: RowChange) -> None:
        row = change.new
        if row.get("deleted_at") or not row.get("id"):
            self.load()
            return
        with self._lock:
            index = self._index_of(str(row["id"]))
            if index is None:
                self._rows.insert(0, dict(row))
            else:
                self._rows[index] = dict(row)

    def _apply_update(self, change: RowChange) -> None:
        row = change.new
        record_id = change.record_id
        if not record_id:
            self.load()
            return
        with self._lock:
            index = self._index_of(record_id)
            if record_id in self._in_flight and row.get("updated_by") != self.viewer_id:
                self.notices.append({"offer_id": record_id, "message": warning_message("updated_elsewhere")})
            if row.get("deleted_at"):
                if index is not None:
                    del self._rows[index]
                return
            if index is None:
                self._rows.append(dict(row))
            else:
                self._rows[index] = dict(row)

    def _apply_delete(self, change: RowChange) -> None:
        record_id = change.record_id
        if not record_id:
            self.load()
            return
        with self._lock:
            index = self._index_of(record_id)
            if index is not None:
                del self._rows[index]

    def _index_of(self, record_id: str) -> int | None:
        for index, row in enumerate(self._rows):
            if str(row.get("id")) == record_id:
                return index
        return None


class OfferListViewRegistry:
    """Open list views, so a save can flag its offer on the saver's own lists."""

    def __init__(self) -> None:
        self._lock = RLock()
        self._views: List[OfferListView] = []

    def open(
        self,
        customer_id: str,
        loader: OfferLoader,
        channel: RealtimeChannel,
        *,
        tenant_id: str | None = None,
        viewer_id: str | None = None,
    ) -> OfferListView:
        view = OfferListView(str(customer_id), loader, channel, viewer_id=viewer_id)
        view.attach(tenant_id)
        view.load()
        with self._lock:
            self._views.append(view)
        return view

    def close(self, view: OfferListView) -> None:
        view.detach()
        with self._lock:
            if view in self._views:
                self._views.remove(view)

    def views_for(
        self,
        customer_id: str,
        *,
        tenant_id: str | None = None,
        viewer_id: str | None = None,
    ) -> List[OfferListView]:
        with self._lock:
            return [
                view
                for view in self._views
                if view.customer_id == str(customer_id)
                and (tenant_id is None or view.tenant_id == tenant_id)
                and (viewer_id is None or view.viewer_id == viewer_id)
            ]

    def mark_in_flight(self, customer_id: str, offer_id: str, *, tenant_id: str | None = None, viewer_id: str | None = None) -> None:
        for view in self.views_for(customer_id, tenant_id=tenant_id, viewer_id=viewer_id):
            view.mark_in_flight(offer_id)

    def clear_in_flight(self, customer_id: str, offer_id: str, *, tenant_id: str | None = None, viewer_id: str | None = None) -> None:
        for view in self.views_for(customer_id, tenant_id=tenant_id, viewer_id=viewer_id):
            view.clear_in_flight(offer_id)

    def __len__(self) -> int:
        with self._lock:
            return len(self._views)
