from __future__ import annotations

import logging
from typing import Any, Dict, List, Tuple

from crm_portal.application.catalog_service import CatalogService
from crm_portal.core.event_bus import EventBus, OfferDeleted, get_event_bus
from crm_portal.errors import AppError, NotFoundError
from crm_portal.infrastructure.repositories import (
    CustomerRepository,
    OfferDetailRepository,
    OfferHistoryRepository,
    OfferRepository,
)
from crm_portal.infrastructure.store import Store


class OfferDetailLines:
    """Persisted offer lines, returned with their catalog names."""

    def __init__(self, store: Store, catalog: CatalogService | None = None) -> None:
        self.repository = OfferDetailRepository(store)
        self.catalog = catalog or CatalogService(store)

    def list_for_offer(self, offer_id: str) -> List[dict]:
        rows = self.repository.list_for_offer(offer_id)
        if not rows:
            return []
        names = self.catalog.names_index()
        for row in rows:
            row["category_name"] = names["categories"].get(str(row.get("category_id")))
            row["subcategory_name"] = names["subcategories"].get(str(row.get("subcategory_id")))
            row["unit_name"] = names["units"].get(str(row.get("unit_id")))
        return rows

    def create(self, offer_id: str, detail: Dict[str, Any], *, user_id: str | None = None) -> dict:
        return self.repository.create(offer_id, detail, user_id=user_id)

    def delete(self, detail_id: str) -> bool:
        if not self.repository.delete_by_id(detail_id):
            raise NotFoundError(code="detail_not_found", payload={"detail_id": detail_id})
        return True


class OfferService:
    def __init__(self, store: Store, *, event_bus: EventBus | None = None) -> None:
        self.store = store
        self.offers = OfferRepository(store)
        self.history_entries = OfferHistoryRepository(store)
        self.customers = CustomerRepository(store)
        self.details = OfferDetailLines(store)
        self.event_bus = event_bus or get_event_bus()
        self.logger = logging.getLogger("crm_portal.offers")

    def list_offers(self, customer_id: str) -> List[dict]:
        try:
            return self.offers.list_for_customer(customer_id)
        except AppError:
            self.logger.exception("offer_list_failed", extra={"customer_id": customer_id})
            return []

    def get_offer(self, offer_id: str) -> dict:
        offer = self.offers.get_by_id(offer_id)
        if offer is None or offer.get("deleted_at"):
            raise NotFoundError(code="offer_not_found", payload={"offer_id": offer_id})
        return offer

    def save_header(
        self,
        values: Dict[str, Any],
        *,
        offer_id: str | None,
        user_id: str | None,
    ) -> Tuple[dict, dict | None]:
        """Insert or update an offer header; returns ``(row, previous)``."""
        header = dict(values)
        if not offer_id:
            customer = self.customers.get_by_id(str(header.get("customer_id") or ""))
            if customer is None or customer.get("deleted_at"):
                raise NotFoundError(code="customer_not_found", payload={"customer_id": header.get("customer_id")})
            header.update({"created_by": user_id, "updated_by": user_id})
            return self.offers.insert(header), None

        previous = self.get_offer(offer_id)
        header.pop("customer_id", None)
        header["updated_by"] = user_id
        row = self.offers.update_fields(offer_id, header)
        if row is None:
            raise NotFoundError(code="offer_not_found", payload={"offer_id": offer_id})
        try:
            self.history_entries.record_change(offer_id, previous, row, changed_by=user_id)
        except AppError:
            # The header update stands; only the audit row is missing.
            self.logger.exception("offer_history_write_failed", extra={"offer_id": offer_id})
        return row, previous

    def soft_delete_offer(self, offer_id: str, *, user_id: str | None = None) -> dict:
        offer = self.get_offer(offer_id)
        row = self.offers.soft_delete(offer_id, user_id=user_id)
        self.event_bus.publish(
            OfferDeleted(
                tenant_id=self.store.tenant_id,
                offer_id=str(offer_id),
                customer_id=str(offer["customer_id"]),
            )
        )
        return row

    def history(self, offer_id: str) -> List[dict]:
        self.get_offer(offer_id)
        return self.history_entries.list_for_offer(offer_id)

    def list_details(self, offer_id: str) -> List[dict]:
        try:
            return self.details.list_for_offer(offer_id)
        except AppError:
            self.logger.exception("offer_details_load_failed", extra={"offer_id": offer_id})
            return []
