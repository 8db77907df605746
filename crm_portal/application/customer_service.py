from __future__ import annotations

import logging
import re
from dataclasses import asdict
from typing import Any, Dict, List, Mapping

from crm_portal.core.event_bus import ContactDeleted, EventBus, get_event_bus
from crm_portal.domain import duplicates
from crm_portal.domain.contracts import ContactInput, CustomerInput, ServiceOutput
from crm_portal.errors import AppError, NotFoundError, ValidationError
from crm_portal.infrastructure import get_store
from crm_portal.infrastructure.repositories import ContactRepository, CustomerRepository
from crm_portal.infrastructure.store import Store
from crm_portal.ui_strings import warning_message


_AFM_PATTERN = re.compile(r"^\d{9}$")


class CustomerService:
    def __init__(self, store: Store, *, duplicate_threshold: int = duplicates.DEFAULT_THRESHOLD) -> None:
        self.store = store
        self.duplicate_threshold = int(duplicate_threshold)
        self.customers = CustomerRepository(store)
        self.contacts = ContactRepository(store)
        self.logger = logging.getLogger("crm_portal.customers")

    def list_customers(self, *, search: str | None = None, include_inactive: bool = False) -> list[dict]:
        try:
            return self.customers.list(search=search, include_inactive=include_inactive)
        except AppError:
            self.logger.exception("customer_list_failed")
            return []

    def get_customer(self, customer_id: str) -> dict:
        customer = self.customers.get_by_id(customer_id)
        if customer is None or customer.get("deleted_at"):
            raise NotFoundError(code="customer_not_found", payload={"customer_id": customer_id})
        return customer

    def create_customer(self, customer_input: CustomerInput, *, user_id: str | None = None) -> ServiceOutput:
        values = self._validated(asdict(customer_input))
        values["status"] = "active"
        values["created_by"] = user_id
        possible = self.find_potential_duplicates(values)
        row = self.customers.insert(values)
        payload: Dict[str, Any] = {"customer": row}
        if possible:
            payload["duplicates"] = possible
            payload["warning"] = warning_message("possible_duplicates")
        return ServiceOutput(payload=payload, status_code=201)

    def find_potential_duplicates(
        self,
        values: Mapping[str, Any],
        *,
        exclude_id: str | None = None,
        threshold: int | None = None,
        limit: int = 10,
    ) -> List[dict]:
        """Existing customers that look like ``values``, best match first.

        Only fields complete enough to compare count; with none of them the
        answer is empty. Store failures are logged and treated as no match.
        """
        terms = duplicates.search_terms(values)
        if not terms:
            return []
        cutoff = self.duplicate_threshold if threshold is None else int(threshold)
        try:
            candidates = self.customers.duplicate_candidates(exclude_id=exclude_id)
        except AppError:
            self.logger.exception("duplicate_check_failed")
            return []

        matches = []
        for customer in candidates:
            scored = duplicates.similarity(terms, customer)
            if scored["score"] >= cutoff:
                matches.append({**customer, **scored})
        matches.sort(key=lambda row: (-row["score"], str(row.get("company_name") or "")))
        if matches:
            self.logger.info("duplicate_candidates_found", extra={"count": len(matches), "top_score": matches[0]["score"]})
        return matches[:limit]

    def update_customer(self, customer_id: str, payload: Dict[str, Any]) -> dict:
        self.get_customer(customer_id)
        submitted = {name: payload[name] for name in CustomerInput.FIELDS if name in payload}
        unknown = sorted(set(payload) - set(CustomerInput.FIELDS))
        if unknown:
            raise ValidationError(code="field_unknown", payload={"fields": unknown})
        cleaned = asdict(CustomerInput.from_payload(submitted))
        changes = self._validated({name: cleaned[name] for name in submitted}, partial=True)
        return self.customers.update_fields(customer_id, changes) or self.get_customer(customer_id)

    def soft_delete_customer(self, customer_id: str) -> dict:
        self.get_customer(customer_id)
        return self.customers.soft_delete(customer_id)

    def set_primary_contact(self, customer_id: str, contact_id: str | None) -> dict:
        self.get_customer(customer_id)
        if contact_id:
            contact = self.contacts.get_by_id(contact_id)
            if contact is None or contact.get("deleted_at"):
                raise NotFoundError(code="contact_not_found", payload={"contact_id": contact_id})
            if str(contact["customer_id"]) != str(customer_id):
                raise ValidationError(code="contact_not_of_customer", payload={"contact_id": contact_id})
        return self.customers.set_primary_contact(customer_id, contact_id or None)

    @staticmethod
    def _validated(values: Dict[str, Any], *, partial: bool = False) -> Dict[str, Any]:
        if not partial or "company_name" in values:
            if not values.get("company_name"):
                raise ValidationError(code="company_name_required", payload={"field": "company_name"})
        afm = values.get("afm")
        if afm and not _AFM_PATTERN.match(afm):
            raise ValidationError(code="afm_invalid", payload={"field": "afm"})
        if values.get("email"):
            values["email"] = values["email"].lower()
        return values


class ContactService:
    def __init__(self, store: Store, *, event_bus: EventBus | None = None) -> None:
        self.store = store
        self.customers = CustomerRepository(store)
        self.contacts = ContactRepository(store)
        self.event_bus = event_bus or get_event_bus()
        self.logger = logging.getLogger("crm_portal.customers")

    def list_contacts(self, customer_id: str) -> list[dict]:
        try:
            return self.contacts.list_active(customer_id)
        except AppError:
            self.logger.exception("contact_list_failed", extra={"customer_id": customer_id})
            return []

    def get_contact(self, contact_id: str) -> dict:
        contact = self.contacts.get_by_id(contact_id)
        if contact is None or contact.get("deleted_at"):
            raise NotFoundError(code="contact_not_found", payload={"contact_id": contact_id})
        return contact

    def create_contact(self, customer_id: str, contact_input: ContactInput) -> ServiceOutput:
        customer = self.customers.get_by_id(customer_id)
        if customer is None or customer.get("deleted_at"):
            raise NotFoundError(code="customer_not_found", payload={"customer_id": customer_id})
        values = asdict(contact_input)
        if not values.get("full_name"):
            raise ValidationError(code="full_name_required", payload={"field": "full_name"})
        values.update({"customer_id": customer_id, "status": "active"})
        row = self.contacts.insert(values)
        return ServiceOutput(payload={"contact": row}, status_code=201)

    def update_contact(self, contact_id: str, payload: Dict[str, Any]) -> dict:
        self.get_contact(contact_id)
        unknown = sorted(set(payload) - set(ContactInput.FIELDS))
        if unknown:
            raise ValidationError(code="field_unknown", payload={"fields": unknown})
        cleaned = asdict(ContactInput.from_payload(payload))
        changes = {name: cleaned[name] for name in payload}
        if "full_name" in changes and not changes["full_name"]:
            raise ValidationError(code="full_name_required", payload={"field": "full_name"})
        return self.contacts.update_fields(contact_id, changes) or self.get_contact(contact_id)

    def soft_delete_contact(self, contact_id: str) -> dict:
        contact = self.get_contact(contact_id)
        row = self.contacts.soft_delete(contact_id)
        self.event_bus.publish(
            ContactDeleted(
                tenant_id=self.store.tenant_id,
                contact_id=str(contact_id),
                customer_id=str(contact["customer_id"]),
            )
        )
        return row

    def clear_primary_reference(self, event: ContactDeleted) -> int:
        """Drop customer pointers at a deleted contact; failures are only logged."""
        try:
            cleared = self.customers.clear_primary_contact(event.contact_id)
        except AppError:
            self.logger.warning("primary_contact_cleanup_failed", extra={"contact_id": event.contact_id})
            return 0
        return len(cleared)


def _on_contact_deleted(event: ContactDeleted) -> None:
    ContactService(get_store(event.tenant_id)).clear_primary_reference(event)


def register_event_handlers(bus: EventBus) -> None:
    bus.subscribe(ContactDeleted, _on_contact_deleted)
