from __future__ import annotations

import logging
from typing import Any, Dict, Iterable, List, Mapping

from crm_portal.application.catalog_service import CatalogService
from crm_portal.application.customer_service import ContactService, CustomerService
from crm_portal.application.offer_service import OfferService
from crm_portal.core.event_bus import EventBus, get_event_bus
from crm_portal.domain.contracts import DetailSelection
from crm_portal.errors import AppError, ConflictError, NotFoundError, ValidationError
from crm_portal.infrastructure.repositories import UserRepository
from crm_portal.infrastructure.store import Store
from crm_portal.offers.details_staging import DetailsStagingStore
from crm_portal.offers.edit_session import EditSessionRegistry, OfferEditSession
from crm_portal.offers.form_state import OfferFormState
from crm_portal.offers.list_view import OfferListViewRegistry
from crm_portal.offers.save_orchestrator import SaveOrchestrator, SaveOutcome


SELECTION_ACTIONS = ("begin", "toggle", "cancel", "confirm")


class OfferSessionService:
    def __init__(
        self,
        store: Store,
        registry: EditSessionRegistry,
        *,
        config: Mapping[str, Any] | None = None,
        event_bus: EventBus | None = None,
        list_views: OfferListViewRegistry | None = None,
    ) -> None:
        settings = config or {}
        self.store = store
        self.registry = registry
        self.list_views = list_views
        self.event_bus = event_bus or get_event_bus()
        self.offer_service = OfferService(store, event_bus=self.event_bus)
        self.customer_service = CustomerService(store)
        self.contact_service = ContactService(store, event_bus=self.event_bus)
        self.catalog = CatalogService(store)
        self.users = UserRepository(store)
        self.orchestrator = SaveOrchestrator(
            self.offer_service,
            self.offer_service.details,
            event_bus=self.event_bus,
            strict_detail_commit=bool(settings.get("STRICT_DETAIL_COMMIT", True)),
            close_delay_ms=int(settings.get("SAVE_CLOSE_DELAY_MS", 200)),
        )
        self.logger = logging.getLogger("crm_portal.offers")

    def open(self, customer_id: str, *, offer_id: str | None = None, user_id: str | None = None, default_source: str | None = None) -> OfferEditSession:
        customer = self.customer_service.get_customer(customer_id)
        if offer_id:
            offer = self.offer_service.get_offer(offer_id)
            if str(offer["customer_id"]) != str(customer["id"]):
                raise NotFoundError(code="offer_not_found", payload={"offer_id": offer_id})
            form = OfferFormState.from_offer(offer)
            persisted = self.offer_service.list_details(offer_id)
        else:
            offer = None
            form = OfferFormState.defaults(customer_id, default_source=default_source, current_user_id=user_id)
            persisted = []

        session = OfferEditSession(
            tenant_id=self.store.tenant_id,
            customer_id=str(customer["id"]),
            form=form,
            staging=DetailsStagingStore(persisted),
            offer_id=str(offer["id"]) if offer else None,
            owner_id=user_id,
            users=self._load_users(),
            contacts=self.contact_service.list_contacts(customer_id),
            original=offer,
        )
        return self.registry.open(session)

    def get(self, session_id: str) -> OfferEditSession:
        return self.registry.get(session_id, tenant_id=self.store.tenant_id)

    def update_fields(self, session_id: str, values: Mapping[str, Any]) -> OfferEditSession:
        session = self.get(session_id)
        self._ensure_idle(session)
        session.apply_fields(values)
        return session

    def selection(self, session_id: str, action: str, payload: Mapping[str, Any]) -> Dict[str, Any]:
        session = self.get(session_id)
        self._ensure_idle(session)
        staging = session.staging
        if action not in SELECTION_ACTIONS:
            raise ValidationError(code="action_invalid", payload={"action": action})
        added: List[dict] = []
        if action == "begin":
            staging.begin_selection()
        elif action == "toggle":
            category_id = str(payload.get("category_id") or "").strip()
            if not category_id:
                raise ValidationError(code="category_required")
            staging.toggle_selection(category_id, payload.get("subcategory_id"))
        elif action == "cancel":
            staging.cancel_selection()
        else:
            added = [item.to_dict() for item in staging.confirm_selection(self._picker_names())]
        return {"session": session, "added": added}

    def add_details(self, session_id: str, items: Iterable[Mapping[str, Any]]) -> Dict[str, Any]:
        session = self.get(session_id)
        self._ensure_idle(session)
        names = self.catalog.names_index()
        selections = [
            DetailSelection(
                category_id=str(item.get("category_id") or "").strip(),
                subcategory_id=item.get("subcategory_id") or None,
                unit_id=item.get("unit_id") or None,
                quantity=item.get("quantity", 1),
                price=item.get("price", 0),
                notes=str(item.get("notes") or ""),
                category_name=names["categories"].get(str(item.get("category_id"))),
                subcategory_name=names["subcategories"].get(str(item.get("subcategory_id"))),
            )
            for item in items
        ]
        added = [item.to_dict() for item in session.staging.add_selection(selections)]
        return {"session": session, "added": added}

    def update_detail(self, session_id: str, detail_id: str, fields: Mapping[str, Any]) -> OfferEditSession:
        session = self.get(session_id)
        self._ensure_idle(session)
        session.staging.update_staged(detail_id, **dict(fields))
        return session

    def remove_detail(self, session_id: str, detail_id: str, *, confirmed: bool) -> Dict[str, Any]:
        session = self.get(session_id)
        self._ensure_idle(session)
        result = session.staging.remove(detail_id, confirmed=confirmed)
        return {"session": session, "result": result}

    def save(self, session_id: str, *, user_id: str | None) -> SaveOutcome:
        session = self.get(session_id)
        self._ensure_idle(session)

        def close_when_done(outcome: SaveOutcome) -> None:
            if outcome.close_after_ms is not None:
                self.registry.discard(session.id)

        watched = session.offer_id if self.list_views is not None else None
        if watched:
            self.list_views.mark_in_flight(
                session.customer_id, watched, tenant_id=self.store.tenant_id, viewer_id=user_id
            )
        try:
            return self.orchestrator.save(session, user_id=user_id, on_complete=close_when_done)
        finally:
            if watched:
                self.list_views.clear_in_flight(
                    session.customer_id, watched, tenant_id=self.store.tenant_id, viewer_id=user_id
                )

    def dismiss(self, session_id: str) -> None:
        self.get(session_id)
        self.registry.discard(session_id)

    def _picker_names(self) -> Dict[tuple, Dict[str, str]]:
        tree = self.catalog.category_tree()
        names: Dict[tuple, Dict[str, str]] = {}
        for category in tree:
            category_id = str(category["id"])
            names[(category_id, None)] = {"category_name": category["name"], "subcategory_name": None}
            for subcategory in category["subcategories"]:
                names[(category_id, str(subcategory["id"]))] = {
                    "category_name": category["name"],
                    "subcategory_name": subcategory["name"],
                }
        return names

    def _load_users(self) -> List[dict]:
        try:
            return self.users.list_active()
        except AppError:
            self.logger.exception("user_list_failed")
            return []

    @staticmethod
    def _ensure_idle(session: OfferEditSession) -> None:
        if session.in_flight:
            raise ConflictError(code="save_in_progress")
