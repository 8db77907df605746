from __future__ import annotations

import time
import uuid
from dataclasses import dataclass, field
from threading import Lock, RLock
from typing import Any, Dict, List, Mapping

from crm_portal.errors import NotFoundError, ValidationError
from crm_portal.offers.details_staging import DetailsStagingStore
from crm_portal.offers.form_state import FormContext, OfferFormState
from crm_portal.offers.sections import SECTIONS, apply_sections, render_sections
from crm_portal.realtime import UPDATE, RealtimeChannel, RowChange, Subscription
from crm_portal.ui_strings import warning_message


SECTION_FIELDS = frozenset(name for section in SECTIONS for name in section.fields)


@dataclass
class OfferEditSession:
    """Everything one open offer dialog owns, held by its controller."""

    tenant_id: str
    customer_id: str
    form: OfferFormState
    staging: DetailsStagingStore
    offer_id: str | None = None
    owner_id: str | None = None
    users: List[Dict[str, Any]] = field(default_factory=list)
    contacts: List[Dict[str, Any]] = field(default_factory=list)
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    in_flight: bool = False
    closed: bool = False
    stale_notice: str | None = None
    original: Dict[str, Any] | None = None
    touched_at: float = field(default_factory=time.monotonic)
    _save_lock: Lock = field(default_factory=Lock, init=False, repr=False, compare=False)

    @property
    def is_new(self) -> bool:
        return not self.offer_id

    def context(self) -> FormContext:
        return FormContext(form=self.form, users=self.users, contacts=self.contacts)

    def touch(self) -> None:
        self.touched_at = time.monotonic()

    def begin_save(self) -> bool:
        """Claim the session for one save; False when another save holds it."""
        with self._save_lock:
            if self.in_flight:
                return False
            self.in_flight = True
            return True

    def end_save(self) -> None:
        with self._save_lock:
            self.in_flight = False

    def apply_fields(self, values: Mapping[str, Any]) -> List[str]:
        unknown = sorted(name for name in values if name not in SECTION_FIELDS)
        if unknown:
            raise ValidationError(code="field_unknown", payload={"fields": unknown})
        return apply_sections(self.context(), values)

    def dismiss(self) -> None:
        self.staging.reset()
        self.closed = True

    def to_payload(self) -> Dict[str, Any]:
        return {
            "session_id": self.id,
            "offer_id": self.offer_id,
            "customer_id": self.customer_id,
            "is_new": self.is_new,
            "in_flight": self.in_flight,
            "values": self.form.values(),
            "errors": self.form.validate(),
            "warning": self.form.result_warning(),
            "stale_notice": self.stale_notice,
            "sections": render_sections(self.context()),
            "details": self.staging.rows(),
            "pending_deletions": list(self.staging.pending_deletions),
            "selection": [
                {"category_id": category_id, "subcategory_id": subcategory_id}
                for category_id, subcategory_id in (self.staging.selection or [])
            ],
            "selecting": self.staging.selection is not None,
        }


class EditSessionRegistry:
    def __init__(self, ttl_seconds: int = 1800) -> None:
        self._lock = RLock()
        self._sessions: Dict[str, OfferEditSession] = {}
        self.ttl_seconds = max(1, int(ttl_seconds))

    def open(self, session: OfferEditSession) -> OfferEditSession:
        with self._lock:
            self._expire_locked()
            self._sessions[session.id] = session
        return session

    def get(self, session_id: str, *, tenant_id: str | None = None) -> OfferEditSession:
        with self._lock:
            self._expire_locked()
            session = self._sessions.get(str(session_id or ""))
        if session is None or (tenant_id and session.tenant_id != tenant_id):
            raise NotFoundError(code="session_not_found", payload={"session_id": session_id})
        session.touch()
        return session

    def find(self, session_id: str) -> OfferEditSession | None:
        with self._lock:
            return self._sessions.get(str(session_id or ""))

    def discard(self, session_id: str) -> OfferEditSession | None:
        with self._lock:
            session = self._sessions.pop(str(session_id or ""), None)
        if session is not None:
            session.dismiss()
        return session

    def sessions_for_offer(self, offer_id: str) -> List[OfferEditSession]:
        with self._lock:
            return [session for session in self._sessions.values() if session.offer_id == offer_id]

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)

    def _expire_locked(self) -> None:
        cutoff = time.monotonic() - self.ttl_seconds
        expired = [key for key, session in self._sessions.items() if session.touched_at < cutoff and not session.in_flight]
        for key in expired:
            self._sessions.pop(key).dismiss()


def watch_offer_changes(registry: EditSessionRegistry, channel: RealtimeChannel) -> Subscription:
    """Flag open sessions whose offer was written by someone else."""

    def on_change(change: RowChange) -> None:
        offer_id = change.record_id
        if not offer_id:
            return
        for session in registry.sessions_for_offer(offer_id):
            # A session's own save runs while it is in flight.
            if session.in_flight or session.tenant_id != change.tenant_id:
                continue
            session.stale_notice = warning_message("updated_elsewhere")

    return channel.subscribe("offers", on_change, events=(UPDATE,))
