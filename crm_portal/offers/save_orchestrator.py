"""Sequenced save of an offer dialog: header, staged lines, deletions, completion."""

from __future__ import annotations

import logging
import time
from dataclasses import asdict, dataclass, field
from typing import Any, Callable, Dict, List, Protocol, Tuple

from crm_portal.core.event_bus import EventBus, OfferSaved
from crm_portal.errors import AppError, ConflictError
from crm_portal.observability import observe_detail_deletion_failed, observe_offer_save
from crm_portal.offers.details_staging import DetailWriter
from crm_portal.offers.edit_session import OfferEditSession
from crm_portal.ui_strings import error_message, warning_message


class HeaderWriter(Protocol):
    def save_header(
        self,
        values: Dict[str, Any],
        *,
        offer_id: str | None,
        user_id: str | None,
    ) -> Tuple[dict, dict | None]: ...


class DetailLines(DetailWriter, Protocol):
    def delete(self, detail_id: str) -> bool: ...


@dataclass
class SaveOutcome:
    ok: bool
    offer_id: str | None = None
    created: bool = False
    details_saved: bool = True
    details_committed: int = 0
    deleted_detail_ids: List[str] = field(default_factory=list)
    failed_deletions: List[Dict[str, str]] = field(default_factory=list)
    error: str | None = None
    error_code: str | None = None
    field_errors: Dict[str, str] = field(default_factory=dict)
    warnings: List[str] = field(default_factory=list)
    close_after_ms: int | None = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


CompletionCallback = Callable[[SaveOutcome], None]


class SaveOrchestrator:
    def __init__(
        self,
        offer_service: HeaderWriter,
        detail_lines: DetailLines,
        *,
        event_bus: EventBus | None = None,
        strict_detail_commit: bool = True,
        close_delay_ms: int = 200,
        logger: logging.Logger | None = None,
    ) -> None:
        self.offer_service = offer_service
        self.detail_lines = detail_lines
        self.event_bus = event_bus
        self.strict_detail_commit = bool(strict_detail_commit)
        self.close_delay_ms = max(0, int(close_delay_ms))
        self.logger = logger or logging.getLogger("crm_portal.offers")

    def save(
        self,
        session: OfferEditSession,
        *,
        user_id: str | None,
        on_complete: CompletionCallback | None = None,
    ) -> SaveOutcome:
        if not session.begin_save():
            raise ConflictError(code="save_in_progress")

        started = time.perf_counter()
        try:
            field_errors = session.form.validate()
            if field_errors:
                observe_offer_save("invalid", 0.0)
                return SaveOutcome(
                    ok=False,
                    offer_id=session.offer_id,
                    error=next(iter(field_errors.values())),
                    error_code="validation_error",
                    field_errors=field_errors,
                )
            outcome = self._run(session, user_id=user_id)
        finally:
            session.end_save()

        observe_offer_save(self._result_label(outcome), (time.perf_counter() - started) * 1000.0)
        if outcome.ok:
            outcome.close_after_ms = None if outcome.failed_deletions else self.close_delay_ms
            self._notify(on_complete, outcome)
        return outcome

    def _run(self, session: OfferEditSession, *, user_id: str | None) -> SaveOutcome:
        creating = session.is_new
        warning = session.form.result_warning()

        try:
            row, previous = self.offer_service.save_header(
                session.form.to_header_payload(),
                offer_id=session.offer_id,
                user_id=user_id,
            )
        except AppError as exc:
            key = "offer_create_failed" if creating else "offer_update_failed"
            self.logger.warning(
                "offer_header_save_failed",
                extra={"offer_id": session.offer_id, "error_code": exc.code, "details": exc.details},
            )
            return SaveOutcome(ok=False, offer_id=session.offer_id, error=error_message(key), error_code=key)

        offer_id = str(row["id"])
        session.offer_id = offer_id
        session.original = dict(row)
        session.stale_notice = None
        outcome = SaveOutcome(ok=True, offer_id=offer_id, created=previous is None)
        if warning:
            outcome.warnings.append(warning)
        try:
            return self._write_lines(session, outcome, user_id=user_id)
        finally:
            # The header is durable at this point whatever happens to the lines.
            self._publish_saved(session, row, previous, user_id=user_id)

    def _write_lines(self, session: OfferEditSession, outcome: SaveOutcome, *, user_id: str | None) -> SaveOutcome:
        offer_id = str(outcome.offer_id)
        staged_before = len(session.staging.staged)
        try:
            session.staging.commit(offer_id, self.detail_lines, user_id=user_id)
            outcome.details_committed = staged_before
        except AppError as exc:
            outcome.details_committed = staged_before - len(session.staging.staged)
            outcome.details_saved = False
            self.logger.warning(
                "offer_details_save_failed",
                extra={
                    "offer_id": offer_id,
                    "committed": outcome.details_committed,
                    "remaining": len(session.staging.staged),
                    "details": exc.details,
                },
            )
            if self.strict_detail_commit:
                outcome.ok = False
                outcome.error = error_message("details_save_failed")
                outcome.error_code = "details_save_failed"
                return outcome
            outcome.warnings.append(warning_message("details_not_saved"))

        for detail_id in session.staging.take_deletions():
            try:
                self.detail_lines.delete(detail_id)
            except AppError as exc:
                observe_detail_deletion_failed(1)
                self.logger.warning(
                    "offer_detail_delete_failed",
                    extra={"offer_id": offer_id, "detail_id": detail_id, "details": exc.details},
                )
                outcome.failed_deletions.append(
                    {"detail_id": detail_id, "error": error_message("detail_delete_failed")}
                )
                continue
            session.staging.forget_persisted(detail_id)
            outcome.deleted_detail_ids.append(detail_id)

        return outcome

    def _publish_saved(self, session: OfferEditSession, row: dict, previous: dict | None, *, user_id: str | None) -> None:
        if self.event_bus is None:
            return
        self.event_bus.publish(
            OfferSaved(
                tenant_id=session.tenant_id,
                offer_id=str(row["id"]),
                customer_id=str(row.get("customer_id") or session.customer_id),
                created=previous is None,
                actor_id=user_id,
                previous=dict(previous) if previous else None,
                current=dict(row),
            )
        )

    def _notify(self, on_complete: CompletionCallback | None, outcome: SaveOutcome) -> None:
        if on_complete is None:
            return
        try:
            on_complete(outcome)
        except Exception:  # noqa: BLE001
            self.logger.exception("offer_save_callback_failed", extra={"offer_id": outcome.offer_id})

    @staticmethod
    def _result_label(outcome: SaveOutcome) -> str:
        if not outcome.ok:
            return outcome.error_code or "failed"
        if outcome.failed_deletions or not outcome.details_saved:
            return "partial"
        return "success"
