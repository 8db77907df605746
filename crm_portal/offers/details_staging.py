"""Line items chosen in the offer dialog before they are written to the store."""

from __future__ import annotations

import itertools
import logging
from dataclasses import asdict, dataclass, replace
from typing import Any, Dict, Iterable, List, Protocol, Tuple

from crm_portal.domain.contracts import DetailSelection
from crm_portal.errors import ConflictError, NotFoundError, StoreError, ValidationError


TEMP_PREFIX = "temp-"

EDITABLE_FIELDS = ("unit_id", "quantity", "price", "notes")


class DetailWriter(Protocol):
    def create(self, offer_id: str, detail: Dict[str, Any], *, user_id: str | None = None) -> dict: ...

    def list_for_offer(self, offer_id: str) -> list[dict]: ...


@dataclass(frozen=True)
class StagedDetail:
    id: str
    category_id: str
    subcategory_id: str | None = None
    unit_id: str | None = None
    quantity: float = 1
    price: float = 0
    notes: str = ""
    category_name: str | None = None
    subcategory_name: str | None = None

    @property
    def pair(self) -> Tuple[str, str | None]:
        return detail_pair(self.category_id, self.subcategory_id)

    def to_dict(self) -> Dict[str, Any]:
        payload = asdict(self)
        payload["staged"] = True
        return payload


def detail_pair(category_id: Any, subcategory_id: Any) -> Tuple[str, str | None]:
    subcategory = str(subcategory_id).strip() if subcategory_id not in (None, "") else None
    return str(category_id).strip(), subcategory


def is_temp_id(detail_id: str) -> bool:
    return str(detail_id or "").startswith(TEMP_PREFIX)


def _as_number(value: Any, *, field: str, default: float) -> float:
    if value is None or value == "":
        return default
    try:
        number = float(value)
    except (TypeError, ValueError) as exc:
        raise ValidationError(code=f"{field}_invalid", message_key="price_invalid", payload={"field": field}) from exc
    if number < 0:
        raise ValidationError(code=f"{field}_invalid", message_key="price_invalid", payload={"field": field})
    return number


class DetailsStagingStore:
    def __init__(self, persisted: Iterable[Dict[str, Any]] | None = None, *, logger: logging.Logger | None = None) -> None:
        self.persisted: List[Dict[str, Any]] = [dict(row) for row in persisted or []]
        self.staged: List[StagedDetail] = []
        self.pending_deletions: List[str] = []
        self.selection: List[Tuple[str, str | None]] | None = None
        self._counter = itertools.count(1)
        self._logger = logger or logging.getLogger("crm_portal.offers")

    # -- picker --------------------------------------------------------

    def begin_selection(self) -> None:
        self.selection = []

    def toggle_selection(self, category_id: str, subcategory_id: str | None = None) -> List[Tuple[str, str | None]]:
        if self.selection is None:
            self.selection = []
        pair = detail_pair(category_id, subcategory_id)
        if pair in self.selection:
            self.selection.remove(pair)
        else:
            self.selection.append(pair)
        return list(self.selection)

    def cancel_selection(self) -> None:
        self.selection = None

    def confirm_selection(self, names: Dict[Tuple[str, str | None], Dict[str, str]] | None = None) -> List[StagedDetail]:
        picks = list(self.selection or [])
        self.selection = None
        labels = names or {}
        items = [
            DetailSelection(
                category_id=category_id,
                subcategory_id=subcategory_id,
                category_name=(labels.get((category_id, subcategory_id)) or {}).get("category_name"),
                subcategory_name=(labels.get((category_id, subcategory_id)) or {}).get("subcategory_name"),
            )
            for category_id, subcategory_id in picks
        ]
        return self.add_selection(items)

    # -- staging -------------------------------------------------------

    def known_pairs(self) -> set:
        pairs = {detail_pair(row.get("category_id"), row.get("subcategory_id")) for row in self.persisted}
        pairs.update(item.pair for item in self.staged)
        return pairs

    def add_selection(self, items: Iterable[DetailSelection]) -> List[StagedDetail]:
        requested = list(items)
        if any(not str(item.category_id or "").strip() for item in requested):
            raise ValidationError(code="category_required")
        seen = self.known_pairs()
        added: List[StagedDetail] = []
        for item in requested:
            pair = detail_pair(item.category_id, item.subcategory_id)
            if pair in seen:
                continue
            seen.add(pair)
            staged = StagedDetail(
                id=f"{TEMP_PREFIX}{next(self._counter)}",
                category_id=pair[0],
                subcategory_id=pair[1],
                unit_id=item.unit_id or None,
                quantity=_as_number(item.quantity, field="quantity", default=1),
                price=_as_number(item.price, field="price", default=0),
                notes=str(item.notes or ""),
                category_name=item.category_name,
                subcategory_name=item.subcategory_name,
            )
            self.staged.append(staged)
            added.append(staged)
        if not added:
            self._logger.info("detail_selection_empty", extra={"requested": len(requested)})
        return added

    def update_staged(self, detail_id: str, **fields: Any) -> StagedDetail:
        unknown = [name for name in fields if name not in EDITABLE_FIELDS]
        if unknown:
            raise ValidationError(code="field_unknown", payload={"fields": sorted(unknown)})
        for index, item in enumerate(self.staged):
            if item.id != detail_id:
                continue
            changes: Dict[str, Any] = {}
            if "unit_id" in fields:
                changes["unit_id"] = fields["unit_id"] or None
            if "quantity" in fields:
                changes["quantity"] = _as_number(fields["quantity"], field="quantity", default=1)
            if "price" in fields:
                changes["price"] = _as_number(fields["price"], field="price", default=0)
            if "notes" in fields:
                changes["notes"] = str(fields["notes"] or "")
            updated = replace(item, **changes)
            self.staged[index] = updated
            return updated
        raise NotFoundError(code="detail_not_found", payload={"detail_id": detail_id})

    def remove(self, detail_id: str, *, confirmed: bool = False) -> str:
        """Drop a staged line or queue a persisted one for deletion.

        Returns ``"removed"`` or ``"queued"``. Persisted lines stay in
        ``persisted`` until the deletion actually succeeds.
        """
        if is_temp_id(detail_id):
            for item in self.staged:
                if item.id == detail_id:
                    self.staged.remove(item)
                    return "removed"
            raise NotFoundError(code="detail_not_found", payload={"detail_id": detail_id})

        if not any(str(row.get("id")) == str(detail_id) for row in self.persisted):
            raise NotFoundError(code="detail_not_found", payload={"detail_id": detail_id})
        if not confirmed:
            raise ConflictError(code="delete_confirmation_required", payload={"detail_id": detail_id})
        if detail_id not in self.pending_deletions:
            self.pending_deletions.append(detail_id)
        return "queued"

    # -- persistence ---------------------------------------------------

    def commit(self, offer_id: str, repository: DetailWriter, *, user_id: str | None = None) -> List[dict]:
        """Write every staged line under ``offer_id``.

        Nothing staged means nothing is called. On failure the lines already
        written move to ``persisted``, the rest stay staged and ``StoreError``
        propagates.
        """
        if not self.staged:
            return []
        if not offer_id:
            raise StoreError(code="details_save_failed", details="offer id is required to commit details")

        written: List[dict] = []
        try:
            while self.staged:
                item = self.staged[0]
                written.append(repository.create(offer_id, self._row_values(item), user_id=user_id))
                self.staged.pop(0)
        except StoreError:
            self.persisted.extend(dict(row) for row in written)
            raise
        except Exception as exc:  # noqa: BLE001
            self.persisted.extend(dict(row) for row in written)
            raise StoreError(code="details_save_failed", details=str(exc)) from exc
        self.refresh(offer_id, repository)
        return written

    def refresh(self, offer_id: str, repository: DetailWriter) -> None:
        try:
            self.persisted = [dict(row) for row in repository.list_for_offer(offer_id)]
        except StoreError:
            self._logger.warning("detail_refresh_failed", extra={"offer_id": offer_id})

    def forget_persisted(self, detail_id: str) -> None:
        self.persisted = [row for row in self.persisted if str(row.get("id")) != str(detail_id)]

    def take_deletions(self) -> List[str]:
        pending = list(self.pending_deletions)
        self.pending_deletions = []
        return pending

    def reset(self) -> None:
        self.staged = []
        self.pending_deletions = []
        self.selection = None

    def rows(self) -> List[Dict[str, Any]]:
        pending = set(self.pending_deletions)
        rows = [
            {**row, "staged": False, "pending_delete": str(row.get("id")) in pending}
            for row in self.persisted
        ]
        rows.extend(item.to_dict() for item in self.staged)
        return rows

    @staticmethod
    def _row_values(item: StagedDetail) -> Dict[str, Any]:
        return {
            "category_id": item.category_id,
            "subcategory_id": item.subcategory_id,
            "unit_id": item.unit_id,
            "quantity": item.quantity,
            "price": item.price,
            "notes": item.notes,
        }
