"""Field values of the offer dialog and the code/label maps its sections share."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping

from crm_portal.errors import ValidationError
from crm_portal.ui_strings import (
    DEFAULT_SOURCE,
    DEFAULT_STATUS,
    EMPTY_RESULT,
    READY_STATUS,
    RESULT_LABELS,
    SOURCE_ALIASES,
    SOURCE_LABELS,
    STATUS_LABELS,
    error_message,
    warning_message,
)


_AMOUNT_PATTERN = re.compile(r"^\d+(\.\d{1,2})?$")

HEADER_FIELDS = (
    "customer_id",
    "contact_id",
    "source",
    "amount",
    "requirements",
    "customer_comments",
    "our_comments",
    "status",
    "result",
    "assigned_to",
    "hma",
    "certificate",
    "address",
    "postal_code",
    "town",
)

_TRUE_VALUES = {"1", "true", "yes", "on"}


class LabelTranslator:
    """Two-way code/label lookup; values it does not know pass through unchanged."""

    def __init__(self, labels: Mapping[str, str]) -> None:
        self._labels = dict(labels)
        self._codes = {label: code for code, label in self._labels.items()}

    def label(self, code: Any) -> Any:
        if code is None:
            return None
        return self._labels.get(str(code), code)

    def value(self, label: Any) -> Any:
        if label is None:
            return None
        return self._codes.get(str(label), label)

    def options(self) -> List[Dict[str, str]]:
        return [{"value": code, "label": label} for code, label in self._labels.items()]


SOURCE_TRANSLATOR = LabelTranslator(SOURCE_LABELS)
STATUS_TRANSLATOR = LabelTranslator(STATUS_LABELS)
RESULT_TRANSLATOR = LabelTranslator(RESULT_LABELS)


def source_label(code: Any) -> Any:
    return SOURCE_TRANSLATOR.label(code)


def source_value(label: Any) -> Any:
    return SOURCE_TRANSLATOR.value(label)


def status_label(code: Any) -> Any:
    return STATUS_TRANSLATOR.label(code)


def status_value(label: Any) -> Any:
    return STATUS_TRANSLATOR.value(label)


def result_label(code: Any) -> Any:
    return RESULT_TRANSLATOR.label(code)


def result_value(label: Any) -> Any:
    return RESULT_TRANSLATOR.value(label)


def normalize_source(value: Any) -> str:
    text = str(value or "").strip()
    if not text:
        return DEFAULT_SOURCE
    if text in SOURCE_LABELS:
        return text
    return SOURCE_ALIASES.get(text.lower(), DEFAULT_SOURCE)


def _as_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if value is None:
        return False
    return str(value).strip().lower() in _TRUE_VALUES


def _as_text(value: Any) -> str:
    if value is None:
        return ""
    return str(value).strip()


class OfferFormState:
    def __init__(self, values: Mapping[str, Any]) -> None:
        self._values: Dict[str, Any] = {name: None for name in HEADER_FIELDS}
        self.update(values)

    @classmethod
    def defaults(
        cls,
        customer_id: str,
        *,
        default_source: str | None = None,
        current_user_id: str | None = None,
    ) -> "OfferFormState":
        return cls(
            {
                "customer_id": customer_id,
                "source": default_source or DEFAULT_SOURCE,
                "status": DEFAULT_STATUS,
                "result": EMPTY_RESULT,
                "assigned_to": current_user_id,
                "hma": False,
            }
        )

    @classmethod
    def from_offer(cls, offer: Mapping[str, Any]) -> "OfferFormState":
        return cls({name: offer.get(name) for name in HEADER_FIELDS})

    def get(self, name: str) -> Any:
        if name not in self._values:
            raise ValidationError(code="field_unknown", payload={"field": name})
        return self._values[name]

    def set(self, name: str, value: Any) -> None:
        if name not in self._values:
            raise ValidationError(code="field_unknown", payload={"field": name})
        self._values[name] = self._coerce(name, value)

    def update(self, values: Mapping[str, Any]) -> None:
        unknown = [name for name in values if name not in self._values]
        if unknown:
            raise ValidationError(code="field_unknown", payload={"fields": sorted(unknown)})
        for name, value in values.items():
            self._values[name] = self._coerce(name, value)

    def values(self) -> Dict[str, Any]:
        return dict(self._values)

    @staticmethod
    def _coerce(name: str, value: Any) -> Any:
        if name == "source":
            return normalize_source(source_value(value))
        if name == "status":
            return status_value(_as_text(value)) or DEFAULT_STATUS
        if name == "result":
            return result_value(_as_text(value)) or EMPTY_RESULT
        if name == "hma":
            return _as_bool(value)
        if name in {"contact_id", "assigned_to"}:
            return _as_text(value) or None
        if value is None:
            return None
        return str(value).strip() if isinstance(value, str) else value

    def validate(self) -> Dict[str, str]:
        errors: Dict[str, str] = {}
        amount = _as_text(self._values.get("amount"))
        if amount and not _AMOUNT_PATTERN.match(amount):
            errors["amount"] = error_message("amount_invalid")
        if self._values.get("status") not in STATUS_LABELS:
            errors["status"] = error_message("validation_error")
        if self._values.get("result") not in RESULT_LABELS:
            errors["result"] = error_message("validation_error")
        return errors

    def result_warning(self) -> str | None:
        result = self._values.get("result") or EMPTY_RESULT
        if result != EMPTY_RESULT and self._values.get("status") != READY_STATUS:
            return warning_message("result_requires_ready")
        return None

    def to_header_payload(self) -> Dict[str, Any]:
        payload = dict(self._values)
        payload["amount"] = _as_text(payload.get("amount")) or None
        payload["hma"] = bool(payload.get("hma"))
        # The certificate text is meaningful only while the flag is on.
        if not payload["hma"]:
            payload["certificate"] = None
        return payload


@dataclass
class FormContext:
    """What section components read: form state, translators and option maps."""

    form: OfferFormState
    users: List[Dict[str, Any]] = field(default_factory=list)
    contacts: List[Dict[str, Any]] = field(default_factory=list)
    source: LabelTranslator = SOURCE_TRANSLATOR
    status: LabelTranslator = STATUS_TRANSLATOR
    result: LabelTranslator = RESULT_TRANSLATOR

    def user_options(self) -> List[Dict[str, str]]:
        return [
            {"value": str(user["id"]), "label": user.get("full_name") or user.get("email") or str(user["id"])}
            for user in self.users
        ]

    def contact_options(self) -> List[Dict[str, str]]:
        return [{"value": str(contact["id"]), "label": contact.get("full_name") or ""} for contact in self.contacts]


LOADING_PLACEHOLDER: Dict[str, Any] = {"loading": True}
