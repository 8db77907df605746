from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict


@dataclass(frozen=True)
class ServiceOutput:
    payload: Dict[str, Any]
    status_code: int = 200


@dataclass(frozen=True)
class CustomerInput:
    company_name: str | None
    afm: str | None = None
    doy: str | None = None
    customer_type: str | None = None
    address: str | None = None
    postal_code: str | None = None
    town: str | None = None
    telephone: str | None = None
    email: str | None = None
    webpage: str | None = None
    fax_number: str | None = None
    notes: str | None = None

    FIELDS = (
        "company_name",
        "afm",
        "doy",
        "customer_type",
        "address",
        "postal_code",
        "town",
        "telephone",
        "email",
        "webpage",
        "fax_number",
        "notes",
    )

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "CustomerInput":
        return cls(**{name: _clean(payload.get(name)) for name in cls.FIELDS})


@dataclass(frozen=True)
class ContactInput:
    full_name: str | None
    position: str | None = None
    telephone: str | None = None
    mobile: str | None = None
    email: str | None = None
    internal_telephone: str | None = None
    notes: str | None = None

    FIELDS = ("full_name", "position", "telephone", "mobile", "email", "internal_telephone", "notes")

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "ContactInput":
        return cls(**{name: _clean(payload.get(name)) for name in cls.FIELDS})


@dataclass(frozen=True)
class DetailSelection:
    category_id: str
    subcategory_id: str | None = None
    unit_id: str | None = None
    quantity: float = 1
    price: float = 0
    notes: str = ""
    category_name: str | None = None
    subcategory_name: str | None = None


@dataclass(frozen=True)
class FollowupPlan:
    kind: str
    assigned_to: str
    offer_id: str
    customer_id: str
    created_by: str | None = None
    context: Dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class AuthLoginInput:
    email: str
    password: str


@dataclass(frozen=True)
class AuthUser:
    id: str | None
    email: str
    display_name: str
    tenant_id: str
    role: str


def _clean(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None
