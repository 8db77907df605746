"""Leaf sections of the offer dialog.

Each section owns a fixed set of form fields: ``render`` describes them for
the client and ``apply`` writes only those fields back into the form state.
A section handed no context renders the loading placeholder.
"""

from __future__ import annotations

from typing import Any, Dict, List, Mapping, Tuple

from crm_portal.offers.form_state import LOADING_PLACEHOLDER, FormContext
from crm_portal.ui_strings import READY_STATUS


class Section:
    key = ""
    fields: Tuple[str, ...] = ()

    def render(self, context: FormContext | None) -> Dict[str, Any]:
        if context is None:
            return {"key": self.key, **LOADING_PLACEHOLDER}
        return {"key": self.key, "loading": False, "fields": self.describe(context)}

    def describe(self, context: FormContext) -> Dict[str, Dict[str, Any]]:
        return {name: {"value": context.form.get(name)} for name in self.fields}

    def apply(self, context: FormContext | None, values: Mapping[str, Any]) -> List[str]:
        if context is None:
            return []
        own = {name: value for name, value in values.items() if name in self.fields}
        context.form.update(own)
        return sorted(own)


class SourceSection(Section):
    key = "source"
    fields = ("source", "contact_id")

    def describe(self, context: FormContext) -> Dict[str, Dict[str, Any]]:
        source = context.form.get("source")
        return {
            "source": {
                "value": source,
                "label": context.source.label(source),
                "options": context.source.options(),
            },
            "contact_id": {
                "value": context.form.get("contact_id"),
                "options": context.contact_options(),
            },
        }


class StatusResultSection(Section):
    key = "status_result"
    fields = ("status", "result")

    def describe(self, context: FormContext) -> Dict[str, Dict[str, Any]]:
        status = context.form.get("status")
        result = context.form.get("result")
        return {
            "status": {
                "value": status,
                "label": context.status.label(status),
                "options": context.status.options(),
            },
            "result": {
                "value": result,
                "label": context.result.label(result),
                "options": context.result.options(),
                # Disabled in the UI only; apply() still stores whatever arrives.
                "disabled": status != READY_STATUS,
                "warning": context.form.result_warning(),
            },
        }


class AssignmentSection(Section):
    key = "assignment"
    fields = ("assigned_to",)

    def describe(self, context: FormContext) -> Dict[str, Dict[str, Any]]:
        return {
            "assigned_to": {
                "value": context.form.get("assigned_to"),
                "options": context.user_options(),
            }
        }


class CertificateSection(Section):
    key = "certificate"
    fields = ("hma", "certificate")

    def describe(self, context: FormContext) -> Dict[str, Dict[str, Any]]:
        hma = bool(context.form.get("hma"))
        return {
            "hma": {"value": hma},
            "certificate": {"value": context.form.get("certificate"), "disabled": not hma},
        }


class CommentsSection(Section):
    key = "comments"
    fields = ("amount", "requirements", "customer_comments", "our_comments")

    def describe(self, context: FormContext) -> Dict[str, Dict[str, Any]]:
        described = super().describe(context)
        errors = context.form.validate()
        if "amount" in errors:
            described["amount"]["error"] = errors["amount"]
        return described


class AddressSection(Section):
    key = "address"
    fields = ("address", "postal_code", "town")


SECTIONS: Tuple[Section, ...] = (
    SourceSection(),
    StatusResultSection(),
    AssignmentSection(),
    CertificateSection(),
    CommentsSection(),
    AddressSection(),
)


def render_sections(context: FormContext | None) -> List[Dict[str, Any]]:
    return [section.render(context) for section in SECTIONS]


def apply_sections(context: FormContext | None, values: Mapping[str, Any]) -> List[str]:
    """Route submitted values to the sections that own them."""
    written: List[str] = []
    for section in SECTIONS:
        written.extend(section.apply(context, values))
    return written
