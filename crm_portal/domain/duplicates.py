"""Similarity scoring between a customer being entered and existing customers.

Scores are 0-100. Name, telephone and AFM are scored separately and then
weighted 40/40/20 over the fields the caller actually supplied.
"""

from __future__ import annotations

import re
import unicodedata
from difflib import SequenceMatcher
from typing import Any, Dict, Mapping


DEFAULT_THRESHOLD = 65
FIELD_WEIGHTS = {"company_name": 0.4, "telephone": 0.4, "afm": 0.2}

# Below these a field is still being typed and says nothing useful.
MIN_NAME_LENGTH = 3
MIN_PHONE_DIGITS = 5
AFM_LENGTH = 9

_NON_DIGITS = re.compile(r"\D")
_DROPPED = re.compile(r"[.']")
_NON_WORD = re.compile(r"[^\w\s]")
_SPACES = re.compile(r"\s+")


def normalize_name(value: Any) -> str:
    text = unicodedata.normalize("NFD", str(value or ""))
    text = "".join(char for char in text if not unicodedata.combining(char))
    text = _NON_WORD.sub(" ", _DROPPED.sub("", text.casefold()))
    return _SPACES.sub(" ", text).strip()


def normalize_afm(value: Any) -> str:
    return _NON_DIGITS.sub("", str(value or ""))


def normalize_phone(value: Any) -> str:
    digits = _NON_DIGITS.sub("", str(value or ""))
    if digits.startswith("0030"):
        digits = digits[4:]
    elif digits.startswith("30") and len(digits) > 10:
        digits = digits[2:]
    if digits.startswith(("69", "2")) and len(digits) >= 10:
        return digits[:10]
    return digits


def _token_sort_ratio(left: str, right: str) -> int:
    left_sorted = " ".join(sorted(left.split()))
    right_sorted = " ".join(sorted(right.split()))
    return round(SequenceMatcher(None, left_sorted, right_sorted).ratio() * 100)


def name_similarity(left: Any, right: Any) -> int:
    first, second = normalize_name(left), normalize_name(right)
    if not first or not second:
        return 0
    if first == second:
        return 100
    shorter, longer = sorted((len(first), len(second)))
    coverage = shorter / longer
    if first.startswith(second) or second.startswith(first):
        if shorter >= 4 and coverage >= 0.5:
            return round(60 + coverage * 40)
        if shorter >= 2 and coverage >= 0.15:
            return round(65 + coverage * 30)
    if first in second or second in first:
        if shorter >= 4:
            return round(65 + coverage * 30)
        if shorter >= 2:
            return round(65 + coverage * 15)
    return _token_sort_ratio(first, second)


def phone_similarity(left: Any, right: Any) -> int:
    first, second = normalize_phone(left), normalize_phone(right)
    if not first or not second:
        return 0
    if first == second:
        return 100
    if first in second or second in first:
        shorter = min(len(first), len(second))
        if shorter >= 7:
            return min(80 + (shorter - 7) * 5, 95)
        if shorter >= 5:
            return 70 + (shorter - 5) * 5
        if shorter == 4:
            return 40
        if shorter == 3:
            return 30
        return shorter * 10

    prefix = 0
    for a, b in zip(first, second):
        if a != b:
            break
        prefix += 1
    if prefix >= 7:
        return min(70 + (prefix - 7) * 10, 100)
    if prefix >= 5:
        return 50 + (prefix - 5) * 10
    if prefix >= 3:
        return 30 + (prefix - 3) * 10
    return 0


def afm_similarity(left: Any, right: Any) -> int:
    first, second = normalize_afm(left), normalize_afm(right)
    return 100 if first and first == second else 0


def search_terms(values: Mapping[str, Any]) -> Dict[str, str]:
    """Keep only the fields complete enough to compare on."""
    terms: Dict[str, str] = {}
    name = str(values.get("company_name") or "").strip()
    if len(name) >= MIN_NAME_LENGTH:
        terms["company_name"] = name
    phone = normalize_phone(values.get("telephone"))
    if len(phone) >= MIN_PHONE_DIGITS:
        terms["telephone"] = phone
    afm = normalize_afm(values.get("afm"))
    if len(afm) == AFM_LENGTH:
        terms["afm"] = afm
    return terms


def similarity(terms: Mapping[str, str], customer: Mapping[str, Any]) -> Dict[str, Any]:
    details = {
        "company_name": name_similarity(terms.get("company_name"), customer.get("company_name")),
        "telephone": phone_similarity(terms.get("telephone"), customer.get("telephone")),
        "afm": afm_similarity(terms.get("afm"), customer.get("afm")),
    }
    weights = {field: weight for field, weight in FIELD_WEIGHTS.items() if terms.get(field)}
    total = sum(weights.values())
    if not total:
        return {"score": 0, "details": details}
    score = sum(details[field] * weight for field, weight in weights.items()) / total
    return {"score": round(score), "details": details}
