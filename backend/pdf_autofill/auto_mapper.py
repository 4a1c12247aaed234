"""
Heuristic Field Mapping

Offline fallback used when there is neither a saved mapping nor a usable AI
suggestion. Matches PDF field names to data keys using:
1. Exact match after normalization
2. Ordered keyword rules on the normalized field name

Conservative by intent: a field that matches nothing stays unmapped.
"""

import logging
import re
from typing import Callable, List, Optional, Sequence, Tuple

from .models import LINE_ITEMS_KEY, FieldDescriptor, FieldMapping

logger = logging.getLogger(__name__)

_NON_ALNUM = re.compile(r"[^a-z0-9]")

CUSTOMER_MARKERS = ("customer", "client", "billto")
CUSTOMER_ATTRIBUTES = (
    ("name", "customerName"),
    ("address", "customerAddress"),
    ("phone", "customerPhone"),
)
COMPANY_MARKERS = ("company", "vendor", "provider")
COMPANY_ATTRIBUTES = (
    ("name", "companyName"),
    ("address", "companyAddress"),
    ("phone", "companyPhone"),
    ("email", "companyEmail"),
)


def normalize_name(s: str) -> str:
    """Lower-case and drop everything outside [a-z0-9]."""
    if not s:
        return ""
    return _NON_ALNUM.sub("", s.lower())


def _contains_any(name: str, words: Sequence[str]) -> bool:
    return any(word in name for word in words)


def _grouped(markers, attributes) -> Callable[[str], Optional[str]]:
    def rule(name: str) -> Optional[str]:
        if not _contains_any(name, markers):
            return None
        found = None
        for word, key in attributes:
            if word in name:
                found = key
        return found

    return rule


def _contains(words, key: str) -> Callable[[str], Optional[str]]:
    return lambda name: key if _contains_any(name, words) else None


def _equals(words, key: str) -> Callable[[str], Optional[str]]:
    return lambda name: key if name in words else None


# Order matters: every rule is tried and the last one that yields a key decides the field.
KEYWORD_RULES: Tuple[Tuple[str, Callable[[str], Optional[str]]], ...] = (
    ("customer", _grouped(CUSTOMER_MARKERS, CUSTOMER_ATTRIBUTES)),
    ("company", _grouped(COMPANY_MARKERS, COMPANY_ATTRIBUTES)),
    ("date", _contains(("date",), "serviceDate")),
    ("invoice", _contains(("invoice", "est"), "invoiceNumber")),
    ("total", _equals(("total", "grandtotal"), "total")),
    ("subtotal", _equals(("subtotal",), "subtotal")),
    ("tax", _equals(("tax",), "tax")),
    ("notes", _equals(("notes", "comments"), "notes")),
    ("line_items", _contains(("desc", "items"), LINE_ITEMS_KEY)),
)


def match_keyword(normalized_name: str) -> Optional[Tuple[str, str]]:
    """Return ``(rule, key)`` for the last keyword rule matching the name."""
    hit = None
    for rule_name, rule in KEYWORD_RULES:
        key = rule(normalized_name)
        if key:
            hit = rule_name, key
    return hit


def heuristic_map(fields: Sequence[FieldDescriptor], known_keys: Sequence[str]) -> List[FieldMapping]:
    """Best-effort mapping of form fields onto data keys; unmatched fields are left out."""
    normalized_keys = [(normalize_name(key), key) for key in known_keys]
    mappings: List[FieldMapping] = []

    for descriptor in fields:
        name_norm = normalize_name(descriptor.name)
        match = next((key for norm, key in normalized_keys if norm and norm == name_norm), None)
        method = "exact"

        if match is None:
            hit = match_keyword(name_norm)
            if hit:
                method, match = hit

        if match is None:
            logger.debug("No heuristic match for field '%s'", descriptor.name)
            continue

        logger.debug("Mapped '%s' -> '%s' (%s)", descriptor.name, match, method)
        mappings.append(FieldMapping(field_name=descriptor.name, source_key=match))

    logger.info("Heuristically mapped %d of %d fields", len(mappings), len(fields))
    return mappings
