"""
Data model shared by the mapping and filling pipeline.

Extracted document data travels under camelCase "data keys" (``customerName``,
``serviceDate``, ``lineItems`` ...). Those keys are what mappings reference,
what the AI matcher sees and what gets persisted, so they stay stable even
though the Python attributes are snake_case.
"""

from __future__ import annotations

import datetime as dt
import math
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Iterable, List, Optional, Tuple, Union

MANUAL_KEY = "__MANUAL__"
LINE_ITEMS_KEY = "lineItems"

# data key -> attribute, in schema order
TEXT_KEYS: Tuple[Tuple[str, str], ...] = (
    ("customerName", "customer_name"),
    ("customerAddress", "customer_address"),
    ("customerPhone", "customer_phone"),
    ("companyName", "company_name"),
    ("companyAddress", "company_address"),
    ("companyPhone", "company_phone"),
    ("companyEmail", "company_email"),
    ("serviceDate", "service_date"),
    ("invoiceNumber", "invoice_number"),
)
AMOUNT_KEYS: Tuple[Tuple[str, str], ...] = (
    ("subtotal", "subtotal"),
    ("tax", "tax"),
    ("total", "total"),
)
NOTES_KEY = ("notes", "notes")

SCHEMA_KEYS: Tuple[Tuple[str, str], ...] = TEXT_KEYS + AMOUNT_KEYS + (NOTES_KEY,)
_ATTR_BY_KEY = dict(SCHEMA_KEYS)

Scalar = Union[str, float, None]


def to_number(value) -> Optional[float]:
    """Lenient numeric coercion for amounts coming out of OCR/AI output."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        cleaned = value.replace("$", "").replace(",", "").strip()
        if not cleaned:
            return None
        try:
            return float(cleaned)
        except ValueError:
            return None
    return None


def format_value(value) -> str:
    """Stringify a scalar the way the browser-side app rendered it (150.0 -> "150")."""
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float):
        if math.isfinite(value) and value.is_integer():
            return str(int(value))
        return repr(value)
    return str(value)


@dataclass
class LineItem:
    description: str = ""
    quantity: float = 0.0
    unit_price: float = 0.0
    amount: float = 0.0

    @classmethod
    def from_dict(cls, raw: Dict) -> "LineItem":
        return cls(
            description=str(raw.get("description") or ""),
            quantity=to_number(raw.get("quantity")) or 0.0,
            unit_price=to_number(raw.get("unitPrice")) or 0.0,
            amount=to_number(raw.get("amount")) or 0.0,
        )

    def to_dict(self) -> Dict[str, object]:
        return {
            "description": self.description,
            "quantity": self.quantity,
            "unitPrice": self.unit_price,
            "amount": self.amount,
        }

    def render(self) -> str:
        return f"{format_value(self.quantity)}x {self.description} (${format_value(self.amount)})"


@dataclass
class ExtractedData:
    """Structured invoice/estimate data plus any extra string fields."""

    customer_name: str = ""
    customer_address: str = ""
    customer_phone: str = ""
    company_name: str = ""
    company_address: str = ""
    company_phone: str = ""
    company_email: str = ""
    service_date: str = ""
    invoice_number: str = ""
    subtotal: Optional[float] = None
    tax: Optional[float] = None
    total: Optional[float] = None
    notes: str = ""
    line_items: List[LineItem] = field(default_factory=list)
    extra: Dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, raw: Optional[Dict]) -> "ExtractedData":
        raw = raw or {}
        data = cls()
        for key, attr in TEXT_KEYS + (NOTES_KEY,):
            value = raw.get(key)
            if value is not None:
                setattr(data, attr, format_value(value))
        for key, attr in AMOUNT_KEYS:
            setattr(data, attr, to_number(raw.get(key)))

        items = raw.get(LINE_ITEMS_KEY) or []
        if isinstance(items, list):
            data.line_items = [LineItem.from_dict(item) for item in items if isinstance(item, dict)]

        for key, value in raw.items():
            if key in _ATTR_BY_KEY or key == LINE_ITEMS_KEY:
                continue
            if isinstance(value, (str, int, float, bool)):
                data.extra[str(key)] = format_value(value)
        return data

    def to_dict(self) -> Dict[str, object]:
        out: Dict[str, object] = {key: getattr(self, attr) for key, attr in SCHEMA_KEYS}
        out.update(self.extra)
        out[LINE_ITEMS_KEY] = [item.to_dict() for item in self.line_items]
        return out

    def get(self, key: str) -> Scalar:
        """Raw scalar for ``key``; ``None`` when the key is absent."""
        attr = _ATTR_BY_KEY.get(key)
        if attr is not None:
            return getattr(self, attr)
        return self.extra.get(key)

    def keys(self) -> List[str]:
        return [key for key, _ in SCHEMA_KEYS] + list(self.extra) + [LINE_ITEMS_KEY]

    def render_line_items(self) -> str:
        return "\n".join(item.render() for item in self.line_items)


class FieldKind(str, Enum):
    TEXT = "text"
    CHECKBOX = "checkbox"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class FieldDescriptor:
    name: str
    kind: FieldKind
    max_length: Optional[int] = None

    def to_dict(self) -> Dict[str, object]:
        return {"name": self.name, "kind": self.kind.value, "max_length": self.max_length}


@dataclass
class FieldMapping:
    """Assigns a value source to one form field."""

    field_name: str
    source_key: str
    manual_value: Optional[str] = None

    @property
    def is_manual(self) -> bool:
        return self.source_key == MANUAL_KEY

    @classmethod
    def from_dict(cls, raw: Dict) -> "FieldMapping":
        manual = raw.get("manual_value")
        return cls(
            field_name=str(raw["field_name"]),
            source_key=str(raw["source_key"]),
            manual_value=None if manual is None else str(manual),
        )

    def to_dict(self) -> Dict[str, Optional[str]]:
        return {
            "field_name": self.field_name,
            "source_key": self.source_key,
            "manual_value": self.manual_value,
        }


def dedupe_mappings(mappings: Iterable[FieldMapping]) -> List[FieldMapping]:
    """One entry per field name; a later entry replaces an earlier one in place."""
    by_field: Dict[str, FieldMapping] = {}
    for mapping in mappings:
        by_field[mapping.field_name] = mapping
    return list(by_field.values())


@dataclass
class TemplateRecord:
    id: str
    name: str
    created_at: dt.datetime
    saved_mappings: Optional[List[FieldMapping]] = None
    filename_pattern: Optional[str] = None
    data: bytes = b""

    def to_metadata(self) -> Dict[str, object]:
        return {
            "id": self.id,
            "name": self.name,
            "created_at": self.created_at.isoformat(),
            "saved_mappings": (
                None if self.saved_mappings is None else [m.to_dict() for m in self.saved_mappings]
            ),
            "filename_pattern": self.filename_pattern,
        }

    @classmethod
    def from_metadata(cls, meta: Dict, data: bytes = b"") -> "TemplateRecord":
        saved = meta.get("saved_mappings")
        return cls(
            id=meta["id"],
            name=meta["name"],
            created_at=dt.datetime.fromisoformat(meta["created_at"]),
            saved_mappings=None if saved is None else [FieldMapping.from_dict(m) for m in saved],
            filename_pattern=meta.get("filename_pattern"),
            data=data,
        )


@dataclass
class TemplateConfig:
    """Per-template state for one generation run."""

    template: TemplateRecord
    fields: List[FieldDescriptor]
    mappings: List[FieldMapping]
    filename_pattern: str
    mapping_source: str = "none"


@dataclass
class GeneratedDocument:
    template_id: str
    template_name: str
    filename: str
    data: bytes
    pdf_id: Optional[str] = None


@dataclass(frozen=True)
class SuggestionOk:
    mappings: List[FieldMapping]


@dataclass(frozen=True)
class SuggestionUnavailable:
    reason: str


Suggestion = Union[SuggestionOk, SuggestionUnavailable]
