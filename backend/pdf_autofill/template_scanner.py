"""
PDF Template Scanner

Reads the AcroForm field tree of a fillable PDF and describes each terminal
field (qualified name, kind, max length) in the form's native order.
"""

import io
import logging
from collections import Counter
from typing import Dict, List, Optional

from pypdf import PdfReader
from pypdf.errors import PyPdfError
from pypdf.generic import DictionaryObject

from .errors import MalformedDocument
from .models import FieldDescriptor, FieldKind

logger = logging.getLogger(__name__)

# /Ff button flags (PDF 32000-1, table 226)
FF_RADIO = 1 << 15
FF_PUSHBUTTON = 1 << 16


def open_form(form_bytes: bytes) -> PdfReader:
    """Parse ``form_bytes`` into a reader, raising MalformedDocument on failure."""
    if not form_bytes:
        raise MalformedDocument("Form document is empty")
    try:
        reader = PdfReader(io.BytesIO(form_bytes), strict=False)
        if reader.is_encrypted:
            raise MalformedDocument("Encrypted PDFs are not supported")
        # touch the catalog so broken trailers fail here and not mid-fill
        reader.trailer["/Root"].get_object()
    except MalformedDocument:
        raise
    except (PyPdfError, ValueError, KeyError, TypeError, AttributeError) as exc:
        raise MalformedDocument(f"Not a readable PDF: {exc}") from exc
    return reader


def field_kind(field_type: Optional[str], flags: int) -> FieldKind:
    if field_type == "/Tx":
        return FieldKind.TEXT
    if field_type == "/Btn" and not flags & (FF_RADIO | FF_PUSHBUTTON):
        return FieldKind.CHECKBOX
    return FieldKind.UNKNOWN


def _get(node: DictionaryObject, key: str, default=None):
    value = node.get(key)
    return default if value is None else value.get_object()


def iter_terminal_fields(root: DictionaryObject):
    """Yield ``(qualified_name, field_dict, field_type, flags, max_length)`` per terminal field of a catalog."""
    acroform = _get(root, "/AcroForm")
    if acroform is None:
        return
    seen = set()
    for ref in _get(acroform, "/Fields", []):
        yield from _walk(ref.get_object(), "", None, 0, None, seen)


def _walk(node: DictionaryObject, parent_name: str, field_type, flags: int, max_length, seen):
    partial = _get(node, "/T")
    if partial is None:
        name = parent_name
    elif parent_name:
        name = f"{parent_name}.{partial}"
    else:
        name = str(partial)

    field_type = _get(node, "/FT", field_type)
    flags = int(_get(node, "/Ff", flags))
    max_length = _get(node, "/MaxLen", max_length)

    kids = [kid.get_object() for kid in _get(node, "/Kids", [])]
    child_fields = [kid for kid in kids if "/T" in kid]
    if child_fields:
        for kid in child_fields:
            yield from _walk(kid, name, field_type, flags, max_length, seen)
        return

    if not name or name in seen:
        return
    seen.add(name)
    yield name, node, field_type, flags, None if max_length is None else int(max_length)


def read_fields(form_bytes: bytes) -> List[FieldDescriptor]:
    reader = open_form(form_bytes)
    try:
        fields = [
            FieldDescriptor(name=name, kind=field_kind(field_type, flags), max_length=max_length)
            for name, _, field_type, flags, max_length in iter_terminal_fields(reader.trailer["/Root"].get_object())
        ]
    except (PyPdfError, ValueError, KeyError, TypeError, AttributeError, RecursionError) as exc:
        raise MalformedDocument(f"Unreadable form field tree: {exc}") from exc
    logger.debug("Read %d form fields", len(fields))
    return fields


class TemplateScanner:
    """Summarises the fillable fields of a template."""

    def scan(self, form_bytes: bytes) -> Dict:
        fields = read_fields(form_bytes)
        kinds = Counter(f.kind.value for f in fields)
        fillable = [f for f in fields if f.kind is not FieldKind.UNKNOWN]
        return {
            "has_fields": bool(fillable),
            "field_count": len(fields),
            "kinds": {kind.value: kinds.get(kind.value, 0) for kind in FieldKind},
            "fields": [f.to_dict() for f in fields],
        }
