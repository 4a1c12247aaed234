"""
Writes mapped invoice values into a copy of a fillable PDF.

Each mapping entry produces one value (manual text, rendered line items or a
data key lookup) which is then written according to the target field's
kind: text is truncated to the field's /MaxLen, checkboxes are only ever
switched on.
"""

from __future__ import annotations

import io
import logging
from typing import Dict, List, Sequence

from pypdf import PdfWriter
from pypdf.errors import PyPdfError
from pypdf.generic import BooleanObject, DictionaryObject, NameObject, TextStringObject

from .errors import MalformedDocument
from .models import LINE_ITEMS_KEY, ExtractedData, FieldKind, FieldMapping, format_value
from .template_scanner import field_kind, iter_terminal_fields, open_form

logger = logging.getLogger(__name__)

CHECKED_VALUES = frozenset({"true", "1", "yes"})
DEFAULT_ON_STATE = "/Yes"


def derive_value(mapping: FieldMapping, data: ExtractedData) -> str:
    """Value for one mapping entry: manual text, then line items, then a data key."""
    if mapping.is_manual:
        return mapping.manual_value or ""
    if mapping.source_key == LINE_ITEMS_KEY:
        return data.render_line_items()
    return format_value(data.get(mapping.source_key))


def is_checked(value: str) -> bool:
    return value.lower() in CHECKED_VALUES


def truncate(value: str, max_length) -> str:
    if max_length is not None and len(value) > max_length:
        return value[:max_length]
    return value


def fill_pdf_template(
    form_bytes: bytes,
    data: ExtractedData,
    mappings: Sequence[FieldMapping],
) -> bytes:
    """
    Fill a copy of a PDF form.

    Args:
        form_bytes: The fillable template. Never modified.
        data: Extracted document data.
        mappings: Field assignments; entries naming fields the form does not
            have are skipped.

    Returns:
        Bytes of the filled PDF.
    """
    reader = open_form(form_bytes)
    try:
        writer = PdfWriter(clone_from=reader)
        fields = {
            name: (node, field_kind(field_type, flags), max_length)
            for name, node, field_type, flags, max_length in iter_terminal_fields(writer.root_object)
        }
    except (PyPdfError, ValueError, KeyError, TypeError, AttributeError, RecursionError) as exc:
        raise MalformedDocument(f"Unreadable form field tree: {exc}") from exc

    text_values: Dict[str, str] = {}
    checked: List[str] = []

    for mapping in mappings:
        target = fields.get(mapping.field_name)
        if target is None:
            logger.debug("Field '%s' not in template, skipping", mapping.field_name)
            continue
        node, kind, max_length = target
        value = derive_value(mapping, data)

        if kind is FieldKind.TEXT:
            value = truncate(value, max_length)
            node[NameObject("/V")] = TextStringObject(value)
            text_values[mapping.field_name] = value
        elif kind is FieldKind.CHECKBOX:
            if is_checked(value):
                _check(node)
                checked.append(mapping.field_name)
        elif kind is FieldKind.UNKNOWN:
            logger.debug("Field '%s' has an unsupported type, not written", mapping.field_name)

    if text_values:
        # values only; viewers rebuild the text appearances
        acroform = writer.root_object["/AcroForm"]
        acroform[NameObject("/NeedAppearances")] = BooleanObject(True)

    buffer = io.BytesIO()
    writer.write(buffer)
    logger.info("Filled %d text and %d checkbox fields", len(text_values), len(checked))
    return buffer.getvalue()


def _widgets(node: DictionaryObject) -> List[DictionaryObject]:
    kids = node.get("/Kids")
    if kids is None:
        return [node]
    return [kid.get_object() for kid in kids.get_object()]


def _on_state(widget: DictionaryObject) -> str:
    appearance = widget.get("/AP")
    if appearance is not None:
        normal = appearance.get_object().get("/N")
        if normal is not None:
            for state in normal.get_object().keys():
                if state != "/Off":
                    return state
    return DEFAULT_ON_STATE


def _check(node: DictionaryObject) -> None:
    widgets = _widgets(node)
    on_state = _on_state(widgets[0]) if widgets else DEFAULT_ON_STATE
    node[NameObject("/V")] = NameObject(on_state)
    for widget in widgets:
        widget[NameObject("/AS")] = NameObject(_on_state(widget))
