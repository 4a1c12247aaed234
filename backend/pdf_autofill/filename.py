"""Output filename patterns such as ``{TemplateName}_{CustomerName}_{Date}``."""

import re
from typing import Dict, List, Optional

from .models import ExtractedData, format_value

DEFAULT_PATTERN = "{TemplateName}_{CustomerName}_{Date}"
EXTENSION = ".pdf"

PLACEHOLDERS: List[Dict[str, str]] = [
    {"label": "Customer Name", "token": "{CustomerName}"},
    {"label": "Date", "token": "{Date}"},
    {"label": "Invoice #", "token": "{InvoiceNumber}"},
    {"label": "Template Name", "token": "{TemplateName}"},
]

_DISALLOWED = re.compile(r"[^A-Za-z0-9\-_]")


def sanitize(value) -> str:
    """Drop every character outside [A-Za-z0-9-_]; falsy values become "Unknown"."""
    if not value:
        return "Unknown"
    return _DISALLOWED.sub("", format_value(value))


def render_filename(pattern: Optional[str], data: ExtractedData, template_name: str) -> str:
    values = {
        "{CustomerName}": data.customer_name,
        "{Date}": data.service_date,
        "{InvoiceNumber}": data.invoice_number,
        "{TemplateName}": template_name,
    }
    filename = pattern or DEFAULT_PATTERN
    for token, value in values.items():
        if token in filename:
            filename = filename.replace(token, sanitize(value))
    return filename + EXTENSION
