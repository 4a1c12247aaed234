"""
PDF auto-fill package.

Turns data extracted from an invoice or estimate into filled copies of
arbitrary fillable PDF forms:
  - reading form fields and heuristic/AI field mapping
  - filling forms and naming the generated files
  - storing templates with their saved mappings and filename patterns
"""

from .errors import (
    AutofillError,
    ExtractionFailed,
    GenerationFailed,
    MalformedDocument,
    TemplateNotFound,
)
from .service import AutofillService

__all__ = [
    "AutofillService",
    "AutofillError",
    "ExtractionFailed",
    "GenerationFailed",
    "MalformedDocument",
    "TemplateNotFound",
]
