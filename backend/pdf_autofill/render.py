"""Raster previews of filled documents (PyMuPDF)."""

import logging

import fitz

from .errors import MalformedDocument

logger = logging.getLogger(__name__)

FORMATS = {"png": "png", "jpg": "jpg", "jpeg": "jpg"}
MEDIA_TYPES = {"png": "image/png", "jpg": "image/jpeg"}


def _refresh_widgets(page) -> None:
    """Rebuild text field appearances; filled forms only carry values."""
    for widget in page.widgets():
        if widget.field_type != fitz.PDF_WIDGET_TYPE_TEXT:
            continue
        try:
            widget.update()
        except (RuntimeError, ValueError) as exc:
            logger.warning("Could not refresh field '%s' for preview: %s", widget.field_name, exc)


def render_page(pdf_bytes: bytes, fmt: str = "png", zoom: float = 2.0, page: int = 0) -> bytes:
    """Rasterise one page of ``pdf_bytes`` into PNG or JPEG bytes."""
    output = FORMATS.get(fmt.lower())
    if output is None:
        raise ValueError(f"Unsupported preview format '{fmt}'")

    try:
        doc = fitz.open(stream=pdf_bytes, filetype="pdf")
    except (RuntimeError, ValueError) as exc:
        raise MalformedDocument(f"Cannot render document: {exc}") from exc

    try:
        if not 0 <= page < doc.page_count:
            raise ValueError(f"Page {page} out of range (document has {doc.page_count})")
        pdf_page = doc[page]
        _refresh_widgets(pdf_page)
        pixmap = pdf_page.get_pixmap(matrix=fitz.Matrix(zoom, zoom))
        result = pixmap.tobytes(output)
    finally:
        doc.close()

    logger.debug("Rendered page %d as %s (%d bytes)", page, output, len(result))
    return result
