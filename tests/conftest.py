from __future__ import annotations

import io
import sys
from pathlib import Path
from types import SimpleNamespace
from typing import Dict, List, Optional

import pytest
from pypdf import PdfReader

BACKEND = Path(__file__).resolve().parents[1] / "backend"
if str(BACKEND) not in sys.path:
    sys.path.insert(0, str(BACKEND))

from pdf_autofill.models import ExtractedData, LineItem  # noqa: E402

_KIND_ENTRIES = {
    "text": "/FT /Tx /DA (/Helv 10 Tf 0 g)",
    "checkbox": "/FT /Btn",
    "radio": "/FT /Btn /Ff 49152",
    "pushbutton": "/FT /Btn /Ff 65536",
    "choice": "/FT /Ch /Opt [(A) (B)]",
    "signature": "/FT /Sig",
}


def _pdf_string(value: str) -> str:
    escaped = value.replace("\\", "\\\\").replace("(", r"\(").replace(")", r"\)")
    return f"({escaped})"


def build_form_pdf(fields: List[Dict], with_acroform: bool = True) -> bytes:
    """
    Assemble a one-page AcroForm PDF by hand.

    Each field entry is ``{"name", "kind", "max_length"?, "on_state"?, "kids"?}``;
    ``kids`` holds child specs (``name`` + optional ``max_length``) that inherit
    the parent's kind.
    """
    objects: Dict[int, str] = {}
    annots: List[int] = []
    top_level: List[int] = []
    next_id = [7]

    def alloc() -> int:
        num = next_id[0]
        next_id[0] += 1
        return num

    def widget_entries(entry: Dict, index: int) -> str:
        y = 740 - 30 * index
        entries = f"/Type /Annot /Subtype /Widget /Rect [72 {y} 300 {y + 20}] /P 4 0 R /F 4"
        if entry.get("kind") == "checkbox" or entry.get("_checkbox"):
            on = entry.get("on_state", "Yes")
            entries += f" /AS /Off /AP << /N << /{on} 6 0 R /Off 5 0 R >> >>"
        return entries

    counter = [0]
    for entry in fields:
        num = alloc()
        top_level.append(num)
        kind = _KIND_ENTRIES[entry.get("kind", "text")]
        body = f"/T {_pdf_string(entry['name'])} {kind}"
        if entry.get("max_length") is not None:
            body += f" /MaxLen {entry['max_length']}"
        kids = entry.get("kids")
        if kids:
            kid_nums = []
            for kid in kids:
                kid_num = alloc()
                kid_nums.append(kid_num)
                annots.append(kid_num)
                kid_entry = dict(kid, _checkbox=entry.get("kind") == "checkbox", on_state=entry.get("on_state", "Yes"))
                kid_body = f"/T {_pdf_string(kid['name'])} /Parent {num} 0 R " + widget_entries(kid_entry, counter[0])
                if kid.get("max_length") is not None:
                    kid_body += f" /MaxLen {kid['max_length']}"
                counter[0] += 1
                objects[kid_num] = f"<< {kid_body} >>"
            body += " /Kids [" + " ".join(f"{n} 0 R" for n in kid_nums) + "]"
        else:
            annots.append(num)
            body += " " + widget_entries(entry, counter[0])
            counter[0] += 1
        objects[num] = f"<< {body} >>"

    acroform = ""
    if with_acroform:
        field_refs = " ".join(f"{n} 0 R" for n in top_level)
        acroform = (
            f" /AcroForm << /Fields [{field_refs}] /DA (/Helv 0 Tf 0 g)"
            " /DR << /Font << /Helv 3 0 R >> >> >>"
        )
    annot_refs = " ".join(f"{n} 0 R" for n in annots)
    appearance = "<< /Type /XObject /Subtype /Form /BBox [0 0 20 20] /Length 0 >>\nstream\n\nendstream"

    objects[1] = f"<< /Type /Catalog /Pages 2 0 R{acroform} >>"
    objects[2] = "<< /Type /Pages /Kids [4 0 R] /Count 1 >>"
    objects[3] = "<< /Type /Font /Subtype /Type1 /BaseFont /Helvetica /Encoding /WinAnsiEncoding >>"
    objects[4] = (
        "<< /Type /Page /Parent 2 0 R /MediaBox [0 0 612 792]"
        f" /Resources << /Font << /Helv 3 0 R >> >> /Annots [{annot_refs}] >>"
    )
    objects[5] = appearance
    objects[6] = appearance

    data = bytearray(b"%PDF-1.7\n")
    offsets = {}
    for num in sorted(objects):
        offsets[num] = len(data)
        data.extend(f"{num} 0 obj\n{objects[num]}\nendobj\n".encode("latin-1"))
    xref_offset = len(data)
    size = max(objects) + 1
    data.extend(f"xref\n0 {size}\n".encode("ascii"))
    data.extend(b"0000000000 65535 f \n")
    for num in range(1, size):
        data.extend(f"{offsets[num]:010d} 00000 n \n".encode("ascii"))
    data.extend(f"trailer\n<< /Size {size} /Root 1 0 R >>\n".encode("ascii"))
    data.extend(f"startxref\n{xref_offset}\n%%EOF\n".encode("ascii"))
    return bytes(data)


def field_values(pdf_bytes: bytes) -> Dict[str, Optional[str]]:
    """Field name -> /V as read back by pypdf."""
    reader = PdfReader(io.BytesIO(pdf_bytes))
    return {name: field.get("/V") for name, field in (reader.get_fields() or {}).items()}


def widget_states(pdf_bytes: bytes) -> Dict[str, Optional[str]]:
    reader = PdfReader(io.BytesIO(pdf_bytes))
    states = {}
    for annot in reader.pages[0].get("/Annots", []):
        annot = annot.get_object()
        if "/T" in annot:
            states[str(annot["/T"])] = annot.get("/AS")
    return states


class FakeCompletions:
    def __init__(self, replies):
        self.replies = list(replies)
        self.calls = []

    def create(self, **kwargs):
        self.calls.append(kwargs)
        reply = self.replies.pop(0)
        if isinstance(reply, Exception):
            raise reply
        return SimpleNamespace(choices=[SimpleNamespace(message=SimpleNamespace(content=reply))])


class FakeOpenAI:
    """Stands in for ``openai.OpenAI``; each reply is a string or an exception to raise."""

    def __init__(self, *replies):
        self.completions = FakeCompletions(replies)
        self.chat = SimpleNamespace(completions=self.completions)


@pytest.fixture
def make_form():
    return build_form_pdf


@pytest.fixture
def invoice_form() -> bytes:
    return build_form_pdf(
        [
            {"name": "BillTo_Name", "kind": "text"},
            {"name": "Total", "kind": "text"},
            {"name": "Paid", "kind": "checkbox"},
            {"name": "Signature", "kind": "signature"},
        ]
    )


@pytest.fixture
def sample_data() -> ExtractedData:
    return ExtractedData(
        customer_name="Jane Doe",
        customer_address="12 Elm St",
        company_name="Cool Air LLC",
        service_date="2024-05-01",
        invoice_number="INV#42",
        subtotal=140.0,
        tax=10.0,
        total=150.0,
        notes="Replaced filter",
        line_items=[
            LineItem(description="Filter", quantity=2, unit_price=20.0, amount=40.0),
            LineItem(description="Labor", quantity=1, unit_price=100.0, amount=100.0),
        ],
    )
