import pytest

from pdf_autofill.errors import MalformedDocument
from pdf_autofill.models import FieldKind
from pdf_autofill.template_scanner import TemplateScanner, read_fields


def test_reads_fields_in_form_order_with_kinds(make_form):
    pdf = make_form(
        [
            {"name": "Customer_Name", "kind": "text", "max_length": 30},
            {"name": "Paid", "kind": "checkbox"},
            {"name": "Payment", "kind": "radio"},
            {"name": "Print", "kind": "pushbutton"},
            {"name": "State", "kind": "choice"},
            {"name": "Signature", "kind": "signature"},
        ]
    )
    fields = read_fields(pdf)
    assert [(f.name, f.kind) for f in fields] == [
        ("Customer_Name", FieldKind.TEXT),
        ("Paid", FieldKind.CHECKBOX),
        ("Payment", FieldKind.UNKNOWN),
        ("Print", FieldKind.UNKNOWN),
        ("State", FieldKind.UNKNOWN),
        ("Signature", FieldKind.UNKNOWN),
    ]
    assert fields[0].max_length == 30
    assert fields[1].max_length is None


def test_hierarchical_fields_get_qualified_names(make_form):
    pdf = make_form(
        [
            {"name": "customer", "kind": "text", "kids": [{"name": "name"}, {"name": "phone", "max_length": 12}]},
        ]
    )
    fields = read_fields(pdf)
    assert [f.name for f in fields] == ["customer.name", "customer.phone"]
    assert all(f.kind is FieldKind.TEXT for f in fields)
    assert fields[1].max_length == 12


def test_names_with_special_characters(make_form):
    fields = read_fields(make_form([{"name": "Total (USD)", "kind": "text"}]))
    assert fields[0].name == "Total (USD)"


def test_document_without_form_has_no_fields(make_form):
    assert read_fields(make_form([], with_acroform=False)) == []


@pytest.mark.parametrize("payload", [b"", b"definitely not a pdf"])
def test_unparseable_bytes_raise(payload):
    with pytest.raises(MalformedDocument):
        read_fields(payload)


def test_scan_summary(invoice_form):
    summary = TemplateScanner().scan(invoice_form)
    assert summary["has_fields"] is True
    assert summary["field_count"] == 4
    assert summary["kinds"] == {"text": 2, "checkbox": 1, "unknown": 1}
    assert summary["fields"][0] == {"name": "BillTo_Name", "kind": "text", "max_length": None}


def test_scan_of_signature_only_form(make_form):
    summary = TemplateScanner().scan(make_form([{"name": "Sign here", "kind": "signature"}]))
    assert summary["has_fields"] is False
    assert summary["field_count"] == 1
