import datetime as dt

from pdf_autofill.models import (
    LINE_ITEMS_KEY,
    MANUAL_KEY,
    ExtractedData,
    FieldMapping,
    LineItem,
    TemplateRecord,
    dedupe_mappings,
    format_value,
    to_number,
)


def test_format_value_matches_browser_rendering():
    assert format_value(None) == ""
    assert format_value(150.0) == "150"
    assert format_value(12.5) == "12.5"
    assert format_value(True) == "true"
    assert format_value(3) == "3"
    assert format_value("INV-1") == "INV-1"


def test_to_number_is_lenient():
    assert to_number("$1,250.50") == 1250.5
    assert to_number(7) == 7.0
    assert to_number("") is None
    assert to_number("n/a") is None
    assert to_number(True) is None


def test_from_dict_coerces_and_keeps_extra_scalars():
    data = ExtractedData.from_dict(
        {
            "customerName": "Jane Doe",
            "invoiceNumber": 42,
            "total": "$150.00",
            "lineItems": [{"description": "Filter", "quantity": "2", "unitPrice": 20, "amount": 40}, "junk"],
            "poNumber": "PO-9",
            "nested": {"ignored": True},
        }
    )
    assert data.customer_name == "Jane Doe"
    assert data.invoice_number == "42"
    assert data.total == 150.0
    assert data.line_items == [LineItem("Filter", 2.0, 20.0, 40.0)]
    assert data.extra == {"poNumber": "PO-9"}


def test_get_returns_none_for_absent_keys(sample_data):
    assert sample_data.get("customerName") == "Jane Doe"
    assert sample_data.get("tax") == 10.0
    assert sample_data.get("doesNotExist") is None


def test_keys_list_schema_then_extra_then_line_items():
    data = ExtractedData(extra={"poNumber": "PO-9"})
    keys = data.keys()
    assert keys[0] == "customerName"
    assert keys[-2:] == ["poNumber", LINE_ITEMS_KEY]


def test_to_dict_uses_data_keys(sample_data):
    out = sample_data.to_dict()
    assert out["serviceDate"] == "2024-05-01"
    assert out["lineItems"][0] == {"description": "Filter", "quantity": 2, "unitPrice": 20.0, "amount": 40.0}
    assert ExtractedData.from_dict(out) == sample_data


def test_line_items_render_one_per_line(sample_data):
    assert sample_data.render_line_items() == "2x Filter ($40)\n1x Labor ($100)"


def test_dedupe_keeps_last_entry_per_field():
    mappings = dedupe_mappings(
        [
            FieldMapping("Name", "customerName"),
            FieldMapping("Total", "total"),
            FieldMapping("Name", MANUAL_KEY, "Walk-in"),
        ]
    )
    assert [m.field_name for m in mappings] == ["Name", "Total"]
    assert mappings[0].is_manual
    assert mappings[0].manual_value == "Walk-in"


def test_template_record_metadata_survives_json_shape():
    record = TemplateRecord(
        id="a" * 32,
        name="Work Order",
        created_at=dt.datetime(2024, 5, 1, 12, 0, tzinfo=dt.timezone.utc),
        saved_mappings=[FieldMapping("Total", "total")],
        filename_pattern="{InvoiceNumber}",
    )
    restored = TemplateRecord.from_metadata(record.to_metadata())
    assert restored == record
