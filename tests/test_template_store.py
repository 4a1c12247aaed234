import json

import pytest

from pdf_autofill.errors import TemplateNotFound
from pdf_autofill.models import FieldMapping
from pdf_autofill.template_store import TemplateStore


@pytest.fixture
def store(tmp_path):
    return TemplateStore(tmp_path)


def test_create_and_get(store, invoice_form):
    record = store.create("Invoice", invoice_form)
    loaded = store.get(record.id)

    assert loaded.name == "Invoice"
    assert loaded.data == invoice_form
    assert loaded.saved_mappings is None
    assert loaded.filename_pattern is None
    assert loaded.created_at.tzinfo is not None


def test_list_is_newest_first_without_payload(store, invoice_form):
    older = store.create("Older", invoice_form)
    newer = store.create("Newer", invoice_form)
    meta_path = store.templates_dir / f"{older.id}.json"
    meta = json.loads(meta_path.read_text())
    meta["created_at"] = "2020-01-01T00:00:00+00:00"
    meta_path.write_text(json.dumps(meta))

    listing = store.list_metadata()
    assert [r.id for r in listing] == [newer.id, older.id]
    assert all(r.data == b"" for r in listing)


def test_unreadable_metadata_is_skipped(store, invoice_form):
    store.create("Good", invoice_form)
    (store.templates_dir / "broken.json").write_text("{not json")
    assert [r.name for r in store.list_metadata()] == ["Good"]


def test_update_settings_is_partial(store, invoice_form):
    record = store.create("Invoice", invoice_form)
    store.update_settings(record.id, filename_pattern="{InvoiceNumber}")
    store.update_settings(record.id, mappings=[FieldMapping("Total", "total")])
    store.update_settings(record.id, filename_pattern="")

    loaded = store.get(record.id)
    assert loaded.filename_pattern == "{InvoiceNumber}"
    assert loaded.saved_mappings == [FieldMapping("Total", "total")]
    assert loaded.data == invoice_form


def test_update_settings_can_clear_mappings(store, invoice_form):
    record = store.create("Invoice", invoice_form)
    store.update_settings(record.id, mappings=[FieldMapping("Total", "total")])
    store.update_settings(record.id, mappings=[])
    assert store.get(record.id).saved_mappings == []


def test_delete(store, invoice_form):
    record = store.create("Invoice", invoice_form)
    store.delete(record.id)

    assert store.list_metadata() == []
    assert list(store.templates_dir.iterdir()) == []
    with pytest.raises(TemplateNotFound):
        store.get(record.id)
    with pytest.raises(TemplateNotFound):
        store.delete(record.id)


@pytest.mark.parametrize("template_id", ["0" * 32, "../etc/passwd", "not-a-uuid", ""])
def test_unknown_or_invalid_ids(store, template_id):
    with pytest.raises(TemplateNotFound):
        store.get(template_id)
    with pytest.raises(TemplateNotFound):
        store.update_settings(template_id, filename_pattern="x")
