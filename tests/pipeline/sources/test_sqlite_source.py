"""Tests for the SQLite export source."""

import sqlite3
from datetime import date
from decimal import Decimal
from pathlib import Path

import pytest

from company_export.exceptions import DataValidationError, SourceUnavailable
from company_export.pipeline.sources.sqlite_source import SQLiteExportSource


def test_count_and_fetch_organizations(sample_database: Path):
    source = SQLiteExportSource(sample_database)
    assert source.count_invoices() == 3
    orgs = source.fetch_organizations(after_id=0, limit=10)
    assert [o.id for o in orgs] == [42]
    assert orgs[0].name == "Acme & Co. / Skis!"
    assert orgs[0].address.city == "Oslo"
    assert source.fetch_organizations(after_id=42, limit=10) == []


def test_fetch_invoices_eager_loads_relations(sample_database: Path):
    source = SQLiteExportSource(sample_database)
    invoices = source.fetch_invoices(42, after_id=0, limit=10)
    assert [i.id for i in invoices] == [1, 2, 3]
    first = invoices[0]
    assert first.invoice_number == "INV/001"
    assert first.invoice_date == date(2024, 1, 5)
    assert first.total == Decimal("125.00")
    assert first.customer.name == "Jane Doe"
    assert first.customer.billing_address.address_street_1 == "1 Main St"
    assert first.customer.shipping_address is None
    assert first.items[0].quantity == Decimal("2")
    assert first.items[0].price == Decimal("50.00")
    assert first.items[0].custom_values == {1: "SK-100"}
    assert first.taxes[0].name == "VAT"
    assert "Oslo 0150" in first.company_address_block()
    assert invoices[2].customer is None
    assert invoices[2].items == ()


def test_fetch_invoices_respects_window(sample_database: Path):
    source = SQLiteExportSource(sample_database)
    assert [i.id for i in source.fetch_invoices(42, after_id=0, limit=2)] == [1, 2]
    assert [i.id for i in source.fetch_invoices(42, after_id=2, limit=2)] == [3]
    assert source.fetch_invoices(7, after_id=0, limit=2) == []


def test_stream_expenses_joins_category(sample_database: Path):
    source = SQLiteExportSource(sample_database)
    expenses = list(source.stream_expenses(42))
    assert [e.id for e in expenses] == [1, 2]
    assert expenses[0].category.name == "Travel"
    assert expenses[0].amount == Decimal("12.50")
    assert expenses[1].category is None
    assert expenses[1].notes is None


def test_load_custom_fields_filters_by_model_type(sample_database: Path):
    source = SQLiteExportSource(sample_database)
    fields = source.load_custom_fields("Item")
    assert [(f.id, f.label, f.value_template) for f in fields] == [(1, "SKU", "SKU-{Name}")]


def test_missing_database_raises_source_unavailable(tmp_path: Path):
    source = SQLiteExportSource(tmp_path / "missing.sqlite")
    with pytest.raises(SourceUnavailable):
        source.count_invoices()
    assert not (tmp_path / "missing.sqlite").exists()


def _corrupt(database: Path, statement: str) -> None:
    conn = sqlite3.connect(database)
    try:
        conn.execute(statement)
        conn.commit()
    finally:
        conn.close()


def test_malformed_expense_row_raises_data_validation_error(sample_database: Path):
    _corrupt(sample_database, "UPDATE expenses SET expense_date = '31/01/2024' WHERE id = 2")
    stream = SQLiteExportSource(sample_database).stream_expenses(42)
    assert next(stream).id == 1
    with pytest.raises(DataValidationError) as excinfo:
        next(stream)
    assert excinfo.value.context == {"table": "expenses", "row_id": 2}


def test_malformed_item_amount_raises_data_validation_error(sample_database: Path):
    _corrupt(sample_database, "UPDATE invoice_items SET price = 'abc' WHERE id = 1")
    with pytest.raises(DataValidationError) as excinfo:
        SQLiteExportSource(sample_database).fetch_invoices(42, after_id=0, limit=10)
    assert excinfo.value.context["table"] == "invoice_items"
    assert excinfo.value.context["row_id"] == 1
