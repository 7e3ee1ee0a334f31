"""Pytest configuration and shared fixtures for the export test suite.

- Forces ``DISABLE_FILE_LOGS=1`` to avoid writing log files during tests.
- Ensures the project root is available on ``sys.path`` for imports.
- Clears ``EXPORT_*`` variables so every test starts from the defaults.
- Provides ``FakeSource``, an in-memory export source that counts calls, and
  a small seeded SQLite database.
"""

import os
import signal
import sqlite3
import sys

os.environ.setdefault("DISABLE_FILE_LOGS", "1")  # Avoid creating log files during tests
from collections import Counter
from datetime import date
from decimal import Decimal
from pathlib import Path

import pytest

# Ensure project root is on sys.path
ROOT = Path(__file__).resolve().parents[1]
root_str = str(ROOT)
if root_str not in sys.path:
    sys.path.insert(0, root_str)

from company_export.exceptions import SourceUnavailable  # noqa: E402
from company_export.pipeline.sources.models import (  # noqa: E402
    Customer,
    CustomField,
    Expense,
    ExpenseCategory,
    Invoice,
    InvoiceItem,
    Organization,
)
from company_export.pipeline.sources.sqlite_source import create_schema  # noqa: E402


@pytest.fixture(autouse=True)
def _clean_export_env(monkeypatch):
    for name in list(os.environ):
        if name.startswith("EXPORT_"):
            monkeypatch.delenv(name, raising=False)
    yield
    # Variables loaded from a test .env file are not tracked by monkeypatch.
    for name in list(os.environ):
        if name.startswith("EXPORT_"):
            os.environ.pop(name)


def make_invoice(invoice_id, organization_id, number=None, **kwargs):
    defaults = {
        "invoice_date": date(2024, 1, 1),
        "customer": Customer(id=1, name="Jane Doe", email="jane@example.com"),
        "items": (
            InvoiceItem(
                id=invoice_id,
                name="Widget",
                quantity=Decimal("1"),
                price=Decimal("10.00"),
                total=Decimal("10.00"),
            ),
        ),
        "total": Decimal("10.00"),
        "currency_symbol": "$",
    }
    defaults.update(kwargs)
    return Invoice(
        id=invoice_id,
        organization_id=organization_id,
        invoice_number=number if number is not None else f"INV-{invoice_id:03d}",
        **defaults,
    )


def make_expense(expense_id, organization_id, amount="12.50", category="Travel", notes=None):
    return Expense(
        id=expense_id,
        organization_id=organization_id,
        amount=Decimal(amount),
        expense_date=date(2024, 2, expense_id % 28 + 1),
        category=ExpenseCategory(id=1, name=category) if category else None,
        notes=notes,
    )


class FakeSource:
    """In-memory ``ExportSource`` with call counting and failure injection.

    Attributes
    ----------
    calls : Counter
        Number of calls per method name.
    window_sizes : list[int]
        Length of every invoice window returned.
    fail_times : dict[str, int]
        Method name mapped to how many more calls should raise a transient
        ``SourceUnavailable``.
    failing_invoice_orgs : set[int]
        Organizations whose invoice windows always fail.
    expense_failure_after : dict[int, int]
        Organization id mapped to the number of rows streamed before the
        expense stream fails.
    open_streams : int
        Expense streams currently open.
    """

    def __init__(self, organizations=(), invoices=None, expenses=None, custom_fields=()):
        self.organizations = sorted(organizations, key=lambda org: org.id)
        self.invoices = {key: sorted(value, key=lambda i: i.id) for key, value in (invoices or {}).items()}
        self.expenses = {key: sorted(value, key=lambda e: e.id) for key, value in (expenses or {}).items()}
        self.custom_fields = list(custom_fields)
        self.calls = Counter()
        self.window_sizes = []
        self.fail_times = {}
        self.failing_invoice_orgs = set()
        self.expense_failure_after = {}
        self.open_streams = 0

    def _enter(self, name):
        self.calls[name] += 1
        remaining = self.fail_times.get(name, 0)
        if remaining:
            self.fail_times[name] = remaining - 1
            raise SourceUnavailable(f"{name} temporarily unavailable")

    def count_invoices(self):
        self._enter("count_invoices")
        return sum(len(value) for value in self.invoices.values())

    def fetch_organizations(self, after_id, limit):
        self._enter("fetch_organizations")
        return [org for org in self.organizations if org.id > after_id][:limit]

    def fetch_invoices(self, organization_id, after_id, limit):
        self._enter("fetch_invoices")
        if organization_id in self.failing_invoice_orgs:
            raise SourceUnavailable("invoice table locked", transient=False)
        window = [
            inv for inv in self.invoices.get(organization_id, []) if inv.id > after_id
        ][:limit]
        self.window_sizes.append(len(window))
        return window

    def stream_expenses(self, organization_id):
        self._enter("stream_expenses")
        self.open_streams += 1
        try:
            fail_after = self.expense_failure_after.get(organization_id)
            for index, expense in enumerate(self.expenses.get(organization_id, [])):
                if fail_after is not None and index >= fail_after:
                    raise SourceUnavailable("connection lost", transient=False)
                yield expense
        finally:
            self.open_streams -= 1

    def load_custom_fields(self, model_type):
        self._enter("load_custom_fields")
        return [field for field in self.custom_fields if field.model_type == model_type]


@pytest.fixture
def fake_source():
    """Two organizations with three and one invoices and some expenses."""
    return FakeSource(
        organizations=[
            Organization(id=1, name="Acme & Co. / Skis!"),
            Organization(id=2, name="Beta"),
        ],
        invoices={
            1: [make_invoice(i, 1) for i in (1, 2, 3)],
            2: [make_invoice(4, 2)],
        },
        expenses={
            1: [make_expense(1, 1), make_expense(2, 1, notes="Taxi, airport")],
            2: [make_expense(3, 2, category=None)],
        },
        custom_fields=[
            CustomField(id=1, name="sku", label="SKU", model_type="Item"),
            CustomField(id=2, name="po", label="PO", model_type="Invoice"),
        ],
    )


def fake_renderer(template_key, bundle):
    return b"%PDF-1.4 " + bundle.invoice.invoice_number.encode("utf-8")


def build_sample_database(path: Path) -> Path:
    """Create a database with one company, three invoices and two expenses."""
    conn = sqlite3.connect(path)
    try:
        create_schema(conn)
        conn.execute(
            "INSERT INTO companies (id, name, logo_path) VALUES (42, 'Acme & Co. / Skis!', NULL)"
        )
        conn.execute(
            "INSERT INTO addresses (company_id, type, name, city, zip, country) "
            "VALUES (42, 'company', 'Acme HQ', 'Oslo', '0150', 'Norway')"
        )
        conn.execute(
            "INSERT INTO customers (id, company_id, name, email) "
            "VALUES (1, 42, 'Jane Doe', 'jane@example.com')"
        )
        conn.execute(
            "INSERT INTO addresses (customer_id, type, name, address_street_1, city) "
            "VALUES (1, 'billing', 'Jane Doe', '1 Main St', 'Bergen')"
        )
        conn.executemany(
            "INSERT INTO invoices (id, company_id, customer_id, invoice_number, invoice_date, "
            "due_date, sub_total, tax, total, currency_symbol, notes) "
            "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
            [
                (1, 42, 1, "INV/001", "2024-01-05", "2024-02-05", 10000, 2500, 12500, "$",
                 "Thanks {CustomerName}! Ref {Unknown}"),
                (2, 42, 1, "INV-002", "2024-01-06", None, 5000, 0, 5000, "$", None),
                (3, 42, None, "INV-003", "2024-01-07", None, 0, 0, 0, "$", None),
            ],
        )
        conn.executemany(
            "INSERT INTO invoice_items (id, invoice_id, name, description, quantity, price, total) "
            "VALUES (?, ?, ?, ?, ?, ?, ?)",
            [
                (1, 1, "Skis", "Alpine", "2", 5000, 10000),
                (2, 2, "Poles", None, "1", 5000, 5000),
            ],
        )
        conn.execute(
            "INSERT INTO custom_fields (id, name, label, model_type, value_template, sort_order) "
            "VALUES (1, 'sku', 'SKU', 'Item', 'SKU-{Name}', 1)"
        )
        conn.execute(
            "INSERT INTO custom_fields (id, name, label, model_type, sort_order) "
            "VALUES (2, 'region', 'Region', 'Invoice', 0)"
        )
        conn.execute(
            "INSERT INTO item_field_values (item_id, custom_field_id, value) VALUES (1, 1, 'SK-100')"
        )
        conn.execute(
            "INSERT INTO taxes (id, invoice_id, name, percent, amount) VALUES (1, 1, 'VAT', '25', 2500)"
        )
        conn.execute("INSERT INTO expense_categories (id, name) VALUES (1, 'Travel')")
        conn.executemany(
            "INSERT INTO expenses (id, company_id, expense_category_id, expense_date, amount, notes) "
            "VALUES (?, ?, ?, ?, ?, ?)",
            [
                (1, 42, 1, "2024-01-10", 1250, "Train, return"),
                (2, 42, None, "2024-01-11", 999, None),
            ],
        )
        conn.commit()
    finally:
        conn.close()
    return path


@pytest.fixture
def sample_database(tmp_path: Path) -> Path:
    return build_sample_database(tmp_path / "company_data.sqlite")


_TEST_TIMEOUT = int(os.environ.get("PYTEST_TEST_TIMEOUT", "30"))


def _timeout_handler(signum, frame):
    raise TimeoutError(f"Test exceeded {_TEST_TIMEOUT} seconds timeout")


def pytest_runtest_setup(item):
    # SIGALRM is unavailable on some platforms.
    if hasattr(signal, "SIGALRM"):
        signal.signal(signal.SIGALRM, _timeout_handler)
        signal.alarm(_TEST_TIMEOUT)


def pytest_runtest_teardown(item, nextitem):
    if hasattr(signal, "SIGALRM"):
        signal.alarm(0)
