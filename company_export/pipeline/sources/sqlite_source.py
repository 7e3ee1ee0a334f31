"""SQLite-backed implementation of the export source interface.

The database is opened read-only, one connection per window fetch (and one
per expense stream), so the source can be shared between worker threads.
Invoice windows are eagerly joined with their customer, items, item custom
field values and taxes using one query per relation per window.

Monetary columns are stored as integer minor units (cents) and exposed as
``Decimal`` values with two decimal places. A row whose columns cannot be
decoded raises ``DataValidationError`` naming the table and row id.

Examples
--------
>>> from pathlib import Path
>>> source = SQLiteExportSource(Path("database/company_data.sqlite"))
>>> first = source.fetch_organizations(after_id=0, limit=50)  # doctest: +SKIP
"""

from __future__ import annotations

import logging
import sqlite3
from collections.abc import Iterator, Sequence
from contextlib import contextmanager
from datetime import date
from decimal import Decimal
from pathlib import Path
from typing import Any

from company_export.exceptions import DataValidationError, SourceUnavailable

from .models import (
    Address,
    Customer,
    CustomField,
    Expense,
    ExpenseCategory,
    Invoice,
    InvoiceItem,
    Organization,
    Tax,
)

logger = logging.getLogger(__name__)

SCHEMA = """
CREATE TABLE IF NOT EXISTS companies (
    id INTEGER PRIMARY KEY,
    name TEXT NOT NULL,
    logo_path TEXT
);
CREATE TABLE IF NOT EXISTS customers (
    id INTEGER PRIMARY KEY,
    company_id INTEGER NOT NULL REFERENCES companies(id),
    name TEXT NOT NULL,
    email TEXT
);
CREATE TABLE IF NOT EXISTS addresses (
    id INTEGER PRIMARY KEY,
    company_id INTEGER REFERENCES companies(id),
    customer_id INTEGER REFERENCES customers(id),
    type TEXT NOT NULL,
    name TEXT,
    address_street_1 TEXT,
    address_street_2 TEXT,
    city TEXT,
    state TEXT,
    zip TEXT,
    country TEXT,
    phone TEXT
);
CREATE TABLE IF NOT EXISTS invoices (
    id INTEGER PRIMARY KEY,
    company_id INTEGER NOT NULL REFERENCES companies(id),
    customer_id INTEGER REFERENCES customers(id),
    invoice_number TEXT NOT NULL,
    invoice_date TEXT,
    due_date TEXT,
    sub_total INTEGER NOT NULL DEFAULT 0,
    tax INTEGER NOT NULL DEFAULT 0,
    total INTEGER NOT NULL DEFAULT 0,
    currency_symbol TEXT NOT NULL DEFAULT '',
    notes TEXT
);
CREATE TABLE IF NOT EXISTS invoice_items (
    id INTEGER PRIMARY KEY,
    invoice_id INTEGER NOT NULL REFERENCES invoices(id),
    name TEXT NOT NULL,
    description TEXT,
    quantity TEXT NOT NULL DEFAULT '1',
    price INTEGER NOT NULL DEFAULT 0,
    total INTEGER NOT NULL DEFAULT 0
);
CREATE TABLE IF NOT EXISTS item_field_values (
    item_id INTEGER NOT NULL REFERENCES invoice_items(id),
    custom_field_id INTEGER NOT NULL REFERENCES custom_fields(id),
    value TEXT
);
CREATE TABLE IF NOT EXISTS taxes (
    id INTEGER PRIMARY KEY,
    invoice_id INTEGER NOT NULL REFERENCES invoices(id),
    name TEXT NOT NULL,
    percent TEXT NOT NULL DEFAULT '0',
    amount INTEGER NOT NULL DEFAULT 0
);
CREATE TABLE IF NOT EXISTS expense_categories (
    id INTEGER PRIMARY KEY,
    name TEXT NOT NULL
);
CREATE TABLE IF NOT EXISTS expenses (
    id INTEGER PRIMARY KEY,
    company_id INTEGER NOT NULL REFERENCES companies(id),
    expense_category_id INTEGER REFERENCES expense_categories(id),
    expense_date TEXT,
    amount INTEGER NOT NULL DEFAULT 0,
    notes TEXT
);
CREATE TABLE IF NOT EXISTS custom_fields (
    id INTEGER PRIMARY KEY,
    name TEXT NOT NULL,
    label TEXT NOT NULL,
    model_type TEXT NOT NULL,
    value_template TEXT NOT NULL DEFAULT '',
    sort_order INTEGER NOT NULL DEFAULT 0
);
"""


def create_schema(connection: sqlite3.Connection) -> None:
    """Create the tables read by :class:`SQLiteExportSource` if missing."""
    connection.executescript(SCHEMA)
    connection.commit()


def _money(value: Any) -> Decimal:
    return Decimal(int(value or 0)).scaleb(-2)


def _decimal(value: Any) -> Decimal:
    return Decimal(str(value)) if value not in (None, "") else Decimal("0")


def _date(value: Any) -> date | None:
    if not value:
        return None
    return date.fromisoformat(str(value)[:10])


@contextmanager
def _decoding(table: str, row_id: Any) -> Iterator[None]:
    """Turn a column decode error into ``DataValidationError`` for one row."""
    try:
        yield
    except (ValueError, TypeError, ArithmeticError) as error:
        raise DataValidationError(
            f"Malformed {table} row {row_id}: {error}",
            context={"table": table, "row_id": row_id},
        ) from error


def _address(row: sqlite3.Row | None) -> Address | None:
    if row is None:
        return None
    return Address(
        name=row["name"],
        address_street_1=row["address_street_1"],
        address_street_2=row["address_street_2"],
        city=row["city"],
        state=row["state"],
        zip=row["zip"],
        country=row["country"],
        phone=row["phone"],
    )


def _placeholders(values: Sequence[Any]) -> str:
    return ",".join("?" for _ in values)


class SQLiteExportSource:
    """Read-only export source over a SQLite database file.

    Parameters
    ----------
    database_path : Path
        Path to an existing SQLite database containing the tables created by
        :func:`create_schema`.
    """

    def __init__(self, database_path: Path) -> None:
        self.database_path = Path(database_path)

    @contextmanager
    def _connect(self) -> Iterator[sqlite3.Connection]:
        uri = f"{self.database_path.resolve().as_uri()}?mode=ro"
        try:
            connection = sqlite3.connect(uri, uri=True)
        except sqlite3.Error as error:
            raise SourceUnavailable(
                f"Cannot open database {self.database_path}: {error}",
                context={"database": str(self.database_path)},
            ) from error
        connection.row_factory = sqlite3.Row
        try:
            yield connection
        except sqlite3.Error as error:
            raise SourceUnavailable(
                f"Query against {self.database_path} failed: {error}",
                context={"database": str(self.database_path)},
            ) from error
        finally:
            connection.close()

    def count_invoices(self) -> int:
        with self._connect() as conn:
            return int(conn.execute("SELECT COUNT(*) FROM invoices").fetchone()[0])

    def fetch_organizations(self, after_id: int, limit: int) -> list[Organization]:
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT id, name, logo_path FROM companies "
                "WHERE id > ? ORDER BY id LIMIT ?",
                (after_id, limit),
            ).fetchall()
            if not rows:
                return []
            ids = [row["id"] for row in rows]
            addresses = {
                row["company_id"]: _address(row)
                for row in conn.execute(
                    "SELECT * FROM addresses WHERE type = 'company' "
                    f"AND company_id IN ({_placeholders(ids)}) ORDER BY id",
                    ids,
                )
            }
        return [
            Organization(
                id=row["id"],
                name=row["name"],
                logo_path=row["logo_path"],
                address=addresses.get(row["id"]),
            )
            for row in rows
        ]

    def fetch_invoices(
        self, organization_id: int, after_id: int, limit: int
    ) -> list[Invoice]:
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT i.*, c.name AS customer_name, c.email AS customer_email "
                "FROM invoices i LEFT JOIN customers c ON c.id = i.customer_id "
                "WHERE i.company_id = ? AND i.id > ? ORDER BY i.id LIMIT ?",
                (organization_id, after_id, limit),
            ).fetchall()
            if not rows:
                return []
            invoice_ids = [row["id"] for row in rows]
            customer_ids = sorted(
                {row["customer_id"] for row in rows if row["customer_id"] is not None}
            )
            company_address = _address(
                conn.execute(
                    "SELECT * FROM addresses WHERE type = 'company' "
                    "AND company_id = ? ORDER BY id LIMIT 1",
                    (organization_id,),
                ).fetchone()
            )
            customer_addresses: dict[tuple[int, str], Address | None] = {}
            if customer_ids:
                for row in conn.execute(
                    "SELECT * FROM addresses WHERE type IN ('billing', 'shipping') "
                    f"AND customer_id IN ({_placeholders(customer_ids)}) ORDER BY id",
                    customer_ids,
                ):
                    customer_addresses.setdefault(
                        (row["customer_id"], row["type"]), _address(row)
                    )
            item_rows = conn.execute(
                "SELECT * FROM invoice_items "
                f"WHERE invoice_id IN ({_placeholders(invoice_ids)}) "
                "ORDER BY invoice_id, id",
                invoice_ids,
            ).fetchall()
            item_ids = [row["id"] for row in item_rows]
            field_values: dict[int, dict[int, str]] = {}
            if item_ids:
                for row in conn.execute(
                    "SELECT item_id, custom_field_id, value FROM item_field_values "
                    f"WHERE item_id IN ({_placeholders(item_ids)})",
                    item_ids,
                ):
                    if row["value"] is not None:
                        field_values.setdefault(row["item_id"], {})[
                            row["custom_field_id"]
                        ] = row["value"]
            tax_rows = conn.execute(
                "SELECT * FROM taxes "
                f"WHERE invoice_id IN ({_placeholders(invoice_ids)}) "
                "ORDER BY invoice_id, id",
                invoice_ids,
            ).fetchall()

        items: dict[int, list[InvoiceItem]] = {}
        for row in item_rows:
            with _decoding("invoice_items", row["id"]):
                item = InvoiceItem(
                    id=row["id"],
                    name=row["name"],
                    description=row["description"],
                    quantity=_decimal(row["quantity"]),
                    price=_money(row["price"]),
                    total=_money(row["total"]),
                    custom_values=field_values.get(row["id"], {}),
                )
            items.setdefault(row["invoice_id"], []).append(item)
        taxes: dict[int, list[Tax]] = {}
        for row in tax_rows:
            with _decoding("taxes", row["id"]):
                tax = Tax(
                    id=row["id"],
                    name=row["name"],
                    percent=_decimal(row["percent"]),
                    amount=_money(row["amount"]),
                )
            taxes.setdefault(row["invoice_id"], []).append(tax)

        invoices = []
        for row in rows:
            customer = None
            if row["customer_id"] is not None:
                customer = Customer(
                    id=row["customer_id"],
                    name=row["customer_name"] or "",
                    email=row["customer_email"],
                    billing_address=customer_addresses.get(
                        (row["customer_id"], "billing")
                    ),
                    shipping_address=customer_addresses.get(
                        (row["customer_id"], "shipping")
                    ),
                )
            with _decoding("invoices", row["id"]):
                invoice = Invoice(
                    id=row["id"],
                    organization_id=row["company_id"],
                    invoice_number=row["invoice_number"],
                    invoice_date=_date(row["invoice_date"]),
                    due_date=_date(row["due_date"]),
                    customer=customer,
                    items=tuple(items.get(row["id"], ())),
                    taxes=tuple(taxes.get(row["id"], ())),
                    notes=row["notes"],
                    sub_total=_money(row["sub_total"]),
                    tax_total=_money(row["tax"]),
                    total=_money(row["total"]),
                    currency_symbol=row["currency_symbol"] or "",
                    company_address=company_address,
                )
            invoices.append(invoice)
        return invoices

    def stream_expenses(self, organization_id: int) -> Iterator[Expense]:
        """Stream an organization's expenses one row at a time, ordered by id.

        The underlying SQLite cursor is iterated lazily, so only the current
        row is materialized. The connection is closed when the generator is
        exhausted or closed.
        """
        with self._connect() as conn:
            cursor = conn.execute(
                "SELECT e.id, e.company_id, e.expense_date, e.amount, e.notes, "
                "e.expense_category_id, ec.name AS category_name "
                "FROM expenses e "
                "LEFT JOIN expense_categories ec ON ec.id = e.expense_category_id "
                "WHERE e.company_id = ? ORDER BY e.id",
                (organization_id,),
            )
            for row in cursor:
                category = None
                if row["expense_category_id"] is not None:
                    category = ExpenseCategory(
                        id=row["expense_category_id"],
                        name=row["category_name"] or "",
                    )
                with _decoding("expenses", row["id"]):
                    expense = Expense(
                        id=row["id"],
                        organization_id=row["company_id"],
                        amount=_money(row["amount"]),
                        expense_date=_date(row["expense_date"]),
                        category=category,
                        notes=row["notes"],
                    )
                yield expense

    def load_custom_fields(self, model_type: str) -> list[CustomField]:
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT * FROM custom_fields WHERE model_type = ? "
                "ORDER BY sort_order, id",
                (model_type,),
            ).fetchall()
        logger.debug("Loaded %d custom fields for model_type=%s", len(rows), model_type)
        return [
            CustomField(
                id=row["id"],
                name=row["name"],
                label=row["label"],
                model_type=row["model_type"],
                value_template=row["value_template"] or "",
                order=row["sort_order"],
            )
            for row in rows
        ]
