"""Read-only record types consumed by the export pipeline.

The export never mutates these records; they are frozen dataclasses built by
a source (see ``sqlite_source.py``) and handed to the cursors, the bundle
builder and the tabular writer.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal


@dataclass(frozen=True)
class Address:
    """Postal address block attached to a company or a customer."""

    name: str | None = None
    address_street_1: str | None = None
    address_street_2: str | None = None
    city: str | None = None
    state: str | None = None
    zip: str | None = None
    country: str | None = None
    phone: str | None = None

    def format_block(self) -> str:
        """Return the address as multi-line text, skipping empty parts.

        Examples
        --------
        >>> Address(name="Acme", city="Oslo", zip="0150").format_block()
        'Acme\\nOslo 0150'
        """
        city_line = " ".join(
            part for part in (self.city, self.state, self.zip) if part
        )
        lines = [
            self.name,
            self.address_street_1,
            self.address_street_2,
            city_line,
            self.country,
            self.phone,
        ]
        return "\n".join(line for line in lines if line)


@dataclass(frozen=True)
class Organization:
    """Top-level entity whose invoices and expenses are exported."""

    id: int
    name: str
    logo_path: str | None = None
    address: Address | None = None


@dataclass(frozen=True)
class Customer:
    id: int
    name: str
    email: str | None = None
    billing_address: Address | None = None
    shipping_address: Address | None = None


@dataclass(frozen=True)
class InvoiceItem:
    id: int
    name: str
    quantity: Decimal
    price: Decimal
    total: Decimal
    description: str | None = None
    custom_values: dict[int, str] = field(default_factory=dict)


@dataclass(frozen=True)
class Tax:
    id: int
    name: str
    percent: Decimal
    amount: Decimal


@dataclass(frozen=True)
class Invoice:
    """Invoice with its eagerly loaded customer, items and taxes."""

    id: int
    organization_id: int
    invoice_number: str
    invoice_date: date | None = None
    due_date: date | None = None
    customer: Customer | None = None
    items: tuple[InvoiceItem, ...] = ()
    taxes: tuple[Tax, ...] = ()
    notes: str | None = None
    sub_total: Decimal = Decimal("0")
    tax_total: Decimal = Decimal("0")
    total: Decimal = Decimal("0")
    currency_symbol: str = ""
    company_address: Address | None = None

    def company_address_block(self) -> str:
        return self.company_address.format_block() if self.company_address else ""

    def billing_address_block(self) -> str:
        if self.customer is None or self.customer.billing_address is None:
            return ""
        return self.customer.billing_address.format_block()

    def shipping_address_block(self) -> str:
        if self.customer is None or self.customer.shipping_address is None:
            return ""
        return self.customer.shipping_address.format_block()


@dataclass(frozen=True)
class ExpenseCategory:
    id: int
    name: str


@dataclass(frozen=True)
class Expense:
    id: int
    organization_id: int
    amount: Decimal
    expense_date: date | None = None
    category: ExpenseCategory | None = None
    notes: str | None = None


@dataclass(frozen=True)
class CustomField:
    """Run-wide reference data describing an extra column on a record kind."""

    id: int
    name: str
    label: str
    model_type: str
    value_template: str = ""
    order: int = 0
