"""Record sources and cursors for the export pipeline.

Consumers import the record types, the source interface, the cursors and
the reference SQLite source from this package rather than from its
submodules.
"""

from .base import ExportSource
from .cursor import streaming_cursor, windowed_cursor
from .models import (
    Address,
    CustomField,
    Customer,
    Expense,
    ExpenseCategory,
    Invoice,
    InvoiceItem,
    Organization,
    Tax,
)
from .sqlite_source import SQLiteExportSource, create_schema

__all__ = [
    "Address",
    "CustomField",
    "Customer",
    "Expense",
    "ExpenseCategory",
    "ExportSource",
    "Invoice",
    "InvoiceItem",
    "Organization",
    "SQLiteExportSource",
    "Tax",
    "create_schema",
    "streaming_cursor",
    "windowed_cursor",
]
