"""Interface the export pipeline consumes from its data layer."""

from __future__ import annotations

from collections.abc import Iterator, Sequence
from typing import Protocol

from .models import CustomField, Expense, Invoice, Organization


class ExportSource(Protocol):
    """ID-ordered, paginatable access to organizations and their children.

    Implementations raise ``SourceUnavailable`` when the backing store cannot
    be reached. Every ``fetch_*`` method returns at most ``limit`` records
    whose ``id`` is strictly greater than ``after_id``, ordered by ``id``.
    """

    def count_invoices(self) -> int: ...

    def fetch_organizations(self, after_id: int, limit: int) -> Sequence[Organization]: ...

    def fetch_invoices(
        self, organization_id: int, after_id: int, limit: int
    ) -> Sequence[Invoice]: ...

    def stream_expenses(self, organization_id: int) -> Iterator[Expense]: ...

    def load_custom_fields(self, model_type: str) -> Sequence[CustomField]: ...
