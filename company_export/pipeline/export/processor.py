"""Per-organization export of invoice documents and the expenses CSV.

``OrganizationExporter`` runs the two middle loops for one organization:
invoices are pulled through a windowed cursor, rendered and written as one
PDF each; expenses are streamed through a single-pass cursor into one CSV
sink. The loops are independent failure domains: a cursor, render or sink
failure in one never prevents the other from running. Unit failures are
logged with the unit's identifier and, under the ``abort`` policy,
re-raised to stop the run.

Everything shared between organizations (configuration, source, store,
renderer, the once-loaded custom fields, progress and cancellation) lives in
an ``ExportContext`` that is never mutated during a run.
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path

from company_export.config import (
    EXPENSES_CSV_HEADER,
    EXPENSES_FILENAME,
    INVOICE_ARTIFACT_PREFIX,
    INVOICE_ARTIFACT_SUFFIX,
    RENDER_FAILURE_ABORT,
)
from company_export.exceptions import (
    ArtifactWriteFailure,
    DataValidationError,
    ExportCancelled,
    RenderFailure,
    SinkOpenFailure,
    SourceUnavailable,
)
from company_export.pipeline.artifacts.store import ArtifactStore, sanitize_sub_key
from company_export.pipeline.artifacts.tabular import expense_row, open_sink
from company_export.pipeline.rendering.renderer import DocumentBundle
from company_export.pipeline.rendering.templating import render_template
from company_export.pipeline.sources.base import ExportSource
from company_export.pipeline.sources.cursor import streaming_cursor, windowed_cursor
from company_export.pipeline.sources.models import CustomField, Invoice, Organization

from .config import ExportConfig
from .progress import ExportProgress
from .retry import call_with_retry

logger = logging.getLogger(__name__)

Renderer = Callable[[str, DocumentBundle], bytes]


@dataclass
class OrganizationResult:
    """Counters for one organization's export."""

    organization_id: int
    invoices_exported: int = 0
    invoices_failed: int = 0
    expense_rows: int = 0
    expense_sink_failed: bool = False
    namespace_failed: bool = False
    cursor_failures: int = 0
    artifacts: list[Path] = field(default_factory=list)


@dataclass(frozen=True)
class ExportContext:
    """Run-wide collaborators shared read-only by every organization export."""

    config: ExportConfig
    source: ExportSource
    store: ArtifactStore
    renderer: Renderer
    custom_fields: tuple[CustomField, ...]
    progress: ExportProgress
    cancel_events: tuple[threading.Event, ...]
    reclaimer: Callable[[], None]
    sleeper: Callable[[float], None] = time.sleep

    def check_cancelled(self) -> None:
        if any(event.is_set() for event in self.cancel_events):
            raise ExportCancelled()


def resolve_notes(invoice: Invoice, organization: Organization) -> str:
    """Substitute known ``{Placeholder}`` tokens in the invoice notes.

    Unknown tokens are left as written.
    """
    if not invoice.notes:
        return ""
    customer = invoice.customer
    context = {
        "CompanyName": organization.name,
        "InvoiceNumber": invoice.invoice_number,
        "InvoiceDate": invoice.invoice_date.isoformat() if invoice.invoice_date else "",
        "DueDate": invoice.due_date.isoformat() if invoice.due_date else "",
        "CustomerName": customer.name if customer else "",
        "CustomerEmail": (customer.email or "") if customer else "",
    }
    return render_template(invoice.notes, context, missing=None)


def build_invoice_bundle(
    organization: Organization,
    invoice: Invoice,
    logo: str | None,
    custom_fields: tuple[CustomField, ...],
) -> DocumentBundle:
    """Assemble the data bundle one invoice document is rendered from."""
    return DocumentBundle(
        invoice=invoice,
        organization_name=organization.name,
        logo=logo,
        company_address=invoice.company_address_block(),
        billing_address=invoice.billing_address_block(),
        shipping_address=invoice.shipping_address_block(),
        notes=resolve_notes(invoice, organization),
        items=invoice.items,
        taxes=invoice.taxes,
        custom_fields=custom_fields,
    )


def invoice_filename(invoice: Invoice, used_keys: set[str]) -> str:
    """Return a unique, filesystem-safe artifact filename for ``invoice``.

    The sub-key is the sanitized invoice number. An empty result falls back
    to the invoice id. A key already used in this namespace during the run
    gets the invoice id appended, then a counter until it is free, so two
    invoices never share a path. ``used_keys`` is updated in place.

    Examples
    --------
    >>> used = set()
    >>> invoice_filename(Invoice(id=1, organization_id=1, invoice_number="INV/001"), used)
    'invoice_INV-001.pdf'
    >>> invoice_filename(Invoice(id=2, organization_id=1, invoice_number="INV-001"), used)
    'invoice_INV-001-2.pdf'
    """
    base = sanitize_sub_key(invoice.invoice_number) or str(invoice.id)
    key = base
    if key in used_keys:
        key = f"{base}-{invoice.id}"
        counter = 2
        while key in used_keys:
            key = f"{base}-{invoice.id}-{counter}"
            counter += 1
    used_keys.add(key)
    return f"{INVOICE_ARTIFACT_PREFIX}{key}{INVOICE_ARTIFACT_SUFFIX}"


class OrganizationExporter:
    """Export one organization's invoices and expenses."""

    def __init__(self, context: ExportContext) -> None:
        self.context = context

    def export(self, organization: Organization) -> OrganizationResult:
        """Run the invoice loop and then the expense loop for ``organization``.

        Raises
        ------
        ExportCancelled
            If cancellation is requested at a unit boundary.
        RenderFailure, ArtifactWriteFailure
            Only under the ``abort`` render failure policy.
        """
        ctx = self.context
        ctx.check_cancelled()
        result = OrganizationResult(organization.id)
        logger.info(
            "Processing company org_id=%s name=%r", organization.id, organization.name
        )
        try:
            namespace = ctx.store.ensure_namespace(organization.id, organization.name)
        except ArtifactWriteFailure as error:
            result.namespace_failed = True
            logger.error(
                "Skipping company org_id=%s: %s", organization.id, error
            )
            return result
        self.export_invoices(organization, namespace, result)
        self.export_expenses(organization, namespace, result)
        return result

    def export_invoices(
        self, organization: Organization, namespace: Path, result: OrganizationResult
    ) -> None:
        ctx = self.context
        config = ctx.config
        template_key = config.template_for(organization)
        logo = organization.logo_path
        logger.info(
            "Fetching invoices org_id=%s template=%s", organization.id, template_key
        )

        def fetch_window(after_id: int, limit: int) -> list[Invoice]:
            return call_with_retry(
                lambda: list(ctx.source.fetch_invoices(organization.id, after_id, limit)),
                max_retries=config.max_retries,
                backoff_factor=config.backoff_factor,
                description=f"invoice window org_id={organization.id}",
                sleeper=ctx.sleeper,
            )

        used_keys: set[str] = set()
        try:
            for invoice in windowed_cursor(fetch_window, config.invoice_window_size):
                ctx.check_cancelled()
                self._export_invoice(
                    organization, namespace, invoice, template_key, logo, used_keys, result
                )
        except (SourceUnavailable, DataValidationError) as error:
            result.cursor_failures += 1
            logger.error(
                "Invoice cursor stopped early org_id=%s exported=%d: %s",
                organization.id,
                result.invoices_exported,
                error,
            )

    def _render(self, template_key: str, bundle: DocumentBundle) -> bytes:
        try:
            return self.context.renderer(template_key, bundle)
        except RenderFailure:
            raise
        except Exception as error:
            raise RenderFailure(
                f"Rendering invoice {bundle.invoice.id} failed: {error}",
                unit_id=bundle.invoice.id,
                context={"template": template_key},
            ) from error

    def _export_invoice(
        self,
        organization: Organization,
        namespace: Path,
        invoice: Invoice,
        template_key: str,
        logo: str | None,
        used_keys: set[str],
        result: OrganizationResult,
    ) -> None:
        ctx = self.context
        config = ctx.config
        logger.info(
            "Exporting invoice org_id=%s invoice_id=%s number=%r",
            organization.id,
            invoice.id,
            invoice.invoice_number,
        )
        filename = invoice_filename(invoice, used_keys)
        try:
            bundle = build_invoice_bundle(organization, invoice, logo, ctx.custom_fields)
            document = self._render(template_key, bundle)
            logger.debug(
                "Document generated invoice_id=%s bytes=%d", invoice.id, len(document)
            )
            path = call_with_retry(
                lambda: ctx.store.write_artifact(namespace, filename, document),
                max_retries=config.max_retries,
                backoff_factor=config.backoff_factor,
                description=f"artifact write invoice_id={invoice.id}",
                sleeper=ctx.sleeper,
            )
        except (RenderFailure, ArtifactWriteFailure) as error:
            result.invoices_failed += 1
            logger.error(
                "Invoice export failed org_id=%s invoice_id=%s code=%s: %s",
                organization.id,
                invoice.id,
                error.code,
                error.message,
            )
            if config.render_failure_policy == RENDER_FAILURE_ABORT:
                raise
            return

        result.invoices_exported += 1
        result.artifacts.append(path)
        logger.info("Document saved invoice_id=%s path=%s", invoice.id, path)
        ctx.progress.advance()
        del document, bundle
        if config.reclaim_per_document:
            ctx.reclaimer()

    def export_expenses(
        self, organization: Organization, namespace: Path, result: OrganizationResult
    ) -> None:
        ctx = self.context
        logger.info("Fetching expenses org_id=%s", organization.id)
        path = ctx.store.artifact_path(namespace, EXPENSES_FILENAME)
        try:
            with open_sink(path, EXPENSES_CSV_HEADER) as sink:
                expenses = streaming_cursor(
                    lambda: ctx.source.stream_expenses(organization.id)
                )
                try:
                    for expense in expenses:
                        ctx.check_cancelled()
                        sink.write_row(expense_row(expense))
                finally:
                    expenses.close()
                    result.expense_rows = sink.rows_written
        except SinkOpenFailure as error:
            result.expense_sink_failed = True
            logger.error(
                "Expense export skipped org_id=%s: %s", organization.id, error
            )
            return
        except (SourceUnavailable, DataValidationError, ArtifactWriteFailure) as error:
            result.cursor_failures += 1
            logger.error(
                "Expense export stopped early org_id=%s rows=%d path=%s: %s",
                organization.id,
                result.expense_rows,
                path,
                error,
            )
            return
        logger.info(
            "Expenses exported org_id=%s rows=%d path=%s",
            organization.id,
            result.expense_rows,
            path,
        )
