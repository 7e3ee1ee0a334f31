"""Batch orchestration of a full company data export.

``CompanyDataExporter`` drives the outer loop: organizations are pulled in
id-ordered chunks, each organization is handed to an
``OrganizationExporter`` and a reclamation hint is issued after every chunk.
The invoice total for the progress bar is counted and the custom field
reference data is loaded exactly once, before the outer loop starts.

With ``workers > 1`` the organizations of a chunk are exported concurrently,
bounded by an ``asyncio.Semaphore``; each organization still runs on a
single worker thread, so per-organization output stays isolated.
"""

from __future__ import annotations

import asyncio
import gc
import logging
import threading
import time
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from enum import Enum

from company_export.exceptions import DataValidationError, ExportCancelled
from company_export.pipeline.artifacts.store import ArtifactStore
from company_export.pipeline.rendering.renderer import render_document
from company_export.pipeline.sources.base import ExportSource
from company_export.pipeline.sources.models import Organization

from .config import ExportConfig
from .processor import (
    ExportContext,
    OrganizationExporter,
    OrganizationResult,
    Renderer,
)
from .progress import ExportProgress
from .retry import call_with_retry

logger = logging.getLogger(__name__)


class ExportState(Enum):
    IDLE = "idle"
    FETCHING_CHUNK = "fetching_chunk"
    PROCESSING_CHUNK = "processing_chunk"
    RECLAIMING = "reclaiming"
    DONE = "done"
    CANCELLED = "cancelled"
    FAILED = "failed"


@dataclass
class ExportSummary:
    """Aggregated outcome of one export run."""

    invoices_total: int = 0
    organizations: int = 0
    invoices_exported: int = 0
    invoices_failed: int = 0
    expense_rows: int = 0
    expense_sinks_failed: int = 0
    namespaces_failed: int = 0
    cursor_failures: int = 0
    cancelled: bool = False

    def add(self, result: OrganizationResult) -> None:
        self.organizations += 1
        self.invoices_exported += result.invoices_exported
        self.invoices_failed += result.invoices_failed
        self.expense_rows += result.expense_rows
        self.expense_sinks_failed += int(result.expense_sink_failed)
        self.namespaces_failed += int(result.namespace_failed)
        self.cursor_failures += result.cursor_failures


def reclaim_memory() -> None:
    """Default reclamation hint: a full garbage collection pass."""
    gc.collect()


class CompanyDataExporter:
    """Export every organization's invoices and expenses.

    Parameters
    ----------
    config : ExportConfig
        Run configuration.
    source : ExportSource
        Record source for organizations, invoices, expenses and custom
        fields.
    store : ArtifactStore | None, optional
        Artifact store; defaults to one rooted at ``config.storage_root``.
    renderer : Callable[[str, DocumentBundle], bytes], optional
        Document renderer; defaults to ``render_document``.
    cancel_event : threading.Event | None, optional
        Cooperative cancellation signal, checked at every chunk and unit
        boundary.
    reclaimer : Callable[[], None], optional
        Reclamation hint issued between chunks and after each document.
    progress : ExportProgress | None, optional
        Progress counter. When omitted, one is created from the invoice
        count at the start of ``run``.
    sleeper : Callable[[float], None], optional
        Sleep used between retries.

    Examples
    --------
    >>> exporter = CompanyDataExporter(ExportConfig(), SQLiteExportSource(db))  # doctest: +SKIP
    >>> summary = exporter.run()  # doctest: +SKIP
    """

    def __init__(
        self,
        config: ExportConfig,
        source: ExportSource,
        *,
        store: ArtifactStore | None = None,
        renderer: Renderer = render_document,
        cancel_event: threading.Event | None = None,
        reclaimer: Callable[[], None] = reclaim_memory,
        progress: ExportProgress | None = None,
        sleeper: Callable[[float], None] = time.sleep,
    ) -> None:
        self.config = config
        self.source = source
        self.store = store or ArtifactStore(config.storage_root)
        self.renderer = renderer
        self.cancel_event = cancel_event or threading.Event()
        self.reclaimer = reclaimer
        self.progress = progress
        self.sleeper = sleeper
        self.state = ExportState.IDLE
        # Set when one worker fails under the abort policy so siblings stop.
        self._abort_event = threading.Event()

    def _set_state(self, state: ExportState) -> None:
        logger.debug("Export state %s -> %s", self.state.value, state.value)
        self.state = state

    def _check_cancelled(self) -> None:
        if self.cancel_event.is_set() or self._abort_event.is_set():
            raise ExportCancelled()

    def _retry(self, func, description: str):
        return call_with_retry(
            func,
            max_retries=self.config.max_retries,
            backoff_factor=self.config.backoff_factor,
            description=description,
            sleeper=self.sleeper,
        )

    def run(self) -> ExportSummary:
        """Run the export to completion or cancellation.

        Returns
        -------
        ExportSummary
            Counters for the run; ``cancelled`` is set if the cancellation
            signal stopped it early.

        Raises
        ------
        SourceUnavailable
            If the invoice count, the custom fields or an organization chunk
            cannot be fetched after retries.
        RenderFailure, ArtifactWriteFailure
            Under the ``abort`` render failure policy.
        """
        config = self.config
        summary = ExportSummary()
        self._abort_event.clear()
        try:
            total = self._retry(self.source.count_invoices, "invoice count")
            custom_fields = tuple(
                self._retry(
                    lambda: self.source.load_custom_fields(
                        config.custom_field_model_type
                    ),
                    "custom field load",
                )
            )
        except Exception:
            self._set_state(ExportState.FAILED)
            raise
        summary.invoices_total = total
        logger.info(
            "Export run starting invoices=%d custom_fields=%d chunk_size=%d "
            "window_size=%d workers=%d policy=%s",
            total,
            len(custom_fields),
            config.organization_chunk_size,
            config.invoice_window_size,
            config.workers,
            config.render_failure_policy,
        )

        progress = self.progress or ExportProgress(total, display=config.show_progress)
        context = ExportContext(
            config=config,
            source=self.source,
            store=self.store,
            renderer=self.renderer,
            custom_fields=custom_fields,
            progress=progress,
            cancel_events=(self.cancel_event, self._abort_event),
            reclaimer=self.reclaimer,
            sleeper=self.sleeper,
        )
        exporter = OrganizationExporter(context)

        progress.start()
        try:
            if config.workers > 1:
                asyncio.run(self._run_concurrent(exporter, summary))
            else:
                self._run_sequential(exporter, summary)
        except ExportCancelled:
            summary.cancelled = True
            self._set_state(ExportState.CANCELLED)
            logger.warning(
                "Export cancelled after organizations=%d invoices=%d",
                summary.organizations,
                summary.invoices_exported,
            )
        except Exception:
            self._set_state(ExportState.FAILED)
            raise
        else:
            self._set_state(ExportState.DONE)
        finally:
            progress.finish()

        logger.info(
            "Export run finished organizations=%d invoices=%d failed=%d "
            "expense_rows=%d sink_failures=%d cursor_failures=%d",
            summary.organizations,
            summary.invoices_exported,
            summary.invoices_failed,
            summary.expense_rows,
            summary.expense_sinks_failed,
            summary.cursor_failures,
        )
        return summary

    def _fetch_chunk(self, after_id: int) -> list[Organization]:
        self._check_cancelled()
        self._set_state(ExportState.FETCHING_CHUNK)
        size = self.config.organization_chunk_size
        chunk = list(
            self._retry(
                lambda: self.source.fetch_organizations(after_id, size),
                f"organization chunk after_id={after_id}",
            )
        )
        if len(chunk) > size:
            raise DataValidationError(
                f"Organization chunk returned {len(chunk)} records, limit is {size}"
            )
        previous = after_id
        for organization in chunk:
            if organization.id <= previous:
                raise DataValidationError(
                    "Organizations are not in increasing id order",
                    context={"previous": previous, "key": organization.id},
                )
            previous = organization.id
        return chunk

    def _end_chunk(self, index: int, chunk: Sequence[Organization]) -> bool:
        """Reclaim after a chunk and report whether another one may follow."""
        self._set_state(ExportState.RECLAIMING)
        logger.info("Finished chunk %d organizations=%d", index, len(chunk))
        self.reclaimer()
        return len(chunk) == self.config.organization_chunk_size

    def _run_sequential(
        self, exporter: OrganizationExporter, summary: ExportSummary
    ) -> None:
        after_id = 0
        index = 0
        while True:
            chunk = self._fetch_chunk(after_id)
            if not chunk:
                break
            self._set_state(ExportState.PROCESSING_CHUNK)
            logger.info("Processing chunk %d organizations=%d", index, len(chunk))
            for organization in chunk:
                summary.add(exporter.export(organization))
            after_id = chunk[-1].id
            more = self._end_chunk(index, chunk)
            del chunk
            if not more:
                break
            index += 1

    async def _run_concurrent(
        self, exporter: OrganizationExporter, summary: ExportSummary
    ) -> None:
        semaphore = asyncio.Semaphore(self.config.workers)

        async def export_one(organization: Organization) -> OrganizationResult:
            async with semaphore:
                self._check_cancelled()
                try:
                    return await asyncio.to_thread(exporter.export, organization)
                except Exception:
                    self._abort_event.set()
                    raise

        after_id = 0
        index = 0
        while True:
            chunk = await asyncio.to_thread(self._fetch_chunk, after_id)
            if not chunk:
                break
            self._set_state(ExportState.PROCESSING_CHUNK)
            logger.info(
                "Processing chunk %d organizations=%d workers=%d",
                index,
                len(chunk),
                self.config.workers,
            )
            results = await asyncio.gather(
                *(export_one(organization) for organization in chunk),
                return_exceptions=True,
            )
            errors: list[BaseException] = []
            for result in results:
                if isinstance(result, BaseException):
                    errors.append(result)
                else:
                    summary.add(result)
            if errors:
                # Siblings stopped by the abort event report ExportCancelled;
                # the failure that triggered it is the one to surface.
                primary = next(
                    (e for e in errors if not isinstance(e, ExportCancelled)),
                    errors[0],
                )
                raise primary
            after_id = chunk[-1].id
            more = self._end_chunk(index, chunk)
            del chunk, results
            if not more:
                break
            index += 1
