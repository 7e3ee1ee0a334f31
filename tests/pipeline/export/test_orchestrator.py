"""Tests for the batch orchestrator."""

import threading
from pathlib import Path

import pytest

from company_export.exceptions import (
    DataValidationError,
    RenderFailure,
    SourceUnavailable,
)
from company_export.pipeline.export.config import ExportConfig
from company_export.pipeline.export.orchestrator import (
    CompanyDataExporter,
    ExportState,
)
from company_export.pipeline.export.progress import ExportProgress
from company_export.pipeline.sources.models import Organization

from conftest import FakeSource, fake_renderer

EXPECTED_NAMESPACES = ["1_acme-co-skis", "2_beta"]


def _exporter(tmp_path, source, renderer=fake_renderer, cancel_event=None, reclaims=None, **settings):
    settings.setdefault("backoff_factor", 0)
    config = ExportConfig(
        env_file=tmp_path / "absent.env",
        storage_root=tmp_path / "storage",
        show_progress=False,
        **settings,
    )
    return CompanyDataExporter(
        config,
        source,
        renderer=renderer,
        cancel_event=cancel_event,
        reclaimer=(lambda: reclaims.append(1)) if reclaims is not None else (lambda: None),
        sleeper=lambda seconds: None,
    )


def _exports(tmp_path):
    return tmp_path / "storage" / "exports"


def test_full_run_exports_every_organization(tmp_path: Path, fake_source):
    exporter = _exporter(tmp_path, fake_source, organization_chunk_size=1)
    summary = exporter.run()

    assert exporter.state is ExportState.DONE
    assert sorted(p.name for p in _exports(tmp_path).iterdir()) == EXPECTED_NAMESPACES
    assert len(list((_exports(tmp_path) / "1_acme-co-skis").glob("*.pdf"))) == 3
    assert len(list((_exports(tmp_path) / "2_beta").glob("*.pdf"))) == 1
    assert summary.organizations == 2
    assert summary.invoices_total == 4
    assert summary.invoices_exported == 4
    assert summary.expense_rows == 3
    assert not summary.cancelled


def test_reference_data_and_total_loaded_once(tmp_path: Path, fake_source):
    _exporter(tmp_path, fake_source, organization_chunk_size=1).run()
    assert fake_source.calls["load_custom_fields"] == 1
    assert fake_source.calls["count_invoices"] == 1
    assert fake_source.calls["fetch_organizations"] == 3


def test_reclaims_between_chunks(tmp_path: Path, fake_source):
    reclaims = []
    _exporter(
        tmp_path,
        fake_source,
        reclaims=reclaims,
        organization_chunk_size=1,
        reclaim_per_document=False,
    ).run()
    assert len(reclaims) == 2


def test_progress_advances_once_per_exported_invoice(tmp_path: Path, fake_source):
    progress = ExportProgress(4, display=False)
    exporter = _exporter(tmp_path, fake_source)
    exporter.progress = progress
    exporter.run()
    assert progress.completed == 4


def test_rerun_replaces_csv_instead_of_appending(tmp_path: Path, fake_source):
    _exporter(tmp_path, fake_source).run()
    csv_path = _exports(tmp_path) / "1_acme-co-skis" / "expenses.csv"
    first = csv_path.read_text(encoding="utf-8")
    _exporter(tmp_path, fake_source).run()
    assert csv_path.read_text(encoding="utf-8") == first
    assert len(first.splitlines()) == 3


def test_organization_source_failure_is_fatal(tmp_path: Path, fake_source):
    fake_source.fail_times["fetch_organizations"] = 5
    exporter = _exporter(tmp_path, fake_source, max_retries=2)
    with pytest.raises(SourceUnavailable):
        exporter.run()
    assert exporter.state is ExportState.FAILED
    assert fake_source.calls["fetch_organizations"] == 3


def test_count_failure_is_fatal(tmp_path: Path, fake_source):
    fake_source.fail_times["count_invoices"] = 1
    exporter = _exporter(tmp_path, fake_source, max_retries=0)
    with pytest.raises(SourceUnavailable):
        exporter.run()
    assert fake_source.calls["fetch_organizations"] == 0


def test_out_of_order_organizations_are_rejected(tmp_path: Path, fake_source):
    fake_source.organizations = [Organization(id=2, name="B"), Organization(id=1, name="A")]
    fake_source.fetch_organizations = lambda after_id, limit: fake_source.organizations
    with pytest.raises(DataValidationError):
        _exporter(tmp_path, fake_source).run()


def test_cancelled_before_start(tmp_path: Path, fake_source):
    cancel = threading.Event()
    cancel.set()
    exporter = _exporter(tmp_path, fake_source, cancel_event=cancel)
    summary = exporter.run()
    assert summary.cancelled
    assert summary.organizations == 0
    assert exporter.state is ExportState.CANCELLED


def test_cancelled_mid_run_keeps_completed_work(tmp_path: Path, fake_source):
    cancel = threading.Event()

    def render(template_key, bundle):
        if bundle.invoice.id == 2:
            cancel.set()
        return fake_renderer(template_key, bundle)

    summary = _exporter(tmp_path, fake_source, renderer=render, cancel_event=cancel).run()
    assert summary.cancelled
    namespace = _exports(tmp_path) / "1_acme-co-skis"
    assert sorted(p.name for p in namespace.glob("*.pdf")) == [
        "invoice_INV-001.pdf",
        "invoice_INV-002.pdf",
    ]
    assert not (_exports(tmp_path) / "2_beta").exists()


def test_abort_policy_stops_the_run(tmp_path: Path, fake_source):
    def render(template_key, bundle):
        raise RenderFailure("bad", unit_id=bundle.invoice.id)

    exporter = _exporter(tmp_path, fake_source, renderer=render, render_failure_policy="abort")
    with pytest.raises(RenderFailure):
        exporter.run()
    assert exporter.state is ExportState.FAILED


def test_skip_policy_completes_with_failures(tmp_path: Path, fake_source):
    def render(template_key, bundle):
        raise RenderFailure("bad", unit_id=bundle.invoice.id)

    summary = _exporter(tmp_path, fake_source, renderer=render).run()
    assert summary.invoices_failed == 4
    assert summary.invoices_exported == 0
    assert summary.expense_rows == 3


def test_workers_produce_the_same_outputs(tmp_path: Path, fake_source):
    summary = _exporter(tmp_path, fake_source, workers=2).run()
    assert summary.organizations == 2
    assert summary.invoices_exported == 4
    assert sorted(p.name for p in _exports(tmp_path).iterdir()) == EXPECTED_NAMESPACES
    assert fake_source.calls["load_custom_fields"] == 1


def test_workers_abort_surfaces_the_failure(tmp_path: Path, fake_source):
    def render(template_key, bundle):
        if bundle.invoice.organization_id == 2:
            raise RenderFailure("bad", unit_id=bundle.invoice.id)
        return fake_renderer(template_key, bundle)

    exporter = _exporter(
        tmp_path, fake_source, renderer=render, workers=2, render_failure_policy="abort"
    )
    with pytest.raises(RenderFailure):
        exporter.run()


def test_workers_cancellation(tmp_path: Path, fake_source):
    cancel = threading.Event()
    cancel.set()
    summary = _exporter(tmp_path, fake_source, workers=2, cancel_event=cancel).run()
    assert summary.cancelled
