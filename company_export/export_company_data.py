"""Export every organization's invoices and expenses to the storage root.

For each organization this writes one PDF per invoice and a single
``expenses.csv`` under ``exports/{id}_{slug}/``. All options have defaults
taken from ``ExportConfig`` (environment and ``.env``), so the command runs
without arguments.

Usage
-----
export-company-data [--database PATH] [--storage-root PATH] [--chunk-size N]
                    [--window-size N] [--workers N]
                    [--on-render-failure {skip,abort}] [--log-level LEVEL]
                    [--no-progress]

Exit codes are 0 on completion (per-unit failures included), 1 on a fatal
error and 130 when the run was cancelled by SIGINT or SIGTERM.
"""

from __future__ import annotations

import argparse
import logging
import os
import signal
import sys
import threading
from collections.abc import Sequence
from pathlib import Path

from rich.console import Console
from rich.table import Table

from company_export.config import EXIT_CANCELLED, EXIT_FATAL, RENDER_FAILURE_POLICIES
from company_export.exceptions import ConfigurationError
from company_export.pipeline.export.config import ExportConfig
from company_export.pipeline.export.orchestrator import ExportSummary
from company_export.pipeline.export.runner import configure_logging, run_from_config

logger = logging.getLogger(__name__)

console = Console()


def parse_arguments(argv: Sequence[str] | None = None) -> argparse.Namespace:
    """Parse command-line arguments.

    Options left unset fall back to the environment-driven ``ExportConfig``.
    """
    parser = argparse.ArgumentParser(
        prog="export-company-data",
        description="Export invoice PDFs and an expenses CSV for every company.",
    )
    parser.add_argument("--database", type=Path, help="Path to the SQLite database.")
    parser.add_argument(
        "--storage-root",
        type=Path,
        help="Directory under which exports/ is written.",
    )
    parser.add_argument(
        "--chunk-size", type=int, help="Organizations fetched per chunk."
    )
    parser.add_argument(
        "--window-size", type=int, help="Invoices held in memory per window."
    )
    parser.add_argument(
        "--workers", type=int, help="Organizations exported concurrently."
    )
    parser.add_argument(
        "--on-render-failure",
        choices=RENDER_FAILURE_POLICIES,
        help="Skip a failed invoice and continue, or abort the run.",
    )
    parser.add_argument(
        "--log-level",
        type=str,
        default=os.environ.get("LOG_LEVEL", "INFO"),
        help="Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL).",
    )
    parser.add_argument(
        "--no-progress",
        action="store_true",
        help="Do not draw the progress bar.",
    )
    return parser.parse_args(argv)


def build_config(args: argparse.Namespace) -> ExportConfig:
    """Build an ``ExportConfig`` from parsed arguments."""
    overrides = {
        "database_path": args.database,
        "storage_root": args.storage_root,
        "organization_chunk_size": args.chunk_size,
        "invoice_window_size": args.window_size,
        "workers": args.workers,
        "render_failure_policy": args.on_render_failure,
    }
    if args.no_progress:
        overrides["show_progress"] = False
    return ExportConfig(
        **{name: value for name, value in overrides.items() if value is not None}
    )


def install_signal_handlers(cancel_event: threading.Event) -> dict[int, object]:
    """Route SIGINT/SIGTERM to ``cancel_event``; return the previous handlers."""

    def _request_cancel(signum, frame):
        logger.warning("Received signal %s, cancelling export", signum)
        cancel_event.set()

    previous = {}
    for signum in (signal.SIGINT, signal.SIGTERM):
        try:
            previous[signum] = signal.signal(signum, _request_cancel)
        except ValueError:
            # Not the main thread; cancellation stays programmatic only.
            pass
    return previous


def restore_signal_handlers(previous: dict[int, object]) -> None:
    for signum, handler in previous.items():
        signal.signal(signum, handler)


def print_summary(summary: ExportSummary) -> None:
    table = Table(title="Export summary", show_header=False)
    table.add_column("Metric")
    table.add_column("Value", justify="right")
    table.add_row("Organizations", str(summary.organizations))
    table.add_row(
        "Invoices exported", f"{summary.invoices_exported}/{summary.invoices_total}"
    )
    table.add_row("Invoices failed", str(summary.invoices_failed))
    table.add_row("Expense rows", str(summary.expense_rows))
    table.add_row("Expense sinks failed", str(summary.expense_sinks_failed))
    table.add_row("Cursor failures", str(summary.cursor_failures))
    console.print(table)


def main(argv: Sequence[str] | None = None) -> int:
    """Run the export from CLI arguments and return the exit code."""
    args = parse_arguments(argv)
    disable_file = bool(
        os.environ.get("DISABLE_FILE_LOGS") or os.environ.get("PYTEST_CURRENT_TEST")
    )
    configure_logging(args.log_level, enable_file=not disable_file)

    try:
        config = build_config(args)
    except ConfigurationError as exc:
        logger.error("Invalid configuration: %s", exc)
        console.print(f"[red]Invalid configuration:[/red] {exc.message}")
        return EXIT_FATAL

    console.print("Starting export...")
    cancel_event = threading.Event()
    previous = install_signal_handlers(cancel_event)
    try:
        code, summary = run_from_config(config, cancel_event=cancel_event)
    finally:
        restore_signal_handlers(previous)

    if summary is None:
        console.print("[red]Export failed.[/red] See the log for details.")
        return code
    print_summary(summary)
    if code == EXIT_CANCELLED:
        console.print("[yellow]Export cancelled.[/yellow]")
    else:
        console.print("Export complete.")
    return code


def flush_and_close_log_handlers() -> None:
    for handler in logging.root.handlers:
        handler.flush()
        handler.close()


def entry_point() -> None:
    code = main()
    flush_and_close_log_handlers()
    sys.exit(code)


if __name__ == "__main__":  # pragma: no cover - CLI entry
    entry_point()
