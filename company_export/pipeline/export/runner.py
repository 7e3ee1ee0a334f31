"""Runner for the company data export pipeline.

Wires an ``ExportConfig`` to the reference SQLite source and the export
orchestrator, configures logging, and maps the run outcome onto a process
exit code. The CLI in ``company_export.export_company_data`` is a thin shell
around ``run_from_config``.
"""

from __future__ import annotations

import logging
import threading

from company_export.config import (
    EXIT_CANCELLED,
    EXIT_FATAL,
    EXIT_OK,
    LOG_DIR,
    LOG_FILENAME_EXPORT,
    LOG_FORMAT,
)
from company_export.exceptions import AppError
from company_export.pipeline.sources.base import ExportSource
from company_export.pipeline.sources.sqlite_source import SQLiteExportSource

from .config import ExportConfig
from .orchestrator import CompanyDataExporter, ExportSummary

logger = logging.getLogger(__name__)


def configure_logging(log_level: str = "INFO", enable_file: bool = True) -> None:
    r"""Configure logging for an export run.

    Installs a console handler and, optionally, a file handler writing to
    ``LOG_DIR / LOG_FILENAME_EXPORT`` with the project ``LOG_FORMAT``. A log
    directory that cannot be created leaves console logging in place.

    Parameters
    ----------
    log_level : str, optional
        The logging level (e.g., "INFO", "DEBUG"). Defaults to "INFO".
    enable_file : bool, optional
        Whether to also write logs to a file. Defaults to True.

    Notes
    -----
    Existing root handlers are removed first, so repeated calls do not
    duplicate output.

    Examples
    --------
    >>> from company_export.pipeline.export.runner import configure_logging
    >>> configure_logging(log_level="DEBUG", enable_file=False)
    """
    for h in logging.root.handlers[:]:
        logging.root.removeHandler(h)
    handlers: list[logging.Handler] = [logging.StreamHandler()]
    if enable_file:
        try:
            LOG_DIR.mkdir(exist_ok=True)
            handlers.insert(
                0, logging.FileHandler(LOG_DIR / LOG_FILENAME_EXPORT, mode="a")
            )
        except OSError as exc:
            logger.debug("File logging disabled: %s", exc)
    logging.basicConfig(
        level=getattr(logging, log_level.upper(), logging.INFO),
        format=LOG_FORMAT,
        handlers=handlers,
    )


def exit_code_for(summary: ExportSummary) -> int:
    """Map a finished run onto the CLI exit code."""
    return EXIT_CANCELLED if summary.cancelled else EXIT_OK


def run_export(
    config: ExportConfig,
    *,
    source: ExportSource | None = None,
    cancel_event: threading.Event | None = None,
) -> ExportSummary:
    """Run one export with ``config``; errors propagate to the caller."""
    if source is None:
        source = SQLiteExportSource(config.database_path)
    exporter = CompanyDataExporter(config, source, cancel_event=cancel_event)
    return exporter.run()


def run_from_config(
    config: ExportConfig | None = None,
    *,
    source: ExportSource | None = None,
    cancel_event: threading.Event | None = None,
) -> tuple[int, ExportSummary | None]:
    """Run the export and translate the outcome into an exit code.

    Returns
    -------
    tuple[int, ExportSummary | None]
        ``EXIT_OK`` with the summary on completion (per-unit failures
        included), ``EXIT_CANCELLED`` with the partial summary when the run
        was cancelled, or ``EXIT_FATAL`` with ``None`` on a fatal error.
    """
    try:
        config = config if config is not None else ExportConfig()
        summary = run_export(config, source=source, cancel_event=cancel_event)
    except AppError as exc:
        logger.error("Export failed: %s", exc, extra={"error": exc.to_dict()})
        return EXIT_FATAL, None
    except Exception as exc:
        logger.exception("Unexpected export failure: %s", exc)
        return EXIT_FATAL, None
    return exit_code_for(summary), summary


__all__ = [
    "configure_logging",
    "exit_code_for",
    "run_export",
    "run_from_config",
]
