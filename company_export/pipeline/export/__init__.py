"""Export orchestration: configuration, retries, progress and the run loop.

A CLI or another caller should only need ``ExportConfig``,
``CompanyDataExporter`` and ``run_from_config`` from here.
"""

from .config import ExportConfig
from .orchestrator import CompanyDataExporter, ExportState, ExportSummary
from .processor import OrganizationExporter, OrganizationResult
from .progress import ExportProgress
from .retry import call_with_retry
from .runner import configure_logging, run_export, run_from_config

__all__ = [
    "CompanyDataExporter",
    "ExportConfig",
    "ExportProgress",
    "ExportState",
    "ExportSummary",
    "OrganizationExporter",
    "OrganizationResult",
    "call_with_retry",
    "configure_logging",
    "run_export",
    "run_from_config",
]
