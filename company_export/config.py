"""Global configuration constants for the project.

Defines paths, filenames and tunable defaults used across the export
pipeline. Runtime overrides (environment, ``.env``) are handled by
``company_export.pipeline.export.config.ExportConfig``.
"""

from __future__ import annotations

from pathlib import Path

# Project directories
PROJECT_ROOT: Path = Path(__file__).resolve().parents[1]
PACKAGE_DIR: Path = PROJECT_ROOT / "company_export"
LOG_DIR: Path = PROJECT_ROOT / "logs"
TEMPLATE_DIR: Path = PROJECT_ROOT / "templates"

# Storage layout
DEFAULT_STORAGE_ROOT: Path = PROJECT_ROOT / "storage"
DEFAULT_DATABASE_PATH: Path = PROJECT_ROOT / "database" / "company_data.sqlite"
EXPORTS_SUBDIR: str = "exports"
INVOICE_ARTIFACT_PREFIX: str = "invoice_"
INVOICE_ARTIFACT_SUFFIX: str = ".pdf"
EXPENSES_FILENAME: str = "expenses.csv"
EMPTY_SLUG_FALLBACK: str = "unnamed"

# Batch sizes
ORGANIZATION_CHUNK_SIZE: int = 50
INVOICE_WINDOW_SIZE: int = 100

# Retry defaults for transient source/write failures
DEFAULT_MAX_RETRIES: int = 2
DEFAULT_BACKOFF_FACTOR: float = 0.5

# Rendering defaults
DEFAULT_TEMPLATE_KEY: str = "invoice1"
TEMPLATE_FILENAME_SUFFIX: str = ".md"
CUSTOM_FIELD_MODEL_TYPE: str = "Item"
MISSING_DATA_PLACEHOLDER: str = "-"

# Render failure policies
RENDER_FAILURE_SKIP: str = "skip"
RENDER_FAILURE_ABORT: str = "abort"
RENDER_FAILURE_POLICIES: tuple[str, ...] = (RENDER_FAILURE_SKIP, RENDER_FAILURE_ABORT)

# Tabular export
EXPENSES_CSV_HEADER: list[str] = ["Date", "Category", "Amount", "Notes"]
EXPORT_DATE_FORMAT: str = "%Y-%m-%d"

# CLI exit codes
EXIT_OK: int = 0
EXIT_FATAL: int = 1
EXIT_CANCELLED: int = 130

# Logging
LOG_FILENAME_EXPORT: str = "export_company_data.log"
LOG_FORMAT: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
