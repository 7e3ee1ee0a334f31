"""Runtime configuration for the company data export.

This module provides ExportConfig, which loads, validates, and exposes every
tunable of an export run: where the source database and the storage root
live, batch and window sizes, retry behaviour, worker count, the render
failure policy and the template selection rules.

Role in Architecture
--------------------
- Forms the boundary between the process environment (variables and an
  optional project ``.env`` file) and the pipeline's typed runtime config.
- Owns the template selection rule: a data-driven mapping from organization
  id or name to template key, with a configurable default.
- No export logic: only loading, structuring and validation.

Examples
--------
>>> from company_export.pipeline.export.config import ExportConfig
>>> cfg = ExportConfig(organization_chunk_size=10)
>>> cfg.organization_chunk_size
10
"""

from __future__ import annotations

import json
import os
from collections.abc import Callable
from pathlib import Path
from typing import Any

from dotenv import load_dotenv

import company_export.config as _project_config
from company_export.config import (
    CUSTOM_FIELD_MODEL_TYPE,
    DEFAULT_BACKOFF_FACTOR,
    DEFAULT_DATABASE_PATH,
    DEFAULT_MAX_RETRIES,
    DEFAULT_STORAGE_ROOT,
    DEFAULT_TEMPLATE_KEY,
    INVOICE_WINDOW_SIZE,
    ORGANIZATION_CHUNK_SIZE,
    RENDER_FAILURE_POLICIES,
    RENDER_FAILURE_SKIP,
)
from company_export.exceptions import ConfigurationError
from company_export.pipeline.sources.models import Organization

_TRUE_VALUES = {"1", "true", "yes", "on"}
_FALSE_VALUES = {"0", "false", "no", "off"}


def _to_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    text = str(value).strip().lower()
    if text in _TRUE_VALUES:
        return True
    if text in _FALSE_VALUES:
        return False
    raise ValueError(f"not a boolean: {value!r}")


def _to_mapping(value: Any) -> dict[str, str]:
    mapping = json.loads(value) if isinstance(value, str) else value
    if not isinstance(mapping, dict):
        raise ValueError("expected a JSON object")
    return {str(key): str(template) for key, template in mapping.items()}


class ExportConfig:
    r"""Configuration loader and validator for an export run.

    Each setting is taken from, in order: a keyword override, an environment
    variable (after loading the project ``.env`` file, which never replaces
    variables already set), or the default from ``company_export.config``.

    Attributes
    ----------
    database_path : Path
        SQLite database read by the export (``EXPORT_DATABASE_PATH``).
    storage_root : Path
        Root under which ``exports/`` is created (``EXPORT_STORAGE_ROOT``).
    organization_chunk_size : int
        Organizations fetched per outer chunk
        (``EXPORT_ORGANIZATION_CHUNK_SIZE``).
    invoice_window_size : int
        Invoices held per cursor window (``EXPORT_INVOICE_WINDOW_SIZE``).
    render_failure_policy : str
        ``"skip"`` logs a failed unit and continues; ``"abort"`` stops the
        run (``EXPORT_RENDER_FAILURE_POLICY``).
    workers : int
        Organizations exported concurrently (``EXPORT_WORKERS``).
    max_retries : int
        Retries for transient source and write failures
        (``EXPORT_MAX_RETRIES``).
    backoff_factor : float
        Base of the exponential backoff between retries, in seconds
        (``EXPORT_BACKOFF_FACTOR``).
    default_template : str
        Template key used when no override matches
        (``EXPORT_DEFAULT_TEMPLATE``).
    template_overrides : dict[str, str]
        Organization id or exact name mapped to a template key
        (``EXPORT_TEMPLATE_OVERRIDES``, JSON object).
    custom_field_model_type : str
        Discriminator of the custom fields loaded as reference data
        (``EXPORT_CUSTOM_FIELD_MODEL_TYPE``).
    reclaim_per_document : bool
        Trigger a reclamation hint after every document
        (``EXPORT_RECLAIM_PER_DOCUMENT``).
    show_progress : bool
        Draw the terminal progress bar (``EXPORT_SHOW_PROGRESS``).

    Raises
    ------
    ConfigurationError
        If a value cannot be parsed or is out of range, or an unknown
        keyword override is given.
    """

    _SETTINGS: dict[str, tuple[str, Any, Callable[[Any], Any]]] = {
        "database_path": ("EXPORT_DATABASE_PATH", DEFAULT_DATABASE_PATH, Path),
        "storage_root": ("EXPORT_STORAGE_ROOT", DEFAULT_STORAGE_ROOT, Path),
        "organization_chunk_size": (
            "EXPORT_ORGANIZATION_CHUNK_SIZE",
            ORGANIZATION_CHUNK_SIZE,
            int,
        ),
        "invoice_window_size": ("EXPORT_INVOICE_WINDOW_SIZE", INVOICE_WINDOW_SIZE, int),
        "render_failure_policy": (
            "EXPORT_RENDER_FAILURE_POLICY",
            RENDER_FAILURE_SKIP,
            lambda v: str(v).strip().lower(),
        ),
        "workers": ("EXPORT_WORKERS", 1, int),
        "max_retries": ("EXPORT_MAX_RETRIES", DEFAULT_MAX_RETRIES, int),
        "backoff_factor": ("EXPORT_BACKOFF_FACTOR", DEFAULT_BACKOFF_FACTOR, float),
        "default_template": ("EXPORT_DEFAULT_TEMPLATE", DEFAULT_TEMPLATE_KEY, str),
        "template_overrides": ("EXPORT_TEMPLATE_OVERRIDES", {}, _to_mapping),
        "custom_field_model_type": (
            "EXPORT_CUSTOM_FIELD_MODEL_TYPE",
            CUSTOM_FIELD_MODEL_TYPE,
            str,
        ),
        "reclaim_per_document": ("EXPORT_RECLAIM_PER_DOCUMENT", True, _to_bool),
        "show_progress": ("EXPORT_SHOW_PROGRESS", True, _to_bool),
    }

    def __init__(self, env_file: Path | None = None, **overrides: Any) -> None:
        unknown = sorted(set(overrides) - set(self._SETTINGS))
        if unknown:
            raise ConfigurationError(
                f"Unknown export settings: {', '.join(unknown)}",
                context={"unknown": unknown},
            )
        env_path = (
            Path(env_file)
            if env_file is not None
            else Path(_project_config.PROJECT_ROOT) / ".env"
        )
        if env_path.exists():
            load_dotenv(env_path, override=False)

        self.database_path: Path
        self.storage_root: Path
        self.organization_chunk_size: int
        self.invoice_window_size: int
        self.render_failure_policy: str
        self.workers: int
        self.max_retries: int
        self.backoff_factor: float
        self.default_template: str
        self.template_overrides: dict[str, str]
        self.custom_field_model_type: str
        self.reclaim_per_document: bool
        self.show_progress: bool
        for name, (env_name, default, convert) in self._SETTINGS.items():
            raw = overrides.get(name)
            if raw is None:
                raw = os.getenv(env_name, default)
            try:
                value = convert(raw)
            except (TypeError, ValueError) as error:
                raise ConfigurationError(
                    f"Invalid value for {env_name}: {raw!r} ({error})",
                    context={"setting": name},
                ) from error
            setattr(self, name, value)
        self._validate()

    def _validate(self) -> None:
        for name in ("organization_chunk_size", "invoice_window_size", "workers"):
            if getattr(self, name) < 1:
                raise ConfigurationError(
                    f"{name} must be at least 1", context={"setting": name}
                )
        if self.max_retries < 0 or self.backoff_factor < 0:
            raise ConfigurationError("Retry settings must not be negative")
        if self.render_failure_policy not in RENDER_FAILURE_POLICIES:
            raise ConfigurationError(
                f"render_failure_policy must be one of {', '.join(RENDER_FAILURE_POLICIES)}",
                context={"value": self.render_failure_policy},
            )

    def template_for(self, organization: Organization) -> str:
        """Resolve the template key for ``organization``.

        An override keyed by the organization id wins over one keyed by its
        exact name; otherwise ``default_template`` is used.

        Examples
        --------
        >>> cfg = ExportConfig(template_overrides={"7": "invoice-custom"})
        >>> cfg.template_for(Organization(id=7, name="Edge"))
        'invoice-custom'
        """
        overrides = self.template_overrides
        return overrides.get(
            str(organization.id),
            overrides.get(organization.name, self.default_template),
        )
