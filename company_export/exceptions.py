"""Errors raised by the company export.

Every failure the export distinguishes is an ``AppError`` carrying a stable
``code``, a message, log-safe ``context`` and a ``transient`` flag that the
retry helper consults. Per-unit failures (one document, one sink, one
cursor) are caught and counted by the organization exporter; anything else
reaching the orchestrator ends the run.
"""

from __future__ import annotations

from typing import Any, Mapping


class AppError(Exception):
    """Base class for export errors.

    Parameters
    ----------
    code : str
        Stable error code, e.g. ``'SOURCE_UNAVAILABLE'``.
    message : str
        What went wrong, for the log line.
    context : Mapping[str, Any] | None, optional
        Identifiers of the failing unit (organization, invoice, row, path).
    transient : bool, optional
        True when retrying the same call may succeed.

    Examples
    --------
    >>> err = AppError('SOURCE_UNAVAILABLE', 'database locked', context={'org_id': 7}, transient=True)
    >>> str(err)
    'SOURCE_UNAVAILABLE: database locked'
    >>> err.to_dict()['context']
    {'org_id': 7}
    """

    __slots__ = ("code", "message", "context", "transient")

    def __init__(
        self,
        code: str,
        message: str,
        *,
        context: Mapping[str, Any] | None = None,
        transient: bool = False,
    ) -> None:
        super().__init__(message)
        self.code = code
        self.message = message
        self.context = dict(context or {})
        self.transient = bool(transient)

    def __str__(self) -> str:
        return f"{self.code}: {self.message}"

    def to_dict(self) -> dict[str, Any]:
        """Return the fields attached to log records as ``extra['error']``."""
        return {
            "error_code": self.code,
            "message": self.message,
            "context": self.context,
            "is_transient": self.transient,
        }


class ConfigurationError(AppError):
    """An ``EXPORT_*`` setting or CLI override is missing or out of range."""

    def __init__(
        self, message: str, *, context: Mapping[str, Any] | None = None
    ) -> None:
        super().__init__(
            "CONFIGURATION_ERROR", message, context=context, transient=False
        )


class DataValidationError(AppError):
    """Source data broke a cursor invariant or could not be decoded.

    Raised for windows that are too large, keys that go backwards and rows
    whose columns do not parse. ``context`` names the offending keys or the
    table and row id.
    """

    def __init__(
        self, message: str, *, context: Mapping[str, Any] | None = None
    ) -> None:
        super().__init__(
            "DATA_VALIDATION_ERROR", message, context=context, transient=False
        )


class SourceUnavailable(AppError):
    """Raised when a record source cannot deliver its next window or row."""

    def __init__(
        self,
        message: str,
        *,
        context: Mapping[str, Any] | None = None,
        transient: bool = True,
    ) -> None:
        super().__init__(
            "SOURCE_UNAVAILABLE", message, context=context, transient=transient
        )


class RenderFailure(AppError):
    """Raised when a single document cannot be rendered.

    ``unit_id`` identifies the invoice whose document failed.
    """

    def __init__(
        self,
        message: str,
        *,
        unit_id: Any = None,
        context: Mapping[str, Any] | None = None,
    ) -> None:
        merged = dict(context or {})
        if unit_id is not None:
            merged.setdefault("unit_id", unit_id)
        super().__init__("RENDER_FAILURE", message, context=merged, transient=False)
        self.unit_id = unit_id


class SinkOpenFailure(AppError):
    """Raised when a tabular sink cannot be created or truncated."""

    def __init__(
        self, message: str, *, context: Mapping[str, Any] | None = None
    ) -> None:
        super().__init__(
            "SINK_OPEN_FAILURE", message, context=context, transient=False
        )


class ArtifactWriteFailure(AppError):
    """Raised when a rendered artifact or tabular row cannot be persisted."""

    def __init__(
        self,
        message: str,
        *,
        context: Mapping[str, Any] | None = None,
        transient: bool = True,
    ) -> None:
        super().__init__(
            "ARTIFACT_WRITE_FAILURE", message, context=context, transient=transient
        )


class ExportCancelled(AppError):
    """Raised at a chunk or unit boundary once cancellation was requested."""

    def __init__(
        self,
        message: str = "Export cancelled",
        *,
        context: Mapping[str, Any] | None = None,
    ) -> None:
        super().__init__("EXPORT_CANCELLED", message, context=context, transient=False)
