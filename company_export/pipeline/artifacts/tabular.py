"""Streaming CSV sink used for per-organization tabular exports.

A sink is opened with :func:`open_sink` as a context manager: the file is
truncated, the header row is written first, rows are streamed one at a time
and the file is closed on every exit path, including cursor failures and
cancellation. Quoting follows the ``csv`` module's minimal quoting rules, so
fields containing the delimiter, the quote character or a newline are
quoted.

Examples
--------
>>> from pathlib import Path
>>> with open_sink(Path("/tmp/expenses.csv"), ["Date", "Amount"]) as sink:  # doctest: +SKIP
...     sink.write_row(["2024-01-31", "12.50"])
"""

from __future__ import annotations

import csv
import logging
from collections.abc import Iterator, Sequence
from contextlib import contextmanager
from datetime import date
from pathlib import Path
from typing import Any, TextIO

from company_export.config import EXPORT_DATE_FORMAT
from company_export.exceptions import ArtifactWriteFailure, SinkOpenFailure
from company_export.pipeline.sources.models import Expense

logger = logging.getLogger(__name__)


def format_cell(value: Any) -> str:
    """Serialize one cell; ``None`` becomes an empty field and dates are ISO."""
    if value is None:
        return ""
    if isinstance(value, date):
        return value.strftime(EXPORT_DATE_FORMAT)
    return str(value)


def expense_row(expense: Expense) -> list[str]:
    """Return the ``Date, Category, Amount, Notes`` cells for an expense."""
    return [
        format_cell(expense.expense_date),
        format_cell(expense.category.name if expense.category else None),
        format_cell(f"{expense.amount:.2f}"),
        format_cell(expense.notes),
    ]


class TabularSink:
    """An open CSV file accepting one row at a time.

    Attributes
    ----------
    path : Path
        Destination file.
    rows_written : int
        Data rows written so far (the header is not counted).
    """

    def __init__(self, path: Path, handle: TextIO) -> None:
        self.path = path
        self._handle = handle
        self._writer = csv.writer(handle)
        self.rows_written = 0
        self.closed = False

    def _write(self, fields: Sequence[Any]) -> None:
        try:
            self._writer.writerow([format_cell(value) for value in fields])
        except OSError as error:
            raise ArtifactWriteFailure(
                f"Cannot write row to {self.path}: {error}",
                context={"path": str(self.path)},
                transient=False,
            ) from error

    def write_header(self, header: Sequence[str]) -> None:
        self._write(header)

    def write_row(self, fields: Sequence[Any]) -> None:
        """Append one data row.

        Raises
        ------
        ArtifactWriteFailure
            If the row cannot be written.
        """
        self._write(fields)
        self.rows_written += 1

    def close(self) -> None:
        if not self.closed:
            self.closed = True
            self._handle.close()


@contextmanager
def open_sink(path: Path, header: Sequence[str]) -> Iterator[TabularSink]:
    """Truncate ``path``, write ``header`` and yield a :class:`TabularSink`.

    Raises
    ------
    SinkOpenFailure
        If the file cannot be created or truncated.
    """
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        handle = path.open("w", encoding="utf-8", newline="")
    except OSError as error:
        raise SinkOpenFailure(
            f"Failed to open CSV for writing: {path}: {error}",
            context={"path": str(path)},
        ) from error
    sink = TabularSink(path, handle)
    try:
        sink.write_header(header)
        yield sink
    finally:
        sink.close()
