"""Progress reporting for export runs.

``ExportProgress`` keeps the completed/total invoice counter for a run and,
when attached to a terminal, mirrors it on a Rich progress bar. Increments
are lock-protected so concurrent organization workers can share one
instance. The counter is an explicit object passed into the export loops
rather than module state.
"""

from __future__ import annotations

import logging
import threading

from rich.console import Console
from rich.progress import (
    BarColumn,
    MofNCompleteColumn,
    Progress,
    TextColumn,
    TimeElapsedColumn,
    TimeRemainingColumn,
)

logger = logging.getLogger(__name__)


class ExportProgress:
    """Completed/total counter with an optional Rich progress bar.

    Parameters
    ----------
    total : int
        Number of units expected for the whole run.
    display : bool, optional
        Draw a progress bar. It is only drawn when the console is a
        terminal. Defaults to ``True``.
    console : rich.console.Console | None, optional
        Console to draw on; defaults to a stderr console.

    Examples
    --------
    >>> progress = ExportProgress(3, display=False)
    >>> progress.start()
    >>> progress.advance()
    1
    >>> progress.finish()
    """

    def __init__(
        self, total: int, *, display: bool = True, console: Console | None = None
    ) -> None:
        self.total = int(total)
        self._completed = 0
        self._lock = threading.Lock()
        self._console = console or Console(stderr=True)
        self._bar: Progress | None = None
        self._task_id = None
        if display and self._console.is_terminal:
            self._bar = Progress(
                TextColumn("[bold blue]Exporting invoices"),
                BarColumn(),
                MofNCompleteColumn(),
                TimeElapsedColumn(),
                TimeRemainingColumn(),
                console=self._console,
            )

    @property
    def completed(self) -> int:
        with self._lock:
            return self._completed

    def start(self) -> None:
        logger.info("Export progress: 0/%d invoices", self.total)
        if self._bar is not None:
            self._bar.start()
            self._task_id = self._bar.add_task("invoices", total=self.total)

    def advance(self, amount: int = 1) -> int:
        """Add ``amount`` completed units and return the new count."""
        with self._lock:
            self._completed += amount
            completed = self._completed
            if self._bar is not None and self._task_id is not None:
                self._bar.update(self._task_id, completed=completed)
        return completed

    def finish(self) -> None:
        if self._bar is not None:
            self._bar.stop()
            self._bar = None
        logger.info("Export progress: %d/%d invoices", self.completed, self.total)
