"""Bounded-window cursors over ID-ordered child collections.

Two cursor disciplines are provided, both as plain generators (finite and not
restartable):

- :func:`windowed_cursor` re-fetches the collection one window at a time,
  keyed on the last identifier seen (keyset pagination, never ``OFFSET``).
  The next window is requested only after the previous one has been fully
  consumed, so at most one window is held at a time.
- :func:`streaming_cursor` wraps a true single-pass row stream supplied by
  the source and guarantees it is closed on every exit path.

Both verify the ordering invariant while iterating and raise
``DataValidationError`` if the source yields keys out of order. Source
outages surface as ``SourceUnavailable`` from the fetch/stream callables and
end the iteration early.

Examples
--------
>>> rows = list(range(1, 8))
>>> def fetch(after, limit):
...     return [r for r in rows if r > after][:limit]
>>> list(windowed_cursor(fetch, 3, key=lambda r: r))
[1, 2, 3, 4, 5, 6, 7]
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable, Iterator, Sequence
from operator import attrgetter
from typing import Any, TypeVar

from company_export.exceptions import DataValidationError

logger = logging.getLogger(__name__)

T = TypeVar("T")

FetchWindow = Callable[[Any, int], Sequence[T]]

_by_id = attrgetter("id")


def windowed_cursor(
    fetch_window: FetchWindow,
    window_size: int,
    *,
    key: Callable[[T], Any] = _by_id,
    start_after: Any = 0,
) -> Iterator[T]:
    """Yield records window by window in strictly increasing key order.

    Parameters
    ----------
    fetch_window : Callable[[Any, int], Sequence[T]]
        Callable returning up to ``limit`` records whose key is strictly
        greater than ``after``, ordered by key ascending.
    window_size : int
        Maximum number of records requested (and held) per window.
    key : Callable[[T], Any], optional
        Extracts the stable ordering key from a record. Defaults to ``.id``.
    start_after : Any, optional
        Key the first window starts after. Defaults to ``0``.

    Yields
    ------
    T
        Each record exactly once.

    Raises
    ------
    ValueError
        If ``window_size`` is not positive.
    company_export.exceptions.DataValidationError
        If the source returns a window larger than requested or keys that do
        not strictly increase.
    company_export.exceptions.SourceUnavailable
        Propagated from ``fetch_window``.
    """
    if window_size < 1:
        raise ValueError("window_size must be a positive integer")
    last_key = start_after
    while True:
        window = fetch_window(last_key, window_size)
        if len(window) > window_size:
            raise DataValidationError(
                "Source returned more records than the window allows",
                context={"window_size": window_size, "returned": len(window)},
            )
        for record in window:
            record_key = key(record)
            if record_key <= last_key:
                raise DataValidationError(
                    "Cursor keys must strictly increase",
                    context={"previous": last_key, "current": record_key},
                )
            last_key = record_key
            yield record
        exhausted = len(window) < window_size
        window = None
        if exhausted:
            return


def streaming_cursor(
    open_stream: Callable[[], Iterable[T]],
    *,
    key: Callable[[T], Any] = _by_id,
) -> Iterator[T]:
    """Yield records from a single-pass stream in non-decreasing key order.

    The stream is opened lazily on first iteration and closed (when it
    exposes ``close``) however the consumer stops, including on errors and
    when the generator itself is closed early.

    Parameters
    ----------
    open_stream : Callable[[], Iterable[T]]
        Opens the underlying row stream.
    key : Callable[[T], Any], optional
        Extracts the ordering key from a record. Defaults to ``.id``.

    Raises
    ------
    company_export.exceptions.DataValidationError
        If keys decrease.
    company_export.exceptions.SourceUnavailable
        Propagated from the stream.
    """
    stream = open_stream()
    iterator = iter(stream)
    previous: Any = None
    try:
        for record in iterator:
            record_key = key(record)
            if previous is not None and record_key < previous:
                raise DataValidationError(
                    "Stream keys must not decrease",
                    context={"previous": previous, "current": record_key},
                )
            previous = record_key
            yield record
    finally:
        for resource in (iterator, stream):
            close = getattr(resource, "close", None)
            if close is not None:
                close()
