"""Bounded retry with exponential backoff for transient export errors."""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from typing import TypeVar

from company_export.exceptions import AppError

logger = logging.getLogger(__name__)

T = TypeVar("T")


def call_with_retry(
    func: Callable[[], T],
    *,
    max_retries: int,
    backoff_factor: float,
    description: str = "operation",
    sleeper: Callable[[float], None] = time.sleep,
) -> T:
    """Call ``func`` and retry it while it raises a transient ``AppError``.

    Waits ``backoff_factor ** attempt`` seconds before retry ``attempt``
    (1-based). Non-transient errors and anything that is not an ``AppError``
    propagate immediately; after ``max_retries`` retries the last transient
    error is re-raised unchanged so callers keep handling its concrete type.

    Parameters
    ----------
    func : Callable[[], T]
        Zero-argument callable to invoke.
    max_retries : int
        Number of retries after the first attempt.
    backoff_factor : float
        Base of the exponential delay, in seconds.
    description : str, optional
        Label used in log messages.
    sleeper : Callable[[float], None], optional
        Sleep function, replaceable in tests.

    Returns
    -------
    T
        Whatever ``func`` returns.
    """
    for attempt in range(max_retries + 1):
        try:
            return func()
        except AppError as error:
            if not error.transient or attempt >= max_retries:
                raise
            delay = backoff_factor ** (attempt + 1)
            logger.warning(
                "Transient failure in %s (attempt %d/%d): %s; retrying in %.2fs",
                description,
                attempt + 1,
                max_retries + 1,
                error,
                delay,
            )
            sleeper(delay)
    raise AssertionError("unreachable")
