"""Retry helper for optimistic-concurrency conflicts."""

import logging
from collections.abc import Callable
from typing import TypeVar

from helmsman.domain.exceptions import ConcurrencyError

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_ATTEMPTS = 3


def retry_on_conflict(operation: Callable[[], T], attempts: int = DEFAULT_ATTEMPTS) -> T:
    """
    Run ``operation``, re-running it from scratch on a retriable conflict.

    ``operation`` must perform its own versioned read, validation and
    conditional write, so every attempt starts from fresh data. Only stale
    read/write errors are retried; validation, not-found and claim errors
    propagate on the first occurrence.

    Args:
        operation: Zero-argument callable doing one read-modify-write
        attempts: Total number of attempts (at least 1)

    Raises:
        The last ConcurrencyError once attempts are exhausted.
    """
    attempts = max(1, attempts)
    for attempt in range(1, attempts + 1):
        try:
            return operation()
        except ConcurrencyError as e:
            if not e.retriable or attempt == attempts:
                raise
            logger.info("Conflict on attempt %d/%d, retrying: %s", attempt, attempts, e)
    raise AssertionError("unreachable")
