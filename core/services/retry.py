# core/services/retry.py
"""
Bounded retry for transient write conflicts.

Deadlocks, serialization failures and SQLite's "database is locked" all
surface as django.db.OperationalError. The whole operation is re-run,
so it must be the outermost transaction: inside an enclosing atomic
block the connection is already broken and retrying would be wrong, so
the error is re-raised immediately.

Domain errors (InsufficientStock, InvalidQuantity, ...) are never retried.
"""

from __future__ import annotations

import functools
import logging
import time
from typing import Callable, TypeVar

from django.conf import settings
from django.db import OperationalError, transaction

from core.exceptions import ConcurrencyConflict

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_RETRIES = 3
BACKOFF_SECONDS = 0.05


def _max_attempts() -> int:
    return max(1, int(getattr(settings, "INVENTORY_CONFLICT_RETRIES", DEFAULT_RETRIES)))


def run_with_conflict_retry(func: Callable[..., T], *args, attempts: int | None = None, **kwargs) -> T:
    attempts = attempts or _max_attempts()
    last_error: Exception | None = None

    for attempt in range(1, attempts + 1):
        try:
            return func(*args, **kwargs)
        except (OperationalError, ConcurrencyConflict) as exc:
            if transaction.get_connection().in_atomic_block:
                raise
            last_error = exc
            logger.warning(
                "Conflict in %s (attempt %s/%s): %s",
                getattr(func, "__qualname__", func),
                attempt,
                attempts,
                exc,
            )
            if attempt < attempts:
                time.sleep(BACKOFF_SECONDS * attempt)

    raise ConcurrencyConflict() from last_error


def retry_on_conflict(func: Callable[..., T]) -> Callable[..., T]:
    """Decorator form; place it above @transaction.atomic."""

    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        return run_with_conflict_retry(func, *args, **kwargs)

    return wrapper
