"""Bounded retry with jittered exponential backoff.

Two budgets are used across the package:

* ``transient_max_attempts`` for network failures, 5xx and timeouts
  (:class:`TransientStoreError`);
* ``index_max_attempts`` for lost compare-and-swap races on index documents,
  consumed only by :mod:`marks3.metadata`.

Both use the same delay curve: ``base * 2**attempt`` capped at ``max``, with
"equal jitter" (half fixed, half random) so that writers that collided once do
not collide again on the next attempt.
"""

from __future__ import annotations

import logging
import random
import time
from typing import Callable, TypeVar

from marks3.config import WikiStoreConfig
from marks3.errors import TransientStoreError

logger = logging.getLogger(__name__)

T = TypeVar("T")


def backoff_delay(attempt: int, config: WikiStoreConfig) -> float:
    """Return the sleep in seconds before retry number ``attempt`` (0-based)."""
    ceiling = min(config.backoff_max_ms, config.backoff_base_ms * (2**attempt))
    half = ceiling / 2.0
    return (half + random.uniform(0.0, half)) / 1000.0


def sleep_before_retry(attempt: int, config: WikiStoreConfig) -> None:
    delay = backoff_delay(attempt, config)
    if delay > 0:
        time.sleep(delay)


def call_with_retry(
    func: Callable[[], T],
    *,
    config: WikiStoreConfig,
    operation: str,
) -> T:
    """Run ``func``, retrying only on :class:`TransientStoreError`.

    Every other error propagates on first occurrence. After
    ``config.transient_max_attempts`` failed attempts the last transient error
    is re-raised.
    """
    attempts = max(1, config.transient_max_attempts)
    for attempt in range(attempts):
        try:
            return func()
        except TransientStoreError as e:
            if attempt + 1 >= attempts:
                logger.warning("%s failed after %d attempts: %s", operation, attempts, e)
                raise
            logger.info(
                "%s hit a transient failure (attempt %d/%d): %s",
                operation,
                attempt + 1,
                attempts,
                e.detail,
            )
            sleep_before_retry(attempt, config)
    raise AssertionError("unreachable")
