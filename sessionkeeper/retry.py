# -*- coding: utf-8 -*-
"""Fixed-delay retry, driven by whatever timer the caller hands in."""

from __future__ import annotations
import logging
from dataclasses import dataclass
from typing import Callable

from .config import RENEW_MAX_ATTEMPTS, RENEW_RETRY_DELAY

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class RetryPolicy:
    max_attempts: int = RENEW_MAX_ATTEMPTS
    delay_seconds: float = RENEW_RETRY_DELAY

    def should_retry(self, attempt: int) -> bool:
        """``attempt`` is zero-based: the one that just failed."""
        return attempt + 1 < self.max_attempts


def run_with_retry(operation: Callable[[int], None], policy: RetryPolicy,
                   defer: Callable[[float, Callable[[], None]], None],
                   on_give_up: Callable[[Exception], None],
                   attempt: int = 0) -> None:
    """
    Call ``operation(attempt)``. When it raises, either ``defer`` the next
    attempt by ``policy.delay_seconds`` or, once ``policy.max_attempts``
    attempts have failed, call ``on_give_up`` with the last error.
    """
    try:
        operation(attempt)
    except Exception as e:
        if policy.should_retry(attempt):
            log.warning("Attempt %d/%d failed: %s - retrying in %ss",
                        attempt + 1, policy.max_attempts, e, policy.delay_seconds)
            defer(policy.delay_seconds,
                  lambda: run_with_retry(operation, policy, defer, on_give_up, attempt + 1))
        else:
            log.error("Attempt %d/%d failed: %s - giving up", attempt + 1, policy.max_attempts, e)
            on_give_up(e)
