# SPDX-License-Identifier: LGPL-3.0-or-later
# -*- coding: utf-8 -*-
"""
Retry utilities with exponential backoff.

Errors are classified as transient or terminal. Transient errors are retried
with a delay of ``base_delay_s * 2 ** attempt`` (attempt is 1-based, so the
first retry waits ``2 * base``); terminal errors propagate immediately.

Errors raised by this package carry an ErrorKind. Errors surfaced from the
opaque host tools (DISM, reg.exe, wimlib) only carry text, so a pattern match
on the message is kept as a compatibility fallback.
"""

from __future__ import annotations

import errno
import logging
import re
import time
from dataclasses import dataclass
from typing import Callable, Optional, TypeVar

from .exceptions import ErrorKind, PeForgeError

T = TypeVar("T")

_TRANSIENT_PATTERNS = (
    r"resource (is )?busy",
    r"device or resource busy",
    r"being used by another process",
    r"sharing violation",
    r"access (is )?temporarily denied",
    r"temporar(il)?y",
    r"try again",
    r"0xc1420116",  # DISM: mount directory in use
    r"0xc142011c",  # DISM: image busy / pending unmount
    r"\berror:? (32|33)\b",
)
_TRANSIENT_RE = re.compile("|".join(_TRANSIENT_PATTERNS), re.IGNORECASE)

_TRANSIENT_ERRNOS = {errno.EBUSY, errno.EAGAIN, errno.ETXTBSY}


def classify_message(text: str) -> ErrorKind:
    """Pattern fallback for errors that only carry text."""
    if text and _TRANSIENT_RE.search(text):
        return ErrorKind.TRANSIENT
    return ErrorKind.TERMINAL


def classify_error(exc: BaseException) -> ErrorKind:
    if isinstance(exc, PeForgeError) and exc.kind is not None:
        return exc.kind
    if isinstance(exc, OSError) and exc.errno in _TRANSIENT_ERRNOS:
        return ErrorKind.TRANSIENT
    return classify_message(str(exc))


@dataclass(frozen=True)
class RetryPolicy:
    """
    max_retries: retries after the first attempt (total calls <= max_retries + 1)
    base_delay_s: multiplier for the exponential delay
    max_delay_s: optional ceiling for a single delay (None = uncapped)
    """
    max_retries: int = 5
    base_delay_s: float = 2.0
    max_delay_s: Optional[float] = None
    classify: Callable[[BaseException], ErrorKind] = classify_error

    def delay_for(self, attempt: int) -> float:
        delay = float(self.base_delay_s) * (2 ** attempt)
        if self.max_delay_s is not None:
            delay = min(delay, float(self.max_delay_s))
        return delay


class RetryExecutor:
    def __init__(
        self,
        logger: logging.Logger,
        policy: RetryPolicy,
        *,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.logger = logger
        self.policy = policy
        self._sleep = sleep

    def run(self, operation: Callable[[], T], *, operation_name: str = "operation") -> T:
        """
        Call `operation` until it succeeds, a terminal error is raised, or
        retries are exhausted. The last error is re-raised unchanged.
        """
        total = max(0, int(self.policy.max_retries)) + 1

        for attempt in range(1, total + 1):
            try:
                return operation()
            except Exception as e:
                kind = self.policy.classify(e)
                if kind is ErrorKind.TERMINAL:
                    self.logger.debug("%s failed with terminal error: %s", operation_name, e)
                    raise
                if attempt >= total:
                    self.logger.error("%s failed after %d attempts: %s", operation_name, attempt, e)
                    raise

                delay = self.policy.delay_for(attempt)
                self.logger.warning(
                    "%s failed (attempt %d/%d): %s. Retrying in %.2fs...",
                    operation_name,
                    attempt,
                    total,
                    e,
                    delay,
                )
                self._sleep(delay)

        # Should never reach here, but satisfy type checker
        raise RuntimeError(f"{operation_name} failed with no exception recorded")
