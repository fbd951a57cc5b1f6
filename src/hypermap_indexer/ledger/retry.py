"""Retry helpers with exponential backoff for remote ledger calls."""

from __future__ import annotations

from dataclasses import dataclass, field
import logging
import random
import threading
from typing import Callable, TypeVar

from hypermap_indexer.constants import (
    DEFAULT_RETRY_BASE_DELAY_SECONDS,
    DEFAULT_RETRY_JITTER_SECONDS,
    MAX_RETRIES,
)

from .errors import IngestionCancelled, is_transient_error, reason_code

T = TypeVar("T")

logger = logging.getLogger("hypermap_indexer.ledger")


def cancellable_sleep(seconds: float, cancel_event: threading.Event | None) -> None:
    """Sleep for `seconds`, raising IngestionCancelled if the event fires first."""
    if cancel_event is None:
        cancel_event = threading.Event()
    if cancel_event.is_set():
        raise IngestionCancelled("cancelled before wait")
    if seconds <= 0:
        return
    if cancel_event.wait(seconds):
        raise IngestionCancelled("cancelled during wait")


@dataclass
class RetryPolicy:
    """Single retry/backoff policy shared by every remote call path.

    A call classified as transient is retried up to `max_retries` times with
    `base_delay_seconds * 2**attempt + uniform(0, jitter_seconds)` between
    attempts (attempt counts from zero). Anything the classifier does not
    recognise as transient propagates immediately. When retries run out the
    last error is re-raised unchanged.
    """

    max_retries: int = MAX_RETRIES
    base_delay_seconds: float = DEFAULT_RETRY_BASE_DELAY_SECONDS
    jitter_seconds: float = DEFAULT_RETRY_JITTER_SECONDS
    classifier: Callable[[BaseException], bool] = is_transient_error
    cancel_event: threading.Event | None = None
    sleep: Callable[[float], None] | None = None
    rng: random.Random = field(default_factory=random.Random)

    def __post_init__(self) -> None:
        if self.max_retries < 0:
            raise ValueError("max_retries must be >= 0")
        if self.base_delay_seconds < 0 or self.jitter_seconds < 0:
            raise ValueError("retry delays must be >= 0")

    def delay_for(self, attempt: int) -> float:
        jitter = self.rng.uniform(0.0, self.jitter_seconds) if self.jitter_seconds > 0 else 0.0
        return self.base_delay_seconds * (2**attempt) + jitter

    def call(self, func: Callable[[], T], *, operation: str = "call") -> T:
        attempt = 0
        while True:
            if self.cancel_event is not None and self.cancel_event.is_set():
                raise IngestionCancelled(f"op={operation}")
            try:
                return func()
            except IngestionCancelled:
                raise
            except Exception as exc:
                if not self.classifier(exc):
                    logger.error(
                        "Ledger call failed permanently op=%s attempt=%s code=%s",
                        operation,
                        attempt + 1,
                        reason_code(exc),
                    )
                    raise
                if attempt >= self.max_retries:
                    logger.error(
                        "Ledger retries exhausted op=%s attempts=%s code=%s",
                        operation,
                        attempt + 1,
                        reason_code(exc),
                    )
                    raise
                delay = self.delay_for(attempt)
                attempt += 1
                logger.warning(
                    "Ledger retry op=%s attempt=%s/%s delay=%.2f code=%s",
                    operation,
                    attempt,
                    self.max_retries,
                    delay,
                    reason_code(exc),
                )
                self._wait(delay)

    def _wait(self, delay: float) -> None:
        if self.sleep is not None:
            self.sleep(delay)
            return
        cancellable_sleep(delay, self.cancel_event)
