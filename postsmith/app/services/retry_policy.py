from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass
from threading import Event
from typing import TypeVar

from postsmith.app.services.errors import JobCancelled, PipelineError

LOGGER = logging.getLogger("postsmith.retry")

T = TypeVar("T")


def is_retryable_error(exc: PipelineError) -> bool:
    return exc.retryable


@dataclass(frozen=True)
class RetryPolicy:
    """Bounded in-stage retry.

    Only `PipelineError`s are considered; anything else is a bug and
    propagates untouched. A non-retryable error is re-raised on the spot
    without consuming the remaining attempts.
    """

    name: str
    max_attempts: int = 2
    is_retryable: Callable[[PipelineError], bool] = is_retryable_error
    backoff_seconds: float = 0.0

    def run(self, operation: Callable[[], T], *, cancel_event: Event | None = None) -> T:
        attempts = max(1, self.max_attempts)
        attempt = 1
        while True:
            _raise_if_cancelled(cancel_event)
            if attempt > 1:
                LOGGER.info("retrying %s attempt=%s/%s", self.name, attempt, attempts)
            try:
                return operation()
            except PipelineError as exc:
                if not self.is_retryable(exc):
                    LOGGER.warning(
                        "%s failed with non-retryable error code=%s attempt=%s",
                        self.name,
                        exc.code,
                        attempt,
                    )
                    raise
                LOGGER.warning(
                    "%s attempt %s/%s failed code=%s error=%s",
                    self.name,
                    attempt,
                    attempts,
                    exc.code,
                    exc.message,
                )
                if attempt >= attempts:
                    LOGGER.error("%s failed after %s attempts", self.name, attempts)
                    raise
            self._pause(cancel_event)
            attempt += 1

    def _pause(self, cancel_event: Event | None) -> None:
        if self.backoff_seconds <= 0:
            return
        if cancel_event is None:
            time.sleep(self.backoff_seconds)
            return
        if cancel_event.wait(self.backoff_seconds):
            raise JobCancelled()


def _raise_if_cancelled(cancel_event: Event | None) -> None:
    if cancel_event is not None and cancel_event.is_set():
        raise JobCancelled()
