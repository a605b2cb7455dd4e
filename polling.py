"""
Cancellation context and the poll state machine shared by the CA and DNS layers.

A Context carries a cancellation flag (threading.Event) and an optional
monotonic deadline.  Every blocking wait in the refresh flow goes through
Context.sleep, a single cancellable timer, so a SIGTERM or an expired
deadline interrupts a poll or a propagation wait immediately instead of
after the full interval.

Poller runs one explicit state machine per poll:

    PENDING --fetch ok, not done--> PENDING
    PENDING --fetch ok, done------> DONE       (returns the result)
    PENDING --fetch raised--------> ERRORED    (re-raises, never retried)
    PENDING --ctx cancelled-------> CANCELED   (raises OperationCancelled)
"""
from __future__ import annotations

import logging
import threading
import time
from enum import Enum
from typing import Callable, Generic, Optional, TypeVar

from errors import DeadlineExceeded, OperationCancelled

logger = logging.getLogger(__name__)

T = TypeVar("T")

# requests rejects a zero timeout; never hand it anything smaller than this
_MIN_CALL_TIMEOUT = 0.001


class Context:
    """Cancellation / deadline carrier passed into every network call."""

    def __init__(
        self,
        timeout: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._event = threading.Event()
        self._clock = clock
        self._deadline = clock() + timeout if timeout else None

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def remaining(self) -> Optional[float]:
        """Seconds until the deadline, or None when the context has no deadline."""
        if self._deadline is None:
            return None
        return max(0.0, self._deadline - self._clock())

    def err(self) -> Optional[OperationCancelled]:
        if self._event.is_set():
            return OperationCancelled("operation cancelled")
        if self._deadline is not None and self._clock() >= self._deadline:
            return DeadlineExceeded("deadline exceeded")
        return None

    def raise_if_done(self) -> None:
        exc = self.err()
        if exc is not None:
            raise exc

    def call_timeout(self, default: float) -> float:
        """Bound a per-call network timeout by the time left on the deadline."""
        self.raise_if_done()
        remaining = self.remaining()
        if remaining is None:
            return default
        return max(_MIN_CALL_TIMEOUT, min(default, remaining))

    def sleep(self, seconds: float) -> None:
        """Block for *seconds*, returning early with an error on cancel or deadline."""
        self.raise_if_done()
        remaining = self.remaining()
        wait_for = seconds if remaining is None else min(seconds, remaining)
        if wait_for > 0 and self._event.wait(wait_for):
            raise OperationCancelled("operation cancelled")
        if remaining is not None and remaining <= seconds:
            raise DeadlineExceeded("deadline exceeded")


class PollState(str, Enum):
    PENDING = "pending"
    DONE = "done"
    ERRORED = "errored"
    CANCELED = "canceled"


class Poller(Generic[T]):
    """Fetch a resource every *interval* seconds until *is_done* accepts it."""

    def __init__(
        self,
        fetch: Callable[[], T],
        is_done: Callable[[T], bool],
        interval: float,
        label: str = "operation",
    ) -> None:
        self._fetch = fetch
        self._is_done = is_done
        self.interval = interval
        self.label = label
        self.state = PollState.PENDING
        self.attempts = 0

    def run(self, ctx: Context) -> T:
        while True:
            try:
                ctx.sleep(self.interval)
                result = self._fetch()
            except OperationCancelled:
                self.state = PollState.CANCELED
                logger.info("Stopped polling %s: cancelled", self.label)
                raise
            except Exception:
                self.state = PollState.ERRORED
                raise

            self.attempts += 1
            if self._is_done(result):
                self.state = PollState.DONE
                return result
            logger.debug("%s still pending after %d poll(s)", self.label, self.attempts)


def poll_until(
    ctx: Context,
    fetch: Callable[[], T],
    is_done: Callable[[T], bool],
    interval: float,
    label: str = "operation",
) -> T:
    return Poller(fetch, is_done, interval, label).run(ctx)
