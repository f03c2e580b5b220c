"""Deadlines and bounded polling used by readiness and extraction waits."""

import time
from dataclasses import dataclass, field
from typing import Callable, Optional, TypeVar, Tuple, Type

from .log import get_logger

logger = get_logger(__name__)

T = TypeVar("T")


@dataclass
class Deadline:
    """Monotonic deadline measured from construction."""

    timeout: float
    started: float = field(default_factory=time.monotonic)

    def elapsed(self) -> float:
        return time.monotonic() - self.started

    def remaining(self) -> float:
        """Get remaining time until deadline."""
        return max(0.0, self.timeout - self.elapsed())

    def is_expired(self) -> bool:
        return self.elapsed() >= self.timeout


@dataclass
class PollOutcome:
    """Result of poll_until: the last value and the last swallowed error."""

    satisfied: bool
    value: object = None
    last_error: Optional[BaseException] = None
    attempts: int = 0
    elapsed: float = 0.0


def poll_until(
    probe: Callable[[], T],
    *,
    timeout: Optional[float] = None,
    interval: float = 0.1,
    max_attempts: Optional[int] = None,
    retry_on: Tuple[Type[BaseException], ...] = (),
    is_done: Callable[[T], bool] = bool,
    abort: Optional[Callable[[], Optional[BaseException]]] = None,
    sleep: Callable[[float], None] = time.sleep,
) -> PollOutcome:
    """Call probe until is_done(result) holds, the deadline passes, or attempts run out.

    Exceptions listed in retry_on are remembered as last_error and the probe is
    retried. abort is checked before every attempt; a returned exception is
    raised immediately.
    """
    if timeout is None and max_attempts is None:
        raise ValueError("poll_until needs a timeout or max_attempts bound")

    deadline = Deadline(timeout if timeout is not None else float("inf"))
    outcome = PollOutcome(satisfied=False)

    while True:
        if abort is not None:
            failure = abort()
            if failure is not None:
                raise failure

        outcome.attempts += 1
        try:
            value = probe()
            outcome.value = value
            if is_done(value):
                outcome.satisfied = True
                break
        except retry_on as e:  # pylint: disable=catching-non-exception
            outcome.last_error = e
            logger.debug("Poll attempt %s failed: %s", outcome.attempts, e)

        if max_attempts is not None and outcome.attempts >= max_attempts:
            break
        if deadline.remaining() <= 0:
            break
        sleep(min(interval, deadline.remaining()))

    outcome.elapsed = deadline.elapsed()
    return outcome
