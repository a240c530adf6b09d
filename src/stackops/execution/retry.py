"""Bounded retry with exponential backoff."""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import TypeVar

from stackops.domain.models import RetryState

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class BackoffPolicy:
    """Exponential backoff policy with upper bound."""

    max_attempts: int = 3
    base_seconds: float = 2.0
    cap_seconds: float = 60.0

    def next_delay(self, attempt: int) -> float:
        """Delay in seconds to wait after failed attempt number ``attempt``."""
        delay = self.base_seconds * (2 ** (max(attempt, 1) - 1))
        return float(min(delay, self.cap_seconds))


class RetryExhausted(Exception):
    def __init__(self, state: RetryState, last_exc: BaseException) -> None:
        self.state = state
        self.last_exc = last_exc
        super().__init__(
            f"{state.operation_id} failed after {state.attempts} attempt(s): {state.last_error}"
        )


def retry_call(
    fn: Callable[[], T],
    *,
    operation_id: str,
    policy: BackoffPolicy,
    retry_on: tuple[type[BaseException], ...],
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """Call ``fn`` until it succeeds or ``policy.max_attempts`` is reached.

    Only exceptions in ``retry_on`` are retried; anything else propagates
    immediately. Exhaustion raises :class:`RetryExhausted` carrying the final
    :class:`RetryState`.
    """
    state = RetryState(operation_id=operation_id)
    while True:
        state.attempts += 1
        try:
            return fn()
        except retry_on as exc:
            state.last_error = str(exc)
            if state.attempts >= policy.max_attempts:
                state.next_backoff = None
                raise RetryExhausted(state, exc) from exc
            state.next_backoff = policy.next_delay(state.attempts)
            logger.warning(
                "%s attempt %d/%d failed: %s; retrying in %.1fs",
                operation_id,
                state.attempts,
                policy.max_attempts,
                exc,
                state.next_backoff,
            )
            sleep(state.next_backoff)
