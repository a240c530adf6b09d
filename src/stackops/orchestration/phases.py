"""Phase execution shared by the deploy and backup runs.

A phase is a callable that either returns a value or raises ``OpsError``.
``run_phase`` turns that into a :class:`PhaseResult`; callers compose phases
sequentially and stop at the first failure.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Generic, TypeVar

from stackops.domain.models import AuditLogEntry, OperationKind, Outcome, PhaseResult
from stackops.errors import OpsError
from stackops.utils.time import Clock, elapsed_ms

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class PhaseOutcome(Generic[T]):
    result: PhaseResult
    value: T | None = None
    error: OpsError | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


def run_phase(phase: str, action: Callable[[], T]) -> PhaseOutcome[T]:
    started = time.monotonic()
    try:
        value = action()
    except OpsError as exc:
        duration = elapsed_ms(started, time.monotonic())
        logger.error("Phase %s failed (%s): %s", phase, exc.kind.value, exc.message)
        return PhaseOutcome(
            result=PhaseResult(
                phase=phase,
                outcome=Outcome.FAILURE,
                duration_ms=duration,
                error_kind=exc.kind,
                message=exc.message,
            ),
            error=exc,
        )
    duration = elapsed_ms(started, time.monotonic())
    logger.info("Phase %s succeeded in %d ms", phase, duration)
    return PhaseOutcome(
        result=PhaseResult(phase=phase, outcome=Outcome.SUCCESS, duration_ms=duration),
        value=value,
    )


def phase_entry(
    operation: OperationKind,
    run_id: str,
    outcome: PhaseOutcome,
    clock: Clock,
    details: dict[str, object] | None = None,
) -> AuditLogEntry:
    result = outcome.result
    entry_details = dict(details or {})
    if outcome.error is not None and outcome.error.tool_output:
        entry_details["tool_output"] = outcome.error.tool_output
    message = result.message or f"{result.phase} {result.outcome.value}"
    return AuditLogEntry(
        timestamp=clock().isoformat(),
        operation=operation,
        outcome=result.outcome,
        message=message,
        run_id=run_id,
        phase=result.phase,
        duration_ms=result.duration_ms,
        error_kind=result.error_kind,
        details=entry_details,
    )


def excerpt(chunks: list[str], max_chars: int) -> str:
    text = "\n".join(chunk for chunk in chunks if chunk)
    if len(text) <= max_chars:
        return text
    return "..." + text[-(max_chars - 3):]
