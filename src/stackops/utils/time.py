"""Time helpers."""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime, timezone

ARTIFACT_TIMESTAMP_FORMAT = "%Y-%m-%d-%H-%M-%S"

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(tz=timezone.utc)


def format_artifact_timestamp(moment: datetime) -> str:
    return moment.strftime(ARTIFACT_TIMESTAMP_FORMAT)


def parse_artifact_timestamp(value: str) -> datetime:
    """Parse a filename timestamp; the result is UTC."""
    return datetime.strptime(value, ARTIFACT_TIMESTAMP_FORMAT).replace(tzinfo=timezone.utc)


def elapsed_ms(started: float, finished: float) -> int:
    return int((finished - started) * 1000)
