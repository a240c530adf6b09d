from __future__ import annotations

import pytest

from stackops.errors import FetchError, UploadError
from stackops.execution.retry import BackoffPolicy, RetryExhausted, retry_call


def test_backoff_grows_exponentially_up_to_cap() -> None:
    policy = BackoffPolicy(max_attempts=5, base_seconds=2.0, cap_seconds=10.0)

    assert [policy.next_delay(n) for n in range(1, 5)] == [2.0, 4.0, 8.0, 10.0]


def test_retry_returns_first_success() -> None:
    calls = {"n": 0}
    sleeps: list[float] = []

    def flaky() -> str:
        calls["n"] += 1
        if calls["n"] < 3:
            raise UploadError("reset")
        return "done"

    result = retry_call(
        flaky,
        operation_id="upload",
        policy=BackoffPolicy(max_attempts=3, base_seconds=0.5),
        retry_on=(UploadError,),
        sleep=sleeps.append,
    )

    assert result == "done"
    assert sleeps == [0.5, 1.0]


def test_retry_exhaustion_carries_state() -> None:
    def always_fails() -> None:
        raise UploadError("bucket unreachable")

    with pytest.raises(RetryExhausted) as info:
        retry_call(
            always_fails,
            operation_id="upload x",
            policy=BackoffPolicy(max_attempts=3, base_seconds=0),
            retry_on=(UploadError,),
            sleep=lambda _: None,
        )

    state = info.value.state
    assert state.attempts == 3
    assert state.last_error == "bucket unreachable"
    assert state.next_backoff is None
    assert isinstance(info.value.last_exc, UploadError)


def test_non_retryable_errors_propagate_immediately() -> None:
    calls = {"n": 0}

    def fails() -> None:
        calls["n"] += 1
        raise FetchError("merge conflict")

    with pytest.raises(FetchError):
        retry_call(
            fails,
            operation_id="fetch",
            policy=BackoffPolicy(max_attempts=3),
            retry_on=(UploadError,),
            sleep=lambda _: None,
        )
    assert calls["n"] == 1
