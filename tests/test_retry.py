"""Tests for jittered backoff and transient retries."""

from __future__ import annotations

import pytest

from marks3 import retry
from marks3.config import WikiStoreConfig
from marks3.errors import PreconditionFailedError, TransientStoreError


def test_backoff_delay_stays_within_equal_jitter_bounds() -> None:
    config = WikiStoreConfig(backoff_base_ms=50, backoff_max_ms=1000)
    for attempt in range(8):
        ceiling = min(1000, 50 * 2**attempt) / 1000.0
        delay = retry.backoff_delay(attempt, config)
        assert ceiling / 2 <= delay <= ceiling


def test_call_with_retry_retries_transient_errors(monkeypatch: pytest.MonkeyPatch) -> None:
    sleeps: list[float] = []
    monkeypatch.setattr(retry.time, "sleep", sleeps.append)
    outcomes: list[object] = [TransientStoreError("get", "reset"), "ok"]

    def _flaky() -> str:
        outcome = outcomes.pop(0)
        if isinstance(outcome, Exception):
            raise outcome
        return str(outcome)

    assert retry.call_with_retry(_flaky, config=WikiStoreConfig(), operation="get") == "ok"
    assert len(sleeps) == 1


def test_call_with_retry_gives_up_after_budget(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(retry.time, "sleep", lambda _s: None)
    calls = []

    def _down() -> None:
        calls.append(1)
        raise TransientStoreError("get", "503")

    with pytest.raises(TransientStoreError):
        retry.call_with_retry(_down, config=WikiStoreConfig(transient_max_attempts=3), operation="get")
    assert len(calls) == 3


def test_call_with_retry_does_not_retry_other_errors() -> None:
    calls = []

    def _conflict() -> None:
        calls.append(1)
        raise PreconditionFailedError("k")

    with pytest.raises(PreconditionFailedError):
        retry.call_with_retry(_conflict, config=WikiStoreConfig(), operation="put")
    assert len(calls) == 1
