"""Unit tests for the bounded polling helper."""

import pytest

from app.hosting.errors import ResourceStateError, WaitTimeoutError
from app.hosting.waiter import wait_until


class FakeClock:
    def __init__(self):
        self.now = 0.0
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


class TestWaitUntil:
    def test_returns_first_ready_value(self):
        clock = FakeClock()
        states = iter(["pending", "pending", "running"])
        value = wait_until(
            lambda: next(states),
            lambda s: s == "running",
            interval=5,
            timeout=60,
            description="instance",
            sleep=clock.sleep,
            clock=clock,
        )
        assert value == "running"
        assert clock.sleeps == [5, 5]

    def test_times_out(self):
        clock = FakeClock()
        with pytest.raises(WaitTimeoutError, match="instance"):
            wait_until(
                lambda: "pending",
                lambda s: s == "running",
                interval=10,
                timeout=30,
                description="instance",
                sleep=clock.sleep,
                clock=clock,
            )
        assert clock.now <= 30

    def test_failed_state_stops_early(self):
        clock = FakeClock()
        with pytest.raises(ResourceStateError):
            wait_until(
                lambda: "terminated",
                lambda s: s == "running",
                interval=5,
                timeout=60,
                description="instance",
                is_failed=lambda s: s == "terminated",
                sleep=clock.sleep,
                clock=clock,
            )
        assert clock.sleeps == []
