"""Shared fixtures: a manually advanced scheduler for the sync queue."""

import pytest


class FakeTimer:
    def __init__(self, due: float, callback):
        self.due = due
        self.callback = callback
        self.cancelled = False
        self.fired = False

    def cancel(self):
        self.cancelled = True


class FakeScheduler:
    """Timers only fire when the test calls advance()."""

    def __init__(self):
        self.now = 0.0
        self.timers = []

    def call_later(self, delay_seconds, callback):
        timer = FakeTimer(self.now + delay_seconds, callback)
        self.timers.append(timer)
        return timer

    def advance(self, seconds: float) -> None:
        self.now += seconds
        due = [
            t for t in self.timers
            if not t.cancelled and not t.fired and t.due <= self.now + 1e-9
        ]
        for timer in sorted(due, key=lambda t: t.due):
            timer.fired = True
            timer.callback()

    @property
    def live_timers(self):
        return [t for t in self.timers if not t.cancelled and not t.fired]


@pytest.fixture
def fake_scheduler():
    return FakeScheduler()
