"""Shared fixtures: a controllable clock and clean trace context."""

import pytest

from neuralminer.observability import clear_trace_context


class FakeClock:
    """Manually advanced seconds source."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture(autouse=True)
def _clean_trace_context():
    clear_trace_context()
    yield
    clear_trace_context()
