from datetime import datetime, timedelta

import pytest

from carecircle.ops import StructuredLogger
from carecircle.store import TaskStore


class FakeClock:
    def __init__(self, start: datetime) -> None:
        self.current = start

    def __call__(self) -> datetime:
        return self.current

    def advance(self, **delta: float) -> datetime:
        self.current += timedelta(**delta)
        return self.current


@pytest.fixture
def clock() -> FakeClock:
    # A Tuesday morning.
    return FakeClock(datetime(2026, 10, 20, 9, 0))


@pytest.fixture
def logger() -> StructuredLogger:
    return StructuredLogger()


@pytest.fixture
def store(clock: FakeClock, logger: StructuredLogger) -> TaskStore:
    counter = iter(range(1, 10_000))
    return TaskStore(clock=clock, logger=logger, id_factory=lambda: f"task-{next(counter)}")
