from datetime import timedelta

import pytest

from carecircle.exceptions import ValidationError
from carecircle.ops import HealthMonitor, StructuredLogger
from carecircle.presence import PresenceRegistry
from carecircle.recurrence import to_epoch_ms


def test_presence_window(clock) -> None:
    registry = PresenceRegistry(online_window=timedelta(seconds=30), clock=clock)
    assert registry.status("kid-ryan")["online"] is False

    seen = registry.heartbeat(" kid-ryan ")
    assert seen == to_epoch_ms(clock())
    assert registry.last_seen("kid-ryan") == seen

    clock.advance(seconds=30)
    assert registry.status("kid-ryan")["online"] is True
    clock.advance(seconds=1)
    status = registry.status("kid-ryan")
    assert status["online"] is False
    assert status["lastSeenAt"] == seen
    assert status["now"] == to_epoch_ms(clock())

    with pytest.raises(ValidationError):
        registry.heartbeat("   ")


def test_structured_logger_tail_and_file(tmp_path) -> None:
    path = tmp_path / "logs" / "carecircle.jsonl"
    logger = StructuredLogger(path=path, limit=2)
    logger.log("task_created", task="a")
    logger.warning("enforce_not_overdue", task="a")
    logger.log("task_acked", task="a")

    assert [entry["event"] for entry in logger.tail()] == ["enforce_not_overdue", "task_acked"]
    assert len(path.read_text(encoding="utf-8").splitlines()) == 3


def test_health_monitor_reports_counters() -> None:
    monitor = HealthMonitor("svc", endpoints=["GET /"], counters=lambda: {"normal": 2})
    status = monitor.status()
    assert status["ok"] is True
    assert status["endpoints"] == ["GET /"]
    assert status["tasks"] == {"normal": 2}
