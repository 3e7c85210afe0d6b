"""Operational utilities for CareCircle."""

from __future__ import annotations

import json
from datetime import datetime
from pathlib import Path
from typing import Callable, Dict, Optional, Sequence


class StructuredLogger:
    """Write JSON lines log entries for admin inspection."""

    def __init__(self, *, path: Path | None = None, limit: int = 1000) -> None:
        self.path = path
        self._limit = limit
        self._entries: list[dict] = []

    def log(self, event_type: str, **fields: object) -> dict:
        entry = {"timestamp": datetime.utcnow().isoformat(), "event": event_type, **fields}
        self._entries.append(entry)
        if len(self._entries) > self._limit:
            del self._entries[: len(self._entries) - self._limit]
        if self.path:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with self.path.open("a", encoding="utf-8") as handle:
                handle.write(json.dumps(entry, default=str) + "\n")
        return entry

    def warning(self, event_type: str, **fields: object) -> dict:
        return self.log(event_type, level="warning", **fields)

    def tail(self, limit: int = 50) -> tuple[dict, ...]:
        return tuple(self._entries[-limit:])

    def events(self, event_type: str) -> tuple[dict, ...]:
        return tuple(entry for entry in self._entries if entry["event"] == event_type)


class HealthMonitor:
    """Aggregate runtime information for the service index page."""

    def __init__(
        self,
        name: str,
        *,
        endpoints: Sequence[str] = (),
        counters: Optional[Callable[[], Dict[str, int]]] = None,
    ) -> None:
        self.name = name
        self.endpoints = tuple(endpoints)
        self._counters = counters
        self.started_at = datetime.utcnow()

    def status(self) -> dict:
        payload = {
            "ok": True,
            "name": self.name,
            "uptime_seconds": int((datetime.utcnow() - self.started_at).total_seconds()),
            "endpoints": list(self.endpoints),
        }
        if self._counters is not None:
            payload["tasks"] = dict(self._counters())
        return payload


__all__ = ["HealthMonitor", "StructuredLogger"]
