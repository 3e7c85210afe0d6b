"""Device presence tracking fed by kid-device heartbeats."""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Callable, Dict, Optional

from .exceptions import ValidationError
from .recurrence import to_epoch_ms


class PresenceRegistry:
    """Remember the last heartbeat per user; online means seen within the window."""

    def __init__(
        self,
        *,
        online_window: timedelta = timedelta(seconds=60),
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        self._window_ms = int(online_window.total_seconds() * 1000)
        self._clock = clock
        self._last_seen: Dict[str, int] = {}

    def heartbeat(self, user_id: str) -> int:
        user = (user_id or "").strip()
        if not user:
            raise ValidationError("'userId' is required.")
        seen = to_epoch_ms(self._clock())
        self._last_seen[user] = seen
        return seen

    def last_seen(self, user_id: str) -> Optional[int]:
        return self._last_seen.get(user_id)

    def status(self, user_id: str) -> Dict[str, object]:
        now = to_epoch_ms(self._clock())
        seen = self._last_seen.get(user_id)
        return {
            "userId": user_id,
            "online": seen is not None and now - seen <= self._window_ms,
            "lastSeenAt": seen,
            "now": now,
        }


__all__ = ["PresenceRegistry"]
