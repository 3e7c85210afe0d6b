"""HTTP client and background helpers for CareCircle front ends."""

from __future__ import annotations

import asyncio
import json
from typing import Any, Callable, Dict, Generic, Iterable, List, Mapping, Optional, Sequence, TypeVar
from urllib.error import HTTPError, URLError
from urllib.parse import quote, urlencode
from urllib.request import Request as URLRequest, urlopen

from .exceptions import (
    NotFoundError,
    PermissionDeniedError,
    ProxyFailure,
    TaskNotCompletedError,
    TaskNotFoundError,
    ValidationError,
)
from .ops import StructuredLogger

T = TypeVar("T")

DEFAULT_BASE_URL = "http://localhost:4000"
PRESENCE_POLL_SECONDS = 5.0

_STATUS_ERRORS = {
    400: ValidationError,
    403: PermissionDeniedError,
    404: NotFoundError,
    409: TaskNotCompletedError,
}


def _error_detail(payload: bytes) -> str:
    try:
        data = json.loads(payload)
    except ValueError:
        return payload.decode("utf-8", "replace").strip()
    if isinstance(data, dict):
        return str(data.get("detail") or data.get("error") or data)
    return str(data)


class CareCircleClient:
    """Blocking JSON client for the task API.

    Error responses are raised as the matching :mod:`carecircle.exceptions`
    class; transport problems surface as :class:`ProxyFailure`.
    """

    def __init__(
        self,
        base_url: str = DEFAULT_BASE_URL,
        *,
        acting_user: Optional[str] = None,
        opener: Callable[..., Any] = urlopen,
        timeout: float = 6,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.acting_user = acting_user
        self._opener = opener
        self._timeout = timeout

    def request(self, method: str, path: str, body: Any = None) -> Any:
        headers = {"Accept": "application/json"}
        if self.acting_user:
            headers["x-user-id"] = self.acting_user
        data = None
        if body is not None:
            headers["Content-Type"] = "application/json"
            data = json.dumps(body).encode("utf-8")
        req = URLRequest(f"{self.base_url}{path}", data=data, headers=headers, method=method)
        try:
            with self._opener(req, timeout=self._timeout) as resp:
                payload = resp.read()
        except HTTPError as exc:
            error = _STATUS_ERRORS.get(exc.code)
            if exc.code == 404 and path.startswith("/api/tasks/"):
                error = TaskNotFoundError
            detail = _error_detail(exc.read() or b"")
            if error is None:
                raise ProxyFailure(f"HTTP {exc.code}: {detail}") from exc
            raise error(detail) from exc
        except (URLError, TimeoutError, OSError) as exc:
            raise ProxyFailure(str(getattr(exc, "reason", exc))) from exc
        if not payload:
            return None
        try:
            return json.loads(payload)
        except ValueError as exc:
            raise ProxyFailure("Response was not JSON.") from exc

    def _task_path(self, task_id: str, action: str = "") -> str:
        path = f"/api/tasks/{quote(task_id, safe='')}"
        return f"{path}/{action}" if action else path

    # Reads -----------------------------------------------------------------
    def plan(self) -> Dict[str, Any]:
        return self.request("GET", "/api/plan")

    def users(self) -> List[Dict[str, Any]]:
        return self.request("GET", "/api/users")

    def tasks(self) -> List[Dict[str, Any]]:
        return self.request("GET", "/api/tasks")

    def task(self, task_id: str) -> Dict[str, Any]:
        return self.request("GET", self._task_path(task_id))

    def load_all(self) -> Dict[str, Any]:
        return {"users": self.users(), "tasks": self.tasks()}

    def presence(self, user_id: str) -> Dict[str, Any]:
        return self.request("GET", f"/api/device/presence?{urlencode({'userId': user_id})}")

    # Writes ----------------------------------------------------------------
    def create_task(self, payload: Mapping[str, Any]) -> Dict[str, Any]:
        return self.request("POST", "/api/tasks", dict(payload))

    def update_task(self, task_id: str, changes: Mapping[str, Any]) -> Dict[str, Any]:
        return self.request("PATCH", self._task_path(task_id), dict(changes))

    def delete_task(self, task_id: str) -> bool:
        return bool(self.request("DELETE", self._task_path(task_id)).get("deleted"))

    def delete_or_cancel(self, task_id: str) -> Dict[str, Any]:
        """Delete the task, cancelling it instead when the delete is refused."""

        try:
            deleted = self.delete_task(task_id)
        except (TaskNotCompletedError, ProxyFailure):
            return {"deleted": False, "cancelled": True, "task": self.cancel(task_id)}
        return {"deleted": deleted, "cancelled": False, "task": None}

    def ack(self, task_id: str) -> Dict[str, Any]:
        return self.request("POST", self._task_path(task_id, "ack"))

    def hold(self, task_id: str, minutes: int) -> Dict[str, Any]:
        return self.request("POST", self._task_path(task_id, "hold"), {"minutes": minutes})

    def resume(self, task_id: str) -> Dict[str, Any]:
        return self.request("POST", self._task_path(task_id, "resume"))

    def enforce(self, task_id: str, *, channel: str = "ws", action: Optional[str] = None) -> Dict[str, Any]:
        body: Dict[str, Any] = {"channel": channel}
        if action:
            body["action"] = action
        return self.request("POST", self._task_path(task_id, "enforce"), body)

    def clear_enforcement(self, task_id: str) -> Dict[str, Any]:
        return self.request("POST", self._task_path(task_id, "clear-enforcement"))

    def cancel(self, task_id: str) -> Dict[str, Any]:
        return self.request("POST", self._task_path(task_id, "cancel"))

    def attach_proof(self, task_id: str, proof_key: str) -> Dict[str, Any]:
        return self.request("POST", self._task_path(task_id, "proof"), {"proofKey": proof_key})

    def parental_enforce(self, target_user_id: str, action: str, reason: str = "") -> Dict[str, Any]:
        body = {"targetUserId": target_user_id, "action": action, "reason": reason}
        return self.request("POST", "/api/parental/enforce", body)

    def heartbeat(self, user_id: str) -> Dict[str, Any]:
        return self.request("POST", "/api/device/heartbeat", {"userId": user_id})


def sort_for_display(tasks: Iterable[Mapping[str, Any]], assignee_order: Sequence[str] = ()) -> List[Mapping[str, Any]]:
    """Group by assignee (in ``assignee_order``), then due time, then title."""

    ranks = {user_id: index for index, user_id in enumerate(assignee_order)}
    unranked = len(ranks) + 9999
    return sorted(
        tasks,
        key=lambda task: (
            ranks.get(task.get("assignedTo") or "", unranked),
            task.get("due") or 0,
            str(task.get("title") or "").lower(),
        ),
    )


class LatestLoader(Generic[T]):
    """Run blocking loads off the event loop where the most recent request wins.

    Starting a new load cancels the one still in flight; a superseded load
    resolves to ``None`` and never touches :attr:`latest`.
    """

    def __init__(self, load: Callable[[], T], *, on_result: Optional[Callable[[T], None]] = None) -> None:
        self._load = load
        self._on_result = on_result
        self._generation = 0
        self._inflight: Optional[asyncio.Future] = None
        self.latest: Optional[T] = None

    async def refresh(self) -> Optional[T]:
        self._generation += 1
        generation = self._generation
        if self._inflight is not None and not self._inflight.done():
            self._inflight.cancel()
        inflight = asyncio.ensure_future(asyncio.to_thread(self._load))
        self._inflight = inflight
        try:
            result = await inflight
        except asyncio.CancelledError:
            if generation != self._generation:
                return None
            raise
        if generation != self._generation:
            return None
        self.latest = result
        if self._on_result is not None:
            self._on_result(result)
        return result


class PresencePoller:
    """Poll presence for a fixed set of users on a fixed interval.

    One request per user is fanned out concurrently each tick. A failing
    request is logged and leaves that user's previous status in place.
    """

    def __init__(
        self,
        fetch: Callable[[str], Dict[str, Any]],
        user_ids: Iterable[str],
        *,
        interval: float = PRESENCE_POLL_SECONDS,
        logger: Optional[StructuredLogger] = None,
    ) -> None:
        self._fetch = fetch
        self.user_ids = tuple(user_ids)
        self.interval = interval
        self._logger = logger or StructuredLogger()
        self.statuses: Dict[str, Dict[str, Any]] = {}

    async def poll_once(self) -> Dict[str, Dict[str, Any]]:
        results = await asyncio.gather(
            *(asyncio.to_thread(self._fetch, user_id) for user_id in self.user_ids),
            return_exceptions=True,
        )
        for user_id, result in zip(self.user_ids, results):
            if isinstance(result, Exception):
                self._logger.warning(
                    "presence_poll_failed", user=user_id, error=type(result).__name__, detail=str(result)
                )
                continue
            if isinstance(result, BaseException):
                raise result
            self.statuses[user_id] = result
        return dict(self.statuses)

    async def run(self, stop: asyncio.Event) -> None:
        while not stop.is_set():
            await self.poll_once()
            try:
                await asyncio.wait_for(stop.wait(), timeout=self.interval)
            except asyncio.TimeoutError:
                continue


__all__ = [
    "CareCircleClient",
    "DEFAULT_BASE_URL",
    "LatestLoader",
    "PRESENCE_POLL_SECONDS",
    "PresencePoller",
    "sort_for_display",
]
