import asyncio
import io
import json
import threading
import time
from email.message import Message
from urllib.error import HTTPError, URLError

import pytest

from carecircle.client import CareCircleClient, LatestLoader, PresencePoller, sort_for_display
from carecircle.exceptions import NotFoundError, ProxyFailure, TaskNotCompletedError, TaskNotFoundError
from carecircle.ops import StructuredLogger


class FakeResponse:
    def __init__(self, payload) -> None:
        self._body = json.dumps(payload).encode("utf-8")

    def read(self) -> bytes:
        return self._body

    def __enter__(self) -> "FakeResponse":
        return self

    def __exit__(self, *exc_info) -> None:
        return None


def http_error(code: int, detail: str) -> HTTPError:
    body = json.dumps({"error": "x", "detail": detail}).encode("utf-8")
    return HTTPError("http://api/", code, "error", Message(), io.BytesIO(body))


class ScriptedOpener:
    def __init__(self, *outcomes) -> None:
        self.outcomes = list(outcomes)
        self.requests = []

    def __call__(self, request, timeout=None):
        self.requests.append(request)
        outcome = self.outcomes.pop(0)
        if isinstance(outcome, Exception):
            raise outcome
        return FakeResponse(outcome)


def test_client_sends_acting_user_and_json() -> None:
    opener = ScriptedOpener({"id": "t1", "state": "held"})
    client = CareCircleClient("http://api/", acting_user="owner", opener=opener)

    task = client.hold("t1", 30)

    request = opener.requests[0]
    assert task["state"] == "held"
    assert request.full_url == "http://api/api/tasks/t1/hold"
    assert request.get_header("X-user-id") == "owner"
    assert json.loads(request.data) == {"minutes": 30}


def test_client_maps_error_statuses() -> None:
    client = CareCircleClient(opener=ScriptedOpener(http_error(404, "Task 'x' does not exist.")))
    with pytest.raises(TaskNotFoundError, match="does not exist"):
        client.task("x")

    client = CareCircleClient(opener=ScriptedOpener(http_error(404, "Not Found")))
    with pytest.raises(NotFoundError) as caught:
        client.presence("kid-ryan")
    assert not isinstance(caught.value, TaskNotFoundError)

    client = CareCircleClient(opener=ScriptedOpener(http_error(500, "boom")))
    with pytest.raises(ProxyFailure, match="HTTP 500"):
        client.tasks()

    client = CareCircleClient(opener=ScriptedOpener(URLError("refused")))
    with pytest.raises(ProxyFailure):
        client.plan()


def test_delete_falls_back_to_cancel() -> None:
    opener = ScriptedOpener(http_error(409, "not completed"), {"id": "t1", "state": "cancelled"})
    result = CareCircleClient(opener=opener).delete_or_cancel("t1")

    assert result == {"deleted": False, "cancelled": True, "task": {"id": "t1", "state": "cancelled"}}
    assert opener.requests[0].get_method() == "DELETE"
    assert opener.requests[1].full_url.endswith("/api/tasks/t1/cancel")


def test_delete_completed_task() -> None:
    result = CareCircleClient(opener=ScriptedOpener({"ok": True, "deleted": True})).delete_or_cancel("t1")
    assert result["deleted"] is True
    assert result["cancelled"] is False


def test_sort_for_display() -> None:
    tasks = [
        {"id": "c", "assignedTo": "kid-derek", "due": 1, "title": "a"},
        {"id": "b", "assignedTo": "kid-ryan", "due": 5, "title": "b"},
        {"id": "a", "assignedTo": "kid-ryan", "due": 5, "title": "A"},
        {"id": "d", "title": "loose"},
    ]
    ordered = sort_for_display(tasks, ["kid-ryan", "kid-derek"])
    assert [task["id"] for task in ordered] == ["a", "b", "c", "d"]


def test_latest_loader_discards_superseded_result() -> None:
    release_first = threading.Event()
    calls = []

    def load() -> str:
        calls.append(len(calls))
        if len(calls) == 1:
            release_first.wait(timeout=2)
            return "stale"
        return "fresh"

    published = []
    loader = LatestLoader(load, on_result=published.append)

    async def scenario():
        first = asyncio.ensure_future(loader.refresh())
        await asyncio.sleep(0.05)
        second = await loader.refresh()
        release_first.set()
        return await first, second

    first, second = asyncio.run(scenario())

    assert first is None
    assert second == "fresh"
    assert loader.latest == "fresh"
    assert published == ["fresh"]


def test_presence_poller_ignores_failures() -> None:
    def fetch(user_id: str) -> dict:
        if user_id == "kid-derek":
            raise ProxyFailure("offline")
        return {"userId": user_id, "online": True}

    logger = StructuredLogger()
    poller = PresencePoller(fetch, ["kid-ryan", "kid-derek"], interval=0.01, logger=logger)

    statuses = asyncio.run(poller.poll_once())

    assert statuses == {"kid-ryan": {"userId": "kid-ryan", "online": True}}
    assert logger.events("presence_poll_failed")[0]["user"] == "kid-derek"


def test_presence_poller_keeps_ticking_until_stopped() -> None:
    ticks = []

    def fetch(user_id: str) -> dict:
        ticks.append(time.monotonic())
        if len(ticks) == 1:
            raise KeyError("online")
        return {"userId": user_id, "online": False}

    poller = PresencePoller(fetch, ["kid-ryan"], interval=0.01)

    async def scenario() -> None:
        stop = asyncio.Event()
        runner = asyncio.ensure_future(poller.run(stop))
        while len(ticks) < 3:
            await asyncio.sleep(0.01)
        stop.set()
        await asyncio.wait_for(runner, timeout=1)

    asyncio.run(scenario())

    assert len(ticks) >= 3
    assert poller.statuses["kid-ryan"]["online"] is False
