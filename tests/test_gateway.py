import io
import json
from email.message import Message
from urllib.error import HTTPError, URLError

import pytest
from fastapi.testclient import TestClient

from carecircle.ops import StructuredLogger
from carecircle.webapp.gateway import create_gateway_app, map_legacy_create, normalize_task, read_assignee_id


class FakeResponse:
    def __init__(self, status: int, body: bytes, content_type: str = "application/json") -> None:
        self.status = status
        self.headers = {"Content-Type": content_type}
        self._body = body

    def read(self) -> bytes:
        return self._body

    def __enter__(self) -> "FakeResponse":
        return self

    def __exit__(self, *exc_info) -> None:
        return None


class FakeOpener:
    def __init__(self, *responses) -> None:
        self.responses = list(responses)
        self.requests = []

    def __call__(self, request, timeout=None):
        self.requests.append((request, timeout))
        outcome = self.responses.pop(0)
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


def json_response(payload, status: int = 200) -> FakeResponse:
    return FakeResponse(status, json.dumps(payload).encode("utf-8"))


def gateway(opener: FakeOpener, logger: StructuredLogger = None) -> TestClient:
    return TestClient(create_gateway_app("http://backend:4000/", opener=opener, timeout=2, logger=logger))


def test_read_assignee_prefers_current_key() -> None:
    assert read_assignee_id({"assignedTo": "kid-ryan", "kidId": "kid-derek"}) == "kid-ryan"
    assert read_assignee_id({"assignee": {"id": "kid-derek"}, "kidId": "x"}) == "kid-derek"
    assert read_assignee_id({"childId": "kid-lovelyn"}) == "kid-lovelyn"
    assert read_assignee_id({"userId": 7}) == "7"
    assert read_assignee_id({"title": "nothing"}) is None


def test_normalize_task_fills_assigned_to() -> None:
    assert normalize_task({"id": "1", "kidId": "kid-ryan"})["assignedTo"] == "kid-ryan"
    assert normalize_task({"id": "1", "assignees": ["kid-derek", "kid-ryan"]})["assignedTo"] == "kid-derek"
    assert "assignedTo" not in normalize_task({"id": "1"})
    assert normalize_task("not a task") == "not a task"


def test_map_legacy_create() -> None:
    legacy = {
        "taskTitle": "Dishes",
        "taskType": "chore",
        "taskDate": "2026-10-21",
        "assignees": ["kid-ryan", "kid-derek"],
        "note": "after dinner",
    }
    assert map_legacy_create(legacy) == {
        "title": "Dishes",
        "due": "2026-10-21",
        "assignedTo": "kid-ryan",
        "note": "after dinner",
    }
    modern = {"title": "Dishes", "assignedTo": "kid-ryan"}
    assert map_legacy_create(modern) is modern

    numeric = {"taskTitle": 42, "taskType": "chore", "taskDate": ""}
    assert map_legacy_create(numeric) == {"title": "42", "due": None}


def test_list_forwards_and_normalizes() -> None:
    opener = FakeOpener(json_response([{"id": "1", "assigneeId": "kid-ryan"}]))
    response = gateway(opener).get("/api/task", headers={"x-user-id": "owner"})

    assert response.status_code == 200
    assert response.json() == [{"id": "1", "assigneeId": "kid-ryan", "assignedTo": "kid-ryan"}]
    request, timeout = opener.requests[0]
    assert request.full_url == "http://backend:4000/api/tasks"
    assert request.get_method() == "GET"
    assert request.get_header("X-user-id") == "owner"
    assert timeout == 2


def test_create_maps_legacy_payload() -> None:
    opener = FakeOpener(json_response({"id": "9", "title": "Dishes"}, status=201))
    body = {"taskTitle": "Dishes", "taskType": "chore", "taskDate": "2026-10-21", "assignees": ["kid-ryan"]}

    response = gateway(opener).post("/api/task", json=body)

    assert response.status_code == 201
    request, _ = opener.requests[0]
    assert request.get_method() == "POST"
    assert json.loads(request.data) == {"title": "Dishes", "due": "2026-10-21", "assignedTo": "kid-ryan"}


def test_patch_and_delete_target_task_path() -> None:
    opener = FakeOpener(json_response({"id": "a b"}), json_response({"ok": True, "deleted": True}))
    client = gateway(opener)

    client.patch("/api/task/a b", json={"completed": True})
    deleted = client.delete("/api/task/a b")

    assert opener.requests[0][0].full_url == "http://backend:4000/api/tasks/a%20b"
    assert opener.requests[0][0].get_method() == "PATCH"
    assert opener.requests[1][0].get_method() == "DELETE"
    assert deleted.json() == {"ok": True, "deleted": True}


def test_upstream_errors_keep_status() -> None:
    headers = Message()
    headers["Content-Type"] = "application/json"
    error = HTTPError(
        "http://backend:4000/api/tasks/x",
        409,
        "Conflict",
        headers,
        io.BytesIO(b'{"error": "not_completed", "detail": "cancel it"}'),
    )
    response = gateway(FakeOpener(error)).delete("/api/task/x")

    assert response.status_code == 409
    assert response.json()["error"] == "not_completed"


def test_non_json_is_relayed_as_text() -> None:
    opener = FakeOpener(FakeResponse(503, b"upstream down", content_type="text/plain"))
    response = gateway(opener).get("/api/plan")

    assert response.status_code == 503
    assert response.text == "upstream down"
    assert response.headers["content-type"].startswith("text/plain")


@pytest.mark.parametrize("failure", [URLError("connection refused"), TimeoutError("timed out")])
def test_transport_failure_is_502(failure) -> None:
    logger = StructuredLogger()
    response = gateway(FakeOpener(failure), logger).post(
        "/api/parental/enforce", json={"targetUserId": "kid-ryan", "action": "screen_lock"}
    )

    assert response.status_code == 502
    assert response.json()["error"] == "proxy_failed"
    assert response.json()["detail"]
    assert logger.events("proxy_failed")[0]["level"] == "warning"


def test_non_json_request_body_is_forwarded_unchanged() -> None:
    opener = FakeOpener(FakeResponse(400, b'{"error": "validation_error", "detail": "bad"}'))

    response = gateway(opener).post(
        "/api/task", content=b"title=Dishes", headers={"content-type": "text/plain"}
    )

    assert response.status_code == 400
    request, _ = opener.requests[0]
    assert request.data == b"title=Dishes"
    assert request.get_header("Content-type") == "text/plain"
