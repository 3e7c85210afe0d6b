"""Browser-facing gateway that forwards ``/api/task`` calls to the backend.

Older front ends post ``{taskTitle, taskType, taskDate, assignees, note}``
and read assignees from several legacy keys; the gateway maps those shapes
onto the backend's task fields and otherwise relays upstream responses
untouched.
"""

from __future__ import annotations

import json
from typing import Any, Callable, Dict, Mapping, Optional
from urllib.error import HTTPError, URLError
from urllib.parse import quote
from urllib.request import Request as URLRequest, urlopen

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from starlette.concurrency import run_in_threadpool

from ..exceptions import ProxyFailure
from ..ops import StructuredLogger
from .config import ACTING_USER_HEADER, ALLOWED_ORIGINS, API_BASE_URL, LOG_PATH, PROXY_TIMEOUT
from .errors import install_error_handlers

LEGACY_CREATE_KEYS = ("taskTitle", "taskType", "taskDate")


def read_assignee_id(task: Mapping[str, Any]) -> Optional[str]:
    """First assignee id found under the current or any legacy key."""

    assignee = task.get("assignee")
    candidates = (
        task.get("assignedTo"),
        task.get("assigneeId"),
        assignee.get("id") if isinstance(assignee, Mapping) else None,
        task.get("kidId"),
        task.get("childId"),
        task.get("userId"),
    )
    for value in candidates:
        if value is not None and value != "":
            return str(value)
    return None


def normalize_task(task: Any) -> Any:
    if not isinstance(task, Mapping):
        return task
    normalized = dict(task)
    if not normalized.get("assignedTo"):
        assignee = read_assignee_id(task)
        if assignee is None:
            legacy = task.get("assignees")
            if isinstance(legacy, list) and legacy:
                assignee = str(legacy[0])
        if assignee is not None:
            normalized["assignedTo"] = assignee
    return normalized


def map_legacy_create(body: Any) -> Any:
    """Translate a legacy create payload; anything else passes through unchanged."""

    if not isinstance(body, Mapping) or not all(key in body for key in LEGACY_CREATE_KEYS):
        return body
    title = body.get("taskTitle")
    mapped: Dict[str, Any] = {
        "title": None if title is None else str(title),
        "due": body.get("taskDate") or None,
    }
    assignees = body.get("assignees")
    if isinstance(assignees, list) and assignees:
        mapped["assignedTo"] = str(assignees[0])
    if body.get("note"):
        mapped["note"] = body["note"]
    return mapped


def relay(status_code: int, content_type: Optional[str], payload: bytes, *, normalize: bool = False) -> Response:
    """Relay an upstream response: JSON as JSON, anything else as text."""

    try:
        data = json.loads(payload) if payload else None
    except ValueError:
        return Response(payload, status_code=status_code, media_type=content_type or "text/plain")
    if data is None:
        return Response(b"", status_code=status_code, media_type=content_type or "text/plain")
    if normalize and isinstance(data, list):
        data = [normalize_task(item) for item in data]
    return JSONResponse(data, status_code=status_code)


def create_gateway_app(
    base_url: str = API_BASE_URL,
    *,
    opener: Callable[..., Any] = urlopen,
    timeout: float = PROXY_TIMEOUT,
    logger: Optional[StructuredLogger] = None,
    allowed_origins=ALLOWED_ORIGINS,
) -> FastAPI:
    upstream = base_url.rstrip("/")
    logger = logger or StructuredLogger(path=LOG_PATH)

    def forward(
        method: str,
        path: str,
        data: Optional[bytes] = None,
        actor: Optional[str] = None,
        content_type: str = "application/json",
    ):
        headers = {"Accept": "application/json", "Content-Type": content_type}
        if actor:
            headers[ACTING_USER_HEADER] = actor
        req = URLRequest(f"{upstream}{path}", data=data, headers=headers, method=method)
        try:
            with opener(req, timeout=timeout) as resp:
                return resp.status, resp.headers.get("Content-Type"), resp.read()
        except HTTPError as exc:
            return exc.code, exc.headers.get("Content-Type") if exc.headers else None, exc.read()
        except (URLError, TimeoutError, OSError) as exc:
            logger.warning("proxy_failed", method=method, path=path, detail=str(exc))
            raise ProxyFailure(str(getattr(exc, "reason", exc))) from exc

    async def proxy(
        request: Request,
        method: str,
        path: str,
        data: Optional[bytes] = None,
        *,
        content_type: str = "application/json",
        normalize: bool = False,
    ) -> Response:
        actor = request.headers.get(ACTING_USER_HEADER)
        status_code, content_type, payload = await run_in_threadpool(
            forward, method, path, data, actor, content_type
        )
        logger.log("proxied", method=method, path=path, status=status_code)
        return relay(status_code, content_type, payload, normalize=normalize)

    async def proxy_body(
        request: Request, method: str, path: str, transform: Callable[[Any], Any] = lambda body: body
    ) -> Response:
        """Forward a request body; JSON is re-encoded after ``transform``, anything else goes as is."""

        raw = await request.body()
        if not raw.strip():
            return await proxy(request, method, path, b"{}")
        try:
            body = json.loads(raw)
        except ValueError:
            content_type = request.headers.get("content-type") or "text/plain"
            return await proxy(request, method, path, raw, content_type=content_type)
        return await proxy(request, method, path, json.dumps(transform(body)).encode("utf-8"))

    app = FastAPI(title="CareCircle Gateway")
    app.add_middleware(
        CORSMiddleware,
        allow_origins=list(allowed_origins),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    install_error_handlers(app)
    app.state.upstream = upstream

    @app.get("/api/task")
    async def list_tasks(request: Request) -> Response:
        return await proxy(request, "GET", "/api/tasks", normalize=True)

    @app.post("/api/task")
    async def create_task(request: Request) -> Response:
        return await proxy_body(request, "POST", "/api/tasks", map_legacy_create)

    @app.patch("/api/task/{task_id}")
    async def patch_task(task_id: str, request: Request) -> Response:
        return await proxy_body(request, "PATCH", f"/api/tasks/{quote(task_id, safe='')}")

    @app.delete("/api/task/{task_id}")
    async def delete_task(task_id: str, request: Request) -> Response:
        return await proxy(request, "DELETE", f"/api/tasks/{quote(task_id, safe='')}")

    @app.get("/api/plan")
    async def plan(request: Request) -> Response:
        return await proxy(request, "GET", "/api/plan")

    @app.post("/api/parental/enforce")
    async def parental_enforce(request: Request) -> Response:
        return await proxy_body(request, "POST", "/api/parental/enforce")

    return app


app = create_gateway_app()

__all__ = [
    "LEGACY_CREATE_KEYS",
    "app",
    "create_gateway_app",
    "map_legacy_create",
    "normalize_task",
    "read_assignee_id",
    "relay",
]
