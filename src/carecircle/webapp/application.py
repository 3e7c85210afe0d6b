"""FastAPI backend for the CareCircle task service.

The app factory wires a :class:`~carecircle.store.TaskStore`, a presence
registry and the enforcement mailer behind a small JSON API. Handlers are
``async``. Enforcement runs listeners (SMTP among them) and is moved to the
threadpool so a slow delivery never stalls the event loop.
``uvicorn carecircle.webapp:app`` serves the module level instance.
"""

from __future__ import annotations

import json
from datetime import timedelta
from typing import Any, Dict, Optional

from fastapi import FastAPI, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from starlette.concurrency import run_in_threadpool

from ..api import (
    ApiExporter,
    parse_channel,
    parse_auto_action,
    parse_hold_minutes,
    parse_parental_enforce,
    parse_task_draft,
    parse_task_patch,
)
from ..emailing import EnforcementMailer
from ..exceptions import PermissionDeniedError, UserNotFoundError, ValidationError
from ..lifecycle import due_alerts
from ..models import Task
from ..ops import HealthMonitor, StructuredLogger
from ..plans import parse_plan, plan_snapshot
from ..policy import Permission, require_permission
from ..presence import PresenceRegistry
from ..store import MINUTE_MS, TaskStore
from .config import (
    ACTING_USER_HEADER,
    ALLOWED_ORIGINS,
    DEFAULT_ACTING_USER,
    DEFAULT_USERS,
    ENFORCE_ROLES,
    LOG_PATH,
    MAIL_TO,
    PLAN,
    PRESENCE_WINDOW_SECONDS,
    SERVICE_NAME,
    SMTP_SETTINGS,
)
from .errors import install_error_handlers

ENDPOINTS = (
    "GET /api/plan",
    "GET /api/users",
    "GET /api/tasks",
    "GET /api/tasks/{id}",
    "POST /api/tasks",
    "PATCH /api/tasks/{id}",
    "DELETE /api/tasks/{id}",
    "POST /api/tasks/{id}/ack",
    "POST /api/tasks/{id}/hold",
    "POST /api/tasks/{id}/resume",
    "POST /api/tasks/{id}/enforce",
    "POST /api/tasks/{id}/clear-enforcement",
    "POST /api/tasks/{id}/cancel",
    "POST /api/tasks/{id}/proof",
    "POST /api/tasks/auto-enforce",
    "GET /api/alerts",
    "POST /api/parental/enforce",
    "POST /api/device/heartbeat",
    "GET /api/device/presence",
)


async def read_json(request: Request, *, required: bool = True) -> Any:
    """Decode the request body; an empty optional body reads as ``{}``."""

    raw = await request.body()
    if not raw.strip():
        if required:
            raise ValidationError("Request body must be a JSON object.")
        return {}
    try:
        return json.loads(raw)
    except ValueError as exc:
        raise ValidationError("Request body must be valid JSON.") from exc


def acting_user(request: Request) -> str:
    return (request.headers.get(ACTING_USER_HEADER) or "").strip() or request.app.state.default_user


def authorize(request: Request, permission: Permission) -> str:
    """Return the acting user id, checking the role policy when it is switched on."""

    actor = acting_user(request)
    if request.app.state.enforce_roles:
        store: TaskStore = request.app.state.store
        try:
            user = store.get_user(actor)
        except UserNotFoundError as exc:
            raise PermissionDeniedError(f"Unknown acting user '{actor}'.") from exc
        require_permission(user, permission)
    return actor


def shared_mailer(store: TaskStore) -> Optional[EnforcementMailer]:
    """Return the mailer already listening on ``store``, if any."""

    for listener in store.dispatcher.listeners:
        if isinstance(listener, EnforcementMailer):
            return listener
    return None


def create_app(
    store: Optional[TaskStore] = None,
    *,
    presence: Optional[PresenceRegistry] = None,
    logger: Optional[StructuredLogger] = None,
    plan: str = PLAN,
    enforce_roles: bool = ENFORCE_ROLES,
    default_user: str = DEFAULT_ACTING_USER,
    allowed_origins=ALLOWED_ORIGINS,
    smtp_settings=None,
    mail_to=MAIL_TO,
    seed_users: bool = True,
) -> FastAPI:
    """Build the backend app around ``store`` (a fresh in-memory store by default)."""

    if store is None:
        store = TaskStore(logger=logger or StructuredLogger(path=LOG_PATH))
    logger = store.logger
    if presence is None:
        presence = PresenceRegistry(online_window=timedelta(seconds=PRESENCE_WINDOW_SECONDS))
    if seed_users:
        store.seed_users(DEFAULT_USERS)
    mailer = shared_mailer(store)
    if mailer is None:
        mailer = EnforcementMailer(
            SMTP_SETTINGS if smtp_settings is None else smtp_settings,
            logger=logger,
            recipients=mail_to,
        )
        store.dispatcher.register(mailer)
    exporter = ApiExporter()
    health = HealthMonitor(SERVICE_NAME, endpoints=ENDPOINTS, counters=store.state_counts)
    active_plan = parse_plan(plan)

    app = FastAPI(title="CareCircle")
    app.add_middleware(
        CORSMiddleware,
        allow_origins=list(allowed_origins),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    install_error_handlers(app)
    app.state.store = store
    app.state.presence = presence
    app.state.mailer = mailer
    app.state.enforce_roles = enforce_roles
    app.state.default_user = default_user

    def task_json(task: Task) -> Dict[str, Any]:
        return exporter.task_snapshot(task, store.now_ms())

    # ------------------------------------------------------------------
    # Service info
    # ------------------------------------------------------------------
    @app.get("/")
    async def index() -> Dict[str, Any]:
        return health.status()

    @app.get("/api/plan")
    async def plan_info() -> Dict[str, Any]:
        return plan_snapshot(active_plan)

    @app.get("/api/users")
    async def list_users(request: Request) -> list:
        authorize(request, Permission.VIEW)
        return [exporter.user_snapshot(user) for user in store.list_users()]

    # ------------------------------------------------------------------
    # Tasks
    # ------------------------------------------------------------------
    @app.get("/api/tasks")
    async def list_tasks(request: Request) -> list:
        authorize(request, Permission.VIEW)
        now_ms = store.now_ms()
        return [exporter.task_snapshot(task, now_ms) for task in store.list_tasks()]

    @app.post("/api/tasks", status_code=201)
    async def create_task(request: Request) -> Dict[str, Any]:
        actor = authorize(request, Permission.CREATE)
        draft = parse_task_draft(await read_json(request))
        return task_json(store.create(draft, actor=actor))

    @app.post("/api/tasks/auto-enforce")
    async def auto_enforce(request: Request) -> Dict[str, Any]:
        actor = authorize(request, Permission.ENFORCE)
        enforced = await run_in_threadpool(store.auto_enforce_overdue, actor=actor)
        return {"ok": True, "enforced": [task_json(task) for task in enforced]}

    @app.get("/api/tasks/{task_id}")
    async def get_task(task_id: str, request: Request) -> Dict[str, Any]:
        authorize(request, Permission.VIEW)
        return task_json(store.get(task_id))

    @app.patch("/api/tasks/{task_id}")
    async def patch_task(task_id: str, request: Request) -> Dict[str, Any]:
        actor = authorize(request, Permission.EDIT)
        changes = parse_task_patch(await read_json(request))
        return task_json(store.mutate(task_id, changes, actor=actor))

    @app.delete("/api/tasks/{task_id}")
    async def delete_task(task_id: str, request: Request) -> Dict[str, Any]:
        actor = authorize(request, Permission.DELETE)
        return {"ok": True, "deleted": store.delete(task_id, actor=actor)}

    @app.post("/api/tasks/{task_id}/ack")
    async def ack_task(task_id: str, request: Request) -> Dict[str, Any]:
        actor = authorize(request, Permission.ACK)
        return task_json(store.ack(task_id, actor=actor))

    @app.post("/api/tasks/{task_id}/hold")
    async def hold_task(task_id: str, request: Request) -> Dict[str, Any]:
        actor = authorize(request, Permission.HOLD)
        minutes = parse_hold_minutes(await read_json(request))
        return task_json(store.hold(task_id, minutes, actor=actor))

    @app.post("/api/tasks/{task_id}/resume")
    async def resume_task(task_id: str, request: Request) -> Dict[str, Any]:
        actor = authorize(request, Permission.HOLD)
        return task_json(store.resume(task_id, actor=actor))

    @app.post("/api/tasks/{task_id}/enforce")
    async def enforce_task(task_id: str, request: Request) -> Dict[str, Any]:
        actor = authorize(request, Permission.ENFORCE)
        body = await read_json(request, required=False)
        if not isinstance(body, dict):
            raise ValidationError("Request body must be a JSON object.")
        task = await run_in_threadpool(
            store.enforce,
            task_id,
            actor=actor,
            channel=parse_channel(body.get("channel")),
            action=parse_auto_action(body.get("action")),
        )
        return task_json(task)

    @app.post("/api/tasks/{task_id}/clear-enforcement")
    async def clear_enforcement(task_id: str, request: Request) -> Dict[str, Any]:
        actor = authorize(request, Permission.ENFORCE)
        return task_json(store.clear_enforcement(task_id, actor=actor))

    @app.post("/api/tasks/{task_id}/cancel")
    async def cancel_task(task_id: str, request: Request) -> Dict[str, Any]:
        actor = authorize(request, Permission.CANCEL)
        return task_json(store.cancel(task_id, actor=actor))

    @app.post("/api/tasks/{task_id}/proof")
    async def attach_proof(task_id: str, request: Request) -> Dict[str, Any]:
        actor = authorize(request, Permission.ATTACH_PROOF)
        body = await read_json(request)
        if not isinstance(body, dict):
            raise ValidationError("Request body must be a JSON object.")
        key = body.get("proofKey")
        if not isinstance(key, str):
            raise ValidationError("'proofKey' must be text.")
        return task_json(store.attach_proof(task_id, key, actor=actor))

    @app.get("/api/alerts")
    async def upcoming_alerts(request: Request, minutes: int = Query(60, gt=0)) -> list:
        authorize(request, Permission.VIEW)
        start = store.now_ms()
        return [
            {"taskId": task.id, "title": task.title, "assignedTo": task.assigned_to, "at": at, "due": task.due}
            for task, at in due_alerts(store.list_tasks(), start, start + minutes * MINUTE_MS)
        ]

    # ------------------------------------------------------------------
    # Parental controls and devices
    # ------------------------------------------------------------------
    @app.post("/api/parental/enforce")
    async def parental_enforce(request: Request) -> Dict[str, Any]:
        actor = authorize(request, Permission.ENFORCE)
        payload = parse_parental_enforce(await read_json(request))
        return await run_in_threadpool(
            store.enforce_user,
            payload["targetUserId"],
            payload["action"],
            payload["reason"],
            actor=actor,
        )

    @app.post("/api/device/heartbeat")
    async def device_heartbeat(request: Request) -> Dict[str, Any]:
        body = await read_json(request)
        if not isinstance(body, dict) or not isinstance(body.get("userId"), str):
            raise ValidationError("'userId' is required.")
        seen = presence.heartbeat(body["userId"])
        return {"ok": True, "userId": body["userId"].strip(), "lastSeenAt": seen}

    @app.get("/api/device/presence")
    async def device_presence(user_id: str = Query("", alias="userId")) -> Dict[str, Any]:
        if not user_id.strip():
            raise ValidationError("'userId' is required.")
        return presence.status(user_id.strip())

    logger.log("app_created", plan=active_plan.value, enforce_roles=enforce_roles, mailer=mailer.enabled)
    return app


app = create_app()

__all__ = ["ENDPOINTS", "acting_user", "app", "authorize", "create_app", "read_json", "shared_mailer"]
