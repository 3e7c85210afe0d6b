"""CareCircle package for family tasks and parental controls."""

from .api import ApiExporter, EnforcementDispatcher
from .client import CareCircleClient, LatestLoader, PresencePoller
from .emailing import EmailClient, EnforcementMailer
from .exceptions import (
    CareCircleError,
    NotFoundError,
    PermissionDeniedError,
    ProxyFailure,
    TaskNotCompletedError,
    TaskNotFoundError,
    UserNotFoundError,
    ValidationError,
)
from .lifecycle import TaskAction, TaskState, available_actions, task_state
from .models import AutoAction, EnforceChannel, Role, Task, TaskDraft, User
from .ops import HealthMonitor, StructuredLogger
from .plans import PlanKey, kid_limit
from .policy import Permission, is_permitted
from .presence import PresenceRegistry
from .recurrence import RepeatKind, RepeatRule, Weekday, next_occurrence
from .store import TaskStore

__all__ = [
    "ApiExporter",
    "AutoAction",
    "CareCircleClient",
    "CareCircleError",
    "EmailClient",
    "EnforceChannel",
    "EnforcementDispatcher",
    "EnforcementMailer",
    "HealthMonitor",
    "LatestLoader",
    "NotFoundError",
    "Permission",
    "PermissionDeniedError",
    "PlanKey",
    "PresencePoller",
    "PresenceRegistry",
    "ProxyFailure",
    "RepeatKind",
    "RepeatRule",
    "Role",
    "StructuredLogger",
    "Task",
    "TaskAction",
    "TaskDraft",
    "TaskNotCompletedError",
    "TaskNotFoundError",
    "TaskState",
    "TaskStore",
    "User",
    "UserNotFoundError",
    "ValidationError",
    "Weekday",
    "available_actions",
    "is_permitted",
    "kid_limit",
    "next_occurrence",
    "task_state",
]
