"""SQLModel tables backing the in-process task store."""
from __future__ import annotations

from typing import Optional, Sequence

from sqlalchemy.engine import Engine
from sqlalchemy.pool import StaticPool
from sqlmodel import Field, SQLModel, create_engine

from .models import AutoAction, EnforceChannel, Role, Task, User
from .recurrence import RepeatRule


def create_memory_engine() -> Engine:
    """Return an engine over a private in-memory SQLite database.

    Each call yields a separate database; it lives as long as the engine does.
    """

    return create_engine(
        "sqlite://",
        echo=False,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )


class UserRecord(SQLModel, table=True):
    __tablename__ = "users"

    id: str = Field(primary_key=True)
    name: str
    role: str


class TaskRecord(SQLModel, table=True):
    __tablename__ = "tasks"

    id: str = Field(primary_key=True)
    title: str
    created_at: int
    assigned_to: Optional[str] = Field(default=None, index=True)
    due: Optional[int] = None
    completed: bool = False
    for_minor: bool = False
    ack_required: bool = False
    photo_proof: bool = False
    ack_by: Optional[str] = None
    ack_at: Optional[int] = None
    proof_key: Optional[str] = None
    repeat: str = "none"
    days_of_week: Optional[str] = None  # comma separated, 0=Sun..6=Sat
    time_hhmm: Optional[str] = None
    alert_offsets: Optional[str] = None  # comma separated minutes
    auto_enforce: bool = False
    auto_action: Optional[str] = None
    enforced_at: Optional[int] = None
    enforce_channel: Optional[str] = None
    last_enforce_error: Optional[str] = None
    hold_until: Optional[int] = None
    paused_by_parent: bool = False
    cancelled_at: Optional[int] = None
    note: Optional[str] = None


def _join(values: Sequence[int]) -> Optional[str]:
    return ",".join(str(value) for value in values) if values else None


def _split(raw: Optional[str]) -> tuple[int, ...]:
    if not raw:
        return ()
    return tuple(int(part) for part in raw.split(",") if part.strip())


def user_from_record(record: UserRecord) -> User:
    return User(id=record.id, name=record.name, role=Role(record.role))


def user_to_record(user: User) -> UserRecord:
    return UserRecord(id=user.id, name=user.name, role=user.role.value)


def task_from_record(record: TaskRecord) -> Task:
    rule = RepeatRule(
        kind=record.repeat,
        days_of_week=_split(record.days_of_week),
        time_hhmm=record.time_hhmm,
        alert_offsets_min=_split(record.alert_offsets),
    )
    return Task(
        id=record.id,
        title=record.title,
        created_at=record.created_at,
        assigned_to=record.assigned_to,
        due=record.due,
        completed=record.completed,
        for_minor=record.for_minor,
        ack_required=record.ack_required,
        photo_proof=record.photo_proof,
        ack_by=record.ack_by,
        ack_at=record.ack_at,
        proof_key=record.proof_key,
        repeat_rule=rule,
        auto_enforce=record.auto_enforce,
        auto_action=AutoAction(record.auto_action) if record.auto_action else None,
        enforced_at=record.enforced_at,
        enforce_channel=EnforceChannel(record.enforce_channel) if record.enforce_channel else None,
        last_enforce_error=record.last_enforce_error,
        hold_until=record.hold_until,
        paused_by_parent=record.paused_by_parent,
        cancelled_at=record.cancelled_at,
        note=record.note,
    )


def apply_task_to_record(task: Task, record: TaskRecord) -> TaskRecord:
    """Copy every mutable column of ``task`` onto ``record``."""

    record.title = task.title
    record.due = task.due
    record.completed = task.completed
    record.ack_by = task.ack_by
    record.ack_at = task.ack_at
    record.proof_key = task.proof_key
    record.repeat = task.repeat_rule.kind.value
    record.days_of_week = _join(task.repeat_rule.days_of_week)
    record.time_hhmm = task.repeat_rule.time_hhmm
    record.alert_offsets = _join(task.repeat_rule.alert_offsets_min)
    record.auto_enforce = task.auto_enforce
    record.auto_action = task.auto_action.value if task.auto_action else None
    record.enforced_at = task.enforced_at
    record.enforce_channel = task.enforce_channel.value if task.enforce_channel else None
    record.last_enforce_error = task.last_enforce_error
    record.hold_until = task.hold_until
    record.paused_by_parent = task.paused_by_parent
    record.cancelled_at = task.cancelled_at
    record.note = task.note
    return record


def task_to_record(task: Task) -> TaskRecord:
    record = TaskRecord(
        id=task.id,
        title=task.title,
        created_at=task.created_at,
        assigned_to=task.assigned_to,
        for_minor=task.for_minor,
        ack_required=task.ack_required,
        photo_proof=task.photo_proof,
    )
    return apply_task_to_record(task, record)


__all__ = [
    "TaskRecord",
    "UserRecord",
    "apply_task_to_record",
    "create_memory_engine",
    "task_from_record",
    "task_to_record",
    "user_from_record",
    "user_to_record",
]
