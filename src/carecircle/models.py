"""Domain models used by the CareCircle package."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

from .recurrence import RepeatKind, RepeatRule


class Role(str, Enum):
    """Household roles; Child and Minor are the ones tasks get assigned to."""

    OWNER = "Owner"
    FAMILY = "Family"
    CHILD = "Child"
    MINOR = "Minor"

    @property
    def is_child(self) -> bool:
        return self in (Role.CHILD, Role.MINOR)


class AutoAction(str, Enum):
    """Consequence actions a parent can trigger against a kid's device."""

    SCREEN_LOCK = "screen_lock"
    NETWORK_PAUSE = "network_pause"
    DEVICE_RESTART = "device_restart"
    DEVICE_SHUTDOWN = "device_shutdown"
    APP_RESTART = "app_restart"
    PLAY_LOUD_ALERT = "play_loud_alert"


class EnforceChannel(str, Enum):
    """Transport used to deliver an enforcement action."""

    WS = "ws"
    LAN = "lan"
    ROUTER = "router"


@dataclass(slots=True)
class User:
    """A household member as seen by the task backend."""

    id: str
    name: str
    role: Role

    def __post_init__(self) -> None:
        object.__setattr__(self, "role", Role(self.role))


@dataclass(slots=True)
class TaskDraft:
    """Validated input for creating a task."""

    title: str
    due: Optional[int] = None
    assigned_to: Optional[str] = None
    for_minor: bool = False
    ack_required: bool = False
    photo_proof: bool = False
    repeat_rule: RepeatRule = field(default_factory=RepeatRule)
    auto_enforce: bool = False
    auto_action: Optional[AutoAction] = None
    note: Optional[str] = None


@dataclass(slots=True)
class Task:
    """A task record. Timestamps are epoch milliseconds."""

    id: str
    title: str
    created_at: int
    assigned_to: Optional[str] = None
    due: Optional[int] = None
    completed: bool = False
    for_minor: bool = False
    ack_required: bool = False
    photo_proof: bool = False
    ack_by: Optional[str] = None
    ack_at: Optional[int] = None
    proof_key: Optional[str] = None
    repeat_rule: RepeatRule = field(default_factory=RepeatRule)
    auto_enforce: bool = False
    auto_action: Optional[AutoAction] = None
    enforced_at: Optional[int] = None
    enforce_channel: Optional[EnforceChannel] = None
    last_enforce_error: Optional[str] = None
    hold_until: Optional[int] = None
    paused_by_parent: bool = False
    cancelled_at: Optional[int] = None
    note: Optional[str] = None

    @property
    def repeat(self) -> RepeatKind:
        return self.repeat_rule.kind

    @property
    def is_acknowledged(self) -> bool:
        return self.ack_at is not None

    @property
    def is_cancelled(self) -> bool:
        return self.cancelled_at is not None


__all__ = ["AutoAction", "EnforceChannel", "Role", "Task", "TaskDraft", "User"]
