"""Derived task state.

Every caller that needs to know whether a task is overdue, held or awaiting an
acknowledgement goes through :func:`task_state`; nothing else re-derives it.
"""

from __future__ import annotations

from enum import Enum
from typing import Dict, FrozenSet, Iterable, List, Mapping, Sequence, Tuple

from .models import Task

MINUTE_MS = 60_000


class TaskState(str, Enum):
    """Mutually exclusive display states, declared from highest priority down."""

    COMPLETED = "completed"
    CANCELLED = "cancelled"
    HELD = "held"
    ENFORCED = "enforced"
    OVERDUE = "overdue"
    AWAITING_ACK = "awaiting_ack"
    NORMAL = "normal"


class TaskAction(str, Enum):
    ACK = "ack"
    HOLD = "hold"
    RESUME = "resume"
    ENFORCE = "enforce"
    CLEAR_ENFORCEMENT = "clear_enforcement"
    CANCEL = "cancel"
    DELETE = "delete"
    ATTACH_PROOF = "attach_proof"


def is_held(task: Task, now_ms: int) -> bool:
    return task.paused_by_parent or (task.hold_until is not None and task.hold_until > now_ms)


def is_overdue(task: Task, now_ms: int) -> bool:
    """True when the due time has passed with nothing suppressing it."""

    return task_state(task, now_ms) is TaskState.OVERDUE


def task_state(task: Task, now_ms: int) -> TaskState:
    """Map a task snapshot and the current time to its display state.

    A paused task never shows as overdue even after its due time has passed;
    an acknowledged task is never overdue either.
    """

    if task.completed:
        return TaskState.COMPLETED
    if task.is_cancelled:
        return TaskState.CANCELLED
    if is_held(task, now_ms):
        return TaskState.HELD
    if task.enforced_at is not None:
        return TaskState.ENFORCED
    if task.due is not None and task.due < now_ms and not task.is_acknowledged:
        return TaskState.OVERDUE
    if task.ack_required and not task.is_acknowledged:
        return TaskState.AWAITING_ACK
    return TaskState.NORMAL


_TERMINAL = {TaskState.COMPLETED, TaskState.CANCELLED}


def available_actions(task: Task, now_ms: int) -> FrozenSet[TaskAction]:
    """Actions a client should offer for ``task`` right now."""

    state = task_state(task, now_ms)
    if state is TaskState.COMPLETED:
        return frozenset({TaskAction.DELETE})
    if state is TaskState.CANCELLED:
        return frozenset()
    actions = {TaskAction.CANCEL}
    if task.ack_required and not task.is_acknowledged:
        actions.add(TaskAction.ACK)
    if task.photo_proof and not task.proof_key:
        actions.add(TaskAction.ATTACH_PROOF)
    if state is TaskState.HELD:
        actions.add(TaskAction.RESUME)
    else:
        actions.add(TaskAction.HOLD)
    if state is TaskState.OVERDUE:
        actions.add(TaskAction.ENFORCE)
    if task.enforced_at is not None:
        actions.add(TaskAction.CLEAR_ENFORCEMENT)
    return frozenset(actions)


def display_order(tasks: Iterable[Task], assignee_order: Sequence[str] = ()) -> List[Task]:
    """Sort by assignee group (in ``assignee_order``), then due time, then title."""

    ranks: Dict[str, int] = {user_id: index for index, user_id in enumerate(assignee_order)}
    unranked = len(ranks) + 9999

    def key(task: Task) -> Tuple[int, int, str]:
        group = ranks.get(task.assigned_to or "", unranked)
        return group, task.due or 0, (task.title or "").lower()

    return sorted(tasks, key=key)


def due_alerts(tasks: Iterable[Task], start_ms: int, end_ms: int) -> List[Tuple[Task, int]]:
    """Pre-alerts falling in ``[start_ms, end_ms)`` for tasks still in play."""

    alerts: List[Tuple[Task, int]] = []
    for task in tasks:
        if task.due is None or task_state(task, start_ms) in _TERMINAL:
            continue
        for offset in sorted(task.repeat_rule.alert_offsets_min):
            at = task.due + offset * MINUTE_MS
            if start_ms <= at < end_ms:
                alerts.append((task, at))
    alerts.sort(key=lambda item: item[1])
    return alerts


def state_counts(tasks: Iterable[Task], now_ms: int) -> Mapping[str, int]:
    counts = {state.value: 0 for state in TaskState}
    for task in tasks:
        counts[task_state(task, now_ms).value] += 1
    return counts


__all__ = [
    "TaskAction",
    "TaskState",
    "available_actions",
    "display_order",
    "due_alerts",
    "is_held",
    "is_overdue",
    "state_counts",
    "task_state",
]
