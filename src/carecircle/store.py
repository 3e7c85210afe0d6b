"""In-process task store for CareCircle."""

from __future__ import annotations

import threading
from contextlib import contextmanager
from datetime import datetime
from typing import Any, Callable, Dict, Iterable, Iterator, List, Mapping, Optional, Tuple
from uuid import uuid4

from sqlalchemy.engine import Engine
from sqlmodel import Session, SQLModel, select

from .api import EnforcementDispatcher
from .exceptions import (
    TaskNotCompletedError,
    TaskNotFoundError,
    UserNotFoundError,
    ValidationError,
)
from .lifecycle import TaskState, state_counts, task_state
from .models import AutoAction, EnforceChannel, Task, TaskDraft, User
from .ops import StructuredLogger
from .persistence import (
    TaskRecord,
    UserRecord,
    apply_task_to_record,
    create_memory_engine,
    task_from_record,
    task_to_record,
    user_from_record,
    user_to_record,
)
from .recurrence import MAX_HOLD_MINUTES, RepeatRule, to_epoch_ms

MINUTE_MS = 60_000

MUTABLE_ATTRIBUTES = frozenset(
    {
        "title",
        "due",
        "completed",
        "note",
        "proof_key",
        "paused_by_parent",
        "auto_enforce",
        "auto_action",
        "repeat_rule",
    }
)


class TaskStore:
    """Authoritative collection of tasks and users for one process lifetime.

    The store owns its tables on ``engine`` (a private in-memory SQLite database
    by default), so separate instances never share data. The acting user is
    passed explicitly to every mutating call; permission checks happen before
    the store is reached.
    """

    def __init__(
        self,
        engine: Engine | None = None,
        *,
        clock: Callable[[], datetime] = datetime.now,
        logger: StructuredLogger | None = None,
        dispatcher: EnforcementDispatcher | None = None,
        id_factory: Callable[[], str] = lambda: uuid4().hex,
    ) -> None:
        self._engine = engine or create_memory_engine()
        self._clock = clock
        self._logger = logger or StructuredLogger()
        self._dispatcher = dispatcher or EnforcementDispatcher()
        self._id_factory = id_factory
        self._lock = threading.RLock()
        SQLModel.metadata.create_all(self._engine)

    @property
    def logger(self) -> StructuredLogger:
        return self._logger

    @property
    def dispatcher(self) -> EnforcementDispatcher:
        return self._dispatcher

    def now(self) -> datetime:
        return self._clock()

    def now_ms(self) -> int:
        return to_epoch_ms(self._clock())

    # ------------------------------------------------------------------
    # Users
    # ------------------------------------------------------------------
    def add_user(self, user: User) -> User:
        with self._session() as session:
            session.merge(user_to_record(user))
            session.commit()
        self._logger.log("user_added", user=user.id, role=user.role.value)
        return user

    def seed_users(self, users: Iterable[User]) -> None:
        if self.list_users():
            return
        for user in users:
            self.add_user(user)

    def list_users(self) -> Tuple[User, ...]:
        with self._session() as session:
            records = session.exec(select(UserRecord).order_by(UserRecord.id)).all()
            return tuple(user_from_record(record) for record in records)

    def get_user(self, user_id: str) -> User:
        with self._session() as session:
            record = session.get(UserRecord, user_id)
            if record is None:
                raise UserNotFoundError(f"User '{user_id}' does not exist.")
            return user_from_record(record)

    # ------------------------------------------------------------------
    # Tasks
    # ------------------------------------------------------------------
    def list_tasks(self) -> Tuple[Task, ...]:
        """Return every task; callers sort for display."""

        with self._session() as session:
            records = session.exec(select(TaskRecord)).all()
            return tuple(task_from_record(record) for record in records)

    def get(self, task_id: str) -> Task:
        with self._session() as session:
            return task_from_record(self._record(session, task_id))

    def state_of(self, task_id: str) -> TaskState:
        return task_state(self.get(task_id), self.now_ms())

    def state_counts(self) -> Mapping[str, int]:
        return state_counts(self.list_tasks(), self.now_ms())

    def create(self, draft: TaskDraft, *, actor: str) -> Task:
        title = (draft.title or "").strip()
        if not title:
            raise ValidationError("A non-empty title is required.")
        rule = draft.repeat_rule.validate()
        due = draft.due
        if due is None and rule.repeats:
            due = to_epoch_ms(rule.next_due(now=self._clock()))
        task = Task(
            id=self._id_factory(),
            title=title,
            created_at=self.now_ms(),
            assigned_to=draft.assigned_to,
            due=due,
            for_minor=draft.for_minor,
            ack_required=draft.ack_required,
            photo_proof=draft.photo_proof,
            repeat_rule=rule,
            auto_enforce=draft.auto_enforce,
            auto_action=draft.auto_action,
            note=draft.note,
        )
        with self._session() as session:
            session.add(task_to_record(task))
            session.commit()
        self._logger.log("task_created", task=task.id, actor=actor, repeat=rule.kind.value, due=due)
        return task

    def mutate(self, task_id: str, changes: Mapping[str, Any], *, actor: str) -> Task:
        """Apply a partial update of mutable fields."""

        unknown = sorted(set(changes) - MUTABLE_ATTRIBUTES)
        if unknown:
            raise ValidationError(f"Field(s) cannot be changed: {', '.join(unknown)}.")
        if "title" in changes and not str(changes["title"] or "").strip():
            raise ValidationError("A non-empty title is required.")
        rule: Optional[RepeatRule] = changes.get("repeat_rule")
        if rule is not None:
            rule.validate()

        def apply(task: Task) -> None:
            for name, value in changes.items():
                setattr(task, name, value.strip() if name == "title" else value)
            if rule is not None and rule.repeats and "due" not in changes:
                task.due = to_epoch_ms(rule.next_due(now=self._clock()))

        task = self._update(task_id, apply)
        self._logger.log("task_updated", task=task_id, actor=actor, fields=sorted(changes))
        return task

    def delete(self, task_id: str, *, actor: str = "system") -> bool:
        """Remove a completed task; returns ``False`` when the id is unknown."""

        with self._session() as session:
            record = session.get(TaskRecord, task_id)
            if record is None:
                return False
            if not record.completed:
                raise TaskNotCompletedError(
                    f"Task '{task_id}' is not completed; cancel it instead of deleting."
                )
            session.delete(record)
            session.commit()
        self._logger.log("task_deleted", task=task_id, actor=actor)
        return True

    # ------------------------------------------------------------------
    # Lifecycle actions
    # ------------------------------------------------------------------
    def ack(self, task_id: str, *, actor: str) -> Task:
        now = self.now_ms()

        def apply(task: Task) -> None:
            task.ack_by = actor
            task.ack_at = now

        task = self._update(task_id, apply)
        self._logger.log("task_acked", task=task_id, actor=actor)
        return task

    def hold(self, task_id: str, minutes: int, *, actor: str) -> Task:
        if isinstance(minutes, bool) or not isinstance(minutes, int) or minutes <= 0:
            raise ValidationError("Hold minutes must be a whole number greater than zero.")
        if minutes > MAX_HOLD_MINUTES:
            raise ValidationError("Hold minutes cannot exceed one year.")
        until = self.now_ms() + minutes * MINUTE_MS

        def apply(task: Task) -> None:
            task.hold_until = until

        task = self._update(task_id, apply)
        self._logger.log("task_held", task=task_id, actor=actor, minutes=minutes)
        return task

    def resume(self, task_id: str, *, actor: str) -> Task:
        def apply(task: Task) -> None:
            task.hold_until = None
            task.paused_by_parent = False

        task = self._update(task_id, apply)
        self._logger.log("task_resumed", task=task_id, actor=actor)
        return task

    def enforce(
        self,
        task_id: str,
        *,
        actor: str,
        channel: EnforceChannel = EnforceChannel.WS,
        action: AutoAction | None = None,
    ) -> Task:
        """Run the consequence action for a task.

        Being overdue is only advisory here: enforcing anything else is logged
        as a warning and still carried out. A task that is already enforced
        keeps its original ``enforced_at`` until cleared.

        The enforcement is committed before listeners run, so a slow or
        failing listener never holds the store or loses the record. Delivery
        failures are written back as ``last_enforce_error``.
        """

        now = self.now_ms()
        events: List[Dict[str, object]] = []

        def apply(task: Task) -> None:
            if task.enforced_at is not None:
                return
            state = task_state(task, now)
            if state is not TaskState.OVERDUE:
                self._logger.warning("enforce_not_overdue", task=task.id, state=state.value, actor=actor)
            chosen = action or task.auto_action or AutoAction.SCREEN_LOCK
            task.enforced_at = now
            task.enforce_channel = channel
            task.last_enforce_error = None
            events.append(
                {
                    "event": "task_enforced",
                    "taskId": task.id,
                    "targetUserId": task.assigned_to,
                    "action": chosen.value,
                    "channel": channel.value,
                    "actor": actor,
                }
            )

        task = self._update(task_id, apply)
        if not events:
            return task
        errors = self._dispatcher.dispatch(events[0])
        if errors:
            message = "; ".join(errors)

            def record_error(current: Task) -> None:
                if current.enforced_at == now:
                    current.last_enforce_error = message

            task = self._update(task_id, record_error)
        self._logger.log(
            "task_enforced",
            task=task_id,
            actor=actor,
            channel=channel.value,
            error=task.last_enforce_error,
        )
        return task

    def clear_enforcement(self, task_id: str, *, actor: str) -> Task:
        def apply(task: Task) -> None:
            task.enforced_at = None
            task.enforce_channel = None
            task.last_enforce_error = None

        task = self._update(task_id, apply)
        self._logger.log("task_enforcement_cleared", task=task_id, actor=actor)
        return task

    def cancel(self, task_id: str, *, actor: str) -> Task:
        now = self.now_ms()

        def apply(task: Task) -> None:
            if task.completed:
                raise ValidationError(f"Task '{task.id}' is completed; delete it instead.")
            if task.cancelled_at is None:
                task.cancelled_at = now

        task = self._update(task_id, apply)
        self._logger.log("task_cancelled", task=task_id, actor=actor)
        return task

    def attach_proof(self, task_id: str, proof_key: str, *, actor: str) -> Task:
        key = (proof_key or "").strip()
        if not key:
            raise ValidationError("A proof key is required.")

        def apply(task: Task) -> None:
            task.proof_key = key

        task = self._update(task_id, apply)
        self._logger.log("task_proof_attached", task=task_id, actor=actor)
        return task

    def auto_enforce_overdue(self, *, actor: str = "system") -> Tuple[Task, ...]:
        """Enforce every overdue task whose policy asks for unattended enforcement."""

        now = self.now_ms()
        enforced: List[Task] = []
        for task in self.list_tasks():
            if task.auto_enforce and task_state(task, now) is TaskState.OVERDUE:
                enforced.append(self.enforce(task.id, actor=actor, action=task.auto_action))
        return tuple(enforced)

    def enforce_user(self, target_user_id: str, action: AutoAction, reason: str, *, actor: str) -> Dict[str, object]:
        """Send a one-off enforcement action to a user's device."""

        event: Dict[str, object] = {
            "event": "user_enforced",
            "targetUserId": target_user_id,
            "action": action.value,
            "reason": reason,
            "actor": actor,
        }
        errors = self._dispatcher.dispatch(event)
        self._logger.log("user_enforced", target=target_user_id, action=action.value, actor=actor, errors=errors)
        return {"ok": not errors, "received": {k: v for k, v in event.items() if k != "event"}, "errors": errors}

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------
    def _record(self, session: Session, task_id: str) -> TaskRecord:
        record = session.get(TaskRecord, task_id)
        if record is None:
            raise TaskNotFoundError(f"Task '{task_id}' does not exist.")
        return record

    @contextmanager
    def _session(self) -> Iterator[Session]:
        # Handlers may call in from worker threads; sessions share one connection.
        with self._lock, Session(self._engine) as session:
            yield session

    def _update(self, task_id: str, apply: Callable[[Task], None]) -> Task:
        with self._session() as session:
            record = self._record(session, task_id)
            task = task_from_record(record)
            apply(task)
            apply_task_to_record(task, record)
            session.add(record)
            session.commit()
            return task


__all__ = ["MUTABLE_ATTRIBUTES", "TaskStore"]
