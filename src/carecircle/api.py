"""JSON conversion, payload parsing and enforcement fan-out for CareCircle."""

from __future__ import annotations

import re
from datetime import datetime
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple

from .exceptions import EnforcementError, ValidationError
from .lifecycle import available_actions, task_state
from .models import AutoAction, EnforceChannel, Task, TaskDraft, User
from .recurrence import (
    DEFAULT_ALERT_OFFSETS,
    MAX_EPOCH_MS,
    MAX_HOLD_MINUTES,
    MIN_EPOCH_MS,
    RepeatKind,
    RepeatRule,
    to_epoch_ms,
)

_INTEGER_PATTERN = re.compile(r"-?[0-9]+")

PATCHABLE_FIELDS: Dict[str, str] = {
    "title": "title",
    "due": "due",
    "completed": "completed",
    "note": "note",
    "proofKey": "proof_key",
    "pausedByParent": "paused_by_parent",
    "autoEnforce": "auto_enforce",
    "autoAction": "auto_action",
}
IMMUTABLE_FIELDS = frozenset(
    {
        "id",
        "createdAt",
        "assignedTo",
        "forMinor",
        "ackRequired",
        "photoProof",
        "ackBy",
        "ackAt",
        "enforcedAt",
        "enforceChannel",
        "lastEnforceError",
        "holdUntil",
        "cancelledAt",
    }
)


class ApiExporter:
    """Convert CareCircle records to JSON friendly dictionaries."""

    def task_snapshot(self, task: Task, now_ms: int) -> Dict[str, object]:
        return {
            "id": task.id,
            "title": task.title,
            "assignedTo": task.assigned_to,
            "due": task.due,
            "completed": task.completed,
            "forMinor": task.for_minor,
            "ackRequired": task.ack_required,
            "photoProof": task.photo_proof,
            "ackBy": task.ack_by,
            "ackAt": task.ack_at,
            "proofKey": task.proof_key,
            "repeat": task.repeat.value,
            "repeatRule": task.repeat_rule.as_dict(),
            "recurrenceText": task.repeat_rule.describe(),
            "autoEnforce": task.auto_enforce,
            "autoAction": task.auto_action.value if task.auto_action else None,
            "enforcedAt": task.enforced_at,
            "enforceChannel": task.enforce_channel.value if task.enforce_channel else None,
            "lastEnforceError": task.last_enforce_error,
            "pausedByParent": task.paused_by_parent,
            "holdUntil": task.hold_until,
            "cancelledAt": task.cancelled_at,
            "note": task.note,
            "createdAt": task.created_at,
            "state": task_state(task, now_ms).value,
            "actions": sorted(action.value for action in available_actions(task, now_ms)),
        }

    def user_snapshot(self, user: User) -> Dict[str, object]:
        return {"id": user.id, "name": user.name, "role": user.role.value}


# ---------------------------------------------------------------------------
# Payload parsing
# ---------------------------------------------------------------------------
def _require_mapping(payload: Any) -> Mapping[str, Any]:
    if not isinstance(payload, Mapping):
        raise ValidationError("Request body must be a JSON object.")
    return payload


def _parse_bool(value: Any, name: str) -> bool:
    if value is None:
        return False
    if not isinstance(value, bool):
        raise ValidationError(f"'{name}' must be true or false.")
    return value


def _parse_int(value: Any, name: str) -> int:
    if isinstance(value, bool):
        raise ValidationError(f"'{name}' must be a number.")
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    if isinstance(value, str) and _INTEGER_PATTERN.fullmatch(value.strip()):
        try:
            return int(value.strip())
        except ValueError as exc:
            raise ValidationError(f"'{name}' is too large.") from exc
    raise ValidationError(f"'{name}' must be a whole number.")


def parse_timestamp(value: Any, name: str = "due") -> Optional[int]:
    """Accept epoch milliseconds or an ISO-8601 date / datetime string.

    A trailing ``Z`` is read as UTC. Aware values are converted to local time.
    """

    if value is None or value == "":
        return None
    if isinstance(value, str) and not _INTEGER_PATTERN.fullmatch(value.strip()):
        text = value.strip()
        if text[-1:] in {"Z", "z"}:
            text = text[:-1] + "+00:00"
        try:
            moment = datetime.fromisoformat(text)
            if moment.tzinfo is not None:
                moment = moment.astimezone().replace(tzinfo=None)
            stamp = to_epoch_ms(moment)
        except (ValueError, OverflowError, OSError) as exc:
            raise ValidationError(f"'{name}' is not a valid timestamp.") from exc
    else:
        stamp = _parse_int(value, name)
    if not MIN_EPOCH_MS <= stamp <= MAX_EPOCH_MS:
        raise ValidationError(f"'{name}' is outside the supported date range.")
    return stamp


def _parse_title(value: Any) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ValidationError("A non-empty title is required.")
    return value.strip()


def _parse_optional_text(value: Any, name: str) -> Optional[str]:
    if value is None:
        return None
    if not isinstance(value, str):
        raise ValidationError(f"'{name}' must be text.")
    return value.strip() or None


def parse_auto_action(value: Any) -> Optional[AutoAction]:
    if value is None or value == "":
        return None
    try:
        return AutoAction(value)
    except ValueError as exc:
        raise ValidationError(f"Unknown enforcement action '{value}'.") from exc


def parse_channel(value: Any) -> EnforceChannel:
    if value is None or value == "":
        return EnforceChannel.WS
    try:
        return EnforceChannel(value)
    except ValueError as exc:
        raise ValidationError(f"Unknown enforcement channel '{value}'.") from exc


def parse_repeat_rule(payload: Mapping[str, Any]) -> RepeatRule:
    """Build a validated :class:`RepeatRule` from ``repeat`` / ``repeatRule`` fields."""

    raw_rule = payload.get("repeatRule")
    if raw_rule is not None and not isinstance(raw_rule, Mapping):
        raise ValidationError("'repeatRule' must be an object.")
    rule_data: Mapping[str, Any] = raw_rule or {}
    repeat = payload.get("repeat")
    kind = rule_data.get("kind")
    if repeat is not None and kind is not None and repeat != kind:
        raise ValidationError("'repeat' and 'repeatRule.kind' disagree.")
    chosen = kind or repeat or RepeatKind.NONE.value

    raw_days = rule_data.get("daysOfWeek") or []
    if not isinstance(raw_days, list):
        raise ValidationError("'daysOfWeek' must be a list of weekday numbers.")
    days = tuple(_parse_int(day, "daysOfWeek") for day in raw_days)

    time_hhmm = rule_data.get("timeHHMM")
    if time_hhmm is not None and not isinstance(time_hhmm, str):
        raise ValidationError("'timeHHMM' must be an HH:MM string.")

    raw_offsets = rule_data.get("alertOffsetsMin")
    if raw_offsets is None:
        offsets: Tuple[int, ...] = DEFAULT_ALERT_OFFSETS
    elif isinstance(raw_offsets, list):
        offsets = tuple(_parse_int(offset, "alertOffsetsMin") for offset in raw_offsets)
    else:
        raise ValidationError("'alertOffsetsMin' must be a list of minutes.")

    rule = RepeatRule(kind=chosen, days_of_week=days, time_hhmm=time_hhmm, alert_offsets_min=offsets)
    return rule.validate()


def parse_task_draft(payload: Any) -> TaskDraft:
    data = _require_mapping(payload)
    return TaskDraft(
        title=_parse_title(data.get("title")),
        due=parse_timestamp(data.get("due")),
        assigned_to=_parse_optional_text(data.get("assignedTo"), "assignedTo"),
        for_minor=_parse_bool(data.get("forMinor"), "forMinor"),
        ack_required=_parse_bool(data.get("ackRequired"), "ackRequired"),
        photo_proof=_parse_bool(data.get("photoProof"), "photoProof"),
        repeat_rule=parse_repeat_rule(data),
        auto_enforce=_parse_bool(data.get("autoEnforce"), "autoEnforce"),
        auto_action=parse_auto_action(data.get("autoAction")),
        note=_parse_optional_text(data.get("note"), "note"),
    )


def parse_task_patch(payload: Any) -> Dict[str, Any]:
    """Translate a PATCH body into store field updates; unknown keys are ignored."""

    data = _require_mapping(payload)
    frozen = sorted(IMMUTABLE_FIELDS.intersection(data))
    if frozen:
        raise ValidationError(f"Field(s) cannot be changed: {', '.join(frozen)}.")
    changes: Dict[str, Any] = {}
    for key, attribute in PATCHABLE_FIELDS.items():
        if key not in data:
            continue
        value = data[key]
        if key == "title":
            changes[attribute] = _parse_title(value)
        elif key == "due":
            changes[attribute] = parse_timestamp(value)
        elif key in {"completed", "pausedByParent", "autoEnforce"}:
            changes[attribute] = _parse_bool(value, key)
        elif key == "autoAction":
            changes[attribute] = parse_auto_action(value)
        else:
            changes[attribute] = _parse_optional_text(value, key)
    if "repeat" in data or "repeatRule" in data:
        changes["repeat_rule"] = parse_repeat_rule(data)
    return changes


def parse_hold_minutes(payload: Any) -> int:
    data = _require_mapping(payload)
    if "minutes" not in data:
        raise ValidationError("'minutes' is required.")
    minutes = _parse_int(data["minutes"], "minutes")
    if minutes <= 0:
        raise ValidationError("Hold minutes must be greater than zero.")
    if minutes > MAX_HOLD_MINUTES:
        raise ValidationError("Hold minutes cannot exceed one year.")
    return minutes


def parse_parental_enforce(payload: Any) -> Dict[str, Any]:
    data = _require_mapping(payload)
    target = _parse_optional_text(data.get("targetUserId"), "targetUserId")
    if not target:
        raise ValidationError("'targetUserId' is required.")
    action = parse_auto_action(data.get("action"))
    if action is None:
        raise ValidationError("'action' is required.")
    return {
        "targetUserId": target,
        "action": action,
        "reason": _parse_optional_text(data.get("reason"), "reason") or "",
    }


# ---------------------------------------------------------------------------
# Enforcement fan-out
# ---------------------------------------------------------------------------
EnforcementListener = Callable[[Dict[str, object]], None]


class EnforcementDispatcher:
    """Simple synchronous broadcaster for enforcement events.

    Listeners signal a failed delivery by raising :class:`EnforcementError`;
    the messages are returned so the caller can record them on the task.
    """

    def __init__(self) -> None:
        self._listeners: list[EnforcementListener] = []

    @property
    def listeners(self) -> Tuple[EnforcementListener, ...]:
        return tuple(self._listeners)

    def register(self, listener: EnforcementListener) -> None:
        self._listeners.append(listener)

    def unregister(self, listener: EnforcementListener) -> None:
        try:
            self._listeners.remove(listener)
        except ValueError:
            pass

    def dispatch(self, event: Dict[str, object]) -> List[str]:
        errors: List[str] = []
        for listener in list(self._listeners):
            try:
                listener(event)
            except EnforcementError as exc:
                errors.append(str(exc))
        return errors


__all__ = [
    "ApiExporter",
    "EnforcementDispatcher",
    "IMMUTABLE_FIELDS",
    "PATCHABLE_FIELDS",
    "parse_auto_action",
    "parse_channel",
    "parse_hold_minutes",
    "parse_parental_enforce",
    "parse_repeat_rule",
    "parse_task_draft",
    "parse_task_patch",
    "parse_timestamp",
]
