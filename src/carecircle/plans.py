"""Subscription plans and the number of kids each one covers."""

from __future__ import annotations

from enum import Enum
from typing import Dict

from .exceptions import ValidationError


class PlanKey(str, Enum):
    FREE = "free"
    LITE = "lite"
    ELITE = "elite"


PLAN_LIMITS: Dict[PlanKey, int] = {PlanKey.FREE: 1, PlanKey.LITE: 2, PlanKey.ELITE: 5}


def parse_plan(value: PlanKey | str) -> PlanKey:
    try:
        return PlanKey((value or "").strip().lower())
    except ValueError as exc:
        raise ValidationError(f"Unknown plan '{value}'.") from exc


def kid_limit(plan: PlanKey | str) -> int:
    return PLAN_LIMITS[parse_plan(plan)]


def plan_snapshot(plan: PlanKey | str) -> Dict[str, object]:
    key = parse_plan(plan)
    return {"plan": key.value, "maxKids": PLAN_LIMITS[key]}


__all__ = ["PLAN_LIMITS", "PlanKey", "kid_limit", "parse_plan", "plan_snapshot"]
