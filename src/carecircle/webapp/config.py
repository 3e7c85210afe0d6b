"""Configuration constants for the CareCircle web apps."""
from __future__ import annotations

import os
from pathlib import Path
from typing import Dict, Optional, Tuple

from dotenv import load_dotenv

from ..models import Role, User

load_dotenv()


def _flag(name: str, default: str = "0") -> bool:
    return os.environ.get(name, default).strip().lower() in {"1", "true", "yes", "on"}


def _csv(raw: str) -> Tuple[str, ...]:
    return tuple(part.strip() for part in raw.split(",") if part.strip())


SERVICE_NAME = "CareCircle Task Backend"
API_BASE_URL = os.environ.get("CARECIRCLE_API_BASE_URL", "http://localhost:4000").rstrip("/")
PLAN = os.environ.get("CARECIRCLE_PLAN", "elite")
DEFAULT_ALLOWED_ORIGINS: Tuple[str, ...] = (
    "http://localhost:3000",
    "http://127.0.0.1:3000",
    "http://localhost:3004",
    "http://127.0.0.1:3004",
)
ALLOWED_ORIGINS = _csv(os.environ.get("CARECIRCLE_ALLOWED_ORIGINS", ",".join(DEFAULT_ALLOWED_ORIGINS)))
ENFORCE_ROLES = _flag("CARECIRCLE_ENFORCE_ROLES")
ACTING_USER_HEADER = "x-user-id"
DEFAULT_ACTING_USER = os.environ.get("CARECIRCLE_DEFAULT_USER", "owner")
_log_path = os.environ.get("CARECIRCLE_LOG_PATH", "").strip()
LOG_PATH: Optional[Path] = Path(_log_path) if _log_path else None
PROXY_TIMEOUT = float(os.environ.get("CARECIRCLE_PROXY_TIMEOUT", "6"))
PRESENCE_WINDOW_SECONDS = int(os.environ.get("CARECIRCLE_PRESENCE_WINDOW", "60"))

SMTP_SETTINGS: Dict[str, Optional[str]] = {
    key: os.environ.get(key)
    for key in ("SMTP_HOST", "SMTP_PORT", "SMTP_USER", "SMTP_PASS", "MAIL_FROM")
}
MAIL_TO = _csv(os.environ.get("MAIL_TO", ""))

DEFAULT_USERS: Tuple[User, ...] = (
    User(id="owner", name="Owner", role=Role.OWNER),
    User(id="kid-ryan", name="Ryan", role=Role.CHILD),
    User(id="kid-derek", name="Derek", role=Role.CHILD),
    User(id="kid-lovelyn", name="Lovelyn", role=Role.CHILD),
)

__all__ = [
    "ACTING_USER_HEADER",
    "ALLOWED_ORIGINS",
    "API_BASE_URL",
    "DEFAULT_ACTING_USER",
    "DEFAULT_USERS",
    "ENFORCE_ROLES",
    "LOG_PATH",
    "MAIL_TO",
    "PLAN",
    "PRESENCE_WINDOW_SECONDS",
    "PROXY_TIMEOUT",
    "SERVICE_NAME",
    "SMTP_SETTINGS",
]
