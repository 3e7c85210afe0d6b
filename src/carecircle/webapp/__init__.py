"""CareCircle web applications: the task API backend and the browser gateway."""
from __future__ import annotations

from typing import List

_WEB_MODULES = {"fastapi", "starlette", "sqlmodel", "sqlalchemy", "dotenv"}

try:
    from .application import app, create_app
    from .gateway import create_gateway_app
except ModuleNotFoundError as exc:  # pragma: no cover - depends on the environment
    if exc.name in _WEB_MODULES:
        raise RuntimeError(
            "carecircle.webapp requires the FastAPI/SQLModel dependencies. "
            "Install them via `pip install -e .`."
        ) from exc
    raise

__all__: List[str] = ["app", "create_app", "create_gateway_app"]
