"""Translate CareCircle errors into JSON responses."""
from __future__ import annotations

from typing import Tuple, Type

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from ..exceptions import (
    CareCircleError,
    NotFoundError,
    PermissionDeniedError,
    ProxyFailure,
    TaskNotCompletedError,
    UnconfiguredError,
    ValidationError,
)

# Checked in order; subclasses come before their parents.
ERROR_STATUS: Tuple[Tuple[Type[CareCircleError], int, str], ...] = (
    (TaskNotCompletedError, 409, "not_completed"),
    (ValidationError, 400, "validation_error"),
    (NotFoundError, 404, "not_found"),
    (PermissionDeniedError, 403, "forbidden"),
    (ProxyFailure, 502, "proxy_failed"),
    (UnconfiguredError, 503, "unconfigured"),
)


def error_response(exc: CareCircleError) -> JSONResponse:
    for kind, status_code, code in ERROR_STATUS:
        if isinstance(exc, kind):
            return JSONResponse({"error": code, "detail": str(exc)}, status_code=status_code)
    return JSONResponse({"error": "error", "detail": str(exc)}, status_code=500)


async def _handle_error(_request: Request, exc: CareCircleError) -> JSONResponse:
    return error_response(exc)


def install_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(CareCircleError, _handle_error)


__all__ = ["ERROR_STATUS", "error_response", "install_error_handlers"]
