"""Custom exception hierarchy for the CareCircle package."""

from __future__ import annotations


class CareCircleError(Exception):
    """Base class for all CareCircle specific errors."""


class ValidationError(CareCircleError):
    """Raised when input is missing or malformed, before any mutation happens."""


class TaskNotCompletedError(ValidationError):
    """Raised when deleting a task that has not been completed (cancel it instead)."""


class NotFoundError(CareCircleError):
    """Raised when a lookup by id fails."""


class TaskNotFoundError(NotFoundError):
    """Raised when a task id does not exist in the store."""


class UserNotFoundError(NotFoundError):
    """Raised when a user id does not exist in the store."""


class PermissionDeniedError(CareCircleError):
    """Raised when the acting user's role does not allow an action."""


class ProxyFailure(CareCircleError):
    """Raised when an upstream HTTP call fails or times out."""


class UnconfiguredError(CareCircleError):
    """Raised when an optional integration lacks its required configuration."""


class EnforcementError(CareCircleError):
    """Raised by enforcement listeners when a consequence action could not run."""
