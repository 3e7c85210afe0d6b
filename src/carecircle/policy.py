"""Role based permission checks applied at the HTTP boundary."""

from __future__ import annotations

from enum import Enum
from typing import Dict, FrozenSet

from .exceptions import PermissionDeniedError
from .models import Role, User


class Permission(str, Enum):
    VIEW = "view"
    CREATE = "create"
    EDIT = "edit"
    ACK = "ack"
    ATTACH_PROOF = "attach_proof"
    HOLD = "hold"
    ENFORCE = "enforce"
    CANCEL = "cancel"
    DELETE = "delete"


_PARENT: FrozenSet[Permission] = frozenset(Permission)
_CHILD: FrozenSet[Permission] = frozenset({Permission.VIEW, Permission.ACK, Permission.ATTACH_PROOF})

ROLE_PERMISSIONS: Dict[Role, FrozenSet[Permission]] = {
    Role.OWNER: _PARENT,
    Role.FAMILY: _PARENT,
    Role.CHILD: _CHILD,
    Role.MINOR: _CHILD,
}


def is_permitted(role: Role | str, permission: Permission | str) -> bool:
    return Permission(permission) in ROLE_PERMISSIONS.get(Role(role), frozenset())


def require_permission(user: User, permission: Permission | str) -> None:
    """Raise :class:`PermissionDeniedError` unless ``user`` may perform ``permission``."""

    if not is_permitted(user.role, permission):
        raise PermissionDeniedError(
            f"{user.role.value} '{user.id}' is not allowed to {Permission(permission).value}."
        )


__all__ = ["Permission", "ROLE_PERMISSIONS", "is_permitted", "require_permission"]
