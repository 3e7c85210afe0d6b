import pytest

from carecircle.exceptions import PermissionDeniedError, ValidationError
from carecircle.models import Role, User
from carecircle.plans import PlanKey, kid_limit, plan_snapshot
from carecircle.policy import Permission, is_permitted, require_permission


@pytest.mark.parametrize("role", [Role.OWNER, Role.FAMILY])
def test_adults_may_do_everything(role) -> None:
    assert all(is_permitted(role, permission) for permission in Permission)


@pytest.mark.parametrize("role", [Role.CHILD, Role.MINOR])
def test_children_only_view_ack_and_attach_proof(role) -> None:
    allowed = {permission for permission in Permission if is_permitted(role, permission)}
    assert allowed == {Permission.VIEW, Permission.ACK, Permission.ATTACH_PROOF}


def test_require_permission_raises_for_children() -> None:
    kid = User(id="kid-ryan", name="Ryan", role="Child")
    require_permission(kid, "ack")
    with pytest.raises(PermissionDeniedError, match="kid-ryan"):
        require_permission(kid, Permission.ENFORCE)


def test_plan_limits() -> None:
    assert kid_limit("free") == 1
    assert kid_limit(PlanKey.LITE) == 2
    assert kid_limit(" Elite ") == 5
    assert plan_snapshot("elite") == {"plan": "elite", "maxKids": 5}
    with pytest.raises(ValidationError):
        kid_limit("platinum")
