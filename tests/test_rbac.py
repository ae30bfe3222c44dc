"""
tests/test_rbac.py -- Unit tests for the role hierarchy decision function.

authorize() is pure, so every rule is checked exhaustively over the 5x5 role
grid rather than with hand-picked examples.

Covers:
  - view requires Admin or above regardless of target
  - create allowed up to and including the actor's own role
  - update/delete/reset_password require strictly outranking the target
  - change_role additionally caps the new role below the actor's
  - self-modification is denied with its own reason
  - require() raises AuthorizationFailure carrying the reason
"""

from __future__ import annotations

import pytest

from auth.errors import AuthorizationFailure
from auth.models import Role
from auth.rbac import DenyReason, Operation, authorize, require

ROLES = list(Role)


class TestView:
    @pytest.mark.parametrize("actor", ROLES)
    @pytest.mark.parametrize("target", ROLES)
    def test_view_depends_only_on_actor(self, actor: Role, target: Role) -> None:
        """Admins (3+) may view any account; below that nothing."""
        decision = authorize(actor, target, Operation.VIEW)
        assert decision.allowed == (actor >= Role.ADMIN)
        if not decision:
            assert decision.reason is DenyReason.ADMINISTRATOR_REQUIRED


class TestCreate:
    @pytest.mark.parametrize("actor", ROLES)
    @pytest.mark.parametrize("requested", ROLES)
    def test_create_up_to_own_role(self, actor: Role, requested: Role) -> None:
        decision = authorize(actor, requested, Operation.CREATE)
        assert decision.allowed == (requested <= actor)

    def test_create_above_own_role_reason(self) -> None:
        decision = authorize(Role.ADMIN, Role.SUPER_ADMIN, Operation.CREATE)
        assert decision.reason is DenyReason.ROLE_ASSIGNMENT_TOO_HIGH


class TestMutations:
    @pytest.mark.parametrize("operation", [Operation.UPDATE, Operation.DELETE, Operation.RESET_PASSWORD])
    @pytest.mark.parametrize("actor", ROLES)
    @pytest.mark.parametrize("target", ROLES)
    def test_requires_strictly_higher_role(self, operation: Operation, actor: Role, target: Role) -> None:
        decision = authorize(actor, target, operation, actor_id=1, target_id=2)
        assert decision.allowed == (actor > target)
        if not decision:
            assert decision.reason is DenyReason.EQUAL_OR_HIGHER_ROLE

    def test_owner_cannot_modify_another_owner(self) -> None:
        assert not authorize(Role.OWNER, Role.OWNER, Operation.UPDATE, actor_id=1, target_id=2)


class TestChangeRole:
    @pytest.mark.parametrize("actor", ROLES)
    @pytest.mark.parametrize("target", ROLES)
    @pytest.mark.parametrize("new_role", ROLES)
    def test_change_role_grid(self, actor: Role, target: Role, new_role: Role) -> None:
        decision = authorize(actor, target, Operation.CHANGE_ROLE, new_role=new_role, actor_id=1, target_id=2)
        assert decision.allowed == (actor > target and new_role < actor)

    def test_cannot_promote_to_own_role(self) -> None:
        decision = authorize(Role.SUPER_ADMIN, Role.USER, Operation.CHANGE_ROLE, new_role=Role.SUPER_ADMIN)
        assert decision.reason is DenyReason.ROLE_ASSIGNMENT_TOO_HIGH

    def test_missing_new_role_is_a_programming_error(self) -> None:
        with pytest.raises(ValueError):
            authorize(Role.OWNER, Role.USER, Operation.CHANGE_ROLE)


class TestSelfModification:
    @pytest.mark.parametrize("operation", [Operation.DELETE, Operation.RESET_PASSWORD, Operation.CHANGE_ROLE])
    def test_denied_even_for_owner(self, operation: Operation) -> None:
        decision = authorize(Role.OWNER, Role.USER, operation, new_role=Role.USER, actor_id=7, target_id=7)
        assert not decision
        assert decision.reason is DenyReason.SELF_MODIFICATION

    def test_distinct_ids_are_not_self(self) -> None:
        assert authorize(Role.OWNER, Role.USER, Operation.DELETE, actor_id=7, target_id=8)


class TestRequire:
    def test_require_raises_with_reason(self) -> None:
        with pytest.raises(AuthorizationFailure) as excinfo:
            require(Role.ADMIN, Role.ADMIN, Operation.DELETE, actor_id=1, target_id=2)
        assert excinfo.value.reason is DenyReason.EQUAL_OR_HIGHER_ROLE
        assert excinfo.value.code == "forbidden"
        assert excinfo.value.message == DenyReason.EQUAL_OR_HIGHER_ROLE.message

    def test_require_returns_none_when_allowed(self) -> None:
        assert require(Role.ADMIN, Role.USER, Operation.UPDATE) is None
