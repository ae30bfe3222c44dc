"""
auth/rbac.py -- Role hierarchy decisions.

authorize() is the single policy function for every administrative operation.
It is pure: no store access, no clock, no logging. Callers load the actor and
target first, then ask. Inline role comparisons anywhere else are a bug.

Rules (roles are 1..5, higher outranks lower):
  create          requested role <= actor role
  view            actor role >= ADMIN_THRESHOLD, target role irrelevant
  update          actor role >  target role
  delete          actor role >  target role, and never on oneself
  reset_password  actor role >  target role, and never on oneself
  change_role     actor role >  target role, new role < actor role,
                  and never on oneself

Layer rule: imports only auth.models and auth.errors.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional

from auth.errors import AuthorizationFailure
from auth.models import ADMIN_THRESHOLD


class Operation(str, Enum):
    CREATE = "create"
    VIEW = "view"
    UPDATE = "update"
    DELETE = "delete"
    RESET_PASSWORD = "reset_password"
    CHANGE_ROLE = "change_role"


class DenyReason(str, Enum):
    SELF_MODIFICATION = "self_modification"
    EQUAL_OR_HIGHER_ROLE = "equal_or_higher_role"
    ROLE_ASSIGNMENT_TOO_HIGH = "role_assignment_too_high"
    ADMINISTRATOR_REQUIRED = "administrator_required"

    @property
    def message(self) -> str:
        return _DENY_MESSAGES[self]


_DENY_MESSAGES: dict[DenyReason, str] = {
    DenyReason.SELF_MODIFICATION: "Cannot perform this operation on your own account.",
    DenyReason.EQUAL_OR_HIGHER_ROLE: "Cannot modify an account with equal or higher role.",
    DenyReason.ROLE_ASSIGNMENT_TOO_HIGH: "Cannot assign a role at or above your own.",
    DenyReason.ADMINISTRATOR_REQUIRED: "Administrator role required.",
}

# Operations that are refused on one's own account before rank is considered.
_NO_SELF_SERVICE = frozenset({Operation.DELETE, Operation.RESET_PASSWORD, Operation.CHANGE_ROLE})


@dataclass(frozen=True)
class Decision:
    allowed: bool
    reason: Optional[DenyReason] = None

    def __bool__(self) -> bool:
        return self.allowed


ALLOW = Decision(True)


def authorize(
    actor_role: int,
    target_role: int,
    operation: Operation,
    *,
    new_role: Optional[int] = None,
    actor_id: Optional[int] = None,
    target_id: Optional[int] = None,
) -> Decision:
    """Decide whether actor_role may perform operation on target_role.

    For CREATE, target_role is the role requested for the new account.
    For CHANGE_ROLE, new_role is required.
    actor_id/target_id are only consulted for the self-modification rule; when
    either is None the accounts are treated as distinct.
    """
    operation = Operation(operation)

    if operation is Operation.VIEW:
        return ALLOW if actor_role >= ADMIN_THRESHOLD else Decision(False, DenyReason.ADMINISTRATOR_REQUIRED)

    if operation is Operation.CREATE:
        return ALLOW if target_role <= actor_role else Decision(False, DenyReason.ROLE_ASSIGNMENT_TOO_HIGH)

    if operation in _NO_SELF_SERVICE and actor_id is not None and actor_id == target_id:
        return Decision(False, DenyReason.SELF_MODIFICATION)

    if actor_role <= target_role:
        return Decision(False, DenyReason.EQUAL_OR_HIGHER_ROLE)

    if operation is Operation.CHANGE_ROLE:
        if new_role is None:
            raise ValueError("change_role requires new_role")
        if new_role >= actor_role:
            return Decision(False, DenyReason.ROLE_ASSIGNMENT_TOO_HIGH)

    return ALLOW


def require(
    actor_role: int,
    target_role: int,
    operation: Operation,
    *,
    new_role: Optional[int] = None,
    actor_id: Optional[int] = None,
    target_id: Optional[int] = None,
) -> None:
    """authorize() that raises AuthorizationFailure on deny."""
    decision = authorize(
        actor_role,
        target_role,
        operation,
        new_role=new_role,
        actor_id=actor_id,
        target_id=target_id,
    )
    if not decision.allowed:
        raise AuthorizationFailure(decision.reason)
