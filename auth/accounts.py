"""
auth/accounts.py -- Registration, login, and role-gated account administration.

Every function takes the AccountStore explicitly; nothing here reaches for a
global pool. Each public operation is one unit_of_work.

Administrative operations receive the acting Account (re-read from the store
by the dependency layer, so a demoted admin loses power immediately rather
than when their token expires) and always go through rbac.require().

Security:
  [C1] authenticate() runs bcrypt exactly once on every path, and reports
       unknown email, wrong password and deleted accounts with the same
       AuthenticationFailure. Account status is only disclosed after the
       password has been proven.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from auth import rbac
from auth.errors import AccountUnavailable, AuthenticationFailure, NotFound, StatusTransitionError
from auth.models import Account, AccountProfile, AccountStatus, Role
from auth.rbac import Operation
from auth.store import AccountStore
from auth.transactions import unit_of_work

logger = logging.getLogger("authsquared.auth")

# Statuses an admin update may set. "deleted" only via admin_delete_account.
_ASSIGNABLE_STATUSES = frozenset(
    {AccountStatus.PENDING, AccountStatus.ACTIVE, AccountStatus.SUSPENDED, AccountStatus.LOCKED}
)


@dataclass
class AccountPage:
    accounts: list[Account]
    total: int
    page: int
    limit: int

    @property
    def total_pages(self) -> int:
        return (self.total + self.limit - 1) // self.limit if self.limit else 0


# ---------------------------------------------------------------------------
# Creation
# ---------------------------------------------------------------------------


def _create_with_credential(
    store: AccountStore,
    profile: AccountProfile,
    password: str,
    role: Role,
    status: AccountStatus,
) -> Account:
    """Insert account + credential atomically and return the stored account.

    Both rows commit together or neither does; a ConflictError from a
    duplicate email/username/phone leaves nothing behind.
    """
    with unit_of_work(store.engine) as conn:
        account_id = store.create_account(
            conn,
            Account(
                first_name=profile.first_name,
                last_name=profile.last_name,
                email=profile.email,
                username=profile.username,
                phone=profile.phone,
                role=role,
                status=status,
            ),
        )
        store.attach_credential(conn, account_id, password)
        account = store.get_account(conn, account_id)
    return account


def register_account(store: AccountStore, profile: AccountProfile, password: str) -> Account:
    """Self-service registration: role USER, status pending."""
    account = _create_with_credential(store, profile, password, Role.USER, AccountStatus.PENDING)
    logger.info("Registered account %d", account.id)
    return account


def bootstrap_account(store: AccountStore, profile: AccountProfile, password: str, role: Role) -> Account:
    """Create an active account with any role, without an actor.

    Operator-only (management CLI): this is how the first Owner comes to exist.
    """
    account = _create_with_credential(store, profile, password, Role(role), AccountStatus.ACTIVE)
    logger.warning("Bootstrapped account %d with role %s", account.id, Role(role).name)
    return account


def admin_create_account(
    store: AccountStore,
    actor: Account,
    profile: AccountProfile,
    password: str,
    role: int = Role.USER,
) -> Account:
    """Create an active account with a role no higher than the actor's."""
    role = Role(role)
    rbac.require(actor.role, role, Operation.CREATE, actor_id=actor.id)
    account = _create_with_credential(store, profile, password, role, AccountStatus.ACTIVE)
    logger.info("Account %d created account %d with role %s", actor.id, account.id, role.name)
    return account


# ---------------------------------------------------------------------------
# Authentication
# ---------------------------------------------------------------------------


def authenticate(store: AccountStore, email: str, password: str) -> Account:
    """Verify email + password and return the account.

    Raises AuthenticationFailure for unknown email, wrong password, or a
    deleted account, and AccountUnavailable for a suspended/locked account
    whose password was correct. Pending accounts may log in; they need a
    session to complete verification.
    """
    with unit_of_work(store.engine) as conn:
        account = store.get_account_by_email(conn, email)
        # verify_credential burns a dummy bcrypt round when account is None [C1]
        valid = store.verify_credential(conn, account.id if account else None, password)
    if account is None or not valid or account.status is AccountStatus.DELETED:
        raise AuthenticationFailure()
    if account.status in (AccountStatus.SUSPENDED, AccountStatus.LOCKED):
        raise AccountUnavailable(account.status.value)
    return account


def load_account(store: AccountStore, account_id: int) -> Optional[Account]:
    """Plain lookup for the dependency layer. No authorization."""
    with unit_of_work(store.engine) as conn:
        return store.get_account(conn, account_id)


# ---------------------------------------------------------------------------
# Read access (view)
# ---------------------------------------------------------------------------


def get_account(store: AccountStore, actor: Account, account_id: int) -> Account:
    with unit_of_work(store.engine) as conn:
        target = store.get_account(conn, account_id)
        if target is None:
            raise NotFound()
        rbac.require(actor.role, target.role, Operation.VIEW, actor_id=actor.id, target_id=target.id)
    return target


def list_accounts(
    store: AccountStore,
    actor: Account,
    page: int = 1,
    limit: int = 20,
    role: Optional[int] = None,
    status: Optional[str] = None,
    email_verified: Optional[bool] = None,
) -> AccountPage:
    rbac.require(actor.role, Role.USER, Operation.VIEW, actor_id=actor.id)
    page = max(page, 1)
    with unit_of_work(store.engine) as conn:
        total = store.count_accounts(conn, role=role, status=status, email_verified=email_verified)
        accounts = store.list_accounts(
            conn,
            role=role,
            status=status,
            email_verified=email_verified,
            limit=limit,
            offset=(page - 1) * limit,
        )
    return AccountPage(accounts=accounts, total=total, page=page, limit=limit)


def search_accounts(store: AccountStore, actor: Account, query: str, limit: int = 20) -> list[Account]:
    rbac.require(actor.role, Role.USER, Operation.VIEW, actor_id=actor.id)
    with unit_of_work(store.engine) as conn:
        return store.search_accounts(conn, query, limit=limit)


def account_stats(store: AccountStore, actor: Account) -> dict:
    rbac.require(actor.role, Role.USER, Operation.VIEW, actor_id=actor.id)
    with unit_of_work(store.engine) as conn:
        return store.account_stats(conn)


# ---------------------------------------------------------------------------
# Mutations
# ---------------------------------------------------------------------------


def admin_update_account(store: AccountStore, actor: Account, account_id: int, **changes) -> Account:
    """Update profile fields and/or status of a lower-ranked account.

    Accepted keys: first_name, last_name, username, email, phone, status.
    Changing email clears email_verified; changing phone clears
    phone_verified. A deleted account cannot be updated.
    """
    unknown = set(changes) - {"first_name", "last_name", "username", "email", "phone", "status"}
    if unknown:
        raise ValueError(f"Unknown account fields: {unknown!r}")
    updates = {k: v for k, v in changes.items() if v is not None}

    with unit_of_work(store.engine) as conn:
        target = store.get_account(conn, account_id)
        if target is None:
            raise NotFound()
        rbac.require(actor.role, target.role, Operation.UPDATE, actor_id=actor.id, target_id=target.id)
        if target.status is AccountStatus.DELETED:
            raise StatusTransitionError("Deleted accounts cannot be modified.")
        if "status" in updates:
            status = AccountStatus(updates["status"])
            if status not in _ASSIGNABLE_STATUSES:
                raise StatusTransitionError("Use the delete operation to delete an account.")
            updates["status"] = status
        if "email" in updates and updates["email"] != target.email:
            updates["email_verified"] = False
        if "phone" in updates and updates["phone"] != target.phone:
            updates["phone_verified"] = False
        store.update_account(conn, account_id, **updates)
        updated = store.get_account(conn, account_id)
    logger.info("Account %d updated account %d (%s)", actor.id, account_id, ", ".join(sorted(updates)))
    return updated


def admin_delete_account(store: AccountStore, actor: Account, account_id: int) -> Account:
    """Soft delete: status becomes the terminal value "deleted"."""
    with unit_of_work(store.engine) as conn:
        target = store.get_account(conn, account_id)
        if target is None:
            raise NotFound()
        rbac.require(actor.role, target.role, Operation.DELETE, actor_id=actor.id, target_id=target.id)
        if target.status is AccountStatus.DELETED:
            raise StatusTransitionError("Account is already deleted.")
        store.update_account(conn, account_id, status=AccountStatus.DELETED)
        deleted = store.get_account(conn, account_id)
    logger.info("Account %d deleted account %d", actor.id, account_id)
    return deleted


def admin_change_role(store: AccountStore, actor: Account, account_id: int, new_role: int) -> tuple[Role, Role]:
    """Change a lower-ranked account's role to one strictly below the actor's.

    Returns (old_role, new_role).
    """
    new_role = Role(new_role)
    with unit_of_work(store.engine) as conn:
        target = store.get_account(conn, account_id)
        if target is None:
            raise NotFound()
        rbac.require(
            actor.role,
            target.role,
            Operation.CHANGE_ROLE,
            new_role=new_role,
            actor_id=actor.id,
            target_id=target.id,
        )
        if target.status is AccountStatus.DELETED:
            raise StatusTransitionError("Deleted accounts cannot be modified.")
        store.update_account(conn, account_id, role=new_role)
    logger.info("Account %d changed role of account %d: %s -> %s", actor.id, account_id, target.role.name, new_role.name)
    return target.role, new_role
