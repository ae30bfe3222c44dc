"""
api/routes/v1/admin.py -- Role-gated account administration endpoints.

Routes:
  POST   /api/v1/admin/users                  -- create account (role <= own)
  GET    /api/v1/admin/users                  -- paginated list with filters
  GET    /api/v1/admin/users/search?q=        -- name/username/email search
  GET    /api/v1/admin/users/stats            -- aggregate counts
  GET    /api/v1/admin/users/{id}             -- account detail
  PATCH  /api/v1/admin/users/{id}             -- profile fields and status
  DELETE /api/v1/admin/users/{id}             -- soft delete
  PUT    /api/v1/admin/users/{id}/role        -- change role
  PUT    /api/v1/admin/users/{id}/password    -- set password without the old one

Every route requires an Admin or above (require_admin). Whether the actor may
touch a particular target is decided by auth.rbac inside each workflow call,
never here: a 403 from those carries the deny reason in error.detail.
"""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query

from api.models import (
    AccountCreate,
    AccountListResponse,
    AccountPatch,
    AccountResponse,
    AccountStatsResponse,
    AdminPasswordReset,
    AssignableStatusEnum,
    MessageResponse,
    RoleChangeRequest,
    RoleChangeResponse,
)
from auth import accounts
from auth.dependencies import get_store, require_admin
from auth.models import ROLE_NAMES, Account, AccountProfile, AccountStatus
from auth.passwords import admin_reset_password
from auth.store import AccountStore

router = APIRouter()


@router.post("/admin/users", response_model=AccountResponse, status_code=201)
def create_account(
    body: AccountCreate,
    actor: Account = Depends(require_admin),
    store: AccountStore = Depends(get_store),
) -> AccountResponse:
    """Create an active account. The requested role may not exceed the actor's."""
    profile = AccountProfile(
        first_name=body.first_name,
        last_name=body.last_name,
        email=body.email,
        username=body.username,
        phone=body.phone,
    )
    account = accounts.admin_create_account(store, actor, profile, body.password, role=body.role)
    return AccountResponse.from_account(account)


@router.get("/admin/users", response_model=AccountListResponse)
def list_accounts(
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=20, ge=1, le=100),
    role: Optional[int] = Query(default=None, ge=1, le=5),
    status: Optional[AccountStatus] = Query(default=None),
    email_verified: Optional[bool] = Query(default=None),
    actor: Account = Depends(require_admin),
    store: AccountStore = Depends(get_store),
) -> AccountListResponse:
    result = accounts.list_accounts(
        store,
        actor,
        page=page,
        limit=limit,
        role=role,
        status=status.value if status else None,
        email_verified=email_verified,
    )
    return AccountListResponse(
        accounts=[AccountResponse.from_account(a) for a in result.accounts],
        total=result.total,
        page=result.page,
        limit=result.limit,
        total_pages=result.total_pages,
    )


@router.get("/admin/users/search", response_model=list[AccountResponse])
def search_accounts(
    q: str = Query(min_length=1, max_length=100),
    limit: int = Query(default=20, ge=1, le=100),
    actor: Account = Depends(require_admin),
    store: AccountStore = Depends(get_store),
) -> list[AccountResponse]:
    return [AccountResponse.from_account(a) for a in accounts.search_accounts(store, actor, q, limit=limit)]


@router.get("/admin/users/stats", response_model=AccountStatsResponse)
def account_stats(
    actor: Account = Depends(require_admin),
    store: AccountStore = Depends(get_store),
) -> AccountStatsResponse:
    stats = accounts.account_stats(store, actor)
    return AccountStatsResponse(
        total=stats["total"],
        by_role={ROLE_NAMES[role]: count for role, count in stats["by_role"].items() if role in ROLE_NAMES},
        by_status=stats["by_status"],
        email_verified=stats["email_verified"],
        phone_verified=stats["phone_verified"],
        both_verified=stats["both_verified"],
        created_last_7_days=stats["created_last_7_days"],
    )


@router.get("/admin/users/{account_id}", response_model=AccountResponse)
def get_account(
    account_id: int,
    actor: Account = Depends(require_admin),
    store: AccountStore = Depends(get_store),
) -> AccountResponse:
    return AccountResponse.from_account(accounts.get_account(store, actor, account_id))


@router.patch("/admin/users/{account_id}", response_model=AccountResponse)
def update_account(
    account_id: int,
    body: AccountPatch,
    actor: Account = Depends(require_admin),
    store: AccountStore = Depends(get_store),
) -> AccountResponse:
    """Update profile fields or status of an account ranked below the actor.

    Changing email or phone clears the matching verified flag.
    """
    changes = body.model_dump(exclude_none=True)
    if isinstance(changes.get("status"), AssignableStatusEnum):
        changes["status"] = changes["status"].value
    updated = accounts.admin_update_account(store, actor, account_id, **changes)
    return AccountResponse.from_account(updated)


@router.delete("/admin/users/{account_id}", response_model=MessageResponse)
def delete_account(
    account_id: int,
    actor: Account = Depends(require_admin),
    store: AccountStore = Depends(get_store),
) -> MessageResponse:
    """Soft delete. The row stays with status "deleted" and can no longer log in."""
    accounts.admin_delete_account(store, actor, account_id)
    return MessageResponse(message="Account deleted.")


@router.put("/admin/users/{account_id}/role", response_model=RoleChangeResponse)
def change_role(
    account_id: int,
    body: RoleChangeRequest,
    actor: Account = Depends(require_admin),
    store: AccountStore = Depends(get_store),
) -> RoleChangeResponse:
    old_role, new_role = accounts.admin_change_role(store, actor, account_id, body.role)
    return RoleChangeResponse(
        account_id=account_id,
        old_role=int(old_role),
        new_role=int(new_role),
        message=f"Role changed from {ROLE_NAMES[old_role]} to {ROLE_NAMES[new_role]}.",
    )


@router.put("/admin/users/{account_id}/password", response_model=MessageResponse)
def reset_password(
    account_id: int,
    body: AdminPasswordReset,
    actor: Account = Depends(require_admin),
    store: AccountStore = Depends(get_store),
) -> MessageResponse:
    admin_reset_password(store, actor, account_id, body.new_password)
    return MessageResponse(message="Password reset.")
