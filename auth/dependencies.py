"""
auth/dependencies.py -- FastAPI Depends() helpers for authentication.

Clients authenticate with "Authorization: Bearer <access token>". The token
only identifies the account: the account is re-read from the store on every
request, so role changes, suspensions and deletions take effect immediately
even though the token's own claims are a snapshot.

get_current_account() raises HTTP 401 when unauthenticated. Expired and
invalid tokens get distinct codes so clients know when to log in again.
require_admin() additionally requires the view privilege (role >= Admin)
for the /admin surface; each admin operation then authorizes its own target.

Layer rule: no imports from api/.
  auth/dependencies.py may import from fastapi (for Depends/HTTPException/Request)
  because this module is part of the FastAPI dependency injection system.
"""

from __future__ import annotations

from fastapi import Depends, HTTPException, Request

from auth import rbac
from auth.accounts import load_account
from auth.errors import TokenExpired, TokenInvalid
from auth.messaging import MessagingGateway
from auth.models import Account, AccountStatus, Role
from auth.rbac import Operation
from auth.store import AccountStore
from auth.tokens import decode_access_token


def get_store(request: Request) -> AccountStore:
    return request.app.state.store


def get_gateway(request: Request) -> MessagingGateway:
    return request.app.state.gateway


def _unauthorized(code: str, message: str) -> HTTPException:
    return HTTPException(
        status_code=401,
        detail={"code": code, "message": message},
        headers={"WWW-Authenticate": "Bearer"},
    )


def get_current_account(request: Request, store: AccountStore = Depends(get_store)) -> Account:
    """Require a valid Bearer token for a live account.

    Use as a FastAPI dependency:
        @router.get("/protected")
        def route(account: Account = Depends(get_current_account)): ...
    """
    auth_header = request.headers.get("Authorization", "")
    if not auth_header.startswith("Bearer "):
        raise _unauthorized("unauthorized", "Authentication required.")

    try:
        claims = decode_access_token(auth_header[7:])
    except TokenExpired as exc:
        raise _unauthorized(exc.code, "Access token has expired. Please log in again.") from exc
    except TokenInvalid as exc:
        raise _unauthorized(exc.code, "Invalid access token.") from exc

    account = load_account(store, claims.account_id)
    if account is None or account.status is AccountStatus.DELETED:
        raise _unauthorized("token_invalid", "Invalid access token.")
    if account.status in (AccountStatus.SUSPENDED, AccountStatus.LOCKED):
        raise HTTPException(
            status_code=403,
            detail={"code": "account_unavailable", "message": f"Account is {account.status.value}."},
        )
    return account


def require_admin(account: Account = Depends(get_current_account)) -> Account:
    """Require the view privilege. Raises HTTP 403 below Admin.

    Use as a FastAPI dependency:
        @router.get("/admin/users")
        def route(actor: Account = Depends(require_admin)): ...
    """
    decision = rbac.authorize(account.role, Role.USER, Operation.VIEW, actor_id=account.id)
    if not decision:
        raise HTTPException(
            status_code=403,
            detail={"code": "forbidden", "message": decision.reason.message},
        )
    return account
