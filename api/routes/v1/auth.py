"""
api/routes/v1/auth.py -- Registration, login and password endpoints.

Routes:
  POST /api/v1/auth/register               -- create a pending User account
  POST /api/v1/auth/login                  -- email + password; returns Bearer token
  GET  /api/v1/auth/me                     -- current account (requires auth)
  POST /api/v1/auth/password/change        -- change own password (requires auth)
  POST /api/v1/auth/password/reset-request -- mail a reset link (public)
  POST /api/v1/auth/password/reset         -- consume a reset link (public)

Security:
  [H2] POST /login is rate-limited per IP (Settings.login_rate_limit).
  [C1] authenticate() provides timing equalization -- use it, never inline.
  [C1] reset-request answers identically whether or not the email exists.
  [M5] Cache-Control: no-store on responses carrying tokens.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from api.limiter import limiter
from api.models import (
    AccountResponse,
    LoginRequest,
    MessageResponse,
    PasswordChangeRequest,
    PasswordResetConfirm,
    PasswordResetRequest,
    RegisterRequest,
    TokenResponse,
)
from auth.accounts import authenticate, register_account
from auth.dependencies import get_current_account, get_gateway, get_store
from auth.messaging import MessagingGateway
from auth.models import Account, AccountProfile
from auth.passwords import change_password, request_password_reset, reset_password
from auth.store import AccountStore
from auth.tokens import create_access_token
from core.config import get_settings

# Auth policy:
# - POST /api/v1/auth/register:               public
# - POST /api/v1/auth/login:                  public, rate-limited
# - POST /api/v1/auth/password/reset-request: public, uniform response
# - POST /api/v1/auth/password/reset:         public, the signed token is the proof
# - GET  /api/v1/auth/me:                     requires auth (get_current_account)
# - POST /api/v1/auth/password/change:        requires auth (get_current_account)
router = APIRouter()

_settings = get_settings()

_RESET_REQUESTED = "If that email belongs to a verified account, a reset link has been sent."


# ---------------------------------------------------------------------------
# Public endpoints
# ---------------------------------------------------------------------------


@router.post("/auth/register", response_model=AccountResponse, status_code=201)
def register(body: RegisterRequest, store: AccountStore = Depends(get_store)) -> AccountResponse:
    """Create a User account in pending status. Duplicates return 409."""
    profile = AccountProfile(
        first_name=body.first_name,
        last_name=body.last_name,
        email=body.email,
        username=body.username,
        phone=body.phone,
    )
    account = register_account(store, profile, body.password)
    return AccountResponse.from_account(account)


@router.post("/auth/login", response_model=TokenResponse)
@limiter.limit(_settings.login_rate_limit)  # [H2] below @router so the registered endpoint is the limited one
def login(request: Request, body: LoginRequest, store: AccountStore = Depends(get_store)) -> JSONResponse:
    """Authenticate with email and password and return a 14-day access token.

    Unknown email and wrong password produce the same 401 [C1].
    """
    account = authenticate(store, body.email, body.password)
    token = create_access_token(account)
    resp = JSONResponse(
        status_code=200,
        content=TokenResponse(
            access_token=token,
            token_type="bearer",  # noqa: S106 # nosec B106 -- OAuth token type, not a password
            expires_in=_settings.access_token_ttl_seconds,
            account=AccountResponse.from_account(account),
        ).model_dump(),
    )
    resp.headers["Cache-Control"] = "no-store"  # [M5]
    return resp


@router.post("/auth/password/reset-request", response_model=MessageResponse, status_code=202)
def password_reset_request(
    body: PasswordResetRequest,
    store: AccountStore = Depends(get_store),
    gateway: MessagingGateway = Depends(get_gateway),
) -> MessageResponse:
    """Always 202 with the same message [C1]."""
    request_password_reset(store, gateway, body.email, _settings.app_base_url)
    return MessageResponse(message=_RESET_REQUESTED)


@router.post("/auth/password/reset", response_model=MessageResponse)
def password_reset(body: PasswordResetConfirm, store: AccountStore = Depends(get_store)) -> MessageResponse:
    """Set a new password with a reset token. Each token works once."""
    reset_password(store, body.token, body.new_password)
    return MessageResponse(message="Password has been reset. Please log in.")


# ---------------------------------------------------------------------------
# Authenticated endpoints
# ---------------------------------------------------------------------------


@router.get("/auth/me", response_model=AccountResponse)
def me(current: Account = Depends(get_current_account)) -> AccountResponse:
    """Return the current account as stored now, not as the token snapshot saw it."""
    return AccountResponse.from_account(current)


@router.post("/auth/password/change", response_model=MessageResponse)
def password_change(
    body: PasswordChangeRequest,
    current: Account = Depends(get_current_account),
    store: AccountStore = Depends(get_store),
) -> MessageResponse:
    change_password(store, current.id, body.current_password, body.new_password)
    return MessageResponse(message="Password changed.")
