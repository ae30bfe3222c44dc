"""
api/routes/v1/verification.py -- Email-link and SMS-code verification endpoints.

Routes:
  POST /api/v1/verify/email/send      -- mail a confirmation link (requires auth)
  GET  /api/v1/verify/email/confirm   -- ?token=...; the mailed link (public)
  POST /api/v1/verify/phone/send      -- text a 6-digit code (requires auth)
  POST /api/v1/verify/phone/verify    -- check the code (requires auth)
  GET  /api/v1/verify/carriers        -- supported SMS carriers (public)

When the log-only gateway is active (local development) the send endpoints
echo the link/code back as dev_link/dev_code. With real delivery they never do.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query

from api.models import (
    CarrierInfo,
    EmailVerificationSent,
    MessageResponse,
    PhoneSendRequest,
    PhoneVerificationSent,
    PhoneVerifyRequest,
)
from auth.dependencies import get_current_account, get_gateway, get_store
from auth.messaging import LogGateway, MessagingGateway
from auth.models import Account
from auth.store import AccountStore
from auth.verification import (
    confirm_email_verification,
    list_carriers,
    send_email_verification,
    send_phone_verification,
    verify_phone_code,
)
from core.config import get_settings

router = APIRouter()

_settings = get_settings()


def _dev_mode(gateway: MessagingGateway) -> bool:
    return isinstance(gateway, LogGateway)


# ---------------------------------------------------------------------------
# Email
# ---------------------------------------------------------------------------


@router.post("/verify/email/send", response_model=EmailVerificationSent)
def email_send(
    current: Account = Depends(get_current_account),
    store: AccountStore = Depends(get_store),
    gateway: MessagingGateway = Depends(get_gateway),
) -> EmailVerificationSent:
    """Send (or re-send after the cooldown) a 48-hour confirmation link."""
    issued = send_email_verification(store, gateway, current.id, _settings.app_base_url)
    return EmailVerificationSent(
        message=f"Verification email sent to {issued.destination}.",
        expires_at=issued.expires_at.isoformat(),
        dev_link=issued.secret if _dev_mode(gateway) else None,
    )


@router.get("/verify/email/confirm", response_model=MessageResponse)
def email_confirm(
    token: str = Query(min_length=1, max_length=128),
    store: AccountStore = Depends(get_store),
) -> MessageResponse:
    """Confirm an email address. Possession of the token is the proof."""
    confirm_email_verification(store, token)
    return MessageResponse(message="Email verified successfully.")


# ---------------------------------------------------------------------------
# SMS
# ---------------------------------------------------------------------------


@router.get("/verify/carriers", response_model=list[CarrierInfo])
def carriers() -> list[CarrierInfo]:
    return [CarrierInfo(id=c.id, name=c.name, gateway=c.gateway) for c in list_carriers()]


@router.post("/verify/phone/send", response_model=PhoneVerificationSent)
def phone_send(
    body: PhoneSendRequest | None = None,
    current: Account = Depends(get_current_account),
    store: AccountStore = Depends(get_store),
    gateway: MessagingGateway = Depends(get_gateway),
) -> PhoneVerificationSent:
    """Text a code valid for 15 minutes. The carrier only selects the SMS gateway."""
    carrier = body.carrier if body else None
    issued = send_phone_verification(store, gateway, current.id, carrier=carrier)
    return PhoneVerificationSent(
        message=f"Verification code sent to {issued.destination}.",
        expires_at=issued.expires_at.isoformat(),
        dev_code=issued.secret if _dev_mode(gateway) else None,
    )


@router.post("/verify/phone/verify", response_model=MessageResponse)
def phone_verify(
    body: PhoneVerifyRequest,
    current: Account = Depends(get_current_account),
    store: AccountStore = Depends(get_store),
) -> MessageResponse:
    """Check a code. Three wrong codes exhaust it until a new one is sent."""
    verify_phone_code(store, current.id, body.code)
    return MessageResponse(message="Phone verified successfully.")
