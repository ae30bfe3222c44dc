"""
auth/verification.py -- Email-link and SMS-code verification workflows.

Both channels share one shape:

    send_*()    issue (or replace) the account's single artifact inside one
                transaction, then deliver it after commit.
    confirm/verify  check the artifact and, on success, delete it and set the
                account's *_verified flag in the same transaction.

Issuance and rate limiting are the same statement (AccountStore.issue_*: a
compare-and-set on the previous issue time), so two concurrent sends for the
same account produce exactly one artifact; the loser sees RateLimited.

Delivery happens after commit. If the gateway fails the artifact stays and
the caller gets DeliveryFailed; the resend cooldown still applies.

Failed SMS attempts must survive the error they cause, so verify_phone_code()
decides the outcome inside the transaction and raises after it commits.
"""

from __future__ import annotations

import hmac
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional
from urllib.parse import urlencode

from auth.errors import (
    AlreadyVerified,
    CodeExpired,
    ConflictError,
    InvalidCode,
    NoCodeFound,
    NotFound,
    RateLimited,
    TokenExpired,
    TokenInvalid,
    TooManyAttempts,
)
from auth.messaging import CARRIERS, Carrier, MessagingGateway, sms_address, sms_code_message, verification_email
from auth.models import AccountStatus
from auth.store import AccountStore
from auth.tokens import generate_email_token, generate_sms_code
from auth.transactions import unit_of_work
from core.config import get_settings

logger = logging.getLogger("authsquared.auth")

CONFIRM_PATH = "/api/v1/verify/email/confirm"


@dataclass
class IssuedVerification:
    """What was sent. secret is the link (email) or code (SMS).

    The API only echoes secret back in development mode.
    """

    destination: str
    expires_at: datetime
    secret: str


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _retry_after(issued_at: Optional[datetime], cooldown: timedelta, now: datetime) -> int:
    if issued_at is None:
        return int(cooldown.total_seconds())
    remaining = (issued_at + cooldown - now).total_seconds()
    return max(int(remaining) + 1, 1)


# ---------------------------------------------------------------------------
# Email
# ---------------------------------------------------------------------------


def send_email_verification(
    store: AccountStore,
    gateway: MessagingGateway,
    account_id: int,
    base_url: str,
    now: Optional[datetime] = None,
) -> IssuedVerification:
    """Issue a 48h email token and mail the confirmation link.

    Raises NotFound, AlreadyVerified, RateLimited (previous token younger
    than the resend cooldown) or DeliveryFailed.
    """
    settings = get_settings()
    now = now or _utcnow()
    cooldown = timedelta(seconds=settings.email_resend_cooldown_seconds)
    expires_at = now + timedelta(hours=settings.email_token_ttl_hours)
    token = generate_email_token()

    try:
        with unit_of_work(store.engine) as conn:
            account = store.get_account(conn, account_id)
            if account is None or account.status is AccountStatus.DELETED:
                raise NotFound()
            if account.email_verified:
                raise AlreadyVerified("Email already verified.")
            issued = store.issue_email_verification(conn, account_id, account.email, token, now, expires_at, cooldown)
            if not issued:
                existing = store.get_email_verification(conn, account_id)
                raise RateLimited(_retry_after(existing.created_at if existing else None, cooldown, now))
    except ConflictError as exc:
        # A concurrent first send won the UNIQUE(account_id) race.
        raise RateLimited(int(cooldown.total_seconds())) from exc

    url = f"{base_url.rstrip('/')}{CONFIRM_PATH}?{urlencode({'token': token})}"
    subject, body = verification_email(account.first_name, url, settings.email_token_ttl_hours)
    gateway.send(account.email, subject, body)
    logger.info("Email verification sent to account %d", account_id)
    return IssuedVerification(destination=account.email, expires_at=expires_at, secret=url)


def confirm_email_verification(store: AccountStore, token: str, now: Optional[datetime] = None) -> int:
    """Mark the token's account email-verified and return the account ID.

    Unauthenticated: possession of the token is the proof. A pending account
    becomes active. Raises TokenInvalid for unknown or already-used tokens,
    AlreadyVerified, or TokenExpired (the artifact is kept so a resend
    replaces it).
    """
    now = now or _utcnow()
    with unit_of_work(store.engine) as conn:
        artifact = store.get_email_verification_by_token(conn, token)
        if artifact is None:
            raise TokenInvalid("Invalid verification token.")
        account = store.get_account(conn, artifact.account_id)
        if account is None or account.status is AccountStatus.DELETED:
            raise TokenInvalid("Invalid verification token.")
        if account.email_verified:
            raise AlreadyVerified("Email already verified.")
        if now > artifact.expires_at:
            raise TokenExpired("Verification token has expired. Please request a new one.")
        # rowcount guard: only one concurrent confirm can consume the token.
        if not store.delete_email_verification(conn, artifact.account_id, token=token):
            raise TokenInvalid("Invalid verification token.")
        changes = {"email_verified": True}
        if account.status is AccountStatus.PENDING:
            changes["status"] = AccountStatus.ACTIVE
        store.update_account(conn, artifact.account_id, **changes)
    logger.info("Email verified for account %d", artifact.account_id)
    return artifact.account_id


# ---------------------------------------------------------------------------
# SMS
# ---------------------------------------------------------------------------


def list_carriers() -> list[Carrier]:
    return list(CARRIERS.values())


def send_phone_verification(
    store: AccountStore,
    gateway: MessagingGateway,
    account_id: int,
    carrier: Optional[str] = None,
    now: Optional[datetime] = None,
) -> IssuedVerification:
    """Issue a 6-digit code valid for 15 minutes and text it.

    Raises NotFound, AlreadyVerified, RateLimited (previous code younger
    than the resend cooldown) or DeliveryFailed.
    """
    settings = get_settings()
    now = now or _utcnow()
    cooldown = timedelta(seconds=settings.sms_resend_cooldown_seconds)
    expires_at = now + timedelta(minutes=settings.sms_code_ttl_minutes)
    code = generate_sms_code()

    try:
        with unit_of_work(store.engine) as conn:
            account = store.get_account(conn, account_id)
            if account is None or account.status is AccountStatus.DELETED:
                raise NotFound()
            if account.phone_verified:
                raise AlreadyVerified("Phone already verified.")
            issued = store.issue_phone_verification(conn, account_id, account.phone, code, now, expires_at, cooldown)
            if not issued:
                existing = store.get_phone_verification(conn, account_id)
                raise RateLimited(_retry_after(existing.created_at if existing else None, cooldown, now))
    except ConflictError as exc:
        raise RateLimited(int(cooldown.total_seconds())) from exc

    address = sms_address(account.phone, carrier, settings.default_sms_carrier)
    gateway.send(address, "", sms_code_message(code, settings.sms_code_ttl_minutes))
    logger.info("SMS verification code sent to account %d", account_id)
    return IssuedVerification(destination=account.phone, expires_at=expires_at, secret=code)


def verify_phone_code(store: AccountStore, account_id: int, code: str, now: Optional[datetime] = None) -> None:
    """Check code against the account's SMS artifact.

    Order of checks: NoCodeFound, AlreadyVerified, CodeExpired,
    TooManyAttempts (even for the correct code), then comparison. A mismatch
    commits the incremented attempt count before InvalidCode is raised.
    """
    settings = get_settings()
    max_attempts = settings.sms_max_attempts
    now = now or _utcnow()
    failure: Optional[Exception] = None

    with unit_of_work(store.engine) as conn:
        artifact = store.get_phone_verification(conn, account_id)
        if artifact is None:
            raise NoCodeFound()
        account = store.get_account(conn, account_id)
        if account is None or account.status is AccountStatus.DELETED:
            raise NoCodeFound()
        if account.phone_verified:
            raise AlreadyVerified("Phone already verified.")
        if now > artifact.expires_at:
            raise CodeExpired("Verification code has expired. Please request a new code.")
        if artifact.attempts >= max_attempts:
            raise TooManyAttempts()

        if hmac.compare_digest(artifact.code.encode("utf-8"), str(code).encode("utf-8")):
            # Guarded delete: a concurrent exhausting attempt or resend wins.
            if not store.delete_phone_verification(conn, account_id, code=artifact.code, max_attempts=max_attempts):
                raise TooManyAttempts()
            store.update_account(conn, account_id, phone_verified=True)
        else:
            attempts = store.record_failed_attempt(conn, account_id, max_attempts)
            if attempts is None:
                failure = TooManyAttempts()
            else:
                failure = InvalidCode(remaining=max_attempts - attempts)

    if failure is not None:
        logger.info("Failed SMS code attempt for account %d", account_id)
        raise failure
    logger.info("Phone verified for account %d", account_id)
