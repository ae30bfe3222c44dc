"""
auth/passwords.py -- Password change, reset-by-email and admin reset.

Reset flow:
  1. request_password_reset(email) -> signed ResetClaim bound to the current
     credential version, mailed as a link. Always returns None.
  2. reset_password(token, new) -> decode, compare version, replace the
     credential with a compare-and-set on that version.

A reset link therefore works once: the successful reset (or any password
change) bumps the version and every outstanding link becomes
ClaimAlreadyConsumed, including one racing the winner.

Security:
  [C1] request_password_reset() behaves the same for unknown, deleted and
       unverified accounts: a token is still signed, nothing is sent, and
       delivery failures are logged instead of raised.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Optional
from urllib.parse import urlencode

from auth import rbac
from auth.errors import (
    AuthError,
    ClaimAlreadyConsumed,
    IncorrectCredential,
    NotFound,
    SamePasswordError,
    StatusTransitionError,
)
from auth.messaging import MessagingGateway, password_reset_email
from auth.models import Account, AccountStatus
from auth.rbac import Operation
from auth.store import AccountStore
from auth.tokens import create_reset_token, decode_reset_token
from auth.transactions import unit_of_work

logger = logging.getLogger("authsquared.auth")

_RESET_PATH = "/reset-password"


def change_password(store: AccountStore, account_id: int, old_password: str, new_password: str) -> None:
    """Replace the password after proving knowledge of the current one.

    The current password is checked first, so a wrong one is always
    IncorrectCredential even when it equals the new one.
    """
    with unit_of_work(store.engine) as conn:
        if store.get_account(conn, account_id) is None:
            raise NotFound()
        if not store.verify_credential(conn, account_id, old_password):
            raise IncorrectCredential()
        if old_password == new_password:
            raise SamePasswordError()
        store.replace_credential(conn, account_id, new_password)
    logger.info("Password changed for account %d", account_id)


def request_password_reset(
    store: AccountStore,
    gateway: MessagingGateway,
    email: str,
    base_url: str,
    now: Optional[datetime] = None,
) -> None:
    """Mail a reset link if email belongs to a live account with a verified address.

    The outcome is never reported to the caller [C1].
    """
    with unit_of_work(store.engine) as conn:
        account = store.get_account_by_email(conn, email)
        version = store.get_credential_version(conn, account.id) if account else None

    eligible = (
        account is not None
        and version is not None
        and account.status is not AccountStatus.DELETED
        and account.email_verified
    )
    if not eligible:
        # Same signing cost as the real path.
        create_reset_token(0, 0, now=now)
        logger.info("Password reset requested for an ineligible address")
        return

    token = create_reset_token(account.id, version, now=now)
    url = f"{base_url.rstrip('/')}{_RESET_PATH}?{urlencode({'token': token})}"
    subject, body = password_reset_email(account.first_name, url)
    try:
        gateway.send(account.email, subject, body)
    except AuthError:
        logger.warning("Password reset email for account %d could not be delivered", account.id)
        return
    logger.info("Password reset link sent to account %d", account.id)


def reset_password(store: AccountStore, token: str, new_password: str, now: Optional[datetime] = None) -> None:
    """Consume a reset claim and set a new password.

    Raises TokenInvalid / TokenExpired from decoding, NotFound when the
    account is gone, ClaimAlreadyConsumed when the credential version moved
    on, SamePasswordError when the new password equals the current one.
    """
    claim = decode_reset_token(token)
    with unit_of_work(store.engine) as conn:
        account = store.get_account(conn, claim.account_id)
        if account is None or account.status is AccountStatus.DELETED:
            raise NotFound()
        if store.get_credential_version(conn, claim.account_id) != claim.credential_version:
            raise ClaimAlreadyConsumed()
        store.replace_credential(conn, claim.account_id, new_password, expected_version=claim.credential_version)
        store.update_account(conn, claim.account_id)
    logger.info("Password reset completed for account %d", claim.account_id)


def admin_reset_password(store: AccountStore, actor: Account, account_id: int, new_password: str) -> None:
    """Set another account's password without the old one. Requires outranking it."""
    with unit_of_work(store.engine) as conn:
        target = store.get_account(conn, account_id)
        if target is None:
            raise NotFound()
        rbac.require(
            actor.role,
            target.role,
            Operation.RESET_PASSWORD,
            actor_id=actor.id,
            target_id=target.id,
        )
        if target.status is AccountStatus.DELETED:
            raise StatusTransitionError("Deleted accounts cannot be modified.")
        store.replace_credential(conn, account_id, new_password)
        store.update_account(conn, account_id)
    logger.info("Account %d reset the password of account %d", actor.id, account_id)
