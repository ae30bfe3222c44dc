"""
auth/tokens.py -- Signing, password hashing, and random artifact generation.

Security design decisions:
  JWT: python-jose with HS256. Two token kinds share one secret and are told
       apart by the "typ" claim, so an access token can never be replayed as a
       reset token or vice versa. Verification raises rather than returning
       None: callers must be able to tell TokenExpired (valid signature, past
       exp) from TokenInvalid (everything else).

  Reset tokens: carry the account's credential version ("ver"). The token
       format alone cannot enforce single use; the reset workflow compares
       "ver" against the stored version and bumps it on success, which
       invalidates every outstanding reset token at once.

  Passwords: bcrypt, with the salt stored in its own column so it is
       regenerated on every password change and visible to the store.
       hash = bcrypt(password, salt). Comparison uses hmac.compare_digest.
       The _DUMMY_SALT/_DUMMY_HASH pair lets callers burn the same bcrypt cost
       when no credential exists, so response time does not reveal whether an
       account exists [C1].

  Random artifacts: secrets module only. Email tokens are 256-bit hex; SMS
       codes are uniform over 100000..999999.

  SECRET_KEY: sourced from core.config.get_settings(), validated at startup.

Layer rule: no imports from api/. Import from core/ is allowed.
"""

from __future__ import annotations

import hmac
import logging
import secrets
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING, Optional

import bcrypt
from jose import ExpiredSignatureError, JWTError, jwt

from auth.errors import PasswordTooLong, TokenExpired, TokenInvalid
from auth.models import AccessClaims, ResetClaim, Role
from core.config import get_settings

if TYPE_CHECKING:
    from auth.models import Account

logger = logging.getLogger("authsquared.auth")

# ---------------------------------------------------------------------------
# Config -- read once at module load via the lru_cache singleton [M6]
# ---------------------------------------------------------------------------

_settings = get_settings()

_ALGORITHM = "HS256"
_ACCESS_TYPE = "access"
_RESET_TYPE = "password_reset"

# ---------------------------------------------------------------------------
# Password hashing (bcrypt, explicit salt)
#
# bcrypt only reads the first 72 bytes of a password. Longer input raises
# PasswordTooLong here; the API layer rejects it earlier with a 422.
# ---------------------------------------------------------------------------


MAX_PASSWORD_BYTES = 72


def generate_salt() -> str:
    """Return a fresh bcrypt salt (cost factor + 128 random bits)."""
    return bcrypt.gensalt(rounds=_settings.bcrypt_rounds).decode("utf-8")


def hash_password(plain: str, salt: str) -> str:
    """Return bcrypt(plain, salt) as a string. Raises PasswordTooLong past 72 bytes."""
    encoded = plain.encode("utf-8")
    if len(encoded) > MAX_PASSWORD_BYTES:
        raise PasswordTooLong()
    return bcrypt.hashpw(encoded, salt.encode("utf-8")).decode("utf-8")


def verify_password(plain: str, salt: str, hashed: str) -> bool:
    """Recompute the hash with the stored salt and compare in constant time."""
    try:
        candidate = hash_password(plain, salt)
    except (PasswordTooLong, ValueError):
        # ValueError: bcrypt rejected a malformed stored salt.
        return False
    return hmac.compare_digest(candidate.encode("utf-8"), hashed.encode("utf-8"))


# Timing equalization pair [C1]. Computed once at module load so the first
# failed lookup is not measurably faster than later ones.
_DUMMY_SALT: str = generate_salt()
_DUMMY_HASH: str = hash_password("authsquared_timing_dummy", _DUMMY_SALT)


def burn_password_check(plain: str) -> None:
    """Spend one bcrypt round on a dummy hash. Use when no credential exists."""
    verify_password(plain, _DUMMY_SALT, _DUMMY_HASH)


# ---------------------------------------------------------------------------
# Random artifacts
# ---------------------------------------------------------------------------


def generate_email_token() -> str:
    """256-bit opaque token for email-link verification (64 hex chars)."""
    return secrets.token_hex(32)


def generate_sms_code() -> str:
    """Uniformly random 6-digit code without a leading zero."""
    return str(100000 + secrets.randbelow(900000))


# ---------------------------------------------------------------------------
# JWT encode / decode
# ---------------------------------------------------------------------------


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _from_timestamp(value) -> datetime:
    return datetime.fromtimestamp(int(value), tz=timezone.utc)


def _decode(token: str) -> dict:
    """Verify signature and expiry. Maps jose errors onto the two public outcomes."""
    try:
        return jwt.decode(token, _settings.secret_key, algorithms=[_ALGORITHM])
    except ExpiredSignatureError as exc:
        raise TokenExpired() from exc
    except JWTError as exc:
        raise TokenInvalid() from exc


def create_access_token(account: Account, now: Optional[datetime] = None) -> str:
    """Encode a signed access token for account.

    The claims are a snapshot: role and display name are fixed at issue time.
    Expiry is now + Settings.access_token_ttl_seconds (14 days by default).
    """
    issued = now or _utcnow()
    expires = issued + timedelta(seconds=_settings.access_token_ttl_seconds)
    payload = {
        "sub": str(account.id),
        "typ": _ACCESS_TYPE,
        "account_id": account.id,
        "name": f"{account.first_name} {account.last_name}".strip(),
        "role": int(account.role),
        "iat": int(issued.timestamp()),
        "exp": int(expires.timestamp()),
    }
    return jwt.encode(payload, _settings.secret_key, algorithm=_ALGORITHM)


def decode_access_token(token: str) -> AccessClaims:
    """Return the claims of a valid access token.

    Raises TokenExpired when the signature checks out but exp has passed,
    TokenInvalid for every other defect (signature, shape, wrong type).
    """
    payload = _decode(token)
    if payload.get("typ") != _ACCESS_TYPE:
        raise TokenInvalid()
    try:
        return AccessClaims(
            account_id=int(payload["account_id"]),
            display_name=str(payload.get("name", "")),
            role=Role(int(payload["role"])),
            issued_at=_from_timestamp(payload["iat"]),
            expires_at=_from_timestamp(payload["exp"]),
        )
    except (KeyError, TypeError, ValueError) as exc:
        raise TokenInvalid() from exc


def create_reset_token(account_id: int, credential_version: int, now: Optional[datetime] = None) -> str:
    """Encode a password-reset token bound to the current credential version."""
    issued = now or _utcnow()
    expires = issued + timedelta(seconds=_settings.reset_token_ttl_seconds)
    payload = {
        "sub": str(account_id),
        "typ": _RESET_TYPE,
        "account_id": account_id,
        "ver": credential_version,
        "iat": int(issued.timestamp()),
        "exp": int(expires.timestamp()),
    }
    return jwt.encode(payload, _settings.secret_key, algorithm=_ALGORITHM)


def decode_reset_token(token: str) -> ResetClaim:
    """Return the claim of a valid reset token.

    Purpose must be password_reset. Whether the claim is still usable
    (version match) is decided by the reset workflow, not here.
    """
    payload = _decode(token)
    if payload.get("typ") != _RESET_TYPE:
        raise TokenInvalid()
    try:
        return ResetClaim(
            account_id=int(payload["account_id"]),
            credential_version=int(payload["ver"]),
            issued_at=_from_timestamp(payload["iat"]),
            expires_at=_from_timestamp(payload["exp"]),
        )
    except (KeyError, TypeError, ValueError) as exc:
        raise TokenInvalid() from exc
