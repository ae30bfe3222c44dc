"""
auth/models.py -- Domain dataclasses for accounts, credentials and verification.

Pattern: Data class (pure data container, zero logic). The store maps rows to
these; the workflow modules (accounts, passwords, verification) do the work.

Timestamps are timezone-aware UTC datetimes. The store is responsible for
converting to and from its ISO 8601 column representation.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum, IntEnum


class Role(IntEnum):
    """Administrative privilege, ordered. Higher numbers outrank lower."""

    USER = 1
    MODERATOR = 2
    ADMIN = 3
    SUPER_ADMIN = 4
    OWNER = 5


ROLE_NAMES: dict[int, str] = {
    Role.USER: "User",
    Role.MODERATOR: "Moderator",
    Role.ADMIN: "Admin",
    Role.SUPER_ADMIN: "SuperAdmin",
    Role.OWNER: "Owner",
}

# Minimum role for read access to other accounts (list/search/detail/stats).
ADMIN_THRESHOLD = Role.ADMIN


class AccountStatus(str, Enum):
    PENDING = "pending"
    ACTIVE = "active"
    SUSPENDED = "suspended"
    LOCKED = "locked"
    DELETED = "deleted"  # terminal; rows are never removed


@dataclass
class AccountProfile:
    """The caller-supplied identity fields for a new account."""

    first_name: str
    last_name: str
    email: str
    username: str
    phone: str


@dataclass
class Account:
    """An identity record.

    role is always within Role. status transitions are driven by admins or by
    verification completion; a user can never move their own account out of
    suspended/locked/deleted.

    The password hash is deliberately absent: credentials live in their own
    table and never travel with the account.
    """

    first_name: str
    last_name: str
    email: str
    username: str
    phone: str
    role: Role = Role.USER
    status: AccountStatus = AccountStatus.PENDING
    email_verified: bool = False
    phone_verified: bool = False
    id: int | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None


@dataclass
class Credential:
    """The single credential row for an account.

    version is the generation counter: it starts at 1 and increases on every
    replacement. Reset claims embed it, which is what makes them single use.
    """

    account_id: int
    salted_hash: str
    salt: str
    version: int = 1


@dataclass
class EmailVerification:
    """Pending email-link verification. At most one per account."""

    account_id: int
    email: str
    token: str
    created_at: datetime
    expires_at: datetime


@dataclass
class PhoneVerification:
    """Pending SMS-code verification. At most one per account.

    attempts counts failed checks; at sms_max_attempts the code is dead until
    a new one is issued.
    """

    account_id: int
    phone: str
    code: str
    created_at: datetime
    expires_at: datetime
    attempts: int = 0


@dataclass(frozen=True)
class AccessClaims:
    """Decoded payload of an access token."""

    account_id: int
    display_name: str
    role: Role
    issued_at: datetime
    expires_at: datetime


@dataclass(frozen=True)
class ResetClaim:
    """Decoded payload of a password-reset token."""

    account_id: int
    credential_version: int
    issued_at: datetime
    expires_at: datetime
    purpose: str = "password_reset"
