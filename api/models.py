"""
API request and response models for Auth² REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in auth/models.py, which
own the internal domain representation. Route handlers map between the two.

Syntactic validation (lengths, formats) happens here; every semantic rule
(uniqueness, hierarchy, expiry) is enforced by the auth/ workflows.

Separation of concerns: auth/ models = domain truth; api/ models = API contract.
"""

from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from auth.models import ROLE_NAMES, Account

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

EMAIL_PATTERN = r"^[^@\s]+@[^@\s]+\.[^@\s]+$"
USERNAME_PATTERN = r"^[A-Za-z0-9_.-]{3,50}$"
PHONE_PATTERN = r"^\+?[0-9]{10,15}$"
SMS_CODE_PATTERN = r"^[0-9]{6}$"

# bcrypt reads at most 72 bytes of a password. max_length counts characters,
# so every new-password field also runs _check_password_bytes.
PASSWORD_MIN = 8
PASSWORD_MAX = 72
PASSWORD_MAX_BYTES = 72


def _normalize_email(value: str) -> str:
    return str(value).strip().lower()


def _normalize_phone(value: str) -> str:
    """Drop spaces, dashes, dots and parentheses; keep a leading +."""
    return "".join(ch for ch in str(value).strip() if ch.isdigit() or ch == "+")


def _check_password_bytes(value: str) -> str:
    if len(value.encode("utf-8")) > PASSWORD_MAX_BYTES:
        raise ValueError(f"password must be at most {PASSWORD_MAX_BYTES} bytes when UTF-8 encoded")
    return value


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class AssignableStatusEnum(str, Enum):
    """Statuses an admin may set directly. Deletion has its own endpoint."""

    pending = "pending"
    active = "active"
    suspended = "suspended"
    locked = "locked"


# ---------------------------------------------------------------------------
# Shared envelopes
# ---------------------------------------------------------------------------


class ErrorDetail(BaseModel):
    """Machine-readable error payload."""

    model_config = ConfigDict(frozen=True)

    code: str
    message: str
    detail: Optional[str] = None


class ErrorResponse(BaseModel):
    """Top-level error envelope returned on 4xx/5xx responses."""

    model_config = ConfigDict(frozen=True)

    error: ErrorDetail


class MessageResponse(BaseModel):
    message: str


class HealthResponse(BaseModel):
    """Response for GET /api/v1/health."""

    model_config = ConfigDict(frozen=True)

    status: str = "healthy"
    version: str
    components: dict[str, str]


# ---------------------------------------------------------------------------
# Accounts
# ---------------------------------------------------------------------------


class AccountFields(BaseModel):
    """Profile fields shared by self-registration and admin creation."""

    model_config = ConfigDict(str_strip_whitespace=True)

    first_name: str = Field(min_length=1, max_length=255)
    last_name: str = Field(min_length=1, max_length=255)
    email: str = Field(max_length=255, pattern=EMAIL_PATTERN)
    username: str = Field(pattern=USERNAME_PATTERN)
    phone: str = Field(pattern=PHONE_PATTERN)
    password: str = Field(min_length=PASSWORD_MIN, max_length=PASSWORD_MAX)

    @field_validator("password")
    @classmethod
    def password_fits_bcrypt(cls, value: str) -> str:
        return _check_password_bytes(value)

    @field_validator("email", mode="before")
    @classmethod
    def normalize_email(cls, value: str) -> str:
        return _normalize_email(value)

    @field_validator("phone", mode="before")
    @classmethod
    def normalize_phone(cls, value: str) -> str:
        return _normalize_phone(value)


class RegisterRequest(AccountFields):
    """Request body for POST /api/v1/auth/register. Role is always User."""


class AccountCreate(AccountFields):
    """Request body for POST /api/v1/admin/users."""

    role: int = Field(default=1, ge=1, le=5)


class AccountResponse(BaseModel):
    """Public view of an account. Credentials never appear here."""

    id: int
    first_name: str
    last_name: str
    username: str
    email: str
    phone: str
    role: int
    role_name: str
    status: str
    email_verified: bool
    phone_verified: bool
    created_at: Optional[str] = None
    updated_at: Optional[str] = None

    @classmethod
    def from_account(cls, account: Account) -> "AccountResponse":
        return cls(
            id=account.id,
            first_name=account.first_name,
            last_name=account.last_name,
            username=account.username,
            email=account.email,
            phone=account.phone,
            role=int(account.role),
            role_name=ROLE_NAMES[account.role],
            status=account.status.value,
            email_verified=account.email_verified,
            phone_verified=account.phone_verified,
            created_at=account.created_at.isoformat() if account.created_at else None,
            updated_at=account.updated_at.isoformat() if account.updated_at else None,
        )


class AccountPatch(BaseModel):
    """Request body for PATCH /api/v1/admin/users/{id}. All fields optional."""

    model_config = ConfigDict(str_strip_whitespace=True)

    first_name: Optional[str] = Field(default=None, min_length=1, max_length=255)
    last_name: Optional[str] = Field(default=None, min_length=1, max_length=255)
    username: Optional[str] = Field(default=None, pattern=USERNAME_PATTERN)
    email: Optional[str] = Field(default=None, max_length=255, pattern=EMAIL_PATTERN)
    phone: Optional[str] = Field(default=None, pattern=PHONE_PATTERN)
    status: Optional[AssignableStatusEnum] = None

    @field_validator("email", mode="before")
    @classmethod
    def normalize_email(cls, value: Optional[str]) -> Optional[str]:
        return None if value is None else _normalize_email(value)

    @field_validator("phone", mode="before")
    @classmethod
    def normalize_phone(cls, value: Optional[str]) -> Optional[str]:
        return None if value is None else _normalize_phone(value)


class RoleChangeRequest(BaseModel):
    role: int = Field(ge=1, le=5)


class RoleChangeResponse(BaseModel):
    account_id: int
    old_role: int
    new_role: int
    message: str


class AccountListResponse(BaseModel):
    accounts: list[AccountResponse]
    total: int
    page: int
    limit: int
    total_pages: int


class AccountStatsResponse(BaseModel):
    """Response for GET /api/v1/admin/users/stats. by_role is keyed by role name."""

    total: int
    by_role: dict[str, int]
    by_status: dict[str, int]
    email_verified: int
    phone_verified: int
    both_verified: int
    created_last_7_days: int


# ---------------------------------------------------------------------------
# Authentication
# ---------------------------------------------------------------------------


class LoginRequest(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    email: str = Field(min_length=3, max_length=255)
    password: str = Field(min_length=1, max_length=PASSWORD_MAX)

    @field_validator("email", mode="before")
    @classmethod
    def normalize_email(cls, value: str) -> str:
        return _normalize_email(value)


class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    expires_in: int
    account: AccountResponse


# ---------------------------------------------------------------------------
# Passwords
# ---------------------------------------------------------------------------


class PasswordChangeRequest(BaseModel):
    current_password: str = Field(min_length=1, max_length=PASSWORD_MAX)
    new_password: str = Field(min_length=PASSWORD_MIN, max_length=PASSWORD_MAX)

    @field_validator("new_password")
    @classmethod
    def password_fits_bcrypt(cls, value: str) -> str:
        return _check_password_bytes(value)


class PasswordResetRequest(BaseModel):
    email: str = Field(min_length=3, max_length=255)

    @field_validator("email", mode="before")
    @classmethod
    def normalize_email(cls, value: str) -> str:
        return _normalize_email(value)


class PasswordResetConfirm(BaseModel):
    token: str = Field(min_length=1, max_length=2048)
    new_password: str = Field(min_length=PASSWORD_MIN, max_length=PASSWORD_MAX)

    @field_validator("new_password")
    @classmethod
    def password_fits_bcrypt(cls, value: str) -> str:
        return _check_password_bytes(value)


class AdminPasswordReset(BaseModel):
    new_password: str = Field(min_length=PASSWORD_MIN, max_length=PASSWORD_MAX)

    @field_validator("new_password")
    @classmethod
    def password_fits_bcrypt(cls, value: str) -> str:
        return _check_password_bytes(value)


# ---------------------------------------------------------------------------
# Verification
# ---------------------------------------------------------------------------


class EmailVerificationSent(BaseModel):
    """dev_link is only populated when messages are not actually delivered."""

    message: str
    expires_at: str
    dev_link: Optional[str] = None


class PhoneSendRequest(BaseModel):
    carrier: Optional[str] = Field(default=None, max_length=32)


class PhoneVerificationSent(BaseModel):
    """dev_code is only populated when messages are not actually delivered."""

    message: str
    expires_at: str
    dev_code: Optional[str] = None


class PhoneVerifyRequest(BaseModel):
    code: str = Field(pattern=SMS_CODE_PATTERN)


class CarrierInfo(BaseModel):
    id: str
    name: str
    gateway: str
