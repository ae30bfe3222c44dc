"""
auth/errors.py -- Error taxonomy for the authorization and verification engine.

Every expected outcome is an AuthError subclass with a stable machine-readable
code. The API layer maps codes to HTTP statuses; nothing here knows about HTTP.

Messages are written to be shown to the caller as-is. None of them reveal
whether an account exists unless the caller already proved they own it.

InternalError is the opaque wrapper for store/transport failures. The
underlying exception is logged where it is caught and chained via __cause__,
never copied into the message.
"""

from __future__ import annotations

from typing import Optional


class AuthError(Exception):
    """Base exception for every expected failure."""

    code: str = "auth_error"
    message: str = "Request could not be completed."

    def __init__(self, message: Optional[str] = None) -> None:
        self.message = message or self.message
        super().__init__(self.message)


class ConflictError(AuthError):
    """A uniqueness constraint rejected the write."""

    code = "conflict"

    def __init__(self, field: Optional[str] = None) -> None:
        self.field = field
        label = {"email": "Email", "username": "Username", "phone": "Phone number"}.get(field or "", "Record")
        super().__init__(f"{label} already exists.")


class AuthenticationFailure(AuthError):
    """Bad credentials. Deliberately identical for unknown account and wrong password."""

    code = "invalid_credentials"
    message = "Invalid credentials."


class AccountUnavailable(AuthError):
    """Correct credentials, but the account is suspended or locked."""

    code = "account_unavailable"

    def __init__(self, status: str) -> None:
        self.status = status
        super().__init__(f"Account is {status}. Please contact support.")


class AuthorizationFailure(AuthError):
    """The role hierarchy denied the operation. reason names the rule."""

    code = "forbidden"

    def __init__(self, reason) -> None:
        self.reason = reason
        super().__init__(reason.message)


class TokenInvalid(AuthError):
    code = "token_invalid"
    message = "Invalid token."


class TokenExpired(AuthError):
    code = "token_expired"
    message = "Token has expired."


class ClaimAlreadyConsumed(AuthError):
    code = "claim_consumed"
    message = "This reset link has already been used."


class AlreadyVerified(AuthError):
    code = "already_verified"
    message = "Already verified."


class RateLimited(AuthError):
    code = "rate_limited"

    def __init__(self, retry_after: int, message: Optional[str] = None) -> None:
        self.retry_after = max(int(retry_after), 1)
        super().__init__(message or "Please wait before requesting another code.")


class NoCodeFound(AuthError):
    code = "no_code_found"
    message = "No verification code found. Please request a new code."


class CodeExpired(AuthError):
    code = "code_expired"
    message = "Verification code has expired."


class InvalidCode(AuthError):
    code = "invalid_code"

    def __init__(self, remaining: int) -> None:
        self.remaining = remaining
        super().__init__(f"Invalid verification code. {remaining} attempts remaining.")


class TooManyAttempts(AuthError):
    code = "too_many_attempts"
    message = "Too many failed attempts. Please request a new code."


class NotFound(AuthError):
    code = "not_found"
    message = "Account not found."


class IncorrectCredential(AuthError):
    code = "incorrect_password"
    message = "Current password is incorrect."


class SamePasswordError(AuthError):
    code = "same_password"
    message = "New password must be different from current password."


class PasswordTooLong(AuthError):
    """bcrypt reads at most 72 bytes; longer passwords are refused, not truncated."""

    code = "password_too_long"
    message = "Password must be at most 72 bytes when UTF-8 encoded."


class StatusTransitionError(AuthError):
    code = "invalid_status_transition"


class DeliveryFailed(AuthError):
    code = "delivery_failed"
    message = "Message could not be delivered. Please try again."


class InternalError(AuthError):
    code = "internal_error"
    message = "An unexpected error occurred."
