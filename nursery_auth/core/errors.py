"""
Authentication error types.

Every failure that crosses the API boundary is an ``AuthError`` carrying a
coarse machine-readable ``code`` and a human-readable ``message``. FastAPI
renders them as ``{"detail": {"code": ..., "message": ...}}``.
"""

import math
from typing import Any

from fastapi import HTTPException, status


class ErrorCode:
    """Error codes returned in the ``detail.code`` field"""

    USER_NOT_FOUND = "USER_NOT_FOUND"
    RATE_LIMIT_EXCEEDED = "RATE_LIMIT_EXCEEDED"
    COOLDOWN_ACTIVE = "COOLDOWN_ACTIVE"
    SEND_FAILED = "SMS_SEND_FAILED"
    VERIFICATION_RATE_LIMIT_EXCEEDED = "VERIFICATION_RATE_LIMIT_EXCEEDED"
    INVALID_OR_EXPIRED_CODE = "INVALID_OR_EXPIRED_CODE"
    INVALID_CODE = "INVALID_CODE"
    INVALID_ROLE_SELECTION = "INVALID_ROLE_SELECTION"
    ROLE_SELECTION_EXPIRED = "ROLE_SELECTION_EXPIRED"
    INVALID_OR_EXPIRED_REFRESH_TOKEN = "INVALID_OR_EXPIRED_REFRESH_TOKEN"
    TOKEN_PAIR_MISMATCH = "TOKEN_PAIR_MISMATCH"
    ACCOUNT_LOCKED = "ACCOUNT_LOCKED"
    INVALID_CREDENTIALS = "INVALID_CREDENTIALS"
    INVALID_TOKEN = "INVALID_TOKEN"
    FORBIDDEN = "FORBIDDEN"
    NOT_FOUND = "NOT_FOUND"


class AuthError(HTTPException):
    """Base class for authentication failures."""

    status_code_default = status.HTTP_400_BAD_REQUEST
    code = "AUTH_ERROR"
    message = "Authentication failed"

    def __init__(
        self,
        message: str | None = None,
        headers: dict[str, str] | None = None,
        **extra: Any,
    ) -> None:
        self.message = message or self.message
        self.extra = extra
        detail: dict[str, Any] = {"code": self.code, "message": self.message, **extra}
        super().__init__(status_code=self.status_code_default, detail=detail, headers=headers)


class UserNotFound(AuthError):
    status_code_default = status.HTTP_404_NOT_FOUND
    code = ErrorCode.USER_NOT_FOUND
    message = "No account is registered for this phone number"


class RateLimitExceeded(AuthError):
    status_code_default = status.HTTP_429_TOO_MANY_REQUESTS
    code = ErrorCode.RATE_LIMIT_EXCEEDED
    message = "Too many verification codes requested. Please try again tomorrow."


class CooldownActive(AuthError):
    status_code_default = status.HTTP_429_TOO_MANY_REQUESTS
    code = ErrorCode.COOLDOWN_ACTIVE
    message = "Please wait before requesting another code"

    def __init__(self, retry_after_seconds: int) -> None:
        super().__init__(
            headers={"Retry-After": str(retry_after_seconds)},
            retry_after_seconds=retry_after_seconds,
        )


class SendFailed(AuthError):
    status_code_default = status.HTTP_503_SERVICE_UNAVAILABLE
    code = ErrorCode.SEND_FAILED
    message = "The verification code could not be sent. Please try again shortly."


class VerificationRateLimitExceeded(AuthError):
    status_code_default = status.HTTP_429_TOO_MANY_REQUESTS
    code = ErrorCode.VERIFICATION_RATE_LIMIT_EXCEEDED
    message = "Too many verification attempts. Please wait a few minutes."


class InvalidOrExpiredCode(AuthError):
    code = ErrorCode.INVALID_OR_EXPIRED_CODE
    message = "The verification code is invalid or has expired"


class InvalidCode(AuthError):
    code = ErrorCode.INVALID_CODE
    message = "The verification code is incorrect"


class InvalidRoleSelection(AuthError):
    code = ErrorCode.INVALID_ROLE_SELECTION
    message = "The selected role is not available for this account"


class RoleSelectionExpired(AuthError):
    status_code_default = status.HTTP_401_UNAUTHORIZED
    code = ErrorCode.ROLE_SELECTION_EXPIRED
    message = "Role selection has expired. Please verify your phone again."


class InvalidOrExpiredRefreshToken(AuthError):
    status_code_default = status.HTTP_401_UNAUTHORIZED
    code = ErrorCode.INVALID_OR_EXPIRED_REFRESH_TOKEN
    message = "Refresh token is invalid or has expired"


class TokenPairMismatch(AuthError):
    status_code_default = status.HTTP_401_UNAUTHORIZED
    code = ErrorCode.TOKEN_PAIR_MISMATCH
    message = "Refresh token does not belong to this access token"


class AccountLocked(AuthError):
    status_code_default = status.HTTP_423_LOCKED
    code = ErrorCode.ACCOUNT_LOCKED

    def __init__(self, remaining_seconds: float) -> None:
        remaining_minutes = max(1, math.ceil(remaining_seconds / 60))
        super().__init__(
            message=(
                "Account locked due to too many failed login attempts. "
                f"Try again in {remaining_minutes} minutes."
            ),
            remaining_minutes=remaining_minutes,
        )


class InvalidCredentials(AuthError):
    status_code_default = status.HTTP_401_UNAUTHORIZED
    code = ErrorCode.INVALID_CREDENTIALS
    message = "Incorrect login ID or password"


class InvalidToken(AuthError):
    status_code_default = status.HTTP_401_UNAUTHORIZED
    code = ErrorCode.INVALID_TOKEN
    message = "Could not validate credentials"

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message=message, headers={"WWW-Authenticate": "Bearer"})


class Forbidden(AuthError):
    status_code_default = status.HTTP_403_FORBIDDEN
    code = ErrorCode.FORBIDDEN
    message = "You do not have permission to perform this action"


class NotFound(AuthError):
    status_code_default = status.HTTP_404_NOT_FOUND
    code = ErrorCode.NOT_FOUND
    message = "Resource not found"
