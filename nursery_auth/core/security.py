"""
Security utilities for authentication.

This module provides:
- Password hashing and verification using bcrypt (kiosk accounts)
- One-time passcode generation and keyed hashing
- JWT access token generation and decoding (strict and expiry-relaxed)
- Opaque refresh token generation and hashing
"""

import base64
import hashlib
import hmac
import secrets
import uuid
from datetime import UTC, datetime, timedelta
from typing import Any

import bcrypt
import jwt
from pydantic import BaseModel, ConfigDict

from nursery_auth.config import TokenType, settings

# Registered claims that callers may not override through the claim bag
_RESERVED_CLAIMS = frozenset({"sub", "role", "jti", "iat", "exp", "iss", "aud", "type"})


def _prepare_password_for_bcrypt(password: str) -> str:
    """
    Prepare password for bcrypt by handling long passwords.

    Bcrypt has a 72 byte limit. For passwords longer than 72 bytes,
    we SHA256 hash them first and encode as base64.
    """
    password_bytes = password.encode("utf-8")
    if len(password_bytes) <= 72:
        return password
    hashed = hashlib.sha256(password_bytes).digest()
    return base64.b64encode(hashed).decode("ascii")


def verify_password(plain_password: str, hashed_password: str) -> bool:
    """
    Verify a plain password against a bcrypt hash.

    Args:
        plain_password: The plain text password to verify
        hashed_password: The bcrypt hashed password

    Returns:
        True if password matches, False otherwise (including malformed hashes)
    """
    prepared_password = _prepare_password_for_bcrypt(plain_password)
    try:
        return bcrypt.checkpw(prepared_password.encode("utf-8"), hashed_password.encode("utf-8"))
    except ValueError:
        # Stored value is not a bcrypt hash
        return False


def get_password_hash(password: str) -> str:
    """
    Hash a password using bcrypt.

    Args:
        password: The plain text password to hash

    Returns:
        The bcrypt hashed password
    """
    prepared_password = _prepare_password_for_bcrypt(password)
    salt = bcrypt.gensalt(rounds=12)
    hashed = bcrypt.hashpw(prepared_password.encode("utf-8"), salt)
    return hashed.decode("utf-8")


def generate_otp(length: int | None = None) -> str:
    """Generate a zero-padded numeric one-time passcode."""
    length = length or settings.OTP_LENGTH
    return f"{secrets.randbelow(10**length):0{length}d}"


def hash_otp(phone: str, code: str) -> str:
    """
    Keyed hash of a one-time passcode.

    The phone is mixed into the message so an identical code sent to two
    numbers never produces the same stored hash.
    """
    message = f"{phone}:{code}".encode()
    return hmac.new(settings.SECRET_KEY.encode(), message, hashlib.sha256).hexdigest()


def verify_otp(phone: str, code: str, code_hash: str) -> bool:
    """Constant-time comparison of a submitted code with the stored hash."""
    return hmac.compare_digest(hash_otp(phone, code), code_hash)


class IssuedToken(BaseModel):
    """A freshly signed JWT with the identifiers needed to persist its pair."""

    model_config = ConfigDict(frozen=True)

    token: str
    jti: str
    expires_at: datetime

    @property
    def expires_in(self) -> int:
        """Seconds until expiry, measured from now."""
        remaining = self.expires_at - datetime.now(UTC).replace(tzinfo=None)
        return max(0, int(remaining.total_seconds()))


def create_access_token(
    subject_id: str,
    role: str,
    claims: dict[str, Any] | None = None,
    expires_delta: timedelta | None = None,
    token_type: str = TokenType.ACCESS,
) -> IssuedToken:
    """
    Create a signed JWT.

    Args:
        subject_id: Value of the ``sub`` claim
        role: Value of the ``role`` claim
        claims: Additional claims (role-specific profile bag)
        expires_delta: Optional custom lifetime (defaults to ACCESS_TOKEN_EXPIRE_MINUTES)
        token_type: Value of the ``type`` claim

    Returns:
        IssuedToken with the encoded token, its jti and naive-UTC expiry
    """
    if expires_delta is None:
        expires_delta = timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES)

    issued_at = datetime.now(UTC)
    expire = issued_at + expires_delta
    jti = str(uuid.uuid4())

    payload: dict[str, Any] = {
        key: value for key, value in (claims or {}).items() if key not in _RESERVED_CLAIMS
    }
    payload.update(
        {
            "sub": subject_id,
            "role": role,
            "jti": jti,
            "iat": issued_at,
            "exp": expire,
            "iss": settings.JWT_ISSUER,
            "aud": settings.JWT_AUDIENCE,
            "type": token_type,
        }
    )

    encoded_jwt = jwt.encode(payload, settings.SECRET_KEY, algorithm=settings.ALGORITHM)
    return IssuedToken(token=encoded_jwt, jti=jti, expires_at=expire.replace(tzinfo=None))


def decode_token(
    token: str,
    verify_exp: bool = True,
    expected_type: str | None = TokenType.ACCESS,
) -> dict[str, Any] | None:
    """
    Verify and decode a JWT.

    Signature, issuer and audience are always verified. ``verify_exp=False``
    is the relaxed mode used for refresh pairing and kiosk heartbeat, where an
    expired token is expected.

    Args:
        token: The JWT token to decode
        verify_exp: Whether to reject expired tokens
        expected_type: Required value of the ``type`` claim (None to skip)

    Returns:
        Claims dict if the token is valid, None otherwise
    """
    try:
        payload: dict[str, Any] = jwt.decode(
            token,
            settings.SECRET_KEY,
            algorithms=[settings.ALGORITHM],
            audience=settings.JWT_AUDIENCE,
            issuer=settings.JWT_ISSUER,
            options={
                "verify_signature": True,
                "verify_exp": verify_exp,
                "require": ["sub", "jti", "iat", "exp"],
            },
        )
    except jwt.PyJWTError:
        return None

    if expected_type is not None and payload.get("type") != expected_type:
        return None

    return payload


def create_refresh_token() -> str:
    """
    Create a cryptographically secure refresh token.

    Returns:
        Base64 encoding of 32 random bytes (44 characters)
    """
    return base64.b64encode(secrets.token_bytes(32)).decode("ascii")


def hash_refresh_token(token: str) -> str:
    """SHA256 digest stored in place of the refresh token value."""
    return hashlib.sha256(token.encode()).hexdigest()
