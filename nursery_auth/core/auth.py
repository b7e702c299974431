"""
Authentication dependencies for FastAPI route protection.

This module provides dependency functions for:
- Extracting and verifying bearer access tokens
- Exposing the authenticated principal (subject, role, claims) to routes
- Restricting kiosk administration to a nursery's admin staff
"""

from typing import Annotated, Any

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from pydantic import BaseModel

from nursery_auth.config import UserRole
from nursery_auth.core.errors import Forbidden, InvalidToken
from nursery_auth.core.logging import subject_ctx
from nursery_auth.core.security import decode_token

# Define the security scheme for OpenAPI documentation
bearer_scheme = HTTPBearer(auto_error=False)

STAFF_ADMIN_ROLE = "admin"


class Principal(BaseModel):
    """Identity asserted by a verified access token."""

    subject_id: str
    role: str
    claims: dict[str, Any]

    @property
    def nursery_id(self) -> int | None:
        value = self.claims.get("nursery_id")
        return int(value) if isinstance(value, str) and value.isdigit() else None


async def get_bearer_token(
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(bearer_scheme)] = None,
) -> str:
    """
    Extract the raw bearer token from the Authorization header.

    Raises:
        InvalidToken: 401 if the header is missing
    """
    if credentials is None or not credentials.credentials:
        raise InvalidToken(message="Not authenticated")
    return credentials.credentials


async def get_current_principal(token: Annotated[str, Depends(get_bearer_token)]) -> Principal:
    """
    Verify a guardian/staff access token.

    Returns:
        Principal built from the token claims

    Raises:
        InvalidToken: 401 if the token is invalid or expired
    """
    claims = decode_token(token)
    if claims is None or claims.get("role") not in (UserRole.GUARDIAN, UserRole.STAFF):
        raise InvalidToken()

    principal = Principal(subject_id=str(claims["sub"]), role=str(claims["role"]), claims=claims)
    subject_ctx.set(f"{principal.role}:{principal.subject_id}")
    return principal


async def require_nursery_admin(
    principal: Annotated[Principal, Depends(get_current_principal)],
) -> Principal:
    """
    Require a staff principal whose staff role is admin.

    Raises:
        Forbidden: 403 for guardians and non-admin staff
    """
    if principal.role != UserRole.STAFF or principal.claims.get("staff_role") != STAFF_ADMIN_ROLE:
        raise Forbidden()
    return principal


def get_client_ip(request: Request) -> str:
    """
    Extract client IP address from request.

    Checks X-Forwarded-For header first (for proxies/load balancers),
    falls back to direct client IP.
    """
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        # X-Forwarded-For can contain multiple IPs, take the first (client)
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else "unknown"


def get_user_agent(request: Request) -> str:
    """Extract User-Agent header from request ("unknown" if not present)."""
    return request.headers.get("User-Agent", "unknown")


# Type aliases for dependency injection
CurrentPrincipal = Annotated[Principal, Depends(get_current_principal)]
NurseryAdmin = Annotated[Principal, Depends(require_nursery_admin)]
BearerToken = Annotated[str, Depends(get_bearer_token)]
