"""
Authentication and authorization utilities.

Tokens are issued by the identity service; this module only validates them
and exposes the caller's organization and role to the routes.
"""

from datetime import UTC, datetime, timedelta
from typing import Annotated

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt
from pydantic import BaseModel

from bulkqueue.config import get_settings
from bulkqueue.constants import ADMIN_ROLES

# Security scheme
security = HTTPBearer(auto_error=False)


class AuthenticatedUser(BaseModel):
    """Authenticated user context."""

    organization_id: str
    user_id: str | None = None
    role: str | None = None
    email: str | None = None

    @property
    def is_admin(self) -> bool:
        return self.role in ADMIN_ROLES


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


def create_access_token(
    organization_id: str | None,
    user_id: str | None = None,
    role: str | None = None,
    email: str | None = None,
    expires_delta: timedelta | None = None,
) -> str:
    """
    Create a JWT access token.

    Used by tests and local tooling; production tokens come from the
    identity service with the same claims.

    Args:
        organization_id: The caller's organization.
        user_id: The caller's user identifier.
        role: The caller's role, e.g. "admin".
        email: The caller's e-mail address.
        expires_delta: Optional custom expiration time.

    Returns:
        The encoded JWT token.
    """
    settings = get_settings()

    if expires_delta is None:
        expires_delta = timedelta(minutes=settings.api_access_token_expire_minutes)

    now = datetime.now(UTC)
    claims = {
        "organization_id": organization_id,
        "user_id": user_id,
        "role": role,
        "email": email,
        "exp": now + expires_delta,
        "iat": now,
    }

    return jwt.encode(
        {key: value for key, value in claims.items() if value is not None},
        settings.api_secret_key,
        algorithm=settings.api_algorithm,
    )


def decode_token(token: str) -> AuthenticatedUser:
    """
    Decode and validate a JWT token.

    Args:
        token: The JWT token to decode.

    Returns:
        The authenticated user.

    Raises:
        HTTPException: 401 if the token is invalid, expired, or carries no
            organization.
    """
    settings = get_settings()

    try:
        payload = jwt.decode(
            token,
            settings.api_secret_key,
            algorithms=[settings.api_algorithm],
        )
    except JWTError as e:
        raise _unauthorized(f"Invalid token: {e}") from e

    organization_id = payload.get("organization_id")
    if not organization_id:
        raise _unauthorized("User must belong to an organization")

    return AuthenticatedUser(
        organization_id=str(organization_id),
        user_id=payload.get("user_id"),
        role=payload.get("role"),
        email=payload.get("email"),
    )


async def get_current_user(
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(security)],
) -> AuthenticatedUser:
    """
    FastAPI dependency to get the current authenticated user.

    Raises:
        HTTPException: If authentication fails.
    """
    if credentials is None:
        raise _unauthorized("Not authenticated")
    return decode_token(credentials.credentials)


async def require_admin(
    user: Annotated[AuthenticatedUser, Depends(get_current_user)],
) -> AuthenticatedUser:
    """
    FastAPI dependency restricting a route to admin roles.

    Raises:
        HTTPException: 403 if the caller is not an admin.
    """
    if not user.is_admin:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Access denied: Admin role required for manual cleanup",
        )
    return user


# Type aliases for dependency injection
CurrentUser = Annotated[AuthenticatedUser, Depends(get_current_user)]
AdminUser = Annotated[AuthenticatedUser, Depends(require_admin)]
