"""FastAPI dependencies for authentication.

Provides:
- Current user extraction from the bearer token
- Optional user for read endpoints
- Role requirements for moderation endpoints
"""

from typing import Annotated, Any
from uuid import UUID

from fastapi import Depends, HTTPException, Request, status
from jose import JWTError

from threadcast.auth.permissions import UserRole, has_permission
from threadcast.auth.schemas import TokenUser
from threadcast.auth.security import decode_access_token
from threadcast.core.context import set_user_id


def get_token_from_header(request: Request) -> str | None:
    """Extract Bearer token from the Authorization header."""
    auth_header = request.headers.get("Authorization")
    if not auth_header:
        return None

    expected_parts = 2
    parts = auth_header.split()
    if len(parts) != expected_parts or parts[0].lower() != "bearer":
        return None

    return parts[1]


def user_from_payload(payload: dict[str, Any]) -> TokenUser:
    """Build the principal from decoded claims.

    Raises:
        ValueError: If ``sub`` is not a UUID.
    """
    role = payload.get("role", UserRole.USER.value)
    try:
        user_role = UserRole(role)
    except ValueError:
        user_role = UserRole.USER
    return TokenUser(
        id=UUID(str(payload["sub"])),
        role=user_role,
        username=payload.get("username"),
    )


async def get_current_user(
    token: Annotated[str | None, Depends(get_token_from_header)],
) -> TokenUser:
    """Get the authenticated user or fail with 401."""
    if not token:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Access token required",
            headers={"WWW-Authenticate": "Bearer"},
        )

    try:
        user = user_from_payload(decode_access_token(token))
    except (JWTError, ValueError) as e:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
            headers={"WWW-Authenticate": "Bearer"},
        ) from e

    set_user_id(user.id)
    return user


async def get_current_user_optional(
    token: Annotated[str | None, Depends(get_token_from_header)],
) -> TokenUser | None:
    """Get the current user if authenticated, None otherwise."""
    if not token:
        return None

    try:
        user = user_from_payload(decode_access_token(token))
    except (JWTError, ValueError):
        return None

    set_user_id(user.id)
    return user


def require_permission(required_role: UserRole):
    """Create a dependency requiring at least a permission level."""

    async def permission_checker(
        user: Annotated[TokenUser, Depends(get_current_user)],
    ) -> TokenUser:
        if not has_permission(user.role, required_role):
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Insufficient permission",
            )
        return user

    return permission_checker


# ==============================================================================
# Type Aliases
# ==============================================================================

CurrentUser = Annotated[TokenUser, Depends(get_current_user)]
OptionalUser = Annotated[TokenUser | None, Depends(get_current_user_optional)]
ModeratorUser = Annotated[TokenUser, Depends(require_permission(UserRole.MODERATOR))]
