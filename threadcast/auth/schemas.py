"""Pydantic schemas for the authenticated principal."""

from uuid import UUID

from pydantic import BaseModel

from threadcast.auth.permissions import UserRole


class TokenUser(BaseModel):
    """User identity extracted from an access token.

    Sessions are issued elsewhere; this service only consumes the claims.
    """

    id: UUID
    role: UserRole = UserRole.USER
    username: str | None = None
