"""Role-based access control for comment moderation.

Hierarchical roles:
- ADMIN (level 2): full access
- MODERATOR (level 1): may soft-delete any comment and read report logs
- USER (level 0): may only mutate own comments
"""

from enum import Enum


class UserRole(str, Enum):
    """User roles with hierarchical levels."""

    USER = "user"
    MODERATOR = "moderator"
    ADMIN = "admin"


ROLE_HIERARCHY: dict[UserRole, int] = {
    UserRole.USER: 0,
    UserRole.MODERATOR: 1,
    UserRole.ADMIN: 2,
}


def get_role_level(role: UserRole | str) -> int:
    """Get the permission level for a role, 0 for unknown roles."""
    if isinstance(role, str):
        try:
            role = UserRole(role)
        except ValueError:
            return 0
    return ROLE_HIERARCHY.get(role, 0)


def has_permission(user_role: UserRole | str, required_role: UserRole | str) -> bool:
    """Check if user has at least the required permission level.

    Examples:
        >>> has_permission(UserRole.ADMIN, UserRole.MODERATOR)
        True
        >>> has_permission("user", "moderator")
        False
    """
    return get_role_level(user_role) >= get_role_level(required_role)


def is_privileged(role: UserRole | str) -> bool:
    """Roles allowed to act on comments they do not own."""
    return has_permission(role, UserRole.MODERATOR)
