"""Tests for auth permissions."""

import pytest

from threadcast.auth.permissions import (
    ROLE_HIERARCHY,
    UserRole,
    get_role_level,
    has_permission,
    is_privileged,
)


class TestUserRole:
    """Tests for UserRole enum."""

    def test_role_values(self) -> None:
        """Roles should have correct string values."""
        assert UserRole.USER.value == "user"
        assert UserRole.MODERATOR.value == "moderator"
        assert UserRole.ADMIN.value == "admin"

    def test_all_roles_have_levels(self) -> None:
        """All UserRole members should have defined levels."""
        for role in UserRole:
            assert role in ROLE_HIERARCHY


class TestGetRoleLevel:
    """Tests for get_role_level function."""

    @pytest.mark.parametrize(
        ("role", "expected"),
        [
            (UserRole.USER, 0),
            (UserRole.MODERATOR, 1),
            (UserRole.ADMIN, 2),
            ("moderator", 1),
            ("unknown", 0),
        ],
    )
    def test_levels(self, role: UserRole | str, expected: int) -> None:
        """Enum members and raw strings map to hierarchy levels."""
        assert get_role_level(role) == expected


class TestHasPermission:
    """Tests for has_permission and is_privileged."""

    def test_admin_has_moderator_permission(self) -> None:
        """Higher roles include lower ones."""
        assert has_permission(UserRole.ADMIN, UserRole.MODERATOR) is True

    def test_user_lacks_moderator_permission(self) -> None:
        """Plain users cannot moderate."""
        assert has_permission("user", "moderator") is False

    @pytest.mark.parametrize(
        ("role", "expected"),
        [("user", False), ("moderator", True), ("admin", True), ("bogus", False)],
    )
    def test_is_privileged(self, role: str, expected: bool) -> None:
        """Moderators and admins may act on others' comments."""
        assert is_privileged(role) is expected
