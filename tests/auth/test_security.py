"""Tests for auth security functions and dependencies."""

from datetime import timedelta
from uuid import uuid4

import pytest
from jose import JWTError, jwt

from threadcast.auth.dependencies import user_from_payload
from threadcast.auth.permissions import UserRole
from threadcast.auth.security import create_access_token, decode_access_token
from threadcast.config import get_settings


class TestAccessToken:
    """Tests for access token round trips."""

    def test_create_and_decode(self) -> None:
        """A freshly minted token decodes to its claims."""
        user_id = str(uuid4())
        token = create_access_token({"sub": user_id, "role": "moderator"})
        payload = decode_access_token(token)
        assert payload["sub"] == user_id
        assert payload["role"] == "moderator"
        assert payload["type"] == "access"

    def test_expired_token_rejected(self) -> None:
        """Expired tokens raise JWTError."""
        token = create_access_token(
            {"sub": str(uuid4())}, expires_delta=timedelta(seconds=-1)
        )
        with pytest.raises(JWTError):
            decode_access_token(token)

    def test_wrong_type_rejected(self) -> None:
        """Tokens that are not access tokens are rejected."""
        settings = get_settings()
        token = jwt.encode(
            {"sub": str(uuid4()), "type": "refresh"},
            settings.auth_secret_key,
            algorithm=settings.auth_algorithm,
        )
        with pytest.raises(JWTError):
            decode_access_token(token)

    def test_missing_subject_rejected(self) -> None:
        """Tokens without sub are rejected."""
        token = create_access_token({"role": "user"})
        with pytest.raises(JWTError):
            decode_access_token(token)


class TestUserFromPayload:
    """Tests for building the principal from claims."""

    def test_unknown_role_falls_back_to_user(self) -> None:
        """Roles this service does not know are treated as plain users."""
        user = user_from_payload({"sub": str(uuid4()), "role": "vendor"})
        assert user.role == UserRole.USER

    def test_invalid_subject_raises(self) -> None:
        """A non-UUID subject is a ValueError."""
        with pytest.raises(ValueError):
            user_from_payload({"sub": "not-a-uuid"})
