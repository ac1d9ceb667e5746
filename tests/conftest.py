"""Shared fixtures.

The environment is pinned before any threadcast import so cached settings
pick up the in-memory backends.
"""

import os
import tempfile


os.environ["ENVIRONMENT"] = "testing"
os.environ["STORAGE_BACKEND"] = "memory"
os.environ["REALTIME_BACKEND"] = "local"
os.environ["LOG_FORMAT"] = "json"
os.environ["LOG_LEVEL"] = "WARNING"
os.environ["LOG_DIR"] = tempfile.mkdtemp(prefix="threadcast-logs-")

from collections.abc import Callable, Iterator  # noqa: E402
from uuid import UUID, uuid4  # noqa: E402

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402

from threadcast.auth.permissions import UserRole  # noqa: E402
from threadcast.auth.security import create_access_token  # noqa: E402
from threadcast.comments.repository import InMemoryCommentRepository  # noqa: E402
from threadcast.comments.service import CommentService  # noqa: E402
from threadcast.directory import InMemoryDirectory  # noqa: E402
from threadcast.main import create_app  # noqa: E402
from threadcast.realtime.broadcaster import LocalBroadcaster  # noqa: E402


@pytest.fixture
def client() -> Iterator[TestClient]:
    """Test client with the application lifespan running."""
    with TestClient(create_app()) as test_client:
        yield test_client


@pytest.fixture
def post_id() -> UUID:
    return uuid4()


@pytest.fixture
def user_id() -> UUID:
    return uuid4()


@pytest.fixture
def other_user_id() -> UUID:
    return uuid4()


@pytest.fixture
def repository() -> InMemoryCommentRepository:
    return InMemoryCommentRepository()


@pytest.fixture
def directory() -> InMemoryDirectory:
    return InMemoryDirectory()


@pytest.fixture
def broadcaster() -> LocalBroadcaster:
    return LocalBroadcaster(queue_size=16)


@pytest.fixture
def comment_service(
    repository: InMemoryCommentRepository,
    directory: InMemoryDirectory,
    broadcaster: LocalBroadcaster,
) -> CommentService:
    """CommentService on in-memory storage with local fan-out."""
    return CommentService(repository, directory, broadcaster)


@pytest.fixture
def make_token() -> Callable[..., str]:
    """Mint an access token for a user id and role."""

    def _make(user_id: UUID, role: UserRole = UserRole.USER) -> str:
        return create_access_token({"sub": str(user_id), "role": role.value})

    return _make


@pytest.fixture
def auth_headers(make_token: Callable[..., str], user_id: UUID) -> dict[str, str]:
    return {"Authorization": f"Bearer {make_token(user_id)}"}
