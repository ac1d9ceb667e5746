"""Tests for the comments WebSocket endpoint."""

from collections.abc import Callable
from uuid import UUID, uuid4

import pytest
from fastapi.testclient import TestClient
from starlette.websockets import WebSocketDisconnect


class TestConnection:
    """Tests for the connection handshake and control frames."""

    def test_anonymous_connect(self, client: TestClient):
        """Anonymous clients may listen."""
        with client.websocket_connect("/ws/comments") as ws:
            hello = ws.receive_json()
            assert hello["type"] == "connected"
            assert hello["user_id"] is None

    def test_authenticated_connect(
        self, client: TestClient, make_token: Callable[..., str], user_id: UUID
    ):
        """A valid token identifies the connection."""
        with client.websocket_connect(
            f"/ws/comments?token={make_token(user_id)}"
        ) as ws:
            assert ws.receive_json()["user_id"] == str(user_id)

    def test_bad_token_closes_with_4001(self, client: TestClient):
        """Invalid tokens are refused before accept."""
        with pytest.raises(WebSocketDisconnect) as exc_info:
            with client.websocket_connect("/ws/comments?token=garbage") as ws:
                ws.receive_json()
        assert exc_info.value.code == 4001

    def test_ping_pong(self, client: TestClient):
        """Client pings are answered."""
        with client.websocket_connect("/ws/comments") as ws:
            ws.receive_json()
            ws.send_json({"type": "ping"})
            assert ws.receive_json() == {"type": "pong"}

    def test_invalid_post_id(self, client: TestClient):
        """Joining a malformed post id returns an error frame."""
        with client.websocket_connect("/ws/comments") as ws:
            ws.receive_json()
            ws.send_json({"type": "join-post", "post_id": "not-a-uuid"})
            assert ws.receive_json() == {"type": "error", "message": "Invalid post_id"}

    def test_unknown_type(self, client: TestClient):
        """Unknown frames get an error and the connection stays open."""
        with client.websocket_connect("/ws/comments") as ws:
            ws.receive_json()
            ws.send_json({"type": "subscribe"})
            assert ws.receive_json()["type"] == "error"
            ws.send_json({"type": "ping"})
            assert ws.receive_json() == {"type": "pong"}

    def test_invalid_json(self, client: TestClient):
        """Non-JSON text gets an error frame."""
        with client.websocket_connect("/ws/comments") as ws:
            ws.receive_json()
            ws.send_text("{not json")
            assert ws.receive_json() == {"type": "error", "message": "Invalid JSON"}


class TestRoomEvents:
    """Tests for event delivery to joined rooms."""

    def test_new_comment_reaches_room(
        self,
        client: TestClient,
        auth_headers: dict[str, str],
        post_id: UUID,
    ):
        """Comments created over HTTP are pushed to room members."""
        with client.websocket_connect("/ws/comments") as ws:
            ws.receive_json()
            ws.send_json({"type": "join-post", "post_id": str(post_id)})
            assert ws.receive_json() == {
                "type": "post-joined",
                "post_id": str(post_id),
            }

            response = client.post(
                "/v1/comments",
                json={"post_id": str(post_id), "content": "live!"},
                headers=auth_headers,
            )
            assert response.status_code == 201

            event = ws.receive_json()
            assert event["type"] == "new-comment"
            assert event["post_id"] == str(post_id)
            assert event["seq"] == 1
            assert event["data"]["comment"]["id"] == response.json()["id"]
            assert event["data"]["comment_count"] == 1

    def test_like_update_carries_actor(
        self,
        client: TestClient,
        auth_headers: dict[str, str],
        post_id: UUID,
        user_id: UUID,
    ):
        """Like events carry the count and who acted."""
        comment = client.post(
            "/v1/comments",
            json={"post_id": str(post_id), "content": "like me"},
            headers=auth_headers,
        ).json()

        with client.websocket_connect("/ws/comments") as ws:
            ws.receive_json()
            ws.send_json({"type": "join-post", "post_id": str(post_id)})
            ws.receive_json()

            client.post(f"/v1/comments/{comment['id']}/like", headers=auth_headers)

            event = ws.receive_json()
            assert event["type"] == "comment-updated"
            assert event["data"]["comment_id"] == comment["id"]
            assert event["data"]["likes"] == 1
            assert event["data"]["action"] == "like"
            assert event["data"]["actor_id"] == str(user_id)

    def test_leave_stops_delivery(
        self,
        client: TestClient,
        auth_headers: dict[str, str],
        post_id: UUID,
    ):
        """After leaving, the next frame is the answer to our own ping."""
        with client.websocket_connect("/ws/comments") as ws:
            ws.receive_json()
            ws.send_json({"type": "join-post", "post_id": str(post_id)})
            ws.receive_json()
            ws.send_json({"type": "leave-post", "post_id": str(post_id)})
            assert ws.receive_json()["type"] == "post-left"

            client.post(
                "/v1/comments",
                json={"post_id": str(post_id), "content": "unheard"},
                headers=auth_headers,
            )
            ws.send_json({"type": "ping"})
            assert ws.receive_json() == {"type": "pong"}

    def test_other_posts_not_delivered(
        self,
        client: TestClient,
        auth_headers: dict[str, str],
        post_id: UUID,
    ):
        """Only the joined post's events arrive."""
        with client.websocket_connect("/ws/comments") as ws:
            ws.receive_json()
            ws.send_json({"type": "join-post", "post_id": str(post_id)})
            ws.receive_json()

            client.post(
                "/v1/comments",
                json={"post_id": str(uuid4()), "content": "elsewhere"},
                headers=auth_headers,
            )
            ws.send_json({"type": "ping"})
            assert ws.receive_json() == {"type": "pong"}
