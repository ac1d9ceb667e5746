"""HTTP client for the comment API."""

from typing import Any

import httpx
import structlog

from .errors import ApiError, SessionExpiredError


logger = structlog.get_logger(__name__)


class CommentsApiClient:
    """Thin async wrapper over the ``/v1/comments`` routes.

    Methods return decoded JSON bodies. A 401 raises
    :class:`SessionExpiredError`; any other failure raises :class:`ApiError`
    (``code="network_error"`` and ``status_code=0`` for transport failures).
    """

    def __init__(
        self,
        base_url: str,
        token: str | None = None,
        *,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.token = token
        self._client = httpx.AsyncClient(
            base_url=base_url, timeout=timeout, transport=transport
        )

    async def __aenter__(self) -> "CommentsApiClient":
        return self

    async def __aexit__(self, *_: object) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    def _headers(self) -> dict[str, str]:
        headers = {"Accept": "application/json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        return headers

    async def _request(
        self,
        method: str,
        path: str,
        *,
        params: dict[str, Any] | None = None,
        json: dict[str, Any] | None = None,
    ) -> Any:
        if params:
            params = {k: v for k, v in params.items() if v is not None}
        try:
            response = await self._client.request(
                method, path, params=params, json=json, headers=self._headers()
            )
        except httpx.TimeoutException as e:
            logger.warning("comments_api_timeout", method=method, path=path)
            raise ApiError(0, "Request timed out", "network_error") from e
        except httpx.RequestError as e:
            logger.warning(
                "comments_api_request_error", method=method, path=path, error=str(e)
            )
            raise ApiError(0, f"Request error: {e}", "network_error") from e

        if response.status_code == httpx.codes.UNAUTHORIZED:
            raise SessionExpiredError
        if response.is_error:
            message = _error_message(response)
            logger.info(
                "comments_api_error",
                method=method,
                path=path,
                status_code=response.status_code,
                message=message,
            )
            raise ApiError(response.status_code, message)
        return response.json()

    # --------------------------------------------------------------------------
    # Reads
    # --------------------------------------------------------------------------

    async def fetch_top_level(
        self,
        post_id: str,
        page: int = 1,
        limit: int = 20,
        sort_by: str = "newest",
    ) -> dict[str, Any]:
        return await self._request(
            "GET",
            f"/v1/comments/post/{post_id}",
            params={"page": page, "limit": limit, "sort_by": sort_by},
        )

    async def fetch_thread(self, comment_id: str, max_depth: int = 1) -> dict[str, Any]:
        return await self._request(
            "GET",
            f"/v1/comments/{comment_id}/thread",
            params={"max_depth": max_depth},
        )

    # --------------------------------------------------------------------------
    # Writes
    # --------------------------------------------------------------------------

    async def create(
        self, post_id: str, content: str, parent_id: str | None = None
    ) -> dict[str, Any]:
        return await self._request(
            "POST",
            "/v1/comments",
            json={"post_id": post_id, "content": content, "parent_id": parent_id},
        )

    async def like(self, comment_id: str) -> dict[str, Any]:
        return await self._request("POST", f"/v1/comments/{comment_id}/like")

    async def unlike(self, comment_id: str) -> dict[str, Any]:
        return await self._request("DELETE", f"/v1/comments/{comment_id}/like")

    async def edit(
        self, comment_id: str, content: str, expected_version: int | None = None
    ) -> dict[str, Any]:
        return await self._request(
            "PUT",
            f"/v1/comments/{comment_id}",
            json={"content": content, "expected_version": expected_version},
        )

    async def delete(
        self, comment_id: str, expected_version: int | None = None
    ) -> dict[str, Any]:
        return await self._request(
            "DELETE",
            f"/v1/comments/{comment_id}",
            params={"expected_version": expected_version},
        )

    async def report(
        self, comment_id: str, reason: str, description: str | None = None
    ) -> dict[str, Any]:
        return await self._request(
            "POST",
            f"/v1/comments/{comment_id}/report",
            json={"reason": reason, "description": description},
        )


def _error_message(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text[:200] or response.reason_phrase
    if isinstance(body, dict):
        return str(body.get("message") or body.get("detail") or response.reason_phrase)
    return response.reason_phrase
