# memory_rooms/forum/client.py
"""Thin async wrapper over the Foru.ms REST API.

Every call is a single HTTP request; nothing is retried here. Callers decide
what a failure means for their operation.
"""
import logging
from typing import Any, Optional

import httpx

from ..settings.config import settings
from . import mappers

logger = logging.getLogger(__name__)

Payload = dict[str, Any]


class ForumError(RuntimeError):
    """Non-2xx response from Foru.ms."""

    def __init__(self, message: str, status: Optional[int] = None, payload: Any = None):
        super().__init__(message)
        self.status = status
        self.payload = payload

    @property
    def is_not_found(self) -> bool:
        return self.status == 404


class ForumUnavailable(ForumError):
    """Foru.ms could not be reached (timeout / network failure)."""


class ForumClient:
    def __init__(
        self,
        base_url: Optional[str] = None,
        api_key: Optional[str] = None,
        *,
        auth_token: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = (base_url or settings.FORUMMS_API_URL).rstrip("/")
        self.timeout = timeout if timeout is not None else settings.FORUMMS_TIMEOUT_SECONDS
        headers = {
            "Content-Type": "application/json",
            "X-API-Key": api_key if api_key is not None else settings.FORUMMS_API_KEY,
        }
        if auth_token:
            headers["Authorization"] = f"Bearer {auth_token}"
        self.http = httpx.AsyncClient(
            base_url=self.base_url,
            headers=headers,
            timeout=self.timeout,
            transport=transport,
        )

    async def aclose(self) -> None:
        await self.http.aclose()

    async def _request(self, method: str, endpoint: str, *, json: Any = None, params: Any = None) -> Any:
        try:
            r = await self.http.request(method, endpoint, json=json, params=params)
        except httpx.TimeoutException as e:
            logger.warning("Foru.ms %s %s timed out after %ss", method, endpoint, self.timeout)
            raise ForumUnavailable(f"Request timed out after {self.timeout:g} seconds") from e
        except httpx.HTTPError as e:
            logger.warning("Foru.ms %s %s failed: %s", method, endpoint, e)
            raise ForumUnavailable("Network connection failed") from e

        if r.is_error:
            try:
                data = r.json()
            except ValueError:
                data = {}
            detail = "Unknown error"
            if isinstance(data, dict):
                detail = data.get("message") or data.get("error") or detail
            raise ForumError(
                f"Foru.ms API Error: {r.status_code} {r.reason_phrase} - {detail}",
                status=r.status_code,
                payload=data,
            )

        if not r.content:
            return None
        try:
            return r.json()
        except ValueError as e:
            raise ForumError("Foru.ms returned a non-JSON response", status=r.status_code) from e

    @staticmethod
    def _unwrap_list(data: Any, key: str) -> list[Payload]:
        if isinstance(data, list):
            return [x for x in data if isinstance(x, dict)]
        if isinstance(data, dict):
            items = data.get(key) or []
            return [x for x in items if isinstance(x, dict)]
        return []

    # ---------- auth ----------

    async def register(self, login: str, password: str, email: Optional[str] = None) -> Payload:
        """Create a Foru.ms account; returns ``{"token": ..., "user": {...}}``."""
        body = {"login": login, "password": password}
        if email:
            body["email"] = email
        return await self._request("POST", "/auth/register", json=body) or {}

    async def login(self, login: str, password: str) -> Payload:
        return await self._request("POST", "/auth/login", json={"login": login, "password": password}) or {}

    # ---------- threads ----------

    async def create_thread(self, data: Payload) -> Payload:
        return await self._request("POST", "/thread", json=data)

    async def get_thread(self, thread_id: str) -> Payload:
        return await self._request("GET", f"/thread/{thread_id}")

    async def update_thread(self, thread_id: str, data: Payload) -> Payload:
        return await self._request("PATCH", f"/thread/{thread_id}", json=data)

    async def get_threads(self) -> list[Payload]:
        return self._unwrap_list(await self._request("GET", "/threads"), "threads")

    async def get_threads_by_type(self, type_: str) -> list[Payload]:
        # extendedData filtering is not supported server-side
        return [t for t in await self.get_threads() if mappers.entity_type(t) == type_]

    async def add_thread_participant(self, thread_id: str, user_id: str) -> None:
        await self._request("POST", f"/thread/{thread_id}/participants", json={"userId": user_id})

    # ---------- posts ----------

    async def create_post(self, data: Payload) -> Payload:
        return await self._request("POST", "/post", json=data)

    async def get_post(self, post_id: str) -> Payload:
        return await self._request("GET", f"/post/{post_id}")

    async def get_posts_by_thread(self, thread_id: str) -> list[Payload]:
        data = await self._request("GET", "/posts", params={"threadId": thread_id})
        # the API does not always honour the threadId filter
        return [p for p in self._unwrap_list(data, "posts") if p.get("threadId") == thread_id]

    async def update_post(self, post_id: str, data: Payload) -> Payload:
        return await self._request("PATCH", f"/post/{post_id}", json=data)

    async def delete_post(self, post_id: str) -> None:
        await self._request("DELETE", f"/post/{post_id}")

    # helpful marks are stored as Foru.ms likes
    async def mark_post_helpful(self, post_id: str, user_id: str) -> None:
        await self._request("POST", f"/post/{post_id}/likes", json={"userId": user_id, "extendedData": {}})

    async def unmark_post_helpful(self, post_id: str, user_id: str) -> None:
        await self._request("DELETE", f"/post/{post_id}/likes", json={"userId": user_id})

    async def get_post_likes(self, post_id: str) -> Payload:
        data = await self._request("GET", f"/post/{post_id}/likes") or {}
        likes = data.get("likes") or []
        return {"likes": likes, "count": int(data.get("count", len(likes)) or 0)}

    # ---------- users / search ----------

    async def get_user(self, user_id: str) -> Payload:
        return await self._request("GET", f"/users/{user_id}")

    async def search(self, query: str, *, tags: Optional[list[str]] = None, thread_id: Optional[str] = None) -> Payload:
        params: list[tuple[str, str]] = [("q", query)]
        for tag in tags or []:
            params.append(("tag", tag))
        if thread_id:
            params.append(("threadId", thread_id))
        data = await self._request("GET", "/search", params=params) or {}
        return {
            "threads": self._unwrap_list(data, "threads"),
            "posts": self._unwrap_list(data, "posts"),
        }


_client: Optional[ForumClient] = None


def get_forum_client() -> ForumClient:
    """FastAPI dependency returning the process-wide client."""
    global _client
    if _client is None:
        _client = ForumClient()
    return _client


async def close_forum_client() -> None:
    global _client
    if _client is not None:
        await _client.aclose()
        _client = None
