"""Async GitLab REST transport using httpx.

Every call goes to ``{base_url}/api/v4`` with the server's access token.
Failed requests are retried with exponential backoff; a 429 waits for the
configured rate-limit delay before the next attempt; other 4xx responses
fail immediately. A server whose requests failed permanently gets a
single attempt per request until one succeeds again.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from typing import Any

import httpx

from story_mirror.config import GitLabConfig, get_settings
from story_mirror.db.models import Server
from story_mirror.logging import get_logger

from .exceptions import (
    GitLabAuthenticationError,
    GitLabClientError,
    GitLabNotFoundError,
    GitLabRetryableError,
)

logger = get_logger(__name__)

# Callback of fetch_each: (item, index, total or None) -> False to stop
ItemCallback = Callable[[Any, int, int | None], Awaitable[bool | None]]


class GitLabTransport:
    """Async client for one GitLab server.

    Usage:
        async with GitLabTransport(server) as transport:
            issue = await transport.fetch(f"/projects/{project_id}/issues/7")
            await transport.fetch_each(
                f"/projects/{project_id}/events", {"sort": "asc"}, handle_event
            )

    Writes (``post``/``put``/``remove``) accept the GitLab user id to act as;
    it is sent in the ``Sudo`` header so the change is attributed to that
    user on the server.
    """

    def __init__(
        self,
        server: Server,
        *,
        config: GitLabConfig | None = None,
        client: httpx.AsyncClient | None = None,
        unreachable: set[str] | None = None,
    ) -> None:
        """Initialize the transport.

        Args:
            server: Server whose settings provide base_url and access_token
            config: Pagination and retry settings (default: from Settings)
            client: Preconfigured httpx client (tests pass one with a MockTransport)
            unreachable: Shared set of base URLs that failed permanently

        Raises:
            GitLabAuthenticationError: If the server has no access token
        """
        token = server.access_token
        if not token:
            raise GitLabAuthenticationError(
                f"Server {server.name!r} has no access token in its settings", 401
            )
        self._server = server
        self._config = config or get_settings().gitlab
        self._base_url = f"{server.base_url}/api/v4"
        self._unreachable = unreachable if unreachable is not None else set()
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=self._config.timeout_s)
        self._headers = {
            "Authorization": f"Bearer {token}",
            "Accept": "application/json",
        }

    @property
    def server(self) -> Server:
        """Server this transport talks to."""
        return self._server

    async def close(self) -> None:
        """Close the underlying HTTP client (if owned)."""
        if self._owns_client:
            await self._client.aclose()

    async def __aenter__(self) -> GitLabTransport:
        """Async context manager entry."""
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: object,
    ) -> None:
        """Async context manager exit."""
        await self.close()

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------
    async def fetch(self, path: str, query: dict[str, Any] | None = None) -> Any:
        """GET a single resource (or one page of a listing)."""
        return await self._request("GET", path, query=query)

    async def fetch_all(self, path: str, query: dict[str, Any] | None = None) -> list[Any]:
        """GET every page of a listing and return the items."""
        items: list[Any] = []

        async def collect(item: Any, index: int, total: int | None) -> None:
            items.append(item)

        await self.fetch_each(path, query, collect)
        return items

    async def fetch_each(
        self,
        path: str,
        query: dict[str, Any] | None,
        callback: ItemCallback,
    ) -> None:
        """GET a listing page by page, invoking ``callback`` for every item.

        The callback receives the item, its index and the total number of
        items, which is only known once the last page has been fetched
        (``None`` before that). Returning ``False`` stops the iteration.
        """
        page_size = self._config.page_size
        page_query = {**(query or {}), "page": 1, "per_page": page_size}
        index = 0
        while True:
            items = await self.fetch(path, page_query)
            if not isinstance(items, list):
                return
            total = index + len(items) if len(items) < page_size else None
            for item in items:
                proceed = await callback(item, index, total)
                index += 1
                if proceed is False:
                    return
            if len(items) < page_size or page_query["page"] >= self._config.page_limit:
                return
            page_query["page"] += 1

    # -------------------------------------------------------------------------
    # Writes
    # -------------------------------------------------------------------------
    async def post(self, path: str, payload: dict[str, Any], user_id: int | None = None) -> Any:
        """POST as the given GitLab user (or as the token owner)."""
        return await self._request("POST", path, payload=payload, sudo=user_id)

    async def put(self, path: str, payload: dict[str, Any], user_id: int | None = None) -> Any:
        """PUT as the given GitLab user (or as the token owner)."""
        return await self._request("PUT", path, payload=payload, sudo=user_id)

    async def remove(self, path: str, user_id: int | None = None) -> Any:
        """DELETE as the given GitLab user (or as the token owner)."""
        return await self._request("DELETE", path, sudo=user_id)

    # -------------------------------------------------------------------------
    # Request loop
    # -------------------------------------------------------------------------
    async def _request(
        self,
        method: str,
        path: str,
        *,
        query: dict[str, Any] | None = None,
        payload: dict[str, Any] | None = None,
        sudo: int | None = None,
    ) -> Any:
        url = self._base_url + path
        headers = dict(self._headers)
        if sudo is not None:
            headers["Sudo"] = str(sudo)

        attempts = 1 if self._base_url in self._unreachable else self._config.max_attempts
        delay = self._config.retry_delay_ms / 1000
        last_error: GitLabClientError | None = None

        for attempt in range(1, attempts + 1):
            try:
                response = await self._client.request(
                    method, url, params=query, json=payload, headers=headers
                )
            except httpx.TransportError as e:
                last_error = GitLabRetryableError(f"{method} {path} failed: {e}")
                logger.warning("{} {} failed (attempt {}/{}): {}", method, path, attempt, attempts, e)
            else:
                status = response.status_code
                if 200 <= status < 300:
                    self._unreachable.discard(self._base_url)
                    if status == 204 or not response.content:
                        return None
                    return response.json()
                error = self._error_for(method, path, status)
                if not isinstance(error, GitLabRetryableError):
                    raise error
                last_error = error
                logger.warning("{} {} returned {} (attempt {}/{})", method, path, status, attempt, attempts)
                if status == 429:
                    await asyncio.sleep(self._config.rate_limit_delay_s)

            if attempt < attempts:
                await asyncio.sleep(delay)
                delay *= 2

        self._unreachable.add(self._base_url)
        assert last_error is not None, "the retry loop runs at least once"
        raise last_error

    @staticmethod
    def _error_for(method: str, path: str, status: int) -> GitLabClientError:
        message = f"{method} {path} returned HTTP {status}"
        if status in (401, 403):
            return GitLabAuthenticationError(message, status)
        if status == 404:
            return GitLabNotFoundError(message, status)
        if status == 429 or status >= 500:
            return GitLabRetryableError(message, status)
        return GitLabClientError(message, status)
