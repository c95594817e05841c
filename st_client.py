"""Async HTTP client for the SillyTavern server.

Wraps the handful of server routes the heatmap needs: the character list,
a character's chat file listing, raw chat files under ``/chats/`` and the
JSON chat endpoint.  All routes are read-only.
"""

from __future__ import annotations

import logging
from typing import Any

import httpx

import config

logger = logging.getLogger(__name__)


class ChatStoreError(Exception):
    """Raised when the SillyTavern server cannot be reached or answers garbage."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class SillyTavernClient:
    """Read-only access to a SillyTavern server's characters and chat logs.

    Use as an async context manager so the underlying connection pool is
    closed::

        async with SillyTavernClient() as store:
            characters = await store.list_characters()
    """

    def __init__(
        self,
        base_url: str | None = None,
        timeout: float | None = None,
        headers: dict[str, str] | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.base_url = (base_url or config.ST_BASE_URL).rstrip("/")
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=httpx.Timeout(timeout if timeout is not None else config.REQUEST_TIMEOUT),
            headers=headers,
            transport=transport,
        )

    async def __aenter__(self) -> SillyTavernClient:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    async def close(self) -> None:
        """Close the underlying HTTP client."""
        await self._client.aclose()

    async def _post_json(self, url: str, payload: dict[str, Any]) -> Any:
        try:
            response = await self._client.post(url, json=payload)
        except httpx.HTTPError as e:
            raise ChatStoreError(f"POST {url} failed: {e}") from e
        if response.status_code >= 400:
            raise ChatStoreError(
                f"POST {url} returned HTTP {response.status_code}",
                status_code=response.status_code,
            )
        try:
            return response.json()
        except ValueError as e:
            raise ChatStoreError(f"POST {url} returned invalid JSON") from e

    async def list_characters(self) -> list[dict]:
        """Return every character known to the server.

        Returns:
            List of character dicts (``name``, ``avatar``, ...).

        Raises:
            ChatStoreError: If the request fails or the answer is not a list.
        """
        data = await self._post_json(config.CHARACTERS_ENDPOINT, {})
        if not isinstance(data, list):
            raise ChatStoreError("Character list is not a JSON array")
        return [c for c in data if isinstance(c, dict)]

    async def list_log_files(self, avatar_file_name: str) -> list:
        """Return the chat log listing for one character.

        Args:
            avatar_file_name: The character's avatar file name.

        Returns:
            List of entries, each a file name string or a dict with a
            ``file_name`` key.  An unexpected answer shape yields ``[]``.

        Raises:
            ChatStoreError: If the request fails.
        """
        data = await self._post_json(config.CHAT_LIST_ENDPOINT, {"avatar_url": avatar_file_name})
        if isinstance(data, dict):
            data = list(data.values())
        if not isinstance(data, list):
            logger.warning("Chat listing for %s is not a list", avatar_file_name)
            return []
        return data

    async def retrieve_file(self, path: str) -> bytes | None:
        """Fetch a raw file under the server's ``/chats/`` folder.

        Args:
            path: "<folder>/<file name>", already URL-safe.

        Returns:
            The response body, or None for 404 and any other non-2xx status.

        Raises:
            ChatStoreError: On network errors and timeouts.
        """
        url = f"{config.CHAT_FILES_PREFIX}/{path}"
        try:
            response = await self._client.get(url)
        except httpx.HTTPError as e:
            raise ChatStoreError(f"GET {url} failed: {e}") from e
        if response.status_code != 200:
            logger.debug("GET %s -> HTTP %d", url, response.status_code)
            return None
        return response.content

    async def get_chat(self, avatar_file_name: str, file_name: str) -> list[dict] | None:
        """Fetch one chat through the server's JSON chat endpoint.

        Args:
            avatar_file_name: The character's avatar file name.
            file_name: Chat file name, with or without the ``.jsonl`` suffix.

        Returns:
            The chat records, or None when the server has nothing usable.

        Raises:
            ChatStoreError: If the request fails.
        """
        name = file_name[: -len(".jsonl")] if file_name.endswith(".jsonl") else file_name
        data = await self._post_json(
            config.CHAT_GET_ENDPOINT,
            {"avatar_url": avatar_file_name, "file_name": name},
        )
        if not isinstance(data, list):
            return None
        records = [r for r in data if isinstance(r, dict)]
        return records or None
