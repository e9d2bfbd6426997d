"""MockClient — replays canned provider payloads without any network I/O."""

from __future__ import annotations

import copy
from collections.abc import AsyncIterator
from typing import Any


class MockClient:
    """Stands in for both the LiteLLM and the HTTP client in mock mode.

    Every call records the request it was given in :attr:`requests`.
    """

    def __init__(self, response: dict[str, Any], chunks: list[dict[str, Any]]) -> None:
        self._response = response
        self._chunks = chunks
        self.requests: list[dict[str, Any]] = []

    async def complete(self, request: dict[str, Any]) -> dict[str, Any]:
        self.requests.append(request)
        return copy.deepcopy(self._response)

    async def stream(self, request: dict[str, Any]) -> AsyncIterator[dict[str, Any]]:
        self.requests.append(request)
        for chunk in self._chunks:
            yield copy.deepcopy(chunk)

    async def post_json(
        self, path: str, body: dict[str, Any], params: dict[str, str] | None = None
    ) -> dict[str, Any]:
        return await self.complete(body)

    async def stream_events(
        self, path: str, body: dict[str, Any], params: dict[str, str] | None = None
    ) -> AsyncIterator[dict[str, Any]]:
        async for chunk in self.stream(body):
            yield chunk
