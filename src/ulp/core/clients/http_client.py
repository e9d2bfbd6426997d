"""HttpProviderClient — JSON and streaming calls to native provider APIs via httpx."""

from __future__ import annotations

import json
import logging
from collections.abc import AsyncIterator
from typing import Any, Literal

import httpx

from ulp.core.errors import UpstreamError

logger = logging.getLogger(__name__)

StreamFormat = Literal["sse", "ndjson"]


def _decode_body(raw: bytes) -> Any:
    try:
        return json.loads(raw)
    except ValueError:
        return raw.decode("utf-8", errors="replace")


class HttpProviderClient:
    """Talks to one provider's HTTP API.

    ``stream_format`` selects how streamed bodies are framed: server-sent
    events (``data: {...}`` lines) or newline-delimited JSON.
    """

    def __init__(
        self,
        base_url: str,
        headers: dict[str, str] | None = None,
        timeout: float = 600.0,
        stream_format: StreamFormat = "sse",
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.headers = {"Content-Type": "application/json", **(headers or {})}
        self.timeout = timeout
        self.stream_format = stream_format

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(base_url=self.base_url, headers=self.headers, timeout=self.timeout)

    @staticmethod
    def _raise_for_status(status_code: int, raw: bytes) -> None:
        if status_code < 400:
            return
        body = _decode_body(raw)
        raise UpstreamError(
            f"Upstream returned HTTP {status_code}",
            status_code=status_code,
            body=body,
        )

    async def post_json(
        self, path: str, body: dict[str, Any], params: dict[str, str] | None = None
    ) -> dict[str, Any]:
        """POST *body* and return the decoded JSON response."""
        try:
            async with self._client() as client:
                response = await client.post(path, json=body, params=params)
        except httpx.HTTPError as exc:
            raise UpstreamError(str(exc)) from exc

        self._raise_for_status(response.status_code, response.content)
        result: dict[str, Any] = response.json()
        return result

    async def stream_events(
        self, path: str, body: dict[str, Any], params: dict[str, str] | None = None
    ) -> AsyncIterator[dict[str, Any]]:
        """POST *body* and yield each streamed JSON event in arrival order."""
        try:
            async with self._client() as client:
                async with client.stream("POST", path, json=body, params=params) as response:
                    if response.status_code >= 400:
                        self._raise_for_status(response.status_code, await response.aread())
                    async for line in response.aiter_lines():
                        event = self._parse_line(line)
                        if event is not None:
                            yield event
        except httpx.HTTPError as exc:
            raise UpstreamError(str(exc)) from exc

    def _parse_line(self, line: str) -> dict[str, Any] | None:
        line = line.strip()
        if not line:
            return None
        if self.stream_format == "sse":
            if not line.startswith("data:"):
                return None
            line = line[len("data:"):].strip()
            if line == "[DONE]":
                return None
        try:
            event: dict[str, Any] = json.loads(line)
        except ValueError:
            logger.warning("Dropping undecodable stream line: %.100s", line)
            return None
        return event
