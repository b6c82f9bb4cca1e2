"""JSON-RPC transport shared by the Hub and Gateway clients.

Both services speak MCP over HTTP: every operation is a ``tools/call``
request naming one tool, with ``{"operation": ..., "args": ...}`` as its
arguments. The server hands out an ``mcp-session-id`` header which must be
sent back on every later request.
"""

from __future__ import annotations

import logging
from typing import Any

import httpx
import orjson

from teamelites.exceptions import CollaboratorError

_logger = logging.getLogger(__name__)

SESSION_HEADER = "mcp-session-id"


class JsonRpcClient:
    """Posts JSON-RPC 2.0 requests and threads the MCP session header."""

    tool_name = ""
    error_class: type[CollaboratorError] = CollaboratorError

    def __init__(
        self,
        url: str,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._url = url
        self._timeout = timeout
        self._transport = transport
        self._session_id: str | None = None
        self._request_id = 0

    @property
    def session_id(self) -> str | None:
        return self._session_id

    def _headers(self) -> dict[str, str]:
        headers = {
            "Content-Type": "application/json",
            "Accept": "application/json, text/event-stream",
        }
        if self._session_id:
            headers[SESSION_HEADER] = self._session_id
        return headers

    async def _post(self, method: str, params: dict[str, Any]) -> dict[str, Any]:
        self._request_id += 1
        body = {
            "jsonrpc": "2.0",
            "method": method,
            "params": params,
            "id": self._request_id,
        }
        try:
            async with httpx.AsyncClient(
                timeout=self._timeout, transport=self._transport,
            ) as client:
                resp = await client.post(self._url, json=body, headers=self._headers())
        except httpx.HTTPError as e:
            raise self.error_class(f"{method} to {self._url} failed: {e}") from e

        new_session = resp.headers.get(SESSION_HEADER)
        if new_session:
            self._session_id = new_session

        try:
            data = resp.json()
        except ValueError as e:
            raise self.error_class(
                f"{method} returned non-JSON response (HTTP {resp.status_code})"
            ) from e
        if not isinstance(data, dict):
            raise self.error_class(f"{method} returned unexpected payload: {data!r}")
        return data

    async def call(self, operation: str, args: dict[str, Any] | None = None) -> Any:
        """Run one tool operation and return its decoded result."""
        data = await self._post(
            "tools/call",
            {
                "name": self.tool_name,
                "arguments": {"operation": operation, "args": args or {}},
            },
        )
        if data.get("error"):
            raise self.error_class(
                f"{self.tool_name} RPC error in {operation}: {orjson.dumps(data['error']).decode()}"
            )
        return _unwrap_result(data.get("result"))


def _unwrap_result(result: Any) -> Any:
    """MCP results carry their payload as JSON text in ``content[0].text``."""
    if isinstance(result, dict):
        content = result.get("content")
        if isinstance(content, list) and content:
            first = content[0]
            text = first.get("text") if isinstance(first, dict) else None
            if text:
                try:
                    return orjson.loads(text)
                except orjson.JSONDecodeError:
                    return text
    return result
