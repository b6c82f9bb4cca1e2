"""GatewayClient — the Thoughtbox Gateway's branch-structured scratchpad.

Same transport as the Hub, but the Gateway insists on an MCP
``initialize`` handshake before the first tool call.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from teamelites import __version__
from teamelites.coordination.rpc import JsonRpcClient
from teamelites.exceptions import GatewayError

PROTOCOL_VERSION = "2025-03-26"


class _GatewayModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ThoughtInput(_GatewayModel):
    thought: str
    thought_type: str | None = None
    branch_id: str | None = None
    branch_from_thought: int | None = None
    agent_id: str | None = None


class ThoughtResult(_GatewayModel):
    thought_number: int
    branch_id: str | None = None
    session_id: str | None = None


class ThoughtEntry(_GatewayModel):
    thought_number: int = 0
    thought: str = ""
    thought_type: str = ""
    branch_id: str | None = None
    agent_id: str | None = None
    timestamp: str = ""


class GatewayClient(JsonRpcClient):
    tool_name = "thoughtbox_gateway"
    error_class = GatewayError

    _initialized = False

    async def _ensure_initialized(self) -> None:
        if self._initialized:
            return
        data = await self._post("initialize", {
            "protocolVersion": PROTOCOL_VERSION,
            "capabilities": {},
            "clientInfo": {"name": "teamelites-gateway-client", "version": __version__},
        })
        if data.get("error"):
            raise GatewayError(f"Gateway initialize failed: {data['error']}")
        self._initialized = True

    async def call(self, operation: str, args: dict[str, Any] | None = None) -> Any:
        await self._ensure_initialized()
        return await super().call(operation, args)

    async def start_new(
        self, title: str, tags: list[str] | None = None, project: str | None = None,
    ) -> dict[str, Any]:
        """-> {"sessionId"}"""
        args: dict[str, Any] = {"title": title, "tags": tags or []}
        if project:
            args["project"] = project
        return await self.call("start_new", args)

    async def load_context(self, session_id: str) -> dict[str, Any]:
        return await self.call("load_context", {"sessionId": session_id})

    async def cipher(self) -> dict[str, Any]:
        """Advance the session to stage 2 so thoughts can be recorded."""
        return await self.call("cipher")

    async def thought(self, entry: ThoughtInput) -> ThoughtResult:
        result = await self.call(
            "thought", entry.model_dump(by_alias=True, exclude_none=True),
        )
        return ThoughtResult.model_validate(result)

    async def read_thoughts(
        self,
        branch_id: str | None = None,
        last: int | None = None,
        session_id: str | None = None,
    ) -> list[ThoughtEntry]:
        args: dict[str, Any] = {"operation": "read"}
        if session_id:
            args["sessionId"] = session_id
        if branch_id:
            args["branchId"] = branch_id
        if last is not None:
            args["last"] = last
        result = await self.call("session", args)
        raw = result if isinstance(result, list) else (result or {}).get("thoughts", [])
        return [ThoughtEntry.model_validate(t) for t in raw]

    async def get_structure(self, session_id: str | None = None) -> dict[str, Any]:
        args: dict[str, Any] = {"operation": "structure"}
        if session_id:
            args["sessionId"] = session_id
        return await self.call("session", args)
