"""ReasoningBridge — shared reasoning memory for swarm agents.

Combines the Gateway and the Hub so that swarm agents can:
- log their reasoning to a per-niche branch of one shared session
- read the other agents' recent reasoning before handling a message
- post key decisions to a shared Hub channel

Nothing here may slow down or break message handling: ``gather_context``
and ``log_reasoning`` never raise, and the SwarmManager runs logging in a
detached task.
"""

from __future__ import annotations

import asyncio
import logging
from html import escape
from typing import Any

from pydantic import BaseModel

from teamelites.config import TeamElitesSettings, settings
from teamelites.coordination.gateway import GatewayClient, ThoughtEntry, ThoughtInput
from teamelites.coordination.hub import HubClient
from teamelites.registry.store import SwarmStore
from teamelites.types import AgentId, NicheKey, SwarmAgentEntry

_logger = logging.getLogger(__name__)

SESSION_TITLE = "teamelites-swarm-reasoning"
WORKSPACE_NAME = "teamelites-swarm"
PROBLEM_TITLE = "shared-reasoning"


class ReasoningContext(BaseModel):
    xml: str = ""
    thought_count: int = 0
    decision_count: int = 0

    @property
    def empty(self) -> bool:
        return not self.xml


class LogReasoningInput(BaseModel):
    inbound_message: str
    response: str
    channel: str


class ReasoningBridge:
    """Cross-agent context around each agent turn."""

    def __init__(
        self,
        gateway: GatewayClient,
        hub: HubClient,
        store: SwarmStore,
        max_context_thoughts: int = 5,
        max_thought_length: int = 200,
    ) -> None:
        self._gateway = gateway
        self._hub = hub
        self._store = store
        self._max_context_thoughts = max_context_thoughts
        self._max_thought_length = max_thought_length
        self._initialized = False
        self._branch_initialized: set[NicheKey] = set()
        self._main_chain_head: int | None = None

    @property
    def initialized(self) -> bool:
        return self._initialized

    async def initialize(self, agents: list[SwarmAgentEntry]) -> None:
        """Start or resume the shared session and fill in any missing Hub ids."""
        if self._initialized:
            return

        if self._store.reasoning_session_id:
            await self._gateway.load_context(self._store.reasoning_session_id)
        else:
            started = await self._gateway.start_new(SESSION_TITLE, ["swarm", "reasoning"])
            self._store.reasoning_session_id = started["sessionId"]

        await self._gateway.cipher()

        if not self._store.hub_agent_id:
            reg = await self._hub.register("swarm-coordinator", "coordinator")
            self._store.hub_agent_id = reg["agentId"]

        if not self._store.reasoning_workspace_id:
            ws = await self._hub.create_workspace(
                WORKSPACE_NAME, "Shared reasoning workspace for swarm agents",
            )
            self._store.reasoning_workspace_id = ws["workspaceId"]

        if not self._store.reasoning_problem_id:
            prob = await self._hub.create_problem(
                self._store.reasoning_workspace_id,
                PROBLEM_TITLE,
                "Cross-agent reasoning and shared decisions",
            )
            self._store.reasoning_problem_id = prob["problemId"]

        for agent in agents:
            if not self._store.get_agent_hub_id(agent.agent_id):
                reg = await self._hub.register(f"agent-{agent.niche_key}", "contributor")
                self._store.set_agent_hub_id(agent.agent_id, reg["agentId"])

        niches = ", ".join(a.niche_key for a in agents)
        result = await self._gateway.thought(ThoughtInput(
            thought=f"Swarm reasoning session initialized with {len(agents)} agents: {niches}",
            thought_type="initialization",
        ))
        self._main_chain_head = result.thought_number
        self._initialized = True

    async def gather_context(self, agent_id: AgentId, niche_key: NicheKey) -> ReasoningContext:
        """Recent thoughts of the *other* agents plus shared decisions. Never raises."""
        if not self._initialized:
            return ReasoningContext()

        try:
            others = [a for a in self._store.agents if a.agent_id != agent_id]
            if not others:
                return ReasoningContext()

            thought_lists, decisions = await asyncio.gather(
                asyncio.gather(*[self._read_branch(a.niche_key) for a in others]),
                self._read_decisions(),
            )

            tagged: list[tuple[str, ThoughtEntry]] = [
                (agent.niche_key, thought)
                for agent, thoughts in zip(others, thought_lists)
                for thought in thoughts
            ]
            tagged.sort(key=lambda pair: pair[1].thought_number, reverse=True)
            recent = tagged[:self._max_context_thoughts]
            recent_decisions = decisions[-self._max_context_thoughts:]

            if not recent and not recent_decisions:
                return ReasoningContext()

            return ReasoningContext(
                xml=self._build_context_xml(recent, recent_decisions),
                thought_count=len(recent),
                decision_count=len(recent_decisions),
            )
        except Exception as e:
            _logger.debug("Reasoning context for %s unavailable: %s", niche_key, e)
            return ReasoningContext()

    async def log_reasoning(
        self, agent_id: AgentId, niche_key: NicheKey, entry: LogReasoningInput,
    ) -> None:
        """Append one Q/A thought to the niche's branch. Never raises."""
        if not self._initialized:
            return

        try:
            thought = ThoughtInput(
                thought=(
                    f"[{entry.channel}] Q: {_truncate(entry.inbound_message, 100)}"
                    f" -> A: {_truncate(entry.response, 100)}"
                ),
                thought_type="reasoning",
                branch_id=niche_key,
                agent_id=self._store.get_agent_hub_id(agent_id),
            )
            # The first thought on a branch forks it from the main chain.
            if niche_key not in self._branch_initialized and self._main_chain_head is not None:
                thought.branch_from_thought = self._main_chain_head
                self._branch_initialized.add(niche_key)

            await self._gateway.thought(thought)
        except Exception as e:
            _logger.error("Failed to log reasoning for %s: %s", niche_key, e)

    async def log_decision(self, agent_id: AgentId, summary: str) -> None:
        """Post a decision to the shared Hub channel. Never raises."""
        if not self._initialized:
            return

        try:
            agent = next((a for a in self._store.agents if a.agent_id == agent_id), None)
            label = agent.niche_key if agent else agent_id
            await self._hub.post_message(
                self._store.reasoning_workspace_id,
                self._store.reasoning_problem_id,
                f"[{label}] {summary}",
            )
        except Exception as e:
            _logger.error("Failed to log decision for %s: %s", agent_id, e)

    async def _read_branch(self, niche_key: NicheKey) -> list[ThoughtEntry]:
        try:
            return await self._gateway.read_thoughts(
                branch_id=niche_key, last=self._max_context_thoughts,
            )
        except Exception:
            return []

    async def _read_decisions(self) -> list[Any]:
        try:
            return await self._hub.read_channel(
                self._store.reasoning_workspace_id, self._store.reasoning_problem_id,
            )
        except Exception:
            return []

    def _build_context_xml(
        self, thoughts: list[tuple[str, ThoughtEntry]], decisions: list[Any],
    ) -> str:
        parts = ["<swarm-context>"]

        if thoughts:
            parts.append(f'  <recent-thoughts count="{len(thoughts)}">')
            for niche_key, t in thoughts:
                parts.append(
                    f'    <thought agent="agent-{escape(niche_key)}" '
                    f'branch="{escape(niche_key)}" t="{t.thought_number}">'
                )
                parts.append(f"      {escape(_truncate(t.thought, self._max_thought_length))}")
                parts.append("    </thought>")
            parts.append("  </recent-thoughts>")

        if decisions:
            parts.append(f'  <shared-decisions count="{len(decisions)}">')
            for d in decisions:
                content = d if isinstance(d, str) else (d.get("content") if isinstance(d, dict) else None) or str(d)
                parts.append(
                    f"    <decision>{escape(_truncate(content, self._max_thought_length))}</decision>"
                )
            parts.append("  </shared-decisions>")

        parts.append("</swarm-context>")
        return "\n".join(parts)


def reasoning_from_settings(
    store: SwarmStore,
    config: TeamElitesSettings = settings,
    gateway: GatewayClient | None = None,
    hub: HubClient | None = None,
) -> ReasoningBridge | None:
    """Build the bridge described by ``config``, or None when reasoning is off."""
    if not config.reasoning_enabled:
        return None
    return ReasoningBridge(
        gateway or GatewayClient(config.gateway_url, timeout=config.rpc_timeout),
        hub or HubClient(config.hub_url, timeout=config.rpc_timeout),
        store,
        max_context_thoughts=config.reasoning_max_context_thoughts,
        max_thought_length=config.reasoning_max_thought_length,
    )


def _truncate(text: str, max_len: int) -> str:
    if len(text) <= max_len:
        return text
    return text[:max_len - 3] + "..."
