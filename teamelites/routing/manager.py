"""SwarmManager — routes messages to niche agents and drives their queues.

Replaces the single global processing mutex with one FIFO queue per agent.
Each ``process_queues()`` pass takes at most one message from every
non-empty queue and runs them concurrently, so a slow agent never holds
up a fast one. In ``mode='single'`` everything goes to the one agent.

Usage:
    manager = SwarmManager(store, match_niche)
    manager.set_processor(handle_turn)
    route = manager.route_message(msg)
    if route:
        manager.enqueue_message(route.agent_id, msg, adapter)
        await manager.process_queues()
"""

from __future__ import annotations

import asyncio
import logging
from collections import deque
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Protocol

from teamelites.config import TeamElitesSettings, settings
from teamelites.coordination.gateway import GatewayClient
from teamelites.coordination.hub import HubClient
from teamelites.coordination.reasoning import (
    LogReasoningInput,
    ReasoningBridge,
    ReasoningContext,
    reasoning_from_settings,
)
from teamelites.events.bus import EventBus
from teamelites.events.telemetry import log_swarm_event
from teamelites.registry.store import SingleTarget, SwarmStore
from teamelites.routing.niche import match_niche
from teamelites.types import AgentId, InboundMessage, NicheDescriptor, SwarmAgentEntry

logger = logging.getLogger(__name__)


class ChannelAdapter(Protocol):
    """The slice of a channel adapter the router hands to processors."""

    id: str

    async def send_message(self, chat_id: str, text: str) -> Any: ...


NicheMatcherFn = Callable[[InboundMessage], NicheDescriptor]
ProcessorFn = Callable[
    [AgentId, InboundMessage, ChannelAdapter | None, ReasoningContext | None],
    Awaitable[str | None],
]


@dataclass(frozen=True)
class RouteResult:
    agent_id: AgentId
    niche: NicheDescriptor | None = None


@dataclass
class _Queued:
    msg: InboundMessage
    adapter: ChannelAdapter | None


class SwarmManager:
    """Top-level orchestrator for swarm message handling."""

    def __init__(
        self,
        store: SwarmStore,
        match_niche: NicheMatcherFn,
        reasoning: ReasoningBridge | None = None,
        event_bus: EventBus | None = None,
        context_timeout: float = 2.0,
    ) -> None:
        self._store = store
        self._match_niche = match_niche
        self._reasoning = reasoning
        self._bus = event_bus
        self._context_timeout = context_timeout
        self._queues: dict[AgentId, deque[_Queued]] = {}
        self._processor: ProcessorFn | None = None
        self._background: set[asyncio.Task] = set()

    @property
    def store(self) -> SwarmStore:
        return self._store

    def set_processor(self, fn: ProcessorFn) -> None:
        """Set the per-message processor (called once per agent+message)."""
        self._processor = fn

    def attach_reasoning(self, bridge: ReasoningBridge | None) -> None:
        self._reasoning = bridge

    # ── Routing ──────────────────────────────────────────────────

    def route_message(self, msg: InboundMessage) -> RouteResult | None:
        """Pick the agent for ``msg``, or None when nobody serves its niche.

        A miss is not buffered: the caller decides whether to drop the
        message or trigger provisioning.
        """
        target = self._store.routing_target()
        if isinstance(target, SingleTarget):
            if not target.agent_id:
                return None
            return RouteResult(agent_id=target.agent_id)

        niche = self._match_niche(msg)
        entry = self._store.get_agent_for_niche(niche)
        if entry is None:
            self._store.increment_route_fallback(niche.key)
            self._store.increment_unserved_niche(niche.key)
            log_swarm_event("route_fallback", {
                "nicheKey": niche.key,
                "channel": msg.channel,
                "unservedCount": self._store.get_unserved_niche_count(niche.key),
            })
            return None

        self._store.increment_route_success(niche.key)
        log_swarm_event("route_success", {"nicheKey": niche.key, "agentId": entry.agent_id})
        return RouteResult(agent_id=entry.agent_id, niche=niche)

    def get_unserved_niche_count(self, niche_key: str) -> int:
        return self._store.get_unserved_niche_count(niche_key)

    def create_agent_for_niche(
        self, agent_id: AgentId, blueprint_id: str, niche: NicheDescriptor,
    ) -> SwarmAgentEntry:
        """Register ``agent_id`` as the live agent for ``niche``."""
        return self._store.set_agent_for_niche(agent_id, blueprint_id, niche.key)

    # ── Queues ───────────────────────────────────────────────────

    def enqueue_message(
        self, agent_id: AgentId, msg: InboundMessage, adapter: ChannelAdapter | None = None,
    ) -> None:
        self._queues.setdefault(agent_id, deque()).append(_Queued(msg, adapter))

    def get_queue_sizes(self) -> dict[AgentId, int]:
        return {agent_id: len(q) for agent_id, q in self._queues.items()}

    @property
    def pending(self) -> int:
        return sum(len(q) for q in self._queues.values())

    async def process_queues(self) -> None:
        """One pass: the head of every non-empty queue, all agents concurrently.

        Returns once every agent in the pass has finished. A processor
        failure is caught and reported for that agent only.
        """
        if self._processor is None:
            return

        batch = [
            (agent_id, queue.popleft())
            for agent_id, queue in self._queues.items()
            if queue
        ]
        for agent_id in [a for a, q in self._queues.items() if not q]:
            del self._queues[agent_id]

        if batch:
            await asyncio.gather(*[self._process_one(a, item) for a, item in batch])

    async def drain(self) -> None:
        """Run passes until every queue is empty."""
        while self._processor is not None and self.pending:
            await self.process_queues()

    async def _process_one(self, agent_id: AgentId, item: _Queued) -> None:
        niche_key = self._niche_key_for(agent_id, item.msg)
        context = await self._gather_context(agent_id, niche_key)

        try:
            response = await self._processor(agent_id, item.msg, item.adapter, context)
        except Exception as e:
            logger.error("Processor failed for agent %s: %s", agent_id, e, exc_info=True)
            log_swarm_event("processor_failed", {
                "agentId": agent_id,
                "nicheKey": niche_key,
                "error": str(e),
            })
            if self._bus:
                await self._bus.emit("swarm.processor_failed", {
                    "agent_id": agent_id,
                    "niche_key": niche_key,
                    "error": str(e),
                }, source="swarm_manager")
            return

        if self._reasoning is not None and isinstance(response, str) and response:
            self._spawn_background(self._reasoning.log_reasoning(
                agent_id,
                niche_key,
                LogReasoningInput(
                    inbound_message=item.msg.text,
                    response=response,
                    channel=item.msg.channel,
                ),
            ))

    async def _gather_context(self, agent_id: AgentId, niche_key: str) -> ReasoningContext | None:
        if self._reasoning is None:
            return None
        try:
            return await asyncio.wait_for(
                self._reasoning.gather_context(agent_id, niche_key),
                timeout=self._context_timeout,
            )
        except Exception as e:
            logger.debug("Skipping reasoning context for %s: %s", agent_id, e)
            return None

    def _niche_key_for(self, agent_id: AgentId, msg: InboundMessage) -> str:
        for entry in self._store.agents:
            if entry.agent_id == agent_id:
                return entry.niche_key
        return self._match_niche(msg).key

    # ── Background reasoning logs (never awaited by a pass) ──────

    def _spawn_background(self, coro: Awaitable[None]) -> None:
        task = asyncio.ensure_future(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    @property
    def background_tasks(self) -> int:
        return len(self._background)

    async def wait_background(self) -> None:
        """Let outstanding reasoning logs finish (shutdown and tests)."""
        if self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)


def build_swarm_manager(
    store: SwarmStore,
    config: TeamElitesSettings = settings,
    gateway: GatewayClient | None = None,
    hub: HubClient | None = None,
    event_bus: EventBus | None = None,
) -> SwarmManager:
    """A keyword-routed manager, with a reasoning bridge when ``config`` enables one."""
    return SwarmManager(
        store,
        match_niche,
        reasoning=reasoning_from_settings(store, config, gateway=gateway, hub=hub),
        event_bus=event_bus,
    )
