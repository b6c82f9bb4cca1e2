"""Swarm provisioning — create or reuse the live agent for a niche elite.

Agents are named deterministically from the niche key, so provisioning the
same niche twice reuses the existing agent instead of creating a second
one. The archive merge never waits on this succeeding: a failed provision
leaves the old binding in place until the next successful one.
"""

from __future__ import annotations

import logging
from typing import Protocol

from teamelites.events.telemetry import log_swarm_event
from teamelites.exceptions import ProvisioningError
from teamelites.types import AgentId, MemoryBlock, TeamBlueprint

logger = logging.getLogger(__name__)

AGENT_NAME_PREFIX = "teamelites-swarm-"


class AgentService(Protocol):
    """The agent execution service calls provisioning needs."""

    async def find_agent_by_name(self, name: str) -> AgentId | None: ...

    async def agent_exists(self, agent_id: AgentId) -> bool: ...

    async def create_agent(
        self,
        name: str,
        model: str | None,
        system_prompt: str,
        memory_blocks: list[MemoryBlock],
    ) -> AgentId: ...


class SwarmProvisioner(Protocol):
    async def provision_niche_agent(self, blueprint: TeamBlueprint) -> AgentId: ...


def agent_name_for(blueprint: TeamBlueprint) -> str:
    return f"{AGENT_NAME_PREFIX}{blueprint.niche.key}"


class DefaultSwarmProvisioner:
    """Provisions one agent per niche from the blueprint's primary slot."""

    def __init__(
        self,
        service: AgentService,
        model_fallback: str | None = None,
        default_memory: list[MemoryBlock] | None = None,
    ) -> None:
        self._service = service
        self._model_fallback = model_fallback
        self._default_memory = default_memory or []

    async def provision_niche_agent(self, blueprint: TeamBlueprint) -> AgentId:
        name = agent_name_for(blueprint)

        try:
            existing = await self._service.find_agent_by_name(name)
            alive = bool(existing) and await self._service.agent_exists(existing)
        except Exception as e:
            raise ProvisioningError(f"Could not look up agent {name}: {e}") from e

        if alive:
            log_swarm_event("provision_reuse_agent", {
                "nicheKey": blueprint.niche.key,
                "blueprintId": blueprint.id,
                "agentId": existing,
                "agentName": name,
            })
            return existing

        primary = blueprint.agents[0] if blueprint.agents else None
        model = (primary.model if primary else None) or self._model_fallback
        system_prompt = (primary.system_prompt if primary else "") or (
            f"You are a helpful assistant specialized in {blueprint.niche.domain.value} "
            f"tasks on {blueprint.niche.channel}."
        )
        memory = list(primary.memory_blocks) if primary and primary.memory_blocks else list(self._default_memory)

        try:
            agent_id = await self._service.create_agent(
                name=name, model=model, system_prompt=system_prompt, memory_blocks=memory,
            )
        except Exception as e:
            raise ProvisioningError(f"Could not create agent {name}: {e}") from e
        if not agent_id:
            raise ProvisioningError(f"Agent service returned no id for {name}")

        log_swarm_event("provision_create_agent", {
            "nicheKey": blueprint.niche.key,
            "blueprintId": blueprint.id,
            "agentId": agent_id,
            "agentName": name,
        })
        return agent_id
