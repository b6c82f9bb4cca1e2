"""SwarmStore — the multi-agent registry and MAP-Elites archive.

One JSON document per data directory holds the agent directory, the
current elite for every niche, routing counters, and the ids of the
Hub/Gateway objects the swarm created. ``mode='single'`` keeps the old
one-agent behavior, and a legacy single-agent document is migrated
automatically the first time the store is opened.

The store is single-writer: every mutator rewrites the whole file
synchronously before returning, and nothing awaits between a mutation and
its write. Concurrent writers from other processes are not supported.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any

import orjson
from pydantic import ConfigDict, Field, ValidationError
from pydantic.alias_generators import to_camel

from teamelites.config import settings
from teamelites.exceptions import PersistenceError
from teamelites.types import (
    AgentId,
    CamelModel,
    NicheDescriptor,
    NicheKey,
    SwarmAgentEntry,
    SwarmMode,
    TeamBlueprint,
    utc_now_iso,
)

logger = logging.getLogger(__name__)

REGISTRY_FILE = "swarm-registry.json"
LEGACY_FILE = "lettabot-agent.json"
SCHEMA_VERSION = 1


class SwarmRegistry(CamelModel):
    """The full persisted registry document."""

    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, extra="allow",
    )

    schema_version: int = SCHEMA_VERSION
    mode: SwarmMode = SwarmMode.SINGLE
    archive_ready: bool = False

    # Routing telemetry
    route_success_count: int = 0
    route_fallback_count: int = 0
    route_success_by_niche: dict[NicheKey, int] = Field(default_factory=dict)
    route_fallback_by_niche: dict[NicheKey, int] = Field(default_factory=dict)
    unserved_niche_counts: dict[NicheKey, int] = Field(default_factory=dict)
    last_unserved_at: dict[NicheKey, str] = Field(default_factory=dict)

    agents: list[SwarmAgentEntry] = Field(default_factory=list)
    blueprints: list[TeamBlueprint] = Field(default_factory=list)
    generation: int = 0

    # Hub archive identity
    hub_agent_id: str | None = None
    hub_workspace_id: str | None = None
    niche_problems: dict[NicheKey, str] = Field(default_factory=dict)

    # Reasoning bridge state
    reasoning_workspace_id: str | None = None
    reasoning_session_id: str | None = None
    reasoning_problem_id: str | None = None
    agent_hub_ids: dict[AgentId, str] = Field(default_factory=dict)

    # Single-mode backward compatibility
    agent_id: str | None = None
    conversation_id: str | None = None
    base_url: str | None = None
    created_at: str | None = None
    last_used_at: str | None = None


class RouteStats(CamelModel):
    success_count: int = 0
    fallback_count: int = 0
    success_by_niche: dict[NicheKey, int] = Field(default_factory=dict)
    fallback_by_niche: dict[NicheKey, int] = Field(default_factory=dict)
    unserved_by_niche: dict[NicheKey, int] = Field(default_factory=dict)


# ── Routing target (exhaustive view of the mode) ─────────────────


@dataclass(frozen=True)
class SingleTarget:
    """Every message goes to one agent (or nowhere when unset)."""

    agent_id: AgentId | None


@dataclass(frozen=True)
class SwarmTarget:
    """Messages are routed by exact niche key."""

    agents_by_niche: dict[NicheKey, AgentId] = field(default_factory=dict)


RoutingTarget = SingleTarget | SwarmTarget


class SwarmStore:
    """JSON-backed registry of swarm agents and elite blueprints."""

    def __init__(self, data_dir: Path | str | None = None) -> None:
        self._dir = Path(data_dir) if data_dir is not None else settings.data_dir
        self._path = self._dir / REGISTRY_FILE
        self._data = self._load()

    @property
    def path(self) -> Path:
        return self._path

    @property
    def data(self) -> SwarmRegistry:
        return self._data

    # ── Load / Save ──────────────────────────────────────────────

    def _load(self) -> SwarmRegistry:
        if self._path.exists():
            try:
                return SwarmRegistry.model_validate_json(self._path.read_bytes())
            except (OSError, ValueError, ValidationError) as e:
                logger.warning("Failed to load swarm registry %s: %s", self._path, e)

        legacy_path = self._dir / LEGACY_FILE
        if legacy_path.exists():
            try:
                registry = self._migrate_legacy(legacy_path)
            except (OSError, ValueError, PersistenceError) as e:
                logger.warning("Failed to migrate legacy store %s: %s", legacy_path, e)
            else:
                logger.info("Migrated legacy agent store %s", legacy_path)
                self._data = registry
                self._save()
                return registry

        return SwarmRegistry()

    @staticmethod
    def _migrate_legacy(legacy_path: Path) -> SwarmRegistry:
        legacy = orjson.loads(legacy_path.read_bytes())
        if not isinstance(legacy, dict):
            raise PersistenceError(f"legacy store is not an object: {type(legacy).__name__}")
        return SwarmRegistry(
            mode=SwarmMode.SINGLE,
            agent_id=legacy.get("agentId") or None,
            conversation_id=legacy.get("conversationId") or None,
            base_url=legacy.get("baseUrl"),
            created_at=legacy.get("createdAt"),
            last_used_at=legacy.get("lastUsedAt"),
        )

    def _save(self) -> None:
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            self._path.write_text(
                self._data.model_dump_json(by_alias=True, exclude_none=True, indent=2),
                encoding="utf-8",
            )
        except OSError as e:
            logger.error("Failed to save swarm registry %s: %s", self._path, e)

    def reload(self) -> None:
        """Re-read the registry from disk, discarding in-memory state."""
        self._data = self._load()

    # ── Mode ─────────────────────────────────────────────────────

    @property
    def mode(self) -> SwarmMode:
        return self._data.mode

    @mode.setter
    def mode(self, mode: SwarmMode | str) -> None:
        self._data.mode = SwarmMode(mode)
        self._save()

    def routing_target(self) -> RoutingTarget:
        if self._data.mode == SwarmMode.SINGLE:
            return SingleTarget(agent_id=self.agent_id)
        return SwarmTarget(
            agents_by_niche={a.niche_key: a.agent_id for a in self._data.agents}
        )

    # ── Single-mode backward compat ──────────────────────────────

    @property
    def agent_id(self) -> str | None:
        return self._data.agent_id or settings.agent_id or None

    @agent_id.setter
    def agent_id(self, agent_id: str | None) -> None:
        now = utc_now_iso()
        self._data.agent_id = agent_id
        self._data.last_used_at = now
        if agent_id and not self._data.created_at:
            self._data.created_at = now
        self._save()

    @property
    def conversation_id(self) -> str | None:
        return self._data.conversation_id or None

    @conversation_id.setter
    def conversation_id(self, conversation_id: str | None) -> None:
        self._data.conversation_id = conversation_id
        self._save()

    @property
    def base_url(self) -> str | None:
        return self._data.base_url

    @base_url.setter
    def base_url(self, url: str | None) -> None:
        self._data.base_url = url
        self._save()

    # ── Agent directory ──────────────────────────────────────────

    @property
    def agents(self) -> list[SwarmAgentEntry]:
        return list(self._data.agents)

    def add_agent(self, entry: SwarmAgentEntry) -> None:
        self._data.agents.append(entry)
        self._save()

    def remove_agent(self, agent_id: AgentId) -> None:
        self._data.agents = [a for a in self._data.agents if a.agent_id != agent_id]
        self._save()

    def get_agent_for_niche(self, niche: NicheDescriptor) -> SwarmAgentEntry | None:
        """Exact niche-key match only; there is no nearest-niche fallback."""
        for entry in self._data.agents:
            if entry.niche_key == niche.key:
                return entry
        return None

    def set_agent_for_niche(
        self, agent_id: AgentId, blueprint_id: str, niche_key: NicheKey,
    ) -> SwarmAgentEntry:
        """Bind ``agent_id`` to a niche, keeping createdAt/conversationId on update."""
        for i, existing in enumerate(self._data.agents):
            if existing.niche_key == niche_key:
                entry = SwarmAgentEntry(
                    agent_id=agent_id,
                    blueprint_id=blueprint_id,
                    niche_key=niche_key,
                    conversation_id=existing.conversation_id,
                    created_at=existing.created_at,
                )
                self._data.agents[i] = entry
                break
        else:
            entry = SwarmAgentEntry(
                agent_id=agent_id, blueprint_id=blueprint_id, niche_key=niche_key,
            )
            self._data.agents.append(entry)
        self._save()
        return entry

    # ── Archive (one elite per niche) ────────────────────────────

    @property
    def blueprints(self) -> list[TeamBlueprint]:
        return list(self._data.blueprints)

    def set_blueprint(self, blueprint: TeamBlueprint) -> None:
        """Replace the elite for ``blueprint.niche.key`` or add a new one."""
        for i, existing in enumerate(self._data.blueprints):
            if existing.niche.key == blueprint.niche.key:
                self._data.blueprints[i] = blueprint
                break
        else:
            self._data.blueprints.append(blueprint)
        self._save()

    def get_elite(self, niche: NicheDescriptor) -> TeamBlueprint | None:
        for bp in self._data.blueprints:
            if bp.niche.key == niche.key:
                return bp
        return None

    @property
    def generation(self) -> int:
        return self._data.generation

    @generation.setter
    def generation(self, generation: int) -> None:
        self._data.generation = generation
        self._save()

    @property
    def archive_ready(self) -> bool:
        return self._data.archive_ready

    @archive_ready.setter
    def archive_ready(self, ready: bool) -> None:
        self._data.archive_ready = ready
        self._save()

    # ── Routing telemetry ────────────────────────────────────────

    def increment_route_success(self, niche_key: NicheKey) -> None:
        self._data.route_success_count += 1
        _bump(self._data.route_success_by_niche, niche_key)
        self._save()

    def increment_route_fallback(self, niche_key: NicheKey) -> None:
        self._data.route_fallback_count += 1
        _bump(self._data.route_fallback_by_niche, niche_key)
        self._save()

    def increment_unserved_niche(self, niche_key: NicheKey) -> None:
        _bump(self._data.unserved_niche_counts, niche_key)
        self._data.last_unserved_at[niche_key] = datetime.utcnow().isoformat()
        self._save()

    def get_unserved_niche_count(self, niche_key: NicheKey) -> int:
        return self._data.unserved_niche_counts.get(niche_key, 0)

    def get_route_stats(self) -> RouteStats:
        return RouteStats(
            success_count=self._data.route_success_count,
            fallback_count=self._data.route_fallback_count,
            success_by_niche=dict(self._data.route_success_by_niche),
            fallback_by_niche=dict(self._data.route_fallback_by_niche),
            unserved_by_niche=dict(self._data.unserved_niche_counts),
        )

    def chronically_unserved(self, threshold: int = 3) -> list[NicheKey]:
        """Niches with at least ``threshold`` misses and still no agent, worst first."""
        served = {a.niche_key for a in self._data.agents}
        keys = [
            key for key, count in self._data.unserved_niche_counts.items()
            if count >= threshold and key not in served
        ]
        return sorted(keys, key=lambda k: self._data.unserved_niche_counts[k], reverse=True)

    # ── Hub identity ─────────────────────────────────────────────

    @property
    def hub_agent_id(self) -> str | None:
        return self._data.hub_agent_id

    @hub_agent_id.setter
    def hub_agent_id(self, agent_id: str | None) -> None:
        self._data.hub_agent_id = agent_id
        self._save()

    @property
    def hub_workspace_id(self) -> str | None:
        return self._data.hub_workspace_id

    @hub_workspace_id.setter
    def hub_workspace_id(self, workspace_id: str | None) -> None:
        self._data.hub_workspace_id = workspace_id
        self._save()

    def niche_problem(self, niche_key: NicheKey) -> str | None:
        return self._data.niche_problems.get(niche_key)

    def set_niche_problem(self, niche_key: NicheKey, problem_id: str) -> None:
        self._data.niche_problems[niche_key] = problem_id
        self._save()

    # ── Reasoning bridge state ───────────────────────────────────

    @property
    def reasoning_session_id(self) -> str | None:
        return self._data.reasoning_session_id

    @reasoning_session_id.setter
    def reasoning_session_id(self, session_id: str | None) -> None:
        self._data.reasoning_session_id = session_id
        self._save()

    @property
    def reasoning_workspace_id(self) -> str | None:
        return self._data.reasoning_workspace_id

    @reasoning_workspace_id.setter
    def reasoning_workspace_id(self, workspace_id: str | None) -> None:
        self._data.reasoning_workspace_id = workspace_id
        self._save()

    @property
    def reasoning_problem_id(self) -> str | None:
        return self._data.reasoning_problem_id

    @reasoning_problem_id.setter
    def reasoning_problem_id(self, problem_id: str | None) -> None:
        self._data.reasoning_problem_id = problem_id
        self._save()

    def get_agent_hub_id(self, agent_id: AgentId) -> str | None:
        return self._data.agent_hub_ids.get(agent_id)

    def set_agent_hub_id(self, agent_id: AgentId, hub_id: str) -> None:
        self._data.agent_hub_ids[agent_id] = hub_id
        self._save()

    def summary(self) -> dict[str, Any]:
        return {
            "mode": self._data.mode.value,
            "generation": self._data.generation,
            "agents": len(self._data.agents),
            "elites": len(self._data.blueprints),
            "archive_ready": self._data.archive_ready,
            "route_success": self._data.route_success_count,
            "route_fallback": self._data.route_fallback_count,
        }


def _bump(counter: dict[str, int], key: str) -> None:
    counter[key] = counter.get(key, 0) + 1
