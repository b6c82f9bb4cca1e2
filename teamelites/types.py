"""Core types shared across all teamelites subsystems.

Persisted documents use camelCase keys so registries written by earlier
deployments load unchanged. Python attributes stay snake_case.
"""

from __future__ import annotations

import random
import string
import time
import uuid
from datetime import datetime
from enum import Enum
from typing import Any, TypeAlias

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel

# ── ID Types ──────────────────────────────────────────────────────────────────

AgentId: TypeAlias = str
BlueprintId: TypeAlias = str
ChannelId: TypeAlias = str
NicheKey: TypeAlias = str

_BASE36 = string.digits + string.ascii_lowercase


def new_id() -> str:
    return uuid.uuid4().hex[:12]


def _to_base36(value: int) -> str:
    if value == 0:
        return "0"
    digits = []
    while value:
        value, rem = divmod(value, 36)
        digits.append(_BASE36[rem])
    return "".join(reversed(digits))


def new_blueprint_id(rng: random.Random | None = None) -> BlueprintId:
    """Blueprint ids look like ``bp-<ms since epoch, base36>-<6 random chars>``."""
    rng = rng or random
    suffix = "".join(rng.choice(_BASE36) for _ in range(6))
    return f"bp-{_to_base36(int(time.time() * 1000))}-{suffix}"


def utc_now_iso() -> str:
    return datetime.utcnow().isoformat()


class CamelModel(BaseModel):
    """Base for models that persist with camelCase keys."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_document(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


# ── Niche Dimensions ─────────────────────────────────────────────────────────


class Domain(str, Enum):
    CODING = "coding"
    RESEARCH = "research"
    SCHEDULING = "scheduling"
    COMMUNICATION = "communication"
    GENERAL = "general"


class NicheDescriptor(CamelModel):
    """A (channel, domain) cell of the archive."""

    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, frozen=True,
    )

    channel: ChannelId
    domain: Domain
    key: NicheKey = ""

    @model_validator(mode="before")
    @classmethod
    def _derive_key(cls, data: Any) -> Any:
        if isinstance(data, dict) and not data.get("key"):
            domain = data.get("domain", "")
            domain = domain.value if isinstance(domain, Enum) else domain
            data = {**data, "key": f"{data.get('channel', '')}-{domain}"}
        return data

    @classmethod
    def of(cls, channel: ChannelId, domain: Domain | str) -> NicheDescriptor:
        return cls(channel=channel, domain=Domain(domain))


# ── Team Composition ─────────────────────────────────────────────────────────


class CoordinationStrategy(str, Enum):
    SEQUENTIAL = "sequential"
    PARALLEL = "parallel"
    DEBATE = "debate"
    PIPELINE = "pipeline"


class AgentRole(str, Enum):
    COORDINATOR = "coordinator"
    CONTRIBUTOR = "contributor"
    REVIEWER = "reviewer"
    SPECIALIST = "specialist"


class SkillsConfig(CamelModel):
    """Skill flags plus a free-form list of extra skills."""

    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, extra="allow",
    )

    cron_enabled: bool | None = None
    google_enabled: bool | None = None
    additional_skills: list[str] = Field(default_factory=list)


class MemoryBlock(BaseModel):
    label: str
    value: str


class SwarmAgentConfig(CamelModel):
    """One agent slot inside a team blueprint."""

    role: AgentRole = AgentRole.CONTRIBUTOR
    model: str
    system_prompt: str = ""
    skills: SkillsConfig = Field(default_factory=SkillsConfig)
    memory_blocks: list[MemoryBlock] = Field(default_factory=list)


# ── Fitness ──────────────────────────────────────────────────────────────────


class FitnessScores(CamelModel):
    composite: float = 0.0
    task_completion: float = 0.0
    review_score: float = 0.0
    reasoning_depth: float = 0.0
    consensus_speed: float = 0.0
    cost_efficiency: float = 0.0


class FitnessWeights(BaseModel):
    w1: float = 0.35  # task_completion
    w2: float = 0.25  # review_score
    w3: float = 0.15  # reasoning_depth
    w4: float = 0.10  # consensus_speed
    w5: float = 0.15  # cost_efficiency


DEFAULT_FITNESS_WEIGHTS = FitnessWeights()


# ── Team Blueprint (the genome) ──────────────────────────────────────────────


class HubRefs(CamelModel):
    workspace_id: str = ""
    problem_id: str = ""
    proposal_id: str | None = None
    consensus_marker_id: str | None = None


class TeamBlueprint(CamelModel):
    """An immutable team configuration — the unit of evolution.

    Variation operators never modify a blueprint in place; they derive a
    new one with ``model_copy(deep=True, update=...)``.
    """

    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, frozen=True,
    )

    id: BlueprintId = Field(default_factory=new_blueprint_id)
    name: str = ""
    generation: int = 0
    parent_ids: list[BlueprintId] = Field(default_factory=list)
    agents: list[SwarmAgentConfig] = Field(default_factory=list)
    coordination_strategy: CoordinationStrategy = CoordinationStrategy.SEQUENTIAL
    niche: NicheDescriptor
    fitness: FitnessScores = Field(default_factory=FitnessScores)
    hub_refs: HubRefs = Field(default_factory=HubRefs)

    @property
    def coordinator_count(self) -> int:
        return sum(1 for a in self.agents if a.role == AgentRole.COORDINATOR)


# ── Swarm Registry entries ───────────────────────────────────────────────────


class SwarmMode(str, Enum):
    SINGLE = "single"
    SWARM = "swarm"


class SwarmAgentEntry(CamelModel):
    """Binds one live agent to one niche."""

    agent_id: AgentId
    blueprint_id: BlueprintId
    niche_key: NicheKey
    conversation_id: str | None = None
    created_at: str = Field(default_factory=utc_now_iso)


# ── Messages ─────────────────────────────────────────────────────────────────


class InboundMessage(BaseModel):
    """A chat message delivered by a channel adapter."""

    channel: ChannelId
    chat_id: str
    user_id: str
    text: str = ""
    timestamp: datetime = Field(default_factory=datetime.utcnow)
    user_name: str | None = None
    message_id: str | None = None
    thread_id: str | None = None
    is_group: bool = False


# ── Evolution Configuration ──────────────────────────────────────────────────


class EvolutionConfig(BaseModel):
    interval_hours: float = 6.0
    population_size: int = 5  # candidates evaluated per generation
    max_agents: int = 25
    crossover_rate: float = 0.0
    fitness_weights: FitnessWeights = Field(default_factory=FitnessWeights)
