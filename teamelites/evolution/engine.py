"""EvolutionEngine — one MAP-Elites generation over team blueprints.

Each generation runs ``min(population_size, len(niches))`` candidates,
strictly one after another:
  1. select a niche and its elite (or a genesis blueprint) as parent
  2. variate the parent into a child
  3. evaluate the child's fitness
  4. submit it to the Hub: claim a branch, open a proposal
  5. decide against the current elite and record the review verdict
  6. merge (persist as the new elite, provision the live agent) or reject

The Hub is the system of record: a blueprint becomes the elite only after
its proposal is merged. Any failure while handling a candidate abandons
only that candidate; elites merged earlier stay as they are and the next
candidate starts fresh.
"""

from __future__ import annotations

import logging
import random
import time
from datetime import datetime
from typing import Any, NamedTuple

import orjson
from pydantic import BaseModel, Field

from teamelites.coordination.hub import HubClient
from teamelites.events.bus import EventBus
from teamelites.events.telemetry import log_swarm_event
from teamelites.evolution.evaluator import BlueprintEvaluator, ReplayEvaluator
from teamelites.evolution.fitness import compute_fitness, is_elite_replacement
from teamelites.evolution.variation import (
    DEFAULT_CATALOG,
    VariationCatalog,
    apply_variation,
    prompt_crossover,
)
from teamelites.exceptions import CollaboratorError, HubError
from teamelites.provisioning.provisioner import SwarmProvisioner
from teamelites.registry.store import SwarmStore
from teamelites.types import (
    AgentRole,
    CoordinationStrategy,
    EvolutionConfig,
    FitnessScores,
    HubRefs,
    NicheDescriptor,
    SwarmAgentConfig,
    TeamBlueprint,
    new_blueprint_id,
    new_id,
)

COORDINATOR_NAME = "TEAM-Elites-Coordinator"
ARCHIVE_WORKSPACE = "team-elites-archive"
GENESIS_MODEL = "anthropic/claude-sonnet-4-5-20250929"

logger = logging.getLogger(__name__)


class Selection(NamedTuple):
    niche: NicheDescriptor
    parent: TeamBlueprint


class GenerationReport(BaseModel):
    """Summary of a single generation."""

    id: str = Field(default_factory=new_id)
    generation: int = 0
    candidates: int = 0
    merged: int = 0
    rejected: int = 0
    failed: int = 0
    skipped: int = 0
    merged_blueprint_ids: list[str] = Field(default_factory=list)
    errors: list[str] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=datetime.utcnow)
    duration_ms: float = 0.0

    def __repr__(self) -> str:
        return (
            f"GenerationReport(candidates={self.candidates}, merged={self.merged}, "
            f"rejected={self.rejected}, failed={self.failed})"
        )


def genesis_blueprint(niche: NicheDescriptor, rng: random.Random | None = None) -> TeamBlueprint:
    """Generation-0 parent for a niche that has no elite yet."""
    return TeamBlueprint(
        id=new_blueprint_id(rng),
        name=f"Genesis-{niche.key}",
        generation=0,
        parent_ids=[],
        agents=[
            SwarmAgentConfig(
                role=AgentRole.COORDINATOR,
                model=GENESIS_MODEL,
                system_prompt=(
                    f"You are a helpful assistant specialized in {niche.domain.value} "
                    f"tasks on {niche.channel}."
                ),
            )
        ],
        coordination_strategy=CoordinationStrategy.SEQUENTIAL,
        niche=niche,
        fitness=FitnessScores(),
        hub_refs=HubRefs(),
    )


class EvolutionEngine:
    """Generational search that commits elites through the Hub."""

    def __init__(
        self,
        hub: HubClient,
        store: SwarmStore,
        config: EvolutionConfig | None = None,
        provisioner: SwarmProvisioner | None = None,
        evaluator: BlueprintEvaluator | None = None,
        rng: random.Random | None = None,
        catalog: VariationCatalog = DEFAULT_CATALOG,
        event_bus: EventBus | None = None,
    ) -> None:
        self._hub = hub
        self._store = store
        self._config = config or EvolutionConfig()
        self._provisioner = provisioner
        self._evaluator = evaluator or ReplayEvaluator()
        self._rng = rng or random.Random()
        self._catalog = catalog
        self._event_bus = event_bus
        self._reports: list[GenerationReport] = []

    @property
    def config(self) -> EvolutionConfig:
        return self._config

    # ── Archive setup ────────────────────────────────────────────

    async def initialize_archive(self, niches: list[NicheDescriptor]) -> None:
        """Register, create the workspace and one problem per niche.

        Safe to call before every generation: only missing pieces are
        created, and their ids are kept in the store.
        """
        if not self._store.hub_agent_id:
            reg = await self._hub.register(COORDINATOR_NAME, "coordinator")
            self._store.hub_agent_id = _require(reg, "agentId", "register")

        if not self._store.hub_workspace_id:
            ws = await self._hub.create_workspace(
                ARCHIVE_WORKSPACE,
                "MAP-Elites quality-diversity archive for team blueprints",
            )
            self._store.hub_workspace_id = _require(ws, "workspaceId", "create_workspace")

        for niche in niches:
            if self._store.niche_problem(niche.key):
                continue
            prob = await self._hub.create_problem(
                self._store.hub_workspace_id,
                f"niche:{niche.key}",
                f"Niche for {niche.channel} {niche.domain.value} tasks",
            )
            self._store.set_niche_problem(niche.key, _require(prob, "problemId", "create_problem"))

        if not self._store.archive_ready:
            self._store.archive_ready = True

    # ── Pipeline steps ───────────────────────────────────────────

    def select_parents(self, niches: list[NicheDescriptor]) -> Selection:
        """Uniform niche choice; its elite, or a genesis blueprint, is the parent."""
        if not niches:
            raise ValueError("select_parents needs at least one niche")
        niche = self._rng.choice(niches)
        elite = self._store.get_elite(niche)
        return Selection(niche, elite if elite is not None else genesis_blueprint(niche, self._rng))

    def variate(self, parent: TeamBlueprint, niche: NicheDescriptor | None = None) -> TeamBlueprint:
        niche = niche or parent.niche
        partner = self._crossover_partner(niche)
        if partner is None:
            child = apply_variation(parent, rng=self._rng, catalog=self._catalog)
        else:
            # Crossover first, then mutate the blend; lineage keeps both parents.
            blended = prompt_crossover(parent, partner, self._rng)
            child = apply_variation(blended, rng=self._rng, catalog=self._catalog)
            child = child.model_copy(update={
                "generation": blended.generation,
                "parent_ids": list(blended.parent_ids),
            })
        return child.model_copy(update={
            "niche": niche,
            "name": f"{niche.key}-gen{child.generation}",
        })

    def _crossover_partner(self, niche: NicheDescriptor) -> TeamBlueprint | None:
        if self._config.crossover_rate <= 0 or self._rng.random() >= self._config.crossover_rate:
            return None
        others = [bp for bp in self._store.blueprints if bp.niche.key != niche.key]
        return self._rng.choice(others) if others else None

    async def evaluate(self, blueprint: TeamBlueprint) -> FitnessScores:
        raw = await self._evaluator.evaluate(blueprint)
        return compute_fitness(raw, self._config.fitness_weights)

    async def submit(self, blueprint: TeamBlueprint, problem_id: str) -> str:
        """Claim a lineage branch and open a proposal carrying the blueprint."""
        branch_id = f"gen{blueprint.generation}-{blueprint.id[:8]}"
        await self._hub.claim_problem(problem_id, branch_id)

        payload = orjson.dumps({
            "blueprint": blueprint.to_document(),
            "fitness": blueprint.fitness.to_document(),
        }).decode()
        result = await self._hub.create_proposal(
            problem_id,
            f"Gen-{blueprint.generation}: {blueprint.name}",
            branch_id,
            payload,
        )
        return _require(result, "proposalId", "create_proposal")

    # ── Generation ───────────────────────────────────────────────

    async def run_generation(self, niches: list[NicheDescriptor]) -> GenerationReport:
        start = time.monotonic()
        report = GenerationReport(generation=self._store.generation)
        iterations = min(self._config.population_size, len(niches))

        await self._emit("evolution.generation_started", {"niches": len(niches), "iterations": iterations})

        for _ in range(iterations):
            niche, parent = self.select_parents(niches)
            problem_id = self._store.niche_problem(niche.key)
            if not problem_id:
                report.skipped += 1
                continue

            report.candidates += 1
            child: TeamBlueprint | None = None
            try:
                child = self.variate(parent, niche)
                merged = await self._run_candidate(child, problem_id)
            except Exception as e:
                if not isinstance(e, CollaboratorError):
                    logger.warning("Candidate for %s failed: %s", niche.key, e, exc_info=True)
                report.failed += 1
                report.errors.append(f"{niche.key}: {e}")
                log_swarm_event("evolution_candidate_failed", {
                    "nicheKey": niche.key,
                    "blueprintId": child.id if child else None,
                    "error": str(e),
                })
                await self._emit("evolution.candidate_failed", {"niche": niche.key, "error": str(e)})
                continue

            if merged is not None:
                report.merged += 1
                report.merged_blueprint_ids.append(merged.id)
            else:
                report.rejected += 1

        report.generation = self._store.generation
        report.duration_ms = (time.monotonic() - start) * 1000
        self._reports.append(report)
        await self._emit("evolution.generation_completed", {
            "generation": report.generation,
            "candidates": report.candidates,
            "merged": report.merged,
            "rejected": report.rejected,
            "failed": report.failed,
            "duration_ms": round(report.duration_ms),
        })
        return report

    async def _run_candidate(self, child: TeamBlueprint, problem_id: str) -> TeamBlueprint | None:
        """Evaluate, submit, review and merge/reject one child. Returns it if merged."""
        niche = child.niche
        fitness = await self.evaluate(child)
        child = child.model_copy(update={"fitness": fitness})
        log_swarm_event("evolution_candidate_evaluated", {
            "nicheKey": niche.key,
            "blueprintId": child.id,
            "generation": child.generation,
            "composite": fitness.composite,
        })

        proposal_id = await self.submit(child, problem_id)

        elite = self._store.get_elite(niche)
        should_merge = elite is None or is_elite_replacement(fitness, elite.fitness)
        await self._hub.review_proposal(
            proposal_id,
            "approve" if should_merge else "request-changes",
            "Fitness exceeds current elite" if should_merge else "Fitness below current elite",
        )

        if not should_merge:
            log_swarm_event("evolution_candidate_rejected", {
                "nicheKey": niche.key,
                "blueprintId": child.id,
                "generation": child.generation,
                "composite": fitness.composite,
                "eliteComposite": elite.fitness.composite if elite else None,
            })
            await self._emit("evolution.candidate_rejected", {"niche": niche.key, "blueprint_id": child.id})
            return None

        await self._hub.merge_proposal(proposal_id)
        child = child.model_copy(update={
            "hub_refs": HubRefs(
                workspace_id=self._store.hub_workspace_id or "",
                problem_id=problem_id,
                proposal_id=proposal_id,
            ),
        })
        self._store.set_blueprint(child)
        self._store.generation = child.generation

        await self._provision(child)

        log_swarm_event("evolution_candidate_merged", {
            "nicheKey": niche.key,
            "blueprintId": child.id,
            "generation": child.generation,
            "composite": fitness.composite,
        })
        await self._emit("evolution.candidate_merged", {
            "niche": niche.key,
            "blueprint_id": child.id,
            "generation": child.generation,
            "composite": fitness.composite,
        })
        return child

    async def _provision(self, child: TeamBlueprint) -> None:
        """Bind a live agent to the new elite. Failures never undo the merge."""
        if self._provisioner is None:
            return

        niche = child.niche
        if (
            self._store.get_agent_for_niche(niche) is None
            and len(self._store.agents) >= self._config.max_agents
        ):
            log_swarm_event("provision_skipped_capacity", {
                "nicheKey": niche.key,
                "blueprintId": child.id,
                "maxAgents": self._config.max_agents,
            })
            return

        try:
            agent_id = await self._provisioner.provision_niche_agent(child)
        except Exception as e:
            log_swarm_event("provision_merge_failed", {
                "nicheKey": niche.key,
                "blueprintId": child.id,
                "error": str(e),
            })
            return

        self._store.set_agent_for_niche(agent_id, child.id, niche.key)
        log_swarm_event("provision_merge_success", {
            "nicheKey": niche.key,
            "blueprintId": child.id,
            "agentId": agent_id,
        })

    # ── History / events ─────────────────────────────────────────

    def history(self, limit: int = 10) -> list[GenerationReport]:
        return list(reversed(self._reports[-limit:]))

    async def _emit(self, topic: str, data: dict[str, Any]) -> None:
        if self._event_bus:
            await self._event_bus.emit(topic, data, source="evolution_engine")


def _require(result: Any, key: str, operation: str) -> str:
    value = result.get(key) if isinstance(result, dict) else None
    if not value:
        raise HubError(f"{operation} response missing {key!r}: {result!r}")
    return str(value)
