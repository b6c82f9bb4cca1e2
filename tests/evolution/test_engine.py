"""Tests for the EvolutionEngine."""

import random

import orjson
import pytest

import teamelites.evolution.engine as engine_module
from teamelites.events.bus import EventBus
from teamelites.events.telemetry import read_swarm_events
from teamelites.evolution.engine import EvolutionEngine, GenerationReport, genesis_blueprint
from teamelites.evolution.evaluator import ExecutionResult, ReplayEvaluator
from teamelites.evolution.fitness import FitnessInput
from teamelites.exceptions import HubError, ProvisioningError
from teamelites.provisioning import DefaultSwarmProvisioner
from teamelites.types import EvolutionConfig, NicheDescriptor

CODING = NicheDescriptor.of("telegram", "coding")
RESEARCH = NicheDescriptor.of("telegram", "research")


class FixedEvaluator:
    """Every candidate gets the same raw scores."""

    def __init__(self, value: float = 0.8):
        self.value = value
        self.seen = []

    async def evaluate(self, blueprint):
        self.seen.append(blueprint)
        v = self.value
        return FitnessInput(
            task_completion=v, review_score=v, reasoning_depth=v,
            consensus_speed=v, cost_efficiency=v,
        )


class FakeProvisioner:
    def __init__(self, fail: bool = False):
        self.fail = fail
        self.provisioned = []

    async def provision_niche_agent(self, blueprint):
        if self.fail:
            raise ProvisioningError("service down")
        self.provisioned.append(blueprint)
        return f"agent-{blueprint.niche.key}"


def _engine(hub, store, **kwargs):
    kwargs.setdefault("evaluator", FixedEvaluator())
    kwargs.setdefault("rng", random.Random(1))
    return EvolutionEngine(hub, store, **kwargs)


# ── Archive setup ────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_initialize_archive(fake_hub, store):
    engine = _engine(fake_hub, store)

    await engine.initialize_archive([CODING, RESEARCH])

    assert fake_hub.ops() == ["register", "create_workspace", "create_problem", "create_problem"]
    assert fake_hub.calls[0][1] == {"name": "TEAM-Elites-Coordinator", "role": "coordinator"}
    assert fake_hub.calls[1][1]["name"] == "team-elites-archive"
    assert fake_hub.calls[2][1]["title"] == "niche:telegram-coding"
    assert store.archive_ready
    assert store.hub_agent_id
    assert store.niche_problem("telegram-coding")
    assert store.niche_problem("telegram-research")


@pytest.mark.asyncio
async def test_initialize_archive_is_idempotent(fake_hub, store):
    engine = _engine(fake_hub, store)
    await engine.initialize_archive([CODING])
    problem = store.niche_problem("telegram-coding")

    await engine.initialize_archive([CODING])
    assert fake_hub.ops().count("create_problem") == 1
    assert fake_hub.ops().count("register") == 1
    assert store.niche_problem("telegram-coding") == problem

    await engine.initialize_archive([CODING, RESEARCH])
    assert fake_hub.ops().count("create_problem") == 2


@pytest.mark.asyncio
async def test_initialize_archive_failure_keeps_partial_progress(fake_hub, store):
    fake_hub.fail_on["create_problem"] = 1
    engine = _engine(fake_hub, store)

    with pytest.raises(HubError):
        await engine.initialize_archive([CODING])
    assert store.hub_workspace_id
    assert not store.archive_ready

    await engine.initialize_archive([CODING])
    assert fake_hub.ops().count("create_workspace") == 1
    assert store.archive_ready


# ── Pipeline steps ───────────────────────────────────────────────


def test_genesis_blueprint():
    bp = genesis_blueprint(CODING)
    assert bp.generation == 0
    assert bp.parent_ids == []
    assert len(bp.agents) == 1
    assert bp.coordinator_count == 1
    assert "coding" in bp.agents[0].system_prompt
    assert "telegram" in bp.agents[0].system_prompt
    assert bp.niche == CODING


def test_select_parents_uses_elite_when_present(fake_hub, store, blueprint_factory):
    elite = blueprint_factory(generation=3)
    store.set_blueprint(elite)
    engine = _engine(fake_hub, store)

    niche, parent = engine.select_parents([CODING])
    assert niche == CODING
    assert parent.id == elite.id


def test_select_parents_falls_back_to_genesis(fake_hub, store):
    niche, parent = _engine(fake_hub, store).select_parents([RESEARCH])
    assert niche == RESEARCH
    assert parent.generation == 0


def test_select_parents_requires_niches(fake_hub, store):
    with pytest.raises(ValueError):
        _engine(fake_hub, store).select_parents([])


def test_variate_targets_niche(fake_hub, store, blueprint_factory):
    parent = blueprint_factory(generation=2)
    child = _engine(fake_hub, store).variate(parent, CODING)
    assert child.generation == 3
    assert child.parent_ids == [parent.id]
    assert child.niche == CODING


def test_variate_with_crossover(fake_hub, store, blueprint_factory):
    other = blueprint_factory(domain="research", generation=4)
    store.set_blueprint(other)
    engine = _engine(fake_hub, store, config=EvolutionConfig(crossover_rate=1.0))

    parent = blueprint_factory(generation=1)
    child = engine.variate(parent, CODING)

    assert child.parent_ids == [parent.id, other.id]
    assert child.generation == 5
    assert child.niche == CODING


@pytest.mark.asyncio
async def test_evaluate_applies_weights(fake_hub, store, blueprint_factory):
    engine = _engine(fake_hub, store, evaluator=FixedEvaluator(1.0))
    scores = await engine.evaluate(blueprint_factory())
    assert scores.composite == pytest.approx(1.0)


@pytest.mark.asyncio
async def test_submit_claims_and_proposes(fake_hub, store, blueprint_factory):
    bp = blueprint_factory(generation=2, composite=0.5)
    proposal_id = await _engine(fake_hub, store).submit(bp, "prob-x")

    assert proposal_id.startswith("prop-")
    claim = fake_hub.calls[0][1]
    assert claim == {"problem_id": "prob-x", "branch_id": f"gen2-{bp.id[:8]}"}
    proposal = fake_hub.calls[1][1]
    assert proposal["title"] == f"Gen-2: {bp.name}"
    payload = orjson.loads(proposal["description"])
    assert payload["blueprint"]["id"] == bp.id
    assert payload["fitness"]["composite"] == 0.5


# ── Generations ──────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_first_generation_fills_empty_niche(fake_hub, store):
    provisioner = FakeProvisioner()
    engine = _engine(fake_hub, store, provisioner=provisioner)
    await engine.initialize_archive([CODING])

    report = await engine.run_generation([CODING])

    assert isinstance(report, GenerationReport)
    assert report.candidates == 1
    assert report.merged == 1
    elite = store.get_elite(CODING)
    assert elite.generation == 1
    assert elite.fitness.composite == pytest.approx(0.8)
    assert elite.hub_refs.proposal_id
    assert elite.hub_refs.problem_id == store.niche_problem("telegram-coding")
    assert store.generation == 1
    assert store.get_agent_for_niche(CODING).agent_id == "agent-telegram-coding"
    assert store.get_agent_for_niche(CODING).blueprint_id == elite.id

    assert fake_hub.ops()[-4:] == [
        "claim_problem", "create_proposal", "review_proposal", "merge_proposal",
    ]
    review = fake_hub.calls[-2][1]
    assert review["verdict"] == "approve"
    assert review["comment"] == "Fitness exceeds current elite"

    events = [e["event"] for e in read_swarm_events()]
    assert events == [
        "evolution_candidate_evaluated",
        "provision_merge_success",
        "evolution_candidate_merged",
    ]


@pytest.mark.asyncio
async def test_worse_candidate_is_rejected(fake_hub, store, blueprint_factory):
    incumbent = blueprint_factory(generation=3, composite=0.9)
    store.set_blueprint(incumbent)
    engine = _engine(fake_hub, store, evaluator=FixedEvaluator(0.2))
    await engine.initialize_archive([CODING])

    report = await engine.run_generation([CODING])

    assert report.rejected == 1
    assert report.merged == 0
    assert store.get_elite(CODING).id == incumbent.id
    assert "merge_proposal" not in fake_hub.ops()
    review = [args for op, args in fake_hub.calls if op == "review_proposal"][0]
    assert review["verdict"] == "request-changes"
    assert review["comment"] == "Fitness below current elite"


@pytest.mark.asyncio
async def test_equal_candidate_keeps_incumbent(fake_hub, store, blueprint_factory):
    engine = _engine(fake_hub, store, evaluator=FixedEvaluator(0.5))
    scores = await engine.evaluate(blueprint_factory())
    incumbent = blueprint_factory(generation=1).model_copy(update={"fitness": scores})
    store.set_blueprint(incumbent)
    await engine.initialize_archive([CODING])

    report = await engine.run_generation([CODING])

    assert report.rejected == 1
    assert store.get_elite(CODING).id == incumbent.id


@pytest.mark.asyncio
async def test_hub_failure_abandons_only_that_candidate(fake_hub, store):
    engine = _engine(fake_hub, store, config=EvolutionConfig(population_size=2))
    await engine.initialize_archive([CODING, RESEARCH])
    fake_hub.fail_on["merge_proposal"] = 1

    report = await engine.run_generation([CODING, RESEARCH])

    assert report.candidates == 2
    assert report.failed == 1
    assert report.merged == 1
    assert len(store.blueprints) == 1
    assert len(report.errors) == 1
    failed = [e for e in read_swarm_events() if e["event"] == "evolution_candidate_failed"]
    assert len(failed) == 1


@pytest.mark.asyncio
async def test_earlier_merges_survive_later_failure(fake_hub, store):
    engine = _engine(fake_hub, store, config=EvolutionConfig(population_size=3))
    niches = [CODING, RESEARCH, NicheDescriptor.of("slack", "general")]
    await engine.initialize_archive(niches)

    report = await engine.run_generation(niches)
    merged_before = {bp.niche.key: bp.id for bp in store.blueprints}
    assert report.merged == 3 - report.rejected

    fake_hub.fail_on["claim_problem"] = -1
    report = await engine.run_generation(niches)

    assert report.failed == 3
    assert {bp.niche.key: bp.id for bp in store.blueprints} == merged_before


@pytest.mark.asyncio
async def test_provisioning_failure_keeps_merge(fake_hub, store):
    engine = _engine(fake_hub, store, provisioner=FakeProvisioner(fail=True))
    await engine.initialize_archive([CODING])

    report = await engine.run_generation([CODING])

    assert report.merged == 1
    assert store.get_elite(CODING) is not None
    assert store.get_agent_for_niche(CODING) is None
    failures = [e for e in read_swarm_events() if e["event"] == "provision_merge_failed"]
    assert failures[0]["error"] == "service down"


@pytest.mark.asyncio
async def test_provisioning_skipped_at_capacity(fake_hub, store):
    store.set_agent_for_niche("agent-x", "bp-x", "slack-general")
    provisioner = FakeProvisioner()
    engine = _engine(fake_hub, store, provisioner=provisioner, config=EvolutionConfig(max_agents=1))
    await engine.initialize_archive([CODING])

    report = await engine.run_generation([CODING])

    assert report.merged == 1
    assert provisioner.provisioned == []
    assert [e["event"] for e in read_swarm_events()].count("provision_skipped_capacity") == 1


@pytest.mark.asyncio
async def test_niche_without_problem_is_skipped(fake_hub, store):
    engine = _engine(fake_hub, store)

    report = await engine.run_generation([CODING])

    assert report.skipped == 1
    assert report.candidates == 0
    assert fake_hub.calls == []


@pytest.mark.asyncio
async def test_iterations_capped_by_niche_count(fake_hub, store):
    evaluator = FixedEvaluator()
    engine = _engine(fake_hub, store, evaluator=evaluator, config=EvolutionConfig(population_size=5))
    await engine.initialize_archive([CODING])

    report = await engine.run_generation([CODING])

    assert report.candidates == 1
    assert len(evaluator.seen) == 1


@pytest.mark.asyncio
async def test_lineage_grows_over_generations(fake_hub, store):
    engine = _engine(fake_hub, store, evaluator=FixedEvaluator(0.1))
    await engine.initialize_archive([CODING])
    await engine.run_generation([CODING])
    first = store.get_elite(CODING)

    engine._evaluator = FixedEvaluator(0.9)
    await engine.run_generation([CODING])
    second = store.get_elite(CODING)

    assert second.generation == first.generation + 1
    assert second.parent_ids == [first.id]
    assert store.generation == second.generation
    assert len(engine.history()) == 2


@pytest.mark.asyncio
async def test_bus_events(fake_hub, store):
    bus = EventBus()
    engine = _engine(fake_hub, store, event_bus=bus)
    await engine.initialize_archive([CODING])

    await engine.run_generation([CODING])

    topics = [e.topic for e in reversed(bus.history())]
    assert topics == [
        "evolution.generation_started",
        "evolution.candidate_merged",
        "evolution.generation_completed",
    ]


@pytest.mark.asyncio
async def test_pipeline_steps_on_empty_archive(fake_hub, store):
    engine = EvolutionEngine(fake_hub, store, rng=random.Random(11))
    niches = [NicheDescriptor(channel="telegram", domain="coding", key="telegram-coding")]

    niche, parent = engine.select_parents(niches)
    assert niche.key == "telegram-coding"
    assert parent.generation == 0
    assert parent.parent_ids == []

    child = engine.variate(parent, niche)
    assert child.generation == 1
    assert child.parent_ids == [parent.id]

    fitness = await engine.evaluate(child)
    assert 0.0 <= fitness.composite <= 1.0
    assert store.get_elite(niche) is None

    await engine.initialize_archive(niches)
    await engine.run_generation(niches)
    assert store.get_elite(niche).generation == 1


class UnreachableAgentService:
    async def find_agent_by_name(self, name):
        raise ConnectionError("agent API unreachable")

    async def agent_exists(self, agent_id):
        return True

    async def create_agent(self, name, model, system_prompt, memory_blocks):
        return "never"


class CrashingProvisioner:
    async def provision_niche_agent(self, blueprint):
        raise RuntimeError("provisioner bug")


class CrashingEvaluator:
    async def evaluate(self, blueprint):
        raise TimeoutError("evaluation timed out")


@pytest.mark.asyncio
async def test_provisioning_lookup_failure_keeps_generation_going(fake_hub, store):
    engine = _engine(
        fake_hub, store,
        provisioner=DefaultSwarmProvisioner(UnreachableAgentService()),
        config=EvolutionConfig(population_size=2),
    )
    await engine.initialize_archive([CODING, RESEARCH])

    report = await engine.run_generation([CODING, RESEARCH])

    assert report.candidates == 2
    assert report.failed == 0
    assert report.merged + report.rejected == 2
    assert report.merged >= 1
    assert store.agents == []
    failures = [e for e in read_swarm_events() if e["event"] == "provision_merge_failed"]
    assert len(failures) == report.merged
    assert "agent API unreachable" in failures[0]["error"]


@pytest.mark.asyncio
async def test_unexpected_provisioner_error_keeps_merge(fake_hub, store):
    engine = _engine(fake_hub, store, provisioner=CrashingProvisioner())
    await engine.initialize_archive([CODING])

    report = await engine.run_generation([CODING])

    assert report.merged == 1
    assert store.get_elite(CODING).generation == 1
    assert store.get_agent_for_niche(CODING) is None


@pytest.mark.asyncio
async def test_evaluator_error_fails_only_that_candidate(fake_hub, store):
    engine = _engine(fake_hub, store, evaluator=CrashingEvaluator())
    await engine.initialize_archive([CODING])

    report = await engine.run_generation([CODING])

    assert report.failed == 1
    assert "evaluation timed out" in report.errors[0]
    assert store.get_elite(CODING) is None
    assert "claim_problem" not in fake_hub.ops()


@pytest.mark.asyncio
async def test_reviewer_error_does_not_abort_generation(fake_hub, store):
    async def executor(bp, prompt):
        return ExecutionResult(text="ok", latency_s=1.0)

    async def reviewer(bp, case, result):
        raise TimeoutError("reviewer timed out")

    evaluator = ReplayEvaluator(executor=executor, reviewer=reviewer)
    engine = _engine(fake_hub, store, evaluator=evaluator)
    await engine.initialize_archive([CODING])

    report = await engine.run_generation([CODING])

    assert report.failed == 0
    assert report.merged == 1
    assert store.get_elite(CODING).fitness.composite == 0.0


def test_crossover_child_is_also_mutated(fake_hub, store, blueprint_factory, monkeypatch):
    mutated = []
    real_apply = engine_module.apply_variation

    def recording_apply(parent, *args, **kwargs):
        mutated.append(parent)
        return real_apply(parent, *args, **kwargs)

    monkeypatch.setattr(engine_module, "apply_variation", recording_apply)
    other = blueprint_factory(domain="research", generation=4)
    store.set_blueprint(other)
    engine = _engine(fake_hub, store, config=EvolutionConfig(crossover_rate=1.0))

    parent = blueprint_factory(generation=1)
    child = engine.variate(parent, CODING)

    assert len(mutated) == 1
    assert mutated[0].parent_ids == [parent.id, other.id]
    assert child.parent_ids == [parent.id, other.id]
    assert child.generation == 5
