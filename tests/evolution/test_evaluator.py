"""Tests for replay-based blueprint evaluation."""

import pytest

from teamelites.evolution.evaluator import (
    DEFAULT_CASES,
    EvalCase,
    ExecutionResult,
    ReplayEvaluator,
    structural_fitness,
)
from teamelites.evolution.fitness import compute_fitness
from teamelites.types import AgentRole, CoordinationStrategy, Domain, SwarmAgentConfig


@pytest.mark.asyncio
async def test_structural_fallback_without_executor(blueprint_factory):
    bp = blueprint_factory()
    raw = await ReplayEvaluator().evaluate(bp)
    assert raw == structural_fitness(bp)


def test_structural_fitness_is_deterministic(blueprint_factory):
    bp = blueprint_factory()
    assert structural_fitness(bp) == structural_fitness(bp.model_copy(deep=True))


def test_structural_fitness_empty_team_scores_zero(blueprint_factory):
    raw = structural_fitness(blueprint_factory(agents=[]))
    assert compute_fitness(raw).composite == 0.0


def test_structural_fitness_prefers_domain_specific_prompts(blueprint_factory):
    specific = blueprint_factory(agents=[
        SwarmAgentConfig(role=AgentRole.COORDINATOR, model="m", system_prompt="You do coding work."),
    ])
    vague = blueprint_factory(agents=[
        SwarmAgentConfig(role=AgentRole.COORDINATOR, model="m", system_prompt="You help."),
    ])
    assert structural_fitness(specific).task_completion > structural_fitness(vague).task_completion


def test_structural_fitness_single_agent_sequential_is_fastest_fit(blueprint_factory):
    seq = blueprint_factory()
    debate = seq.model_copy(update={"coordination_strategy": CoordinationStrategy.DEBATE})
    assert structural_fitness(seq).consensus_speed > structural_fitness(debate).consensus_speed


def test_cases_fall_back_to_general():
    evaluator = ReplayEvaluator(cases=[
        EvalCase(domain=Domain.GENERAL, prompt="hello", expected=["hi"]),
    ])
    cases = evaluator.cases_for(Domain.SCHEDULING)
    assert [c.prompt for c in cases] == ["hello"]


def test_default_cases_cover_every_domain():
    assert {c.domain for c in DEFAULT_CASES} == set(Domain)


@pytest.mark.asyncio
async def test_replay_scores_executor_output(blueprint_factory):
    prompts = []

    async def executor(bp, prompt):
        prompts.append(prompt)
        return ExecutionResult(text="Use dict.get( with a default", tokens=2000, turns=3, latency_s=3.0)

    evaluator = ReplayEvaluator(
        executor=executor,
        cases=[EvalCase(domain=Domain.CODING, prompt="fix it", expected=["get(", "default"])],
    )
    raw = await evaluator.evaluate(blueprint_factory())

    assert prompts == ["fix it"]
    assert raw.task_completion == 1.0
    assert raw.review_score == 1.0  # full completion counts as approve
    assert raw.reasoning_depth == 1.0
    assert raw.consensus_speed == pytest.approx(0.9)
    assert raw.cost_efficiency == pytest.approx(0.75)


@pytest.mark.asyncio
async def test_replay_partial_completion_is_comment(blueprint_factory):
    async def executor(bp, prompt):
        return ExecutionResult(text="only the first", tokens=0, turns=1, latency_s=1.0)

    evaluator = ReplayEvaluator(
        executor=executor,
        cases=[EvalCase(domain=Domain.CODING, prompt="p", expected=["first", "second"])],
    )
    raw = await evaluator.evaluate(blueprint_factory())
    assert raw.task_completion == 0.5
    assert raw.review_score == 0.5


@pytest.mark.asyncio
async def test_replay_uses_reviewer_verdict(blueprint_factory):
    async def executor(bp, prompt):
        return ExecutionResult(text="anything", latency_s=1.0)

    async def reviewer(bp, case, result):
        return "request-changes"

    evaluator = ReplayEvaluator(
        executor=executor,
        reviewer=reviewer,
        cases=[EvalCase(domain=Domain.CODING, prompt="p", expected=["anything"])],
    )
    raw = await evaluator.evaluate(blueprint_factory())
    assert raw.task_completion == 1.0
    assert raw.review_score == 0.0


@pytest.mark.asyncio
async def test_replay_executor_failure_scores_zero(blueprint_factory):
    async def executor(bp, prompt):
        raise RuntimeError("agent offline")

    evaluator = ReplayEvaluator(
        executor=executor,
        cases=[EvalCase(domain=Domain.CODING, prompt="p", expected=["x"])],
    )
    raw = await evaluator.evaluate(blueprint_factory())
    assert compute_fitness(raw).composite == 0.0


@pytest.mark.asyncio
async def test_replay_averages_over_cases(blueprint_factory):
    async def executor(bp, prompt):
        return ExecutionResult(text="alpha" if prompt == "a" else "", latency_s=1.0)

    evaluator = ReplayEvaluator(
        executor=executor,
        cases=[
            EvalCase(domain=Domain.CODING, prompt="a", expected=["alpha"]),
            EvalCase(domain=Domain.CODING, prompt="b", expected=["beta"]),
        ],
    )
    raw = await evaluator.evaluate(blueprint_factory())
    assert raw.task_completion == 0.5


@pytest.mark.asyncio
async def test_case_token_budget_overrides_default(blueprint_factory):
    async def executor(bp, prompt):
        return ExecutionResult(text="ok", tokens=500, latency_s=1.0)

    evaluator = ReplayEvaluator(
        executor=executor,
        cases=[EvalCase(domain=Domain.CODING, prompt="p", expected=["ok"], max_tokens=1000)],
    )
    raw = await evaluator.evaluate(blueprint_factory())
    assert raw.cost_efficiency == pytest.approx(0.5)


@pytest.mark.asyncio
async def test_reviewer_failure_scores_case_zero(blueprint_factory):
    async def executor(bp, prompt):
        return ExecutionResult(text="ok", latency_s=1.0)

    async def reviewer(bp, case, result):
        raise TimeoutError("reviewer timed out")

    evaluator = ReplayEvaluator(
        executor=executor,
        reviewer=reviewer,
        cases=[EvalCase(domain=Domain.CODING, prompt="p", expected=["ok"])],
    )
    raw = await evaluator.evaluate(blueprint_factory())
    assert compute_fitness(raw).composite == 0.0


@pytest.mark.asyncio
async def test_unknown_reviewer_verdict_scores_case_zero(blueprint_factory):
    async def executor(bp, prompt):
        return ExecutionResult(text="ok", latency_s=1.0)

    async def reviewer(bp, case, result):
        return "lgtm"

    evaluator = ReplayEvaluator(
        executor=executor,
        reviewer=reviewer,
        cases=[
            EvalCase(domain=Domain.CODING, prompt="p", expected=["ok"]),
            EvalCase(domain=Domain.CODING, prompt="q", expected=["ok"]),
        ],
    )
    raw = await evaluator.evaluate(blueprint_factory())
    assert raw.task_completion == 0.0
    assert raw.review_score == 0.0
