"""Blueprint evaluation — turn a candidate team into fitness components.

The ReplayEvaluator replays recorded test conversations for the
blueprint's domain through an injected executor (normally a thin wrapper
around the agent execution service) and scores what comes back. Without an
executor it falls back to a deterministic structural score of the
blueprint itself, so offline runs and tests still rank candidates
consistently.
"""

from __future__ import annotations

import logging
import time
from typing import Awaitable, Callable, Protocol

from pydantic import BaseModel, Field

from teamelites.evolution.fitness import FitnessInput, ReviewVerdict, normalize_review_score
from teamelites.types import AgentRole, CoordinationStrategy, Domain, TeamBlueprint

logger = logging.getLogger(__name__)


class EvalCase(BaseModel):
    """A recorded conversation turn with the phrases a good reply contains."""

    domain: Domain
    prompt: str
    expected: list[str] = Field(default_factory=list)
    max_tokens: int | None = None  # overrides the evaluator token budget


class ExecutionResult(BaseModel):
    text: str = ""
    tokens: int = 0
    turns: int = 1
    latency_s: float = 0.0


Executor = Callable[[TeamBlueprint, str], Awaitable[ExecutionResult]]
Reviewer = Callable[[TeamBlueprint, EvalCase, ExecutionResult], Awaitable[ReviewVerdict]]


class BlueprintEvaluator(Protocol):
    async def evaluate(self, blueprint: TeamBlueprint) -> FitnessInput: ...


DEFAULT_CASES: list[EvalCase] = [
    EvalCase(
        domain=Domain.CODING,
        prompt="My Python function raises KeyError when the dict is empty. How do I fix it?",
        expected=["get(", "default", "keyerror"],
    ),
    EvalCase(
        domain=Domain.CODING,
        prompt="Write a unit test for a function that reverses a string.",
        expected=["assert", "def test"],
    ),
    EvalCase(
        domain=Domain.RESEARCH,
        prompt="Summarize the evidence for spaced repetition improving recall.",
        expected=["study", "recall", "evidence"],
    ),
    EvalCase(
        domain=Domain.SCHEDULING,
        prompt="Move my Tuesday 3pm meeting to Thursday and remind me an hour before.",
        expected=["thursday", "remind"],
    ),
    EvalCase(
        domain=Domain.COMMUNICATION,
        prompt="Draft a short email declining a vendor proposal politely.",
        expected=["thank", "subject"],
    ),
    EvalCase(
        domain=Domain.GENERAL,
        prompt="What can you help me with?",
        expected=["help"],
    ),
]

# Rough relative price of each model tier, 0 (cheap) to 1 (expensive).
MODEL_COST: dict[str, float] = {
    "anthropic/claude-haiku-4-5-20251001": 0.15,
    "anthropic/claude-sonnet-4-5-20250929": 0.45,
    "anthropic/claude-opus-4-5-20251101": 1.0,
    "openai/gpt-5.2": 0.7,
    "google_ai/gemini-3-pro-preview": 0.6,
    "google_ai/gemini-3-flash-preview": 0.1,
}
UNKNOWN_MODEL_COST = 0.5

_FAILED_CASE = FitnessInput(
    task_completion=0.0, review_score=0.0, reasoning_depth=0.0,
    consensus_speed=0.0, cost_efficiency=0.0,
)


class ReplayEvaluator:
    """Scores a blueprint by replaying recorded conversations.

    Component definitions, averaged over the domain's cases:
      task_completion  fraction of expected phrases found in the reply
      review_score     normalized reviewer verdict (or derived from completion)
      reasoning_depth  turns used / target_turns, capped at 1
      consensus_speed  1 - latency / latency_budget_s
      cost_efficiency  1 - tokens / token_budget
    """

    def __init__(
        self,
        executor: Executor | None = None,
        cases: list[EvalCase] | None = None,
        reviewer: Reviewer | None = None,
        target_turns: int = 3,
        latency_budget_s: float = 30.0,
        token_budget: int = 8_000,
    ) -> None:
        self._executor = executor
        self._cases = cases if cases is not None else list(DEFAULT_CASES)
        self._reviewer = reviewer
        self._target_turns = max(target_turns, 1)
        self._latency_budget = max(latency_budget_s, 1e-6)
        self._token_budget = max(token_budget, 1)

    def cases_for(self, domain: Domain) -> list[EvalCase]:
        cases = [c for c in self._cases if c.domain == domain]
        return cases or [c for c in self._cases if c.domain == Domain.GENERAL]

    async def evaluate(self, blueprint: TeamBlueprint) -> FitnessInput:
        if self._executor is None:
            return structural_fitness(blueprint)

        cases = self.cases_for(blueprint.niche.domain)
        if not cases:
            return structural_fitness(blueprint)

        rows = [await self._replay(blueprint, case) for case in cases]
        n = len(rows)
        return FitnessInput(
            task_completion=sum(r.task_completion for r in rows) / n,
            review_score=sum(r.review_score for r in rows) / n,
            reasoning_depth=sum(r.reasoning_depth for r in rows) / n,
            consensus_speed=sum(r.consensus_speed for r in rows) / n,
            cost_efficiency=sum(r.cost_efficiency for r in rows) / n,
        )

    async def _replay(self, blueprint: TeamBlueprint, case: EvalCase) -> FitnessInput:
        start = time.monotonic()
        try:
            result = await self._executor(blueprint, case.prompt)
        except Exception as e:
            logger.warning("Replay of %r failed for %s: %s", case.prompt[:40], blueprint.id, e)
            return _FAILED_CASE
        if not result.latency_s:
            result = result.model_copy(update={"latency_s": time.monotonic() - start})

        completion = _completion(result.text, case.expected)
        if self._reviewer is not None:
            try:
                review_score = normalize_review_score(
                    await self._reviewer(blueprint, case, result)
                )
            except Exception as e:
                logger.warning("Review of %r failed for %s: %s", case.prompt[:40], blueprint.id, e)
                return _FAILED_CASE
        elif completion >= 1.0:
            review_score = normalize_review_score("approve")
        elif completion > 0.0:
            review_score = normalize_review_score("comment")
        else:
            review_score = normalize_review_score("request-changes")

        return FitnessInput(
            task_completion=completion,
            review_score=review_score,
            reasoning_depth=min(result.turns / self._target_turns, 1.0),
            consensus_speed=1.0 - result.latency_s / self._latency_budget,
            cost_efficiency=1.0 - result.tokens / max(case.max_tokens or self._token_budget, 1),
        )


def _completion(text: str, expected: list[str]) -> float:
    if not expected:
        return 1.0 if text.strip() else 0.0
    lower = text.lower()
    return sum(1 for phrase in expected if phrase.lower() in lower) / len(expected)


def structural_fitness(blueprint: TeamBlueprint) -> FitnessInput:
    """Deterministic score of a blueprint's shape when nothing can be replayed."""
    agents = blueprint.agents
    if not agents:
        return FitnessInput(
            task_completion=0.0, review_score=0.0, reasoning_depth=0.0,
            consensus_speed=0.0, cost_efficiency=0.0,
        )

    domain = blueprint.niche.domain.value
    specific = sum(1 for a in agents if domain in a.system_prompt.lower()) / len(agents)
    skilled = sum(
        1 for a in agents
        if a.skills.additional_skills or a.skills.cron_enabled or a.skills.google_enabled
    ) / len(agents)
    has_coordinator = blueprint.coordinator_count == 1
    has_reviewer = any(a.role == AgentRole.REVIEWER for a in agents)
    size = len(agents)

    cost = sum(MODEL_COST.get(a.model, UNKNOWN_MODEL_COST) for a in agents) / 5
    quality = sum(MODEL_COST.get(a.model, UNKNOWN_MODEL_COST) for a in agents) / size

    strategy = blueprint.coordination_strategy
    if size == 1:
        strategy_fit = 1.0 if strategy == CoordinationStrategy.SEQUENTIAL else 0.6
    elif strategy == CoordinationStrategy.DEBATE:
        strategy_fit = 1.0 if has_reviewer or size >= 3 else 0.5
    else:
        strategy_fit = 0.8

    speed = {
        CoordinationStrategy.PARALLEL: 1.0,
        CoordinationStrategy.SEQUENTIAL: 0.8,
        CoordinationStrategy.PIPELINE: 0.7,
        CoordinationStrategy.DEBATE: 0.5,
    }[strategy]

    return FitnessInput(
        task_completion=0.4 + 0.3 * specific + 0.2 * quality + 0.1 * skilled,
        review_score=0.5 + 0.25 * has_coordinator + 0.25 * has_reviewer,
        reasoning_depth=0.3 + 0.1 * (size - 1) + 0.3 * quality,
        consensus_speed=speed * strategy_fit - 0.05 * (size - 1),
        cost_efficiency=1.0 - cost,
    )
