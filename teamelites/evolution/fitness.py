"""Fitness — composite scoring and elite replacement.

Composite fitness is the weighted sum of five components, each clamped to
[0, 1] before weighting; the sum is clamped again. An incumbent elite is
replaced only by a strictly better candidate.
"""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel

from teamelites.types import DEFAULT_FITNESS_WEIGHTS, FitnessScores, FitnessWeights

ReviewVerdict = Literal["approve", "comment", "request-changes"]

_REVIEW_SCORES: dict[str, float] = {
    "approve": 1.0,
    "comment": 0.5,
    "request-changes": 0.0,
}


class FitnessInput(BaseModel):
    """Raw, unclamped fitness components."""

    task_completion: float
    review_score: float
    reasoning_depth: float
    consensus_speed: float
    cost_efficiency: float


def clamp(value: float, low: float = 0.0, high: float = 1.0) -> float:
    return max(low, min(high, value))


def compute_fitness(
    raw: FitnessInput,
    weights: FitnessWeights = DEFAULT_FITNESS_WEIGHTS,
) -> FitnessScores:
    tc = clamp(raw.task_completion)
    rs = clamp(raw.review_score)
    rd = clamp(raw.reasoning_depth)
    cs = clamp(raw.consensus_speed)
    ce = clamp(raw.cost_efficiency)

    composite = clamp(
        weights.w1 * tc
        + weights.w2 * rs
        + weights.w3 * rd
        + weights.w4 * cs
        + weights.w5 * ce
    )

    return FitnessScores(
        composite=composite,
        task_completion=tc,
        review_score=rs,
        reasoning_depth=rd,
        consensus_speed=cs,
        cost_efficiency=ce,
    )


def is_elite_replacement(candidate: FitnessScores, current: FitnessScores) -> bool:
    """True when ``candidate`` should replace ``current``.

    Higher composite wins; equal composites fall back to cost efficiency.
    Exact ties on both keep the incumbent.
    """
    if candidate.composite > current.composite:
        return True
    if candidate.composite < current.composite:
        return False
    return candidate.cost_efficiency > current.cost_efficiency


def normalize_review_score(verdict: ReviewVerdict) -> float:
    try:
        return _REVIEW_SCORES[verdict]
    except KeyError:
        raise ValueError(f"Unknown review verdict: {verdict!r}") from None
