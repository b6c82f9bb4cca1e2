"""Variation operators — blueprint mutation and crossover.

Every operator is a pure function: it takes the parent blueprint(s), an
optional ``random.Random`` and a catalog of models/roles/strategies, and
returns a new blueprint with a fresh id and recorded lineage. Pass a seeded
RNG to make an evolutionary run reproducible.
"""

from __future__ import annotations

import random
import re
import string
from dataclasses import dataclass
from typing import Callable

from teamelites.types import (
    AgentRole,
    CoordinationStrategy,
    SwarmAgentConfig,
    TeamBlueprint,
    new_blueprint_id,
)


@dataclass(frozen=True)
class VariationCatalog:
    """The values operators may choose from."""

    models: tuple[str, ...] = (
        "anthropic/claude-haiku-4-5-20251001",
        "anthropic/claude-sonnet-4-5-20250929",
        "anthropic/claude-opus-4-5-20251101",
        "openai/gpt-5.2",
        "google_ai/gemini-3-pro-preview",
        "google_ai/gemini-3-flash-preview",
    )
    roles: tuple[AgentRole, ...] = tuple(AgentRole)
    strategies: tuple[CoordinationStrategy, ...] = tuple(CoordinationStrategy)
    skill_flags: tuple[str, ...] = ("cron_enabled", "google_enabled")
    member_prompt: str = "You are a helpful team member."
    min_team_size: int = 1
    max_team_size: int = 5


DEFAULT_CATALOG = VariationCatalog()

Operator = Callable[..., TeamBlueprint]

_SENTENCE_SPLIT = re.compile(r"(?<=[.!?])\s+")


def _rng(rng: random.Random | None) -> random.Random:
    return rng if rng is not None else random.Random()


def _clone_agents(bp: TeamBlueprint) -> list[SwarmAgentConfig]:
    return [a.model_copy(deep=True) for a in bp.agents]


def _derive(parent: TeamBlueprint, rng: random.Random, **update) -> TeamBlueprint:
    """Copy ``parent`` as a one-parent child of the next generation."""
    return parent.model_copy(
        deep=True,
        update={
            "id": new_blueprint_id(rng),
            "generation": parent.generation + 1,
            "parent_ids": [parent.id],
            **update,
        },
    )


def _new_member(rng: random.Random, catalog: VariationCatalog) -> SwarmAgentConfig:
    return SwarmAgentConfig(
        role=AgentRole.CONTRIBUTOR,
        model=rng.choice(catalog.models),
        system_prompt=catalog.member_prompt,
    )


# ── Operators ────────────────────────────────────────────────────


def skill_mutation(
    parent: TeamBlueprint,
    rng: random.Random | None = None,
    catalog: VariationCatalog = DEFAULT_CATALOG,
) -> TeamBlueprint:
    """Add, remove or swap one skill flag on a random agent slot.

    The slot's free-form skill list moves by one entry in the same
    direction: add appends, remove pops, swap replaces the last entry.
    """
    rng = _rng(rng)
    agents = _clone_agents(parent)
    if not agents:
        return _derive(parent, rng)

    skills = agents[rng.randrange(len(agents))].skills
    action = rng.choice(["add", "remove", "swap"])
    flag = rng.choice(catalog.skill_flags)
    new_skill = "skill-" + "".join(rng.choice(string.ascii_lowercase + string.digits) for _ in range(4))

    if action == "add":
        setattr(skills, flag, True)
        skills.additional_skills.append(new_skill)
    elif action == "remove":
        setattr(skills, flag, None)
        if skills.additional_skills:
            skills.additional_skills.pop()
    else:
        for other in catalog.skill_flags:
            setattr(skills, other, True if other == flag else None)
        if skills.additional_skills:
            skills.additional_skills[-1] = new_skill
        else:
            skills.additional_skills.append(new_skill)

    return _derive(parent, rng, agents=agents)


def role_mutation(
    parent: TeamBlueprint,
    rng: random.Random | None = None,
    catalog: VariationCatalog = DEFAULT_CATALOG,
) -> TeamBlueprint:
    """Reassign one slot's role, keeping at most one coordinator."""
    rng = _rng(rng)
    agents = _clone_agents(parent)
    if not agents:
        return _derive(parent, rng)

    idx = rng.randrange(len(agents))
    new_role = rng.choice(catalog.roles)

    if new_role == AgentRole.COORDINATOR:
        for agent in agents:
            if agent.role == AgentRole.COORDINATOR:
                agent.role = AgentRole.CONTRIBUTOR

    agents[idx].role = new_role
    return _derive(parent, rng, agents=agents)


def strategy_mutation(
    parent: TeamBlueprint,
    rng: random.Random | None = None,
    catalog: VariationCatalog = DEFAULT_CATALOG,
) -> TeamBlueprint:
    """Switch to a different coordination strategy."""
    rng = _rng(rng)
    others = [s for s in catalog.strategies if s != parent.coordination_strategy]
    if not others:
        return _derive(parent, rng)
    return _derive(parent, rng, coordination_strategy=rng.choice(others))


def team_size_mutation(
    parent: TeamBlueprint,
    rng: random.Random | None = None,
    catalog: VariationCatalog = DEFAULT_CATALOG,
) -> TeamBlueprint:
    """Grow or shrink the team by one, staying within the catalog bounds."""
    rng = _rng(rng)
    agents = _clone_agents(parent)

    can_grow = len(agents) < catalog.max_team_size
    can_shrink = len(agents) > catalog.min_team_size
    if can_grow and can_shrink:
        grow = rng.random() < 0.5
    else:
        grow = can_grow

    if grow:
        agents.append(_new_member(rng, catalog))
    elif can_shrink:
        removable = next(
            (i for i, a in enumerate(agents) if a.role != AgentRole.COORDINATOR), None,
        )
        if removable is not None:
            del agents[removable]

    return _derive(parent, rng, agents=agents)


def model_mutation(
    parent: TeamBlueprint,
    rng: random.Random | None = None,
    catalog: VariationCatalog = DEFAULT_CATALOG,
) -> TeamBlueprint:
    """Move one slot to a different model tier."""
    rng = _rng(rng)
    agents = _clone_agents(parent)
    if not agents:
        return _derive(parent, rng)

    slot = agents[rng.randrange(len(agents))]
    others = [m for m in catalog.models if m != slot.model]
    if others:
        slot.model = rng.choice(others)
    return _derive(parent, rng, agents=agents)


def _blend_prompts(first: str, second: str) -> str:
    s1 = [s for s in _SENTENCE_SPLIT.split(first) if s]
    s2 = [s for s in _SENTENCE_SPLIT.split(second) if s]

    blended: list[str] = []
    for j in range(max(len(s1), len(s2))):
        if j < len(s1) and j % 2 == 0:
            blended.append(s1[j])
        elif j < len(s2):
            blended.append(s2[j])
        elif j < len(s1):
            blended.append(s1[j])
    return " ".join(blended)


def prompt_crossover(
    first: TeamBlueprint,
    second: TeamBlueprint,
    rng: random.Random | None = None,
) -> TeamBlueprint:
    """Interleave the system prompts of two parents sentence by sentence.

    Slots beyond the shorter team are copied from ``first``.
    """
    rng = _rng(rng)
    agents = _clone_agents(first)
    for i in range(min(len(first.agents), len(second.agents))):
        agents[i].system_prompt = _blend_prompts(
            first.agents[i].system_prompt, second.agents[i].system_prompt,
        )

    return first.model_copy(
        deep=True,
        update={
            "id": new_blueprint_id(rng),
            "generation": max(first.generation, second.generation) + 1,
            "parent_ids": [first.id, second.id],
            "agents": agents,
        },
    )


# ── Composite variation ──────────────────────────────────────────

MUTATION_OPERATORS: dict[str, Operator] = {
    "skillMutation": skill_mutation,
    "roleMutation": role_mutation,
    "strategyMutation": strategy_mutation,
    "teamSizeMutation": team_size_mutation,
    "modelMutation": model_mutation,
}


def apply_variation(
    parent: TeamBlueprint,
    num_ops: int | None = None,
    rng: random.Random | None = None,
    catalog: VariationCatalog = DEFAULT_CATALOG,
) -> TeamBlueprint:
    """Compose 1-3 randomly chosen single-parent mutations.

    Crossover needs two parents and is excluded; call
    ``prompt_crossover`` directly. However many operators ran, the child
    is one generation past ``parent`` with ``parent`` as its only parent.
    """
    rng = _rng(rng)
    count = num_ops if num_ops is not None else rng.randint(1, 3)

    child = parent
    operators = list(MUTATION_OPERATORS.values())
    for _ in range(count):
        child = rng.choice(operators)(child, rng, catalog)

    update = {"generation": parent.generation + 1, "parent_ids": [parent.id]}
    if child.id == parent.id:
        update["id"] = new_blueprint_id(rng)
    return child.model_copy(deep=True, update=update)
