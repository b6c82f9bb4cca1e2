"""Shared test fixtures — an in-memory Hub and a throwaway registry."""

from __future__ import annotations

import pytest

from teamelites.events.telemetry import configure_telemetry
from teamelites.exceptions import HubError
from teamelites.registry.store import SwarmStore
from teamelites.types import (
    AgentRole,
    NicheDescriptor,
    SwarmAgentConfig,
    TeamBlueprint,
)


class FakeHub:
    """Hub that answers every operation locally. No HTTP.

    ``fail_on[op] = n`` makes the next ``n`` calls to ``op`` raise
    HubError; a negative ``n`` fails forever.
    """

    def __init__(self):
        self.calls: list[tuple[str, dict]] = []
        self.fail_on: dict[str, int] = {}
        self.messages: list[str] = []
        self._counter = 0

    def ops(self) -> list[str]:
        return [op for op, _ in self.calls]

    def _record(self, op: str, **args) -> None:
        self.calls.append((op, args))
        remaining = self.fail_on.get(op, 0)
        if remaining:
            if remaining > 0:
                self.fail_on[op] = remaining - 1
            raise HubError(f"{op} unavailable")

    def _next(self, prefix: str) -> str:
        self._counter += 1
        return f"{prefix}-{self._counter}"

    async def register(self, name, role):
        self._record("register", name=name, role=role)
        return {"agentId": self._next("agent"), "role": role}

    async def create_workspace(self, name, description):
        self._record("create_workspace", name=name, description=description)
        return {"workspaceId": self._next("ws")}

    async def create_problem(self, workspace_id, title, description):
        self._record("create_problem", workspace_id=workspace_id, title=title)
        return {"problemId": self._next("prob")}

    async def claim_problem(self, problem_id, branch_id):
        self._record("claim_problem", problem_id=problem_id, branch_id=branch_id)
        return {"branchFromThought": 1}

    async def create_proposal(self, problem_id, title, source_branch, description):
        self._record(
            "create_proposal", problem_id=problem_id, title=title,
            source_branch=source_branch, description=description,
        )
        return {"proposalId": self._next("prop")}

    async def review_proposal(self, proposal_id, verdict, comment):
        self._record("review_proposal", proposal_id=proposal_id, verdict=verdict, comment=comment)
        return {"reviewId": self._next("rev")}

    async def merge_proposal(self, proposal_id):
        self._record("merge_proposal", proposal_id=proposal_id)
        return {"merged": True}

    async def post_message(self, workspace_id, problem_id, content):
        self._record("post_message", content=content)
        self.messages.append(content)
        return {"messageId": self._next("msg")}

    async def read_channel(self, workspace_id, problem_id):
        self._record("read_channel")
        return [{"content": m} for m in self.messages]


def make_blueprint(
    channel: str = "telegram",
    domain: str = "coding",
    generation: int = 0,
    composite: float = 0.0,
    cost_efficiency: float = 0.0,
    agents: list[SwarmAgentConfig] | None = None,
    **kwargs,
) -> TeamBlueprint:
    niche = NicheDescriptor.of(channel, domain)
    if agents is None:
        agents = [
            SwarmAgentConfig(
                role=AgentRole.COORDINATOR,
                model="anthropic/claude-sonnet-4-5-20250929",
                system_prompt=f"You handle {domain}. Be precise. Ask before acting.",
            ),
        ]
    return TeamBlueprint(
        name=kwargs.pop("name", f"{niche.key}-test"),
        generation=generation,
        agents=agents,
        niche=niche,
        fitness={"composite": composite, "cost_efficiency": cost_efficiency},
        **kwargs,
    )


@pytest.fixture(autouse=True)
def telemetry_dir(tmp_path):
    """Keep the JSONL event log inside the test's tmp dir."""
    configure_telemetry(tmp_path)
    yield tmp_path
    configure_telemetry(None)


@pytest.fixture
def store(tmp_path):
    return SwarmStore(tmp_path)


@pytest.fixture
def fake_hub():
    return FakeHub()


@pytest.fixture
def blueprint_factory():
    return make_blueprint
