"""HubClient — the Thoughtbox Hub as the swarm's system of record.

The evolution engine treats the Hub as an opaque consensus service: it
registers an identity, opens a workspace with one problem per niche, and
pushes each candidate through claim -> propose -> review -> merge.

Usage:
    hub = HubClient("http://localhost:1731/mcp")
    reg = await hub.register("TEAM-Elites-Coordinator", "coordinator")
    ws = await hub.create_workspace("team-elites-archive", "MAP-Elites archive")
"""

from __future__ import annotations

from typing import Any, Literal

from teamelites.coordination.rpc import JsonRpcClient
from teamelites.exceptions import HubError

Verdict = Literal["approve", "comment", "request-changes"]


class HubClient(JsonRpcClient):
    tool_name = "thoughtbox_hub"
    error_class = HubError

    async def register(self, name: str, role: str) -> dict[str, Any]:
        """-> {"agentId", "role"}"""
        return await self.call("register", {"name": name, "role": role})

    async def create_workspace(self, name: str, description: str) -> dict[str, Any]:
        """-> {"workspaceId"}"""
        return await self.call("create_workspace", {"name": name, "description": description})

    async def create_problem(
        self, workspace_id: str, title: str, description: str,
    ) -> dict[str, Any]:
        """-> {"problemId"}"""
        return await self.call("create_problem", {
            "workspaceId": workspace_id,
            "title": title,
            "description": description,
        })

    async def claim_problem(self, problem_id: str, branch_id: str) -> dict[str, Any]:
        """-> {"branchFromThought"}"""
        return await self.call("claim_problem", {
            "problemId": problem_id,
            "branchId": branch_id,
        })

    async def create_proposal(
        self, problem_id: str, title: str, source_branch: str, description: str,
    ) -> dict[str, Any]:
        """-> {"proposalId"}"""
        return await self.call("create_proposal", {
            "problemId": problem_id,
            "title": title,
            "sourceBranch": source_branch,
            "description": description,
        })

    async def review_proposal(
        self, proposal_id: str, verdict: Verdict, comment: str,
    ) -> dict[str, Any]:
        """-> {"reviewId"}"""
        return await self.call("review_proposal", {
            "proposalId": proposal_id,
            "verdict": verdict,
            "comment": comment,
        })

    async def merge_proposal(self, proposal_id: str) -> dict[str, Any]:
        """-> {"merged"}"""
        return await self.call("merge_proposal", {"proposalId": proposal_id})

    async def mark_consensus(self, name: str, thought_ref: int) -> dict[str, Any]:
        """-> {"consensusId"}"""
        return await self.call("mark_consensus", {"name": name, "thoughtRef": thought_ref})

    async def post_message(
        self, workspace_id: str, problem_id: str, content: str,
    ) -> dict[str, Any]:
        """-> {"messageId"}"""
        return await self.call("post_message", {
            "workspaceId": workspace_id,
            "problemId": problem_id,
            "content": content,
        })

    async def read_channel(self, workspace_id: str, problem_id: str) -> list[Any]:
        result = await self.call("read_channel", {
            "workspaceId": workspace_id,
            "problemId": problem_id,
        })
        if isinstance(result, dict):
            return list(result.get("messages", []))
        return result if isinstance(result, list) else []
