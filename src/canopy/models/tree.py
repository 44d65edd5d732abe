"""Explicit forest of agents for one mission.

Built once per budget check from a flat list of (agent_id, parent_id)
pairs. Parent lookup is a dict hit and child counts are precomputed, so
walking an ancestor chain costs O(depth).
"""

from __future__ import annotations

from collections import Counter
from collections.abc import Iterable
from dataclasses import dataclass


@dataclass(frozen=True)
class TreeNode:
    """Minimal shape of an agent needed for budget decisions."""

    agent_id: str
    parent_id: str | None


class AgentTree:
    """Read-only snapshot of a mission's agent forest."""

    def __init__(self, nodes: Iterable[TreeNode]) -> None:
        self._parents: dict[str, str | None] = {}
        self._child_counts: Counter[str] = Counter()
        for node in nodes:
            self._parents[node.agent_id] = node.parent_id
            if node.parent_id is not None:
                self._child_counts[node.parent_id] += 1

    @classmethod
    def from_pairs(cls, pairs: Iterable[tuple[str, str | None]]) -> AgentTree:
        return cls(TreeNode(agent_id, parent_id) for agent_id, parent_id in pairs)

    def __len__(self) -> int:
        return len(self._parents)

    def __contains__(self, agent_id: object) -> bool:
        return agent_id in self._parents

    def parent_of(self, agent_id: str) -> str | None:
        return self._parents.get(agent_id)

    def child_count(self, agent_id: str) -> int:
        return self._child_counts.get(agent_id, 0)

    def depth_of(self, agent_id: str, *, max_hops: int) -> tuple[int, bool]:
        """Count hops from *agent_id* up to its root.

        Stops after *max_hops* hops so a corrupted (cyclic) chain cannot
        loop forever.

        Returns:
            Tuple of (depth, terminated). ``terminated`` is False when the
            walk was cut off by *max_hops*.
        """
        depth = 0
        current = self.parent_of(agent_id)
        while current is not None:
            if depth >= max_hops:
                return depth, False
            depth += 1
            current = self.parent_of(current)
        return depth, True
