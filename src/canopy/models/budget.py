"""Spawn budget policy and decision types.

SpawnBudget is derived policy (never persisted). SpawnDecision is what
the budget enforcer returns for a single parent. BudgetSnapshot is the
view of the budget handed to the work-producing collaborator.
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class SpawnBudget:
    """Global and per-parent limits on agent creation.

    Attributes:
        max_total_agents: Hard cap on agents in one mission.
        max_depth: No agent may sit deeper than this (root = 0).
        max_spawns_per_agent: Hard cap on children of a single parent.
        soft_cap: Mission size at which agents are told to stop delegating.
        max_searches_per_mission: Mission-wide search tool ceiling.
    """

    max_total_agents: int = 25
    max_depth: int = 4
    max_spawns_per_agent: int = 3
    soft_cap: int = 20
    max_searches_per_mission: int = 30


DEFAULT_BUDGET = SpawnBudget()


@dataclass(frozen=True)
class SpawnDecision:
    """Result of checking a parent's spawn budget.

    ``depth`` is the parent's hop count to the root as found by walking
    the ancestor chain. ``remaining`` is 0 whenever ``allowed`` is False.
    """

    allowed: bool
    remaining: int
    depth: int
    reason: str | None = None


@dataclass(frozen=True)
class BudgetSnapshot:
    """Budget view exposed to the collaborator for one iteration."""

    remaining: int
    depth: int
    max_depth: int
    near_limit: bool
    allowed: bool = True
    reason: str | None = None

    def to_dict(self) -> dict:
        return {
            "remaining": self.remaining,
            "depth": self.depth,
            "max_depth": self.max_depth,
            "near_limit": self.near_limit,
        }
