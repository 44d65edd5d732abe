"""Spawn budget enforcement and child-agent construction.

Provides:
- compute_depth(): Hop count from an agent to its root, capped
- can_spawn(): Check a parent against the global and per-parent limits
- budget_snapshot(): The budget view handed to the collaborator
- sanitize_spawn_request(): Clean one requested child config
- build_child_agents(): Truncate, sanitize and mint child agent records

All functions are pure: they read an AgentTree snapshot and return new
values. Persisting the children is the caller's job.
"""

from __future__ import annotations

import re
import uuid
from typing import TYPE_CHECKING, Any, Sequence

from canopy.models.budget import DEFAULT_BUDGET, BudgetSnapshot, SpawnBudget, SpawnDecision
from canopy.models.iteration import NewAgent
from canopy.models.mission import AgentRole
from canopy.models.result import SpawnRequest

if TYPE_CHECKING:
    from canopy.models.mission import AgentInfo
    from canopy.models.tree import AgentTree

REASON_TOTAL = "Maximum agent limit reached"
REASON_DEPTH = "Maximum depth reached"
REASON_CHILDREN = "Maximum children per agent reached"

_TAG_RE = re.compile(r"<[^>]*>")
_CONTROL_RE = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f]")
_MARKDOWN_RE = re.compile(r"[`*_#>\[\]]+")
_WHITESPACE_RE = re.compile(r"[ \t]+")


def compute_depth(tree: AgentTree, agent_id: str, budget: SpawnBudget) -> int:
    """Hop count from *agent_id* to its root (root = 0).

    The walk is capped at ``max_depth + 1`` hops. A well-formed tree never
    needs more than ``max_depth`` hops, so hitting the cap means the
    parent chain is corrupted; the capped value is returned as-is.
    """
    depth, _ = tree.depth_of(agent_id, max_hops=budget.max_depth + 1)
    return depth


def can_spawn(
    tree: AgentTree,
    parent_id: str,
    budget: SpawnBudget = DEFAULT_BUDGET,
) -> SpawnDecision:
    """Decide whether *parent_id* may create children right now.

    Checks, in order: total mission agents, the parent's depth, and the
    parent's existing child count. When allowed, ``remaining`` is the
    smaller of the global slots left and the parent's child slots left.
    """
    total = len(tree)
    if total >= budget.max_total_agents:
        return SpawnDecision(allowed=False, remaining=0, depth=0, reason=REASON_TOTAL)

    depth = compute_depth(tree, parent_id, budget)
    if depth >= budget.max_depth:
        return SpawnDecision(allowed=False, remaining=0, depth=depth, reason=REASON_DEPTH)

    children = tree.child_count(parent_id)
    if children >= budget.max_spawns_per_agent:
        return SpawnDecision(allowed=False, remaining=0, depth=depth, reason=REASON_CHILDREN)

    remaining = min(
        budget.max_total_agents - total,
        budget.max_spawns_per_agent - children,
    )
    return SpawnDecision(allowed=True, remaining=remaining, depth=depth)


def budget_snapshot(
    tree: AgentTree,
    agent: AgentInfo,
    budget: SpawnBudget = DEFAULT_BUDGET,
) -> tuple[SpawnDecision, BudgetSnapshot]:
    """Run can_spawn for *agent* and derive the collaborator-facing view."""
    decision = can_spawn(tree, agent.agent_id, budget)
    snapshot = BudgetSnapshot(
        remaining=decision.remaining,
        depth=agent.depth,
        max_depth=budget.max_depth,
        near_limit=len(tree) >= budget.soft_cap,
        allowed=decision.allowed,
        reason=decision.reason,
    )
    return decision, snapshot


def clean_text(value: str, max_chars: int) -> str:
    """Strip markup and control characters, collapse spaces, cap length."""
    text = _TAG_RE.sub("", value)
    text = _CONTROL_RE.sub("", text)
    text = _MARKDOWN_RE.sub("", text)
    text = _WHITESPACE_RE.sub(" ", text).strip()
    return text[:max_chars]


def sanitize_spawn_request(
    request: SpawnRequest | dict[str, Any],
    *,
    objective_max_chars: int = 2000,
    name_max_chars: int = 100,
) -> SpawnRequest:
    """Return a cleaned copy of one requested child config.

    Unknown roles become ``executor``. An empty name falls back to a
    role-based label and an empty objective to the name.
    """
    if not isinstance(request, SpawnRequest):
        request = SpawnRequest.model_validate(request)

    role = AgentRole.coerce(request.role)
    name = clean_text(request.name, name_max_chars) or f"{role.value.title()} agent"
    objective = clean_text(request.objective, objective_max_chars) or name
    model = clean_text(request.model, 255) if request.model else None
    return SpawnRequest(
        role=role.value,
        name=name,
        objective=objective,
        model=model or None,
        context=dict(request.context),
    )


def build_child_agents(
    parent: AgentInfo,
    requests: Sequence[SpawnRequest | dict[str, Any]],
    decision: SpawnDecision,
    *,
    parent_output: str = "",
    default_model: str | None = None,
    objective_max_chars: int = 2000,
    name_max_chars: int = 100,
    parent_findings_chars: int = 500,
) -> list[NewAgent]:
    """Turn accepted spawn requests into new agent records.

    Requests beyond ``decision.remaining`` are dropped in caller order.
    Returns an empty list when the decision denies spawning.
    """
    if not decision.allowed or decision.remaining <= 0:
        return []

    children: list[NewAgent] = []
    for request in list(requests)[: decision.remaining]:
        clean = sanitize_spawn_request(
            request,
            objective_max_chars=objective_max_chars,
            name_max_chars=name_max_chars,
        )
        context = dict(clean.context)
        context["parent_objective"] = parent.objective
        context["parent_findings"] = parent_output[:parent_findings_chars]
        children.append(
            NewAgent(
                agent_id=str(uuid.uuid4()),
                parent_id=parent.agent_id,
                role=clean.role,
                name=clean.name,
                objective=clean.objective,
                depth=parent.depth + 1,
                model=clean.model or parent.model or default_model,
                context=context,
            )
        )
    return children
