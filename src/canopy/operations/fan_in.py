"""Fan-in of child results and sibling awareness.

Both build advisory user messages that are appended to an agent's
history before its collaborator call: completed children's outputs
(so a parent sees them the same iteration) and, every few iterations,
what sibling agents have already found.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Sequence

if TYPE_CHECKING:
    from canopy.models.mission import AgentInfo, FindingInfo
    from canopy.storage.store import CanopyStore

SIBLING_EVERY = 3


def collect_child_completions(
    store: CanopyStore, agent: AgentInfo
) -> list[AgentInfo]:
    """Children completed since the agent's last completion check."""
    if not store.child_ids(agent.agent_id):
        return []
    return store.completed_children_since(agent.agent_id, agent.last_completion_check)


def _truncate(text: str, limit: int) -> str:
    return text[:limit] + "..." if len(text) > limit else text


def build_fan_in_message(
    completions: Sequence[AgentInfo], *, output_chars: int = 300
) -> dict[str, str] | None:
    """User message surfacing child outputs, or None when there are none."""
    if not completions:
        return None
    summaries = "\n\n".join(
        f"{child.name}: {_truncate(child.completion_output or '', output_chars)}"
        for child in completions
    )
    return {
        "role": "user",
        "content": (
            f"Child agent(s) completed with findings:\n{summaries}\n\n"
            "Incorporate these findings into your work."
        ),
    }


def wants_sibling_update(
    iteration: int, parent_id: str | None, *, every: int = SIBLING_EVERY
) -> bool:
    return parent_id is not None and iteration % every == 0


def build_sibling_message(
    findings: Sequence[FindingInfo], *, finding_chars: int = 200
) -> dict[str, str] | None:
    """Advisory message listing sibling findings, or None when there are none."""
    if not findings:
        return None
    lines = "\n".join(f"- {f.agent_name}: {f.content[:finding_chars]}" for f in findings)
    return {
        "role": "user",
        "content": (
            f"Team update: your sibling agents have found:\n{lines}\n"
            "Avoid duplicating this work."
        ),
    }

