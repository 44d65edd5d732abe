"""Mission and agent domain models.

Enums for mission/agent status and agent role, transition rules that
keep status changes one-directional, and frozen snapshots of stored rows
for use outside the storage layer.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from canopy.exceptions import InvalidTransitionError


class MissionStatus(str, enum.Enum):
    """Lifecycle phase of a mission. Only ever moves forward."""

    ACTIVE = "active"
    SYNTHESIZING = "synthesizing"
    COMPLETED = "completed"


class AgentStatus(str, enum.Enum):
    """Lifecycle status of an agent."""

    SPAWNING = "spawning"
    WORKING = "working"
    WAITING = "waiting"
    COMPLETED = "completed"
    FAILED = "failed"
    PAUSED = "paused"


class AgentRole(str, enum.Enum):
    """Roles an agent can be created with."""

    COORDINATOR = "coordinator"
    RESEARCHER = "researcher"
    EXECUTOR = "executor"
    VALIDATOR = "validator"
    SYNTHESIZER = "synthesizer"

    @classmethod
    def coerce(cls, value: object) -> AgentRole:
        """Map arbitrary input to a role, defaulting to EXECUTOR."""
        if isinstance(value, cls):
            return value
        if isinstance(value, str):
            try:
                return cls(value.strip().lower())
            except ValueError:
                pass
        return cls.EXECUTOR


TERMINAL_AGENT_STATUSES: frozenset[AgentStatus] = frozenset(
    {AgentStatus.COMPLETED, AgentStatus.FAILED}
)

# Roles that get the search tool when a search provider is configured.
SEARCH_ELIGIBLE_ROLES: frozenset[AgentRole] = frozenset(
    {AgentRole.RESEARCHER, AgentRole.COORDINATOR}
)

_MISSION_ORDER: dict[MissionStatus, int] = {
    MissionStatus.ACTIVE: 0,
    MissionStatus.SYNTHESIZING: 1,
    MissionStatus.COMPLETED: 2,
}

# working <-> waiting and working <-> paused are the only reversible edges.
_AGENT_TRANSITIONS: dict[AgentStatus, frozenset[AgentStatus]] = {
    AgentStatus.SPAWNING: frozenset(
        {AgentStatus.WORKING, AgentStatus.COMPLETED, AgentStatus.FAILED}
    ),
    AgentStatus.WORKING: frozenset(
        {
            AgentStatus.WORKING,
            AgentStatus.WAITING,
            AgentStatus.PAUSED,
            AgentStatus.COMPLETED,
            AgentStatus.FAILED,
        }
    ),
    AgentStatus.WAITING: frozenset(
        {AgentStatus.WORKING, AgentStatus.COMPLETED, AgentStatus.FAILED}
    ),
    AgentStatus.PAUSED: frozenset(
        {AgentStatus.WORKING, AgentStatus.COMPLETED, AgentStatus.FAILED}
    ),
    AgentStatus.COMPLETED: frozenset(),
    AgentStatus.FAILED: frozenset(),
}


def can_transition(current: AgentStatus, target: AgentStatus) -> bool:
    """Return True if an agent may move from *current* to *target*."""
    return target in _AGENT_TRANSITIONS[current]


def validate_transition(current: AgentStatus, target: AgentStatus) -> None:
    """Raise InvalidTransitionError unless the agent transition is allowed."""
    if not can_transition(current, target):
        raise InvalidTransitionError("agent", current.value, target.value)


def validate_mission_transition(
    current: MissionStatus, target: MissionStatus
) -> None:
    """Raise InvalidTransitionError if *target* would regress the mission."""
    if _MISSION_ORDER[target] <= _MISSION_ORDER[current]:
        raise InvalidTransitionError("mission", current.value, target.value)


@dataclass(frozen=True)
class MissionInfo:
    """Immutable snapshot of a mission row."""

    mission_id: str
    objective: str
    status: MissionStatus
    started_at: datetime
    search_count: int = 0
    owner_id: str | None = None
    completed_at: datetime | None = None


@dataclass(frozen=True)
class AgentInfo:
    """Immutable snapshot of an agent row.

    Attributes:
        agent_id: Agent identifier.
        mission_id: Owning mission.
        parent_id: Spawning agent, None only for the root.
        role: Agent role.
        name: Display name.
        objective: What the agent is working toward.
        status: Current lifecycle status.
        depth: Hops from the root (root = 0).
        iteration: Completed iterations.
        progress: 0-100.
        pending_input: Open human-input request, if any.
        completion_output: Final output once completed.
        context: Free-form context carried between iterations.
        last_completion_check: When fan-in last looked at children.
        claim_token: Token of the claim held on the row, if any.
    """

    agent_id: str
    mission_id: str
    parent_id: str | None
    role: AgentRole
    name: str
    objective: str
    status: AgentStatus
    depth: int = 0
    iteration: int = 0
    progress: int = 0
    model: str | None = None
    current_activity: str | None = None
    pending_input: dict | None = None
    completion_output: str | None = None
    context: dict[str, Any] = field(default_factory=dict)
    last_completion_check: datetime | None = None
    completed_at: datetime | None = None
    created_at: datetime | None = None
    claim_token: str | None = None


@dataclass(frozen=True)
class FindingInfo:
    """An append-only output record written by an agent."""

    finding_id: int
    mission_id: str
    agent_id: str | None
    agent_name: str
    agent_role: str | None
    content: str
    created_at: datetime


@dataclass(frozen=True)
class ReportSectionInfo:
    """A section of the mission report (agent output, artifact, or synthesis)."""

    section_id: int
    mission_id: str
    agent_id: str | None
    agent_name: str
    section_type: str
    content: str
    title: str | None
    created_at: datetime
