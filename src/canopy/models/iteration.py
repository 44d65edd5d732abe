"""Iteration and tick result models.

An iteration produces an IterationOutcome: the chosen transition plus a
WriteBatch of durable-write intents that the store applies in one
transaction. A dispatch tick reports a TickResult.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from canopy.models.mission import AgentStatus


class TransitionKind(str, enum.Enum):
    """Which branch of the iteration state machine was taken."""

    WAITING_FOR_INPUT = "waiting_for_input"
    COMPLETE = "complete"
    CONTINUE = "continue"


class TickAction(str, enum.Enum):
    """What a single dispatch tick did for a mission."""

    NO_AGENT_AVAILABLE = "no_agent_available"
    ITERATED = "iterated"
    COMPLETED = "completed"
    WAITING_FOR_INPUT = "waiting_for_input"
    INSUFFICIENT_CREDITS = "insufficient_credits"
    SYNTHESIZED = "synthesized"


@dataclass(frozen=True)
class AgentUpdate:
    """New values for the claimed agent's row. Writing it releases the claim."""

    status: AgentStatus
    iteration: int
    progress: int
    current_activity: str
    pending_input: dict | None = None
    completion_output: str | None = None
    context: dict[str, Any] | None = None
    completion_check: datetime | None = None


@dataclass(frozen=True)
class NewAgent:
    """An agent row to insert. ``parent_id`` is None only for a mission root."""

    agent_id: str
    parent_id: str | None
    role: str
    name: str
    objective: str
    depth: int
    model: str | None
    context: dict[str, Any]


@dataclass(frozen=True)
class NewFinding:
    content: str


@dataclass(frozen=True)
class NewReportSection:
    section_type: str
    content: str
    title: str | None = None


@dataclass(frozen=True)
class NewEvent:
    event_type: str
    message: str
    agent_id: str | None = None


@dataclass(frozen=True)
class UsageTally:
    """Counts handed to the billing collaborator. Never money."""

    model: str | None
    prompt_tokens: int = 0
    completion_tokens: int = 0
    search_count: int = 0
    description: str = ""


@dataclass
class WriteBatch:
    """Durable-write intents produced by one iteration.

    Mutable while the engine assembles it; applied atomically by the
    store via ``apply_iteration``.
    """

    agent_update: AgentUpdate | None = None
    messages: list[dict[str, str]] = field(default_factory=list)
    replace_history: list[dict[str, str]] | None = None
    children: list[NewAgent] = field(default_factory=list)
    findings: list[NewFinding] = field(default_factory=list)
    report_sections: list[NewReportSection] = field(default_factory=list)
    events: list[NewEvent] = field(default_factory=list)
    usage: list[UsageTally] = field(default_factory=list)
    search_count_delta: int = 0


@dataclass(frozen=True)
class IterationOutcome:
    """Result of running one iteration for a claimed agent.

    ``applied`` is False when the claim was lost before the write-back
    and the batch was discarded.
    """

    agent_id: str
    agent_name: str
    iteration: int
    transition: TransitionKind
    batch: WriteBatch
    spawned: int = 0
    spawn_denied_reason: str | None = None
    mission_terminal: bool = False
    applied: bool = True


@dataclass(frozen=True)
class TickResult:
    """Outcome of one dispatch tick for one mission."""

    mission_id: str
    action: TickAction | None
    agent_id: str | None = None
    agent_name: str | None = None
    iteration: int | None = None
    error: str | None = None

    def to_dict(self) -> dict:
        data: dict[str, Any] = {
            "mission_id": self.mission_id,
            "action": self.action.value if self.action is not None else "error",
        }
        if self.agent_id is not None:
            data["agent_id"] = self.agent_id
        if self.agent_name is not None:
            data["agent_name"] = self.agent_name
        if self.iteration is not None:
            data["iteration"] = self.iteration
        if self.error is not None:
            data["error"] = self.error
        return data
