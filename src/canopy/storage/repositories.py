"""Abstract repository interfaces for Canopy storage.

Defines ABC interfaces for all database operations. No SQLAlchemy
imports here -- pure abstract contracts.

Concrete implementations are in sqlite.py.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Sequence

if TYPE_CHECKING:
    from datetime import datetime

    from canopy.models.mission import AgentStatus, MissionStatus
    from canopy.storage.schema import (
        AgentRow,
        EventRow,
        FindingRow,
        MessageRow,
        MissionRow,
        ReportSectionRow,
        UsageRow,
    )


class MissionRepository(ABC):
    """Abstract interface for mission storage operations."""

    @abstractmethod
    def get(self, mission_id: str) -> MissionRow | None:
        """Get a mission by id. Returns None if not found."""
        ...

    @abstractmethod
    def save(self, mission: MissionRow) -> None:
        """Insert a new mission."""
        ...

    @abstractmethod
    def list_by_status(self, statuses: Sequence[MissionStatus]) -> Sequence[MissionRow]:
        """Get missions in any of the given statuses, oldest first."""
        ...

    @abstractmethod
    def advance_status(
        self,
        mission_id: str,
        expected: MissionStatus,
        target: MissionStatus,
        *,
        completed_at: datetime | None = None,
    ) -> bool:
        """Move a mission from *expected* to *target* if it is still in *expected*.

        Returns True if the row was updated.
        """
        ...

    @abstractmethod
    def claim_synthesis(
        self, mission_id: str, now: datetime, lease_cutoff: datetime
    ) -> bool:
        """Stamp synthesis_claimed_at if the mission is synthesizing and unclaimed.

        A claim older than *lease_cutoff* counts as abandoned. Returns True
        for exactly one caller per lease.
        """
        ...

    @abstractmethod
    def release_synthesis(self, mission_id: str) -> None:
        """Clear synthesis_claimed_at so a later tick can retry."""
        ...

    @abstractmethod
    def add_search_count(self, mission_id: str, delta: int) -> None:
        """Increment the mission-wide search counter."""
        ...


class AgentRepository(ABC):
    """Abstract interface for agent storage operations."""

    @abstractmethod
    def get(self, agent_id: str) -> AgentRow | None:
        """Get an agent by id. Returns None if not found."""
        ...

    @abstractmethod
    def save(self, agent: AgentRow) -> None:
        """Insert a new agent."""
        ...

    @abstractmethod
    def list_for_mission(self, mission_id: str) -> Sequence[AgentRow]:
        """Get all agents of a mission ordered by (depth, created_at)."""
        ...

    @abstractmethod
    def tree_pairs(self, mission_id: str) -> list[tuple[str, str | None]]:
        """Get (agent_id, parent_id) for every agent in the mission."""
        ...

    @abstractmethod
    def child_ids(self, parent_id: str) -> list[str]:
        """Get ids of the direct children of an agent."""
        ...

    @abstractmethod
    def sibling_ids(self, agent_id: str, parent_id: str) -> list[str]:
        """Get ids of agents sharing *parent_id*, excluding *agent_id*."""
        ...

    @abstractmethod
    def activate_spawning(self, mission_id: str, now: datetime) -> int:
        """Promote every ``spawning`` agent of the mission to ``working``.

        Returns the number of agents promoted.
        """
        ...

    @abstractmethod
    def claim_one_working(
        self, mission_id: str, token: str, now: datetime, lease_cutoff: datetime
    ) -> AgentRow | None:
        """Atomically claim one eligible ``working`` agent.

        Eligible agents are unclaimed, or hold a claim older than
        *lease_cutoff*. Returns the claimed row or None.
        """
        ...

    @abstractmethod
    def write_back(
        self,
        agent_id: str,
        values: dict,
        now: datetime,
        *,
        claim_token: str | None = None,
    ) -> bool:
        """Update an agent's columns and release any claim on it.

        With *claim_token*, the update only applies while that claim is
        still held and the agent is not terminal. Returns True if the row
        was updated.
        """
        ...

    @abstractmethod
    def all_terminal(self, mission_id: str) -> bool:
        """True if the mission has agents and every one is completed or failed."""
        ...

    @abstractmethod
    def completed_children_since(
        self, parent_id: str, since: datetime | None
    ) -> Sequence[AgentRow]:
        """Get completed children with output, completed after *since*."""
        ...

    @abstractmethod
    def completed_with_output(self, mission_id: str) -> Sequence[AgentRow]:
        """Get every completed agent of the mission that has an output."""
        ...

    @abstractmethod
    def bulk_set_status(
        self,
        mission_id: str,
        from_statuses: Sequence[AgentStatus],
        values: dict,
        now: datetime,
    ) -> list[str]:
        """Update every agent currently in *from_statuses*. Returns their ids."""
        ...


class MessageRepository(ABC):
    """Abstract interface for per-agent conversation history."""

    @abstractmethod
    def load(self, agent_id: str) -> Sequence[MessageRow]:
        """Get all messages of an agent ordered by seq."""
        ...

    @abstractmethod
    def append(self, agent_id: str, messages: list[dict[str, str]], now: datetime) -> None:
        """Append messages after the current last seq."""
        ...

    @abstractmethod
    def replace(self, agent_id: str, messages: list[dict[str, str]], now: datetime) -> None:
        """Replace the whole history (compression only)."""
        ...


class FindingRepository(ABC):
    """Abstract interface for append-only findings."""

    @abstractmethod
    def save(self, finding: FindingRow) -> None:
        """Insert a finding."""
        ...

    @abstractmethod
    def recent_for_agents(
        self, mission_id: str, agent_ids: Sequence[str], limit: int
    ) -> Sequence[FindingRow]:
        """Get the newest findings written by any of *agent_ids*."""
        ...

    @abstractmethod
    def recent_for_mission(self, mission_id: str, limit: int) -> Sequence[FindingRow]:
        """Get the newest findings of a mission."""
        ...


class ReportRepository(ABC):
    """Abstract interface for append-only report sections."""

    @abstractmethod
    def save(self, section: ReportSectionRow) -> None:
        """Insert a report section."""
        ...

    @abstractmethod
    def list_for_mission(
        self, mission_id: str, section_type: str | None = None
    ) -> Sequence[ReportSectionRow]:
        """Get report sections of a mission in insertion order."""
        ...


class EventRepository(ABC):
    """Abstract interface for the mission activity feed."""

    @abstractmethod
    def save(self, event: EventRow) -> None:
        """Insert an event."""
        ...

    @abstractmethod
    def list_for_mission(self, mission_id: str, limit: int = 100) -> Sequence[EventRow]:
        """Get the newest events of a mission, newest first."""
        ...


class UsageRepository(ABC):
    """Abstract interface for usage tallies."""

    @abstractmethod
    def save(self, usage: UsageRow) -> None:
        """Insert a usage record."""
        ...

    @abstractmethod
    def totals(self, mission_id: str) -> dict[str, int]:
        """Sum prompt_tokens, completion_tokens and search_count for a mission."""
        ...
