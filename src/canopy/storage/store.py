"""Durable store for mission state.

CanopyStore wraps a session factory and the SQLite repositories. Every
public method runs in its own short transaction and returns frozen
domain snapshots, so no ORM state leaks across ticks and the store can
be shared between threads.
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Iterator, Sequence
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Any

from canopy.clock import utcnow
from canopy.exceptions import AgentNotFoundError, ClaimLostError, MissionNotFoundError
from canopy.models.mission import (
    AgentInfo,
    AgentRole,
    AgentStatus,
    FindingInfo,
    MissionInfo,
    MissionStatus,
    ReportSectionInfo,
    validate_mission_transition,
)
from canopy.models.tree import AgentTree
from canopy.storage.schema import (
    AgentRow,
    EventRow,
    FindingRow,
    MissionRow,
    ReportSectionRow,
    UsageRow,
)
from canopy.storage.sqlite import (
    SqliteAgentRepository,
    SqliteEventRepository,
    SqliteFindingRepository,
    SqliteMessageRepository,
    SqliteMissionRepository,
    SqliteReportRepository,
    SqliteUsageRepository,
)

if TYPE_CHECKING:
    from sqlalchemy.orm import Session, sessionmaker

    from canopy.models.iteration import NewAgent, UsageTally, WriteBatch

logger = logging.getLogger(__name__)


@dataclass
class _Repos:
    """Repositories bound to one session/transaction."""

    session: Session
    missions: SqliteMissionRepository
    agents: SqliteAgentRepository
    messages: SqliteMessageRepository
    findings: SqliteFindingRepository
    reports: SqliteReportRepository
    events: SqliteEventRepository
    usage: SqliteUsageRepository

    @classmethod
    def bind(cls, session: Session) -> _Repos:
        return cls(
            session=session,
            missions=SqliteMissionRepository(session),
            agents=SqliteAgentRepository(session),
            messages=SqliteMessageRepository(session),
            findings=SqliteFindingRepository(session),
            reports=SqliteReportRepository(session),
            events=SqliteEventRepository(session),
            usage=SqliteUsageRepository(session),
        )


def _mission_info(row: MissionRow) -> MissionInfo:
    return MissionInfo(
        mission_id=row.mission_id,
        objective=row.objective,
        status=row.status,
        started_at=row.started_at,
        search_count=row.search_count or 0,
        owner_id=row.owner_id,
        completed_at=row.completed_at,
    )


def _agent_info(row: AgentRow) -> AgentInfo:
    return AgentInfo(
        agent_id=row.agent_id,
        mission_id=row.mission_id,
        parent_id=row.parent_id,
        role=row.role,
        name=row.name,
        objective=row.objective,
        status=row.status,
        depth=row.depth,
        iteration=row.iteration,
        progress=row.progress,
        model=row.model,
        current_activity=row.current_activity,
        pending_input=row.pending_input_json,
        completion_output=row.completion_output,
        context=dict(row.context_json or {}),
        last_completion_check=row.last_completion_check,
        completed_at=row.completed_at,
        created_at=row.created_at,
        claim_token=row.claim_token,
    )


def _finding_info(row: FindingRow) -> FindingInfo:
    return FindingInfo(
        finding_id=row.id,
        mission_id=row.mission_id,
        agent_id=row.agent_id,
        agent_name=row.agent_name,
        agent_role=row.agent_role,
        content=row.content,
        created_at=row.created_at,
    )


def _section_info(row: ReportSectionRow) -> ReportSectionInfo:
    return ReportSectionInfo(
        section_id=row.id,
        mission_id=row.mission_id,
        agent_id=row.agent_id,
        agent_name=row.agent_name,
        section_type=row.section_type,
        content=row.content,
        title=row.title,
        created_at=row.created_at,
    )


def _new_agent_row(mission_id: str, child: NewAgent, now: datetime) -> AgentRow:
    return AgentRow(
        agent_id=child.agent_id,
        mission_id=mission_id,
        parent_id=child.parent_id,
        role=AgentRole.coerce(child.role),
        name=child.name,
        objective=child.objective,
        status=AgentStatus.SPAWNING,
        depth=child.depth,
        iteration=0,
        progress=0,
        model=child.model,
        current_activity="Initializing...",
        context_json=dict(child.context),
        created_at=now,
        updated_at=now,
    )


class CanopyStore:
    """Transactional facade over the Canopy repositories."""

    def __init__(self, session_factory: sessionmaker[Session]) -> None:
        self._session_factory = session_factory

    @contextmanager
    def transaction(self) -> Iterator[_Repos]:
        """Open a session, begin a transaction, and yield bound repositories."""
        session = self._session_factory()
        try:
            with session.begin():
                yield _Repos.bind(session)
        finally:
            session.close()

    # ------------------------------------------------------------------
    # Missions
    # ------------------------------------------------------------------

    def create_mission(
        self,
        objective: str,
        agents: Sequence[NewAgent],
        *,
        owner_id: str | None = None,
        mission_id: str | None = None,
        started_at: datetime | None = None,
    ) -> MissionInfo:
        """Insert a mission and its initial agents (root first)."""
        now = utcnow()
        row = MissionRow(
            mission_id=mission_id or uuid.uuid4().hex,
            objective=objective,
            status=MissionStatus.ACTIVE,
            owner_id=owner_id,
            search_count=0,
            started_at=started_at or now,
        )
        with self.transaction() as repos:
            repos.missions.save(row)
            for agent in agents:
                repos.agents.save(_new_agent_row(row.mission_id, agent, now))
                repos.events.save(
                    EventRow(
                        mission_id=row.mission_id,
                        agent_id=agent.agent_id,
                        event_type="spawn",
                        message=f"{agent.name} spawned as {agent.role}",
                        created_at=now,
                    )
                )
        logger.info("Mission %s created with %d agent(s)", row.mission_id, len(agents))
        return _mission_info(row)

    def get_mission(self, mission_id: str) -> MissionInfo:
        with self.transaction() as repos:
            row = repos.missions.get(mission_id)
            if row is None:
                raise MissionNotFoundError(mission_id)
            return _mission_info(row)

    def list_missions(self, statuses: Sequence[MissionStatus]) -> list[MissionInfo]:
        with self.transaction() as repos:
            return [_mission_info(r) for r in repos.missions.list_by_status(statuses)]

    def advance_mission(
        self, mission_id: str, expected: MissionStatus, target: MissionStatus
    ) -> bool:
        """Conditionally move a mission forward. Returns True if this call did it.

        Raises:
            InvalidTransitionError: If *target* does not come after *expected*.
        """
        validate_mission_transition(expected, target)
        completed_at = utcnow() if target is MissionStatus.COMPLETED else None
        with self.transaction() as repos:
            return repos.missions.advance_status(
                mission_id, expected, target, completed_at=completed_at
            )

    def claim_synthesis(self, mission_id: str, *, lease_seconds: int = 300) -> bool:
        """Claim the one-time synthesis pass. A claim older than the lease is retaken."""
        now = utcnow()
        with self.transaction() as repos:
            return repos.missions.claim_synthesis(
                mission_id, now, now - timedelta(seconds=lease_seconds)
            )

    def release_synthesis(self, mission_id: str) -> None:
        with self.transaction() as repos:
            repos.missions.release_synthesis(mission_id)

    def complete_synthesis(
        self,
        mission_id: str,
        *,
        agent_name: str,
        content: str,
        usage: UsageTally | None = None,
    ) -> bool:
        """Write the synthesis section and complete the mission in one transaction.

        Returns False (and writes nothing) if the mission already left
        ``synthesizing``.
        """
        now = utcnow()
        with self.transaction() as repos:
            if not repos.missions.advance_status(
                mission_id, MissionStatus.SYNTHESIZING, MissionStatus.COMPLETED, completed_at=now
            ):
                return False
            repos.reports.save(
                ReportSectionRow(
                    mission_id=mission_id,
                    agent_name=agent_name,
                    section_type="synthesis",
                    content=content,
                    created_at=now,
                )
            )
            if usage is not None:
                repos.usage.save(self._usage_row(mission_id, None, usage, now))
            repos.events.save(
                EventRow(
                    mission_id=mission_id,
                    event_type="synthesis",
                    message="Mission report ready",
                    created_at=now,
                )
            )
            return True

    # ------------------------------------------------------------------
    # Agents
    # ------------------------------------------------------------------

    def get_agent(self, agent_id: str) -> AgentInfo:
        with self.transaction() as repos:
            row = repos.agents.get(agent_id)
            if row is None:
                raise AgentNotFoundError(agent_id)
            return _agent_info(row)

    def list_agents(self, mission_id: str) -> list[AgentInfo]:
        with self.transaction() as repos:
            return [_agent_info(r) for r in repos.agents.list_for_mission(mission_id)]

    def agent_tree(self, mission_id: str) -> AgentTree:
        with self.transaction() as repos:
            return AgentTree.from_pairs(repos.agents.tree_pairs(mission_id))

    def child_ids(self, agent_id: str) -> list[str]:
        with self.transaction() as repos:
            return repos.agents.child_ids(agent_id)

    def activate_spawning_agents(self, mission_id: str) -> int:
        with self.transaction() as repos:
            promoted = repos.agents.activate_spawning(mission_id, utcnow())
        if promoted:
            logger.debug("Mission %s: activated %d spawning agent(s)", mission_id, promoted)
        return promoted

    def claim_one_working_agent(
        self, mission_id: str, *, lease_seconds: int = 300
    ) -> AgentInfo | None:
        """Atomically claim one ``working`` agent. Store errors propagate."""
        now = utcnow()
        token = uuid.uuid4().hex
        with self.transaction() as repos:
            row = repos.agents.claim_one_working(
                mission_id, token, now, now - timedelta(seconds=lease_seconds)
            )
            return _agent_info(row) if row is not None else None

    def release_agent(
        self,
        agent_id: str,
        status: AgentStatus,
        *,
        claim_token: str | None = None,
        **values: Any,
    ) -> bool:
        """Write the agent back with a new status, clearing its claim.

        With *claim_token* the write only lands while that claim is held.
        Returns True if the row was updated.
        """
        with self.transaction() as repos:
            return repos.agents.write_back(
                agent_id, {"status": status, **values}, utcnow(), claim_token=claim_token
            )

    def all_agents_terminal(self, mission_id: str) -> bool:
        with self.transaction() as repos:
            return repos.agents.all_terminal(mission_id)

    def completed_children_since(
        self, parent_id: str, since: datetime | None
    ) -> list[AgentInfo]:
        with self.transaction() as repos:
            return [
                _agent_info(r)
                for r in repos.agents.completed_children_since(parent_id, since)
            ]

    def completed_outputs(self, mission_id: str) -> list[AgentInfo]:
        with self.transaction() as repos:
            return [_agent_info(r) for r in repos.agents.completed_with_output(mission_id)]

    def set_agents_status(
        self,
        mission_id: str,
        from_statuses: Sequence[AgentStatus],
        target: AgentStatus,
        **values: Any,
    ) -> list[str]:
        """Bulk-move every agent in *from_statuses* to *target*. Returns their ids."""
        with self.transaction() as repos:
            return repos.agents.bulk_set_status(
                mission_id, from_statuses, {"status": target, **values}, utcnow()
            )

    # ------------------------------------------------------------------
    # Messages, findings, reports, events, usage
    # ------------------------------------------------------------------

    def load_messages(self, agent_id: str) -> list[dict[str, str]]:
        with self.transaction() as repos:
            return [
                {"role": m.role, "content": m.content}
                for m in repos.messages.load(agent_id)
            ]

    def append_messages(self, agent_id: str, messages: list[dict[str, str]]) -> None:
        with self.transaction() as repos:
            repos.messages.append(agent_id, messages, utcnow())

    def sibling_findings(
        self, mission_id: str, agent_id: str, parent_id: str, limit: int
    ) -> list[FindingInfo]:
        with self.transaction() as repos:
            siblings = repos.agents.sibling_ids(agent_id, parent_id)
            rows = repos.findings.recent_for_agents(mission_id, siblings, limit)
            return [_finding_info(r) for r in rows]

    def recent_findings(self, mission_id: str, limit: int) -> list[FindingInfo]:
        with self.transaction() as repos:
            return [
                _finding_info(r) for r in repos.findings.recent_for_mission(mission_id, limit)
            ]

    def report_sections(
        self, mission_id: str, section_type: str | None = None
    ) -> list[ReportSectionInfo]:
        with self.transaction() as repos:
            return [
                _section_info(r)
                for r in repos.reports.list_for_mission(mission_id, section_type)
            ]

    def add_event(
        self, mission_id: str, event_type: str, message: str, agent_id: str | None = None
    ) -> None:
        with self.transaction() as repos:
            repos.events.save(
                EventRow(
                    mission_id=mission_id,
                    agent_id=agent_id,
                    event_type=event_type,
                    message=message,
                    created_at=utcnow(),
                )
            )

    def list_events(self, mission_id: str, limit: int = 100) -> list[tuple[str, str]]:
        """Newest events as (event_type, message) pairs."""
        with self.transaction() as repos:
            return [(e.event_type, e.message) for e in repos.events.list_for_mission(mission_id, limit)]

    def usage_totals(self, mission_id: str) -> dict[str, int]:
        with self.transaction() as repos:
            return repos.usage.totals(mission_id)

    # ------------------------------------------------------------------
    # Iteration write-back
    # ------------------------------------------------------------------

    def apply_iteration(self, agent: AgentInfo, batch: WriteBatch) -> None:
        """Apply every write intent of one iteration in a single transaction.

        When *agent* carries a claim token the agent update goes first and
        only lands while that claim is still held. A claim cleared in the
        meantime (reaper drain, credit pause) rolls back the whole batch.

        Raises:
            ClaimLostError: If the claim was lost before the write-back.
        """
        now = utcnow()
        values: dict[str, Any] = {}
        update = batch.agent_update
        if update is not None:
            values = {
                "status": update.status,
                "iteration": update.iteration,
                "progress": update.progress,
                "current_activity": update.current_activity,
                "pending_input_json": update.pending_input,
                "last_completion_check": update.completion_check or now,
            }
            if update.completion_output is not None:
                values["completion_output"] = update.completion_output
                values["completed_at"] = now
            if update.context is not None:
                values["context_json"] = update.context

        with self.transaction() as repos:
            written = repos.agents.write_back(
                agent.agent_id, values, now, claim_token=agent.claim_token
            )
            if not written and agent.claim_token is not None:
                raise ClaimLostError(agent.agent_id)

            if batch.replace_history is not None:
                repos.messages.replace(agent.agent_id, batch.replace_history, now)
            repos.messages.append(agent.agent_id, batch.messages, now)

            for child in batch.children:
                repos.agents.save(_new_agent_row(agent.mission_id, child, now))

            for finding in batch.findings:
                repos.findings.save(
                    FindingRow(
                        mission_id=agent.mission_id,
                        agent_id=agent.agent_id,
                        agent_name=agent.name,
                        agent_role=agent.role.value,
                        content=finding.content,
                        created_at=now,
                    )
                )

            for section in batch.report_sections:
                repos.reports.save(
                    ReportSectionRow(
                        mission_id=agent.mission_id,
                        agent_id=agent.agent_id,
                        agent_name=agent.name,
                        role=agent.role.value,
                        section_type=section.section_type,
                        title=section.title,
                        content=section.content,
                        created_at=now,
                    )
                )

            for event in batch.events:
                repos.events.save(
                    EventRow(
                        mission_id=agent.mission_id,
                        agent_id=event.agent_id or agent.agent_id,
                        event_type=event.event_type,
                        message=event.message,
                        created_at=now,
                    )
                )

            for tally in batch.usage:
                repos.usage.save(self._usage_row(agent.mission_id, agent.agent_id, tally, now))

            repos.missions.add_search_count(agent.mission_id, batch.search_count_delta)

    # ------------------------------------------------------------------
    # Human input
    # ------------------------------------------------------------------

    def respond_input(self, agent_id: str, response: Any, message: str) -> AgentInfo:
        """Clear a pending input request and put the agent back to work."""
        now = utcnow()
        with self.transaction() as repos:
            row = repos.agents.get(agent_id)
            if row is None:
                raise AgentNotFoundError(agent_id)
            context = dict(row.context_json or {})
            context["human_response"] = response
            repos.agents.write_back(
                agent_id,
                {
                    "status": AgentStatus.WORKING,
                    "pending_input_json": None,
                    "context_json": context,
                    "current_activity": "Resuming with human input",
                },
                now,
            )
            repos.messages.append(agent_id, [{"role": "user", "content": message}], now)
            repos.events.save(
                EventRow(
                    mission_id=row.mission_id,
                    agent_id=agent_id,
                    event_type="input",
                    message="Human input provided",
                    created_at=now,
                )
            )
            refreshed = repos.agents.get(agent_id)
            repos.session.refresh(refreshed)
            return _agent_info(refreshed)

    @staticmethod
    def _usage_row(
        mission_id: str, agent_id: str | None, tally: UsageTally, now: datetime
    ) -> UsageRow:
        return UsageRow(
            mission_id=mission_id,
            agent_id=agent_id,
            model=tally.model,
            prompt_tokens=tally.prompt_tokens,
            completion_tokens=tally.completion_tokens,
            search_count=tally.search_count,
            description=tally.description,
            created_at=now,
        )
