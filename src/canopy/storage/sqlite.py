"""SQLite implementations of repository interfaces.

All repositories use SQLAlchemy 2.0-style queries (select()/update() +
session.execute()). Each repository takes a Session in its constructor.
The statements are portable: the claim subquery adds FOR UPDATE SKIP
LOCKED on backends that support it and SQLite simply omits the clause.
"""

from __future__ import annotations

from datetime import datetime
from typing import Sequence

from sqlalchemy import delete, func, or_, select, update
from sqlalchemy.orm import Session, aliased

from canopy.models.mission import (
    TERMINAL_AGENT_STATUSES,
    AgentStatus,
    MissionStatus,
)
from canopy.storage.repositories import (
    AgentRepository,
    EventRepository,
    FindingRepository,
    MessageRepository,
    MissionRepository,
    ReportRepository,
    UsageRepository,
)
from canopy.storage.schema import (
    AgentRow,
    EventRow,
    FindingRow,
    MessageRow,
    MissionRow,
    ReportSectionRow,
    UsageRow,
)

_NO_SYNC = {"synchronize_session": False}


class SqliteMissionRepository(MissionRepository):
    """SQLite implementation of mission repository."""

    def __init__(self, session: Session) -> None:
        self._session = session

    def get(self, mission_id: str) -> MissionRow | None:
        stmt = select(MissionRow).where(MissionRow.mission_id == mission_id)
        return self._session.execute(stmt).scalar_one_or_none()

    def save(self, mission: MissionRow) -> None:
        self._session.add(mission)
        self._session.flush()

    def list_by_status(self, statuses: Sequence[MissionStatus]) -> Sequence[MissionRow]:
        stmt = (
            select(MissionRow)
            .where(MissionRow.status.in_(list(statuses)))
            .order_by(MissionRow.started_at)
        )
        return list(self._session.execute(stmt).scalars().all())

    def advance_status(
        self,
        mission_id: str,
        expected: MissionStatus,
        target: MissionStatus,
        *,
        completed_at: datetime | None = None,
    ) -> bool:
        values: dict = {"status": target}
        if completed_at is not None:
            values["completed_at"] = completed_at
        stmt = (
            update(MissionRow)
            .where(MissionRow.mission_id == mission_id, MissionRow.status == expected)
            .values(**values)
            .execution_options(**_NO_SYNC)
        )
        return self._session.execute(stmt).rowcount == 1

    def claim_synthesis(
        self, mission_id: str, now: datetime, lease_cutoff: datetime
    ) -> bool:
        stmt = (
            update(MissionRow)
            .where(
                MissionRow.mission_id == mission_id,
                MissionRow.status == MissionStatus.SYNTHESIZING,
                or_(
                    MissionRow.synthesis_claimed_at.is_(None),
                    MissionRow.synthesis_claimed_at < lease_cutoff,
                ),
            )
            .values(synthesis_claimed_at=now)
            .execution_options(**_NO_SYNC)
        )
        return self._session.execute(stmt).rowcount == 1

    def release_synthesis(self, mission_id: str) -> None:
        stmt = (
            update(MissionRow)
            .where(
                MissionRow.mission_id == mission_id,
                MissionRow.status == MissionStatus.SYNTHESIZING,
            )
            .values(synthesis_claimed_at=None)
            .execution_options(**_NO_SYNC)
        )
        self._session.execute(stmt)

    def add_search_count(self, mission_id: str, delta: int) -> None:
        if delta <= 0:
            return
        stmt = (
            update(MissionRow)
            .where(MissionRow.mission_id == mission_id)
            .values(search_count=MissionRow.search_count + delta)
            .execution_options(**_NO_SYNC)
        )
        self._session.execute(stmt)


class SqliteAgentRepository(AgentRepository):
    """SQLite implementation of agent repository."""

    def __init__(self, session: Session) -> None:
        self._session = session

    def get(self, agent_id: str) -> AgentRow | None:
        stmt = select(AgentRow).where(AgentRow.agent_id == agent_id)
        return self._session.execute(stmt).scalar_one_or_none()

    def save(self, agent: AgentRow) -> None:
        self._session.add(agent)
        self._session.flush()

    def list_for_mission(self, mission_id: str) -> Sequence[AgentRow]:
        stmt = (
            select(AgentRow)
            .where(AgentRow.mission_id == mission_id)
            .order_by(AgentRow.depth, AgentRow.created_at)
        )
        return list(self._session.execute(stmt).scalars().all())

    def tree_pairs(self, mission_id: str) -> list[tuple[str, str | None]]:
        stmt = select(AgentRow.agent_id, AgentRow.parent_id).where(
            AgentRow.mission_id == mission_id
        )
        return [(row[0], row[1]) for row in self._session.execute(stmt)]

    def child_ids(self, parent_id: str) -> list[str]:
        stmt = select(AgentRow.agent_id).where(AgentRow.parent_id == parent_id)
        return list(self._session.execute(stmt).scalars().all())

    def sibling_ids(self, agent_id: str, parent_id: str) -> list[str]:
        stmt = select(AgentRow.agent_id).where(
            AgentRow.parent_id == parent_id, AgentRow.agent_id != agent_id
        )
        return list(self._session.execute(stmt).scalars().all())

    def activate_spawning(self, mission_id: str, now: datetime) -> int:
        stmt = (
            update(AgentRow)
            .where(
                AgentRow.mission_id == mission_id,
                AgentRow.status == AgentStatus.SPAWNING,
            )
            .values(
                status=AgentStatus.WORKING,
                current_activity="Analyzing objective...",
                updated_at=now,
            )
            .execution_options(**_NO_SYNC)
        )
        return self._session.execute(stmt).rowcount

    def claim_one_working(
        self, mission_id: str, token: str, now: datetime, lease_cutoff: datetime
    ) -> AgentRow | None:
        """Claim with a single conditional UPDATE.

        The candidate is picked by a subquery over an alias of the agents
        table (so it is not correlated to the UPDATE target) and the outer
        WHERE re-checks eligibility, so two racing callers cannot both
        match the same row.
        """
        candidate = aliased(AgentRow)
        candidate_id = (
            select(candidate.agent_id)
            .where(
                candidate.mission_id == mission_id,
                candidate.status == AgentStatus.WORKING,
                or_(candidate.claim_token.is_(None), candidate.claimed_at < lease_cutoff),
            )
            .order_by(candidate.updated_at, candidate.created_at)
            .limit(1)
            .with_for_update(skip_locked=True)
            .scalar_subquery()
        )
        stmt = (
            update(AgentRow)
            .where(
                AgentRow.agent_id == candidate_id,
                AgentRow.status == AgentStatus.WORKING,
                or_(AgentRow.claim_token.is_(None), AgentRow.claimed_at < lease_cutoff),
            )
            .values(claim_token=token, claimed_at=now)
            .execution_options(**_NO_SYNC)
        )
        if self._session.execute(stmt).rowcount != 1:
            return None
        return self._session.execute(
            select(AgentRow).where(AgentRow.claim_token == token)
        ).scalar_one_or_none()

    def write_back(
        self,
        agent_id: str,
        values: dict,
        now: datetime,
        *,
        claim_token: str | None = None,
    ) -> bool:
        conditions = [AgentRow.agent_id == agent_id]
        if claim_token is not None:
            conditions += [
                AgentRow.claim_token == claim_token,
                AgentRow.status.not_in(list(TERMINAL_AGENT_STATUSES)),
            ]
        stmt = (
            update(AgentRow)
            .where(*conditions)
            .values(**values, claim_token=None, claimed_at=None, updated_at=now)
            .execution_options(**_NO_SYNC)
        )
        return self._session.execute(stmt).rowcount == 1

    def all_terminal(self, mission_id: str) -> bool:
        total = self._session.execute(
            select(func.count()).select_from(AgentRow).where(AgentRow.mission_id == mission_id)
        ).scalar_one()
        if total == 0:
            return False
        open_count = self._session.execute(
            select(func.count())
            .select_from(AgentRow)
            .where(
                AgentRow.mission_id == mission_id,
                AgentRow.status.not_in(list(TERMINAL_AGENT_STATUSES)),
            )
        ).scalar_one()
        return open_count == 0

    def completed_children_since(
        self, parent_id: str, since: datetime | None
    ) -> Sequence[AgentRow]:
        conditions = [
            AgentRow.parent_id == parent_id,
            AgentRow.status == AgentStatus.COMPLETED,
            AgentRow.completion_output.is_not(None),
        ]
        if since is not None:
            conditions.append(AgentRow.completed_at > since)
        stmt = select(AgentRow).where(*conditions).order_by(AgentRow.completed_at)
        return list(self._session.execute(stmt).scalars().all())

    def completed_with_output(self, mission_id: str) -> Sequence[AgentRow]:
        stmt = (
            select(AgentRow)
            .where(
                AgentRow.mission_id == mission_id,
                AgentRow.status == AgentStatus.COMPLETED,
                AgentRow.completion_output.is_not(None),
            )
            .order_by(AgentRow.depth, AgentRow.created_at)
        )
        return list(self._session.execute(stmt).scalars().all())

    def bulk_set_status(
        self,
        mission_id: str,
        from_statuses: Sequence[AgentStatus],
        values: dict,
        now: datetime,
    ) -> list[str]:
        ids = list(
            self._session.execute(
                select(AgentRow.agent_id).where(
                    AgentRow.mission_id == mission_id,
                    AgentRow.status.in_(list(from_statuses)),
                )
            ).scalars().all()
        )
        if not ids:
            return []
        stmt = (
            update(AgentRow)
            .where(AgentRow.agent_id.in_(ids), AgentRow.status.in_(list(from_statuses)))
            .values(**values, claim_token=None, claimed_at=None, updated_at=now)
            .execution_options(**_NO_SYNC)
        )
        self._session.execute(stmt)
        return ids


class SqliteMessageRepository(MessageRepository):
    """SQLite implementation of message repository."""

    def __init__(self, session: Session) -> None:
        self._session = session

    def load(self, agent_id: str) -> Sequence[MessageRow]:
        stmt = (
            select(MessageRow)
            .where(MessageRow.agent_id == agent_id)
            .order_by(MessageRow.seq)
        )
        return list(self._session.execute(stmt).scalars().all())

    def append(self, agent_id: str, messages: list[dict[str, str]], now: datetime) -> None:
        if not messages:
            return
        last_seq = self._session.execute(
            select(func.max(MessageRow.seq)).where(MessageRow.agent_id == agent_id)
        ).scalar_one_or_none()
        start = 0 if last_seq is None else last_seq + 1
        for offset, message in enumerate(messages):
            self._session.add(
                MessageRow(
                    agent_id=agent_id,
                    seq=start + offset,
                    role=message["role"],
                    content=message["content"],
                    created_at=now,
                )
            )
        self._session.flush()

    def replace(self, agent_id: str, messages: list[dict[str, str]], now: datetime) -> None:
        self._session.execute(delete(MessageRow).where(MessageRow.agent_id == agent_id))
        self.append(agent_id, messages, now)


class SqliteFindingRepository(FindingRepository):
    """SQLite implementation of finding repository."""

    def __init__(self, session: Session) -> None:
        self._session = session

    def save(self, finding: FindingRow) -> None:
        self._session.add(finding)
        self._session.flush()

    def recent_for_agents(
        self, mission_id: str, agent_ids: Sequence[str], limit: int
    ) -> Sequence[FindingRow]:
        if not agent_ids:
            return []
        stmt = (
            select(FindingRow)
            .where(FindingRow.mission_id == mission_id, FindingRow.agent_id.in_(list(agent_ids)))
            .order_by(FindingRow.created_at.desc(), FindingRow.id.desc())
            .limit(limit)
        )
        return list(self._session.execute(stmt).scalars().all())

    def recent_for_mission(self, mission_id: str, limit: int) -> Sequence[FindingRow]:
        stmt = (
            select(FindingRow)
            .where(FindingRow.mission_id == mission_id)
            .order_by(FindingRow.created_at.desc(), FindingRow.id.desc())
            .limit(limit)
        )
        return list(self._session.execute(stmt).scalars().all())


class SqliteReportRepository(ReportRepository):
    """SQLite implementation of report section repository."""

    def __init__(self, session: Session) -> None:
        self._session = session

    def save(self, section: ReportSectionRow) -> None:
        self._session.add(section)
        self._session.flush()

    def list_for_mission(
        self, mission_id: str, section_type: str | None = None
    ) -> Sequence[ReportSectionRow]:
        conditions = [ReportSectionRow.mission_id == mission_id]
        if section_type is not None:
            conditions.append(ReportSectionRow.section_type == section_type)
        stmt = select(ReportSectionRow).where(*conditions).order_by(ReportSectionRow.id)
        return list(self._session.execute(stmt).scalars().all())


class SqliteEventRepository(EventRepository):
    """SQLite implementation of event repository."""

    def __init__(self, session: Session) -> None:
        self._session = session

    def save(self, event: EventRow) -> None:
        self._session.add(event)
        self._session.flush()

    def list_for_mission(self, mission_id: str, limit: int = 100) -> Sequence[EventRow]:
        stmt = (
            select(EventRow)
            .where(EventRow.mission_id == mission_id)
            .order_by(EventRow.created_at.desc(), EventRow.id.desc())
            .limit(limit)
        )
        return list(self._session.execute(stmt).scalars().all())


class SqliteUsageRepository(UsageRepository):
    """SQLite implementation of usage repository."""

    def __init__(self, session: Session) -> None:
        self._session = session

    def save(self, usage: UsageRow) -> None:
        self._session.add(usage)
        self._session.flush()

    def totals(self, mission_id: str) -> dict[str, int]:
        row = self._session.execute(
            select(
                func.coalesce(func.sum(UsageRow.prompt_tokens), 0),
                func.coalesce(func.sum(UsageRow.completion_tokens), 0),
                func.coalesce(func.sum(UsageRow.search_count), 0),
            ).where(UsageRow.mission_id == mission_id)
        ).one()
        return {
            "prompt_tokens": int(row[0]),
            "completion_tokens": int(row[1]),
            "search_count": int(row[2]),
        }
