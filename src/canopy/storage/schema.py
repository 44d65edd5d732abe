"""SQLAlchemy ORM schema for Canopy.

Defines all database tables: missions, agents, agent_messages, findings,
report_sections, events, usage_records, _canopy_meta.

IMPORTANT: MissionStatus, AgentStatus and AgentRole are imported from the
domain models -- they are NOT redefined here. The ORM uses the same
Python enums.
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlalchemy import (
    DateTime,
    ForeignKey,
    Index,
    Integer,
    JSON,
    String,
    Text,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from canopy.models.mission import AgentRole, AgentStatus, MissionStatus


class Base(DeclarativeBase):
    """Base class for all Canopy ORM models."""

    pass


class MissionRow(Base):
    """One end-to-end run toward a single objective."""

    __tablename__ = "missions"

    mission_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    objective: Mapped[str] = mapped_column(Text, nullable=False)
    status: Mapped[MissionStatus] = mapped_column(nullable=False, index=True)
    owner_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    search_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    started_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    synthesis_claimed_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime, nullable=True
    )
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)


class AgentRow(Base):
    """An agent in a mission's tree.

    ``claim_token`` / ``claimed_at`` are set by the atomic claim and
    cleared by every status write-back.
    """

    __tablename__ = "agents"

    agent_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    mission_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("missions.mission_id"), nullable=False
    )
    parent_id: Mapped[Optional[str]] = mapped_column(
        String(64), ForeignKey("agents.agent_id"), nullable=True
    )
    role: Mapped[AgentRole] = mapped_column(nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    objective: Mapped[str] = mapped_column(Text, nullable=False)
    status: Mapped[AgentStatus] = mapped_column(nullable=False)
    depth: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    iteration: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    progress: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    model: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    current_activity: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    pending_input_json: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    completion_output: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    context_json: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    claim_token: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    claimed_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    last_completion_check: Mapped[Optional[datetime]] = mapped_column(
        DateTime, nullable=True
    )
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)

    __table_args__ = (
        Index("ix_agents_mission_status", "mission_id", "status"),
        Index("ix_agents_parent", "parent_id"),
    )


class MessageRow(Base):
    """Append-only conversation history entry for one agent.

    Replaced wholesale only by compression.
    """

    __tablename__ = "agent_messages"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    agent_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("agents.agent_id"), nullable=False
    )
    seq: Mapped[int] = mapped_column(Integer, nullable=False)
    role: Mapped[str] = mapped_column(String(20), nullable=False)
    content: Mapped[str] = mapped_column(Text, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)

    __table_args__ = (
        Index("ix_agent_messages_agent_seq", "agent_id", "seq"),
    )


class FindingRow(Base):
    """Append-only finding written by an agent. Never mutated."""

    __tablename__ = "findings"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    mission_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("missions.mission_id"), nullable=False
    )
    agent_id: Mapped[Optional[str]] = mapped_column(
        String(64), ForeignKey("agents.agent_id"), nullable=True
    )
    agent_name: Mapped[str] = mapped_column(String(255), nullable=False)
    agent_role: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    content: Mapped[str] = mapped_column(Text, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)

    __table_args__ = (
        Index("ix_findings_mission_time", "mission_id", "created_at"),
        Index("ix_findings_agent", "agent_id"),
    )


class ReportSectionRow(Base):
    """Append-only section of the mission report.

    ``section_type`` is one of "output", "artifact", "synthesis".
    """

    __tablename__ = "report_sections"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    mission_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("missions.mission_id"), nullable=False
    )
    agent_id: Mapped[Optional[str]] = mapped_column(
        String(64), ForeignKey("agents.agent_id"), nullable=True
    )
    agent_name: Mapped[str] = mapped_column(String(255), nullable=False)
    role: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    section_type: Mapped[str] = mapped_column(String(20), nullable=False)
    title: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    content: Mapped[str] = mapped_column(Text, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)

    __table_args__ = (
        Index("ix_report_sections_mission_type", "mission_id", "section_type"),
    )


class EventRow(Base):
    """Activity feed entry (activity, search, spawn, complete, input, reaped, synthesis)."""

    __tablename__ = "events"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    mission_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("missions.mission_id"), nullable=False
    )
    agent_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    event_type: Mapped[str] = mapped_column(String(20), nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)

    __table_args__ = (
        Index("ix_events_mission_time", "mission_id", "created_at"),
    )


class UsageRow(Base):
    """Usage counts reported to the billing collaborator."""

    __tablename__ = "usage_records"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    mission_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("missions.mission_id"), nullable=False
    )
    agent_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    model: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    prompt_tokens: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    completion_tokens: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    search_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)

    __table_args__ = (
        Index("ix_usage_records_mission", "mission_id"),
    )


class CanopyMetaRow(Base):
    """Key-value metadata for the Canopy database itself (e.g., schema version)."""

    __tablename__ = "_canopy_meta"

    key: Mapped[str] = mapped_column(String(255), primary_key=True)
    value: Mapped[str] = mapped_column(Text, nullable=False)
