"""Stale mission reaper.

Runs once per tick, ahead of claiming. Any active mission older than the
wall-clock cap is force-drained: its ``working`` and ``spawning`` agents
are stamped ``completed`` with a sentinel output, and the mission moves
straight to ``synthesizing``. This bounds mission duration no matter how
slow agents or the collaborator are.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import TYPE_CHECKING

from canopy.clock import utcnow
from canopy.models.mission import AgentStatus, MissionStatus

if TYPE_CHECKING:
    from canopy.storage.store import CanopyStore

logger = logging.getLogger(__name__)

STALE_AFTER_SECONDS = 30 * 60
REAPED_OUTPUT = "Mission time limit reached; agent stopped before finishing its objective."
REAPED_ACTIVITY = "Stopped: mission time limit reached"

_DRAINED_STATUSES = (AgentStatus.WORKING, AgentStatus.SPAWNING)


def is_stale(started_at: datetime, now: datetime, max_age_seconds: int) -> bool:
    return now - started_at > timedelta(seconds=max_age_seconds)


def reap_stale_missions(
    store: CanopyStore,
    now: datetime | None = None,
    max_age_seconds: int = STALE_AFTER_SECONDS,
) -> list[str]:
    """Force-drain every active mission older than *max_age_seconds*.

    Returns the ids of missions this call moved to ``synthesizing``.
    """
    now = now or utcnow()
    reaped: list[str] = []
    for mission in store.list_missions([MissionStatus.ACTIVE]):
        if not is_stale(mission.started_at, now, max_age_seconds):
            continue

        drained = store.set_agents_status(
            mission.mission_id,
            _DRAINED_STATUSES,
            AgentStatus.COMPLETED,
            progress=100,
            completion_output=REAPED_OUTPUT,
            current_activity=REAPED_ACTIVITY,
            completed_at=now,
        )
        moved = store.advance_mission(
            mission.mission_id, MissionStatus.ACTIVE, MissionStatus.SYNTHESIZING
        )
        if not moved:
            continue
        store.add_event(
            mission.mission_id,
            "reaped",
            f"Mission exceeded {max_age_seconds // 60} minutes; {len(drained)} agent(s) stopped",
        )
        logger.info(
            "Reaped mission %s: %d agent(s) force-completed", mission.mission_id, len(drained)
        )
        reaped.append(mission.mission_id)
    return reaped
