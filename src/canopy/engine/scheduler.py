"""Claim scheduler.

claim_next_agent() promotes every ``spawning`` agent of the mission to
``working`` and then atomically claims one ``working`` agent. The claim
is the only synchronization point between overlapping ticks; a store
error turns the tick into a no-op that the next tick retries.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from sqlalchemy.exc import SQLAlchemyError

if TYPE_CHECKING:
    from canopy.models.mission import AgentInfo
    from canopy.storage.store import CanopyStore

logger = logging.getLogger(__name__)


def claim_next_agent(
    store: CanopyStore,
    mission_id: str,
    *,
    lease_seconds: int = 300,
) -> AgentInfo | None:
    """Claim at most one agent of *mission_id* for exclusive processing.

    Returns None when no agent is eligible or the store failed. Never
    returns a partially claimed agent: the claim is one conditional
    UPDATE, and on failure its transaction is rolled back.
    """
    try:
        store.activate_spawning_agents(mission_id)
        agent = store.claim_one_working_agent(mission_id, lease_seconds=lease_seconds)
    except SQLAlchemyError as exc:
        logger.warning("Mission %s: claim failed, retrying next tick: %s", mission_id, exc)
        return None

    if agent is not None:
        logger.info(
            "Mission %s: claimed %s (%s, iteration %d)",
            mission_id,
            agent.name,
            agent.agent_id,
            agent.iteration,
        )
    return agent
