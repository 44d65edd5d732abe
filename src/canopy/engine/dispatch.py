"""Dispatch: one tick for one mission, and one tick over all missions.

Dispatcher.tick() is what an external trigger calls for "run one tick
for mission X". In ``iterate`` mode it claims one agent, checks credit,
and runs one iteration; in ``synthesize`` mode (or whenever the mission
is already synthesizing) it runs the one-time synthesis pass.

Dispatcher.run_tick() is the timer entry point: reap stale missions,
then tick every active and synthesizing mission. A failure in one
mission is logged and reported in the summary without affecting others.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from canopy.engine.iteration import IterationEngine
from canopy.engine.scheduler import claim_next_agent
from canopy.exceptions import CanopyError, DispatchError
from canopy.models.config import CanopyConfig
from canopy.models.iteration import TickAction, TickResult, TransitionKind
from canopy.models.mission import AgentStatus, MissionStatus
from canopy.operations.reaper import reap_stale_missions
from canopy.operations.synthesis import run_synthesis
from canopy.ratelimit import RateLimiter

if TYPE_CHECKING:
    from canopy.billing import BillingCollaborator
    from canopy.llm.protocols import WorkProducer
    from canopy.storage.store import CanopyStore
    from canopy.toolkit.search import SearchProvider

logger = logging.getLogger(__name__)

MODES = ("iterate", "synthesize")

INSUFFICIENT_CREDITS_ACTIVITY = "Insufficient credits: add credits to continue"

_TRANSITION_ACTIONS: dict[TransitionKind, TickAction] = {
    TransitionKind.CONTINUE: TickAction.ITERATED,
    TransitionKind.COMPLETE: TickAction.COMPLETED,
    TransitionKind.WAITING_FOR_INPUT: TickAction.WAITING_FOR_INPUT,
}


class RateLimitedError(DispatchError):
    """Raised by Dispatcher.request() when the caller is over its limit."""

    def __init__(self, caller: str, retry_after: float) -> None:
        self.caller = caller
        self.retry_after = retry_after
        super().__init__(f"Too many requests from {caller}; retry in {retry_after:.0f}s")


class Dispatcher:
    """Tick-driven driver over the durable store.

    Holds no cross-tick state besides the advisory rate limiter.
    """

    def __init__(
        self,
        store: CanopyStore,
        llm: WorkProducer,
        *,
        config: CanopyConfig | None = None,
        search_provider: SearchProvider | None = None,
        billing: BillingCollaborator | None = None,
        rate_limiter: RateLimiter | None = None,
    ) -> None:
        self._store = store
        self._llm = llm
        self._config = config or CanopyConfig()
        self._billing = billing
        self._rate_limiter = rate_limiter if rate_limiter is not None else RateLimiter()
        self._engine = IterationEngine(
            store,
            llm,
            config=self._config,
            search_provider=search_provider,
            billing=billing,
        )

    def request(self, caller: str | None, mission_id: str, mode: str = "iterate") -> TickResult:
        """Rate-limited entry point for an external "run one tick" request.

        Raises:
            RateLimitedError: If *caller* exceeded its advisory limit.
        """
        decision = self._rate_limiter.check(caller, "agent")
        if not decision.allowed:
            raise RateLimitedError(caller or "anonymous", decision.retry_after)
        return self.tick(mission_id, mode)

    def tick(self, mission_id: str, mode: str = "iterate") -> TickResult:
        """Run one tick for *mission_id*.

        Raises:
            DispatchError: If *mode* is not ``iterate`` or ``synthesize``.
            MissionNotFoundError: If the mission does not exist.
        """
        if mode not in MODES:
            raise DispatchError(f"Unknown dispatch mode: {mode!r} (expected one of {MODES})")

        mission = self._store.get_mission(mission_id)
        if mode == "synthesize" or mission.status is MissionStatus.SYNTHESIZING:
            synthesis = run_synthesis(
                self._store, mission, self._llm, config=self._config, billing=self._billing
            )
            action = TickAction.SYNTHESIZED if synthesis.ran else TickAction.NO_AGENT_AVAILABLE
            return TickResult(mission_id=mission_id, action=action)

        if mission.status is MissionStatus.COMPLETED:
            return TickResult(mission_id=mission_id, action=TickAction.NO_AGENT_AVAILABLE)

        agent = claim_next_agent(
            self._store, mission_id, lease_seconds=self._config.claim_lease_seconds
        )
        if agent is None:
            return TickResult(mission_id=mission_id, action=TickAction.NO_AGENT_AVAILABLE)

        if (
            self._billing is not None
            and mission.owner_id
            and not self._billing.has_credit(mission.owner_id)
        ):
            paused = self._store.set_agents_status(
                mission_id,
                [AgentStatus.WORKING],
                AgentStatus.PAUSED,
                current_activity=INSUFFICIENT_CREDITS_ACTIVITY,
            )
            logger.info("Mission %s: insufficient credits, paused %d agent(s)", mission_id, len(paused))
            return TickResult(
                mission_id=mission_id,
                action=TickAction.INSUFFICIENT_CREDITS,
                agent_id=agent.agent_id,
                agent_name=agent.name,
            )

        outcome = self._engine.run(agent, mission)
        if not outcome.applied:
            action = TickAction.NO_AGENT_AVAILABLE
        else:
            action = _TRANSITION_ACTIONS[outcome.transition]
        return TickResult(
            mission_id=mission_id,
            action=action,
            agent_id=outcome.agent_id,
            agent_name=outcome.agent_name,
            iteration=outcome.iteration,
        )

    def run_tick(self) -> list[TickResult]:
        """Reap stale missions, then tick every active or synthesizing mission."""
        reap_stale_missions(self._store, max_age_seconds=self._config.stale_after_seconds)

        results: list[TickResult] = []
        missions = self._store.list_missions([MissionStatus.ACTIVE, MissionStatus.SYNTHESIZING])
        for mission in missions:
            mode = "synthesize" if mission.status is MissionStatus.SYNTHESIZING else "iterate"
            try:
                results.append(self.tick(mission.mission_id, mode))
            except Exception as exc:
                logger.exception("Mission %s: tick failed", mission.mission_id)
                error = str(exc) if isinstance(exc, CanopyError) else f"{type(exc).__name__}: {exc}"
                results.append(TickResult(mission_id=mission.mission_id, action=None, error=error))
        logger.debug("Tick dispatched %d mission(s)", len(results))
        return results
