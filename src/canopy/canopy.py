"""Canopy facade: open a store and drive missions.

Usage::

    with Canopy.open("missions.db") as canopy:
        mission = canopy.create_mission("Compare heat pump vendors")
        for result in canopy.run_tick():
            print(result.to_dict())
"""

from __future__ import annotations

import json
import logging
import uuid
from typing import TYPE_CHECKING, Any, Sequence

from canopy.engine.dispatch import Dispatcher
from canopy.engine.iteration import human_response_message
from canopy.exceptions import InvalidTransitionError
from canopy.models.config import CanopyConfig
from canopy.models.iteration import NewAgent
from canopy.models.mission import AgentRole, AgentStatus
from canopy.operations.reaper import reap_stale_missions
from canopy.operations.spawn import clean_text
from canopy.storage.engine import create_canopy_engine, create_session_factory, init_db
from canopy.storage.store import CanopyStore
from canopy.toolkit.search import get_search_provider

if TYPE_CHECKING:
    from datetime import datetime

    from sqlalchemy import Engine

    from canopy.billing import BillingCollaborator
    from canopy.llm.protocols import WorkProducer
    from canopy.models.iteration import TickResult
    from canopy.models.mission import AgentInfo, MissionInfo, ReportSectionInfo
    from canopy.toolkit.search import SearchProvider

logger = logging.getLogger(__name__)

RESUME_ACTIVITY = "Resuming work"


class Canopy:
    """Entry point tying the store, the collaborators and the dispatcher together.

    Use :meth:`open` rather than the constructor.
    """

    def __init__(
        self,
        *,
        engine: Engine,
        store: CanopyStore,
        config: CanopyConfig,
        llm: WorkProducer | None = None,
        search_provider: SearchProvider | None = None,
        billing: BillingCollaborator | None = None,
    ) -> None:
        self._engine = engine
        self._store = store
        self._config = config
        self._llm = llm
        self._owns_llm = False
        self._search_provider = search_provider
        self._billing = billing
        self._dispatcher: Dispatcher | None = None
        self._closed = False

    @classmethod
    def open(
        cls,
        path: str = ":memory:",
        *,
        url: str | None = None,
        config: CanopyConfig | None = None,
        llm: WorkProducer | None = None,
        search_provider: SearchProvider | None = None,
        search: bool = True,
        billing: BillingCollaborator | None = None,
    ) -> Canopy:
        """Open (or create) a Canopy database.

        Args:
            path: SQLite path. ``":memory:"`` for in-memory (default).
            url: Full SQLAlchemy URL; overrides *path*.
            config: Scheduling configuration. Defaults created if None.
            llm: Work-producing collaborator. An OpenAIClient configured
                from the environment is created on first use if None.
            search_provider: Search backend. When None and *search* is
                True, the provider named by the environment is used if
                its API key is set.
            search: Set False to disable web search entirely.
            billing: Billing collaborator. None skips credit checks.
        """
        if config is None:
            config = CanopyConfig(db_path=path, db_url=url)

        engine = create_canopy_engine(config.db_path, url=config.db_url)
        init_db(engine)
        store = CanopyStore(create_session_factory(engine))

        if search_provider is None and search:
            search_provider = get_search_provider()

        return cls(
            engine=engine,
            store=store,
            config=config,
            llm=llm,
            search_provider=search_provider,
            billing=billing,
        )

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------

    @property
    def store(self) -> CanopyStore:
        return self._store

    @property
    def config(self) -> CanopyConfig:
        return self._config

    @property
    def llm(self) -> WorkProducer:
        """The work producer, building the default HTTP client on first access.

        Raises:
            LLMConfigError: If no client was given and no API key is set.
        """
        if self._llm is None:
            from canopy.llm.client import OpenAIClient

            self._llm = OpenAIClient(default_model=self._config.model)
            self._owns_llm = True
        return self._llm

    @property
    def dispatcher(self) -> Dispatcher:
        if self._dispatcher is None:
            self._dispatcher = Dispatcher(
                self._store,
                self.llm,
                config=self._config,
                search_provider=self._search_provider,
                billing=self._billing,
            )
        return self._dispatcher

    # ------------------------------------------------------------------
    # Missions
    # ------------------------------------------------------------------

    def create_mission(
        self,
        objective: str,
        *,
        owner_id: str | None = None,
        plan: dict[str, Any] | None = None,
        started_at: datetime | None = None,
    ) -> MissionInfo:
        """Create a mission and its root agent (or a whole planned tree).

        Args:
            objective: The mission objective.
            owner_id: Owner used for credit checks and billing.
            plan: Optional root agent config ``{role, name, objective,
                model, children: [...]}``. Nodes beyond the spawn budget
                (depth, children per agent, total) are dropped. Defaults
                to a single coordinator working on *objective*.
            started_at: Override the start time (naive UTC).
        """
        objective = clean_text(objective, self._config.objective_max_chars)
        if not objective:
            raise ValueError("Mission objective must not be empty")
        root = plan or {"role": AgentRole.COORDINATOR.value, "name": "Coordinator"}
        agents = self._plan_agents(root, objective)
        return self._store.create_mission(
            objective, agents, owner_id=owner_id, started_at=started_at
        )

    def _plan_agents(self, root: dict[str, Any], objective: str) -> list[NewAgent]:
        budget = self._config.budget
        agents: list[NewAgent] = []

        def visit(node: dict[str, Any], parent_id: str | None, depth: int) -> None:
            if len(agents) >= budget.max_total_agents or depth > budget.max_depth:
                return
            role = AgentRole.coerce(node.get("role"))
            name = clean_text(str(node.get("name") or ""), self._config.name_max_chars)
            agent = NewAgent(
                agent_id=str(uuid.uuid4()),
                parent_id=parent_id,
                role=role.value,
                name=name or f"{role.value.title()} agent",
                objective=clean_text(
                    str(node.get("objective") or objective), self._config.objective_max_chars
                ),
                depth=depth,
                model=node.get("model") or self._config.model,
                context=dict(node.get("context") or {}),
            )
            agents.append(agent)
            children = node.get("children") or []
            for child in list(children)[: budget.max_spawns_per_agent]:
                if isinstance(child, dict):
                    visit(child, agent.agent_id, depth + 1)

        visit(root, None, 0)
        return agents

    def get_mission(self, mission_id: str) -> MissionInfo:
        return self._store.get_mission(mission_id)

    def list_agents(self, mission_id: str) -> list[AgentInfo]:
        return self._store.list_agents(mission_id)

    def report(self, mission_id: str, section_type: str | None = None) -> list[ReportSectionInfo]:
        return self._store.report_sections(mission_id, section_type)

    def events(self, mission_id: str, limit: int = 100) -> list[tuple[str, str]]:
        return self._store.list_events(mission_id, limit)

    def usage(self, mission_id: str) -> dict[str, int]:
        return self._store.usage_totals(mission_id)

    # ------------------------------------------------------------------
    # Dispatch
    # ------------------------------------------------------------------

    def tick(self, mission_id: str, mode: str = "iterate") -> TickResult:
        """Run one tick for one mission. See :meth:`Dispatcher.tick`."""
        return self.dispatcher.tick(mission_id, mode)

    def run_tick(self) -> list[TickResult]:
        """Reap, then tick every active or synthesizing mission."""
        return self.dispatcher.run_tick()

    def reap(self, now: datetime | None = None) -> list[str]:
        return reap_stale_missions(
            self._store, now, max_age_seconds=self._config.stale_after_seconds
        )

    # ------------------------------------------------------------------
    # Human intervention
    # ------------------------------------------------------------------

    def respond_input(self, agent_id: str, response: Any) -> AgentInfo:
        """Answer a waiting agent's input request and put it back to work.

        Raises:
            AgentNotFoundError: If the agent does not exist.
            InvalidTransitionError: If the agent is not ``waiting``.
        """
        agent = self._store.get_agent(agent_id)
        if agent.status is not AgentStatus.WAITING:
            raise InvalidTransitionError("agent", agent.status.value, AgentStatus.WORKING.value)
        message = human_response_message(json.dumps(response, ensure_ascii=False, default=str))
        updated = self._store.respond_input(agent_id, response, message)
        logger.info("Agent %s received human input", agent_id)
        return updated

    def resume_mission(self, mission_id: str) -> Sequence[str]:
        """Move every ``paused`` agent of the mission back to ``working``."""
        self._store.get_mission(mission_id)
        resumed = self._store.set_agents_status(
            mission_id,
            [AgentStatus.PAUSED],
            AgentStatus.WORKING,
            current_activity=RESUME_ACTIVITY,
        )
        logger.info("Mission %s: resumed %d agent(s)", mission_id, len(resumed))
        return resumed

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def close(self) -> None:
        """Close an owned HTTP client and dispose the engine."""
        if self._closed:
            return
        self._closed = True
        if self._owns_llm and self._llm is not None:
            self._llm.close()
        self._engine.dispose()

    def __enter__(self) -> Canopy:
        return self

    def __exit__(self, exc_type: type | None, exc_val: BaseException | None, exc_tb: object) -> None:
        self.close()

    def __repr__(self) -> str:
        return f"Canopy(db={self._config.db_url or self._config.db_path!r})"
