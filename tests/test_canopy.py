"""Tests for the Canopy facade."""

from __future__ import annotations

import pytest

from canopy import Canopy
from canopy.exceptions import AgentNotFoundError, InvalidTransitionError, MissionNotFoundError
from canopy.models.budget import SpawnBudget
from canopy.models.config import CanopyConfig
from canopy.models.iteration import TickAction
from canopy.models.mission import AgentRole, AgentStatus, MissionStatus
from tests.conftest import ScriptedLLM, reply


@pytest.fixture
def llm():
    return ScriptedLLM(reply(output="working"))


@pytest.fixture
def canopy(llm):
    c = Canopy.open(llm=llm, search=False)
    yield c
    c.close()


def _waiting_agent(canopy: Canopy) -> str:
    mission = canopy.create_mission("Pick a supplier")
    agent = canopy.list_agents(mission.mission_id)[0]
    canopy.store.activate_spawning_agents(mission.mission_id)
    canopy.store.release_agent(
        agent.agent_id,
        AgentStatus.WAITING,
        pending_input_json={"title": "Which region?", "options": ["EU", "US"]},
    )
    return agent.agent_id


class TestCreateMission:
    def test_default_root(self, canopy):
        mission = canopy.create_mission("  Survey battery chemistries  ")
        assert mission.status is MissionStatus.ACTIVE
        assert mission.objective == "Survey battery chemistries"
        [root] = canopy.list_agents(mission.mission_id)
        assert root.parent_id is None
        assert root.role is AgentRole.COORDINATOR
        assert root.status is AgentStatus.SPAWNING
        assert root.objective == mission.objective

    def test_empty_objective_rejected(self, canopy):
        with pytest.raises(ValueError):
            canopy.create_mission("   ")

    def test_plan_is_cut_to_budget(self, llm):
        config = CanopyConfig(budget=SpawnBudget(max_depth=1, max_spawns_per_agent=2, max_total_agents=10))
        plan = {
            "role": "coordinator",
            "name": "Lead",
            "children": [
                {"role": "researcher", "name": "A", "children": [{"role": "executor", "name": "Too deep"}]},
                {"role": "researcher", "name": "B"},
                {"role": "researcher", "name": "C"},
            ],
        }
        with Canopy.open(config=config, llm=llm, search=False) as canopy:
            mission = canopy.create_mission("Plan check", plan=plan)
            agents = canopy.list_agents(mission.mission_id)
            assert sorted(a.name for a in agents) == ["A", "B", "Lead"]
            depths = {a.name: a.depth for a in agents}
            assert depths == {"Lead": 0, "A": 1, "B": 1}

    def test_total_cap(self, llm):
        config = CanopyConfig(budget=SpawnBudget(max_total_agents=2))
        plan = {"role": "coordinator", "children": [{"role": "researcher"}] * 3}
        with Canopy.open(config=config, llm=llm, search=False) as canopy:
            mission = canopy.create_mission("Cap check", plan=plan)
            assert len(canopy.list_agents(mission.mission_id)) == 2

    def test_unknown_mission(self, canopy):
        with pytest.raises(MissionNotFoundError):
            canopy.get_mission("nope")


class TestDriving:
    def test_tick_and_usage(self, canopy, llm):
        mission = canopy.create_mission("Tick once")
        result = canopy.tick(mission.mission_id)
        assert result.action is TickAction.ITERATED
        assert canopy.usage(mission.mission_id)["prompt_tokens"] == 10
        assert len(llm.calls) == 1
        assert any(kind == "spawn" for kind, _ in canopy.events(mission.mission_id))

    def test_full_lifecycle(self):
        llm = ScriptedLLM(reply(complete=True, output="The answer"), "# Report")
        with Canopy.open(llm=llm, search=False) as canopy:
            mission = canopy.create_mission("Finish fast")
            assert canopy.tick(mission.mission_id).action is TickAction.COMPLETED
            assert [r.action for r in canopy.run_tick()] == [TickAction.SYNTHESIZED]
            assert canopy.get_mission(mission.mission_id).status is MissionStatus.COMPLETED
            assert [s.content for s in canopy.report(mission.mission_id, "synthesis")] == ["# Report"]


class TestHumanIntervention:
    def test_respond_input(self, canopy):
        agent_id = _waiting_agent(canopy)

        agent = canopy.respond_input(agent_id, {"choice": "EU"})

        assert agent.status is AgentStatus.WORKING
        assert agent.pending_input is None
        assert agent.context["human_response"] == {"choice": "EU"}
        assert '"choice": "EU"' in canopy.store.load_messages(agent_id)[-1]["content"]

    def test_respond_to_working_agent_rejected(self, canopy):
        mission = canopy.create_mission("Not waiting")
        agent = canopy.list_agents(mission.mission_id)[0]
        with pytest.raises(InvalidTransitionError):
            canopy.respond_input(agent.agent_id, "hello")

    def test_respond_to_unknown_agent(self, canopy):
        with pytest.raises(AgentNotFoundError):
            canopy.respond_input("ghost", "hello")

    def test_resume_mission(self, canopy):
        mission = canopy.create_mission("Resume me")
        agent = canopy.list_agents(mission.mission_id)[0]
        canopy.store.release_agent(agent.agent_id, AgentStatus.PAUSED)

        assert list(canopy.resume_mission(mission.mission_id)) == [agent.agent_id]
        resumed = canopy.store.get_agent(agent.agent_id)
        assert resumed.status is AgentStatus.WORKING
        assert resumed.current_activity == "Resuming work"
        assert list(canopy.resume_mission(mission.mission_id)) == []


class TestLifecycle:
    def test_close_leaves_injected_llm_open(self, llm):
        canopy = Canopy.open(llm=llm, search=False)
        canopy.close()
        canopy.close()
        assert not getattr(llm, "closed", False)

    def test_repr(self, canopy):
        assert "memory" in repr(canopy)

    def test_file_database_persists(self, tmp_path, llm):
        path = str(tmp_path / "missions.db")
        with Canopy.open(path, llm=llm, search=False) as canopy:
            mission_id = canopy.create_mission("Persist me").mission_id
        with Canopy.open(path, llm=llm, search=False) as canopy:
            assert canopy.get_mission(mission_id).objective == "Persist me"
