"""CLI tests for Canopy via Click's CliRunner.

Each test uses runner.isolated_filesystem() with a file-backed database
since the CLI opens its own connection (separate from SDK setup).
"""

from __future__ import annotations

import json
import os

import pytest
from click.testing import CliRunner

from canopy.canopy import Canopy
from canopy.cli import cli
from canopy.models.mission import AgentStatus, MissionStatus
from tests.conftest import ScriptedLLM, reply

DB = "test.db"


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def runner():
    """Create a Click test runner."""
    return CliRunner()


@pytest.fixture
def scripted(monkeypatch):
    """Route CLI sessions through a scripted LLM instead of the HTTP client."""
    llm = ScriptedLLM(reply(output="Looking into it"))

    def fake_get_canopy(ctx):
        return Canopy.open(path=ctx.obj["db_path"], llm=llm, search=False)

    monkeypatch.setattr("canopy.cli._get_canopy", fake_get_canopy)
    return llm


def _invoke(runner: CliRunner, *args: str):
    # wide terminal so rich never wraps ids and titles
    return runner.invoke(cli, ["--db", DB, "--no-search", *args], env={"COLUMNS": "200"})


def _setup_mission(objective: str = "Map the heat pump market") -> str:
    """Create a mission with the SDK, then close it. Returns the mission id."""
    with Canopy.open(DB, search=False) as canopy:
        return canopy.create_mission(objective).mission_id


def _setup_waiting_agent() -> tuple[str, str]:
    with Canopy.open(DB, search=False) as canopy:
        mission = canopy.create_mission("Choose a region")
        agent = canopy.list_agents(mission.mission_id)[0]
        canopy.store.activate_spawning_agents(mission.mission_id)
        canopy.store.release_agent(
            agent.agent_id,
            AgentStatus.WAITING,
            pending_input_json={"title": "Which region?", "options": ["EU", "US"]},
        )
        return mission.mission_id, agent.agent_id


# ---------------------------------------------------------------------------
# init / create
# ---------------------------------------------------------------------------

def test_init_creates_database(runner):
    with runner.isolated_filesystem():
        result = _invoke(runner, "init")
        assert result.exit_code == 0, result.output
        assert "Initialized" in result.output
        assert os.path.exists(DB)


class TestCreate:
    def test_create_default(self, runner):
        with runner.isolated_filesystem():
            result = _invoke(runner, "create", "Compare inverter vendors")
            assert result.exit_code == 0, result.output
            assert "with 1 agent(s)" in result.output

            with Canopy.open(DB, search=False) as canopy:
                [mission] = canopy.store.list_missions([MissionStatus.ACTIVE])
                assert mission.objective == "Compare inverter vendors"

    def test_create_with_plan_and_owner(self, runner):
        with runner.isolated_filesystem():
            with open("plan.json", "w") as f:
                json.dump(
                    {"role": "coordinator", "name": "Lead", "children": [{"role": "researcher", "name": "R"}]},
                    f,
                )
            result = _invoke(runner, "create", "Planned", "--owner", "acct-1", "--plan", "plan.json")
            assert result.exit_code == 0, result.output
            assert "with 2 agent(s)" in result.output

            with Canopy.open(DB, search=False) as canopy:
                [mission] = canopy.store.list_missions([MissionStatus.ACTIVE])
                assert mission.owner_id == "acct-1"

    def test_create_with_role_and_name(self, runner):
        with runner.isolated_filesystem():
            result = _invoke(runner, "create", "Dig into tariffs", "--role", "researcher", "--name", "Scout")
            assert result.exit_code == 0, result.output

            with Canopy.open(DB, search=False) as canopy:
                [mission] = canopy.store.list_missions([MissionStatus.ACTIVE])
                [root] = canopy.list_agents(mission.mission_id)
                assert root.name == "Scout"
                assert root.role.value == "researcher"

    def test_create_rejects_unknown_role(self, runner):
        with runner.isolated_filesystem():
            result = _invoke(runner, "create", "x", "--role", "wizard")
            assert result.exit_code == 2

    def test_create_empty_objective_fails(self, runner):
        with runner.isolated_filesystem():
            result = _invoke(runner, "create", "   ")
            assert result.exit_code == 1
            assert "Error" in result.output


# ---------------------------------------------------------------------------
# status / report
# ---------------------------------------------------------------------------

class TestStatus:
    def test_no_missions(self, runner):
        with runner.isolated_filesystem():
            result = _invoke(runner, "status")
            assert result.exit_code == 0
            assert "No missions" in result.output

    def test_list_missions(self, runner):
        with runner.isolated_filesystem():
            _setup_mission("Storage study")
            result = _invoke(runner, "status")
            assert result.exit_code == 0
            assert "Storage study" in result.output
            assert "active" in result.output

    def test_mission_tree_shows_input_request(self, runner):
        with runner.isolated_filesystem():
            mission_id, _ = _setup_waiting_agent()
            result = _invoke(runner, "status", mission_id)
            assert result.exit_code == 0, result.output
            assert "Coordinator" in result.output
            assert "Which region?" in result.output
            assert "- EU" in result.output

    def test_unknown_mission(self, runner):
        with runner.isolated_filesystem():
            result = _invoke(runner, "status", "missing")
            assert result.exit_code == 1
            assert "Mission not found" in result.output

    def test_report_empty(self, runner):
        with runner.isolated_filesystem():
            mission_id = _setup_mission()
            result = _invoke(runner, "report", mission_id)
            assert result.exit_code == 0
            assert "No report sections yet" in result.output


# ---------------------------------------------------------------------------
# respond / resume / reap
# ---------------------------------------------------------------------------

class TestIntervention:
    def test_respond_json(self, runner):
        with runner.isolated_filesystem():
            _, agent_id = _setup_waiting_agent()
            result = _invoke(runner, "respond", agent_id, '{"region": "EU"}')
            assert result.exit_code == 0, result.output
            assert "resumed" in result.output

            with Canopy.open(DB, search=False) as canopy:
                agent = canopy.store.get_agent(agent_id)
                assert agent.status is AgentStatus.WORKING
                assert agent.context["human_response"] == {"region": "EU"}

    def test_respond_plain_text(self, runner):
        with runner.isolated_filesystem():
            _, agent_id = _setup_waiting_agent()
            result = _invoke(runner, "respond", agent_id, "go with EU")
            assert result.exit_code == 0, result.output

            with Canopy.open(DB, search=False) as canopy:
                assert canopy.store.get_agent(agent_id).context["human_response"] == "go with EU"

    def test_respond_to_agent_not_waiting(self, runner):
        with runner.isolated_filesystem():
            _, agent_id = _setup_waiting_agent()
            assert _invoke(runner, "respond", agent_id, "first").exit_code == 0
            result = _invoke(runner, "respond", agent_id, "second")
            assert result.exit_code == 1
            assert "Invalid agent transition" in result.output

    def test_resume(self, runner):
        with runner.isolated_filesystem():
            mission_id = _setup_mission()
            with Canopy.open(DB, search=False) as canopy:
                agent = canopy.list_agents(mission_id)[0]
                canopy.store.release_agent(agent.agent_id, AgentStatus.PAUSED)
            result = _invoke(runner, "resume", mission_id)
            assert result.exit_code == 0
            assert "Resumed 1 agent(s)" in result.output

    def test_reap_nothing_stale(self, runner):
        with runner.isolated_filesystem():
            _setup_mission()
            result = _invoke(runner, "reap")
            assert result.exit_code == 0
            assert "No stale missions" in result.output


# ---------------------------------------------------------------------------
# tick / run
# ---------------------------------------------------------------------------

class TestDriving:
    def test_tick(self, runner, scripted):
        with runner.isolated_filesystem():
            mission_id = _setup_mission()
            result = _invoke(runner, "tick", mission_id)
            assert result.exit_code == 0, result.output
            assert "iterated" in result.output
            assert len(scripted.calls) == 1

    def test_run_multiple_ticks(self, runner, scripted):
        with runner.isolated_filesystem():
            _setup_mission()
            result = _invoke(runner, "run", "-n", "2")
            assert result.exit_code == 0, result.output
            assert "Tick 1" in result.output
            assert "Tick 2" in result.output
            assert len(scripted.calls) == 2

    def test_run_with_nothing_to_do(self, runner, scripted):
        with runner.isolated_filesystem():
            result = _invoke(runner, "run")
            assert result.exit_code == 0
            assert "Nothing to do" in result.output

    def test_tick_without_api_key_fails_cleanly(self, runner, monkeypatch):
        monkeypatch.delenv("CANOPY_OPENAI_API_KEY", raising=False)
        with runner.isolated_filesystem():
            mission_id = _setup_mission()
            result = _invoke(runner, "tick", mission_id)
            assert result.exit_code == 1
            assert "CANOPY_OPENAI_API_KEY" in result.output
