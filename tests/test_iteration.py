"""Tests for the iteration engine and its transition planning."""

from __future__ import annotations

from datetime import timedelta

import pytest

from canopy.clock import utcnow
from canopy.engine.iteration import (
    CONTINUE_PROMPT,
    EMPTY_OUTPUT,
    FORCED_FINAL_PROMPT,
    IterationEngine,
    plan_transition,
)
from canopy.engine.scheduler import claim_next_agent
from canopy.models.budget import SpawnBudget, SpawnDecision
from canopy.models.config import CanopyConfig
from canopy.models.iteration import TransitionKind
from canopy.models.mission import AgentInfo, AgentRole, AgentStatus, MissionStatus
from canopy.models.result import ParsedResult, UnparsedResult
from canopy.operations.reaper import REAPED_OUTPUT, reap_stale_missions
from canopy.operations.spawn import REASON_TOTAL
from tests.conftest import (
    FakeSearchProvider,
    InterruptingLLM,
    ScriptedLLM,
    new_agent,
    reply,
    seed_mission,
)


def _run(store, llm, *, config=None, search_provider=None):
    """Claim the next agent of the only active mission and iterate it once."""
    mission = store.list_missions([MissionStatus.ACTIVE])[0]
    agent = claim_next_agent(store, mission.mission_id)
    assert agent is not None
    engine = IterationEngine(store, llm, config=config, search_provider=search_provider)
    return engine.run(agent, store.get_mission(mission.mission_id))


def _agent(**overrides) -> AgentInfo:
    fields = dict(
        agent_id="a1",
        mission_id="m1",
        parent_id=None,
        role=AgentRole.RESEARCHER,
        name="Scout",
        objective="Find suppliers",
        status=AgentStatus.WORKING,
        iteration=3,
        progress=90,
    )
    fields.update(overrides)
    return AgentInfo(**fields)


ALLOW = SpawnDecision(allowed=True, remaining=3, depth=0)


class TestPlanTransition:
    def test_progress_is_capped_below_complete(self):
        outcome = plan_transition(
            _agent(), ParsedResult(progress_delta=20), "{}", ALLOW, iteration=4
        )
        assert outcome.transition is TransitionKind.CONTINUE
        assert outcome.batch.agent_update.progress == 95
        assert outcome.batch.messages[-1] == {"role": "user", "content": CONTINUE_PROMPT}

    def test_input_request_parks_agent(self):
        result = ParsedResult(needs_input={"title": "Budget?", "options": ["low", "high"]})
        outcome = plan_transition(_agent(), result, "{}", ALLOW, iteration=4)
        update = outcome.batch.agent_update
        assert outcome.transition is TransitionKind.WAITING_FOR_INPUT
        assert update.status is AgentStatus.WAITING
        assert update.pending_input["options"] == ["low", "high"]
        assert update.progress == 90

    def test_ceiling_forces_completion(self):
        cfg = CanopyConfig(iteration_ceiling=4)
        result = ParsedResult(output="partial", needs_input={"title": "ignored"})
        outcome = plan_transition(_agent(), result, "{}", ALLOW, iteration=4, config=cfg)
        assert outcome.transition is TransitionKind.COMPLETE
        assert {"role": "user", "content": FORCED_FINAL_PROMPT} in outcome.batch.messages
        assert outcome.batch.agent_update.progress == 100
        assert outcome.batch.agent_update.completion_output == "partial"

    def test_completion_output_never_empty(self):
        outcome = plan_transition(
            _agent(), ParsedResult(complete=True), "{}", ALLOW, iteration=4
        )
        assert outcome.batch.agent_update.completion_output == EMPTY_OUTPUT

        outcome = plan_transition(
            _agent(), ParsedResult(complete=True, thinking="Only thoughts"), "{}", ALLOW, iteration=4
        )
        assert outcome.batch.agent_update.completion_output == "Only thoughts"

    def test_completion_output_is_bounded(self):
        cfg = CanopyConfig(completion_output_max_chars=100)
        outcome = plan_transition(
            _agent(), ParsedResult(complete=True, output="y" * 500), "{}", ALLOW, iteration=4, config=cfg
        )
        assert len(outcome.batch.agent_update.completion_output) == 100

    def test_long_output_becomes_finding_and_section(self):
        text = "Supplier A has the shortest lead time of all evaluated vendors."
        outcome = plan_transition(_agent(), ParsedResult(output=text), "{}", ALLOW, iteration=1)
        assert [f.content for f in outcome.batch.findings] == [text]
        assert outcome.batch.report_sections[0].section_type == "output"

    def test_short_output_is_not_a_finding(self):
        outcome = plan_transition(_agent(), ParsedResult(output="ok"), "{}", ALLOW, iteration=1)
        assert outcome.batch.findings == []

    def test_denied_spawn_adds_advisory_message(self):
        denied = SpawnDecision(allowed=False, remaining=0, depth=0, reason=REASON_TOTAL)
        result = ParsedResult(spawn_agents=[{"role": "researcher", "name": "R"}])
        outcome = plan_transition(_agent(), result, "{}", denied, iteration=1)
        assert outcome.spawned == 0
        assert outcome.spawn_denied_reason == REASON_TOTAL
        assert outcome.batch.children == []
        assert any("Cannot spawn additional agents" in m["content"] for m in outcome.batch.messages)

    def test_unparsed_result_still_progresses(self):
        result = UnparsedResult.from_text("free-form thoughts")
        outcome = plan_transition(_agent(progress=0), result, "free-form thoughts", ALLOW, iteration=1)
        assert outcome.batch.agent_update.progress == 5
        assert outcome.batch.agent_update.context["last_output"] == "free-form thoughts"


class TestIterationEngine:
    def test_first_iteration_bootstraps_history(self, store):
        seed_mission(store)
        llm = ScriptedLLM(reply(activity="Planning", progress_delta=10, output="plan"))

        outcome = _run(store, llm)

        assert outcome.transition is TransitionKind.CONTINUE
        assert llm.calls[0]["messages"][0]["content"].startswith("Begin working on your objective")
        root = store.get_agent("root")
        assert root.iteration == 1
        assert root.progress == 10
        assert root.current_activity == "Planning"
        contents = [m["content"] for m in store.load_messages("root")]
        assert contents[0].startswith("Begin working")
        assert contents[-1] == CONTINUE_PROMPT
        assert store.usage_totals(root.mission_id)["prompt_tokens"] == 10

    def test_budget_reaches_system_prompt(self, store):
        seed_mission(store)
        llm = ScriptedLLM(reply(output="x"))
        _run(store, llm)
        assert '"spawn_budget"' in llm.calls[0]["system_prompt"]

    def test_completion_moves_mission_to_synthesizing(self, store):
        mid = seed_mission(store).mission_id
        llm = ScriptedLLM(reply(complete=True, output="Final answer"))

        outcome = _run(store, llm)

        assert outcome.transition is TransitionKind.COMPLETE
        assert outcome.mission_terminal is True
        root = store.get_agent("root")
        assert root.status is AgentStatus.COMPLETED
        assert root.progress == 100
        assert root.completion_output == "Final answer"
        assert store.get_mission(mid).status is MissionStatus.SYNTHESIZING

    def test_open_children_keep_mission_active(self, store):
        mid = seed_mission(
            store, new_agent("root"), new_agent("kid", "root", role="executor", depth=1)
        ).mission_id
        store.activate_spawning_agents(mid)
        store.release_agent("kid", AgentStatus.WAITING)
        outcome = _run(store, ScriptedLLM(reply(complete=True, output="done")))
        assert outcome.mission_terminal is False
        assert store.get_mission(mid).status is MissionStatus.ACTIVE

    def test_ceiling_completes_agent(self, store):
        seed_mission(store)
        cfg = CanopyConfig(iteration_ceiling=2)
        llm = ScriptedLLM(reply(output="step"))
        _run(store, llm, config=cfg)
        outcome = _run(store, llm, config=cfg)
        assert outcome.transition is TransitionKind.COMPLETE
        assert store.get_agent("root").iteration == 2
        assert store.load_messages("root")[-1]["content"] == FORCED_FINAL_PROMPT

    def test_waiting_agent_is_not_claimed(self, store):
        mid = seed_mission(store).mission_id
        llm = ScriptedLLM(reply(needs_input={"title": "Which market?"}))
        outcome = _run(store, llm)
        assert outcome.transition is TransitionKind.WAITING_FOR_INPUT
        assert store.get_agent("root").pending_input["title"] == "Which market?"
        assert claim_next_agent(store, mid) is None

    def test_spawned_children_start_spawning(self, store):
        mid = seed_mission(store).mission_id
        llm = ScriptedLLM(
            reply(
                output="Splitting the work",
                spawn_agents=[
                    {"role": "researcher", "name": "Prices", "objective": "Collect prices"},
                    {"role": "dragon", "name": "Specs", "objective": "Collect specs"},
                ],
            )
        )
        outcome = _run(store, llm)
        assert outcome.spawned == 2
        children = [a for a in store.list_agents(mid) if a.parent_id == "root"]
        assert {c.status for c in children} == {AgentStatus.SPAWNING}
        assert {c.depth for c in children} == {1}
        assert {c.role for c in children} == {AgentRole.RESEARCHER, AgentRole.EXECUTOR}

    def test_spawn_denied_when_budget_exhausted(self, store):
        mid = seed_mission(store).mission_id
        cfg = CanopyConfig(budget=SpawnBudget(max_total_agents=1))
        llm = ScriptedLLM(reply(spawn_agents=[{"role": "researcher"}]))
        outcome = _run(store, llm, config=cfg)
        assert outcome.spawned == 0
        assert outcome.spawn_denied_reason == REASON_TOTAL
        assert len(store.list_agents(mid)) == 1

    def test_child_results_fan_in_once(self, store):
        mid = seed_mission(
            store, new_agent("root"), new_agent("kid", "root", role="researcher", depth=1)
        ).mission_id
        store.activate_spawning_agents(mid)
        store.release_agent(
            "kid",
            AgentStatus.COMPLETED,
            progress=100,
            completion_output="Kid found three suppliers",
            completed_at=utcnow(),
        )
        llm = ScriptedLLM(reply(output="thinking"))

        _run(store, llm)
        _run(store, llm)

        first = [m["content"] for m in llm.calls[0]["messages"]]
        second = [m["content"] for m in llm.calls[1]["messages"]]
        assert any("Kid found three suppliers" in c for c in first)
        assert sum("Child agent(s) completed" in c for c in second) == 1

    def test_failed_call_releases_claim(self, store):
        mid = seed_mission(store).mission_id
        llm = ScriptedLLM(RuntimeError("upstream 500"))
        with pytest.raises(RuntimeError):
            _run(store, llm)
        root = store.get_agent("root")
        assert root.status is AgentStatus.WORKING
        assert root.iteration == 0
        assert claim_next_agent(store, mid) is not None

    def test_search_tool_offered_to_eligible_roles(self, store):
        seed_mission(store, new_agent("root", role="researcher"))
        llm = ScriptedLLM(reply(output="x"))
        _run(store, llm, search_provider=FakeSearchProvider())
        assert [t.name for t in llm.calls[0]["tools"]] == ["web_search"]
        assert llm.calls[0]["step_limit"] == 3

    def test_search_tool_withheld_from_executors(self, store):
        seed_mission(store, new_agent("root", role="executor"))
        llm = ScriptedLLM(reply(output="x"))
        _run(store, llm, search_provider=FakeSearchProvider())
        assert llm.calls[0]["tools"] == []
        assert llm.calls[0]["step_limit"] == 1

    def test_compression_on_cadence(self, store):
        seed_mission(store)
        cfg = CanopyConfig(compress_every=3, compress_window=2)
        llm = ScriptedLLM(
            reply(output="a"), reply(output="b"), "Summary of early work", reply(output="c")
        )
        for _ in range(3):
            _run(store, llm, config=cfg)

        # third iteration: summarizer call, then the agent call
        assert len(llm.calls) == 4
        assert "Summary of early work" in llm.calls[3]["messages"][0]["content"]
        history = store.load_messages("root")
        assert history[0]["content"].startswith("Context summary of your work so far")
        assert len(history) == 3 + 2  # summary + window, then reply + continue


class TestLostClaim:
    def test_reaped_agent_stays_completed(self, store):
        mid = seed_mission(store).mission_id
        llm = InterruptingLLM(
            lambda: reap_stale_missions(store, now=utcnow() + timedelta(hours=1)),
            reply(output="Still going", spawn_agents=[{"role": "researcher", "name": "Late"}]),
        )

        outcome = _run(store, llm)

        assert not outcome.applied
        root = store.get_agent("root")
        assert root.status is AgentStatus.COMPLETED
        assert root.completion_output == REAPED_OUTPUT
        assert root.iteration == 0
        assert [a.agent_id for a in store.list_agents(mid)] == ["root"]
        assert store.load_messages("root") == []
        assert store.get_mission(mid).status is MissionStatus.SYNTHESIZING

    def test_paused_agent_stays_paused(self, store):
        mid = seed_mission(store).mission_id
        llm = InterruptingLLM(
            lambda: store.set_agents_status(mid, [AgentStatus.WORKING], AgentStatus.PAUSED),
            reply(output="x", complete=True),
        )

        outcome = _run(store, llm)

        assert not outcome.applied
        assert store.get_agent("root").status is AgentStatus.PAUSED
        assert store.get_mission(mid).status is MissionStatus.ACTIVE

    def test_failed_call_does_not_revive_reaped_agent(self, store):
        seed_mission(store)
        llm = InterruptingLLM(
            lambda: reap_stale_missions(store, now=utcnow() + timedelta(hours=1)),
            RuntimeError("upstream 500"),
        )
        with pytest.raises(RuntimeError):
            _run(store, llm)
        assert store.get_agent("root").status is AgentStatus.COMPLETED

    def test_held_claim_is_written_back(self, store):
        seed_mission(store)
        outcome = _run(store, ScriptedLLM(reply(output="fine")))
        assert outcome.applied
        root = store.get_agent("root")
        assert root.iteration == 1
        assert root.claim_token is None
