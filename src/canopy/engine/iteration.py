"""Iteration engine: one unit of work for one claimed agent.

IterationEngine.run() performs, exactly once per claim:

1. Load the message history, seeding it with a bootstrap instruction
   when empty.
2. Compress the history every few iterations once it outgrows the
   trailing window.
3. Fan in completed children's outputs.
4. Every few iterations, surface sibling findings.
5. Recompute the spawn-budget snapshot.
6. Call the work-producing collaborator (with a bounded search tool for
   search-eligible roles) and parse its reply.
7. Pick the state transition and apply every durable write as one batch.

plan_transition() is the pure part of step 7: given the agent, the
parsed result and the budget decision it returns the transition plus
the WriteBatch, touching no storage.
"""

from __future__ import annotations

import dataclasses
import logging
from typing import TYPE_CHECKING

from canopy.clock import utcnow
from canopy.exceptions import ClaimLostError
from canopy.models.config import CanopyConfig
from canopy.models.iteration import (
    AgentUpdate,
    IterationOutcome,
    NewEvent,
    NewFinding,
    NewReportSection,
    TransitionKind,
    UsageTally,
    WriteBatch,
)
from canopy.models.mission import SEARCH_ELIGIBLE_ROLES, AgentStatus, validate_transition
from canopy.operations.compression import compress_history, should_compress
from canopy.operations.fan_in import (
    build_fan_in_message,
    build_sibling_message,
    collect_child_completions,
    wants_sibling_update,
)
from canopy.operations.parse import parse_agent_response
from canopy.operations.spawn import budget_snapshot, build_child_agents
from canopy.operations.synthesis import mark_synthesizing_if_terminal
from canopy.prompts.roles import build_system_prompt
from canopy.toolkit.search import SearchTool

if TYPE_CHECKING:
    from datetime import datetime

    from canopy.billing import BillingCollaborator
    from canopy.llm.protocols import WorkProducer
    from canopy.models.budget import SpawnDecision
    from canopy.models.mission import AgentInfo, MissionInfo
    from canopy.models.result import ParsedResult, UnparsedResult
    from canopy.storage.store import CanopyStore
    from canopy.toolkit.search import SearchProvider

logger = logging.getLogger(__name__)

MAX_PROGRESS_BEFORE_COMPLETE = 95

CONTINUE_PROMPT = "Continue working. What is your next step?"
FORCED_FINAL_PROMPT = "Max iterations reached. Finalize your work."
EMPTY_OUTPUT = "No output was produced before the agent finished."


def bootstrap_message(objective: str) -> dict[str, str]:
    return {"role": "user", "content": f"Begin working on your objective: {objective}"}


def spawn_denied_message(reason: str | None) -> dict[str, str]:
    return {
        "role": "user",
        "content": (
            f"Cannot spawn additional agents: {reason}. "
            "Complete your objective with your own analysis instead."
        ),
    }


def human_response_message(response_json: str) -> str:
    return f"Human response: {response_json}"


def plan_transition(
    agent: AgentInfo,
    result: ParsedResult | UnparsedResult,
    reply_text: str,
    decision: SpawnDecision,
    *,
    iteration: int,
    config: CanopyConfig | None = None,
    batch: WriteBatch | None = None,
    completion_check: datetime | None = None,
) -> IterationOutcome:
    """Choose the agent's next state and collect every write it implies.

    Branches, in priority order:

    - ``waiting_for_input``: the result asks for human input and is not
      complete. The agent parks in ``waiting``.
    - ``complete``: the result says complete, or *iteration* reached the
      ceiling (a forced-finalization message is queued first). Progress
      goes to 100 and the output is recorded.
    - ``continue``: progress grows by the delta (capped below 100) and a
      continuation prompt is queued.

    Spawn requests are honored only when *decision* allows; otherwise a
    message telling the agent to do the work itself is queued.
    """
    cfg = config or CanopyConfig()
    batch = batch if batch is not None else WriteBatch()
    output = result.output or ""

    batch.messages.append({"role": "assistant", "content": reply_text})

    if len(output) > cfg.finding_min_chars:
        batch.findings.append(NewFinding(content=output[: cfg.finding_max_chars]))
        batch.report_sections.append(NewReportSection(section_type="output", content=output))
    for artifact in result.artifacts:
        batch.report_sections.append(
            NewReportSection(section_type="artifact", content=artifact.content, title=artifact.name)
        )

    if result.activity:
        batch.events.append(NewEvent("activity", f"{agent.name}: {result.activity}"))
    for search in result.searches:
        batch.events.append(
            NewEvent(
                "search",
                f'{agent.name} searched: "{search.query}" ({search.result_count} results)',
            )
        )

    spawned = 0
    denied_reason = None
    if result.spawn_agents:
        if decision.allowed:
            children = build_child_agents(
                agent,
                result.spawn_agents,
                decision,
                parent_output=output,
                default_model=cfg.model,
                objective_max_chars=cfg.objective_max_chars,
                name_max_chars=cfg.name_max_chars,
                parent_findings_chars=cfg.parent_findings_chars,
            )
            batch.children.extend(children)
            for child in children:
                batch.events.append(
                    NewEvent("spawn", f"{child.name} spawned as {child.role}", agent_id=child.agent_id)
                )
            spawned = len(children)
        else:
            denied_reason = decision.reason
            batch.messages.append(spawn_denied_message(decision.reason))

    is_complete = result.complete or iteration >= cfg.iteration_ceiling

    if result.needs_input is not None and not is_complete:
        request = result.needs_input
        transition = TransitionKind.WAITING_FOR_INPUT
        update = AgentUpdate(
            status=AgentStatus.WAITING,
            iteration=iteration,
            progress=agent.progress,
            current_activity=f"Waiting for input: {request.title or 'Human input needed'}",
            pending_input=request.model_dump(),
            completion_check=completion_check,
        )
    elif is_complete:
        transition = TransitionKind.COMPLETE
        if not result.complete:
            batch.messages.append({"role": "user", "content": FORCED_FINAL_PROMPT})
        final = output or result.thinking or EMPTY_OUTPUT
        update = AgentUpdate(
            status=AgentStatus.COMPLETED,
            iteration=iteration,
            progress=100,
            current_activity="Objective complete",
            completion_output=final[: cfg.completion_output_max_chars],
            completion_check=completion_check,
        )
        batch.events.append(NewEvent("complete", f"{agent.name} completed"))
    else:
        transition = TransitionKind.CONTINUE
        batch.messages.append({"role": "user", "content": CONTINUE_PROMPT})
        context = dict(agent.context)
        context["last_thinking"] = result.thinking
        context["last_output"] = output[: cfg.parent_findings_chars]
        update = AgentUpdate(
            status=AgentStatus.WORKING,
            iteration=iteration,
            progress=min(MAX_PROGRESS_BEFORE_COMPLETE, agent.progress + result.progress_delta),
            current_activity=result.activity or "Processing...",
            context=context,
            completion_check=completion_check,
        )

    validate_transition(agent.status, update.status)
    batch.agent_update = update
    return IterationOutcome(
        agent_id=agent.agent_id,
        agent_name=agent.name,
        iteration=iteration,
        transition=transition,
        batch=batch,
        spawned=spawned,
        spawn_denied_reason=denied_reason,
    )


class IterationEngine:
    """Runs single iterations for claimed agents.

    Args:
        store: Durable store.
        llm: Work-producing collaborator.
        config: Scheduling constants and budget.
        search_provider: Backend for the search tool; None disables search.
        billing: Receives usage tallies after each iteration.
    """

    def __init__(
        self,
        store: CanopyStore,
        llm: WorkProducer,
        *,
        config: CanopyConfig | None = None,
        search_provider: SearchProvider | None = None,
        billing: BillingCollaborator | None = None,
    ) -> None:
        self._store = store
        self._llm = llm
        self._config = config or CanopyConfig()
        self._search_provider = search_provider
        self._billing = billing

    def _search_tool(self, agent: AgentInfo, mission: MissionInfo) -> SearchTool | None:
        if self._search_provider is None or agent.role not in SEARCH_ELIGIBLE_ROLES:
            return None
        return SearchTool(
            self._search_provider,
            mission_used=mission.search_count,
            mission_limit=self._config.budget.max_searches_per_mission,
            per_call_limit=self._config.searches_per_iteration,
        )

    def run(self, agent: AgentInfo, mission: MissionInfo) -> IterationOutcome:
        """Run one iteration for *agent*, which the caller has already claimed.

        If the collaborator call fails the claim is released (the agent
        stays ``working``) and the error propagates to the dispatcher. If
        the claim was cleared while the iteration ran, its writes are
        discarded and the outcome comes back with ``applied=False``.
        """
        try:
            outcome = self._iterate(agent, mission)
        except Exception:
            logger.warning("Iteration for %s failed; releasing claim", agent.agent_id)
            self._store.release_agent(
                agent.agent_id,
                agent.status,
                claim_token=agent.claim_token,
                current_activity="Retrying after an error",
            )
            raise

        try:
            self._store.apply_iteration(agent, outcome.batch)
        except ClaimLostError:
            logger.warning(
                "Agent %s lost its claim mid-iteration; discarding iteration %d",
                agent.agent_id,
                outcome.iteration,
            )
            outcome = dataclasses.replace(outcome, applied=False)
        # usage is billed even when the batch was discarded
        self._bill(mission, agent, outcome.batch)
        if not outcome.applied:
            return outcome

        if outcome.transition is TransitionKind.COMPLETE:
            logger.info("Agent %s completed at iteration %d", agent.name, outcome.iteration)
            terminal = mark_synthesizing_if_terminal(self._store, agent.mission_id)
            outcome = dataclasses.replace(outcome, mission_terminal=terminal)
        return outcome

    def _iterate(self, agent: AgentInfo, mission: MissionInfo) -> IterationOutcome:
        cfg = self._config
        store = self._store
        iteration = agent.iteration + 1
        batch = WriteBatch()

        # 1. history
        messages = store.load_messages(agent.agent_id)
        if not messages:
            messages = [bootstrap_message(agent.objective)]
            batch.messages.extend(messages)

        # 2. compression
        if should_compress(
            iteration, len(messages), every=cfg.compress_every, window=cfg.compress_window
        ):
            compressed = compress_history(
                messages,
                agent.objective,
                self._llm,
                window=cfg.compress_window,
                message_chars=cfg.compress_message_chars,
                model=cfg.model,
                max_tokens=cfg.summary_max_tokens,
                temperature=cfg.summary_temperature,
            )
            messages = compressed.messages
            batch.replace_history = list(messages)
            batch.messages.clear()
            if compressed.generation is not None:
                batch.usage.append(
                    UsageTally(
                        model=cfg.model,
                        prompt_tokens=compressed.generation.prompt_tokens,
                        completion_tokens=compressed.generation.completion_tokens,
                        description=f"Compression: {agent.name}",
                    )
                )

        # 3. fan-in
        checked_at = utcnow()
        fan_in = build_fan_in_message(
            collect_child_completions(store, agent), output_chars=cfg.fan_in_output_chars
        )
        if fan_in is not None:
            messages.append(fan_in)
            batch.messages.append(fan_in)

        # 4. sibling awareness
        if wants_sibling_update(iteration, agent.parent_id, every=cfg.sibling_every):
            findings = store.sibling_findings(
                agent.mission_id, agent.agent_id, agent.parent_id, cfg.sibling_limit
            )
            sibling = build_sibling_message(findings, finding_chars=cfg.sibling_finding_chars)
            if sibling is not None:
                messages.append(sibling)
                batch.messages.append(sibling)

        # 5. budget
        decision, snapshot = budget_snapshot(store.agent_tree(agent.mission_id), agent, cfg.budget)

        # 6. collaborator call
        search = self._search_tool(agent, mission)
        context = dict(agent.context)
        context["spawn_budget"] = snapshot.to_dict()
        system_prompt = build_system_prompt(
            agent.role, agent.objective, context, snapshot, search_enabled=search is not None
        )
        generation = self._llm.generate(
            system_prompt,
            messages,
            tools=[search.definition()] if search is not None else (),
            step_limit=cfg.search_step_limit if search is not None else 1,
            model=agent.model or cfg.model,
            temperature=cfg.temperature,
            max_tokens=cfg.max_tokens,
        )
        result = parse_agent_response(generation.text)

        searches = search.performed if search is not None else 0
        batch.search_count_delta = searches
        batch.usage.append(
            UsageTally(
                model=agent.model or cfg.model,
                prompt_tokens=generation.prompt_tokens,
                completion_tokens=generation.completion_tokens,
                search_count=searches,
                description=f"Agent: {agent.name}",
            )
        )

        # 7. transition
        return plan_transition(
            agent,
            result,
            generation.text,
            decision,
            iteration=iteration,
            config=cfg,
            batch=batch,
            completion_check=checked_at,
        )

    def _bill(self, mission: MissionInfo, agent: AgentInfo, batch: WriteBatch) -> None:
        if self._billing is None or not mission.owner_id:
            return
        for tally in batch.usage:
            self._billing.record_usage(mission.owner_id, mission.mission_id, tally)
