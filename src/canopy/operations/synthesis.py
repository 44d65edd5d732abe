"""Mission completion detection and one-time synthesis.

Provides:
- mark_synthesizing_if_terminal(): Move an active mission to
  ``synthesizing`` once every agent is completed or failed
- build_synthesis_input(): Render completed agent outputs for the call
- run_synthesis(): Claim the mission, consolidate all outputs into one
  report section, and mark the mission ``completed``

Synthesis is guarded by a conditional update on the mission row
(``claim_synthesis``), so concurrent triggers run it at most once. A
failed pass releases the claim; an abandoned one expires with the lease.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Sequence

from canopy.models.config import CanopyConfig
from canopy.models.iteration import UsageTally
from canopy.models.mission import MissionStatus
from canopy.prompts.summarize import SYNTHESIS_SYSTEM, build_synthesis_prompt

if TYPE_CHECKING:
    from canopy.billing import BillingCollaborator
    from canopy.llm.protocols import WorkProducer
    from canopy.models.mission import AgentInfo, FindingInfo, MissionInfo
    from canopy.storage.store import CanopyStore

logger = logging.getLogger(__name__)

NO_OUTPUTS = "No agent outputs to synthesize."
OUTPUT_SEPARATOR = "\n\n---\n\n"


@dataclass(frozen=True)
class SynthesisResult:
    """What a synthesis pass did.

    ``ran`` is False when another caller already claimed the mission or
    it was not in ``synthesizing``.
    """

    mission_id: str
    ran: bool
    content: str = ""
    used_fallback: bool = False


def mark_synthesizing_if_terminal(store: CanopyStore, mission_id: str) -> bool:
    """Advance an active mission to ``synthesizing`` if all its agents are terminal.

    Returns True only for the caller whose update moved the mission.
    """
    if not store.all_agents_terminal(mission_id):
        return False
    moved = store.advance_mission(mission_id, MissionStatus.ACTIVE, MissionStatus.SYNTHESIZING)
    if moved:
        logger.info("Mission %s: all agents terminal, now synthesizing", mission_id)
        store.add_event(mission_id, "synthesis", "All agents finished; synthesizing report")
    return moved


def build_synthesis_input(agents: Sequence[AgentInfo]) -> str:
    """Each completed agent's name, role, objective and output, separated by rules."""
    return OUTPUT_SEPARATOR.join(
        f"## {a.name} ({a.role.value})\n**Objective:** {a.objective or 'N/A'}\n\n"
        f"{a.completion_output}"
        for a in agents
    )


def _format_findings(findings: Sequence[FindingInfo], limit: int) -> str:
    return "\n".join(f"- {f.agent_name}: {f.content[:limit]}" for f in findings)


def run_synthesis(
    store: CanopyStore,
    mission: MissionInfo,
    llm: WorkProducer | None,
    *,
    config: CanopyConfig | None = None,
    billing: BillingCollaborator | None = None,
) -> SynthesisResult:
    """Consolidate every completed agent's output into the mission report.

    Falls back to the verbatim concatenation of outputs when the
    collaborator call fails. The report section and the move to
    ``completed`` commit together. If anything else fails the synthesis
    claim is released before the error propagates, so a later tick
    retries; a claim abandoned by a crashed caller expires after the
    claim lease.
    """
    cfg = config or CanopyConfig()
    mission_id = mission.mission_id

    if not store.claim_synthesis(mission_id, lease_seconds=cfg.claim_lease_seconds):
        logger.debug("Mission %s: synthesis already claimed or not synthesizing", mission_id)
        return SynthesisResult(mission_id=mission_id, ran=False)

    logger.info("Mission %s: running synthesis", mission_id)
    tally = None
    try:
        agents = store.completed_outputs(mission_id)
        if not agents:
            author, content, used_fallback = "System", NO_OUTPUTS, False
        else:
            author, content, tally = _synthesize(store, mission, agents, llm, cfg)
            used_fallback = tally is None
        completed = store.complete_synthesis(
            mission_id, agent_name=author, content=content, usage=tally
        )
    except Exception:
        logger.warning("Mission %s: synthesis failed; releasing claim", mission_id)
        store.release_synthesis(mission_id)
        raise

    if not completed:
        logger.warning("Mission %s left synthesizing before its report was written", mission_id)
        return SynthesisResult(mission_id=mission_id, ran=False)

    if tally is not None and billing is not None and mission.owner_id:
        billing.record_usage(mission.owner_id, mission_id, tally)
    logger.info("Mission %s completed", mission_id)
    return SynthesisResult(
        mission_id=mission_id, ran=True, content=content, used_fallback=used_fallback
    )


def _synthesize(
    store: CanopyStore,
    mission: MissionInfo,
    agents: Sequence[AgentInfo],
    llm: WorkProducer | None,
    cfg: CanopyConfig,
) -> tuple[str, str, UsageTally | None]:
    """Returns (author, content, usage). Usage is None when the fallback was used."""
    mission_id = mission.mission_id
    all_outputs = build_synthesis_input(agents)
    findings = store.recent_findings(mission_id, cfg.synthesis_findings_limit)
    prompt = build_synthesis_prompt(
        mission.objective or "the mission objective",
        all_outputs[: cfg.synthesis_input_chars],
        _format_findings(findings, cfg.sibling_finding_chars),
    )

    generation = None
    if llm is not None:
        try:
            generation = llm.generate(
                SYNTHESIS_SYSTEM,
                [{"role": "user", "content": prompt}],
                model=cfg.model,
                max_tokens=cfg.synthesis_max_tokens,
                temperature=cfg.temperature,
            )
        except Exception as exc:
            logger.warning("Mission %s: synthesis call failed, using fallback: %s", mission_id, exc)

    if generation is None or not generation.text.strip():
        return "System", all_outputs, None

    tally = UsageTally(
        model=cfg.model,
        prompt_tokens=generation.prompt_tokens,
        completion_tokens=generation.completion_tokens,
        description="Synthesis",
    )
    return "Final Synthesizer", generation.text, tally
