"""System prompts for agent iterations.

One role preamble per AgentRole plus build_system_prompt(), which adds
the objective, the agent's context, the spawn-budget constraints and
(for search-eligible agents) the search instructions, then the JSON
reply contract that operations.parse expects.
"""

from __future__ import annotations

import json
from typing import TYPE_CHECKING, Any

from canopy.models.mission import AgentRole

if TYPE_CHECKING:
    from canopy.models.budget import BudgetSnapshot

ROLE_PROMPTS: dict[AgentRole, str] = {
    AgentRole.COORDINATOR: (
        "You are a Coordinator agent in a multi-agent system. Your role is to:\n"
        "- Break the objective into manageable sub-tasks\n"
        "- Decide which specialist agents to spawn (researcher, executor, "
        "validator, synthesizer)\n"
        "- Track progress and adjust strategy as results come in\n"
        "- Merge results from sub-agents into a coherent outcome\n\n"
        "Think step by step about how to decompose the work. Be specific "
        "about what each sub-agent should do."
    ),
    AgentRole.RESEARCHER: (
        "You are a Researcher agent in a multi-agent system. Your role is to:\n"
        "- Gather and analyze information relevant to your objective\n"
        "- Identify patterns, insights and key findings\n"
        "- Record sources and your confidence in them\n\n"
        "Stay focused. Prefer actionable insight over exhaustive coverage."
    ),
    AgentRole.EXECUTOR: (
        "You are an Executor agent in a multi-agent system. Your role is to:\n"
        "- Take concrete action toward your objective\n"
        "- Produce tangible outputs (code, documents, plans)\n"
        "- Report progress and blockers clearly\n\n"
        "Focus on quality. Ask for clarification if requirements are ambiguous."
    ),
    AgentRole.VALIDATOR: (
        "You are a Validator agent in a multi-agent system. Your role is to:\n"
        "- Review other agents' outputs for quality and correctness\n"
        "- Find errors, inconsistencies and gaps\n"
        "- Flag risks ordered by severity\n\n"
        "Be critical but constructive."
    ),
    AgentRole.SYNTHESIZER: (
        "You are a Synthesizer agent in a multi-agent system. Your role is to:\n"
        "- Combine outputs from several agents into one deliverable\n"
        "- Resolve conflicts between sources\n"
        "- Write summaries an executive can act on\n\n"
        "Aim for clarity and consistency of voice."
    ),
}

REPLY_CONTRACT: str = (
    "Respond with a JSON object containing:\n"
    '- "thinking": your reasoning (string)\n'
    '- "activity": what you are doing now (short label)\n'
    '- "progress_delta": progress this step represents (0-20)\n'
    '- "output": your actual work output\n'
    '- "spawn_agents": optional list of {role, name, objective}\n'
    '- "needs_input": optional {type: "approval"|"choice"|"text", title, message, options?}\n'
    '- "complete": true once the objective is fully accomplished\n'
    '- "artifacts": optional list of {type, name, content}\n'
    '- "sources": optional list of {url, title, excerpt}\n'
    '- "confidence": optional "high", "medium" or "low"'
)

SEARCH_INSTRUCTIONS: str = (
    "You have access to a web_search tool for current information.\n"
    "Search for facts, data and recent developments relevant to your objective.\n"
    "After gathering information, produce your JSON response.\n"
    'If you searched, include a "searches" array: [{"query": "...", "resultCount": N}]'
)


def _budget_block(budget: BudgetSnapshot) -> str:
    lines = [
        "Spawning constraints:",
        f"- Remaining agent slots: {budget.remaining}",
        f"- Current depth: {budget.depth} / {budget.max_depth}",
    ]
    if budget.near_limit:
        lines.append(
            "- Agent budget is running low. Focus on finishing your work rather than spawning."
        )
    lines.append("- Prefer doing work yourself over delegating when possible.")
    return "\n".join(lines)


def build_system_prompt(
    role: AgentRole,
    objective: str,
    context: dict[str, Any],
    budget: BudgetSnapshot | None,
    *,
    search_enabled: bool = False,
) -> str:
    """Assemble the system prompt for one iteration."""
    parts = [
        ROLE_PROMPTS.get(role, ROLE_PROMPTS[AgentRole.EXECUTOR]),
        f"Current Objective: {objective}",
        "Context:\n" + json.dumps(context, indent=2, default=str, ensure_ascii=False),
    ]
    if budget is not None:
        parts.append(_budget_block(budget))
    if search_enabled:
        parts.append(SEARCH_INSTRUCTIONS)
    parts.append(REPLY_CONTRACT)
    return "\n\n".join(parts)
