"""Summarization and synthesis prompts.

- **COMPRESS_SYSTEM** -- short recap of an agent's older conversation.
- **SYNTHESIS_SYSTEM** -- consolidation of every agent output into the
  mission report.
"""

from __future__ import annotations

# ---------------------------------------------------------------------------
# Compression
# ---------------------------------------------------------------------------

COMPRESS_SYSTEM: str = (
    "You are a concise summarizer. Summarize the conversation in 2-3 sentences."
)


def build_compress_prompt(objective: str, transcript: str) -> str:
    """User prompt for compressing the older part of an agent's history."""
    return (
        f'Summarize the following agent conversation for objective: "{objective}".\n'
        "Focus on: key decisions made, important findings, current state, and "
        "what needs to happen next.\n"
        "Be concise, 2-3 sentences maximum.\n\n"
        f"{transcript}"
    )


# ---------------------------------------------------------------------------
# Synthesis
# ---------------------------------------------------------------------------

SYNTHESIS_SYSTEM: str = (
    "You are a Synthesizer. Combine agent findings into a comprehensive, "
    "well-structured markdown report. Include an executive summary, key "
    "findings organized by theme, and a conclusion. Cite agent names when "
    "referencing their work."
)


def build_synthesis_prompt(objective: str, outputs: str, findings: str = "") -> str:
    """User prompt for the one-time mission synthesis call."""
    sources = f"\n\nKey findings from research agents:\n{findings}" if findings else ""
    return (
        f"Here are the findings from all agents:\n\n{outputs}{sources}\n\n"
        "Synthesize these into a comprehensive, well-structured markdown report "
        f"for: {objective}\n\n"
        "Structure your report with:\n"
        "1. Executive Summary (2-3 paragraphs)\n"
        "2. Key Findings (organized by theme, not by agent)\n"
        "3. Analysis & Implications\n"
        "4. Conclusion & Recommendations\n\n"
        "Output ONLY the markdown report text, no JSON wrapper."
    )
