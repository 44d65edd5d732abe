"""Context-window compression for agent histories.

Every few iterations, once an agent's history grows past a trailing
window, everything but the last ``window`` messages is collapsed into a
single summary message produced by a small summarization call. If that
call fails, a generic continuation message stands in for the summary.
Compression never blocks an iteration.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

from canopy.prompts.summarize import COMPRESS_SYSTEM, build_compress_prompt

if TYPE_CHECKING:
    from canopy.llm.protocols import Generation, WorkProducer

logger = logging.getLogger(__name__)

COMPRESS_WINDOW = 4
COMPRESS_EVERY = 3


@dataclass(frozen=True)
class CompressionResult:
    """Compressed history plus what it cost.

    Attributes:
        messages: The new history (summary first, then the kept window).
        summarized: False when the fallback continuation was used.
        generation: The summarization call's result, if it succeeded.
    """

    messages: list[dict[str, str]]
    summarized: bool
    generation: Generation | None = None


def should_compress(
    iteration: int,
    message_count: int,
    *,
    every: int = COMPRESS_EVERY,
    window: int = COMPRESS_WINDOW,
) -> bool:
    """True on every *every*-th iteration (never the first) once history exceeds window + 1."""
    return iteration > 1 and iteration % every == 0 and message_count > window + 1


def _render(message: dict[str, str], max_chars: int) -> str:
    content = message.get("content", "")
    if not isinstance(content, str):
        content = json.dumps(content, ensure_ascii=False)
    return f"[{message.get('role', 'user')}]: {content[:max_chars]}"


def summary_message(objective: str, summary: str) -> dict[str, str]:
    return {
        "role": "user",
        "content": (
            f'Context summary of your work so far on "{objective}":\n{summary}\n\n'
            "Continue from where you left off."
        ),
    }


def fallback_message(objective: str) -> dict[str, str]:
    return {
        "role": "user",
        "content": f'You have been working on: "{objective}". Continue your work.',
    }


def compress_history(
    messages: list[dict[str, str]],
    objective: str,
    llm: WorkProducer | None,
    *,
    window: int = COMPRESS_WINDOW,
    message_chars: int = 500,
    model: str | None = None,
    max_tokens: int = 300,
    temperature: float = 0.3,
) -> CompressionResult:
    """Collapse all but the last *window* messages into one summary.

    The result always holds at most ``window + 1`` messages and the
    objective always appears in the leading message.
    """
    if len(messages) <= window + 1:
        return CompressionResult(messages=list(messages), summarized=False)

    older = messages[:-window]
    recent = list(messages[-window:])
    transcript = "\n".join(_render(m, message_chars) for m in older)

    if llm is None:
        return CompressionResult(messages=[fallback_message(objective), *recent], summarized=False)

    try:
        generation = llm.generate(
            COMPRESS_SYSTEM,
            [{"role": "user", "content": build_compress_prompt(objective, transcript)}],
            model=model,
            max_tokens=max_tokens,
            temperature=temperature,
        )
    except Exception as exc:
        logger.warning("Compression summary failed, using fallback: %s", exc)
        return CompressionResult(messages=[fallback_message(objective), *recent], summarized=False)

    summary = (generation.text or "").strip()
    if not summary:
        logger.warning("Compression summary was empty, using fallback")
        return CompressionResult(
            messages=[fallback_message(objective), *recent],
            summarized=False,
            generation=generation,
        )

    logger.debug("Compressed %d messages into a summary", len(older))
    return CompressionResult(
        messages=[summary_message(objective, summary), *recent],
        summarized=True,
        generation=generation,
    )
