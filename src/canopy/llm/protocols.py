"""Work-producing collaborator protocol.

The iteration engine, compression and synthesis only ever call
``generate()``. Anything with that method works: the built-in
OpenAIClient, or a scripted fake in tests.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Protocol, Sequence, runtime_checkable

if TYPE_CHECKING:
    from canopy.toolkit.models import ToolDefinition


@dataclass(frozen=True)
class Generation:
    """Text and token usage returned by one ``generate()`` call.

    Attributes:
        text: Concatenated assistant text across all steps.
        prompt_tokens: Prompt tokens summed over all steps.
        completion_tokens: Completion tokens summed over all steps.
        steps: Number of chat round-trips made.
        tool_calls: Number of tool invocations executed.
    """

    text: str
    prompt_tokens: int = 0
    completion_tokens: int = 0
    steps: int = 1
    tool_calls: int = 0


@runtime_checkable
class WorkProducer(Protocol):
    """Protocol for the collaborator that produces agent work."""

    def generate(
        self,
        system_prompt: str,
        messages: list[dict[str, str]],
        *,
        tools: Sequence[ToolDefinition] = (),
        step_limit: int = 1,
        model: str | None = None,
        temperature: float | None = None,
        max_tokens: int | None = None,
    ) -> Generation:
        """Run up to *step_limit* chat round-trips and return the final text."""
        ...

    def close(self) -> None:
        """Release underlying resources."""
        ...
