"""What an agent may call during an iteration, and what came back."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Callable


@dataclass(frozen=True)
class ToolDefinition:
    """A callable offered to the model alongside its JSON Schema.

    ``handler`` receives the decoded arguments as keyword arguments; its
    return value is JSON-encoded unless it is already a string.
    """

    name: str
    description: str
    parameters: dict
    handler: Callable[..., object]

    def to_openai(self) -> dict:
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": self.parameters,
            },
        }


@dataclass(frozen=True)
class ToolResult:
    """Outcome of one tool call. ``error`` is set only when ``success`` is False."""

    tool_name: str
    success: bool
    output: str = ""
    error: str = ""

    def to_message_content(self) -> str:
        """Content for the ``tool`` message sent back to the model."""
        return self.output if self.success else f"Error: {self.error}"
