"""Structured results of one collaborator call.

The collaborator is asked for a JSON object, but what comes back is
loosely shaped. ParsedResult validates and coerces whatever fields are
present; UnparsedResult is the explicit fallback when no JSON object
could be recovered. Both share the interface the iteration engine reads.
"""

from __future__ import annotations

import json
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, Field, field_validator

# Progress delta applied when the reply could not be parsed.
FALLBACK_PROGRESS_DELTA = 5
MAX_PROGRESS_DELTA = 20


def _stringify(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, str):
        return value
    return json.dumps(value, ensure_ascii=False)


class SpawnRequest(BaseModel):
    """A child agent the collaborator asked for. Sanitized before use."""

    model_config = {"extra": "ignore"}

    role: str = "executor"
    name: str = ""
    objective: str = ""
    model: str | None = None
    context: dict[str, Any] = Field(default_factory=dict)

    @field_validator("role", "name", "objective", mode="before")
    @classmethod
    def _coerce_text(cls, value: Any) -> str:
        return _stringify(value)

    @field_validator("context", mode="before")
    @classmethod
    def _coerce_context(cls, value: Any) -> dict:
        return value if isinstance(value, dict) else {}


class InputRequest(BaseModel):
    """A request for human input that parks the agent in ``waiting``."""

    model_config = {"extra": "allow"}

    type: str = "text"
    title: str = "Human input needed"
    message: str = ""
    options: list[str] | None = None


class Artifact(BaseModel):
    """A named output saved as a report section."""

    model_config = {"extra": "ignore"}

    type: str = "document"
    name: str = "artifact"
    content: str = ""

    @field_validator("content", mode="before")
    @classmethod
    def _coerce_content(cls, value: Any) -> str:
        return _stringify(value)


class SearchRecord(BaseModel):
    """A search the collaborator reports having made."""

    model_config = {"extra": "ignore", "populate_by_name": True}

    query: str = ""
    result_count: int = Field(default=0, alias="resultCount")


class _ResultBase(BaseModel):
    model_config = {"extra": "ignore"}

    thinking: str = ""
    activity: str = ""
    progress_delta: int = FALLBACK_PROGRESS_DELTA
    output: str = ""
    spawn_agents: list[SpawnRequest] = Field(default_factory=list)
    needs_input: InputRequest | None = None
    complete: bool = False
    artifacts: list[Artifact] = Field(default_factory=list)
    searches: list[SearchRecord] = Field(default_factory=list)

    @property
    def wants_input(self) -> bool:
        return self.needs_input is not None and not self.complete


class ParsedResult(_ResultBase):
    """A reply whose JSON payload was recovered and validated."""

    kind: Literal["parsed"] = "parsed"
    confidence: str | None = None
    sources: list[dict[str, Any]] = Field(default_factory=list)

    @field_validator("thinking", "activity", "output", mode="before")
    @classmethod
    def _coerce_text(cls, value: Any) -> str:
        return _stringify(value)

    @field_validator("progress_delta", mode="before")
    @classmethod
    def _clamp_delta(cls, value: Any) -> int:
        try:
            delta = int(value)
        except (TypeError, ValueError, OverflowError):
            return FALLBACK_PROGRESS_DELTA
        return max(0, min(MAX_PROGRESS_DELTA, delta))

    @field_validator("complete", mode="before")
    @classmethod
    def _coerce_complete(cls, value: Any) -> bool:
        if isinstance(value, str):
            return value.strip().lower() in ("true", "yes", "1")
        return bool(value)

    @field_validator("spawn_agents", "artifacts", "searches", "sources", mode="before")
    @classmethod
    def _coerce_list(cls, value: Any) -> list:
        if not isinstance(value, list):
            return []
        return [item for item in value if isinstance(item, dict)]

    @field_validator("needs_input", mode="before")
    @classmethod
    def _coerce_input(cls, value: Any) -> Any:
        if value in (None, False, "", {}):
            return None
        if isinstance(value, str):
            return {"message": value}
        return value if isinstance(value, dict) else None


class UnparsedResult(_ResultBase):
    """Fallback when no JSON object could be recovered from the reply."""

    kind: Literal["unparsed"] = "unparsed"
    thinking: str = "Processing..."
    activity: str = "Working on objective"
    raw_text: str = ""

    @classmethod
    def from_text(cls, text: str) -> UnparsedResult:
        return cls(output=text, raw_text=text)


AgentResult = Annotated[
    Union[ParsedResult, UnparsedResult], Field(discriminator="kind")
]
