"""Configuration models for Canopy.

CanopyConfig holds the scheduling constants (iteration ceiling,
compression cadence, stale cap, truncation limits) together with the
spawn budget and model settings. Credentials are not stored here; the
HTTP clients read them from the environment.
"""

from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, Field

from canopy.models.budget import SpawnBudget

DEFAULT_MODEL = "moonshotai/kimi-k2"


class CanopyConfig(BaseModel):
    """Per-deployment configuration."""

    model_config = {"arbitrary_types_allowed": True}

    db_path: str = ":memory:"
    db_url: Optional[str] = None

    budget: SpawnBudget = Field(default_factory=SpawnBudget)

    # Collaborator call settings
    model: str = DEFAULT_MODEL
    temperature: float = 0.7
    max_tokens: int = 2000
    search_step_limit: int = 3
    searches_per_iteration: int = 5

    # Iteration state machine
    iteration_ceiling: int = 10
    compress_every: int = 3
    compress_window: int = 4
    sibling_every: int = 3
    sibling_limit: int = 5

    # Summarization / synthesis calls
    summary_max_tokens: int = 300
    summary_temperature: float = 0.3
    synthesis_max_tokens: int = 4000
    synthesis_input_chars: int = 8000
    synthesis_findings_limit: int = 20

    # Wall-clock limits (seconds)
    stale_after_seconds: int = 30 * 60
    claim_lease_seconds: int = 300

    # Truncation limits (characters)
    objective_max_chars: int = 2000
    name_max_chars: int = 100
    completion_output_max_chars: int = 10000
    finding_max_chars: int = 5000
    finding_min_chars: int = 50
    fan_in_output_chars: int = 300
    sibling_finding_chars: int = 200
    compress_message_chars: int = 500
    parent_findings_chars: int = 500
