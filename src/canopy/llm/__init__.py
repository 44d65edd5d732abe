"""LLM client infrastructure for Canopy.

Provides an OpenAI-compatible HTTP client with a bounded tool-use loop
and the work-producer protocol the engine depends on.
"""

from canopy.llm.client import OpenAIClient
from canopy.llm.errors import (
    LLMAuthError,
    LLMClientError,
    LLMConfigError,
    LLMHTTPError,
    LLMRateLimitError,
    LLMResponseError,
)
from canopy.llm.protocols import Generation, WorkProducer

__all__ = [
    "OpenAIClient",
    "WorkProducer",
    "Generation",
    "LLMClientError",
    "LLMConfigError",
    "LLMHTTPError",
    "LLMRateLimitError",
    "LLMAuthError",
    "LLMResponseError",
]
