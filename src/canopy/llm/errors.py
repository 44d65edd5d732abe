"""Errors raised by the work-producing HTTP client.

Every error here is a CanopyError, so the dispatcher's per-mission
containment treats a failed model call like any other Canopy failure.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from canopy.exceptions import CanopyError

if TYPE_CHECKING:
    import httpx

_BODY_PREVIEW_CHARS = 300


class LLMClientError(CanopyError):
    """Base for all LLM client errors."""


class LLMConfigError(LLMClientError):
    """No API key, or an unusable base URL."""


class LLMHTTPError(LLMClientError):
    """A provider answered with a status the client will not accept.

    Attributes:
        status_code: HTTP status of the rejected response.
    """

    def __init__(self, message: str, status_code: int) -> None:
        self.status_code = status_code
        super().__init__(message)

    @classmethod
    def from_response(cls, response: httpx.Response, reason: str) -> LLMHTTPError:
        body = response.text[:_BODY_PREVIEW_CHARS]
        return cls(f"{reason}: HTTP {response.status_code} - {body}", response.status_code)


class LLMAuthError(LLMHTTPError):
    """The provider rejected the key (401/403). Never retried."""


class LLMRateLimitError(LLMHTTPError):
    """The provider throttled the request (429).

    Attributes:
        retry_after: Seconds from the Retry-After header, or None.
    """

    def __init__(
        self,
        message: str = "Rate limited",
        retry_after: float | None = None,
        status_code: int = 429,
    ) -> None:
        self.retry_after = retry_after
        if retry_after is not None:
            message = f"{message} (retry after {retry_after:g}s)"
        super().__init__(message, status_code)

    @classmethod
    def from_response(cls, response: httpx.Response, reason: str = "Rate limited") -> LLMRateLimitError:
        raw = response.headers.get("Retry-After")
        try:
            retry_after = float(raw) if raw is not None else None
        except ValueError:
            retry_after = None
        body = response.text[:_BODY_PREVIEW_CHARS]
        return cls(f"{reason}: HTTP 429 - {body}", retry_after=retry_after)


class LLMResponseError(LLMClientError):
    """The provider answered 200 with a body that is not a chat completion."""
