"""Work-producing collaborator backed by an OpenAI-compatible chat API.

OpenAIClient talks to any ``/chat/completions`` endpoint (OpenRouter by
default) over httpx. ``chat()`` is one request with tenacity retry;
``generate()`` drives the bounded tool loop the iteration engine uses.

Configuration comes from constructor arguments, falling back to the
``CANOPY_OPENAI_API_KEY`` and ``CANOPY_OPENAI_BASE_URL`` environment
variables.
"""

from __future__ import annotations

import logging
import os
from typing import TYPE_CHECKING, Any, Sequence

import httpx
import tenacity

from canopy.llm.errors import (
    LLMAuthError,
    LLMConfigError,
    LLMHTTPError,
    LLMRateLimitError,
    LLMResponseError,
)
from canopy.llm.protocols import Generation
from canopy.models.config import DEFAULT_MODEL
from canopy.toolkit.executor import ToolExecutor

if TYPE_CHECKING:
    from canopy.toolkit.models import ToolDefinition

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://openrouter.ai/api/v1"
API_KEY_ENV = "CANOPY_OPENAI_API_KEY"
BASE_URL_ENV = "CANOPY_OPENAI_BASE_URL"

# 429 surfaces as LLMRateLimitError; these are the other statuses worth a retry.
_TRANSIENT_STATUSES = frozenset({500, 502, 503, 504})


def _should_retry(exc: BaseException) -> bool:
    """Throttling, transient 5xx and transport failures are retried."""
    if isinstance(exc, LLMRateLimitError):
        return True
    if isinstance(exc, LLMHTTPError):
        return exc.status_code in _TRANSIENT_STATUSES
    return isinstance(exc, httpx.TransportError)


class OpenAIClient:
    """OpenAI-compatible chat client implementing WorkProducer.

    Usage::

        with OpenAIClient(api_key="sk-...") as client:
            gen = client.generate("You are terse.", [{"role": "user", "content": "Hi"}])
            print(gen.text, gen.prompt_tokens)

    Args:
        api_key: Provider key. Falls back to ``CANOPY_OPENAI_API_KEY``.
        base_url: API root. Falls back to ``CANOPY_OPENAI_BASE_URL``, then
            OpenRouter.
        default_model: Model used when a call names none.
        timeout: Per-request timeout in seconds.
        max_retries: Attempts per request, including the first.
        transport: httpx transport override (tests pass a MockTransport).

    Raises:
        LLMConfigError: If no key is given or set in the environment.
    """

    def __init__(
        self,
        api_key: str | None = None,
        base_url: str | None = None,
        default_model: str = DEFAULT_MODEL,
        timeout: float = 120.0,
        max_retries: int = 3,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self._api_key = api_key or os.environ.get(API_KEY_ENV, "")
        if not self._api_key:
            raise LLMConfigError(
                f"No API key for the work producer. Pass api_key= or set {API_KEY_ENV}."
            )
        base = base_url or os.environ.get(BASE_URL_ENV) or DEFAULT_BASE_URL
        self._base_url = base.rstrip("/")
        self._default_model = default_model
        self._max_retries = max(1, max_retries)
        self._client = httpx.Client(
            base_url=self._base_url,
            timeout=timeout,
            transport=transport,
            headers={"Authorization": f"Bearer {self._api_key}"},
        )

    # ------------------------------------------------------------------
    # Single request
    # ------------------------------------------------------------------

    def chat(
        self,
        messages: list[dict[str, Any]],
        *,
        model: str | None = None,
        temperature: float | None = None,
        max_tokens: int | None = None,
        **extra: Any,
    ) -> dict:
        """POST one chat completion, retrying transient failures.

        *extra* is merged into the request body (``tools`` for example).
        The retry policy is built per call so ``max_retries`` stays an
        instance setting.

        Raises:
            LLMAuthError: On 401/403, without retrying.
            LLMRateLimitError: On 429 once attempts run out.
            LLMHTTPError: On any other rejected status.
            LLMResponseError: If the body has no ``choices``.
        """
        payload: dict[str, Any] = {"model": model or self._default_model, "messages": messages}
        optional = {"temperature": temperature, "max_tokens": max_tokens}
        payload.update({k: v for k, v in optional.items() if v is not None})
        payload.update(extra)

        retrying = tenacity.Retrying(
            retry=tenacity.retry_if_exception(_should_retry),
            wait=tenacity.wait_exponential(multiplier=1, min=1, max=30) + tenacity.wait_random(0, 2),
            stop=tenacity.stop_after_attempt(self._max_retries),
            before_sleep=tenacity.before_sleep_log(logger, logging.WARNING),
            reraise=True,
        )
        return retrying(self._post, payload)

    def _post(self, payload: dict[str, Any]) -> dict:
        response = self._client.post("/chat/completions", json=payload)
        status = response.status_code
        if status in (401, 403):
            raise LLMAuthError.from_response(response, "Authentication failed")
        if status == 429:
            raise LLMRateLimitError.from_response(response)
        if status >= 400:
            raise LLMHTTPError.from_response(response, "Chat completion rejected")

        try:
            data = response.json()
        except ValueError as exc:
            raise LLMResponseError(f"Chat completion body is not JSON: {exc}") from exc
        if not isinstance(data, dict) or "choices" not in data:
            raise LLMResponseError(f"Chat completion without 'choices': {str(data)[:300]}")
        return data

    # ------------------------------------------------------------------
    # Bounded tool loop
    # ------------------------------------------------------------------

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
        """Run up to *step_limit* chat round-trips, executing tool calls between them.

        Tools are offered on every step except the last, so the final
        step always answers in text. Assistant text from every step is
        concatenated; callers that want a trailing JSON payload should
        parse the last object in it.
        """
        executor = ToolExecutor(tools)
        conversation: list[dict[str, Any]] = [
            {"role": "system", "content": system_prompt},
            *messages,
        ]
        texts: list[str] = []
        prompt_tokens = completion_tokens = tool_calls = 0
        steps = 0
        step_limit = max(1, step_limit)

        while steps < step_limit:
            steps += 1
            extra: dict[str, Any] = {}
            offer_tools = bool(tools) and steps < step_limit
            if offer_tools:
                extra["tools"] = executor.schemas()

            response = self.chat(
                conversation,
                model=model,
                temperature=temperature,
                max_tokens=max_tokens,
                **extra,
            )
            usage = self.extract_usage(response) or {}
            prompt_tokens += int(usage.get("prompt_tokens") or 0)
            completion_tokens += int(usage.get("completion_tokens") or 0)

            message = self._first_message(response)
            content = message.get("content") or ""
            if content:
                texts.append(content)

            calls = message.get("tool_calls") or []
            if not calls or not offer_tools:
                break

            conversation.append(
                {"role": "assistant", "content": content or None, "tool_calls": calls}
            )
            for call in calls:
                function = call.get("function") or {}
                result = executor.execute(function.get("name", ""), function.get("arguments"))
                tool_calls += 1
                logger.debug(
                    "Tool %s -> %s", result.tool_name, "ok" if result.success else result.error
                )
                conversation.append(
                    {
                        "role": "tool",
                        "tool_call_id": call.get("id", ""),
                        "content": result.to_message_content(),
                    }
                )

        return Generation(
            text="\n\n".join(texts),
            prompt_tokens=prompt_tokens,
            completion_tokens=completion_tokens,
            steps=steps,
            tool_calls=tool_calls,
        )

    def close(self) -> None:
        """Close the underlying httpx client."""
        self._client.close()

    def __enter__(self) -> OpenAIClient:
        return self

    def __exit__(self, *args: object) -> None:
        self.close()

    @staticmethod
    def _first_message(response: dict) -> dict:
        try:
            message = response["choices"][0]["message"]
        except (KeyError, IndexError, TypeError) as exc:
            raise LLMResponseError(
                f"Cannot extract message from response: {exc}. Response: {response}"
            ) from exc
        if not isinstance(message, dict):
            raise LLMResponseError(f"Unexpected message shape: {message!r}")
        return message

    @staticmethod
    def extract_usage(response: dict) -> dict | None:
        """Usage dict (prompt_tokens, completion_tokens, ...) or None."""
        return response.get("usage")
