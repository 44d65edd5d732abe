"""Web search collaborator.

Provider-agnostic search with three httpx backends (Serper, Brave,
Tavily), chosen by the ``CANOPY_SEARCH_PROVIDER`` environment variable.
Every provider returns the same shape::

    {"answer": str | None, "results": [{"title", "url", "snippet"}, ...]}

SearchTool wraps a provider as a ToolDefinition for one iteration and
enforces the per-call and mission-wide search caps. Limit violations
and provider failures are returned to the model as ``{"error": ...}``
so the model can carry on without results.
"""

from __future__ import annotations

import logging
import os
from typing import Any, Protocol, runtime_checkable

import httpx
import tenacity

from canopy.exceptions import SearchError
from canopy.toolkit.models import ToolDefinition

logger = logging.getLogger(__name__)

DEFAULT_PROVIDER = "serper"
MAX_RESULTS = 5

_RETRYABLE_STATUS_CODES = {429, 500, 502, 503, 504}

# provider name -> env var holding its key
PROVIDER_KEYS: dict[str, str] = {
    "serper": "SERPER_API_KEY",
    "brave": "BRAVE_SEARCH_API_KEY",
    "tavily": "TAVILY_API_KEY",
}


def _is_retryable(exc: BaseException) -> bool:
    if isinstance(exc, httpx.HTTPStatusError):
        return exc.response.status_code in _RETRYABLE_STATUS_CODES
    return isinstance(exc, (httpx.ConnectError, httpx.ConnectTimeout))


@runtime_checkable
class SearchProvider(Protocol):
    """Anything that can answer ``search(query)``."""

    name: str

    def search(self, query: str, *, num: int = MAX_RESULTS) -> dict[str, Any]:
        ...


class _HttpSearchProvider:
    """Shared httpx client and retry policy for the HTTP backends."""

    name = ""
    key_env = ""

    def __init__(
        self,
        api_key: str | None = None,
        *,
        timeout: float = 30.0,
        max_retries: int = 2,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self._api_key = api_key or os.environ.get(self.key_env, "")
        if not self._api_key:
            raise SearchError(f"{self.key_env} not configured")
        self._max_retries = max_retries
        self._client = httpx.Client(timeout=timeout, transport=transport)

    def search(self, query: str, *, num: int = MAX_RESULTS) -> dict[str, Any]:
        retryer = tenacity.Retrying(
            retry=tenacity.retry_if_exception(_is_retryable),
            wait=tenacity.wait_exponential(multiplier=0.5, min=0.5, max=5),
            stop=tenacity.stop_after_attempt(self._max_retries),
            before_sleep=tenacity.before_sleep_log(logger, logging.WARNING),
            reraise=True,
        )
        try:
            response = retryer(self._request, query, num)
        except httpx.HTTPStatusError as exc:
            raise SearchError(
                f"{self.name.title()} search failed: {exc.response.status_code}"
            ) from exc
        except httpx.HTTPError as exc:
            raise SearchError(f"{self.name.title()} search failed: {exc}") from exc
        return self._normalize(response.json())

    def _request(self, query: str, num: int) -> httpx.Response:
        raise NotImplementedError

    def _normalize(self, data: dict) -> dict[str, Any]:
        raise NotImplementedError

    def close(self) -> None:
        self._client.close()


class SerperProvider(_HttpSearchProvider):
    """Google results via google.serper.dev."""

    name = "serper"
    key_env = "SERPER_API_KEY"
    url = "https://google.serper.dev/search"

    def _request(self, query: str, num: int) -> httpx.Response:
        response = self._client.post(
            self.url,
            headers={"X-API-KEY": self._api_key, "Content-Type": "application/json"},
            json={"q": query, "num": num},
        )
        response.raise_for_status()
        return response

    def _normalize(self, data: dict) -> dict[str, Any]:
        box = data.get("answerBox") or {}
        return {
            "answer": box.get("answer") or box.get("snippet") or None,
            "results": [
                {"title": r.get("title"), "url": r.get("link"), "snippet": r.get("snippet")}
                for r in (data.get("organic") or [])[:MAX_RESULTS]
            ],
        }


class BraveProvider(_HttpSearchProvider):
    """Brave Search web results."""

    name = "brave"
    key_env = "BRAVE_SEARCH_API_KEY"
    url = "https://api.search.brave.com/res/v1/web/search"

    def _request(self, query: str, num: int) -> httpx.Response:
        response = self._client.get(
            self.url,
            params={"q": query, "count": num},
            headers={
                "Accept": "application/json",
                "X-Subscription-Token": self._api_key,
            },
        )
        response.raise_for_status()
        return response

    def _normalize(self, data: dict) -> dict[str, Any]:
        web = data.get("web") or {}
        return {
            "answer": None,
            "results": [
                {"title": r.get("title"), "url": r.get("url"), "snippet": r.get("description")}
                for r in (web.get("results") or [])[:MAX_RESULTS]
            ],
        }


class TavilyProvider(_HttpSearchProvider):
    """Tavily search API (includes a synthesized answer)."""

    name = "tavily"
    key_env = "TAVILY_API_KEY"
    url = "https://api.tavily.com/search"

    def _request(self, query: str, num: int) -> httpx.Response:
        response = self._client.post(
            self.url,
            json={
                "api_key": self._api_key,
                "query": query,
                "max_results": num,
                "search_depth": "basic",
            },
        )
        response.raise_for_status()
        return response

    def _normalize(self, data: dict) -> dict[str, Any]:
        return {
            "answer": data.get("answer") or None,
            "results": [
                {
                    "title": r.get("title"),
                    "url": r.get("url"),
                    "snippet": (r.get("content") or "")[:300],
                }
                for r in (data.get("results") or [])[:MAX_RESULTS]
            ],
        }


_PROVIDERS: dict[str, type[_HttpSearchProvider]] = {
    "serper": SerperProvider,
    "brave": BraveProvider,
    "tavily": TavilyProvider,
}


def has_search_key(provider: str | None = None) -> bool:
    """True if the selected provider's API key is present in the environment."""
    name = (provider or os.environ.get("CANOPY_SEARCH_PROVIDER") or DEFAULT_PROVIDER).lower()
    env = PROVIDER_KEYS.get(name)
    return bool(env and os.environ.get(env))


def get_search_provider(
    provider: str | None = None,
    **kwargs: Any,
) -> SearchProvider | None:
    """Build the configured provider, or None when its key is missing.

    Raises:
        SearchError: If *provider* (or ``CANOPY_SEARCH_PROVIDER``) names an
            unknown backend.
    """
    name = (provider or os.environ.get("CANOPY_SEARCH_PROVIDER") or DEFAULT_PROVIDER).lower()
    cls = _PROVIDERS.get(name)
    if cls is None:
        raise SearchError(f"Unknown search provider: {name}")
    if not has_search_key(name) and "api_key" not in kwargs:
        logger.debug("Search provider %s has no API key; search disabled", name)
        return None
    return cls(**kwargs)


class SearchTool:
    """Per-iteration search tool with call caps.

    Args:
        provider: Backend that answers queries.
        mission_used: Searches the mission has already consumed.
        mission_limit: Mission-wide ceiling.
        per_call_limit: Ceiling for this iteration.
    """

    name = "web_search"
    description = "Search the web for current information relevant to your research objective."

    def __init__(
        self,
        provider: SearchProvider,
        *,
        mission_used: int,
        mission_limit: int,
        per_call_limit: int = MAX_RESULTS,
    ) -> None:
        self._provider = provider
        self._mission_used = mission_used
        self._mission_limit = mission_limit
        self._per_call_limit = per_call_limit
        self.attempts = 0
        self.performed = 0
        self.queries: list[str] = []

    def __call__(self, query: str = "") -> dict[str, Any]:
        self.attempts += 1
        if self.attempts > self._per_call_limit:
            return {"error": "Search limit reached for this call. Produce your findings now."}
        if self._mission_used + self.performed >= self._mission_limit:
            return {"error": "Mission search budget exhausted."}

        self.performed += 1
        self.queries.append(query)
        try:
            return self._provider.search(query)
        except SearchError as exc:
            logger.warning("Search for %r failed: %s", query, exc)
            return {"error": f"Search failed: {exc}", "results": []}

    def definition(self) -> ToolDefinition:
        return ToolDefinition(
            name=self.name,
            description=self.description,
            parameters={
                "type": "object",
                "properties": {
                    "query": {
                        "type": "string",
                        "description": "Search query, specific and targeted",
                    }
                },
                "required": ["query"],
            },
            handler=self,
        )
