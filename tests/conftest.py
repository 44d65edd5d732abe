"""Shared test fixtures for Canopy.

Provides an in-memory store, a scripted work producer, and helpers for
seeding missions.
"""

from __future__ import annotations

import json
from collections import deque
from typing import Any

import pytest

from canopy.llm.protocols import Generation
from canopy.models.iteration import NewAgent
from canopy.storage.engine import create_canopy_engine, create_session_factory, init_db
from canopy.storage.store import CanopyStore


class ScriptedLLM:
    """Work producer that replays canned replies and records every call.

    Replies may be strings, dicts (serialized to JSON), Generation
    instances, or exceptions (raised). When the script runs out the last
    reply is repeated.
    """

    def __init__(self, *replies: Any, prompt_tokens: int = 10, completion_tokens: int = 5):
        self._replies: deque = deque(replies or ["{}"])
        self._last: Any = self._replies[-1]
        self.prompt_tokens = prompt_tokens
        self.completion_tokens = completion_tokens
        self.calls: list[dict[str, Any]] = []
        self.closed = False

    def generate(
        self,
        system_prompt,
        messages,
        *,
        tools=(),
        step_limit=1,
        model=None,
        temperature=None,
        max_tokens=None,
    ) -> Generation:
        self.calls.append(
            {
                "system_prompt": system_prompt,
                "messages": [dict(m) for m in messages],
                "tools": list(tools),
                "step_limit": step_limit,
                "model": model,
                "max_tokens": max_tokens,
            }
        )
        reply = self._replies.popleft() if self._replies else self._last
        if isinstance(reply, BaseException):
            raise reply
        if isinstance(reply, Generation):
            return reply
        text = reply if isinstance(reply, str) else json.dumps(reply)
        return Generation(
            text=text,
            prompt_tokens=self.prompt_tokens,
            completion_tokens=self.completion_tokens,
        )

    def close(self) -> None:
        self.closed = True


class InterruptingLLM(ScriptedLLM):
    """ScriptedLLM that runs *interrupt* before answering, as an overlapping tick would."""

    def __init__(self, interrupt, *replies: Any, **kwargs: Any):
        super().__init__(*replies, **kwargs)
        self._interrupt = interrupt

    def generate(self, *args, **kwargs) -> Generation:
        self._interrupt()
        return super().generate(*args, **kwargs)


class FakeSearchProvider:
    """Search provider returning one fixed result per query."""

    name = "fake"

    def __init__(self) -> None:
        self.queries: list[str] = []

    def search(self, query: str, *, num: int = 5) -> dict:
        self.queries.append(query)
        return {
            "answer": None,
            "results": [{"title": f"About {query}", "url": "https://example.org", "snippet": "..."}],
        }


@pytest.fixture
def engine():
    """In-memory SQLite engine with all tables created."""
    eng = create_canopy_engine(":memory:")
    init_db(eng)
    yield eng
    eng.dispose()


@pytest.fixture
def store(engine) -> CanopyStore:
    return CanopyStore(create_session_factory(engine))


# ------------------------------------------------------------------
# Shared test helpers
# ------------------------------------------------------------------

def new_agent(
    agent_id: str,
    parent_id: str | None = None,
    *,
    role: str = "coordinator",
    depth: int = 0,
    name: str | None = None,
    objective: str = "Investigate the topic",
) -> NewAgent:
    return NewAgent(
        agent_id=agent_id,
        parent_id=parent_id,
        role=role,
        name=name or agent_id.title(),
        objective=objective,
        depth=depth,
        model=None,
        context={},
    )


def seed_mission(
    store: CanopyStore,
    *agents: NewAgent,
    objective: str = "Map the solar inverter market",
    owner_id: str | None = None,
    started_at=None,
):
    """Create a mission with the given agents (a single root if none)."""
    if not agents:
        agents = (new_agent("root"),)
    return store.create_mission(
        objective, list(agents), owner_id=owner_id, started_at=started_at
    )


def reply(**fields: Any) -> str:
    """Serialize an agent reply the way a well-behaved model would."""
    return json.dumps(fields)
