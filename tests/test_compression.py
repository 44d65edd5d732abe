"""Tests for agent history compression."""

from __future__ import annotations

import pytest

from canopy.llm.protocols import Generation
from canopy.operations.compression import (
    compress_history,
    fallback_message,
    should_compress,
)
from tests.conftest import ScriptedLLM


def _history(n: int) -> list[dict[str, str]]:
    return [
        {"role": "user" if i % 2 == 0 else "assistant", "content": f"message {i}"}
        for i in range(n)
    ]


class TestShouldCompress:
    @pytest.mark.parametrize(
        ("iteration", "count", "expected"),
        [
            (3, 6, True),
            (6, 10, True),
            (3, 5, False),  # history still fits window + 1
            (4, 10, False),  # not a compression iteration
            (1, 10, False),
        ],
    )
    def test_cadence(self, iteration, count, expected):
        assert should_compress(iteration, count, every=3, window=4) is expected

    def test_first_iteration_never_compresses(self):
        assert should_compress(1, 50, every=1, window=4) is False


class TestCompressHistory:
    def test_summary_replaces_older_messages(self):
        llm = ScriptedLLM("Compared three vendors; B is cheapest.")
        history = _history(10)

        result = compress_history(history, "Pick an inverter vendor", llm, window=4)

        assert result.summarized is True
        assert len(result.messages) == 5
        assert "Pick an inverter vendor" in result.messages[0]["content"]
        assert "B is cheapest" in result.messages[0]["content"]
        assert result.messages[1:] == history[-4:]
        # only the older messages are sent to the summarizer
        sent = llm.calls[0]["messages"][0]["content"]
        assert "message 5" in sent
        assert "message 6" not in sent

    def test_summarizer_failure_uses_fallback(self):
        llm = ScriptedLLM(RuntimeError("provider down"))
        history = _history(8)

        result = compress_history(history, "Objective X", llm, window=4)

        assert result.summarized is False
        assert result.messages[0] == fallback_message("Objective X")
        assert result.messages[1:] == history[-4:]

    def test_empty_summary_uses_fallback(self):
        llm = ScriptedLLM(Generation(text="   ", prompt_tokens=3, completion_tokens=0))
        result = compress_history(_history(8), "Objective X", llm, window=4)
        assert result.summarized is False
        assert result.generation is not None
        assert "Objective X" in result.messages[0]["content"]

    def test_short_history_untouched(self):
        llm = ScriptedLLM("unused")
        history = _history(5)
        result = compress_history(history, "Objective X", llm, window=4)
        assert result.messages == history
        assert llm.calls == []

    def test_long_messages_are_truncated_for_summary(self):
        llm = ScriptedLLM("summary")
        history = [{"role": "user", "content": "z" * 2000}] + _history(6)
        compress_history(history, "Objective X", llm, window=4, message_chars=100)
        sent = llm.calls[0]["messages"][0]["content"]
        assert "z" * 100 in sent
        assert "z" * 101 not in sent
