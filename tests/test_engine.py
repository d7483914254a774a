"""
tests/test_engine.py — pytest unit tests for the suggestion engine, reply
parsing, the prompt builder and the HTTP backend.

Backends are in-memory fakes or httpx.MockTransport; nothing leaves the
process.
"""

from __future__ import annotations

import asyncio
import json
from datetime import datetime

import httpx
import pytest

from echovoice.context.aggregator import Context
from echovoice.core.constants import Priority
from echovoice.core.errors import TransientBackendError
from echovoice.core.result import Result, attempt
from echovoice.suggestions.backend import HttpGenerativeBackend
from echovoice.suggestions.engine import SuggestionEngine
from echovoice.suggestions.fallback import fallback_suggestions
from echovoice.suggestions.models import parse_reply
from echovoice.suggestions.prompt import PromptBuilder

from fakes import FakeBackend

_NOW = datetime(2024, 5, 15, 12, 30)
_CTX = Context(emotion="happy", location_label="Kitchen", person_label="Sarah")

_GOOD_REPLY = json.dumps([
    {"phrase": "I am so happy to see you", "priority": "high", "category": "emotional"},
    {"phrase": "Could you make me a sandwich", "priority": "medium", "category": "practical"},
    {"phrase": "Sarah, thank you for visiting today", "priority": "medium", "category": "social"},
    {"phrase": "Please remind me about my medicine", "priority": "low", "category": "care"},
])


def _run(coro):
    return asyncio.run(coro)


# ──────────────────────────────────────────────────────────────
# parse_reply
# ──────────────────────────────────────────────────────────────

class TestParseReply:
    def test_array_inside_prose(self) -> None:
        items = parse_reply("Sure! Here you go:\n" + _GOOD_REPLY + "\nHope that helps.")
        assert len(items) == 4
        assert items[0].priority is Priority.HIGH

    def test_invalid_items_dropped(self) -> None:
        reply = json.dumps([
            {"phrase": "Too short", "priority": "high"},
            {"phrase": "This phrase has enough words to count", "priority": "urgent"},
            "not an object",
            {"phrase": "  I   would like a   glass of water  ", "priority": "LOW"},
        ])
        items = parse_reply(reply)
        assert [s.phrase for s in items] == ["I would like a glass of water"]
        assert items[0].priority is Priority.LOW
        assert items[0].category == "general"

    @pytest.mark.parametrize("reply", [
        "",
        "no json here",
        "[not json]",
        json.dumps([{"phrase": "short"}]),
    ])
    def test_unusable_reply_raises(self, reply: str) -> None:
        with pytest.raises(TransientBackendError):
            parse_reply(reply)


# ──────────────────────────────────────────────────────────────
# attempt / Result
# ──────────────────────────────────────────────────────────────

class TestAttempt:
    def test_timeout_becomes_err(self) -> None:
        async def slow() -> str:
            await asyncio.sleep(1.0)
            return "late"

        result = _run(attempt(slow, timeout_s=0.01))
        assert not result.is_ok
        assert "timed out" in str(result.error)
        assert result.or_else(lambda err: "fallback") == "fallback"

    def test_other_errors_wrapped(self) -> None:
        async def boom() -> str:
            raise KeyError("x")

        result = _run(attempt(boom, timeout_s=1.0))
        assert isinstance(result.error, TransientBackendError)
        assert isinstance(result.error.__cause__, KeyError)
        with pytest.raises(TransientBackendError):
            result.unwrap()

    def test_ok(self) -> None:
        async def fine() -> int:
            return 7

        assert _run(attempt(fine, timeout_s=1.0)).unwrap() == 7
        assert Result.ok(3).or_else(lambda err: 0) == 3


# ──────────────────────────────────────────────────────────────
# SuggestionEngine
# ──────────────────────────────────────────────────────────────

class TestSuggestionEngine:
    def test_no_backend_uses_rules(self) -> None:
        engine = SuggestionEngine()
        result = _run(engine.suggest(_CTX, _NOW))
        assert result == fallback_suggestions(_CTX, _NOW)
        assert engine.last_source == "rules"

    def test_valid_reply_is_used(self) -> None:
        backend = FakeBackend(reply=_GOOD_REPLY)
        engine = SuggestionEngine(backend)
        result = _run(engine.suggest(_CTX, _NOW))
        assert engine.last_source == "model"
        assert result[0].phrase == "I am so happy to see you"
        assert result[-1].priority is Priority.LOW
        assert "Kitchen" in backend.prompts[0]

    def test_timeout_falls_back(self) -> None:
        engine = SuggestionEngine(FakeBackend(reply=_GOOD_REPLY, delay_s=1.0), timeout_s=0.01)
        result = _run(engine.suggest(_CTX, _NOW))
        assert result == fallback_suggestions(_CTX, _NOW)
        assert engine.last_source == "rules"

    def test_backend_error_falls_back(self) -> None:
        engine = SuggestionEngine(FakeBackend(error=ConnectionError("down")))
        assert _run(engine.suggest(_CTX, _NOW)) == fallback_suggestions(_CTX, _NOW)

    def test_malformed_reply_falls_back(self) -> None:
        engine = SuggestionEngine(FakeBackend(reply="I cannot help with that."))
        assert _run(engine.suggest(_CTX, _NOW)) == fallback_suggestions(_CTX, _NOW)

    def test_partial_reply_is_topped_up(self) -> None:
        reply = json.dumps([{"phrase": "Could you make me a sandwich", "priority": "medium"}])
        engine = SuggestionEngine(FakeBackend(reply=reply))
        result = _run(engine.suggest(_CTX, _NOW))
        phrases = [s.phrase for s in result]
        assert len(result) == 4
        assert len(set(phrases)) == 4
        assert "Could you make me a sandwich" in phrases
        assert engine.last_source == "model"

    def test_no_emotion_or_location_skips_backend(self) -> None:
        backend = FakeBackend(reply=_GOOD_REPLY)
        engine = SuggestionEngine(backend)
        _run(engine.suggest(Context(person_label="Sarah"), _NOW))
        assert backend.prompts == []
        assert engine.last_source == "rules"


# ──────────────────────────────────────────────────────────────
# PromptBuilder
# ──────────────────────────────────────────────────────────────

class TestPromptBuilder:
    def test_prompt_mentions_context_and_format(self) -> None:
        prompt = PromptBuilder().build(Context(emotion="sad", tone_modifier="Use formal words."))
        assert "Emotion: sad" in prompt
        assert "Location: unknown" in prompt
        assert "Use formal words." in prompt
        assert "JSON array" in prompt

    def test_chat_messages(self) -> None:
        messages = PromptBuilder().build_chat_messages(Context())
        assert [m["role"] for m in messages] == ["system", "user"]


# ──────────────────────────────────────────────────────────────
# HttpGenerativeBackend
# ──────────────────────────────────────────────────────────────

def _backend(handler) -> HttpGenerativeBackend:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return HttpGenerativeBackend("http://model.local/generate", api_key="k", client=client)


class TestHttpBackend:
    def test_posts_prompt_and_reads_suggestions(self) -> None:
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json={"suggestions": json.loads(_GOOD_REPLY)})

        text = _run(_backend(handler).generate("hello"))
        assert json.loads(seen[0].content) == {"prompt": "hello"}
        assert seen[0].headers["Authorization"] == "Bearer k"
        assert len(parse_reply(text)) == 4

    def test_text_reply(self) -> None:
        text = _run(_backend(lambda r: httpx.Response(200, json={"text": _GOOD_REPLY})).generate("p"))
        assert text == _GOOD_REPLY

    def test_http_error_is_transient(self) -> None:
        with pytest.raises(TransientBackendError):
            _run(_backend(lambda r: httpx.Response(503)).generate("p"))

    def test_non_json_is_transient(self) -> None:
        with pytest.raises(TransientBackendError):
            _run(_backend(lambda r: httpx.Response(200, text="<html>")).generate("p"))
