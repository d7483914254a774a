"""
tests/test_dispatcher.py — pytest unit tests for emergency escalation:
dispatcher outcomes, the Twilio channel and the history sinks.
"""

from __future__ import annotations

import asyncio
import time
from datetime import datetime
from urllib.parse import parse_qs

import httpx
import pytest

from echovoice.context.aggregator import Context
from echovoice.core.config import MessagingConfig
from echovoice.core.constants import TriggerKind
from echovoice.core.errors import EscalationFailedError
from echovoice.emergency.dispatcher import (
    Contact,
    Delivery,
    DispatchOutcome,
    EscalationDispatcher,
)
from echovoice.emergency.messaging import TwilioChannel, compose_alert_body
from echovoice.emergency.trigger import EmergencyEvent
from echovoice.output.history import JsonlHistorySink, MemoryHistorySink
from echovoice.output.speech import URGENT

from fakes import FakeChannel, FakeHistory, FakeSpeech

_CONTACTS = [
    {"name": "Sarah", "phone": "+15550101"},
    {"name": "Tom", "phone": "+15550102"},
    {"name": "Ana", "phone": "+15550103"},
]


@pytest.fixture()
def event() -> EmergencyEvent:
    return EmergencyEvent(
        trigger_kind=TriggerKind.RAPID_TAP,
        armed_at=time.time(),
        countdown_seconds=10,
        context_snapshot=Context(emotion="fearful", location_label="Kitchen"),
        message="Emergency! I need help immediately!",
    )


def _dispatch(dispatcher: EscalationDispatcher, event: EmergencyEvent, contacts):
    return asyncio.run(dispatcher.dispatch(event, contacts))


# ──────────────────────────────────────────────────────────────
# Dispatcher
# ──────────────────────────────────────────────────────────────

class TestDispatcher:
    def test_all_ok_is_success(self, event, speech, history, channel) -> None:
        report = _dispatch(EscalationDispatcher(speech, history, channel), event, _CONTACTS)
        assert report.outcome is DispatchOutcome.SUCCESS
        assert (report.success_count, report.total_count) == (3, 3)
        assert {d for d, _ in channel.sent} == {c["phone"] for c in _CONTACTS}

    def test_speech_uses_urgent_params(self, event, speech, history, channel) -> None:
        _dispatch(EscalationDispatcher(speech, history, channel), event, _CONTACTS)
        assert speech.calls == [(event.message, URGENT)]

    def test_history_records_event(self, event, speech, history, channel) -> None:
        _dispatch(EscalationDispatcher(speech, history, channel), event, _CONTACTS)
        assert len(history.records) == 1
        record = history.records[0]
        assert record["type"] == "emergency"
        assert record["trigger_kind"] == "RAPID_TAP"

    def test_one_of_three_fails_is_degraded(self, event, speech, history) -> None:
        channel = FakeChannel(failing=("+15550102",))
        report = _dispatch(EscalationDispatcher(speech, history, channel), event, _CONTACTS)
        assert report.outcome is DispatchOutcome.DEGRADED
        assert (report.success_count, report.total_count) == (2, 3)
        assert speech.calls and history.records

    def test_empty_contacts_uses_fallback_once(self, event, speech, history, channel) -> None:
        dispatcher = EscalationDispatcher(speech, history, channel, fallback_destination="+15559999")
        report = _dispatch(dispatcher, event, [])
        assert channel.sent and [d for d, _ in channel.sent] == ["+15559999"]
        assert len(history.records) == 1
        assert len(speech.calls) == 1
        assert report.outcome is DispatchOutcome.SUCCESS

    def test_empty_contacts_without_fallback_is_degraded(self, event, speech, history, channel) -> None:
        report = _dispatch(EscalationDispatcher(speech, history, channel), event, [])
        assert channel.sent == []
        assert report.outcome is DispatchOutcome.DEGRADED
        assert report.total_count == 1 and report.success_count == 0

    def test_notifications_still_sent_when_speech_fails(self, event, history, channel) -> None:
        report = _dispatch(EscalationDispatcher(FakeSpeech(fail=True), history, channel), event, _CONTACTS)
        assert report.outcome is DispatchOutcome.DEGRADED
        assert report.speech_ok is False
        assert report.success_count == 3

    def test_nothing_succeeds_raises(self, event) -> None:
        channel = FakeChannel(failing=tuple(c["phone"] for c in _CONTACTS))
        dispatcher = EscalationDispatcher(FakeSpeech(fail=True), FakeHistory(fail=True), channel)
        with pytest.raises(EscalationFailedError) as exc_info:
            _dispatch(dispatcher, event, _CONTACTS)
        report = exc_info.value.report
        assert report.outcome is DispatchOutcome.FAILED
        assert report.total_count == 3

    def test_partial_and_total_delivery_are_distinguished(self, event, speech, history) -> None:
        partial = _dispatch(
            EscalationDispatcher(speech, history, FakeChannel(failing=("+15550102",))), event, _CONTACTS,
        )
        nobody = _dispatch(
            EscalationDispatcher(speech, history, FakeChannel(failing=tuple(c["phone"] for c in _CONTACTS))),
            event, _CONTACTS,
        )
        assert partial.outcome is nobody.outcome is DispatchOutcome.DEGRADED
        assert partial.delivery is Delivery.PARTIAL
        assert nobody.delivery is Delivery.NONE
        assert nobody.to_dict()["delivery"] == "NONE"

    def test_full_delivery(self, event, speech, history, channel) -> None:
        report = _dispatch(EscalationDispatcher(speech, history, channel), event, _CONTACTS)
        assert report.delivery is Delivery.ALL
        assert report.to_dict()["delivery"] == "ALL"

    def test_missing_fallback_counts_as_no_delivery(self, event, speech, history, channel) -> None:
        report = _dispatch(EscalationDispatcher(speech, history, channel), event, [])
        assert report.delivery is Delivery.NONE

    def test_channel_exception_is_contained(self, event, speech, history) -> None:
        class Exploding:
            async def send_message(self, destination: str, body: str):
                raise RuntimeError("socket closed")

        report = _dispatch(EscalationDispatcher(speech, history, Exploding()), event, _CONTACTS[:1])
        assert report.outcome is DispatchOutcome.DEGRADED
        assert report.results[0].error == "socket closed"

    def test_alert_body_names_location(self, event, speech, history, channel) -> None:
        _dispatch(EscalationDispatcher(speech, history, channel, user_name="Jo"), event, _CONTACTS[:1])
        body = channel.sent[0][1]
        assert "Jo needs immediate help" in body
        assert "Location: Kitchen" in body

    def test_contact_coerce(self) -> None:
        assert Contact.coerce({"name": "A", "phone": "1"}) == Contact("A", "1")
        assert Contact.coerce(Contact("B", "2")) == Contact("B", "2")


# ──────────────────────────────────────────────────────────────
# Messaging
# ──────────────────────────────────────────────────────────────

_TWILIO = MessagingConfig(account_sid="AC1", auth_token="tok", from_number="+15550000")


def _twilio(handler, config: MessagingConfig = _TWILIO) -> TwilioChannel:
    return TwilioChannel(config, client=httpx.AsyncClient(transport=httpx.MockTransport(handler)))


class TestTwilioChannel:
    def test_missing_credentials(self) -> None:
        result = asyncio.run(TwilioChannel(MessagingConfig()).send_message("+1", "hi"))
        assert result.success is False
        assert result.error == "Missing Twilio credentials"

    def test_success_posts_form(self) -> None:
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(201, json={"sid": "SM42"})

        result = asyncio.run(_twilio(handler).send_message("+15550101", "help"))
        assert result.success and result.message_id == "SM42"
        assert seen[0].url.path.endswith("/Accounts/AC1/Messages.json")
        form = parse_qs(seen[0].content.decode())
        assert form["To"] == ["+15550101"]
        assert form["Body"] == ["help"]

    def test_api_error_is_failed_result(self) -> None:
        result = asyncio.run(_twilio(lambda r: httpx.Response(400, text="bad number")).send_message("x", "b"))
        assert result.success is False
        assert "400" in result.error

    def test_transport_error_is_failed_result(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("unreachable")

        result = asyncio.run(_twilio(handler).send_message("x", "b"))
        assert result.success is False

    def test_compose_alert_body_defaults(self) -> None:
        body = compose_alert_body("", when=datetime(2024, 1, 2, 3, 4, 5))
        assert "EchoVoice user needs immediate help!" in body
        assert "Location unknown" in body
        assert "2024-01-02 03:04:05" in body


# ──────────────────────────────────────────────────────────────
# History sinks
# ──────────────────────────────────────────────────────────────

class TestHistorySinks:
    def test_jsonl_appends(self, tmp_path) -> None:
        sink = JsonlHistorySink(tmp_path / "sub" / "history.jsonl")
        sink.append({"type": "phrase", "text": "Hello there my friend"})
        sink.append({"type": "emergency"})
        records = sink.read_all()
        assert [r["type"] for r in records] == ["phrase", "emergency"]
        assert "recorded_at" in records[0]

    def test_memory_sink_is_bounded_newest_first(self) -> None:
        sink = MemoryHistorySink(maxlen=3)
        for i in range(5):
            sink.append({"n": i})
        assert [r["n"] for r in sink.recent()] == [4, 3, 2]
        sink.clear()
        assert sink.recent() == []
