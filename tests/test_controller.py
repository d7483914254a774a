"""
tests/test_controller.py — pytest integration tests for pipeline.controller.EchoController.

The controller runs with in-memory speech, history and messaging, no
detectors, and a ManualScheduler driving the emergency trigger.
"""

from __future__ import annotations

import asyncio
import json
from dataclasses import replace
from datetime import datetime
from typing import Any, Dict, List

import pytest

from echovoice.core.constants import DetectorState, SignalKind, TriggerState
from echovoice.detectors.base import Signal
from echovoice.detectors.geocode import FixedPositionProvider
from echovoice.detectors.location import LocationTimeDetector
from echovoice.pipeline.controller import (
    ON_CONTEXT,
    ON_COUNTDOWN,
    ON_EMERGENCY_ARMED,
    ON_EMERGENCY_CANCELLED,
    ON_ESCALATED,
    ON_SPEAKING,
    ON_SUGGESTIONS,
    EchoController,
    build_backend,
    build_detectors,
)
from echovoice.suggestions.backend import HttpGenerativeBackend

from fakes import FakeBackend, FakeSpeech

_NOW = datetime(2024, 5, 15, 9, 0)


@pytest.fixture()
def controller(config, speech, history, channel, scheduler) -> EchoController:
    cfg = replace(
        config,
        emergency=replace(config.emergency, contacts=({"name": "Sarah", "phone": "+15550101"},)),
    )
    return EchoController(
        cfg,
        detectors=[],
        speech=speech,
        history=history,
        channel=channel,
        scheduler=scheduler,
    )


def _record(controller: EchoController, *events: str) -> Dict[str, List[Dict[str, Any]]]:
    seen: Dict[str, List[Dict[str, Any]]] = {e: [] for e in events}
    for event in events:
        controller.subscribe(event, seen[event].append)
    return seen


# ──────────────────────────────────────────────────────────────
# Context and suggestions
# ──────────────────────────────────────────────────────────────

class TestContextFlow:
    def test_manual_selection_publishes_context(self, controller) -> None:
        seen = _record(controller, ON_CONTEXT)
        controller.select_person("Sarah")
        controller.select_location("Kitchen")
        assert seen[ON_CONTEXT][-1]["person_label"] == "Sarah"
        assert seen[ON_CONTEXT][-1]["location_label"] == "Kitchen"

    def test_context_change_triggers_suggestions(self, controller) -> None:
        seen = _record(controller, ON_SUGGESTIONS)

        async def scenario() -> None:
            controller.select_location("Kitchen")
            await controller.refresh_suggestions(_NOW)

        asyncio.run(scenario())
        latest = seen[ON_SUGGESTIONS][-1]
        assert len(latest["suggestions"]) == 4
        assert latest["source"] == "rules"
        assert latest["context"]["location_label"] == "Kitchen"
        assert len(controller.suggestions) == 4

    def test_model_backend_used_when_context_present(self, config, speech, history, channel, scheduler) -> None:
        reply = json.dumps([{"phrase": "Could you make me a sandwich", "priority": "high"}])
        ctrl = EchoController(
            config, detectors=[], backend=FakeBackend(reply=reply),
            speech=speech, history=history, channel=channel, scheduler=scheduler,
        )

        async def scenario():
            ctrl.select_location("Kitchen")
            return await ctrl.refresh_suggestions(_NOW)

        result = asyncio.run(scenario())
        assert result[0].phrase == "Could you make me a sandwich"
        assert ctrl.engine.last_source == "model"

    def test_detector_signal_reaches_context(self, controller) -> None:
        class _Det:
            kind = SignalKind.EMOTION

        controller._on_detector_signal(_Det(), Signal(SignalKind.EMOTION, "happy", 0.8))
        assert controller.context.emotion == "happy"

    @pytest.mark.parametrize("consent", [True, False])
    def test_time_reading_withdrawn_when_clock_stops(
        self, config, speech, history, channel, scheduler, consent: bool,
    ) -> None:
        class _Geocoder:
            async def label_for(self, position) -> str:
                return "Kitchen"

        clock = LocationTimeDetector(
            FixedPositionProvider(51.5, -0.1, consent=consent), _Geocoder(),
            clock_interval_s=3600.0, clock=lambda: _NOW,
        )
        ctrl = EchoController(config, detectors=[clock], speech=speech, history=history,
                              channel=channel, scheduler=scheduler)

        async def scenario() -> None:
            await clock.start()
            assert ctrl.context.time_of_day == "09:00, morning"
            if consent:
                await clock.stop()
            else:
                await clock.locate()
                assert clock.state is DetectorState.ERROR

        asyncio.run(scenario())
        assert clock.current_time_signal() is None
        assert ctrl.context.time_of_day is None

    def test_request_without_loop_is_noop(self, controller) -> None:
        assert controller.request_suggestions() is None

    def test_snapshot_is_json_safe(self, controller) -> None:
        snap = controller.snapshot()
        json.dumps(snap)
        assert snap["tone"] == "friendly"
        assert snap["emergency"]["state"] == "IDLE"


# ──────────────────────────────────────────────────────────────
# Speaking
# ──────────────────────────────────────────────────────────────

class TestSpeakPhrase:
    def test_speaks_and_records(self, controller, speech, history) -> None:
        seen = _record(controller, ON_SPEAKING)
        assert controller.speak_phrase("I would like some water") is True
        assert speech.calls[0][0] == "I would like some water"
        assert seen[ON_SPEAKING] == [{"text": "I would like some water"}]
        assert history.records[0]["type"] == "phrase"
        assert controller.recent.recent()[0]["phrase"] == "I would like some water"

    def test_history_disabled(self, config, speech, history, channel, scheduler) -> None:
        cfg = replace(config, settings=replace(config.settings, save_history=False))
        ctrl = EchoController(cfg, detectors=[], speech=speech, history=history,
                              channel=channel, scheduler=scheduler)
        ctrl.speak_phrase("I would like some water")
        assert history.records == []

    def test_unavailable_speech_returns_false(self, config, history, channel, scheduler) -> None:
        ctrl = EchoController(config, detectors=[], speech=FakeSpeech(fail=True),
                              history=history, channel=channel, scheduler=scheduler)
        assert ctrl.speak_phrase("I would like some water") is False
        assert history.records == []

    def test_blank_phrase_ignored(self, controller, speech) -> None:
        assert controller.speak_phrase("   ") is False
        assert speech.calls == []


# ──────────────────────────────────────────────────────────────
# Emergency
# ──────────────────────────────────────────────────────────────

class TestEmergencyFlow:
    def test_long_press_escalates_after_countdown(self, controller, scheduler, speech, channel, history) -> None:
        seen = _record(controller, ON_EMERGENCY_ARMED, ON_COUNTDOWN, ON_ESCALATED)

        async def scenario() -> None:
            controller.select_location("Kitchen")
            controller.press()
            scheduler.advance(5.0)
            assert controller.trigger.state is TriggerState.FIRED
            scheduler.advance(10.0)
            await controller.wait_for_escalations()

        asyncio.run(scenario())
        assert seen[ON_EMERGENCY_ARMED][0]["trigger_kind"] == "LONG_PRESS"
        assert seen[ON_COUNTDOWN][0] == {"seconds_remaining": 10}
        escalated = seen[ON_ESCALATED]
        assert len(escalated) == 1
        assert escalated[0]["outcome"] == "SUCCESS"
        assert escalated[0]["trigger_kind"] == "LONG_PRESS"
        assert [d for d, _ in channel.sent] == ["+15550101"]
        assert "Kitchen" in channel.sent[0][1]
        assert history.records[-1]["type"] == "emergency"
        assert controller.last_report.success_count == 1

    def test_rapid_taps_then_manual_confirm(self, controller, scheduler) -> None:
        seen = _record(controller, ON_ESCALATED)

        async def scenario() -> None:
            for _ in range(3):
                controller.press()
                scheduler.advance(0.1)
                controller.release()
            assert controller.confirm_emergency() is True
            await controller.wait_for_escalations()

        asyncio.run(scenario())
        assert seen[ON_ESCALATED][0]["trigger_kind"] == "RAPID_TAP"

    def test_cancel_prevents_escalation(self, controller, scheduler, channel) -> None:
        seen = _record(controller, ON_EMERGENCY_CANCELLED, ON_ESCALATED)

        async def scenario() -> None:
            controller.press()
            scheduler.advance(5.0)
            assert controller.cancel_emergency() is True
            scheduler.advance(20.0)
            await controller.wait_for_escalations()

        asyncio.run(scenario())
        assert seen[ON_EMERGENCY_CANCELLED] == [{}]
        assert seen[ON_ESCALATED] == []
        assert channel.sent == []

    def test_subscriber_errors_do_not_break_flow(self, controller, scheduler) -> None:
        controller.subscribe(ON_EMERGENCY_ARMED, lambda data: 1 / 0)
        controller.press()
        scheduler.advance(5.0)
        assert controller.trigger.state is TriggerState.FIRED


# ──────────────────────────────────────────────────────────────
# Lifecycle and factories
# ──────────────────────────────────────────────────────────────

class TestLifecycle:
    def test_start_and_shutdown(self, controller, speech) -> None:
        seen = _record(controller, ON_SUGGESTIONS)

        async def scenario() -> None:
            await controller.start()
            await asyncio.sleep(0.05)
            await controller.shutdown()

        asyncio.run(scenario())
        assert len(seen[ON_SUGGESTIONS]) >= 1

    def test_build_detectors_without_camera(self, config) -> None:
        detectors = build_detectors(config)
        assert [d.name for d in detectors] == ["LocationTimeDetector"]
        assert detectors[0].state is DetectorState.IDLE

    def test_build_backend(self, config) -> None:
        assert build_backend(config) is None
        http = replace(config, suggestions=replace(config.suggestions, backend="http", endpoint="http://x"))
        assert isinstance(build_backend(http), HttpGenerativeBackend)
