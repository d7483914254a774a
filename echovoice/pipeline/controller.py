"""
echovoice/pipeline/controller.py — Process-scoped runtime for EchoVoice.

Wires detectors → aggregator → suggestion engine, and emergency trigger →
escalation dispatcher, on a single asyncio event loop. Collaborators are
built from :class:`EchoConfig` unless injected.

Subscribers receive JSON-safe dict payloads through :meth:`EchoController.subscribe`.
"""

from __future__ import annotations

import asyncio
from collections import defaultdict
from datetime import datetime
from typing import Any, Callable, Dict, Iterable, List, Optional

from echovoice.context.aggregator import Context, ContextAggregator, PhraseTone
from echovoice.core.config import EchoConfig
from echovoice.core.constants import DetectorState, SignalKind
from echovoice.core.errors import EscalationFailedError, ResourceUnavailableError, SpeechUnavailableError
from echovoice.core.logger import get_logger
from echovoice.core.scheduler import LoopScheduler, Scheduler
from echovoice.detectors.base import Detector, Signal
from echovoice.detectors.capture import CameraCapture
from echovoice.detectors.emotion import DnnEmotionClassifier, EmotionDetector
from echovoice.detectors.geocode import FixedPositionProvider, NominatimGeocoder
from echovoice.detectors.location import LocationTimeDetector
from echovoice.detectors.presence import DnnFaceEncoder, PresenceDetector, load_gallery
from echovoice.emergency.dispatcher import Contact, DispatchReport, EscalationDispatcher
from echovoice.emergency.messaging import MessagingChannel, TwilioChannel
from echovoice.emergency.trigger import EmergencyEvent, EmergencyTrigger
from echovoice.output.history import HistorySink, JsonlHistorySink, MemoryHistorySink
from echovoice.output.speech import NORMAL, Pyttsx3Speech, SpeechOutput
from echovoice.suggestions.backend import GenerativeBackend, HttpGenerativeBackend, TransformersBackend
from echovoice.suggestions.engine import SuggestionEngine
from echovoice.suggestions.models import Suggestion

_log = get_logger()

# ── EventBus event-name constants ─────────────────────────────────────────────

ON_CONTEXT             = "ON_CONTEXT"
"""Fired when the fused context changes."""

ON_SUGGESTIONS         = "ON_SUGGESTIONS"
"""Fired when a new ranked suggestion list is ready."""

ON_SPEAKING            = "ON_SPEAKING"
"""Fired when a phrase is handed to speech output."""

ON_DETECTOR_ERROR      = "ON_DETECTOR_ERROR"
"""Fired when a detector enters the ERROR state."""

ON_EMERGENCY_ARMED     = "ON_EMERGENCY_ARMED"
"""Fired when the trigger fires and the confirmation countdown opens."""

ON_COUNTDOWN           = "ON_COUNTDOWN"
"""Fired on every countdown tick with the seconds remaining."""

ON_EMERGENCY_CANCELLED = "ON_EMERGENCY_CANCELLED"
"""Fired when the user cancels a pending emergency."""

ON_ESCALATED           = "ON_ESCALATED"
"""Fired with the dispatch report once an emergency has been escalated."""


# ── Collaborator factories ────────────────────────────────────────────────────

def build_detectors(config: EchoConfig) -> list[Detector]:
    """Camera detectors (when enabled) plus the location/time detector."""
    detectors: list[Detector] = []
    det = config.detectors
    if config.camera.enabled:
        capture = CameraCapture(config.camera)
        detectors.append(
            EmotionDetector(capture, DnnEmotionClassifier(det.emotion_model), det.vision_interval_s)
        )
        try:
            gallery = load_gallery(det.gallery_path)
        except ResourceUnavailableError as exc:
            _log.warn("pipeline", "gallery_unavailable", {"error": str(exc)})
            gallery = {}
        detectors.append(
            PresenceDetector(
                capture,
                DnnFaceEncoder(det.face_embedding_model),
                gallery,
                det.vision_interval_s,
                det.presence_min_confidence,
            )
        )
    loc = config.location
    detectors.append(
        LocationTimeDetector(
            FixedPositionProvider(loc.latitude, loc.longitude, loc.consent),
            NominatimGeocoder(loc.geocoder_url, loc.user_agent, loc.timeout_s),
            det.clock_interval_s,
        )
    )
    return detectors


def build_backend(config: EchoConfig) -> Optional[GenerativeBackend]:
    cfg = config.suggestions
    if cfg.backend == "http":
        return HttpGenerativeBackend(cfg.endpoint, cfg.api_key, cfg.timeout_s)
    if cfg.backend == "transformers":
        return TransformersBackend(cfg.model_id, cfg.max_new_tokens, cfg.temperature)
    return None


# ── EchoController ────────────────────────────────────────────────────────────

class EchoController:
    """
    Main runtime object. One per process; all methods run on the event loop.

    Args:
        config: Full configuration (defaults when omitted).
        detectors: Detectors to run; built from config when ``None``.
        backend: Generative backend; built from config when ``None``.
        speech: Speech output; pyttsx3 when ``None``.
        history: Durable history sink; JSON lines file when ``None``.
        channel: Messaging channel; Twilio when ``None``.
        scheduler: Timer source for the emergency trigger.
    """

    def __init__(
        self,
        config: Optional[EchoConfig] = None,
        *,
        detectors: Optional[Iterable[Detector]] = None,
        backend: Optional[GenerativeBackend] = None,
        speech: Optional[SpeechOutput] = None,
        history: Optional[HistorySink] = None,
        channel: Optional[MessagingChannel] = None,
        scheduler: Optional[Scheduler] = None,
    ) -> None:
        self.config = config or EchoConfig()
        cfg = self.config

        self._subscribers: Dict[str, List[Callable[[Dict[str, Any]], None]]] = defaultdict(list)

        # ── Context ───────────────────────────────────────────────────────
        self.aggregator = ContextAggregator(
            tone=cfg.settings.phrase_tone,
            emotion_detection=cfg.settings.emotion_detection,
            location_detection=cfg.settings.location_detection,
        )
        self.aggregator.add_listener(self._on_context)

        # ── Detectors ─────────────────────────────────────────────────────
        self.detectors: list[Detector] = list(detectors) if detectors is not None else build_detectors(cfg)
        for detector in self.detectors:
            detector.on_signal = self._on_detector_signal
            detector.on_state = self._on_detector_state
            if isinstance(detector, LocationTimeDetector):
                detector.on_time = self._on_time_signal

        # ── Suggestions ───────────────────────────────────────────────────
        self.engine = SuggestionEngine(
            backend if backend is not None else build_backend(cfg),
            timeout_s=cfg.suggestions.timeout_s,
        )
        self.suggestions: list[Suggestion] = []
        self._suggest_task: Optional[asyncio.Task] = None

        # ── Output ────────────────────────────────────────────────────────
        self.speech: SpeechOutput = speech if speech is not None else Pyttsx3Speech(cfg.tts)
        self.history: HistorySink = history if history is not None else JsonlHistorySink(cfg.history.path)
        self.recent = MemoryHistorySink(cfg.history.recent_max)

        # ── Emergency ─────────────────────────────────────────────────────
        self.scheduler = scheduler or LoopScheduler()
        self.trigger = EmergencyTrigger(
            self.scheduler,
            cfg.emergency,
            on_confirmed=self._on_emergency_confirmed,
            context_provider=lambda: self.aggregator.context,
            on_armed=self._on_emergency_armed,
            on_countdown=self._on_countdown,
            on_cancelled=self._on_emergency_cancelled,
        )
        self.dispatcher = EscalationDispatcher(
            self.speech,
            self.history,
            channel if channel is not None else TwilioChannel(cfg.messaging),
            fallback_destination=cfg.messaging.fallback_destination or cfg.messaging.from_number,
            user_name=cfg.emergency.user_name,
        )
        self.contacts: list[Contact] = [Contact.coerce(c) for c in cfg.emergency.contacts]
        self.last_report: Optional[DispatchReport] = None
        self._escalations: set[asyncio.Task] = set()

        _log.info("pipeline", "controller_ready", {
            "detectors": [d.name for d in self.detectors],
            "backend": type(self.engine.backend).__name__ if self.engine.backend else None,
            "contacts": len(self.contacts),
        })

    # ──────────────────────────────────────────
    # EventBus
    # ──────────────────────────────────────────

    def subscribe(self, event: str, callback: Callable[[Dict[str, Any]], None]) -> None:
        """
        Register *callback* to receive payloads whenever *event* is published.

        Callbacks run synchronously in registration order; a failing callback
        is logged and never disrupts the remaining subscribers.
        """
        self._subscribers[event].append(callback)
        _log.debug("pipeline", "event_subscribed", {"event": event})

    def publish(self, event: str, data: Dict[str, Any]) -> None:
        for cb in self._subscribers.get(event, []):
            try:
                cb(data)
            except Exception as exc:  # noqa: BLE001
                _log.error("pipeline", "event_callback_error", {"event": event, "error": str(exc)})

    # ──────────────────────────────────────────
    # Lifecycle
    # ──────────────────────────────────────────

    async def start(self) -> None:
        """Start every detector, take a first location fix, and suggest."""
        for detector in self.detectors:
            await detector.start()
        if self.config.location.consent:
            await self.locate()
        self.request_suggestions()
        _log.info("pipeline", "started", self.snapshot()["detectors"])

    async def shutdown(self) -> None:
        if self._suggest_task is not None:
            self._suggest_task.cancel()
        self.trigger.cancel()
        for detector in self.detectors:
            await detector.stop()
        if self._escalations:
            await asyncio.gather(*self._escalations, return_exceptions=True)
        shutdown = getattr(self.speech, "shutdown", None)
        if callable(shutdown):
            shutdown()
        _log.info("pipeline", "shutdown", {})

    # ──────────────────────────────────────────
    # Manual context
    # ──────────────────────────────────────────

    @property
    def context(self) -> Context:
        return self.aggregator.context

    def select_person(self, person: Any) -> None:
        self.aggregator.select_person(person)

    def clear_person(self) -> None:
        self.aggregator.clear_person()

    def select_location(self, location: Any) -> None:
        self.aggregator.select_location(location)

    def clear_location(self) -> None:
        self.aggregator.clear_location()

    def set_tone(self, tone: PhraseTone | str) -> None:
        self.aggregator.set_tone(tone)

    def set_detection(self, emotion: Optional[bool] = None, location: Optional[bool] = None) -> None:
        self.aggregator.set_detection(emotion=emotion, location=location)

    async def locate(self) -> Optional[Signal]:
        for detector in self.detectors:
            if isinstance(detector, LocationTimeDetector):
                return await detector.locate()
        return None

    def set_contacts(self, contacts: Iterable[Any]) -> None:
        self.contacts = [Contact.coerce(c) for c in contacts]

    # ──────────────────────────────────────────
    # Suggestions and speech
    # ──────────────────────────────────────────

    def request_suggestions(self, now: Optional[datetime] = None) -> Optional[asyncio.Task]:
        """Start a suggestion request, cancelling any request still in flight."""
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            return None
        if self._suggest_task is not None and not self._suggest_task.done():
            self._suggest_task.cancel()
        self._suggest_task = loop.create_task(self._run_suggestions(self.context, now))
        return self._suggest_task

    async def refresh_suggestions(self, now: Optional[datetime] = None) -> list[Suggestion]:
        """Request suggestions and wait for the newest request to finish."""
        task = self.request_suggestions(now)
        while task is not None:
            await asyncio.wait({task})
            if not task.cancelled():
                return task.result()
            if self._suggest_task is task:
                break
            task = self._suggest_task
        return list(self.suggestions)

    async def _run_suggestions(self, context: Context, now: Optional[datetime]) -> list[Suggestion]:
        suggestions = await self.engine.suggest(context, now)
        self.suggestions = suggestions
        self.publish(ON_SUGGESTIONS, {
            "suggestions": [s.to_dict() for s in suggestions],
            "source": self.engine.last_source,
            "context": context.to_dict(),
        })
        return suggestions

    def speak_phrase(self, phrase: str) -> bool:
        """Speak *phrase* at the user's settings and record it. Returns False if unspoken."""
        phrase = phrase.strip()
        if not phrase:
            return False
        try:
            self.speech.speak(phrase, NORMAL)
        except SpeechUnavailableError as exc:
            _log.warn("pipeline", "speech_unavailable", {"error": str(exc)})
            return False
        self.publish(ON_SPEAKING, {"text": phrase})

        if self.config.settings.save_history:
            record = {"type": "phrase", "phrase": phrase, "context": self.context.to_dict()}
            self.recent.append(record)
            try:
                self.history.append(record)
            except OSError as exc:
                _log.error("pipeline", "history_failed", {"error": str(exc)})
        return True

    # ──────────────────────────────────────────
    # Emergency surface
    # ──────────────────────────────────────────

    def press(self) -> None:
        self.trigger.press()

    def release(self) -> None:
        self.trigger.release()

    def cancel_press(self) -> None:
        self.trigger.cancel_press()

    def confirm_emergency(self) -> bool:
        return self.trigger.confirm() is not None

    def cancel_emergency(self) -> bool:
        return self.trigger.cancel()

    async def wait_for_escalations(self) -> None:
        """Wait until every in-flight escalation has finished."""
        while self._escalations:
            await asyncio.gather(*list(self._escalations), return_exceptions=True)

    def _on_emergency_armed(self, event: EmergencyEvent) -> None:
        self.publish(ON_EMERGENCY_ARMED, event.to_record())

    def _on_countdown(self, remaining: int) -> None:
        self.publish(ON_COUNTDOWN, {"seconds_remaining": remaining})

    def _on_emergency_cancelled(self) -> None:
        self.publish(ON_EMERGENCY_CANCELLED, {})

    def _on_emergency_confirmed(self, event: EmergencyEvent) -> None:
        task = asyncio.get_running_loop().create_task(self._escalate(event))
        self._escalations.add(task)
        task.add_done_callback(self._escalations.discard)

    async def _escalate(self, event: EmergencyEvent) -> None:
        self.recent.append(event.to_record())
        try:
            report = await self.dispatcher.dispatch(event, self.contacts)
        except EscalationFailedError as exc:
            report = exc.report
        self.last_report = report
        self.publish(ON_ESCALATED, {"trigger_kind": event.trigger_kind.value, **report.to_dict()})

    # ──────────────────────────────────────────
    # Detector and context callbacks
    # ──────────────────────────────────────────

    def _on_detector_signal(self, detector: Detector, signal: Optional[Signal]) -> None:
        self.aggregator.update_signal(detector.kind, signal)

    def _on_time_signal(self, signal: Optional[Signal]) -> None:
        self.aggregator.update_signal(SignalKind.TIME, signal)

    def _on_detector_state(self, detector: Detector) -> None:
        if detector.state is DetectorState.ERROR and detector.error is not None:
            self.publish(ON_DETECTOR_ERROR, {
                "detector": detector.name,
                "kind": detector.error.kind.value,
                "message": detector.error.message,
            })

    def _on_context(self, context: Context) -> None:
        self.publish(ON_CONTEXT, context.to_dict())
        self.request_suggestions()

    # ──────────────────────────────────────────
    # Snapshot
    # ──────────────────────────────────────────

    def snapshot(self) -> Dict[str, Any]:
        """JSON-safe view of the whole runtime state."""
        return {
            "context": self.context.to_dict(),
            "tone": self.aggregator.tone.value if self.aggregator.tone else None,
            "suggestions": [s.to_dict() for s in self.suggestions],
            "detectors": {
                d.name: {
                    "state": d.state.value,
                    "error": d.error.kind.value if d.error else None,
                }
                for d in self.detectors
            },
            "emergency": {
                "state": self.trigger.state.value,
                "tap_count": self.trigger.tap_count,
                "seconds_remaining": self.trigger.seconds_remaining,
                "last_report": self.last_report.to_dict() if self.last_report else None,
            },
            "recent": self.recent.recent(),
        }
