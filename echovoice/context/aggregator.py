"""
echovoice/context/aggregator.py — Fuses detector signals and manual
selections into a single :class:`Context`.

:func:`fuse` is pure. :class:`ContextAggregator` is the single writer of
the current context and notifies listeners only when it actually changes.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Iterable, Optional

from echovoice.core.constants import SignalKind
from echovoice.core.logger import get_logger
from echovoice.detectors.base import Signal


@dataclass(frozen=True)
class Context:
    """Snapshot of the user's situation; ``None`` means no signal available."""

    emotion: Optional[str] = None
    time_of_day: Optional[str] = None
    location_label: Optional[str] = None
    person_label: Optional[str] = None
    tone_modifier: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "emotion": self.emotion,
            "time_of_day": self.time_of_day,
            "location_label": self.location_label,
            "person_label": self.person_label,
            "tone_modifier": self.tone_modifier,
        }


class PhraseTone(Enum):
    FORMAL = "formal"
    FRIENDLY = "friendly"
    NEUTRAL = "neutral"


_TONE_MODIFIERS: dict[PhraseTone, str] = {
    PhraseTone.FORMAL: (
        "Use professional, polite, and respectful language. "
        "Keep phrases formal and courteous."
    ),
    PhraseTone.FRIENDLY: (
        "Use casual, warm, and friendly language. "
        "Make phrases approachable and conversational."
    ),
    PhraseTone.NEUTRAL: (
        "Use clear, direct, and neutral language. "
        "Keep phrases simple and straightforward."
    ),
}


def tone_modifier_for(tone: PhraseTone | str | None) -> Optional[str]:
    """Prompt modifier text for a phrase tone; ``None`` for no tone."""
    if tone is None:
        return None
    return _TONE_MODIFIERS[PhraseTone(tone)]


def _name_of(selection: Any) -> Optional[str]:
    """Accept a plain string, a mapping with ``name``, or an object with ``.name``."""
    if selection is None:
        return None
    if isinstance(selection, str):
        return selection or None
    if isinstance(selection, dict):
        return selection.get("name") or None
    return getattr(selection, "name", None) or None


def fuse(
    signals: Iterable[Signal],
    manual_person: Any = None,
    manual_location: Any = None,
    tone_modifier: Optional[str] = None,
) -> Context:
    """
    Combine the latest signal per kind with manual selections.

    The latest signal per kind wins (by ``observed_at``; later position
    breaks ties). Manual person and location always override detection.

    Args:
        signals: Any number of readings, in any order.
        manual_person: User-chosen person, or ``None``.
        manual_location: User-chosen location, or ``None``.
        tone_modifier: Prompt modifier text for the phrase tone.

    Returns:
        A new :class:`Context`; equal inputs always give an equal result.
    """
    latest: dict[SignalKind, Signal] = {}
    for signal in signals:
        current = latest.get(signal.kind)
        if current is None or signal.observed_at >= current.observed_at:
            latest[signal.kind] = signal

    def value(kind: SignalKind) -> Optional[str]:
        signal = latest.get(kind)
        return None if signal is None or signal.value is None else str(signal.value)

    return Context(
        emotion=value(SignalKind.EMOTION),
        time_of_day=value(SignalKind.TIME),
        location_label=_name_of(manual_location) or value(SignalKind.LOCATION),
        person_label=_name_of(manual_person) or value(SignalKind.PRESENCE),
        tone_modifier=tone_modifier,
    )


ContextListener = Callable[[Context], None]


class ContextAggregator:
    """
    Holds the latest reading per kind plus the user's manual choices.

    Args:
        tone: Initial phrase tone.
        emotion_detection: When False, emotion readings are ignored.
        location_detection: When False, detected locations are ignored
            (a manual location still applies).
    """

    def __init__(
        self,
        tone: PhraseTone | str | None = PhraseTone.FRIENDLY,
        emotion_detection: bool = True,
        location_detection: bool = True,
    ) -> None:
        self._signals: dict[SignalKind, Signal] = {}
        self._manual_person: Any = None
        self._manual_location: Any = None
        self._tone = PhraseTone(tone) if tone is not None else None
        self.emotion_detection = emotion_detection
        self.location_detection = location_detection
        self._listeners: list[ContextListener] = []
        self._context = Context(tone_modifier=tone_modifier_for(self._tone))
        self._log = get_logger()

    # ── Read side ──

    @property
    def context(self) -> Context:
        return self._context

    @property
    def tone(self) -> Optional[PhraseTone]:
        return self._tone

    def add_listener(self, listener: ContextListener) -> None:
        self._listeners.append(listener)

    # ── Inputs ──

    def update_signal(self, kind: SignalKind, signal: Optional[Signal]) -> None:
        """Record (or clear, with ``None``) the reading for *kind*."""
        if signal is None:
            self._signals.pop(kind, None)
        else:
            self._signals[kind] = signal
        self._refresh()

    def select_person(self, person: Any) -> None:
        self._manual_person = person
        self._refresh()

    def clear_person(self) -> None:
        self.select_person(None)

    def select_location(self, location: Any) -> None:
        self._manual_location = location
        self._refresh()

    def clear_location(self) -> None:
        self.select_location(None)

    def set_tone(self, tone: PhraseTone | str | None) -> None:
        self._tone = PhraseTone(tone) if tone is not None else None
        self._refresh()

    def set_detection(
        self,
        emotion: Optional[bool] = None,
        location: Optional[bool] = None,
    ) -> None:
        if emotion is not None:
            self.emotion_detection = emotion
        if location is not None:
            self.location_detection = location
        self._refresh()

    # ── Internal ──

    def _active_signals(self) -> list[Signal]:
        active = []
        for kind, signal in self._signals.items():
            if kind is SignalKind.EMOTION and not self.emotion_detection:
                continue
            if kind is SignalKind.LOCATION and not self.location_detection:
                continue
            active.append(signal)
        return active

    def _refresh(self) -> None:
        context = fuse(
            self._active_signals(),
            manual_person=self._manual_person,
            manual_location=self._manual_location,
            tone_modifier=tone_modifier_for(self._tone),
        )
        if context == self._context:
            return
        self._context = context
        self._log.debug("context", "changed", context.to_dict())
        for listener in list(self._listeners):
            listener(context)
