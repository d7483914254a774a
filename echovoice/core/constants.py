"""
echovoice/core/constants.py — All system constants for EchoVoice.

Single frozen dataclass with typed constant groups: detector cadences,
suggestion limits, emergency gesture timings, and urgent speech parameters.
Enumerations shared across packages (signal kinds, detector and trigger
states, priorities) live here too.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import ClassVar


# ──────────────────────────────────────────────────────────────
# Enumerations
# ──────────────────────────────────────────────────────────────

class SignalKind(Enum):
    """The four kinds of situational reading a detector can produce."""

    EMOTION = "EMOTION"
    PRESENCE = "PRESENCE"
    LOCATION = "LOCATION"
    TIME = "TIME"


class DetectorState(Enum):
    """Lifecycle states shared by every detector."""

    IDLE = "IDLE"
    INITIALIZING = "INITIALIZING"
    READY = "READY"
    SAMPLING = "SAMPLING"
    STOPPED = "STOPPED"
    ERROR = "ERROR"


class Priority(Enum):
    """Suggestion priority tiers, ordered by :attr:`rank`."""

    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"

    @property
    def rank(self) -> int:
        """Sort key: HIGH=0, MEDIUM=1, LOW=2."""
        return _PRIORITY_RANK[self]


_PRIORITY_RANK: dict[Priority, int] = {
    Priority.HIGH: 0,
    Priority.MEDIUM: 1,
    Priority.LOW: 2,
}


class TriggerKind(Enum):
    """Emergency gesture that fired the trigger."""

    RAPID_TAP = "RAPID_TAP"
    LONG_PRESS = "LONG_PRESS"


class TriggerState(Enum):
    """All valid states for the emergency trigger state machine."""

    IDLE = "IDLE"
    ARMING = "ARMING"
    COUNTING = "COUNTING"
    FIRED = "FIRED"


# ──────────────────────────────────────────────────────────────
# Frozen constants dataclass
# ──────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class EchoConstants:
    """
    Frozen dataclass holding all EchoVoice system constants.

    Use the class attributes directly — do not instantiate. Values here are
    the defaults; :mod:`echovoice.core.config` may override the tunable ones.

    Example::

        from echovoice.core.constants import C, TriggerState

        print(C.LONG_PRESS_MS)       # 5000
        print(TriggerState.FIRED)    # TriggerState.FIRED
    """

    # ── Detector cadence ──────────────────────────────────────
    VISION_SAMPLE_S: ClassVar[float] = 3.0
    """Seconds between emotion / presence samples."""

    CLOCK_TICK_S: ClassVar[float] = 60.0
    """Seconds between clock readings."""

    PRESENCE_MIN_CONFIDENCE: ClassVar[float] = 0.4
    """A gallery match must score strictly above this to count as a reading."""

    EMOTION_LABELS: ClassVar[tuple[str, ...]] = (
        "happy", "sad", "angry", "fearful", "disgusted", "surprised", "neutral",
    )
    """Classifier output order for the emotion model."""

    DEFAULT_EMOTION: ClassVar[str] = "neutral"
    """Emotion the fallback rules assume when none was detected."""

    # ── Suggestions ───────────────────────────────────────────
    SUGGESTION_COUNT: ClassVar[int] = 4
    """Exactly this many suggestions are returned per request."""

    PHRASE_MIN_WORDS: ClassVar[int] = 4
    PHRASE_MAX_WORDS: ClassVar[int] = 15

    GENERATE_TIMEOUT_S: ClassVar[float] = 8.0
    """Hard cutoff for the generative backend before falling back."""

    # ── Emergency gestures ────────────────────────────────────
    LONG_PRESS_MS: ClassVar[float] = 5000.0
    """ms the emergency button must be held to fire."""

    RAPID_TAP_COUNT: ClassVar[int] = 3
    """Taps needed to fire."""

    TAP_WINDOW_MS: ClassVar[float] = 2000.0
    """ms after the last tap before the tap counter resets."""

    CONFIRM_COUNTDOWN_S: ClassVar[int] = 10
    """Seconds before a fired trigger auto-confirms."""

    EMERGENCY_MESSAGE: ClassVar[str] = "Emergency! I need help immediately!"
    """Spoken and sent when an emergency is confirmed."""

    # ── Urgent speech parameters (multipliers of the user's settings) ──
    URGENT_RATE: ClassVar[float] = 0.8
    URGENT_PITCH: ClassVar[float] = 1.2
    URGENT_VOLUME: ClassVar[float] = 1.0

    # ── History ───────────────────────────────────────────────
    RECENT_HISTORY_MAX: ClassVar[int] = 10
    """Items kept by the in-memory recent-phrase history."""


#: Convenience alias: ``from echovoice.core.constants import C``
C = EchoConstants
