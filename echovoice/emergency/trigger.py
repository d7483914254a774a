"""
echovoice/emergency/trigger.py — Long-press / rapid-tap emergency trigger.

Gesture recognition and the confirmation countdown, driven entirely by
scheduler callbacks:

- hold for ``long_press_ms`` → FIRED (LONG_PRESS)
- ``rapid_tap_count`` taps, each released within ``tap_window_ms`` of the
  previous one → FIRED (RAPID_TAP)
- FIRED opens a countdown of ``countdown_s`` one-second ticks; reaching zero
  or :meth:`EmergencyTrigger.confirm` hands the event to ``on_confirmed``
  exactly once, :meth:`EmergencyTrigger.cancel` discards it.

Gestures are ignored while FIRED. Entering IDLE or FIRED cancels every
pending timer.
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional

from echovoice.context.aggregator import Context
from echovoice.core.config import EmergencyConfig
from echovoice.core.constants import TriggerKind, TriggerState
from echovoice.core.fsm import TriggerFSM
from echovoice.core.logger import get_logger
from echovoice.core.scheduler import Scheduler, TimerHandle


@dataclass(frozen=True)
class EmergencyEvent:
    """A fired trigger awaiting (or having received) confirmation."""

    trigger_kind: TriggerKind
    armed_at: float
    countdown_seconds: int
    context_snapshot: Context
    message: str

    def to_record(self) -> dict:
        return {
            "type": "emergency",
            "trigger_kind": self.trigger_kind.value,
            "armed_at": self.armed_at,
            "countdown_seconds": self.countdown_seconds,
            "message": self.message,
            "context": self.context_snapshot.to_dict(),
        }


class TimerKind(Enum):
    PRESS = "PRESS"
    TAP_RESET = "TAP_RESET"
    COUNTDOWN = "COUNTDOWN"


class TimerSet:
    """At most one live timer per :class:`TimerKind`."""

    def __init__(self, scheduler: Scheduler) -> None:
        self._scheduler = scheduler
        self._handles: dict[TimerKind, TimerHandle] = {}

    def start(self, kind: TimerKind, delay_s: float, callback: Callable[[], None]) -> None:
        """Start *kind*, cancelling the previous timer of the same kind."""
        self.cancel(kind)

        def fire() -> None:
            if self._handles.get(kind) is handle:
                del self._handles[kind]
                callback()

        handle = self._scheduler.call_later(delay_s, fire)
        self._handles[kind] = handle

    def cancel(self, kind: TimerKind) -> None:
        handle = self._handles.pop(kind, None)
        if handle is not None:
            handle.cancel()

    def cancel_all(self) -> None:
        for kind in list(self._handles):
            self.cancel(kind)

    def active(self, kind: TimerKind) -> bool:
        return kind in self._handles


class EmergencyTrigger:
    """
    Args:
        scheduler: Timer source (loop-backed or manual).
        config: Gesture timings, countdown length and message.
        on_confirmed: Receives the confirmed :class:`EmergencyEvent`.
        context_provider: Returns the current :class:`Context` to snapshot
            when the trigger fires.
        on_armed: Called with the pending event when the trigger fires.
        on_countdown: Called with the seconds remaining on every tick
            (first call with the full countdown).
        on_cancelled: Called when a pending event is discarded.
    """

    def __init__(
        self,
        scheduler: Scheduler,
        config: EmergencyConfig,
        on_confirmed: Callable[[EmergencyEvent], None],
        context_provider: Callable[[], Context] = Context,
        on_armed: Optional[Callable[[EmergencyEvent], None]] = None,
        on_countdown: Optional[Callable[[int], None]] = None,
        on_cancelled: Optional[Callable[[], None]] = None,
    ) -> None:
        self._scheduler = scheduler
        self._cfg = config
        self._on_confirmed = on_confirmed
        self._context_provider = context_provider
        self.on_armed = on_armed
        self.on_countdown = on_countdown
        self.on_cancelled = on_cancelled

        self._timers = TimerSet(scheduler)
        self._fsm = TriggerFSM(on_transition=self._on_transition)
        self._tap_count = 0
        self._press_at: Optional[float] = None
        self._pending: Optional[EmergencyEvent] = None
        self._remaining = 0
        self._log = get_logger()

    # ──────────────────────────────────────────
    # Read side
    # ──────────────────────────────────────────

    @property
    def state(self) -> TriggerState:
        return self._fsm.current_state

    @property
    def tap_count(self) -> int:
        return self._tap_count

    @property
    def pending_event(self) -> Optional[EmergencyEvent]:
        return self._pending

    @property
    def seconds_remaining(self) -> int:
        return self._remaining if self._pending is not None else 0

    @property
    def history(self) -> list[dict]:
        return self._fsm.get_history()

    # ──────────────────────────────────────────
    # Gestures
    # ──────────────────────────────────────────

    def press(self) -> None:
        """Pointer down: start the long-press timer."""
        if self.state in (TriggerState.FIRED, TriggerState.ARMING):
            return
        self._press_at = self._scheduler.now()
        self._fsm.transition(TriggerState.ARMING, "press")
        self._timers.start(TimerKind.PRESS, self._cfg.long_press_ms / 1000.0, self._on_long_press)

    def release(self) -> None:
        """Pointer up: a press shorter than the long-press duration is a tap."""
        if self.state is not TriggerState.ARMING:
            return
        self._timers.cancel(TimerKind.PRESS)
        held_ms = (self._scheduler.now() - (self._press_at or 0.0)) * 1000.0
        self._press_at = None
        self._tap_count += 1
        self._log.debug("emergency", "tap", {"count": self._tap_count, "held_ms": round(held_ms, 1)})

        if self._tap_count >= self._cfg.rapid_tap_count:
            self._tap_count = 0
            self._fire(TriggerKind.RAPID_TAP)
            return
        self._timers.start(TimerKind.TAP_RESET, self._cfg.tap_window_ms / 1000.0, self._on_tap_window)
        self._fsm.transition(TriggerState.COUNTING, "tap")

    def cancel_press(self) -> None:
        """Pointer left the surface: abandon the press without counting a tap."""
        if self.state is not TriggerState.ARMING:
            return
        self._timers.cancel(TimerKind.PRESS)
        self._press_at = None
        if self._tap_count > 0:
            self._fsm.transition(TriggerState.COUNTING, "press_cancelled")
        else:
            self._fsm.transition(TriggerState.IDLE, "press_cancelled")

    # ──────────────────────────────────────────
    # Confirmation
    # ──────────────────────────────────────────

    def confirm(self) -> Optional[EmergencyEvent]:
        """Confirm the pending event now. Returns it, or ``None`` if none is pending."""
        event = self._pending
        if event is None or self.state is not TriggerState.FIRED:
            return None
        self._pending = None
        self._remaining = 0
        self._fsm.transition(TriggerState.IDLE, "confirmed")
        self._log.critical("emergency", "confirmed", {"trigger_kind": event.trigger_kind.value})
        self._on_confirmed(event)
        return event

    def cancel(self) -> bool:
        """Discard the pending event. Returns True if one was pending."""
        if self._pending is None or self.state is not TriggerState.FIRED:
            return False
        kind = self._pending.trigger_kind
        self._pending = None
        self._remaining = 0
        self._fsm.transition(TriggerState.IDLE, "cancelled")
        self._log.info("emergency", "cancelled", {"trigger_kind": kind.value})
        if self.on_cancelled is not None:
            self.on_cancelled()
        return True

    # ──────────────────────────────────────────
    # Timer callbacks
    # ──────────────────────────────────────────

    def _on_long_press(self) -> None:
        if self.state is not TriggerState.ARMING:
            return
        self._press_at = None
        self._tap_count = 0
        self._fire(TriggerKind.LONG_PRESS)

    def _on_tap_window(self) -> None:
        self._tap_count = 0
        if self.state is TriggerState.COUNTING:
            self._fsm.transition(TriggerState.IDLE, "tap_window_elapsed")

    def _on_tick(self) -> None:
        if self._pending is None:
            return
        self._remaining -= 1
        self._notify_countdown()
        if self._remaining <= 0:
            self.confirm()
        else:
            self._timers.start(TimerKind.COUNTDOWN, 1.0, self._on_tick)

    # ──────────────────────────────────────────
    # Internal helpers
    # ──────────────────────────────────────────

    def _fire(self, kind: TriggerKind) -> None:
        self._fsm.transition(TriggerState.FIRED, kind.value)
        self._pending = EmergencyEvent(
            trigger_kind=kind,
            armed_at=time.time(),
            countdown_seconds=self._cfg.countdown_s,
            context_snapshot=self._context_provider(),
            message=self._cfg.message,
        )
        self._remaining = self._cfg.countdown_s
        self._log.warn("emergency", "fired", {"trigger_kind": kind.value, "countdown_s": self._remaining})
        if self.on_armed is not None:
            self.on_armed(self._pending)
        self._notify_countdown()
        if self._remaining <= 0:
            self.confirm()
        else:
            self._timers.start(TimerKind.COUNTDOWN, 1.0, self._on_tick)

    def _notify_countdown(self) -> None:
        if self.on_countdown is not None:
            self.on_countdown(self._remaining)

    def _on_transition(self, from_state: TriggerState, to_state: TriggerState, reason: str) -> None:
        if to_state in (TriggerState.IDLE, TriggerState.FIRED):
            self._timers.cancel_all()
