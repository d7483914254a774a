"""
echovoice/core/fsm.py — Strict finite state machine for the emergency trigger.

FSM with an explicit validated transition map, per-state enter/exit
callbacks, transition history (last 50), and structured logging. The gesture
and countdown logic in :mod:`echovoice.emergency.trigger` drives it.
"""

from __future__ import annotations

import logging
import time
from typing import Callable

from echovoice.core.constants import TriggerState

logger = logging.getLogger(__name__)


# ──────────────────────────────────────────────────────────────
# Custom exception
# ──────────────────────────────────────────────────────────────

class InvalidTransitionError(RuntimeError):
    """
    Raised when a requested FSM transition is not in the valid transition map.

    Args:
        from_state: Current state at the time of the illegal attempt.
        to_state: Requested (invalid) target state.
        reason: Caller-supplied reason string.
    """

    def __init__(
        self,
        from_state: TriggerState,
        to_state: TriggerState,
        reason: str = "",
    ) -> None:
        self.from_state = from_state
        self.to_state = to_state
        self.reason = reason
        super().__init__(
            f"Invalid transition {from_state.value} → {to_state.value}"
            + (f" (reason: {reason})" if reason else "")
        )


# ──────────────────────────────────────────────────────────────
# Valid transition map: single source of truth
# ──────────────────────────────────────────────────────────────

_VALID_TRANSITIONS: dict[TriggerState, list[TriggerState]] = {
    TriggerState.IDLE: [
        TriggerState.ARMING,
    ],
    TriggerState.ARMING: [
        TriggerState.COUNTING,   # released early → counted as a tap
        TriggerState.IDLE,       # press abandoned with no taps pending
        TriggerState.FIRED,      # held for the full long-press duration
    ],
    TriggerState.COUNTING: [
        TriggerState.ARMING,     # next press of a tap sequence
        TriggerState.IDLE,       # tap window elapsed
        TriggerState.FIRED,      # tap threshold reached
    ],
    TriggerState.FIRED: [
        TriggerState.IDLE,       # confirmed or cancelled
    ],
}

# Maximum number of transition records kept in history
_MAX_HISTORY = 50


# ──────────────────────────────────────────────────────────────
# FSM class
# ──────────────────────────────────────────────────────────────

class TriggerFSM:
    """
    Finite state machine for the emergency trigger surface.

    Enforces the explicit transition map defined in :data:`_VALID_TRANSITIONS`.
    Illegal transitions raise :class:`InvalidTransitionError` immediately.
    Each transition fires per-state ``_on_exit_*`` and ``_on_enter_*``
    callbacks. The last 50 transitions are retained in :meth:`get_history`.

    All mutation happens on the event-loop thread; no lock is needed.

    Args:
        on_transition: Optional callback invoked after every successful
            transition with signature ``(from_state, to_state, reason)``.
    """

    def __init__(
        self,
        on_transition: Callable[[TriggerState, TriggerState, str], None] | None = None,
    ) -> None:
        self._state: TriggerState = TriggerState.IDLE
        self._history: list[dict] = []
        self._external_callback = on_transition
        self._last_transition: dict | None = None

        logger.debug("TriggerFSM initialised in state: %s", TriggerState.IDLE.value)

    # ──────────────────────────────────────────
    # Public API
    # ──────────────────────────────────────────

    @property
    def current_state(self) -> TriggerState:
        """Return the current FSM state."""
        return self._state

    def transition(self, new_state: TriggerState, reason: str = "") -> None:
        """
        Attempt a validated state transition.

        Fires ``_on_exit_<from>`` then ``_on_enter_<to>`` callbacks, records
        the transition in history and notifies the external callback.

        Args:
            new_state: Target state to transition to.
            reason: Human-readable reason for the transition.

        Raises:
            InvalidTransitionError: If the transition is not in the valid map.
        """
        from_state = self._state
        if new_state not in _VALID_TRANSITIONS.get(from_state, []):
            raise InvalidTransitionError(from_state, new_state, reason)

        self._fire_on_exit(from_state)
        self._state = new_state
        self._record(from_state, new_state, reason)

        logger.debug(
            "TriggerFSM: %s → %s%s",
            from_state.value,
            new_state.value,
            f" [{reason}]" if reason else "",
        )

        self._fire_on_enter(new_state)

        if self._external_callback is not None:
            try:
                self._external_callback(from_state, new_state, reason)
            except Exception as exc:  # noqa: BLE001
                logger.warning("TriggerFSM external callback raised: %s", exc)

    def reset(self) -> None:
        """
        Force the FSM back to IDLE unconditionally.

        Bypasses the transition map (does NOT raise InvalidTransitionError).
        """
        from_state = self._state
        self._fire_on_exit(from_state)
        self._state = TriggerState.IDLE
        self._record(from_state, TriggerState.IDLE, "RESET")
        logger.warning("TriggerFSM: RESET from %s → IDLE", from_state.value)
        self._fire_on_enter(TriggerState.IDLE)

    def get_history(self) -> list[dict]:
        """
        Return a copy of the last (up to 50) transition records.

        Each record is a dict with keys ``from``, ``to``, ``reason`` and
        ``timestamp`` (Unix epoch float), oldest first.
        """
        return list(self._history)

    def can_transition(self, target: TriggerState) -> bool:
        """Return True if a transition to ``target`` is currently valid."""
        return target in _VALID_TRANSITIONS.get(self._state, [])

    # ──────────────────────────────────────────
    # on_enter / on_exit callbacks: override in subclass
    # ──────────────────────────────────────────

    def _on_enter_idle(self) -> None:
        logger.debug("TriggerFSM enter: IDLE")

    def _on_enter_arming(self) -> None:
        logger.debug("TriggerFSM enter: ARMING — press held")

    def _on_enter_counting(self) -> None:
        logger.debug("TriggerFSM enter: COUNTING — tap sequence in progress")

    def _on_enter_fired(self) -> None:
        logger.warning("TriggerFSM enter: FIRED — emergency confirmation open")

    def _on_exit_fired(self) -> None:
        logger.info("TriggerFSM exit: FIRED")

    # ──────────────────────────────────────────
    # Internal helpers
    # ──────────────────────────────────────────

    def _record(self, from_state: TriggerState, to_state: TriggerState, reason: str) -> None:
        record = {
            "from": from_state.value,
            "to": to_state.value,
            "reason": reason,
            "timestamp": time.time(),
        }
        self._history.append(record)
        if len(self._history) > _MAX_HISTORY:
            self._history.pop(0)
        self._last_transition = record

    def _fire_on_enter(self, state: TriggerState) -> None:
        """Dispatch to ``_on_enter_<state>`` by name, if defined."""
        method_name = f"_on_enter_{state.value.lower()}"
        method = getattr(self, method_name, None)
        if callable(method):
            try:
                method()
            except Exception as exc:  # noqa: BLE001
                logger.warning("on_enter callback %r raised: %s", method_name, exc)

    def _fire_on_exit(self, state: TriggerState) -> None:
        """Dispatch to ``_on_exit_<state>`` by name, if defined."""
        method_name = f"_on_exit_{state.value.lower()}"
        method = getattr(self, method_name, None)
        if callable(method):
            try:
                method()
            except Exception as exc:  # noqa: BLE001
                logger.warning("on_exit callback %r raised: %s", method_name, exc)

    def __repr__(self) -> str:
        if self._last_transition:
            last = f"{self._last_transition['from']}→{self._last_transition['to']}"
            if self._last_transition["reason"]:
                last += f"[{self._last_transition['reason']}]"
        else:
            last = "none"
        return f"TriggerFSM(state={self._state.value}, last={last})"
