"""
tests/test_trigger_fsm.py — pytest unit tests for core.fsm.TriggerFSM.

No external dependencies beyond the project source.
"""

from __future__ import annotations

import pytest

from echovoice.core.constants import TriggerState
from echovoice.core.fsm import InvalidTransitionError, TriggerFSM


# ──────────────────────────────────────────────────────────────
# Transition map mirror (must stay in sync with core/fsm.py)
# ──────────────────────────────────────────────────────────────

VALID_TRANSITIONS: dict[TriggerState, list[TriggerState]] = {
    TriggerState.IDLE: [TriggerState.ARMING],
    TriggerState.ARMING: [TriggerState.COUNTING, TriggerState.IDLE, TriggerState.FIRED],
    TriggerState.COUNTING: [TriggerState.ARMING, TriggerState.IDLE, TriggerState.FIRED],
    TriggerState.FIRED: [TriggerState.IDLE],
}

_PATHS: dict[TriggerState, list[TriggerState]] = {
    TriggerState.IDLE: [],
    TriggerState.ARMING: [TriggerState.ARMING],
    TriggerState.COUNTING: [TriggerState.ARMING, TriggerState.COUNTING],
    TriggerState.FIRED: [TriggerState.ARMING, TriggerState.FIRED],
}


def _force_state(fsm: TriggerFSM, target: TriggerState) -> None:
    fsm.reset()
    for step in _PATHS[target]:
        fsm.transition(step, reason="_force_state")


@pytest.fixture()
def fsm() -> TriggerFSM:
    return TriggerFSM()


# ──────────────────────────────────────────────────────────────
# Valid / invalid transitions
# ──────────────────────────────────────────────────────────────

class TestTransitions:
    def test_initial_state_is_idle(self, fsm: TriggerFSM) -> None:
        assert fsm.current_state is TriggerState.IDLE

    def test_every_valid_edge(self, fsm: TriggerFSM) -> None:
        for from_state, targets in VALID_TRANSITIONS.items():
            for to_state in targets:
                _force_state(fsm, from_state)
                fsm.transition(to_state, reason="test_valid")
                assert fsm.current_state is to_state

    def test_every_invalid_edge_raises(self, fsm: TriggerFSM) -> None:
        for from_state, targets in VALID_TRANSITIONS.items():
            for to_state in TriggerState:
                if to_state in targets:
                    continue
                _force_state(fsm, from_state)
                with pytest.raises(InvalidTransitionError) as exc_info:
                    fsm.transition(to_state, reason="bad")
                assert exc_info.value.from_state is from_state
                assert exc_info.value.to_state is to_state
                assert fsm.current_state is from_state

    def test_can_transition(self, fsm: TriggerFSM) -> None:
        assert fsm.can_transition(TriggerState.ARMING) is True
        assert fsm.can_transition(TriggerState.FIRED) is False


# ──────────────────────────────────────────────────────────────
# History and callbacks
# ──────────────────────────────────────────────────────────────

class TestHistoryAndCallbacks:
    def test_history_records_reason(self, fsm: TriggerFSM) -> None:
        fsm.transition(TriggerState.ARMING, reason="press")
        fsm.transition(TriggerState.FIRED, reason="LONG_PRESS")
        history = fsm.get_history()
        assert [(h["from"], h["to"], h["reason"]) for h in history] == [
            ("IDLE", "ARMING", "press"),
            ("ARMING", "FIRED", "LONG_PRESS"),
        ]

    def test_history_capped_at_50(self, fsm: TriggerFSM) -> None:
        for _ in range(40):
            fsm.transition(TriggerState.ARMING)
            fsm.transition(TriggerState.IDLE)
        assert len(fsm.get_history()) == 50

    def test_external_callback_errors_are_contained(self) -> None:
        calls: list[tuple] = []

        def _cb(from_s, to_s, reason) -> None:
            calls.append((from_s, to_s, reason))
            raise RuntimeError("listener bug")

        fsm = TriggerFSM(on_transition=_cb)
        fsm.transition(TriggerState.ARMING, reason="press")
        assert fsm.current_state is TriggerState.ARMING
        assert calls == [(TriggerState.IDLE, TriggerState.ARMING, "press")]

    def test_reset_from_any_state(self, fsm: TriggerFSM) -> None:
        _force_state(fsm, TriggerState.FIRED)
        fsm.reset()
        assert fsm.current_state is TriggerState.IDLE
        assert fsm.get_history()[-1]["reason"] == "RESET"
