"""
echovoice/detectors/location.py — Clock ticks and on-demand location readings.
"""

from __future__ import annotations

import time
from datetime import datetime
from typing import Callable, Optional

from echovoice.core.constants import C, SignalKind
from echovoice.detectors.base import Detector, Signal
from echovoice.detectors.geocode import PositionProvider, ReverseGeocoder


def time_bucket(hour: int) -> str:
    """morning 5–12, afternoon 12–17, evening 17–21, night otherwise."""
    if 5 <= hour < 12:
        return "morning"
    if 12 <= hour < 17:
        return "afternoon"
    if 17 <= hour < 21:
        return "evening"
    return "night"


def describe_time(moment: datetime) -> str:
    """``"HH:MM, <bucket>"``."""
    return f"{moment:%H:%M}, {time_bucket(moment.hour)}"


class LocationTimeDetector(Detector):
    """
    Clock every ``clock_interval_s`` seconds plus on-demand location.

    The periodic task only produces TIME readings; :meth:`locate` asks the
    position provider and geocoder for a LOCATION reading.
    :meth:`current_signal` returns the location reading.

    Args:
        position_provider: Source of coordinates (permission-gated).
        geocoder: Turns coordinates into a readable label.
        clock_interval_s: Seconds between TIME readings.
        clock: Returns the local wall-clock time.
    """

    def __init__(
        self,
        position_provider: PositionProvider,
        geocoder: ReverseGeocoder,
        clock_interval_s: float = C.CLOCK_TICK_S,
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        super().__init__(SignalKind.LOCATION, clock_interval_s)
        self._provider = position_provider
        self._geocoder = geocoder
        self._clock = clock
        self._time_signal: Optional[Signal] = None
        self.on_time: Optional[Callable[[Optional[Signal]], None]] = None

    async def _initialize(self) -> None:
        # Clock needs no resources; location permission is checked per locate()
        self._tick()

    async def _sample(self) -> Optional[Signal]:
        self._tick()
        # The periodic task never replaces the location reading
        return self._signal

    async def _release(self) -> None:
        # Stopping or failing withdraws the clock reading as well
        had_time, self._time_signal = self._time_signal is not None, None
        if had_time and self.on_time is not None:
            self.on_time(None)

    def _tick(self) -> None:
        self._time_signal = Signal(SignalKind.TIME, describe_time(self._clock()), 1.0, time.time())
        if self.on_time is not None:
            self.on_time(self._time_signal)

    async def locate(self) -> Optional[Signal]:
        """
        Resolve the current position into a LOCATION reading.

        A permission denial moves the detector to ERROR; a geocoder failure
        still yields a reading labelled ``"Location detected"``.
        """
        return await self._collect(self._locate)

    async def _locate(self) -> Signal:
        position = await self._provider.current_position()
        label = await self._geocoder.label_for(position)
        confidence = 1.0
        if position.accuracy_m is not None:
            confidence = max(0.0, min(1.0, 1.0 - position.accuracy_m / 1000.0))
        return Signal(SignalKind.LOCATION, label, confidence)

    def current_time_signal(self) -> Optional[Signal]:
        return self._time_signal

    def readings(self) -> list[Signal]:
        """Both current readings (time first), omitting the absent ones."""
        return [s for s in (self._time_signal, self._signal) if s is not None]
