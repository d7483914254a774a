"""
echovoice/detectors/base.py — Signal type and the detector lifecycle.

Every detector follows ``IDLE → INITIALIZING → READY → SAMPLING → STOPPED``
with ``ERROR`` reachable from initialisation or sampling. Errors never escape
the detector boundary: :meth:`Detector.start` and :meth:`Detector.stop` do not
raise, and failures are exposed through :attr:`Detector.state` and
:attr:`Detector.error`.
"""

from __future__ import annotations

import asyncio
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Optional

from echovoice.core.constants import DetectorState, SignalKind
from echovoice.core.errors import PermissionDeniedError, ResourceUnavailableError
from echovoice.core.logger import get_logger


@dataclass(frozen=True)
class Signal:
    """
    One reading from a detector.

    Args:
        kind: Which detector produced it.
        value: Label (emotion name, person name, location label, time text).
        confidence: Detector confidence in ``[0, 1]``.
        observed_at: Unix epoch seconds.

    Raises:
        ValueError: If ``confidence`` is outside ``[0, 1]``.
    """

    kind: SignalKind
    value: Any
    confidence: float = 1.0
    observed_at: float = field(default_factory=time.time)

    def __post_init__(self) -> None:
        if not (0.0 <= self.confidence <= 1.0):
            raise ValueError(f"Signal confidence must be in [0, 1], got {self.confidence}")


class DetectorErrorKind(Enum):
    PERMISSION_DENIED = "PERMISSION_DENIED"
    RESOURCE_UNAVAILABLE = "RESOURCE_UNAVAILABLE"


@dataclass(frozen=True)
class DetectorError:
    """Why a detector is in the ERROR state."""

    kind: DetectorErrorKind
    message: str


SignalListener = Callable[["Detector", Optional[Signal]], None]
StateListener = Callable[["Detector"], None]


class Detector(ABC):
    """
    Abstract base for periodic and on-demand detectors.

    Subclasses implement :meth:`_initialize` (acquire devices/models) and
    :meth:`_sample` (produce one reading or ``None``); optionally
    :meth:`_release`. A detector with ``interval_s=None`` has no sampling task
    and is driven on demand through :meth:`sample_once`.

    Args:
        kind: The :class:`SignalKind` this detector reports.
        interval_s: Seconds between samples, or ``None`` for on-demand only.
    """

    def __init__(self, kind: SignalKind, interval_s: Optional[float]) -> None:
        self.kind = kind
        self.interval_s = interval_s
        self.state: DetectorState = DetectorState.IDLE
        self.error: Optional[DetectorError] = None
        self.on_signal: Optional[SignalListener] = None
        self.on_state: Optional[StateListener] = None
        self._signal: Optional[Signal] = None
        self._task: Optional[asyncio.Task] = None
        self._log = get_logger()

    # ──────────────────────────────────────────
    # Capability set
    # ──────────────────────────────────────────

    @property
    def name(self) -> str:
        return type(self).__name__

    @property
    def is_ready(self) -> bool:
        return self.state in (DetectorState.READY, DetectorState.SAMPLING)

    def current_signal(self) -> Optional[Signal]:
        return self._signal

    async def start(self) -> None:
        """Initialise resources and begin sampling. Never raises."""
        if self.is_ready:
            return
        # A sampler left over from a failed run must not resume alongside the new one
        await self._cancel_task()
        self.error = None
        self._set_state(DetectorState.INITIALIZING)
        try:
            await self._initialize()
        except (PermissionDeniedError, ResourceUnavailableError) as exc:
            self._fail(exc)
            return
        except Exception as exc:  # noqa: BLE001
            self._fail(ResourceUnavailableError(str(exc)))
            return
        self._set_state(DetectorState.READY)
        self._log.info("detector", "ready", {"detector": self.name})

        if self.interval_s is not None:
            self._set_state(DetectorState.SAMPLING)
            self._task = asyncio.create_task(self._run(), name=f"{self.name}-sampler")

    async def stop(self) -> None:
        """Cancel sampling, release resources and clear the reading. Never raises."""
        await self._cancel_task()
        await self._release_quietly()
        self._update_signal(None)
        if self.state is not DetectorState.ERROR:
            self._set_state(DetectorState.STOPPED)
        self._log.info("detector", "stopped", {"detector": self.name})

    async def sample_once(self) -> Optional[Signal]:
        """
        Take one reading immediately and publish it.

        Transient failures are logged and leave the previous reading in
        place; permission and resource failures move the detector to ERROR.
        """
        return await self._collect(self._sample)

    async def _collect(self, producer: Callable[[], Awaitable[Optional[Signal]]]) -> Optional[Signal]:
        if not self.is_ready:
            return None
        try:
            signal = await producer()
        except (PermissionDeniedError, ResourceUnavailableError) as exc:
            self._fail(exc)
            await self._release_quietly()
            return None
        except Exception as exc:  # noqa: BLE001
            self._log.warn("detector", "sample_skipped", {"detector": self.name, "error": str(exc)})
            return self._signal
        self._update_signal(signal)
        return signal

    # ──────────────────────────────────────────
    # Subclass hooks
    # ──────────────────────────────────────────

    @abstractmethod
    async def _initialize(self) -> None:
        """Acquire devices and models; raise the taxonomy errors on failure."""

    @abstractmethod
    async def _sample(self) -> Optional[Signal]:
        """Produce one reading, or ``None`` when there is nothing to report."""

    async def _release(self) -> None:
        return None

    # ──────────────────────────────────────────
    # Internal helpers
    # ──────────────────────────────────────────

    async def _run(self) -> None:
        assert self.interval_s is not None
        while self.state is DetectorState.SAMPLING:
            await self.sample_once()
            if self.state is not DetectorState.SAMPLING:
                break
            await asyncio.sleep(self.interval_s)

    async def _cancel_task(self) -> None:
        task, self._task = self._task, None
        if task is None or task.done() or task is asyncio.current_task():
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    async def _release_quietly(self) -> None:
        try:
            await self._release()
        except Exception as exc:  # noqa: BLE001
            self._log.warn("detector", "release_failed", {"detector": self.name, "error": str(exc)})

    def _fail(self, exc: Exception) -> None:
        kind = (
            DetectorErrorKind.PERMISSION_DENIED
            if isinstance(exc, PermissionDeniedError)
            else DetectorErrorKind.RESOURCE_UNAVAILABLE
        )
        self.error = DetectorError(kind=kind, message=str(exc))
        self._update_signal(None)
        self._set_state(DetectorState.ERROR)
        self._log.error(
            "detector", "error",
            {"detector": self.name, "kind": kind.value, "message": str(exc)},
        )

    def _set_state(self, state: DetectorState) -> None:
        if state is self.state:
            return
        self.state = state
        if self.on_state is not None:
            self.on_state(self)

    def _update_signal(self, signal: Optional[Signal]) -> None:
        previous, self._signal = self._signal, signal
        if signal is None and previous is None:
            return
        if self.on_signal is not None:
            self.on_signal(self, signal)
