"""
echovoice/output/speech.py — Offline text-to-speech using pyttsx3.

Speech runs on a daemon worker thread so callers on the event loop never
block. A new request interrupts whatever is currently being spoken and the
latest phrase wins, except that an urgent message is never replaced or cut
short by a normal one.
"""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass
from typing import Optional, Protocol, runtime_checkable

import pyttsx3  # type: ignore[import]

from echovoice.core.config import TTSConfig
from echovoice.core.constants import C
from echovoice.core.errors import SpeechUnavailableError
from echovoice.core.logger import get_logger


@dataclass(frozen=True)
class SpeechParams:
    """
    Per-utterance adjustments.

    ``rate`` and ``pitch`` multiply the user's configured values; ``volume``
    is absolute in ``[0, 1]`` and ``None`` keeps the configured volume.
    """

    rate: float = 1.0
    pitch: float = 1.0
    volume: Optional[float] = None


NORMAL = SpeechParams()
URGENT = SpeechParams(rate=C.URGENT_RATE, pitch=C.URGENT_PITCH, volume=C.URGENT_VOLUME)


def _is_urgent(params: SpeechParams) -> bool:
    return params == URGENT


@runtime_checkable
class SpeechOutput(Protocol):
    def speak(self, text: str, params: SpeechParams = NORMAL) -> None:
        """
        Raises:
            SpeechUnavailableError: No speech engine is available.
        """
        ...


class Pyttsx3Speech:
    """
    pyttsx3 engine owned by a single worker thread.

    Args:
        config: Base rate, volume and voice.
    """

    def __init__(self, config: TTSConfig) -> None:
        self._cfg = config
        self._lock = threading.Lock()
        self._pending: Optional[tuple[str, SpeechParams]] = None
        self._speaking = False
        self._current: Optional[SpeechParams] = None
        self._shutdown_flag = False
        self._engine: Optional[pyttsx3.Engine] = None
        self._worker: Optional[threading.Thread] = None
        self._log = get_logger()

        self._init_engine()
        if self._engine is not None:
            self._worker = threading.Thread(target=self._worker_loop, name="tts-worker", daemon=True)
            self._worker.start()

    @property
    def available(self) -> bool:
        return self._engine is not None

    @property
    def is_speaking(self) -> bool:
        with self._lock:
            return self._speaking

    def speak(self, text: str, params: SpeechParams = NORMAL) -> None:
        """
        Queue *text*, interrupting any utterance in progress.

        A normal request made while an urgent one is queued or playing is
        dropped.
        """
        if self._engine is None:
            raise SpeechUnavailableError("speech engine unavailable")
        text = text.strip()
        if not text:
            return
        with self._lock:
            if not _is_urgent(params) and (
                (self._pending is not None and _is_urgent(self._pending[1]))
                or (self._current is not None and _is_urgent(self._current))
            ):
                self._log.warn("speech", "dropped_behind_urgent", {"text": text[:80]})
                return
            self._pending = (text, params)
            if self._speaking:
                try:
                    self._engine.stop()
                except RuntimeError as exc:
                    self._log.warn("speech", "interrupt_failed", {"error": str(exc)})
        self._log.info("speech", "queued", {"text": text[:80], "rate": params.rate})

    def shutdown(self) -> None:
        """Stop the worker thread (waits at most 3s)."""
        self._shutdown_flag = True
        if self._worker is not None:
            self._worker.join(timeout=3.0)
        self._log.info("speech", "shutdown", {})

    # ──────────────────────────────────────────
    # Internal
    # ──────────────────────────────────────────

    def _init_engine(self) -> None:
        try:
            self._engine = pyttsx3.init()
            if self._cfg.voice_id:
                self._engine.setProperty("voice", self._cfg.voice_id)
            self._log.info("speech", "engine_ready", {"rate": self._cfg.rate, "volume": self._cfg.volume})
        except Exception as exc:  # noqa: BLE001
            self._log.error("speech", "engine_init_failed", {"error": str(exc)})
            self._engine = None

    def _apply(self, params: SpeechParams) -> None:
        assert self._engine is not None
        self._engine.setProperty("rate", int(self._cfg.rate * params.rate))
        volume = self._cfg.volume if params.volume is None else params.volume
        self._engine.setProperty("volume", max(0.0, min(1.0, volume)))
        # pyttsx3 exposes no portable pitch property; params.pitch is advisory

    def _worker_loop(self) -> None:
        while not self._shutdown_flag:
            item: Optional[tuple[str, SpeechParams]] = None
            with self._lock:
                if self._pending is not None:
                    item, self._pending = self._pending, None
                    self._speaking = True
                    self._current = item[1]

            if item is None:
                time.sleep(0.05)
                continue

            text, params = item
            try:
                self._apply(params)
                self._engine.say(text)  # type: ignore[union-attr]
                self._engine.runAndWait()  # type: ignore[union-attr]
            except Exception as exc:  # noqa: BLE001
                self._log.error("speech", "speak_error", {"error": str(exc)})
            finally:
                with self._lock:
                    self._speaking = False
                    self._current = None
