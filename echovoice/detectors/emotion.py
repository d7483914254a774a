"""
echovoice/detectors/emotion.py — Periodic facial-emotion classification.

The classifier is a black box returning a probability vector over
:data:`EchoConstants.EMOTION_LABELS`; the reading is the arg-max label.
"""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Optional, Protocol, Sequence, runtime_checkable

import cv2
import numpy as np

from echovoice.core.constants import C, SignalKind
from echovoice.core.errors import ResourceUnavailableError
from echovoice.detectors.base import Detector, Signal
from echovoice.detectors.capture import CaptureSource


@runtime_checkable
class EmotionClassifier(Protocol):
    """Maps a BGR frame to probabilities over the emotion labels."""

    labels: Sequence[str]

    def load(self) -> None:
        ...

    def classify(self, frame: np.ndarray) -> Optional[np.ndarray]:
        """Return a probability vector, or ``None`` if no face was found."""
        ...


class DnnEmotionClassifier:
    """
    ``cv2.dnn`` ONNX emotion model with a 48×48 grayscale input.

    Args:
        model_path: Path to the ONNX file.
        labels: Output order of the model.
    """

    def __init__(self, model_path: str | Path, labels: Sequence[str] = C.EMOTION_LABELS) -> None:
        self.model_path = Path(model_path)
        self.labels = tuple(labels)
        self._net: Optional[cv2.dnn.Net] = None
        self._faces: Optional[cv2.CascadeClassifier] = None

    def load(self) -> None:
        if not self.model_path.exists():
            raise ResourceUnavailableError(f"emotion model not found: {self.model_path}")
        try:
            self._net = cv2.dnn.readNetFromONNX(str(self.model_path))
        except cv2.error as exc:
            raise ResourceUnavailableError(f"emotion model failed to load: {exc}") from exc
        self._faces = cv2.CascadeClassifier(
            cv2.data.haarcascades + "haarcascade_frontalface_default.xml"
        )

    def classify(self, frame: np.ndarray) -> Optional[np.ndarray]:
        if self._net is None or self._faces is None:
            raise ResourceUnavailableError("emotion model not loaded")
        gray = cv2.cvtColor(frame, cv2.COLOR_BGR2GRAY)
        faces = self._faces.detectMultiScale(gray, scaleFactor=1.1, minNeighbors=5)
        if len(faces) == 0:
            return None
        # Largest face only
        x, y, w, h = max(faces, key=lambda f: f[2] * f[3])
        roi = cv2.resize(gray[y:y + h, x:x + w], (48, 48)).astype(np.float32)
        blob = roi.reshape(1, 1, 48, 48)
        self._net.setInput(blob)
        logits = self._net.forward().reshape(-1)[: len(self.labels)]
        return _softmax(logits)


def _softmax(logits: np.ndarray) -> np.ndarray:
    shifted = logits - np.max(logits)
    exp = np.exp(shifted)
    return exp / exp.sum()


class EmotionDetector(Detector):
    """
    Samples the capture source every ``interval_s`` seconds and reports the
    most probable emotion with its probability as confidence.
    """

    def __init__(
        self,
        capture: CaptureSource,
        classifier: EmotionClassifier,
        interval_s: float = C.VISION_SAMPLE_S,
    ) -> None:
        super().__init__(SignalKind.EMOTION, interval_s)
        self._capture = capture
        self._classifier = classifier
        self._acquired = False

    async def _initialize(self) -> None:
        self._capture.acquire()
        self._acquired = True
        try:
            await asyncio.to_thread(self._classifier.load)
        except Exception:
            self._capture.release()
            self._acquired = False
            raise

    async def _release(self) -> None:
        if self._acquired:
            self._capture.release()
            self._acquired = False

    async def _sample(self) -> Optional[Signal]:
        frame = await asyncio.to_thread(self._capture.read)
        if frame is None:
            return None
        probs = await asyncio.to_thread(self._classifier.classify, frame)
        if probs is None:
            return None
        idx = int(np.argmax(probs))
        confidence = float(np.clip(probs[idx], 0.0, 1.0))
        return Signal(SignalKind.EMOTION, self._classifier.labels[idx], confidence)
