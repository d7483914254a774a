"""
echovoice/detectors/presence.py — Known-person recognition against a gallery.

Face descriptors are compared with every gallery entry by Euclidean distance;
confidence is ``1 - distance``. Only a best match strictly above the minimum
confidence becomes a reading, anything else clears it.
"""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Mapping, Optional, Protocol, runtime_checkable

import cv2
import numpy as np

from echovoice.core.constants import C, SignalKind
from echovoice.core.errors import ResourceUnavailableError
from echovoice.detectors.base import Detector, Signal
from echovoice.detectors.capture import CaptureSource


@runtime_checkable
class FaceEncoder(Protocol):
    """Maps a BGR frame to one descriptor per detected face."""

    def load(self) -> None:
        ...

    def encode(self, frame: np.ndarray) -> list[np.ndarray]:
        ...


class DnnFaceEncoder:
    """
    Haar-cascade face detection plus a ``cv2.dnn`` Torch embedding network
    (OpenFace nn4 layout, 96×96 RGB input, 128-d L2-normalised output).
    """

    def __init__(self, model_path: str | Path) -> None:
        self.model_path = Path(model_path)
        self._net: Optional[cv2.dnn.Net] = None
        self._faces: Optional[cv2.CascadeClassifier] = None

    def load(self) -> None:
        if not self.model_path.exists():
            raise ResourceUnavailableError(f"face embedding model not found: {self.model_path}")
        try:
            self._net = cv2.dnn.readNetFromTorch(str(self.model_path))
        except cv2.error as exc:
            raise ResourceUnavailableError(f"face embedding model failed to load: {exc}") from exc
        self._faces = cv2.CascadeClassifier(
            cv2.data.haarcascades + "haarcascade_frontalface_default.xml"
        )

    def encode(self, frame: np.ndarray) -> list[np.ndarray]:
        if self._net is None or self._faces is None:
            raise ResourceUnavailableError("face embedding model not loaded")
        gray = cv2.cvtColor(frame, cv2.COLOR_BGR2GRAY)
        descriptors: list[np.ndarray] = []
        for (x, y, w, h) in self._faces.detectMultiScale(gray, scaleFactor=1.1, minNeighbors=5):
            face = frame[y:y + h, x:x + w]
            blob = cv2.dnn.blobFromImage(face, 1.0 / 255, (96, 96), (0, 0, 0), swapRB=True, crop=False)
            self._net.setInput(blob)
            descriptors.append(self._net.forward().reshape(-1))
        return descriptors


def load_gallery(path: str | Path) -> dict[str, np.ndarray]:
    """
    Load ``{name: descriptor}`` from a ``.npz`` archive (one array per name).

    Raises:
        ResourceUnavailableError: If the file is missing or unreadable.
    """
    path = Path(path)
    if not path.exists():
        raise ResourceUnavailableError(f"face gallery not found: {path}")
    try:
        with np.load(path) as archive:
            return {name: np.asarray(archive[name], dtype=np.float32) for name in archive.files}
    except (OSError, ValueError) as exc:
        raise ResourceUnavailableError(f"face gallery unreadable: {exc}") from exc


def best_match(
    descriptors: list[np.ndarray],
    gallery: Mapping[str, np.ndarray],
    min_confidence: float = C.PRESENCE_MIN_CONFIDENCE,
) -> Optional[tuple[str, float]]:
    """
    Return ``(name, confidence)`` of the closest gallery entry across all
    descriptors, or ``None`` when nothing scores strictly above
    ``min_confidence``.
    """
    best: Optional[tuple[str, float]] = None
    for descriptor in descriptors:
        for name, known in gallery.items():
            distance = float(np.linalg.norm(np.asarray(descriptor) - known))
            confidence = 1.0 - distance
            if best is None or confidence > best[1]:
                best = (name, confidence)
    if best is None or best[1] <= min_confidence:
        return None
    return best[0], min(1.0, best[1])


class PresenceDetector(Detector):
    """Periodically reports which known person, if any, is in view."""

    def __init__(
        self,
        capture: CaptureSource,
        encoder: FaceEncoder,
        gallery: Mapping[str, np.ndarray],
        interval_s: float = C.VISION_SAMPLE_S,
        min_confidence: float = C.PRESENCE_MIN_CONFIDENCE,
    ) -> None:
        super().__init__(SignalKind.PRESENCE, interval_s)
        self._capture = capture
        self._encoder = encoder
        self._gallery = dict(gallery)
        self._min_confidence = min_confidence
        self._acquired = False

    async def _initialize(self) -> None:
        if not self._gallery:
            raise ResourceUnavailableError("face gallery is empty")
        self._capture.acquire()
        self._acquired = True
        try:
            await asyncio.to_thread(self._encoder.load)
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
        descriptors = await asyncio.to_thread(self._encoder.encode, frame)
        match = best_match(descriptors, self._gallery, self._min_confidence)
        if match is None:
            return None
        name, confidence = match
        return Signal(SignalKind.PRESENCE, name, confidence)
