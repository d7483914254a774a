"""
echovoice/detectors/capture.py — Shared webcam frame source.

Both vision detectors read from one :class:`CameraCapture`. The device is
opened on the first ``acquire()`` and released after the last ``release()``.
"""

from __future__ import annotations

import threading
from typing import Optional, Protocol, runtime_checkable

import cv2
import numpy as np

from echovoice.core.config import CameraConfig
from echovoice.core.errors import PermissionDeniedError, ResourceUnavailableError
from echovoice.core.logger import get_logger


@runtime_checkable
class CaptureSource(Protocol):
    """A source of BGR frames."""

    def acquire(self) -> None:
        ...

    def release(self) -> None:
        ...

    def read(self) -> Optional[np.ndarray]:
        """Return the latest BGR frame, or ``None`` if none is available."""
        ...


class CameraCapture:
    """
    Reference-counted ``cv2.VideoCapture`` wrapper.

    Args:
        config: :class:`CameraConfig` (device index and resolution).
        consent: Whether the user granted camera access.
    """

    def __init__(self, config: CameraConfig, consent: bool = True) -> None:
        self._cfg = config
        self._consent = consent
        self._cap: Optional[cv2.VideoCapture] = None
        self._refs = 0
        self._lock = threading.Lock()
        self._log = get_logger()

    def acquire(self) -> None:
        """
        Open the device if this is the first user.

        Raises:
            PermissionDeniedError: Camera access was not granted.
            ResourceUnavailableError: The device could not be opened.
        """
        if not self._consent or not self._cfg.enabled:
            raise PermissionDeniedError("camera access not granted")
        with self._lock:
            if self._refs == 0:
                cap = cv2.VideoCapture(self._cfg.index)
                if not cap.isOpened():
                    cap.release()
                    raise ResourceUnavailableError(
                        f"Cannot open camera at index {self._cfg.index}"
                    )
                cap.set(cv2.CAP_PROP_FRAME_WIDTH, self._cfg.width)
                cap.set(cv2.CAP_PROP_FRAME_HEIGHT, self._cfg.height)
                self._cap = cap
                self._log.info("capture", "camera_opened", {"index": self._cfg.index})
            self._refs += 1

    def release(self) -> None:
        with self._lock:
            if self._refs == 0:
                return
            self._refs -= 1
            if self._refs == 0 and self._cap is not None:
                self._cap.release()
                self._cap = None
                self._log.info("capture", "camera_released", {"index": self._cfg.index})

    def read(self) -> Optional[np.ndarray]:
        with self._lock:
            if self._cap is None:
                return None
            ok, frame = self._cap.read()
        return frame if ok else None
