"""
detectors — Situational signal detectors.

Emotion and presence sample a shared camera; location/time ticks a clock and
resolves the position on demand. All share the :class:`Detector` lifecycle.
"""

from echovoice.detectors.base import Detector, DetectorError, DetectorErrorKind, Signal
from echovoice.detectors.emotion import EmotionDetector
from echovoice.detectors.location import LocationTimeDetector
from echovoice.detectors.presence import PresenceDetector

__all__ = [
    "Detector",
    "DetectorError",
    "DetectorErrorKind",
    "EmotionDetector",
    "LocationTimeDetector",
    "PresenceDetector",
    "Signal",
]
