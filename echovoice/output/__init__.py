"""
output — Speech synthesis and history recording.

Both are boundary implementations: the controller and the escalation
dispatcher depend only on the :class:`SpeechOutput` and :class:`HistorySink`
protocols.
"""

from echovoice.output.history import HistorySink, JsonlHistorySink, MemoryHistorySink
from echovoice.output.speech import NORMAL, URGENT, Pyttsx3Speech, SpeechOutput, SpeechParams

__all__ = [
    "HistorySink",
    "JsonlHistorySink",
    "MemoryHistorySink",
    "NORMAL",
    "Pyttsx3Speech",
    "SpeechOutput",
    "SpeechParams",
    "URGENT",
]
