"""
echovoice/core/errors.py — Exception taxonomy for EchoVoice.

Detector errors are converted to an error state at the detector boundary,
backend errors are recovered by the suggestion fallback, and only a total
escalation failure reaches the caller as an exception.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from echovoice.emergency.dispatcher import DispatchReport


class EchoVoiceError(RuntimeError):
    """Base class for all EchoVoice runtime errors."""


class PermissionDeniedError(EchoVoiceError):
    """
    The user declined camera or location access.

    Terminal for the detector until access is re-granted and the caller
    restarts it.
    """


class ResourceUnavailableError(EchoVoiceError):
    """A model, camera or other device failed to initialise."""


class TransientBackendError(EchoVoiceError):
    """
    The generative backend timed out, errored, or returned unparseable content.

    Always recovered locally by the rule-based fallback.
    """


class SpeechUnavailableError(EchoVoiceError):
    """No speech engine could be initialised."""


class EscalationFailedError(EchoVoiceError):
    """
    Speech and history both failed and no contact was notified.

    Args:
        report: The full :class:`~echovoice.emergency.dispatcher.DispatchReport`.
    """

    def __init__(self, report: "DispatchReport") -> None:
        self.report = report
        super().__init__(
            "Emergency escalation failed: speech, history and all "
            f"{report.total_count} notification(s) failed"
        )


class ConfigError(ValueError):
    """A configuration value is missing, mistyped, or out of range."""
