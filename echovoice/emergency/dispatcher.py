"""
echovoice/emergency/dispatcher.py — Escalation of a confirmed emergency.

Order matters: speak first (no network involved), then record, then notify
every contact concurrently. Notification failures never block speech or the
history record.
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Iterable, Optional

from echovoice.core.errors import EscalationFailedError
from echovoice.core.logger import get_logger
from echovoice.emergency.messaging import MessagingChannel, SendResult, compose_alert_body
from echovoice.emergency.trigger import EmergencyEvent
from echovoice.output.history import HistorySink
from echovoice.output.speech import URGENT, SpeechOutput


@dataclass(frozen=True)
class Contact:
    name: str
    phone: str

    @classmethod
    def coerce(cls, value: Any) -> "Contact":
        """Accept a :class:`Contact`, a mapping, or any object with name/phone."""
        if isinstance(value, Contact):
            return value
        if isinstance(value, dict):
            return cls(name=str(value.get("name", "")), phone=str(value["phone"]))
        return cls(name=str(getattr(value, "name", "")), phone=str(value.phone))


class DispatchOutcome(Enum):
    SUCCESS = "SUCCESS"     # speech, history and every notification succeeded
    DEGRADED = "DEGRADED"   # at least one part succeeded and at least one failed
    FAILED = "FAILED"       # speech and history failed and no notification succeeded


class Delivery(Enum):
    """How many contact notifications went out."""

    ALL = "ALL"
    PARTIAL = "PARTIAL"
    NONE = "NONE"


@dataclass
class DispatchReport:
    outcome: DispatchOutcome
    speech_ok: bool
    history_ok: bool
    results: list[SendResult] = field(default_factory=list)

    @property
    def success_count(self) -> int:
        return sum(1 for r in self.results if r.success)

    @property
    def total_count(self) -> int:
        return len(self.results)

    @property
    def delivery(self) -> Delivery:
        sent = self.success_count
        if self.total_count and sent == self.total_count:
            return Delivery.ALL
        return Delivery.PARTIAL if sent else Delivery.NONE

    def to_dict(self) -> dict:
        return {
            "outcome": self.outcome.value,
            "delivery": self.delivery.value,
            "speech_ok": self.speech_ok,
            "history_ok": self.history_ok,
            "success_count": self.success_count,
            "total_count": self.total_count,
            "results": [
                {"destination": r.destination, "success": r.success, "error": r.error}
                for r in self.results
            ],
        }


class EscalationDispatcher:
    """
    Args:
        speech: Speaks the emergency message at urgent parameters.
        history: Receives the event record.
        channel: Delivers SMS alerts.
        fallback_destination: Used when the contact list is empty.
        user_name: Name placed in the alert text.
    """

    def __init__(
        self,
        speech: SpeechOutput,
        history: HistorySink,
        channel: MessagingChannel,
        fallback_destination: Optional[str] = None,
        user_name: Optional[str] = None,
    ) -> None:
        self._speech = speech
        self._history = history
        self._channel = channel
        self._fallback = fallback_destination
        self._user_name = user_name
        self._log = get_logger()

    async def dispatch(self, event: EmergencyEvent, contacts: Iterable[Any]) -> DispatchReport:
        """
        Escalate *event* to *contacts*.

        Returns:
            The :class:`DispatchReport` for SUCCESS and DEGRADED outcomes.

        Raises:
            EscalationFailedError: Nothing at all succeeded.
        """
        t0 = time.monotonic()
        speech_ok = self._speak(event)
        history_ok = self._record(event)
        results = await self._notify(event, [Contact.coerce(c) for c in contacts])

        report = DispatchReport(
            outcome=DispatchOutcome.SUCCESS,
            speech_ok=speech_ok,
            history_ok=history_ok,
            results=results,
        )
        if not speech_ok and not history_ok and report.success_count == 0:
            report.outcome = DispatchOutcome.FAILED
        elif not (speech_ok and history_ok and report.success_count == report.total_count):
            report.outcome = DispatchOutcome.DEGRADED

        self._log.perf("emergency", "dispatched", (time.monotonic() - t0) * 1000.0, report.to_dict())
        if report.outcome is DispatchOutcome.FAILED:
            self._log.critical("emergency", "escalation_failed", report.to_dict())
            raise EscalationFailedError(report)
        if report.delivery is Delivery.NONE:
            self._log.error("emergency", "no_contact_reached", report.to_dict())
        return report

    # ──────────────────────────────────────────
    # Steps
    # ──────────────────────────────────────────

    def _speak(self, event: EmergencyEvent) -> bool:
        try:
            self._speech.speak(event.message, URGENT)
        except Exception as exc:  # noqa: BLE001
            self._log.error("emergency", "speech_failed", {"error": str(exc)})
            return False
        return True

    def _record(self, event: EmergencyEvent) -> bool:
        try:
            self._history.append(event.to_record())
        except Exception as exc:  # noqa: BLE001
            self._log.error("emergency", "history_failed", {"error": str(exc)})
            return False
        return True

    async def _notify(self, event: EmergencyEvent, contacts: list[Contact]) -> list[SendResult]:
        body = compose_alert_body(
            event.message,
            user_name=self._user_name,
            location=event.context_snapshot.location_label,
        )
        if not contacts:
            if not self._fallback:
                return [SendResult("fallback", False, error="no fallback destination configured")]
            contacts = [Contact("Emergency fallback", self._fallback)]

        outcomes = await asyncio.gather(
            *(self._channel.send_message(c.phone, body) for c in contacts),
            return_exceptions=True,
        )
        results: list[SendResult] = []
        for contact, outcome in zip(contacts, outcomes):
            if isinstance(outcome, SendResult):
                results.append(outcome)
            elif isinstance(outcome, asyncio.CancelledError):
                raise outcome
            else:
                results.append(SendResult(contact.phone, False, error=str(outcome)))
        return results
