"""
emergency — Panic trigger and escalation.

The trigger recognises a long press or rapid taps and runs the confirmation
countdown; the dispatcher speaks, records and notifies once confirmed.
"""

from echovoice.emergency.dispatcher import (
    Contact,
    Delivery,
    DispatchOutcome,
    DispatchReport,
    EscalationDispatcher,
)
from echovoice.emergency.messaging import SendResult, TwilioChannel, compose_alert_body
from echovoice.emergency.trigger import EmergencyEvent, EmergencyTrigger, TimerSet

__all__ = [
    "Contact",
    "Delivery",
    "DispatchOutcome",
    "DispatchReport",
    "EmergencyEvent",
    "EmergencyTrigger",
    "EscalationDispatcher",
    "SendResult",
    "TimerSet",
    "TwilioChannel",
    "compose_alert_body",
]
