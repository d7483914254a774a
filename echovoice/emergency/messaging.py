"""
echovoice/emergency/messaging.py — SMS delivery for emergency alerts.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Optional, Protocol, runtime_checkable

import httpx

from echovoice.core.config import MessagingConfig
from echovoice.core.logger import get_logger


@dataclass(frozen=True)
class SendResult:
    """Outcome of one message to one destination."""

    destination: str
    success: bool
    message_id: Optional[str] = None
    error: Optional[str] = None


@runtime_checkable
class MessagingChannel(Protocol):
    async def send_message(self, destination: str, body: str) -> SendResult:
        ...


def compose_alert_body(
    message: str,
    user_name: Optional[str] = None,
    location: Optional[str] = None,
    when: Optional[datetime] = None,
) -> str:
    """SMS text naming the user, their message, location and time."""
    when = when or datetime.now()
    return (
        "🚨 EMERGENCY ALERT 🚨\n"
        f"{user_name or 'EchoVoice user'} needs immediate help!\n\n"
        f"Message: {message or 'EMERGENCY ALERT: Help needed immediately!'}\n\n"
        f"Location: {location or 'Location unknown'}\n"
        f"Time: {when:%Y-%m-%d %H:%M:%S}\n\n"
        "This is an automated emergency alert from the EchoVoice app."
    )


class TwilioChannel:
    """
    Twilio Messages API over ``httpx`` with basic auth.

    Every failure is returned as a failed :class:`SendResult`; nothing is
    raised, so one contact's failure never affects another's.
    """

    def __init__(self, config: MessagingConfig, client: Optional[httpx.AsyncClient] = None) -> None:
        self._cfg = config
        self._client = client
        self._log = get_logger()

    async def send_message(self, destination: str, body: str) -> SendResult:
        if not self._cfg.configured:
            return SendResult(destination, False, error="Missing Twilio credentials")

        url = f"{self._cfg.api_base}/Accounts/{self._cfg.account_sid}/Messages.json"
        auth = (self._cfg.account_sid or "", self._cfg.auth_token or "")
        form = {"From": self._cfg.from_number, "To": destination, "Body": body}
        try:
            if self._client is not None:
                response = await self._client.post(url, data=form, auth=auth, timeout=self._cfg.timeout_s)
            else:
                async with httpx.AsyncClient(timeout=self._cfg.timeout_s) as client:
                    response = await client.post(url, data=form, auth=auth)
            if response.status_code >= 400:
                return SendResult(
                    destination, False,
                    error=f"Twilio API error: {response.status_code} - {response.text[:200]}",
                )
            sid = response.json().get("sid")
        except (httpx.HTTPError, ValueError) as exc:
            self._log.error("messaging", "send_failed", {"destination": destination, "error": str(exc)})
            return SendResult(destination, False, error=str(exc))

        self._log.info("messaging", "sent", {"destination": destination, "sid": sid})
        return SendResult(destination, True, message_id=sid)
