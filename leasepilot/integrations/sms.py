# =============================================================================
# SMS Integration (Twilio)
# =============================================================================
#
# Setup:
#   1. Create a Twilio account and buy (or verify) a phone number
#   2. Set env vars:
#      - TWILIO_ACCOUNT_SID=AC...
#      - TWILIO_AUTH_TOKEN=...
#      - TWILIO_PHONE_NUMBER=+15551234567
#
# Usage:
#   result = await sender.send("(555) 123-4567", "Your request was assigned")
#   if not result.success:
#       logger.warning(result.error)
#
# Senders never raise for delivery problems; they return SmsResult.
#
# =============================================================================

from __future__ import annotations

import logging
from typing import Protocol

import httpx
from pydantic import BaseModel

from leasepilot.config import Settings
from leasepilot.core.utils import to_e164

logger = logging.getLogger(__name__)

MAX_SMS_LENGTH = 1600

TRIAL_ACCOUNT_HINT = (
    "Twilio trial accounts can only text verified numbers. Verify this number "
    "in the Twilio console or upgrade the account to text any number."
)


# =============================================================================
# Models
# =============================================================================

class SmsResult(BaseModel):
    """Outcome of one send."""
    success: bool
    sid: str | None = None
    error: str | None = None


class SmsSender(Protocol):
    """Anything that can deliver a text message."""

    @property
    def configured(self) -> bool: ...

    async def send(self, to: str, body: str) -> SmsResult: ...


# =============================================================================
# Twilio
# =============================================================================

class TwilioSmsSender:
    """Sends through the Twilio Messages REST API."""

    API_BASE = "https://api.twilio.com/2010-04-01"

    def __init__(
        self,
        account_sid: str,
        auth_token: str,
        from_number: str,
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.account_sid = account_sid
        self.auth_token = auth_token
        self.from_number = from_number.strip()
        self.timeout = timeout
        self._transport = transport

    @classmethod
    def from_settings(cls, settings: Settings) -> TwilioSmsSender:
        return cls(
            account_sid=settings.twilio_account_sid,
            auth_token=settings.twilio_auth_token,
            from_number=settings.twilio_phone_number,
        )

    @property
    def configured(self) -> bool:
        return bool(self.account_sid and self.auth_token and self.from_number)

    @property
    def messages_url(self) -> str:
        return f"{self.API_BASE}/Accounts/{self.account_sid}/Messages.json"

    async def send(self, to: str, body: str) -> SmsResult:
        if not self.from_number:
            return SmsResult(success=False, error="TWILIO_PHONE_NUMBER is not set")
        if not (self.account_sid and self.auth_token):
            return SmsResult(
                success=False,
                error="Twilio is not configured. Set TWILIO_ACCOUNT_SID and TWILIO_AUTH_TOKEN",
            )

        recipient = to_e164(to)
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.post(
                    self.messages_url,
                    data={
                        "To": recipient,
                        "From": self.from_number,
                        "Body": str(body)[:MAX_SMS_LENGTH],
                    },
                    auth=(self.account_sid, self.auth_token),
                )
        except httpx.HTTPError as e:
            logger.error("Twilio request failed: %s", e)
            return SmsResult(success=False, error="Failed to reach the SMS provider")

        if response.status_code >= 400:
            return SmsResult(success=False, error=_error_message(response))

        sid = response.json().get("sid")
        logger.info("SMS sent to %s (sid=%s)", recipient, sid)
        return SmsResult(success=True, sid=sid)


def _error_message(response: httpx.Response) -> str:
    try:
        message = response.json().get("message") or ""
    except ValueError:
        message = ""
    logger.error("Twilio SMS error %s: %s", response.status_code, message or response.text)
    if "verified" in message or "Trial" in message:
        return TRIAL_ACCOUNT_HINT
    return message or f"Failed to send SMS ({response.status_code})"


# =============================================================================
# Helpers
# =============================================================================

async def send_and_log(sender: SmsSender, to: str, body: str, purpose: str) -> None:
    """Fire-and-forget send for background tasks: failures are logged, never raised."""
    result = await sender.send(to, body)
    if not result.success:
        logger.warning("SMS for %s failed: %s", purpose, result.error)
