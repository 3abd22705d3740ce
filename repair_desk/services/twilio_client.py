"""Twilio client configuration for customer SMS."""

import logging

from twilio.rest import Client

from repair_desk.core.config import TWILIO_ACCOUNT_SID, TWILIO_AUTH_TOKEN, TWILIO_FROM_NUMBER

logger = logging.getLogger(__name__)

if not TWILIO_ACCOUNT_SID or not TWILIO_AUTH_TOKEN or not TWILIO_FROM_NUMBER:
    logger.warning("Twilio credentials not set. SMS notifications will fail at runtime.")

client: Client | None = None
if TWILIO_ACCOUNT_SID and TWILIO_AUTH_TOKEN:
    client = Client(TWILIO_ACCOUNT_SID, TWILIO_AUTH_TOKEN)


def send_sms(to: str, body: str) -> str:
    """Send an SMS via Twilio and return the message SID."""
    if client is None or not TWILIO_FROM_NUMBER:
        raise RuntimeError("Twilio client is not configured.")

    if not to.startswith("+"):
        raise ValueError("Phone number must be in E.164 format.")

    message = client.messages.create(
        from_=TWILIO_FROM_NUMBER,
        to=to,
        body=body,
    )

    logger.info("SMS sent to %s (SID: %s)", to, message.sid)
    return message.sid
