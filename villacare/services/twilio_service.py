"""
Twilio Messaging Service
Sends WhatsApp (preferred) or SMS messages through the Twilio REST API
"""

import logging
from typing import Optional, Protocol

import httpx

from ..config import (
    TWILIO_ACCOUNT_SID,
    TWILIO_API_BASE,
    TWILIO_AUTH_TOKEN,
    TWILIO_PHONE_NUMBER,
    TWILIO_WHATSAPP_NUMBER,
)
from ..shared.validators import mask_phone, strip_channel_prefix

logger = logging.getLogger(__name__)


class Notifier(Protocol):
    """Outbound message channel. Returns False on failure, never raises by contract"""

    async def send(self, to_phone: str, body: str) -> bool: ...


class TwilioNotifier:
    """Send messages via Twilio, using WhatsApp when a WhatsApp sender is configured"""

    def __init__(
        self,
        account_sid: Optional[str] = TWILIO_ACCOUNT_SID,
        auth_token: Optional[str] = TWILIO_AUTH_TOKEN,
        whatsapp_number: Optional[str] = TWILIO_WHATSAPP_NUMBER,
        phone_number: Optional[str] = TWILIO_PHONE_NUMBER,
        api_base: str = TWILIO_API_BASE,
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.account_sid = account_sid
        self.auth_token = auth_token
        self.whatsapp_number = whatsapp_number
        self.phone_number = phone_number
        self.api_base = api_base.rstrip("/")
        self.timeout = timeout
        self.transport = transport

    @property
    def configured(self) -> bool:
        return bool(
            self.account_sid and self.auth_token and (self.whatsapp_number or self.phone_number)
        )

    def build_payload(self, to_phone: str) -> dict:
        """Pick the channel and format From/To accordingly"""
        to_phone = strip_channel_prefix(to_phone)
        if self.whatsapp_number:
            sender = self.whatsapp_number
            if not sender.startswith("whatsapp:"):
                sender = f"whatsapp:{sender}"
            return {"From": sender, "To": f"whatsapp:{to_phone}"}
        return {"From": self.phone_number, "To": to_phone}

    async def send(self, to_phone: str, body: str) -> bool:
        if not self.configured:
            logger.error("❌ Twilio not configured - missing credentials or sender number")
            return False

        if not to_phone:
            logger.debug("No phone number provided, skipping message")
            return False

        data = self.build_payload(to_phone)
        data["Body"] = body

        try:
            logger.info(f"📱 Sending message to {mask_phone(to_phone)}")
            async with httpx.AsyncClient(transport=self.transport) as client:
                response = await client.post(
                    f"{self.api_base}/Accounts/{self.account_sid}/Messages.json",
                    auth=(self.account_sid, self.auth_token),
                    data=data,
                    timeout=self.timeout,
                )

            if response.status_code in [200, 201]:
                message_sid = response.json().get("sid")
                logger.info(f"✅ Message sent to {mask_phone(to_phone)} (SID: {message_sid})")
                return True

            error_data = response.json()
            error_code = error_data.get("code")
            error_message = error_data.get("message", "Unknown error")
            logger.error(f"❌ Twilio API error [{error_code}]: {error_message}")
            return False

        except httpx.HTTPError as e:
            logger.error(f"❌ Twilio API error: {str(e)}")
            return False
        except ValueError as e:
            logger.error(f"❌ Unreadable Twilio response: {str(e)}")
            return False


def get_notifier() -> Notifier:
    """Dependency injection for the outbound notifier"""
    return TwilioNotifier()
