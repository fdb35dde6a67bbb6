from twilio.rest import Client
from twilio.base.exceptions import TwilioRestException
from typing import Optional
import asyncio
import logging
import re
from lib.config import Settings

logger = logging.getLogger(__name__)

WHATSAPP_PREFIX = "whatsapp:"

def normalize_whatsapp_number(from_number: Optional[str]) -> Optional[str]:
    """Strip the channel prefix Twilio adds to WhatsApp senders."""
    if not from_number:
        return None
    if from_number.startswith(WHATSAPP_PREFIX):
        return from_number[len(WHATSAPP_PREFIX):]
    return from_number

def format_phone_number(phone: str) -> str:
    """Turn a user-typed Brazilian phone number into E.164."""
    digits = re.sub(r"\D", "", phone)
    if digits.startswith("55") and len(digits) >= 12:
        return f"+{digits}"
    return f"+55{digits}"

class WhatsAppClient:
    def __init__(self, client: Optional[Client], from_number: str):
        self.client = client
        self.from_number = from_number

    @classmethod
    def from_settings(cls, settings: Settings) -> "WhatsAppClient":
        if not settings.twilio_configured:
            logger.error("Twilio env vars are not configured")
            return cls(None, settings.twilio_whatsapp_number)
        client = Client(settings.twilio_account_sid, settings.twilio_auth_token)
        return cls(client, settings.twilio_whatsapp_number)

    def send_message(self, to_number: str, message: str) -> bool:
        """Send a WhatsApp message. Failures are logged, never raised."""
        if self.client is None:
            logger.error("Twilio client not configured, dropping message")
            return False
        try:
            sent = self.client.messages.create(
                body=message,
                from_=self.from_number,
                to=f"{WHATSAPP_PREFIX}{to_number}"
            )
            logger.info(f"Message sent successfully to {to_number}: {sent.sid}")
            return True
        except TwilioRestException as e:
            logger.error(f"Twilio error sending WhatsApp message ({e.status}): {e.msg}")
            return False
        except Exception as e:
            logger.error(f"Unexpected error sending WhatsApp message: {str(e)}")
            return False

    async def send(self, to_number: str, message: str) -> bool:
        # Run Twilio API call in an executor to prevent blocking
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(
            None,
            lambda: self.send_message(to_number, message)
        )
