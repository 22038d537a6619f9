import logging
import unicodedata
from typing import Any, Dict, Mapping

from smartreply.lib.config import Settings
from smartreply.lib.error_handler import InvalidRequestError
from smartreply.lib.twilio_client import TwilioClient
from smartreply.models import InboundWhatsAppMessage

logger = logging.getLogger(__name__)

ADDRESS_PREFIX = 'whatsapp:'


def strip_format_chars(text: str) -> str:
    """Drop Unicode format characters (Cf): bidi marks, zero-width chars, BOM and the like"""
    return ''.join(ch for ch in text if unicodedata.category(ch) != 'Cf')


def normalize_address(address: str) -> str:
    """Strip hidden characters and make sure the address carries the whatsapp: prefix"""
    cleaned = strip_format_chars(address or '').strip()
    if cleaned.lower().startswith(ADDRESS_PREFIX):
        cleaned = cleaned[len(ADDRESS_PREFIX):].strip()
    if not cleaned:
        raise InvalidRequestError("A recipient address is required")
    return f"{ADDRESS_PREFIX}{cleaned}"


class WhatsAppService:
    def __init__(self, twilio_client: TwilioClient, settings: Settings):
        self.client = twilio_client
        self.settings = settings

    def parse_inbound(self, form: Mapping[str, Any]) -> InboundWhatsAppMessage:
        """Normalize a Twilio webhook form into an inbound message"""
        fields = {}
        for name in ('From', 'Body', 'MessageSid'):
            value = form.get(name)
            if not isinstance(value, str) or not value.strip():
                raise InvalidRequestError(f"Missing required field: {name}")
            fields[name] = value

        profile_name = form.get('ProfileName')
        message = InboundWhatsAppMessage(
            from_=fields['From'],
            body=fields['Body'],
            external_id=fields['MessageSid'],
            display_name=profile_name.strip() if isinstance(profile_name, str) and profile_name.strip() else None
        )
        logger.info(f"Inbound WhatsApp message {message.external_id} from {message.from_}")
        return message

    def send_message(self, to: str, body: str) -> Dict[str, Any]:
        """Send a WhatsApp message through Twilio"""
        if not body or not body.strip():
            raise InvalidRequestError("Message body is required")

        self.settings.require('twilio_whatsapp_number')
        from_address = normalize_address(self.settings.twilio_whatsapp_number)
        to_address = normalize_address(to)

        logger.info(f"Sending WhatsApp message to {to_address}")
        return self.client.send_message(from_address, to_address, body)
