import logging
from typing import Any, Dict

from twilio.base.exceptions import TwilioRestException
from twilio.rest import Client

from smartreply.lib.config import Settings
from smartreply.lib.error_handler import UpstreamError

logger = logging.getLogger(__name__)


class TwilioClient:
    def __init__(self, settings: Settings):
        self.settings = settings
        self._client = None

    @property
    def client(self) -> Client:
        if self._client is None:
            self.settings.require('twilio_account_sid', 'twilio_auth_token')
            self._client = Client(
                self.settings.twilio_account_sid,
                self.settings.twilio_auth_token
            )
        return self._client

    def send_message(self, from_: str, to: str, body: str) -> Dict[str, Any]:
        """Send a message and return the created message resource as a dict"""
        try:
            message = self.client.messages.create(
                body=body,
                from_=from_,
                to=to
            )
        except TwilioRestException as e:
            logger.error(f"Twilio error sending message: {str(e)}")
            raise UpstreamError(f"Twilio error: {e.msg}", provider_status=e.status)

        logger.info(f"Message sent successfully: {message.sid}")
        return {
            'sid': message.sid,
            'status': message.status,
            'to': message.to,
            'from': message.from_,
            'body': message.body,
            'date_created': message.date_created.isoformat() if message.date_created else None,
        }
