import asyncio
import base64
import html
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import aiohttp
import requests

from smartreply.lib.config import Settings
from smartreply.lib.error_handler import ConfigError, InvalidRequestError, UpstreamError
from smartreply.models import EmailSummary

logger = logging.getLogger(__name__)

TOKEN_URL = 'https://oauth2.googleapis.com/token'
MESSAGES_URL = 'https://gmail.googleapis.com/gmail/v1/users/me/messages'

UNREAD_PAGE_SIZE = 10
FETCH_LIMIT = 5
MAX_REPLY_LENGTH = 50000


class GmailService:
    def __init__(self, settings: Settings):
        self.settings = settings

    def refresh_access_token(self, refresh_token: Optional[str] = None) -> str:
        """Exchange the refresh token for a short-lived access token"""
        refresh_token = refresh_token or self.settings.gmail_refresh_token
        if not refresh_token:
            raise ConfigError("Gmail refresh token not configured")
        self.settings.require('gmail_client_id', 'gmail_client_secret')

        try:
            response = requests.post(TOKEN_URL, data={
                'client_id': self.settings.gmail_client_id,
                'client_secret': self.settings.gmail_client_secret,
                'refresh_token': refresh_token,
                'grant_type': 'refresh_token',
            })
        except requests.exceptions.RequestException as e:
            raise UpstreamError(f"Gmail token refresh failed: {str(e)}")

        if not response.ok:
            raise UpstreamError(
                f"Gmail token refresh failed: {_google_error(response)}",
                provider_status=response.status_code
            )

        access_token = response.json().get('access_token')
        if not access_token:
            raise UpstreamError("Gmail token response did not include an access token")
        return access_token

    async def fetch_unread(self, access_token: str) -> List[EmailSummary]:
        """List unread messages and fetch the first few in parallel"""
        headers = {'Authorization': f"Bearer {access_token}"}
        async with aiohttp.ClientSession(headers=headers) as session:
            message_ids = await self._list_unread_ids(session)
            logger.info(f"Found {len(message_ids)} unread emails")

            raw_messages = await asyncio.gather(*[
                self._fetch_message(session, message_id)
                for message_id in message_ids[:FETCH_LIMIT]
            ])

        return [summarize_message(raw) for raw in raw_messages]

    async def _list_unread_ids(self, session: aiohttp.ClientSession) -> List[str]:
        params = {'q': 'is:unread', 'maxResults': str(UNREAD_PAGE_SIZE)}
        async with session.get(MESSAGES_URL, params=params) as response:
            if response.status != 200:
                raise UpstreamError(
                    f"Gmail list failed: {await response.text()}",
                    provider_status=response.status
                )
            data = await response.json()

        return [message['id'] for message in data.get('messages') or []]

    async def _fetch_message(self, session: aiohttp.ClientSession, message_id: str) -> Dict[str, Any]:
        params = [
            ('format', 'metadata'),
            ('metadataHeaders', 'Subject'),
            ('metadataHeaders', 'From'),
        ]
        async with session.get(f"{MESSAGES_URL}/{message_id}", params=params) as response:
            if response.status != 200:
                raise UpstreamError(
                    f"Gmail fetch failed for {message_id}: {await response.text()}",
                    provider_status=response.status
                )
            return await response.json()

    def send_reply(self, thread_id: str, reply_text: str, access_token: Optional[str] = None) -> Dict[str, Any]:
        """Send a plain-text reply into an existing Gmail thread"""
        if not isinstance(thread_id, str) or not thread_id.strip():
            raise InvalidRequestError("Valid thread ID is required")
        if not isinstance(reply_text, str) or not reply_text.strip():
            raise InvalidRequestError("Reply text is required")
        if len(reply_text) > MAX_REPLY_LENGTH:
            raise InvalidRequestError(
                f"Reply text exceeds maximum length of {MAX_REPLY_LENGTH} characters"
            )

        text = normalize_reply_text(reply_text)
        logger.info(f"Sending Gmail reply to thread {thread_id} ({len(text)} chars)")

        access_token = access_token or self.refresh_access_token()
        try:
            response = requests.post(
                f"{MESSAGES_URL}/send",
                headers={'Authorization': f"Bearer {access_token}"},
                json={'raw': build_raw_message(text), 'threadId': thread_id.strip()}
            )
        except requests.exceptions.RequestException as e:
            raise UpstreamError(f"Gmail send failed: {str(e)}")

        if not response.ok:
            raise UpstreamError(
                f"Gmail send failed: {_google_error(response)}",
                provider_status=response.status_code
            )
        return response.json()


def normalize_reply_text(text: str) -> str:
    return text.replace('\r\n', '\n').replace('\r', '\n').strip()


def build_raw_message(text: str) -> str:
    """Single-part text/plain message, base64url encoded without padding"""
    message = '\n'.join([
        'Content-Type: text/plain; charset=utf-8',
        'MIME-Version: 1.0',
        '',
        text,
    ])
    return base64.urlsafe_b64encode(message.encode('utf-8')).decode('ascii').rstrip('=')


def summarize_message(raw: Dict[str, Any]) -> EmailSummary:
    headers = (raw.get('payload') or {}).get('headers') or []

    def header(name: str) -> Optional[str]:
        for item in headers:
            if item.get('name', '').lower() == name.lower():
                return item.get('value')
        return None

    internal_date = raw.get('internalDate')
    if internal_date:
        timestamp = datetime.fromtimestamp(int(internal_date) / 1000, tz=timezone.utc)
    else:
        timestamp = datetime.now(timezone.utc)

    return EmailSummary(
        id=raw['id'],
        thread_id=raw.get('threadId'),
        subject=header('Subject') or 'No Subject',
        from_=header('From') or 'Unknown',
        body=html.unescape(raw.get('snippet') or ''),
        timestamp=timestamp
    )


def _google_error(response: requests.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text or f"HTTP {response.status_code}"
    error = body.get('error') if isinstance(body, dict) else None
    if isinstance(error, dict):
        return error.get('message') or f"HTTP {response.status_code}"
    if isinstance(error, str):
        return body.get('error_description') or error
    return response.text or f"HTTP {response.status_code}"
