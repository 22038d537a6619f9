import base64
import binascii
import json
import logging
import re
from typing import Any, Dict, List, Optional

from pydantic import ValidationError

from smartreply.lib.error_handler import ReplyDecodeError, SafetyBlockedError, TruncatedReplyError
from smartreply.lib.gemini_client import GeminiClient
from smartreply.models import GeneratedReply, Platform

logger = logging.getLogger(__name__)

REPLY_COUNT = 3

REPLY_SCHEMA = {
    'type': 'ARRAY',
    'minItems': REPLY_COUNT,
    'maxItems': REPLY_COUNT,
    'items': {
        'type': 'OBJECT',
        'properties': {
            'tone': {'type': 'STRING'},
            'text': {'type': 'STRING'},
            'confidence': {'type': 'NUMBER'},
        },
        'required': ['tone', 'text', 'confidence'],
        'propertyOrdering': ['tone', 'text', 'confidence'],
    },
}

SAFETY_FINISH_REASONS = {'SAFETY', 'PROHIBITED_CONTENT', 'BLOCKLIST', 'SPII'}

_FENCE_PATTERN = re.compile(r"```(?:json)?\s*(.*?)```", re.DOTALL | re.IGNORECASE)


class ReplyService:
    def __init__(self, gemini_client: GeminiClient):
        self.client = gemini_client

    def build_prompt(
        self,
        text: str,
        subject: Optional[str] = None,
        language: str = 'auto',
        platform: Platform = Platform.EMAIL
    ) -> str:
        """Build the instruction prompt for one incoming message"""
        channel = 'email' if platform == Platform.EMAIL else 'WhatsApp message'

        if language and language != 'auto':
            language_rule = f"Reply in {language}."
        else:
            language_rule = f"Reply in the same language as the {channel}."

        if subject:
            message_block = f'Subject: "{subject}"\nMessage: "{text}"'
        else:
            message_block = f'Message: "{text}"'

        return (
            f"You write natural, human replies to a {channel}. Read the message below and work out "
            "its intent, tone and emotional energy.\n\n"
            f"{message_block}\n\n"
            f"Write {REPLY_COUNT} replies the recipient could send back.\n\n"
            "Rules:\n"
            "- Never use corporate or templated phrases such as \"Thank you for your message\", "
            "\"I will respond shortly\" or \"I'll get back to you\".\n"
            "- Mirror the sender's energy: casual gets casual, professional gets professional.\n"
            "- Make the three replies clearly different in tone and angle.\n"
            "- Keep every reply short and to the point.\n"
            "- Only apologize when the message calls for it.\n"
            f"- {language_rule}\n\n"
            f"Return only a JSON array of exactly {REPLY_COUNT} objects, each with "
            "\"tone\" (a short label such as casual, friendly or professional), "
            "\"text\" (the reply) and \"confidence\" (a number between 0 and 1)."
        )

    def generate_replies(
        self,
        text: str,
        context: Optional[Dict[str, Any]] = None,
        language: str = 'auto',
        platform: Platform = Platform.EMAIL
    ) -> List[GeneratedReply]:
        """Ask Gemini for exactly three reply suggestions"""
        context = context or {}
        prompt = self.build_prompt(text, context.get('subject'), language, platform)

        logger.info(f"Generating replies for {platform.value} message ({len(text)} chars)")
        data = self.client.generate_content(prompt, response_schema=REPLY_SCHEMA)

        replies = decode_replies(data)
        logger.info(f"Generated {len(replies)} replies")
        return replies


def decode_replies(data: Dict[str, Any]) -> List[GeneratedReply]:
    """Turn a generateContent response body into validated replies"""
    for output in collect_outputs(data):
        payload = extract_json_array(output)
        if payload is not None:
            return parse_replies(payload)

    raise ReplyDecodeError("Could not extract a JSON array of replies from Gemini output")


def collect_outputs(data: Dict[str, Any]) -> List[str]:
    """
    Return the candidate texts that may hold the reply array.

    Text parts are joined since Gemini may split one answer across parts.
    Inline base64 parts are decoded and returned separately.
    """
    feedback = data.get('promptFeedback') or {}
    if feedback.get('blockReason'):
        raise SafetyBlockedError(f"Gemini blocked the prompt: {feedback['blockReason']}")

    candidates = data.get('candidates') or []
    if not candidates:
        raise ReplyDecodeError("Gemini returned no candidates")

    candidate = candidates[0]
    finish_reason = candidate.get('finishReason')
    if finish_reason == 'MAX_TOKENS':
        raise TruncatedReplyError("Message too long - Gemini response was truncated")
    if finish_reason in SAFETY_FINISH_REASONS:
        raise SafetyBlockedError(f"Gemini withheld the response: {finish_reason}")

    parts = (candidate.get('content') or {}).get('parts') or []
    texts = []
    inline = []
    for part in parts:
        if part.get('thought'):
            continue
        if isinstance(part.get('text'), str):
            texts.append(part['text'])
        elif isinstance(part.get('inlineData'), dict):
            decoded = _decode_inline(part['inlineData'].get('data'))
            if decoded is not None:
                inline.append(decoded)

    outputs = []
    if texts:
        outputs.append(''.join(texts))
    outputs.extend(inline)

    if not outputs:
        raise ReplyDecodeError("Gemini response contained no content")
    return outputs


def _decode_inline(data: Any) -> Optional[str]:
    if not isinstance(data, str):
        return None
    padded = data + '=' * (-len(data) % 4)
    try:
        if '-' in data or '_' in data:
            raw = base64.urlsafe_b64decode(padded)
        else:
            raw = base64.b64decode(padded, validate=True)
        return raw.decode('utf-8')
    except (binascii.Error, UnicodeDecodeError):
        logger.warning("Skipping inline part that is not base64 UTF-8")
        return None


def extract_json_array(text: str) -> Optional[list]:
    """
    Find a JSON array in model output.

    Tries the whole text, then fenced code blocks, then every balanced
    [...] span. The content of the array is not repaired.
    """
    text = text.strip()
    if not text:
        return None

    found = _loads_list(text)
    if found is not None:
        return found

    for match in _FENCE_PATTERN.finditer(text):
        found = _loads_list(match.group(1).strip())
        if found is not None:
            return found

    start = text.find('[')
    while start != -1:
        end = _matching_bracket(text, start)
        if end is not None:
            found = _loads_list(text[start:end + 1])
            if found is not None:
                return found
        start = text.find('[', start + 1)

    return None


def _loads_list(text: str) -> Optional[list]:
    try:
        value = json.loads(text)
    except ValueError:
        return None
    return value if isinstance(value, list) else None


def _matching_bracket(text: str, start: int) -> Optional[int]:
    depth = 0
    in_string = False
    escaped = False
    for index in range(start, len(text)):
        char = text[index]
        if in_string:
            if escaped:
                escaped = False
            elif char == '\\':
                escaped = True
            elif char == '"':
                in_string = False
            continue
        if char == '"':
            in_string = True
        elif char == '[':
            depth += 1
        elif char == ']':
            depth -= 1
            if depth == 0:
                return index
    return None


def parse_replies(payload: Any) -> List[GeneratedReply]:
    """Validate a decoded array against the reply schema"""
    if not isinstance(payload, list):
        raise ReplyDecodeError("Gemini output is not a JSON array")
    if len(payload) != REPLY_COUNT:
        raise ReplyDecodeError(f"Expected {REPLY_COUNT} replies, got {len(payload)}")

    try:
        return [GeneratedReply.model_validate(item) for item in payload]
    except ValidationError as e:
        raise ReplyDecodeError(f"Gemini replies failed validation: {e.errors()[0]['msg']}")
