import logging
from typing import Any, Dict, Optional

import requests

from smartreply.lib.config import Settings
from smartreply.lib.error_handler import UpstreamError

logger = logging.getLogger(__name__)

GEMINI_BASE_URL = "https://generativelanguage.googleapis.com/v1beta/models"


class GeminiClient:
    def __init__(self, settings: Settings):
        self.settings = settings

    @property
    def endpoint(self) -> str:
        return f"{GEMINI_BASE_URL}/{self.settings.gemini_model}:generateContent"

    def generate_content(
        self,
        prompt: str,
        response_schema: Optional[Dict[str, Any]] = None
    ) -> Dict[str, Any]:
        """Send a single generateContent request and return the decoded body"""
        self.settings.require('gemini_api_key')

        generation_config = {
            'temperature': self.settings.gemini_temperature,
            'topK': 40,
            'topP': 0.95,
            'maxOutputTokens': self.settings.gemini_max_output_tokens,
        }
        if response_schema is not None:
            generation_config['responseMimeType'] = 'application/json'
            generation_config['responseSchema'] = response_schema

        payload = {
            'contents': [{'parts': [{'text': prompt}]}],
            'generationConfig': generation_config,
        }

        logger.info(f"Calling Gemini model {self.settings.gemini_model}")
        try:
            response = requests.post(
                self.endpoint,
                params={'key': self.settings.gemini_api_key},
                json=payload
            )
        except requests.exceptions.RequestException as e:
            raise UpstreamError(f"Gemini request failed: {str(e)}")

        if not response.ok:
            raise UpstreamError(
                f"Gemini API error: {_error_message(response)}",
                provider_status=response.status_code
            )

        try:
            return response.json()
        except ValueError:
            raise UpstreamError("Gemini API returned a non-JSON body")


def _error_message(response: requests.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text or f"HTTP {response.status_code}"
    if isinstance(body, dict) and isinstance(body.get('error'), dict):
        return body['error'].get('message') or f"HTTP {response.status_code}"
    return response.text or f"HTTP {response.status_code}"
