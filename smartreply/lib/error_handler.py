from typing import Optional
import logging

from flask import jsonify

logger = logging.getLogger(__name__)


class AppError(Exception):
    status_code = 500

    def __init__(self, message: str, status_code: Optional[int] = None):
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        super().__init__(self.message)


class ConfigError(AppError):
    """A credential or setting the request needs is absent"""
    status_code = 500


class AuthError(AppError):
    status_code = 401


class InvalidRequestError(AppError):
    status_code = 400


class UpstreamError(AppError):
    """A provider (Gemini, Twilio, Gmail) answered with an error"""
    status_code = 502

    def __init__(self, message: str, status_code: Optional[int] = None, provider_status: Optional[int] = None):
        self.provider_status = provider_status
        super().__init__(message, status_code)


class ReplyDecodeError(UpstreamError):
    """Model output did not contain three well-formed replies"""


class TruncatedReplyError(UpstreamError):
    pass


class SafetyBlockedError(UpstreamError):
    pass


class ErrorHandler:
    @staticmethod
    def to_response(error: Exception):
        """Map an exception to a JSON error body and status code"""
        if isinstance(error, AppError):
            logger.error(f"{type(error).__name__}: {error.message}")
            return jsonify({'error': error.message}), error.status_code

        logger.error(f"Unexpected error: {str(error)}", exc_info=True)
        return jsonify({'error': str(error) or 'Unknown error'}), 500
