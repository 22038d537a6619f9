import asyncio
import logging
import sys
from functools import cached_property
from typing import Optional, Type, TypeVar

from flask import Flask, jsonify, request
from pydantic import BaseModel, ValidationError

from smartreply.lib.config import Settings, get_settings
from smartreply.lib.database import create_supabase_client
from smartreply.lib.error_handler import ErrorHandler, InvalidRequestError, UpstreamError
from smartreply.lib.gemini_client import GeminiClient
from smartreply.lib.twilio_client import TwilioClient
from smartreply.models import (
    GenerateRepliesRequest,
    GmailSendRequest,
    MessageFilters,
    Platform,
    WhatsAppSendRequest,
)
from smartreply.services.auth import AuthService
from smartreply.services.gmail import GmailService
from smartreply.services.pipeline import ReplyPipeline
from smartreply.services.replies import ReplyService
from smartreply.services.storage import StorageService
from smartreply.services.whatsapp import WhatsAppService

logger = logging.getLogger(__name__)

CORS_HEADERS = {
    'Access-Control-Allow-Origin': '*',
    'Access-Control-Allow-Headers': 'authorization, x-client-info, apikey, content-type',
    'Access-Control-Allow-Methods': 'GET, POST, DELETE, OPTIONS',
}

ModelT = TypeVar('ModelT', bound=BaseModel)


class Services:
    """Builds each client on first use so a missing credential only fails the requests that need it"""

    def __init__(self, settings: Settings):
        self.settings = settings

    @cached_property
    def supabase(self):
        return create_supabase_client(self.settings)

    @cached_property
    def storage(self) -> StorageService:
        return StorageService(supabase_client=self.supabase)

    @cached_property
    def auth(self) -> AuthService:
        return AuthService(self.supabase, self.settings)

    @cached_property
    def replies(self) -> ReplyService:
        return ReplyService(GeminiClient(self.settings))

    @cached_property
    def pipeline(self) -> ReplyPipeline:
        return ReplyPipeline(storage_service=self.storage, reply_service=self.replies)

    @cached_property
    def whatsapp(self) -> WhatsAppService:
        return WhatsAppService(TwilioClient(self.settings), self.settings)

    @cached_property
    def gmail(self) -> GmailService:
        return GmailService(self.settings)


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=level.upper(),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        stream=sys.stdout,
        force=True
    )


def parse_body(model: Type[ModelT]) -> ModelT:
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        raise InvalidRequestError("Request body must be a JSON object")
    try:
        return model.model_validate(data)
    except ValidationError as e:
        raise InvalidRequestError(_describe(e))


def parse_platform(value: Optional[str]) -> Platform:
    try:
        return Platform(value)
    except ValueError:
        raise InvalidRequestError("platform must be 'whatsapp' or 'email'")


def email_content(subject: str, body: str) -> str:
    """Stored form of an email; the subject filter matches against it"""
    return f"Subject: {subject}\n\n{body}"


def _describe(error: ValidationError) -> str:
    first = error.errors()[0]
    location = '.'.join(str(part) for part in first['loc'])
    return f"{location}: {first['msg']}" if location else first['msg']


def create_app(settings: Optional[Settings] = None, services: Optional[Services] = None) -> Flask:
    settings = settings or get_settings()
    configure_logging(settings.log_level)

    app = Flask(__name__)
    services = services or Services(settings)
    app.extensions['smartreply'] = services

    @app.after_request
    def add_cors_headers(response):
        response.headers.update(CORS_HEADERS)
        return response

    @app.route('/health', methods=['GET'])
    def health():
        return jsonify({'status': 'ok'})

    @app.route('/whatsapp-webhook', methods=['POST'])
    def whatsapp_webhook():
        """Handle an inbound WhatsApp message from Twilio"""
        try:
            logger.info("Received WhatsApp webhook request")
            inbound = services.whatsapp.parse_inbound(request.form.to_dict())
            user_id = services.auth.resolve_owner(request.headers.get('Authorization'))

            result = services.pipeline.process(
                user_id=user_id,
                platform=Platform.WHATSAPP,
                content=inbound.body,
                sender=inbound.from_,
                external_id=inbound.external_id
            )
            return jsonify({
                'success': True,
                'message': 'Message received and processed',
                'messageId': result['message']['id']
            })
        except Exception as e:
            return ErrorHandler.to_response(e)

    @app.route('/gmail-webhook', methods=['POST'])
    def gmail_webhook():
        """Pull unread Gmail messages and generate replies for each"""
        try:
            logger.info("Fetching Gmail messages...")
            user_id = services.auth.resolve_owner(request.headers.get('Authorization'))
            access_token = services.gmail.refresh_access_token()
            emails = asyncio.run(services.gmail.fetch_unread(access_token))

            # A failed generation is reported on its email; the others still go through
            results = []
            for email in emails:
                message = services.storage.save_message(
                    user_id=user_id,
                    platform=Platform.EMAIL,
                    sender=email.from_,
                    content=email_content(email.subject, email.body),
                    external_id=email.id,
                    thread_id=email.thread_id
                )
                entry = {**email.to_payload(), 'messageId': message['id'], 'replies': []}
                try:
                    result = services.pipeline.process(
                        user_id=user_id,
                        platform=Platform.EMAIL,
                        content=message['content'],
                        body=email.body,
                        subject=email.subject,
                        message_id=message['id']
                    )
                    entry['replies'] = result['replies']
                except UpstreamError as e:
                    logger.error(f"Reply generation failed for email {email.id}: {e.message}")
                    entry['error'] = e.message
                results.append(entry)

            return jsonify({'success': True, 'emails': results})
        except Exception as e:
            return ErrorHandler.to_response(e)

    @app.route('/generate-replies', methods=['POST'])
    def generate_replies():
        try:
            user_id = services.auth.authenticate(request.headers.get('Authorization'))
            body = parse_body(GenerateRepliesRequest)
            logger.info(f"Generating replies for user {user_id}")

            content = body.message
            if body.platform == Platform.EMAIL and body.subject:
                content = email_content(body.subject, body.message)

            result = services.pipeline.process(
                user_id=user_id,
                platform=body.platform,
                content=content,
                body=None if body.message_id else body.message,
                subject=body.subject,
                language=body.language,
                message_id=body.message_id
            )
            return jsonify({
                'success': True,
                'message': result['message'],
                'replies': result['replies'],
                'metrics': result['metrics']
            })
        except Exception as e:
            return ErrorHandler.to_response(e)

    @app.route('/send-whatsapp-reply', methods=['POST'])
    def send_whatsapp_reply():
        try:
            user_id = services.auth.authenticate(request.headers.get('Authorization'))
            body = parse_body(WhatsAppSendRequest)
            # Unknown replies fail before anything is delivered
            if body.reply_id:
                services.storage.get_reply(user_id, body.reply_id)

            data = services.whatsapp.send_message(body.to, body.body)
            if body.reply_id:
                services.storage.mark_reply_sent(user_id, body.reply_id)
            return jsonify({'success': True, 'data': data})
        except Exception as e:
            return ErrorHandler.to_response(e)

    @app.route('/send-gmail-reply', methods=['POST'])
    def send_gmail_reply():
        try:
            user_id = services.auth.authenticate(request.headers.get('Authorization'))
            body = parse_body(GmailSendRequest)
            if body.reply_id:
                services.storage.get_reply(user_id, body.reply_id)

            data = services.gmail.send_reply(body.thread_id, body.reply_text)
            if body.reply_id:
                services.storage.mark_reply_sent(user_id, body.reply_id)
            return jsonify({'success': True, 'data': data})
        except Exception as e:
            return ErrorHandler.to_response(e)

    @app.route('/messages', methods=['GET'])
    def list_messages():
        try:
            user_id = services.auth.authenticate(request.headers.get('Authorization'))
            platform = parse_platform(request.args.get('platform'))
            try:
                filters = MessageFilters(
                    sender=request.args.get('sender') or None,
                    subject=request.args.get('subject') or None,
                    date_from=request.args.get('date_from') or None,
                    date_to=request.args.get('date_to') or None
                )
            except ValidationError as e:
                raise InvalidRequestError(_describe(e))

            messages = services.storage.query_messages(user_id, platform, filters)
            return jsonify({'success': True, 'messages': messages})
        except Exception as e:
            return ErrorHandler.to_response(e)

    @app.route('/messages/<message_id>', methods=['DELETE'])
    def delete_message(message_id):
        try:
            user_id = services.auth.authenticate(request.headers.get('Authorization'))
            services.storage.delete_message(user_id, message_id)
            return jsonify({'success': True})
        except Exception as e:
            return ErrorHandler.to_response(e)

    @app.route('/replies/<reply_id>/sent', methods=['POST'])
    def mark_reply_sent(reply_id):
        try:
            user_id = services.auth.authenticate(request.headers.get('Authorization'))
            reply = services.storage.mark_reply_sent(user_id, reply_id)
            return jsonify({'success': True, 'reply': reply})
        except Exception as e:
            return ErrorHandler.to_response(e)

    @app.route('/metrics/latest', methods=['GET'])
    def latest_metrics():
        try:
            user_id = services.auth.authenticate(request.headers.get('Authorization'))
            platform = parse_platform(request.args.get('platform'))
            metrics = services.storage.latest_metrics(user_id, platform)
            return jsonify({'success': True, 'metrics': metrics})
        except Exception as e:
            return ErrorHandler.to_response(e)

    return app
