import logging
from typing import Any, Dict, Optional

from smartreply.lib.error_handler import AppError
from smartreply.models import Platform
from smartreply.services.metrics import estimate_metrics
from smartreply.services.replies import ReplyService
from smartreply.services.storage import StorageService

logger = logging.getLogger(__name__)


class ReplyPipeline:
    """Store a message, generate replies for it, store the replies and metrics"""

    def __init__(self, storage_service: StorageService, reply_service: ReplyService, rng=None):
        self.storage = storage_service
        self.replies = reply_service
        self.rng = rng

    def process(
        self,
        user_id: str,
        platform: Platform,
        content: str,
        body: Optional[str] = None,
        sender: str = 'manual',
        external_id: Optional[str] = None,
        thread_id: Optional[str] = None,
        subject: Optional[str] = None,
        language: str = 'auto',
        message_id: Optional[str] = None
    ) -> Dict[str, Any]:
        platform = Platform(platform)

        if message_id:
            message = self.storage.get_message(user_id, message_id)
            if message is None:
                raise AppError(f"Message {message_id} not found", status_code=404)
            # Replies must answer the stored message, not whatever text came with the request
            content = message['content']
        else:
            message = self.storage.save_message(
                user_id=user_id,
                platform=platform,
                sender=sender,
                content=content,
                external_id=external_id,
                thread_id=thread_id
            )

        # body is what the model reads; content is what gets stored
        replies = self.replies.generate_replies(
            body or content,
            context={'subject': subject},
            language=language,
            platform=platform
        )
        saved_replies = self.storage.save_replies(message['id'], replies)

        metrics = estimate_metrics(replies, self.rng)
        self.storage.save_metrics(user_id, platform, metrics)

        logger.info(f"Processed {platform.value} message {message['id']}")
        return {
            'message': message,
            'replies': [reply.model_dump() for reply in replies],
            'saved_replies': saved_replies,
            'metrics': {**metrics, 'estimated': True},
        }
