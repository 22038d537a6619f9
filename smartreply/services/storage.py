import logging
from datetime import datetime, time, timedelta, timezone
from typing import Any, Dict, Iterable, List, Optional

from smartreply.lib.error_handler import AppError
from smartreply.models import GeneratedReply, MessageFilters, Platform

logger = logging.getLogger(__name__)


class StorageService:
    def __init__(self, supabase_client):
        self.supabase = supabase_client
        self.messages_table = 'messages'
        self.replies_table = 'replies'
        self.metrics_table = 'metrics'

    def save_message(
        self,
        user_id: str,
        platform: Platform,
        sender: str,
        content: str,
        external_id: Optional[str] = None,
        thread_id: Optional[str] = None
    ) -> Dict[str, Any]:
        """Store an inbound or manually entered message"""
        record = {
            'user_id': user_id,
            'platform': Platform(platform).value,
            'sender': sender,
            'content': content,
            'message_id': external_id,
            'thread_id': thread_id,
            'created_at': datetime.now(timezone.utc).isoformat()
        }
        try:
            result = self.supabase.table(self.messages_table).insert(record).execute()
        except Exception as e:
            logger.error(f"Failed to store message: {str(e)}")
            raise
        logger.info(f"Stored {record['platform']} message from {sender}")
        return result.data[0]

    def save_replies(self, message_id: str, replies: List[GeneratedReply]) -> List[Dict[str, Any]]:
        """Insert a batch of replies in one call"""
        rows = [
            {
                'message_id': message_id,
                'tone': reply.tone,
                'content': reply.text,
                'confidence': reply.confidence,
                'is_sent': False
            }
            for reply in replies
        ]
        try:
            result = self.supabase.table(self.replies_table).insert(rows).execute()
        except Exception as e:
            logger.error(f"Failed to store replies for message {message_id}: {str(e)}")
            raise
        return result.data

    def save_metrics(self, user_id: str, platform: Platform, metrics: Dict[str, float]) -> bool:
        """Store a metrics snapshot; failures are logged and reported as False"""
        record = {
            'user_id': user_id,
            'platform': Platform(platform).value,
            'accuracy': metrics['accuracy'],
            'precision_score': metrics['precision_score'],
            'recall_score': metrics['recall_score'],
            'f1_score': metrics['f1_score'],
            'created_at': datetime.now(timezone.utc).isoformat()
        }
        try:
            self.supabase.table(self.metrics_table).insert(record).execute()
            return True
        except Exception as e:
            logger.error(f"Error saving metrics: {str(e)}")
            return False

    def get_message(self, user_id: str, message_id: str) -> Optional[Dict[str, Any]]:
        result = self.supabase.table(self.messages_table)\
            .select('*')\
            .eq('id', message_id)\
            .eq('user_id', user_id)\
            .limit(1)\
            .execute()
        return result.data[0] if result.data else None

    def get_reply(self, user_id: str, reply_id: str) -> Dict[str, Any]:
        """Load a reply that belongs to one of the user's messages, else 404"""
        result = self.supabase.table(self.replies_table)\
            .select('*')\
            .eq('id', reply_id)\
            .limit(1)\
            .execute()
        if not result.data or not self.get_message(user_id, result.data[0]['message_id']):
            raise AppError(f"Reply {reply_id} not found", status_code=404)
        return result.data[0]

    def mark_reply_sent(self, user_id: str, reply_id: str) -> Dict[str, Any]:
        """
        Flag a reply as sent.

        A reply that is already sent is updated again without complaint.
        """
        self.get_reply(user_id, reply_id)

        result = self.supabase.table(self.replies_table)\
            .update({'is_sent': True})\
            .eq('id', reply_id)\
            .execute()
        logger.info(f"Marked reply {reply_id} as sent")
        return result.data[0] if result.data else {'id': reply_id, 'is_sent': True}

    def query_messages(
        self,
        user_id: str,
        platform: Platform,
        filters: Optional[MessageFilters] = None
    ) -> List[Dict[str, Any]]:
        """Messages with their replies, newest first, then filtered in memory"""
        result = self.supabase.table(self.messages_table)\
            .select('*, replies(*)')\
            .eq('platform', Platform(platform).value)\
            .eq('user_id', user_id)\
            .order('created_at', desc=True)\
            .execute()
        return filter_messages(result.data or [], filters or MessageFilters(), platform)

    def delete_message(self, user_id: str, message_id: str) -> None:
        self.supabase.table(self.messages_table)\
            .delete()\
            .eq('id', message_id)\
            .eq('user_id', user_id)\
            .execute()
        logger.info(f"Deleted message {message_id}")

    def latest_metrics(self, user_id: str, platform: Platform) -> Optional[Dict[str, Any]]:
        result = self.supabase.table(self.metrics_table)\
            .select('*')\
            .eq('user_id', user_id)\
            .eq('platform', Platform(platform).value)\
            .order('created_at', desc=True)\
            .limit(1)\
            .execute()
        return result.data[0] if result.data else None


def filter_messages(
    messages: Iterable[Dict[str, Any]],
    filters: MessageFilters,
    platform: Platform
) -> List[Dict[str, Any]]:
    filtered = list(messages)

    if filters.sender:
        needle = filters.sender.lower()
        filtered = [m for m in filtered if needle in (m.get('sender') or '').lower()]

    # Subjects only exist on email; they are stored in the content
    if Platform(platform) == Platform.EMAIL and filters.subject:
        needle = filters.subject.lower()
        filtered = [m for m in filtered if needle in (m.get('content') or '').lower()]

    if filters.date_from:
        lower = datetime.combine(filters.date_from, time.min, tzinfo=timezone.utc)
        filtered = [m for m in filtered if parse_timestamp(m['created_at']) >= lower]

    if filters.date_to:
        # Exclusive bound so microsecond timestamps late on date_to still match
        upper = datetime.combine(filters.date_to + timedelta(days=1), time.min, tzinfo=timezone.utc)
        filtered = [m for m in filtered if parse_timestamp(m['created_at']) < upper]

    return filtered


def parse_timestamp(value: Any) -> datetime:
    if isinstance(value, datetime):
        parsed = value
    else:
        parsed = datetime.fromisoformat(str(value).replace('Z', '+00:00'))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed
