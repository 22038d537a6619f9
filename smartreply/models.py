"""
Pydantic models for SmartReply.

Request models validate the JSON bodies the dispatcher accepts. The rest
describe values passed between the channel adapters, the reply generator
and the persistence gateway. Database rows themselves stay plain dicts, as
returned by Supabase.
"""

from datetime import date, datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class Platform(str, Enum):
    WHATSAPP = "whatsapp"
    EMAIL = "email"


class GeneratedReply(BaseModel):
    """One reply suggestion as returned by the model"""
    model_config = ConfigDict(extra="ignore")

    tone: str = Field(..., min_length=1)
    text: str = Field(..., min_length=1)
    confidence: float = Field(..., ge=0.0, le=1.0)

    @field_validator("tone", "text")
    @classmethod
    def not_blank(cls, v: str, info) -> str:
        if not v.strip():
            raise ValueError(f"{info.field_name} must not be blank")
        return v.strip()

    @field_validator("confidence", mode="before")
    @classmethod
    def reject_bool(cls, v):
        # bool is an int subclass and would otherwise pass as 0 or 1
        if isinstance(v, bool):
            raise ValueError("confidence must be a number")
        return v


class InboundWhatsAppMessage(BaseModel):
    from_: str
    body: str
    external_id: str
    display_name: Optional[str] = None


class EmailSummary(BaseModel):
    id: str
    thread_id: Optional[str] = None
    subject: str = "No Subject"
    from_: str = "Unknown"
    body: str = ""
    timestamp: datetime

    def to_payload(self) -> dict:
        return {
            'id': self.id,
            'threadId': self.thread_id,
            'subject': self.subject,
            'from': self.from_,
            'body': self.body,
            'timestamp': self.timestamp.isoformat(),
        }


class MessageFilters(BaseModel):
    sender: Optional[str] = None
    subject: Optional[str] = None
    date_from: Optional[date] = None
    date_to: Optional[date] = None


# =============================================================================
# Request bodies
# =============================================================================

class GenerateRepliesRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    message: str = Field(..., min_length=1)
    message_id: Optional[str] = Field(None, alias="messageId")
    platform: Platform
    language: str = "auto"
    subject: Optional[str] = None

    @field_validator("message")
    @classmethod
    def message_not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("message must not be blank")
        return v


class WhatsAppSendRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    to: str
    body: str
    reply_id: Optional[str] = Field(None, alias="replyId")


class GmailSendRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    thread_id: str = Field(..., alias="threadId")
    reply_text: str = Field(..., alias="replyText")
    message_id: Optional[str] = Field(None, alias="messageId")
    reply_id: Optional[str] = Field(None, alias="replyId")
