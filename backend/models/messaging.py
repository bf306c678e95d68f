"""
Messaging Models - client/admin conversations and their messages
"""
from pydantic import BaseModel, Field, field_validator
from typing import Optional, List, Literal
from enum import Enum

from config import MESSAGE_MAX_LENGTH
from models.order import MessageAttachment


class ConversationStatus(str, Enum):
    ACTIVE = "active"
    ARCHIVED = "archived"
    CLOSED = "closed"


class ConversationPriority(str, Enum):
    NORMAL = "normal"
    HIGH = "high"
    URGENT = "urgent"


class MessageType(str, Enum):
    TEXT = "text"
    IMAGE = "image"
    DOCUMENT = "document"
    SYSTEM = "system"


class MessageStatus(str, Enum):
    SENT = "sent"
    DELIVERED = "delivered"
    READ = "read"


# Forward-only progression of a message's delivery state
MESSAGE_STATUS_RANK = {
    MessageStatus.SENT.value: 0,
    MessageStatus.DELIVERED.value: 1,
    MessageStatus.READ.value: 2,
}


class Participant(BaseModel):
    user_id: str
    role: str  # client, admin
    full_name: str
    avatar_url: Optional[str] = None


class ConversationMetadata(BaseModel):
    subject: Optional[str] = None
    priority: ConversationPriority = ConversationPriority.NORMAL
    tags: List[str] = []


class ConversationCreate(BaseModel):
    client_id: str
    client_name: str
    client_avatar: Optional[str] = None
    admin_id: Optional[str] = None  # defaults to the calling admin
    admin_name: Optional[str] = None
    admin_avatar: Optional[str] = None
    order_id: Optional[str] = None
    order_number: Optional[str] = None
    subject: Optional[str] = None
    priority: ConversationPriority = ConversationPriority.NORMAL


class ConversationMetadataUpdate(BaseModel):
    subject: Optional[str] = None
    priority: Optional[ConversationPriority] = None
    tags: Optional[List[str]] = None


class ConversationUpdate(BaseModel):
    status: Optional[ConversationStatus] = None
    metadata: Optional[ConversationMetadataUpdate] = None


class ReplyTo(BaseModel):
    message_id: str
    text: str
    sender_name: str


class MessageCreate(BaseModel):
    recipient_id: str
    text: str = Field(..., min_length=1)
    type: MessageType = MessageType.TEXT
    attachments: List[MessageAttachment] = []
    reply_to: Optional[ReplyTo] = None

    @field_validator("text")
    @classmethod
    def check_text(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("text must not be blank")
        if len(v) > MESSAGE_MAX_LENGTH:
            raise ValueError(f"text must not exceed {MESSAGE_MAX_LENGTH} characters")
        return v


class SystemMessageCreate(BaseModel):
    text: str = Field(..., min_length=1)


class MessageStatusUpdate(BaseModel):
    status: Literal["delivered", "read"]


class MarkMessagesRead(BaseModel):
    sender_id: str
