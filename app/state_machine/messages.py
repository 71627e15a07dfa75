"""
Inbound message and processing result types
"""
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Optional

from app.db.models.conversation import Conversation


class MessageType(str, Enum):
    TEXT = "text"
    IMAGE = "image"
    DOCUMENT = "document"
    AUDIO = "audio"
    VIDEO = "video"


@dataclass
class InboundMessage:
    """הודעה נכנסת אחרי חילוץ הגוף מה-payload של הספק"""

    sender: str
    body: str
    message_id: str
    timestamp: Optional[datetime] = None
    type: MessageType = MessageType.TEXT


@dataclass
class ProcessMessageResult:
    conversation: Conversation
    response: str
    should_end_conversation: bool = False
    metadata: dict[str, Any] = field(default_factory=dict)
