from datetime import datetime
from typing import Any, Dict, Optional

from pydantic import BaseModel


# broadcast event names
NEW_MESSAGE = "new-message"
NEW_CONVERSATION = "new-conversation"
MESSAGE_UPDATE = "message-update"
PRESENCE_SYNC = "sync"

# change-notification event
UPDATE = "UPDATE"


def conversation_channel(conversation_id: str) -> str:
    return f"conversation:{conversation_id}"


def inbox_channel(user_id: str) -> str:
    return f"user:{user_id}:inbox"


def changes_channel(table: str, column: str, value: str) -> str:
    return f"changes:{table}:{column}=eq.{value}"


class NewConversationEvent(BaseModel):

    conversation_id: str
    last_message: Optional[str] = None
    last_message_at: Optional[datetime] = None


class MessageUpdateEvent(BaseModel):

    conversation_id: str
    content: Optional[str] = None
    created_at: Optional[datetime] = None


class ChangeEvent(BaseModel):
    """Row change notification as delivered by the transport."""

    table: str
    type: str
    new: Dict[str, Any]
