from datetime import datetime
from typing import Literal, Optional, TypedDict


MessageType = Literal["text", "image", "video", "audio"]
MessageStatus = Literal["sent", "read"]


class MessageDocument(TypedDict, total=False):
    _id: str
    conversation_id: str
    sender_id: str
    # None for attachment-only messages
    content: Optional[str]
    type: MessageType
    file_path: Optional[str]
    created_at: datetime
    is_edited: bool
    status: MessageStatus
