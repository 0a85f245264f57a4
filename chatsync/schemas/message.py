import uuid
from datetime import datetime, timezone
from typing import List, Literal, Optional

from pydantic import BaseModel, Field


MessageType = Literal["text", "image", "video", "audio"]
MessageStatus = Literal["sent", "read"]
# client-side lifecycle of a message in a synchronized view
DeliveryState = Literal["pending", "confirmed", "failed"]


class Message(BaseModel):

    id: str
    conversation_id: str
    sender_id: str
    content: Optional[str] = None
    type: MessageType = "text"
    file_path: Optional[str] = None
    created_at: Optional[datetime] = None
    is_edited: bool = False
    status: MessageStatus = "sent"
    delivery: DeliveryState = "confirmed"

    @classmethod
    def from_document(cls, doc: dict) -> "Message":
        return cls(
            id=str(doc["_id"]),
            conversation_id=doc["conversation_id"],
            sender_id=doc["sender_id"],
            content=doc.get("content"),
            type=doc.get("type") or "text",
            file_path=doc.get("file_path"),
            created_at=doc.get("created_at"),
            is_edited=bool(doc.get("is_edited")),
            status="read" if doc.get("status") == "read" else "sent",
        )

    @classmethod
    def optimistic(cls, conversation_id: str, sender_id: str, content: Optional[str], type: MessageType = "text", file_path: Optional[str] = None) -> "Message":
        return cls(
            id=str(uuid.uuid4()),
            conversation_id=conversation_id,
            sender_id=sender_id,
            content=content,
            type=type,
            file_path=file_path,
            created_at=datetime.now(timezone.utc),
            status="sent",
            delivery="pending",
        )


class SendMessageRequest(BaseModel):

    conversation_id: Optional[str] = None
    target_user_id: Optional[str] = None
    content: str = ""
    type: MessageType = "text"
    file_path: Optional[str] = None


class SendMessageResult(BaseModel):

    conversation_id: str
    message_id: str
    created_at: datetime
    created_conversation: bool = False
    # everyone whose inbox should hear about the message, sender included
    member_ids: List[str] = Field(default_factory=list)


class MarkReadRequest(BaseModel):

    conversation_id: str


class MarkReadResult(BaseModel):

    updated_count: int = 0
    message_ids: List[str] = Field(default_factory=list)
