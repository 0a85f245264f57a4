from datetime import datetime
from typing import Optional, TypedDict


class ConversationDocument(TypedDict, total=False):
    _id: str
    is_group: bool
    name: Optional[str]
    group_image: Optional[str]
    # sorted "user_a:user_b" pair; only set on direct conversations (unique index)
    direct_key: Optional[str]
    created_at: datetime
    last_message_at: datetime


class ConversationMemberDocument(TypedDict, total=False):
    _id: str
    conversation_id: str
    user_id: str
    joined_at: datetime
