from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field


class ConversationListItem(BaseModel):

    id: str
    name: str
    avatar_url: Optional[str] = None
    last_message: Optional[str] = None
    last_message_at: Optional[datetime] = None
    is_group: bool = False
    # peer of a direct conversation, None for groups
    other_user_id: Optional[str] = None


class EnsureDirectRequest(BaseModel):

    target_user_id: str


class EnsureDirectResult(BaseModel):

    id: str
    is_new: bool


class CreateGroupRequest(BaseModel):

    member_ids: List[str] = Field(min_length=1)
    name: Optional[str] = None


class CreatedConversation(BaseModel):

    id: str
