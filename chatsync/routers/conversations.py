from typing import List

from fastapi import APIRouter, Depends

from chatsync.schemas.conversation import (
    ConversationListItem,
    CreateGroupRequest,
    CreatedConversation,
    EnsureDirectRequest,
    EnsureDirectResult,
)
from chatsync.schemas.message import Message
from chatsync.services.chat_service import ChatService
from chatsync.services.conversation_directory import ConversationDirectory
from chatsync.services.conversation_resolver import ConversationResolver
from chatsync.utils.dependencies import get_chat_service, get_current_user_id, get_directory, get_resolver


router = APIRouter(prefix="/conversations", tags=["chat"])


@router.get("", response_model=List[ConversationListItem])
async def list_conversations(current_user_id: str = Depends(get_current_user_id), directory: ConversationDirectory = Depends(get_directory)):
    return await directory.list(current_user_id)


@router.post("/direct", response_model=EnsureDirectResult)
async def ensure_direct(body: EnsureDirectRequest, current_user_id: str = Depends(get_current_user_id), resolver: ConversationResolver = Depends(get_resolver)):
    return await resolver.ensure_direct(current_user_id, body.target_user_id)


@router.post("", response_model=CreatedConversation, status_code=201)
async def create_group(body: CreateGroupRequest, current_user_id: str = Depends(get_current_user_id), resolver: ConversationResolver = Depends(get_resolver)):
    conversation_id = await resolver.create_conversation(current_user_id, body.member_ids, is_group=True, name=body.name)
    return CreatedConversation(id=conversation_id)


@router.get("/{conversation_id}", response_model=ConversationListItem)
async def get_conversation(conversation_id: str, current_user_id: str = Depends(get_current_user_id), directory: ConversationDirectory = Depends(get_directory)):
    return await directory.get_by_id(current_user_id, conversation_id)


@router.get("/{conversation_id}/messages", response_model=List[Message])
async def list_messages(conversation_id: str, current_user_id: str = Depends(get_current_user_id), service: ChatService = Depends(get_chat_service)):
    return await service.get_messages(current_user_id, conversation_id)
