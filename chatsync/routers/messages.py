from fastapi import APIRouter, Depends

from chatsync.schemas.message import MarkReadRequest, MarkReadResult, SendMessageRequest, SendMessageResult
from chatsync.services.chat_service import ChatService
from chatsync.utils.dependencies import get_chat_service, get_current_user_id


router = APIRouter(prefix="/messages", tags=["chat"])


@router.post("", response_model=SendMessageResult, status_code=201)
async def send_message(body: SendMessageRequest, current_user_id: str = Depends(get_current_user_id), service: ChatService = Depends(get_chat_service)):
    return await service.send_message(current_user_id, body)


@router.post("/mark_read", response_model=MarkReadResult)
async def mark_read(body: MarkReadRequest, current_user_id: str = Depends(get_current_user_id), service: ChatService = Depends(get_chat_service)):
    return await service.mark_messages_read(current_user_id, body.conversation_id)
