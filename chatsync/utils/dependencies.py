from typing import Optional

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from chatsync.database.connection import mongo_db_dependency
from chatsync.errors import Unauthenticated
from chatsync.repositories.conversation_repository import ConversationRepository
from chatsync.repositories.member_repository import MemberRepository
from chatsync.repositories.message_repository import MessageRepository
from chatsync.repositories.user_repository import UserRepository
from chatsync.services.chat_service import ChatService
from chatsync.services.conversation_directory import ConversationDirectory
from chatsync.services.conversation_resolver import ConversationResolver
from chatsync.utils.realtime_bus import BaseBus
from chatsync.utils.security import user_id_from_token


bearer_scheme = HTTPBearer(auto_error=False)


async def get_current_user_id(credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme)) -> str:
    if credentials is None:
        raise Unauthenticated()
    return user_id_from_token(credentials.credentials)


def get_bus(request: Request) -> BaseBus:
    return request.app.state.bus


def get_resolver(db = Depends(mongo_db_dependency)) -> ConversationResolver:
    return ConversationResolver(ConversationRepository(db), MemberRepository(db))


def get_chat_service(db = Depends(mongo_db_dependency), bus: BaseBus = Depends(get_bus)) -> ChatService:
    convo_repo = ConversationRepository(db)
    member_repo = MemberRepository(db)
    return ChatService(MessageRepository(db), convo_repo, member_repo, ConversationResolver(convo_repo, member_repo), bus=bus)


def get_directory(db = Depends(mongo_db_dependency)) -> ConversationDirectory:
    return ConversationDirectory(ConversationRepository(db), MemberRepository(db), MessageRepository(db), UserRepository(db))


def get_member_repository(db = Depends(mongo_db_dependency)) -> MemberRepository:
    return MemberRepository(db)
