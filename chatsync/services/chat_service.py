import logging
from typing import List, Optional

from chatsync.errors import Forbidden, InvalidArgument, StoreFailure, Unauthenticated
from chatsync.repositories.conversation_repository import ConversationRepository
from chatsync.repositories.member_repository import MemberRepository
from chatsync.repositories.message_repository import MessageRepository
from chatsync.schemas.events import UPDATE
from chatsync.schemas.message import MarkReadResult, Message, SendMessageRequest, SendMessageResult
from chatsync.services.conversation_resolver import ConversationResolver
from chatsync.utils.realtime_bus import BaseBus


logger = logging.getLogger(__name__)

NEW_CONVERSATION_ALIAS = "new"


class ChatService:

    def __init__(
        self,
        message_repo: MessageRepository,
        conversation_repo: ConversationRepository,
        member_repo: MemberRepository,
        resolver: ConversationResolver,
        bus: Optional[BaseBus] = None,
    ) -> None:
        self._message_repo = message_repo
        self._conversation_repo = conversation_repo
        self._member_repo = member_repo
        self._resolver = resolver
        self._bus = bus

    async def get_messages(self, user_id: str, conversation_id: str) -> List[Message]:
        """Oldest-first snapshot of a conversation; empty on any failure."""
        try:
            if not await self._member_repo.is_member(conversation_id, user_id):
                logger.warning("User %s is not a member of %s", user_id, conversation_id)
                return []
            docs = await self._message_repo.list_for_conversation(conversation_id)
        except StoreFailure:
            logger.warning("Loading messages of %s failed", conversation_id, exc_info=True)
            return []
        return [Message.from_document(doc) for doc in docs]

    async def send_message(self, user_id: Optional[str], request: SendMessageRequest) -> SendMessageResult:
        if not user_id:
            raise Unauthenticated()

        content = (request.content or "").strip() or None
        if content is None and not request.file_path:
            raise InvalidArgument("Message cannot be empty")

        conversation_id = request.conversation_id
        created_conversation = False
        if not conversation_id or conversation_id == NEW_CONVERSATION_ALIAS:
            if not request.target_user_id:
                raise InvalidArgument("Target user is required for new conversation")
            if request.target_user_id == user_id:
                raise InvalidArgument("Cannot message yourself")
            resolved = await self._resolver.ensure_direct(user_id, request.target_user_id)
            conversation_id = resolved.id
            created_conversation = resolved.is_new
        elif not await self._member_repo.is_member(conversation_id, user_id):
            raise Forbidden("Not a member of this conversation")

        doc = await self._message_repo.insert(
            conversation_id,
            user_id,
            content,
            type=request.type,
            file_path=request.file_path,
        )
        await self._conversation_repo.touch(conversation_id, doc["created_at"])
        member_ids = await self._member_repo.member_ids(conversation_id)

        return SendMessageResult(
            conversation_id=conversation_id,
            message_id=doc["_id"],
            created_at=doc["created_at"],
            created_conversation=created_conversation,
            member_ids=member_ids,
        )

    async def mark_messages_read(self, user_id: Optional[str], conversation_id: str) -> MarkReadResult:
        if not user_id:
            raise Unauthenticated()
        if not conversation_id:
            raise InvalidArgument("conversation_id is required")
        if not await self._member_repo.is_member(conversation_id, user_id):
            raise Forbidden("Not a member of this conversation")

        message_ids = await self._message_repo.unread_inbound_ids(conversation_id, user_id)
        updated = await self._message_repo.mark_read(message_ids)

        if self._bus is not None:
            for message_id in message_ids:
                row = {"id": message_id, "conversation_id": conversation_id, "status": "read"}
                await self._bus.publish_change("messages", UPDATE, row, columns=("conversation_id",))
        return MarkReadResult(updated_count=updated, message_ids=list(message_ids))
