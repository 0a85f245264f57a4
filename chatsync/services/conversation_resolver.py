import logging
import uuid
from typing import List, Optional

from chatsync.errors import DuplicateKey, InvalidArgument, PartialCreateFailure, StoreFailure, Unauthenticated
from chatsync.repositories.conversation_repository import ConversationRepository, direct_key
from chatsync.repositories.member_repository import MemberRepository
from chatsync.schemas.conversation import EnsureDirectResult


logger = logging.getLogger(__name__)


class ConversationResolver:
    """Finds or creates conversations without a cross-collection transaction.

    Creation writes the conversation, then the creator's membership, then the
    other memberships. A failure after the first write removes what was
    written before the error reaches the caller, so no conversation is left
    with only part of its members.
    """

    def __init__(self, conversation_repo: ConversationRepository, member_repo: MemberRepository) -> None:
        self._conversation_repo = conversation_repo
        self._member_repo = member_repo

    async def find_direct(self, user_id: str, other_user_id: str) -> Optional[str]:
        conversation_ids = await self._member_repo.conversation_ids_for_user(user_id)
        shared = await self._member_repo.conversations_with_member(conversation_ids, other_user_id)
        conversation = await self._conversation_repo.find_direct(shared)
        return str(conversation["_id"]) if conversation else None

    async def ensure_direct(self, current_user_id: Optional[str], target_user_id: Optional[str]) -> EnsureDirectResult:
        if not current_user_id:
            raise Unauthenticated()
        if not target_user_id:
            raise InvalidArgument("Target user is required for new conversation")
        if target_user_id == current_user_id:
            raise InvalidArgument("Cannot start a conversation with yourself")

        existing = await self.find_direct(current_user_id, target_user_id)
        if existing:
            return EnsureDirectResult(id=existing, is_new=False)

        try:
            conversation_id = await self.create_conversation(current_user_id, [current_user_id, target_user_id])
        except DuplicateKey:
            # lost a race with a concurrent ensure_direct for the same pair
            winner = await self._conversation_repo.find_by_direct_key(direct_key(current_user_id, target_user_id))
            if winner is None:
                raise StoreFailure("Direct conversation vanished after conflict")
            return EnsureDirectResult(id=str(winner["_id"]), is_new=False)
        return EnsureDirectResult(id=conversation_id, is_new=True)

    async def create_conversation(
        self,
        creator_id: str,
        member_ids: List[str],
        is_group: bool = False,
        name: Optional[str] = None,
        group_image: Optional[str] = None,
    ) -> str:
        if not creator_id:
            raise Unauthenticated()
        others = []
        for member_id in member_ids:
            if member_id and member_id != creator_id and member_id not in others:
                others.append(member_id)
        if not others:
            raise InvalidArgument("A conversation needs at least one other member")
        if not is_group and len(others) != 1:
            raise InvalidArgument("A direct conversation has exactly two members")

        conversation_id = str(uuid.uuid4())
        key = None if is_group else direct_key(creator_id, others[0])
        await self._conversation_repo.create(conversation_id, is_group, name=name, group_image=group_image, key=key)

        try:
            await self._member_repo.add_member(conversation_id, creator_id)
        except StoreFailure as exc:
            await self._rollback(conversation_id)
            raise PartialCreateFailure(exc.message) from exc

        try:
            await self._member_repo.add_members(conversation_id, others)
        except StoreFailure as exc:
            await self._rollback(conversation_id)
            raise PartialCreateFailure(exc.message) from exc

        logger.info("Created %s conversation %s", "group" if is_group else "direct", conversation_id)
        return conversation_id

    async def _rollback(self, conversation_id: str) -> None:
        logger.error("Rolling back conversation %s after membership failure", conversation_id)
        try:
            await self._conversation_repo.delete(conversation_id)
        except StoreFailure:
            logger.exception("Could not delete conversation %s during rollback", conversation_id)
        try:
            await self._member_repo.delete_for_conversation(conversation_id)
        except StoreFailure:
            logger.exception("Could not delete members of %s during rollback", conversation_id)
