import logging
from typing import Any, Dict, List, Optional

from chatsync.errors import NotFound, StoreFailure
from chatsync.realtime.ordering import sort_by_activity
from chatsync.repositories.conversation_repository import ConversationRepository
from chatsync.repositories.member_repository import MemberRepository
from chatsync.repositories.message_repository import MessageRepository
from chatsync.repositories.user_repository import UserRepository
from chatsync.schemas.conversation import ConversationListItem


logger = logging.getLogger(__name__)

UNNAMED_GROUP = "Unnamed group"
UNKNOWN_USER = "Unknown user"


def other_member_id(member_ids: List[str], user_id: str) -> Optional[str]:
    for member_id in member_ids:
        if member_id != user_id:
            return member_id
    return None


def build_list_item(
    conversation: Dict[str, Any],
    member_ids: List[str],
    profiles: Dict[str, Dict[str, Any]],
    latest: Optional[Dict[str, Any]],
    user_id: str,
) -> ConversationListItem:
    is_group = bool(conversation.get("is_group"))
    other_id = None if is_group else other_member_id(member_ids, user_id)
    other = profiles.get(other_id) if other_id else None

    if is_group:
        name = conversation.get("name") or UNNAMED_GROUP
        avatar_url = conversation.get("group_image")
    else:
        name = (other or {}).get("username") or (other or {}).get("full_name") or UNKNOWN_USER
        avatar_url = (other or {}).get("avatar_url")

    return ConversationListItem(
        id=str(conversation["_id"]),
        name=name,
        avatar_url=avatar_url,
        last_message=(latest or {}).get("content"),
        last_message_at=(latest or {}).get("created_at") or conversation.get("last_message_at"),
        is_group=is_group,
        other_user_id=other_id,
    )


class ConversationDirectory:

    def __init__(
        self,
        conversation_repo: ConversationRepository,
        member_repo: MemberRepository,
        message_repo: MessageRepository,
        user_repo: UserRepository,
    ) -> None:
        self._conversation_repo = conversation_repo
        self._member_repo = member_repo
        self._message_repo = message_repo
        self._user_repo = user_repo

    async def list(self, user_id: str) -> List[ConversationListItem]:
        """Conversations of user_id, most recent activity first.

        Any store error yields an empty list rather than a partial one.
        """
        try:
            conversation_ids = await self._member_repo.conversation_ids_for_user(user_id)
            if not conversation_ids:
                return []
            conversations = await self._conversation_repo.get_many(conversation_ids)
            items = await self._build(conversations, user_id)
        except StoreFailure:
            logger.warning("Conversation list for %s failed", user_id, exc_info=True)
            return []
        return sort_by_activity(items)

    async def get_by_id(self, user_id: str, conversation_id: str) -> ConversationListItem:
        if not await self._member_repo.is_member(conversation_id, user_id):
            raise NotFound("Conversation not found")
        conversation = await self._conversation_repo.get(conversation_id)
        if conversation is None:
            raise NotFound("Conversation not found")
        items = await self._build([conversation], user_id)
        return items[0]

    async def _build(self, conversations: List[Dict[str, Any]], user_id: str) -> List[ConversationListItem]:
        ids = [str(c["_id"]) for c in conversations]
        members = await self._member_repo.members_for_conversations(ids)
        member_ids: Dict[str, List[str]] = {}
        for row in members:
            member_ids.setdefault(row["conversation_id"], []).append(row["user_id"])

        profile_ids = {uid for uids in member_ids.values() for uid in uids if uid != user_id}
        profiles = await self._user_repo.get_profiles(sorted(profile_ids))
        latest = await self._message_repo.latest_for_conversations(ids)

        return [
            build_list_item(c, member_ids.get(str(c["_id"]), []), profiles, latest.get(str(c["_id"])), user_id)
            for c in conversations
        ]
