from datetime import datetime, timezone
from typing import List

from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import ASCENDING

from chatsync.models.conversation import ConversationMemberDocument
from chatsync.repositories.base import store_call


class MemberRepository:

    def __init__(self, db: AsyncIOMotorDatabase) -> None:
        self._db = db

    @property
    def collection(self):
        return self._db["conversation_members"]

    @store_call
    async def ensure_indexes(self) -> None:
        await self.collection.create_index([("conversation_id", ASCENDING), ("user_id", ASCENDING)], unique=True)
        await self.collection.create_index([("user_id", ASCENDING)])

    @store_call
    async def add_member(self, conversation_id: str, user_id: str) -> None:
        await self.collection.insert_one(
            {"conversation_id": conversation_id, "user_id": user_id, "joined_at": datetime.now(timezone.utc)}
        )

    @store_call
    async def add_members(self, conversation_id: str, user_ids: List[str]) -> None:
        if not user_ids:
            return
        now = datetime.now(timezone.utc)
        await self.collection.insert_many(
            [{"conversation_id": conversation_id, "user_id": uid, "joined_at": now} for uid in user_ids]
        )

    @store_call
    async def conversation_ids_for_user(self, user_id: str) -> List[str]:
        return await self.collection.distinct("conversation_id", {"user_id": user_id})

    @store_call
    async def conversations_with_member(self, conversation_ids: List[str], user_id: str) -> List[str]:
        if not conversation_ids:
            return []
        return await self.collection.distinct(
            "conversation_id", {"conversation_id": {"$in": conversation_ids}, "user_id": user_id}
        )

    @store_call
    async def members_for_conversations(self, conversation_ids: List[str]) -> List[ConversationMemberDocument]:
        if not conversation_ids:
            return []
        cursor = self.collection.find({"conversation_id": {"$in": conversation_ids}}).sort("joined_at", ASCENDING)
        return await cursor.to_list(length=None)

    @store_call
    async def member_ids(self, conversation_id: str) -> List[str]:
        return await self.collection.distinct("user_id", {"conversation_id": conversation_id})

    @store_call
    async def is_member(self, conversation_id: str, user_id: str) -> bool:
        return await self.collection.count_documents({"conversation_id": conversation_id, "user_id": user_id}, limit=1) > 0

    @store_call
    async def delete_for_conversation(self, conversation_id: str) -> None:
        await self.collection.delete_many({"conversation_id": conversation_id})
