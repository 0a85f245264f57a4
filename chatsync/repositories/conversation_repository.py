from datetime import datetime, timezone
from typing import List, Optional

from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import ASCENDING, DESCENDING

from chatsync.models.conversation import ConversationDocument
from chatsync.repositories.base import store_call


def direct_key(user_a: str, user_b: str) -> str:
    return ":".join(sorted([user_a, user_b]))


class ConversationRepository:

    def __init__(self, db: AsyncIOMotorDatabase) -> None:
        self._db = db

    @property
    def collection(self):
        return self._db["conversations"]

    @store_call
    async def ensure_indexes(self) -> None:
        await self.collection.create_index(
            [("direct_key", ASCENDING)],
            unique=True,
            partialFilterExpression={"direct_key": {"$type": "string"}},
        )
        await self.collection.create_index([("last_message_at", DESCENDING)])

    @store_call
    async def create(
        self,
        conversation_id: str,
        is_group: bool,
        name: Optional[str] = None,
        group_image: Optional[str] = None,
        key: Optional[str] = None,
    ) -> ConversationDocument:
        now = datetime.now(timezone.utc)
        doc: ConversationDocument = {
            "_id": conversation_id,
            "is_group": is_group,
            "name": name,
            "group_image": group_image,
            "created_at": now,
            "last_message_at": now,
        }
        if key is not None:
            doc["direct_key"] = key
        await self.collection.insert_one(doc)
        return doc

    @store_call
    async def get(self, conversation_id: str) -> Optional[ConversationDocument]:
        return await self.collection.find_one({"_id": conversation_id})

    @store_call
    async def get_many(self, conversation_ids: List[str]) -> List[ConversationDocument]:
        if not conversation_ids:
            return []
        cursor = self.collection.find({"_id": {"$in": conversation_ids}}).sort("last_message_at", DESCENDING)
        return await cursor.to_list(length=len(conversation_ids))

    @store_call
    async def find_direct(self, conversation_ids: List[str]) -> Optional[ConversationDocument]:
        if not conversation_ids:
            return None
        return await self.collection.find_one({"_id": {"$in": conversation_ids}, "is_group": False})

    @store_call
    async def find_by_direct_key(self, key: str) -> Optional[ConversationDocument]:
        return await self.collection.find_one({"direct_key": key})

    @store_call
    async def touch(self, conversation_id: str, at: Optional[datetime] = None) -> None:
        await self.collection.update_one(
            {"_id": conversation_id},
            {"$set": {"last_message_at": at or datetime.now(timezone.utc)}},
        )

    @store_call
    async def delete(self, conversation_id: str) -> None:
        await self.collection.delete_one({"_id": conversation_id})
