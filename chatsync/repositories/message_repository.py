import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import ASCENDING, DESCENDING

from chatsync.models.message import MessageDocument
from chatsync.repositories.base import store_call


class MessageRepository:

    def __init__(self, db: AsyncIOMotorDatabase) -> None:
        self._db = db

    @property
    def collection(self):
        return self._db["messages"]

    @store_call
    async def ensure_indexes(self) -> None:
        await self.collection.create_index([("conversation_id", ASCENDING), ("created_at", ASCENDING)])
        await self.collection.create_index([("conversation_id", ASCENDING), ("status", ASCENDING)])

    @store_call
    async def insert(
        self,
        conversation_id: str,
        sender_id: str,
        content: Optional[str],
        type: str = "text",
        file_path: Optional[str] = None,
    ) -> MessageDocument:
        doc: MessageDocument = {
            "_id": str(uuid.uuid4()),
            "conversation_id": conversation_id,
            "sender_id": sender_id,
            "content": content,
            "type": type,
            "file_path": file_path,
            "created_at": datetime.now(timezone.utc),
            "is_edited": False,
            "status": "sent",
        }
        await self.collection.insert_one(doc)
        return doc

    @store_call
    async def list_for_conversation(self, conversation_id: str, limit: Optional[int] = None) -> List[MessageDocument]:
        cursor = self.collection.find({"conversation_id": conversation_id}).sort([("created_at", ASCENDING), ("_id", ASCENDING)])
        if limit:
            cursor = cursor.limit(limit)
        return await cursor.to_list(length=limit)

    @store_call
    async def latest_for_conversations(self, conversation_ids: List[str]) -> Dict[str, Dict[str, Any]]:
        if not conversation_ids:
            return {}
        pipeline = [
            {"$match": {"conversation_id": {"$in": conversation_ids}}},
            {"$sort": {"created_at": DESCENDING}},
            {"$group": {"_id": "$conversation_id", "content": {"$first": "$content"}, "created_at": {"$first": "$created_at"}}},
        ]
        rows = await self.collection.aggregate(pipeline).to_list(length=len(conversation_ids))
        return {row["_id"]: row for row in rows}

    @store_call
    async def unread_inbound_ids(self, conversation_id: str, reader_id: str) -> List[str]:
        query = {"conversation_id": conversation_id, "sender_id": {"$ne": reader_id}, "status": {"$ne": "read"}}
        return await self.collection.distinct("_id", query)

    @store_call
    async def mark_read(self, message_ids: List[str]) -> int:
        if not message_ids:
            return 0
        result = await self.collection.update_many(
            {"_id": {"$in": message_ids}, "status": {"$ne": "read"}},
            {"$set": {"status": "read"}},
        )
        return result.modified_count or 0
