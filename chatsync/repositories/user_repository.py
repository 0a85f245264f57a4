import re
from typing import Dict, List, Optional

from motor.motor_asyncio import AsyncIOMotorDatabase

from chatsync.models.user import ProfileDocument
from chatsync.repositories.base import store_call


class UserRepository:

    def __init__(self, db: AsyncIOMotorDatabase) -> None:
        self._collection = db["profiles"]

    @store_call
    async def get_profile(self, user_id: str) -> Optional[ProfileDocument]:
        return await self._collection.find_one({"_id": user_id})

    @store_call
    async def get_profiles(self, user_ids: List[str]) -> Dict[str, ProfileDocument]:
        if not user_ids:
            return {}
        cursor = self._collection.find({"_id": {"$in": list(user_ids)}})
        docs = await cursor.to_list(length=len(user_ids))
        return {doc["_id"]: doc for doc in docs}

    @store_call
    async def search(self, term: str, exclude_id: str, limit: int = 10) -> List[ProfileDocument]:
        pattern = {"$regex": re.escape(term), "$options": "i"}
        query = {"_id": {"$ne": exclude_id}, "$or": [{"username": pattern}, {"full_name": pattern}]}
        cursor = self._collection.find(query).limit(limit)
        return await cursor.to_list(length=limit)
