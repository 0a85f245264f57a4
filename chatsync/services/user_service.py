import logging
from typing import List

from chatsync import config
from chatsync.errors import NotFound, StoreFailure
from chatsync.repositories.user_repository import UserRepository
from chatsync.schemas.user import UserProfile, UserSearchResult


logger = logging.getLogger(__name__)

MIN_QUERY_LENGTH = 2


class UserService:
    """Read-only access to profiles owned by the identity provider."""

    def __init__(self, user_repository: UserRepository):
        self.user_repository = user_repository

    async def get_profile(self, user_id: str) -> UserProfile:
        doc = await self.user_repository.get_profile(user_id)
        if not doc:
            raise NotFound("Profile not found")
        return UserProfile.from_document(doc)

    async def search_users(self, user_id: str, query: str) -> List[UserSearchResult]:
        """
        Search other users by username or full name
        - Queries shorter than two characters return nothing
        - The caller is never part of the result
        - Store errors return an empty list
        """
        term = (query or "").strip()
        if len(term) < MIN_QUERY_LENGTH or not user_id:
            return []
        try:
            docs = await self.user_repository.search(term, exclude_id=user_id, limit=config.SEARCH_LIMIT)
        except StoreFailure:
            logger.warning("User search failed", exc_info=True)
            return []
        return [
            UserSearchResult(
                id=str(doc["_id"]),
                username=doc.get("username"),
                full_name=doc.get("full_name"),
                avatar_url=doc.get("avatar_url"),
            )
            for doc in docs
        ]
