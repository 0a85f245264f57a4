from typing import List

from fastapi import APIRouter, Depends, Query

from chatsync.database.connection import mongo_db_dependency
from chatsync.repositories.user_repository import UserRepository
from chatsync.schemas.user import UserProfile, UserSearchResult
from chatsync.services.user_service import UserService
from chatsync.utils.dependencies import get_current_user_id


router = APIRouter(prefix="/users", tags=["users"])


def get_user_service(db = Depends(mongo_db_dependency)) -> UserService:
    return UserService(UserRepository(db))


@router.get("/me", response_model=UserProfile)
async def me(current_user_id: str = Depends(get_current_user_id), service: UserService = Depends(get_user_service)):
    return await service.get_profile(current_user_id)


@router.get("/search", response_model=List[UserSearchResult])
async def search(q: str = Query("", max_length=100), current_user_id: str = Depends(get_current_user_id), service: UserService = Depends(get_user_service)):
    return await service.search_users(current_user_id, q)


@router.get("/{user_id}", response_model=UserProfile)
async def profile(user_id: str, current_user_id: str = Depends(get_current_user_id), service: UserService = Depends(get_user_service)):
    return await service.get_profile(user_id)
