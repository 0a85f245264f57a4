from typing import Optional

from pydantic import BaseModel


class UserProfile(BaseModel):

    id: str
    username: Optional[str] = None
    full_name: Optional[str] = None
    avatar_url: Optional[str] = None
    status: Optional[str] = None

    @classmethod
    def from_document(cls, doc: dict) -> "UserProfile":
        return cls(
            id=str(doc["_id"]),
            username=doc.get("username"),
            full_name=doc.get("full_name"),
            avatar_url=doc.get("avatar_url"),
            status=doc.get("status"),
        )


class UserSearchResult(BaseModel):

    id: str
    username: Optional[str] = None
    full_name: Optional[str] = None
    avatar_url: Optional[str] = None


class UploadResult(BaseModel):

    file_path: str
    signed_url: str
