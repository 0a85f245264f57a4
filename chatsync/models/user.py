from typing import Optional, TypedDict


class ProfileDocument(TypedDict, total=False):

    _id: str
    username: Optional[str]
    full_name: Optional[str]
    avatar_url: Optional[str]
    status: Optional[str]
