import logging
import time
import uuid
from typing import Optional, Tuple

from gridfs.errors import NoFile
from motor.motor_asyncio import AsyncIOMotorGridFSBucket
from pymongo.errors import PyMongoError

from chatsync import config
from chatsync.errors import Forbidden, InvalidArgument, NotFound, StoreFailure
from chatsync.repositories.member_repository import MemberRepository
from chatsync.schemas.user import UploadResult
from chatsync.utils.security import create_signed_path_token, read_signed_path_token


logger = logging.getLogger(__name__)


def attachment_path(conversation_id: str, filename: str) -> str:
    ext = filename.rsplit(".", 1)[-1] if "." in (filename or "") else "bin"
    return f"conversations/{conversation_id}/{int(time.time() * 1000)}_{uuid.uuid4()}.{ext}"


class AttachmentService:

    def __init__(self, bucket: AsyncIOMotorGridFSBucket, member_repo: MemberRepository, ttl_seconds: Optional[int] = None) -> None:
        self._bucket = bucket
        self._member_repo = member_repo
        self._ttl = ttl_seconds or config.SIGNED_URL_TTL_SECONDS

    async def upload(self, user_id: str, conversation_id: str, filename: str, data: bytes, content_type: Optional[str] = None) -> UploadResult:
        if not conversation_id:
            raise InvalidArgument("conversation_id is required")
        if not await self._member_repo.is_member(conversation_id, user_id):
            raise Forbidden("Not a member of this conversation")

        path = attachment_path(conversation_id, filename)
        metadata = {"conversation_id": conversation_id, "uploaded_by": user_id, "content_type": content_type}
        try:
            await self._bucket.upload_from_stream(path, data, metadata=metadata)
        except PyMongoError as exc:
            logger.error("Upload of %s failed: %s", path, exc)
            raise StoreFailure(str(exc)) from exc
        return UploadResult(file_path=path, signed_url=self.signed_url(path))

    def signed_url(self, file_path: str, ttl_seconds: Optional[int] = None) -> str:
        token = create_signed_path_token(file_path, ttl_seconds or self._ttl)
        return f"/attachments/{token}"

    async def open(self, token: str) -> Tuple[str, bytes, Optional[str]]:
        path = read_signed_path_token(token)
        try:
            stream = await self._bucket.open_download_stream_by_name(path)
            data = await stream.read()
        except NoFile as exc:
            raise NotFound("Attachment not found") from exc
        except PyMongoError as exc:
            raise StoreFailure(str(exc)) from exc
        content_type = (stream.metadata or {}).get("content_type")
        return path, data, content_type
