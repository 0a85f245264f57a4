from fastapi import APIRouter, Depends, File, UploadFile
from fastapi.responses import Response
from motor.motor_asyncio import AsyncIOMotorGridFSBucket

from chatsync import config
from chatsync.database.connection import mongo_db_dependency
from chatsync.repositories.member_repository import MemberRepository
from chatsync.schemas.user import UploadResult
from chatsync.services.attachment_service import AttachmentService
from chatsync.utils.dependencies import get_current_user_id


router = APIRouter(prefix="/attachments", tags=["attachments"])


def get_attachment_service(db = Depends(mongo_db_dependency)) -> AttachmentService:
    bucket = AsyncIOMotorGridFSBucket(db, bucket_name=config.ATTACHMENTS_BUCKET)
    return AttachmentService(bucket, MemberRepository(db))


@router.post("/{conversation_id}", response_model=UploadResult, status_code=201)
async def upload(conversation_id: str, file: UploadFile = File(...), current_user_id: str = Depends(get_current_user_id), service: AttachmentService = Depends(get_attachment_service)):
    data = await file.read()
    return await service.upload(current_user_id, conversation_id, file.filename or "", data, file.content_type)


@router.get("/{token}")
async def download(token: str, service: AttachmentService = Depends(get_attachment_service)):
    # the signed token is the credential; no bearer header needed
    _, data, content_type = await service.open(token)
    return Response(content=data, media_type=content_type or "application/octet-stream")
