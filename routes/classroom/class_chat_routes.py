from typing import List, Optional

from fastapi import APIRouter, File, UploadFile, status

from dependencies import (
    ClassroomStoreDep,
    CurrentIdentityDep,
    FileDepositPipelineDep,
    MessagePipelineDep,
)
from models.classroom.chat_schemas import ChatMessageIn, MessageOut
from services.errors import InvalidArgumentError

router = APIRouter(tags=["ClassroomChat"])


# get all messages for a class, in the order they were posted
@router.get("/api/classrooms/{class_id}/messages", response_model=List[MessageOut])
async def get_messages(class_id: str, identity: CurrentIdentityDep, store: ClassroomStoreDep):
    classroom = await store.get_classroom_for_member(class_id, identity.user_id)
    return [MessageOut(classroom_id=class_id, **m) for m in classroom.messages]


# non-realtime submission: same pipeline, but failures come back as HTTP errors
@router.post("/api/classrooms/{class_id}/messages", status_code=status.HTTP_201_CREATED)
async def post_message(
    class_id: str,
    payload: ChatMessageIn,
    identity: CurrentIdentityDep,
    pipeline: MessagePipelineDep,
):
    message = await pipeline.submit_message(
        identity,
        class_id,
        content=payload.content,
        message_type=payload.type,
        attachment_url=payload.resolved_attachment_url(),
    )
    return {"success": True, "message": message}


@router.post("/api/chat/upload-attachment")
async def upload_chat_attachment(
    identity: CurrentIdentityDep,
    pipeline: FileDepositPipelineDep,
    file: Optional[UploadFile] = File(None),
):
    """Store an image or document for a chat message.

    The returned URL is then sent as ``attachmentUrl`` of an image/file
    ``chatMessage``.
    """
    if file is None:
        raise InvalidArgumentError("No file uploaded.")
    # never buffer more than one byte past the limit
    data = await file.read(pipeline.attachment_max_bytes + 1)
    stored = await pipeline.upload_chat_attachment(
        identity, data, file.filename or "", file.content_type or ""
    )
    url_key = "imageUrl" if stored["file_type"] == "image" else "fileUrl"
    return {
        "success": True,
        url_key: stored["url"],
        "fileType": stored["file_type"],
        "fileName": stored["file_name"],
    }
