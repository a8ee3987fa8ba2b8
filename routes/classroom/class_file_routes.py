from typing import List, Optional

from fastapi import APIRouter, File, Form, Query, UploadFile, status

from dependencies import CurrentIdentityDep, FileDepositPipelineDep
from models.classroom.chat_schemas import FileEntryOut
from services.errors import InvalidArgumentError

router = APIRouter(prefix="/api/classrooms", tags=["ClassroomFiles"])


# Deposit a file in the classroom (multipart: file, category, folder)
@router.post("/{class_id}/files", status_code=status.HTTP_201_CREATED)
async def deposit_file(
    class_id: str,
    identity: CurrentIdentityDep,
    pipeline: FileDepositPipelineDep,
    file: Optional[UploadFile] = File(None),
    category: Optional[str] = Form(None),
    folder: Optional[str] = Form(None),
):
    if file is None:
        raise InvalidArgumentError("No file was selected.")
    if not category:
        raise InvalidArgumentError(
            "Invalid file category. Choose one of: exercise, homework, correction, general"
        )
    data = await file.read(pipeline.max_bytes + 1)
    stored = await pipeline.deposit_file(
        identity,
        class_id,
        data,
        file.filename or "",
        file.content_type or "",
        category=category,
        folder=folder,
    )
    return {
        "success": True,
        "message": "File uploaded and saved successfully!",
        "fileUrl": stored["file_url"],
        "file": FileEntryOut(**stored).to_wire(),
    }


# File browser: deposited files, optionally narrowed to one category
@router.get("/{class_id}/files", response_model=List[FileEntryOut])
async def list_files(
    class_id: str,
    identity: CurrentIdentityDep,
    pipeline: FileDepositPipelineDep,
    category: Optional[str] = Query(None),
):
    files = await pipeline.list_files(identity, class_id, category=category)
    return [FileEntryOut(**f) for f in files]
