from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    # wire payloads use camelCase, python side stays snake_case
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)

    def to_wire(self) -> dict:
        return self.model_dump(mode="json", by_alias=True)


class ChatMessageIn(CamelModel):
    """Payload of a client ``chatMessage`` event or a POSTed message."""

    classroom_id: Optional[str] = None
    content: Optional[str] = None
    type: Optional[str] = None
    attachment_url: Optional[str] = None
    # older clients send image messages with imageUrl
    image_url: Optional[str] = None

    model_config = ConfigDict(extra="ignore")

    def resolved_attachment_url(self) -> Optional[str]:
        return self.attachment_url or self.image_url


class MessageOut(CamelModel):
    message_id: str
    classroom_id: str
    sender_id: str
    sender_username: str
    content: Optional[str] = None
    type: str
    attachment_url: Optional[str] = None
    timestamp: datetime


class FileEntryOut(CamelModel):
    file_id: str
    file_name: str
    file_url: str
    file_size: int
    file_mime_type: str
    uploader_id: str
    category: str
    upload_date: datetime
    folder: Optional[str] = None
    public_id: Optional[str] = None


class ClassroomCreate(CamelModel):
    name: str
    class_code: Optional[str] = None


class JoinClassroomRequest(CamelModel):
    class_code: str


class ClassroomOut(CamelModel):
    class_id: str
    class_code: str
    name: str
    teacher_id: str
    student_ids: List[str] = []
    created_at: datetime
    message_count: int = 0
    file_count: int = 0
