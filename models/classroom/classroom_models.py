from sqlalchemy import Column, String, DateTime, ForeignKey, JSON
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.ext.mutable import MutableList
from datetime import datetime, timezone
from db import Base
import enum

# JSONB on PostgreSQL, plain JSON elsewhere (SQLite in tests)
JSONDocument = JSON().with_variant(JSONB(), "postgresql")


class MessageType(enum.Enum):
    text = "text"
    math = "math"
    image = "image"
    file = "file"


# types whose payload is a reference to stored binary content
ATTACHMENT_TYPES = (MessageType.image, MessageType.file)


class FileCategory(enum.Enum):
    exercise = "exercise"
    homework = "homework"
    correction = "correction"
    general = "general"


def _utcnow():
    return datetime.now(timezone.utc)


class Classroom(Base):
    """One classroom document: roster, chat log and file log.

    ``messages`` and ``files`` are append-only lists of plain dicts (see
    ``services.classroom_store`` for their keys). They are embedded in the row
    rather than kept in their own tables.
    """

    __tablename__ = "classrooms"

    class_id = Column(String, primary_key=True, index=True)
    class_code = Column(String, nullable=False, unique=True, index=True)
    name = Column(String, nullable=False)
    teacher_id = Column(String, ForeignKey("users.user_id"), nullable=False, index=True)
    student_ids = Column(MutableList.as_mutable(JSONDocument), nullable=False, default=list)
    messages = Column(MutableList.as_mutable(JSONDocument), nullable=False, default=list)
    files = Column(MutableList.as_mutable(JSONDocument), nullable=False, default=list)
    created_at = Column(DateTime(timezone=True), default=_utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow, nullable=False)

    def is_member(self, user_id: str) -> bool:
        return user_id == self.teacher_id or user_id in (self.student_ids or [])

    def __repr__(self):
        return f"<Classroom(class_id={self.class_id}, class_code={self.class_code}, name={self.name})>"
