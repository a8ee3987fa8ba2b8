from sqlalchemy import Column, String, DateTime, Enum
from datetime import datetime, timezone
from db import Base
import enum


class UserRole(enum.Enum):
    teacher = "teacher"
    student = "student"


class User(Base):
    """Account record owned by the user-management side.

    The chat core only reads it to resolve who is behind a session.
    """

    __tablename__ = "users"

    user_id = Column(String, primary_key=True, index=True)
    username = Column(String, nullable=False, unique=True, index=True)
    role = Column(Enum(UserRole), nullable=False)
    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), nullable=False)

    def __repr__(self):
        return f"<User(user_id={self.user_id}, username={self.username}, role={self.role})>"
