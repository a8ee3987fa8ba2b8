"""Persistence of classroom documents.

A classroom is a single row holding its roster and two embedded, append-only
logs. Message entries are dicts with the keys::

    message_id, sender_id, sender_username, content, type, attachment_url, timestamp

and file entries::

    file_id, file_name, file_url, file_size, file_mime_type, uploader_id,
    category, upload_date, folder, public_id

Timestamps are stored as ISO-8601 strings.

All database work runs in the threadpool behind a timeout. Appends read the
row with ``FOR UPDATE`` (a no-op on SQLite) and callers serialize them per
classroom with ``classroom_lock`` so that no read-modify-write of the document
is lost.
"""

import asyncio
import logging
import threading
import weakref
from datetime import datetime, timezone
from typing import Callable, List, Optional

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool

from config import PERSISTENCE_TIMEOUT_SECONDS
from models.classroom.classroom_models import Classroom
from services.class_id_generator import generate_class_code, generate_class_id
from services.errors import (
    ClassroomError,
    ClassroomNotFoundError,
    DuplicateClassCodeError,
    NotClassMemberError,
    PersistenceFailedError,
)
from services.message_id_generator import generate_file_id, generate_message_id
from services.session_auth import SessionIdentity

logger = logging.getLogger(__name__)

CLASS_CODE_ATTEMPTS = 5


def _next_timestamp(log: List[dict], key: str) -> datetime:
    """Server time, but never earlier than the last entry of ``log``."""
    now = datetime.now(timezone.utc)
    if log:
        last = datetime.fromisoformat(log[-1][key])
        if last > now:
            return last
    return now


class ClassroomStore:
    def __init__(self, session_factory: Callable[[], Session], timeout: float = PERSISTENCE_TIMEOUT_SECONDS):
        self.session_factory = session_factory
        self.timeout = timeout
        # class_id -> lock, kept alive only while someone holds or awaits it
        self._locks: "weakref.WeakValueDictionary[str, asyncio.Lock]" = weakref.WeakValueDictionary()

    def classroom_lock(self, class_id: str) -> asyncio.Lock:
        """Lock that serializes mutations of one classroom within this process."""
        lock = self._locks.get(class_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[class_id] = lock
        return lock

    async def _run(self, fn, *args):
        """Run ``fn(db, *args)`` in the threadpool with a fresh session.

        A worker thread cannot be interrupted, so when the timeout fires the
        session is marked abandoned and the worker is awaited until it
        settles. A worker that has not committed yet rolls back and fails; one
        that already reached its commit keeps it and its result is returned.
        Either way the caller (and any classroom lock it holds) only moves on
        once the database state is final.
        """
        abandoned = threading.Event()
        worker = asyncio.ensure_future(run_in_threadpool(self._in_session, fn, abandoned, *args))
        try:
            try:
                return await asyncio.wait_for(asyncio.shield(worker), timeout=self.timeout)
            except asyncio.TimeoutError:
                abandoned.set()
                logger.warning(
                    "%s exceeded %.1fs, waiting for the database to settle", fn.__name__, self.timeout
                )
                return await worker
        except ClassroomError:
            raise
        except SQLAlchemyError as exc:
            logger.error("Classroom store error in %s: %s", fn.__name__, exc)
            raise PersistenceFailedError("Could not save the classroom") from exc

    def _in_session(self, fn, abandoned: threading.Event, *args):
        db = self.session_factory()
        db.info["abandoned"] = abandoned
        try:
            return fn(db, *args)
        finally:
            db.close()

    @staticmethod
    def _commit(db: Session) -> None:
        abandoned = db.info.get("abandoned")
        if abandoned is not None and abandoned.is_set():
            db.rollback()
            raise PersistenceFailedError("Timed out while writing the classroom")
        db.commit()

    # --- reads ---

    async def get_classroom(self, class_id: str) -> Classroom:
        return await self._run(self._get_classroom, class_id)

    def _get_classroom(self, db: Session, class_id: str) -> Classroom:
        classroom = db.query(Classroom).filter(Classroom.class_id == class_id).first()
        if not classroom:
            raise ClassroomNotFoundError(class_id)
        return classroom

    async def get_classroom_for_member(self, class_id: str, user_id: str) -> Classroom:
        classroom = await self.get_classroom(class_id)
        if not classroom.is_member(user_id):
            raise NotClassMemberError(class_id, user_id)
        return classroom

    async def is_member(self, class_id: str, user_id: str) -> bool:
        try:
            classroom = await self.get_classroom(class_id)
        except ClassroomNotFoundError:
            return False
        return classroom.is_member(user_id)

    # --- roster ---

    async def create_classroom(self, name: str, teacher_id: str, class_code: Optional[str] = None) -> Classroom:
        return await self._run(self._create_classroom, name, teacher_id, class_code)

    def _create_classroom(self, db: Session, name: str, teacher_id: str, class_code: Optional[str]) -> Classroom:
        if class_code:
            if db.query(Classroom).filter(Classroom.class_code == class_code).first():
                raise DuplicateClassCodeError(class_code)
        else:
            for _ in range(CLASS_CODE_ATTEMPTS):
                candidate = generate_class_code()
                if not db.query(Classroom).filter(Classroom.class_code == candidate).first():
                    class_code = candidate
                    break
            else:
                raise PersistenceFailedError("Could not allocate a unique class code")

        classroom = Classroom(
            class_id=generate_class_id(name),
            class_code=class_code,
            name=name,
            teacher_id=teacher_id,
            student_ids=[],
            messages=[],
            files=[],
        )
        db.add(classroom)
        try:
            self._commit(db)
        except IntegrityError:
            db.rollback()
            raise DuplicateClassCodeError(class_code)
        db.refresh(classroom)
        logger.info("Created classroom %s (code=%s, teacher=%s)", classroom.class_id, class_code, teacher_id)
        return classroom

    async def find_by_code(self, class_code: str) -> Classroom:
        return await self._run(self._find_by_code, class_code)

    def _find_by_code(self, db: Session, class_code: str) -> Classroom:
        classroom = db.query(Classroom).filter(Classroom.class_code == class_code).first()
        if not classroom:
            raise ClassroomNotFoundError(class_code)
        return classroom

    async def add_student(self, class_id: str, student_id: str) -> Classroom:
        """Add ``student_id`` to the roster. Adding an existing member is a no-op."""
        async with self.classroom_lock(class_id):
            return await self._run(self._add_student, class_id, student_id)

    def _add_student(self, db: Session, class_id: str, student_id: str) -> Classroom:
        classroom = self._locked_classroom(db, class_id)
        if not classroom.is_member(student_id):
            classroom.student_ids.append(student_id)
            self._commit(db)
            db.refresh(classroom)
            logger.info("Student %s joined classroom %s", student_id, class_id)
        return classroom

    # --- appends (caller holds classroom_lock) ---

    async def append_message(
        self,
        class_id: str,
        sender: SessionIdentity,
        content: Optional[str],
        message_type: str,
        attachment_url: Optional[str],
    ) -> dict:
        return await self._run(self._append_message, class_id, sender, content, message_type, attachment_url)

    def _append_message(self, db: Session, class_id, sender, content, message_type, attachment_url) -> dict:
        classroom = self._locked_classroom(db, class_id)
        if not classroom.is_member(sender.user_id):
            raise NotClassMemberError(class_id, sender.user_id)
        timestamp = _next_timestamp(classroom.messages, "timestamp")
        message = {
            "message_id": generate_message_id(timestamp),
            "sender_id": sender.user_id,
            "sender_username": sender.username,
            "content": content,
            "type": message_type,
            "attachment_url": attachment_url,
            "timestamp": timestamp.isoformat(),
        }
        classroom.messages.append(message)
        self._commit(db)
        return message

    async def append_file(self, class_id: str, uploader_id: str, entry: dict) -> dict:
        return await self._run(self._append_file, class_id, uploader_id, entry)

    def _append_file(self, db: Session, class_id: str, uploader_id: str, entry: dict) -> dict:
        classroom = self._locked_classroom(db, class_id)
        if not classroom.is_member(uploader_id):
            raise NotClassMemberError(class_id, uploader_id)
        upload_date = _next_timestamp(classroom.files, "upload_date")
        file_entry = {
            "file_id": generate_file_id(upload_date),
            **entry,
            "uploader_id": uploader_id,
            "upload_date": upload_date.isoformat(),
        }
        classroom.files.append(file_entry)
        self._commit(db)
        return file_entry

    @staticmethod
    def _locked_classroom(db: Session, class_id: str) -> Classroom:
        classroom = (
            db.query(Classroom)
            .filter(Classroom.class_id == class_id)
            .with_for_update()
            .first()
        )
        if not classroom:
            raise ClassroomNotFoundError(class_id)
        return classroom
