"""Deposit of classroom files and chat attachments.

Cheap local checks (category, size, type) run before anything is sent to the
object storage. A FileEntry is only appended once the storage returned a
locator, and that locator is reconciled so it always ends in a usable
extension.
"""

import asyncio
import logging
import re
import time
from pathlib import PurePath
from typing import List, Optional, Tuple

from config import (
    BROADCAST_FILE_EVENTS,
    CHAT_ATTACHMENT_MAX_BYTES,
    MAX_UPLOAD_BYTES,
    UPLOAD_TIMEOUT_SECONDS,
)
from models.classroom.chat_schemas import FileEntryOut
from models.classroom.classroom_models import FileCategory
from services.classroom_store import ClassroomStore
from services.errors import (
    FileTooLargeError,
    InvalidArgumentError,
    PersistenceFailedError,
    UnauthenticatedError,
    UploadFailedError,
)
from services.file_storage import (
    RESOURCE_IMAGE,
    RESOURCE_RAW,
    ObjectStorage,
    StorageError,
    UploadResult,
)
from services.session_auth import SessionIdentity
from services.ws_manager import RoomChannelManager

logger = logging.getLogger(__name__)

ALLOWED_EXTENSIONS = {".jpeg", ".jpg", ".png", ".gif", ".pdf", ".doc", ".docx"}
ALLOWED_MIME_TYPES = {
    "image/jpeg",
    "image/jpg",
    "image/png",
    "image/gif",
    "application/pdf",
    "application/msword",
    "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
}
DEFAULT_FOLDER = "General"

_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9_-]+")


def split_filename(original_name: str) -> Tuple[str, str]:
    """Return a storage-safe base name and the lower-cased extension."""
    name = PurePath((original_name or "").replace("\\", "/")).name
    ext = PurePath(name).suffix.lower()
    stem = name[: len(name) - len(ext)] if ext else name
    base = _UNSAFE_CHARS.sub("_", stem).strip("._") or "file"
    return base[:80], ext


def classify(mime_type: str) -> str:
    return RESOURCE_IMAGE if mime_type.startswith("image/") else RESOURCE_RAW


def build_public_id(folder: str, base: str, ext: str, resource_type: str, stamp: Optional[int] = None) -> str:
    """``{folder}/{base}_{millis}``, keeping the extension for raw objects."""
    stamp = stamp if stamp is not None else int(time.time() * 1000)
    public_id = f"{folder}/{base}_{stamp}"
    if resource_type == RESOURCE_RAW:
        public_id += ext
    return public_id


def reconcile_locator(url: str, expected_ext: str, resource_type: str) -> str:
    """Make sure the stored reference can be fetched with the right extension.

    The extension goes at the end of the path, before any query string.
    """
    if not expected_ext:
        return url
    path, sep, query = url.partition("?")
    current_ext = PurePath(path).suffix.lower()
    if not current_ext or (resource_type == RESOURCE_RAW and current_ext != expected_ext):
        return f"{path}{expected_ext}{sep}{query}"
    return url


def resolve_category(category: Optional[str]) -> FileCategory:
    if category is None:
        return FileCategory.general
    try:
        return FileCategory(category)
    except ValueError:
        allowed = ", ".join(c.value for c in FileCategory)
        raise InvalidArgumentError(f"Invalid file category '{category}'. Choose one of: {allowed}")


def check_file(data: bytes, original_name: str, mime_type: str, max_bytes: int) -> Tuple[str, str]:
    if not data:
        raise InvalidArgumentError("No file was selected")
    if len(data) > max_bytes:
        raise FileTooLargeError(max_bytes)
    base, ext = split_filename(original_name)
    if ext not in ALLOWED_EXTENSIONS or (mime_type or "").lower() not in ALLOWED_MIME_TYPES:
        raise InvalidArgumentError(
            "Only images (jpeg, jpg, png, gif), PDF, DOC and DOCX files are allowed!"
        )
    return base, ext


class FileDepositPipeline:
    def __init__(
        self,
        store: ClassroomStore,
        storage: ObjectStorage,
        manager: RoomChannelManager,
        max_bytes: int = MAX_UPLOAD_BYTES,
        attachment_max_bytes: int = CHAT_ATTACHMENT_MAX_BYTES,
        upload_timeout: float = UPLOAD_TIMEOUT_SECONDS,
        broadcast_file_events: bool = BROADCAST_FILE_EVENTS,
    ):
        self.store = store
        self.storage = storage
        self.manager = manager
        self.max_bytes = max_bytes
        self.attachment_max_bytes = attachment_max_bytes
        self.upload_timeout = upload_timeout
        self.broadcast_file_events = broadcast_file_events

    async def deposit_file(
        self,
        identity: Optional[SessionIdentity],
        classroom_id: str,
        data: bytes,
        original_name: str,
        mime_type: str,
        category: Optional[str] = None,
        folder: Optional[str] = None,
    ) -> dict:
        """Upload a classroom file and record it in the classroom's file log.

        Args:
            identity: Session identity of the uploader.
            classroom_id: Target classroom.
            data: File content.
            original_name: File name as sent by the browser.
            mime_type: Declared media type.
            category: exercise, homework, correction or general (default).
            folder: Optional grouping label.

        Returns:
            The persisted FileEntry dict.

        Raises:
            InvalidArgumentError: Bad category, type or empty file.
            FileTooLargeError: Over the deposit size limit.
            UploadFailedError: Storage rejected the object or timed out.
            PersistenceFailedError: The entry could not be saved.
        """
        if identity is None:
            raise UnauthenticatedError()
        resolved_category = resolve_category(category)
        base, ext = check_file(data, original_name, mime_type, self.max_bytes)
        await self.store.get_classroom_for_member(classroom_id, identity.user_id)

        resource_type = classify(mime_type)
        public_id = build_public_id(f"class_files/{classroom_id}", base, ext, resource_type)
        result = await self._upload(data, public_id, resource_type)
        file_url = reconcile_locator(result.url, ext, result.resource_type)

        entry = {
            "file_name": original_name,
            "file_url": file_url,
            "file_size": len(data),
            "file_mime_type": mime_type,
            "category": resolved_category.value,
            "folder": (folder or "").strip() or DEFAULT_FOLDER,
            "public_id": result.public_id,
        }
        async with self.store.classroom_lock(classroom_id):
            try:
                stored = await self.store.append_file(classroom_id, identity.user_id, entry)
            except PersistenceFailedError:
                await self._discard(result.public_id)
                raise
            if self.broadcast_file_events:
                await self.manager.broadcast(
                    classroom_id, "fileAdded", FileEntryOut(**stored).to_wire()
                )

        logger.info(
            "User %s deposited %s (%s, %d bytes) in classroom %s as %s",
            identity.username, original_name, resolved_category.value, len(data), classroom_id, file_url,
        )
        return stored

    async def upload_chat_attachment(
        self,
        identity: Optional[SessionIdentity],
        data: bytes,
        original_name: str,
        mime_type: str,
    ) -> dict:
        """Store a file meant to be referenced by an image/file chat message."""
        if identity is None:
            raise UnauthenticatedError()
        base, ext = check_file(data, original_name, mime_type, self.attachment_max_bytes)
        resource_type = classify(mime_type)
        public_id = build_public_id("chat_attachments", base, ext, resource_type)
        result = await self._upload(data, public_id, resource_type)
        url = reconcile_locator(result.url, ext, result.resource_type)
        logger.info("User %s uploaded chat attachment %s", identity.username, url)
        return {
            "url": url,
            "file_type": "image" if resource_type == RESOURCE_IMAGE else "file",
            "file_name": original_name,
        }

    async def list_files(
        self,
        identity: Optional[SessionIdentity],
        classroom_id: str,
        category: Optional[str] = None,
    ) -> List[dict]:
        if identity is None:
            raise UnauthenticatedError()
        wanted = resolve_category(category).value if category else None
        classroom = await self.store.get_classroom_for_member(classroom_id, identity.user_id)
        return [f for f in classroom.files if wanted is None or f.get("category") == wanted]

    async def _upload(self, data: bytes, public_id: str, resource_type: str) -> UploadResult:
        try:
            return await asyncio.wait_for(
                self.storage.upload(data, public_id, resource_type), timeout=self.upload_timeout
            )
        except asyncio.TimeoutError:
            logger.error("Upload of %s timed out after %.1fs", public_id, self.upload_timeout)
            raise UploadFailedError("The file storage did not answer in time")
        except (StorageError, OSError) as exc:
            logger.error("Upload of %s failed: %s", public_id, exc)
            raise UploadFailedError(f"Upload failed: {exc}") from exc

    async def _discard(self, public_id: str) -> None:
        try:
            await self.storage.delete(public_id)
        except (StorageError, OSError) as exc:
            logger.warning("Could not remove orphaned upload %s: %s", public_id, exc)
