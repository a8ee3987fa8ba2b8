"""Object storage collaborator.

Uploads are awaitables that return an ``UploadResult`` or raise
``StorageError``. ``LocalObjectStorage`` keeps objects under the upload
directory that ``main.py`` mounts at ``/uploads``. Like a hosted image CDN it
picks the extension of image objects itself from the decoded image format,
while raw objects are stored under exactly the public id they were given.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from io import BytesIO
from pathlib import Path

from PIL import Image, UnidentifiedImageError
from starlette.concurrency import run_in_threadpool

from config import UPLOAD_DIR, UPLOAD_URL_PREFIX

logger = logging.getLogger(__name__)

RESOURCE_IMAGE = "image"
RESOURCE_RAW = "raw"

# Pillow format name -> extension used for stored images
_IMAGE_EXTENSIONS = {"jpeg": "jpg"}


class StorageError(Exception):
    """Raised by a storage backend when an object cannot be stored or removed."""

    pass


@dataclass(frozen=True)
class UploadResult:
    url: str
    public_id: str
    resource_type: str
    bytes: int


class ObjectStorage(ABC):
    @abstractmethod
    async def upload(self, data: bytes, public_id: str, resource_type: str) -> UploadResult:
        """Store ``data`` and return where it can be fetched from."""

    @abstractmethod
    async def delete(self, public_id: str) -> None:
        """Remove the object stored under ``public_id``; missing objects are ignored."""


class LocalObjectStorage(ObjectStorage):
    def __init__(self, root: str = UPLOAD_DIR, url_prefix: str = UPLOAD_URL_PREFIX):
        self.root = Path(root)
        self.url_prefix = url_prefix.rstrip("/")

    async def upload(self, data: bytes, public_id: str, resource_type: str) -> UploadResult:
        return await run_in_threadpool(self._store, data, public_id, resource_type)

    async def delete(self, public_id: str) -> None:
        await run_in_threadpool(self._remove, public_id)

    def _store(self, data: bytes, public_id: str, resource_type: str) -> UploadResult:
        ext = self._image_extension(data) if resource_type == RESOURCE_IMAGE else ""
        relative = f"{public_id}{ext}"
        file_path = self._resolve(relative)
        file_path.parent.mkdir(parents=True, exist_ok=True)
        try:
            with open(file_path, "wb") as buffer:
                buffer.write(data)
        except OSError as exc:
            raise StorageError(f"Could not write {relative}: {exc}") from exc
        logger.info("Stored %s object %s (%d bytes)", resource_type, relative, len(data))
        return UploadResult(
            url=f"{self.url_prefix}/{relative}",
            public_id=public_id,
            resource_type=resource_type,
            bytes=len(data),
        )

    def _remove(self, public_id: str) -> None:
        target = self._resolve(public_id)
        if not target.parent.is_dir():
            return
        for candidate in target.parent.iterdir():
            # images were stored with an extension of our choosing
            if candidate.name == target.name or candidate.stem == target.name:
                candidate.unlink()
                logger.info("Removed stored object %s", candidate)

    def _resolve(self, relative: str) -> Path:
        root = self.root.resolve()
        file_path = (root / relative).resolve()
        if root != file_path and root not in file_path.parents:
            raise StorageError(f"Refusing to store outside of the upload directory: {relative}")
        return file_path

    @staticmethod
    def _image_extension(data: bytes) -> str:
        try:
            with Image.open(BytesIO(data)) as img:
                fmt = (img.format or "").lower()
        except (UnidentifiedImageError, OSError) as exc:
            raise StorageError("The uploaded image could not be read") from exc
        if not fmt:
            raise StorageError("The uploaded image could not be read")
        return "." + _IMAGE_EXTENSIONS.get(fmt, fmt)
