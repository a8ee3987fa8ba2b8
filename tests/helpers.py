import asyncio
import time
from io import BytesIO

from PIL import Image

from services.file_storage import ObjectStorage, StorageError, UploadResult
from services.session_auth import create_session_token


class FakeSocket:
    """Stands in for a WebSocket: records every frame it is sent."""

    def __init__(self, fail: bool = False):
        self.frames = []
        self.fail = fail

    async def send_json(self, data):
        if self.fail:
            raise RuntimeError("socket is closed")
        # let other tasks run between sends, like a real network write would
        await asyncio.sleep(0)
        self.frames.append(data)


class FakeStorage(ObjectStorage):
    """Object storage double that records calls instead of storing bytes."""

    def __init__(self, url_suffix: str = "", error: str = None, delay: float = 0.0):
        self.uploads = []
        self.deleted = []
        self.url_suffix = url_suffix
        self.error = error
        self.delay = delay

    async def upload(self, data, public_id, resource_type):
        self.uploads.append((public_id, resource_type, len(data)))
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error:
            raise StorageError(self.error)
        return UploadResult(
            url=f"https://cdn.example.test/{resource_type}/{public_id}{self.url_suffix}",
            public_id=public_id,
            resource_type=resource_type,
            bytes=len(data),
        )

    async def delete(self, public_id):
        self.deleted.append(public_id)


def png_bytes(size=(4, 4)) -> bytes:
    buffer = BytesIO()
    Image.new("RGB", size, color=(200, 30, 30)).save(buffer, format="PNG")
    return buffer.getvalue()


def auth_headers(identity) -> dict:
    return {"Authorization": f"Bearer {create_session_token(identity.user_id)}"}


def ws_url(identity) -> str:
    return f"/ws/chat?token={create_session_token(identity.user_id)}"


def wait_until(predicate, timeout: float = 2.0) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return False
