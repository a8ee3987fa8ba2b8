"""Shared service instances and FastAPI dependency providers.

Routes get every collaborator through ``Depends`` so tests can swap any of
them with ``app.dependency_overrides``.
"""

from typing import Annotated

from fastapi import Depends, Request

from db import SessionLocal
from services.classroom_store import ClassroomStore
from services.errors import UnauthenticatedError
from services.file_deposit import FileDepositPipeline
from services.file_storage import LocalObjectStorage, ObjectStorage
from services.message_pipeline import MessagePipeline
from services.session_auth import SessionAuthenticator, SessionIdentity
from services.ws_manager import RoomChannelManager

# Process-wide singletons (one event loop per process)
room_manager = RoomChannelManager()
classroom_store = ClassroomStore(SessionLocal)
object_storage = LocalObjectStorage()
session_authenticator = SessionAuthenticator(SessionLocal)


def get_room_manager() -> RoomChannelManager:
    return room_manager


def get_classroom_store() -> ClassroomStore:
    return classroom_store


def get_object_storage() -> ObjectStorage:
    return object_storage


def get_session_authenticator() -> SessionAuthenticator:
    return session_authenticator


def get_message_pipeline(
    store: ClassroomStore = Depends(get_classroom_store),
    manager: RoomChannelManager = Depends(get_room_manager),
) -> MessagePipeline:
    return MessagePipeline(store, manager)


def get_file_deposit_pipeline(
    store: ClassroomStore = Depends(get_classroom_store),
    storage: ObjectStorage = Depends(get_object_storage),
    manager: RoomChannelManager = Depends(get_room_manager),
) -> FileDepositPipeline:
    return FileDepositPipeline(store, storage, manager)


async def get_current_identity(
    request: Request,
    authenticator: SessionAuthenticator = Depends(get_session_authenticator),
) -> SessionIdentity:
    """Resolve the session of an HTTP request or fail with 401."""
    identity = await authenticator.authenticate(request)
    if identity is None:
        raise UnauthenticatedError()
    return identity


# Type aliases for dependency injection
RoomManagerDep = Annotated[RoomChannelManager, Depends(get_room_manager)]
ClassroomStoreDep = Annotated[ClassroomStore, Depends(get_classroom_store)]
SessionAuthenticatorDep = Annotated[SessionAuthenticator, Depends(get_session_authenticator)]
MessagePipelineDep = Annotated[MessagePipeline, Depends(get_message_pipeline)]
FileDepositPipelineDep = Annotated[FileDepositPipeline, Depends(get_file_deposit_pipeline)]
CurrentIdentityDep = Annotated[SessionIdentity, Depends(get_current_identity)]
