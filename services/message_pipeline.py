import logging
from typing import Optional

from models.classroom.chat_schemas import MessageOut
from models.classroom.classroom_models import ATTACHMENT_TYPES, MessageType
from services.classroom_store import ClassroomStore
from services.errors import InvalidArgumentError, UnauthenticatedError
from services.session_auth import SessionIdentity
from services.ws_manager import RoomChannelManager

logger = logging.getLogger(__name__)


def resolve_message_type(value: Optional[str]) -> MessageType:
    if not value:
        return MessageType.text
    try:
        return MessageType(value)
    except ValueError:
        allowed = ", ".join(t.value for t in MessageType)
        raise InvalidArgumentError(f"Unknown message type '{value}'. Allowed: {allowed}")


class MessagePipeline:
    """Validate, persist, then broadcast one chat message.

    The append and the broadcast run under the classroom lock, so for a given
    classroom the persisted log and what every joined client receives follow
    the same order. Nothing is broadcast unless the append was committed.
    """

    def __init__(self, store: ClassroomStore, manager: RoomChannelManager):
        self.store = store
        self.manager = manager

    async def submit_message(
        self,
        identity: Optional[SessionIdentity],
        classroom_id: Optional[str],
        content: Optional[str] = None,
        message_type: Optional[str] = None,
        attachment_url: Optional[str] = None,
    ) -> dict:
        """Append a message to the classroom chat and fan it out to the room.

        Args:
            identity: Session identity of the sender.
            classroom_id: Target classroom.
            content: Text or math markup. Optional for attachment messages.
            message_type: One of text, math, image, file. Defaults to text.
            attachment_url: Locator of the attachment, required for image/file.

        Returns:
            The broadcast payload (camelCase keys).

        Raises:
            UnauthenticatedError, InvalidArgumentError, ClassroomNotFoundError,
            NotClassMemberError, PersistenceFailedError.
        """
        if identity is None:
            raise UnauthenticatedError()
        if not classroom_id:
            raise InvalidArgumentError("classroomId is required")

        resolved_type = resolve_message_type(message_type)
        if resolved_type in ATTACHMENT_TYPES:
            if not attachment_url:
                raise InvalidArgumentError(f"A {resolved_type.value} message needs an attachment URL")
        else:
            if not content or not content.strip():
                raise InvalidArgumentError("Message content cannot be empty")
            attachment_url = None

        async with self.store.classroom_lock(classroom_id):
            stored = await self.store.append_message(
                classroom_id, identity, content, resolved_type.value, attachment_url
            )
            payload = MessageOut(classroom_id=classroom_id, **stored).to_wire()
            delivered = await self.manager.broadcast(classroom_id, "message", payload)

        logger.info(
            "Message %s (%s) from %s in classroom %s delivered to %d connection(s)",
            stored["message_id"], resolved_type.value, identity.username, classroom_id, delivered,
        )
        return payload
