"""Resolve the logged-in user behind an HTTP request or a WebSocket handshake.

The web session is a signed JWT whose subject is the user id. It is looked up
in the ``session`` cookie first, then in a ``token`` query parameter (browsers
cannot set headers on a WebSocket handshake), then in an
``Authorization: Bearer`` header.
"""

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

from jose import JWTError, jwt
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool
from starlette.requests import HTTPConnection

from config import (
    PERSISTENCE_TIMEOUT_SECONDS,
    SESSION_ALGORITHM,
    SESSION_COOKIE_NAME,
    SESSION_SECRET,
    SESSION_TTL_SECONDS,
)
from models.auth.user_models import User

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SessionIdentity:
    """Who is behind a connection, captured once and never mutated."""

    user_id: str
    username: str
    role: str

    @property
    def is_teacher(self) -> bool:
        return self.role == "teacher"


def create_session_token(user_id: str, expires_delta: Optional[timedelta] = None) -> str:
    """Issue a session token for ``user_id``.

    Args:
        user_id: Subject of the token.
        expires_delta: Optional lifetime, defaults to SESSION_TTL_SECONDS.

    Returns:
        Encoded JWT string.
    """
    expire = datetime.now(timezone.utc) + (expires_delta or timedelta(seconds=SESSION_TTL_SECONDS))
    payload = {"sub": user_id, "exp": expire}
    return jwt.encode(payload, SESSION_SECRET, algorithm=SESSION_ALGORITHM)


def decode_session_token(token: str) -> Optional[str]:
    """Return the user id carried by ``token``, or None when it is invalid or expired."""
    try:
        payload = jwt.decode(token, SESSION_SECRET, algorithms=[SESSION_ALGORITHM])
    except JWTError as exc:
        logger.info("Rejected session token: %s", exc)
        return None
    return payload.get("sub")


def extract_session_token(conn: HTTPConnection) -> Optional[str]:
    token = conn.cookies.get(SESSION_COOKIE_NAME)
    if token:
        return token
    token = conn.query_params.get("token")
    if token:
        return token
    auth_header = conn.headers.get("authorization", "")
    scheme, _, credentials = auth_header.partition(" ")
    if scheme.lower() == "bearer" and credentials:
        return credentials.strip()
    return None


class SessionAuthenticator:
    """Turns a raw request or handshake into a SessionIdentity.

    ``authenticate`` never raises: an unusable session resolves to None and the
    caller decides how to refuse it.
    """

    def __init__(self, session_factory: Callable[[], Session], timeout: float = PERSISTENCE_TIMEOUT_SECONDS):
        self.session_factory = session_factory
        self.timeout = timeout

    async def authenticate(self, conn: HTTPConnection) -> Optional[SessionIdentity]:
        token = extract_session_token(conn)
        if not token:
            return None
        user_id = decode_session_token(token)
        if not user_id:
            return None
        try:
            return await asyncio.wait_for(
                run_in_threadpool(self._load_identity, user_id), timeout=self.timeout
            )
        except asyncio.TimeoutError:
            logger.error("Session lookup timed out for user %s", user_id)
            return None
        except SQLAlchemyError:
            logger.exception("Session lookup failed for user %s", user_id)
            return None

    def _load_identity(self, user_id: str) -> Optional[SessionIdentity]:
        db = self.session_factory()
        try:
            user = db.query(User).filter(User.user_id == user_id).first()
            if not user:
                logger.info("Session refers to unknown user %s", user_id)
                return None
            return SessionIdentity(user_id=user.user_id, username=user.username, role=user.role.value)
        finally:
            db.close()
