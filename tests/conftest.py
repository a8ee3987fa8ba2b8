import os
import tempfile

# point the app at throwaway storage before anything imports config
_TMP_DIR = tempfile.mkdtemp(prefix="classroom-tests-")
os.environ["DATABASE_URL"] = f"sqlite:///{os.path.join(_TMP_DIR, 'classroom.db')}"
os.environ["UPLOAD_DIR"] = os.path.join(_TMP_DIR, "uploads")
os.environ["SESSION_SECRET"] = "test-session-secret"

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402

from db import Base, SessionLocal, engine  # noqa: E402
from dependencies import get_classroom_store, get_room_manager  # noqa: E402
from models.auth.user_models import User, UserRole  # noqa: E402
from models.classroom.classroom_models import Classroom  # noqa: E402
from services.classroom_store import ClassroomStore  # noqa: E402
from services.session_auth import SessionIdentity  # noqa: E402
from services.ws_manager import RoomChannelManager  # noqa: E402


@pytest.fixture(autouse=True)
def fresh_db():
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    yield


def _add_user(user_id: str, username: str, role: UserRole) -> SessionIdentity:
    db = SessionLocal()
    try:
        db.add(User(user_id=user_id, username=username, role=role))
        db.commit()
    finally:
        db.close()
    return SessionIdentity(user_id=user_id, username=username, role=role.value)


def _add_classroom(class_id: str, class_code: str, teacher_id: str, student_ids) -> None:
    db = SessionLocal()
    try:
        db.add(Classroom(
            class_id=class_id,
            class_code=class_code,
            name=f"Classroom {class_code}",
            teacher_id=teacher_id,
            student_ids=list(student_ids),
            messages=[],
            files=[],
        ))
        db.commit()
    finally:
        db.close()


@pytest.fixture
def teacher():
    return _add_user("U-T1", "mme_curie", UserRole.teacher)


@pytest.fixture
def alice():
    return _add_user("U-S1", "alice", UserRole.student)


@pytest.fixture
def bob():
    return _add_user("U-S2", "bob", UserRole.student)


@pytest.fixture
def carol():
    return _add_user("U-S3", "carol", UserRole.student)


@pytest.fixture
def classrooms(teacher, alice, bob, carol):
    """C1 holds alice and bob, C2 holds carol only."""
    _add_classroom("C1", "MATH01", teacher.user_id, [alice.user_id, bob.user_id])
    _add_classroom("C2", "PHYS02", teacher.user_id, [carol.user_id])
    return ("C1", "C2")


@pytest.fixture
def store():
    return ClassroomStore(SessionLocal)


@pytest.fixture
def room_manager():
    return RoomChannelManager()


@pytest.fixture
def app(store, room_manager):
    from main import app as fastapi_app

    fastapi_app.dependency_overrides[get_room_manager] = lambda: room_manager
    fastapi_app.dependency_overrides[get_classroom_store] = lambda: store
    yield fastapi_app
    fastapi_app.dependency_overrides.clear()


@pytest.fixture
def client(app):
    with TestClient(app) as test_client:
        yield test_client


def load_classroom(class_id: str) -> Classroom:
    db = SessionLocal()
    try:
        return db.query(Classroom).filter(Classroom.class_id == class_id).first()
    finally:
        db.close()
