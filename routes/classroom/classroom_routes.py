import logging

from fastapi import APIRouter, status

from dependencies import ClassroomStoreDep, CurrentIdentityDep
from models.classroom.chat_schemas import ClassroomCreate, ClassroomOut, JoinClassroomRequest
from models.classroom.classroom_models import Classroom
from services.errors import InvalidArgumentError, PermissionDeniedError

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/classrooms", tags=["Classrooms"])


def _classroom_out(classroom: Classroom) -> ClassroomOut:
    return ClassroomOut(
        class_id=classroom.class_id,
        class_code=classroom.class_code,
        name=classroom.name,
        teacher_id=classroom.teacher_id,
        student_ids=list(classroom.student_ids or []),
        created_at=classroom.created_at,
        message_count=len(classroom.messages or []),
        file_count=len(classroom.files or []),
    )


# Create classroom (teachers only)
@router.post("", response_model=ClassroomOut, status_code=status.HTTP_201_CREATED)
async def create_classroom(payload: ClassroomCreate, identity: CurrentIdentityDep, store: ClassroomStoreDep):
    if not identity.is_teacher:
        logger.warning("User %s tried to create a classroom without the teacher role", identity.username)
        raise PermissionDeniedError("Only teachers can create classrooms.")
    name = payload.name.strip()
    if not name:
        raise InvalidArgumentError("Classroom name cannot be empty.")
    class_code = (payload.class_code or "").strip() or None
    classroom = await store.create_classroom(name, identity.user_id, class_code=class_code)
    return _classroom_out(classroom)


# Join a classroom with its code (students)
@router.post("/join", response_model=ClassroomOut)
async def join_classroom(payload: JoinClassroomRequest, identity: CurrentIdentityDep, store: ClassroomStoreDep):
    if identity.is_teacher:
        raise PermissionDeniedError("Teachers own classrooms, only students join them by code.")
    classroom = await store.find_by_code(payload.class_code.strip())
    classroom = await store.add_student(classroom.class_id, identity.user_id)
    return _classroom_out(classroom)


# Get classroom by id (members only)
@router.get("/{class_id}", response_model=ClassroomOut)
async def get_classroom(class_id: str, identity: CurrentIdentityDep, store: ClassroomStoreDep):
    classroom = await store.get_classroom_for_member(class_id, identity.user_id)
    return _classroom_out(classroom)
