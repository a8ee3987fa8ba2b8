"""Error taxonomy for the classroom chat and file core.

Every error carries the HTTP status the routes answer with and a message that
is safe to show to the user. Realtime handlers log these and drop the event.
"""


class ClassroomError(Exception):
    """Base exception for classroom chat and file operations."""

    status_code = 500

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class UnauthenticatedError(ClassroomError):
    """Raised when no session identity could be resolved."""

    status_code = 401

    def __init__(self, message: str = "Authentication required"):
        super().__init__(message)


class ClassroomNotFoundError(ClassroomError):
    """Raised when a classroom id or code does not match any classroom."""

    status_code = 404

    def __init__(self, classroom_id: str):
        self.classroom_id = classroom_id
        super().__init__(f"Classroom '{classroom_id}' not found")


class PermissionDeniedError(ClassroomError):
    """Raised when the session user's role does not allow the action."""

    status_code = 403


class NotClassMemberError(PermissionDeniedError):
    """Raised when the acting user is neither the teacher nor a student of the classroom."""

    def __init__(self, classroom_id: str, user_id: str):
        self.classroom_id = classroom_id
        self.user_id = user_id
        super().__init__("You are not a member of this classroom")


class InvalidArgumentError(ClassroomError):
    """Raised for a bad category, a missing field or a disallowed file."""

    status_code = 400


class FileTooLargeError(InvalidArgumentError):
    status_code = 413

    def __init__(self, max_bytes: int):
        self.max_bytes = max_bytes
        max_mb = max_bytes // (1024 * 1024)
        super().__init__(f"File too large! Max {max_mb}MB allowed.")


class DuplicateClassCodeError(ClassroomError):
    status_code = 409

    def __init__(self, class_code: str):
        self.class_code = class_code
        super().__init__(f"A classroom with code '{class_code}' already exists")


class UploadFailedError(ClassroomError):
    """Raised when the object storage rejects or times out an upload."""

    status_code = 502


class PersistenceFailedError(ClassroomError):
    """Raised when the classroom document could not be written."""

    status_code = 500
