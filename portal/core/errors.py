"""
Error taxonomy shared by every service.

Services raise ``PortalError`` with an ``ErrorCode``; the HTTP layer turns it
into the standard ``{message, success, error, errors}`` envelope using the
status code of the code's ``ErrorKind``.
"""
import enum
from typing import Any, Dict, Optional


class ErrorKind(str, enum.Enum):
    VALIDATION = "validation"
    NOT_FOUND = "not_found"
    AUTHORIZATION = "authorization"
    CONFLICT = "conflict"
    DEPENDENCY = "dependency"
    INFRASTRUCTURE = "infrastructure"
    INTERNAL = "internal"


KIND_STATUS = {
    ErrorKind.VALIDATION: 400,
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.AUTHORIZATION: 403,
    ErrorKind.CONFLICT: 409,
    ErrorKind.DEPENDENCY: 409,
    ErrorKind.INFRASTRUCTURE: 503,
    ErrorKind.INTERNAL: 500,
}


class ErrorCode(str, enum.Enum):
    # Validation
    VALIDATION_ERROR = "VALIDATION_ERROR"
    MISSING_STUDENT_IDS = "MISSING_STUDENT_IDS"
    TOO_MANY_STUDENTS = "TOO_MANY_STUDENTS"
    INVALID_STUDENTS = "INVALID_STUDENTS"
    ASSIGNMENT_INACTIVE = "ASSIGNMENT_INACTIVE"
    INVALID_SCORE = "INVALID_SCORE"
    FILE_LIMIT_EXCEEDED = "FILE_LIMIT_EXCEEDED"
    FOREIGN_KEY_VIOLATION = "FOREIGN_KEY_VIOLATION"

    # Not found
    ASSIGNMENT_NOT_FOUND = "ASSIGNMENT_NOT_FOUND"
    SUPERVISOR_NOT_FOUND = "SUPERVISOR_NOT_FOUND"
    SUBMISSION_NOT_FOUND = "SUBMISSION_NOT_FOUND"
    GROUP_NOT_FOUND = "GROUP_NOT_FOUND"
    STUDENTS_NOT_FOUND = "STUDENTS_NOT_FOUND"
    NO_INVITATIONS_FOUND = "NO_INVITATIONS_FOUND"

    # Authorization
    ACCESS_DENIED = "ACCESS_DENIED"

    # Conflict
    ALREADY_INVITED = "ALREADY_INVITED"
    DUPLICATE_GROUP_NAME = "DUPLICATE_GROUP_NAME"
    STUDENT_ALREADY_IN_GROUP = "STUDENT_ALREADY_IN_GROUP"
    GROUP_SIZE_EXCEEDED = "GROUP_SIZE_EXCEEDED"
    STATUS_UNCHANGED = "STATUS_UNCHANGED"
    DUPLICATE_TITLE = "DUPLICATE_TITLE"
    DUPLICATE_ENTRY = "DUPLICATE_ENTRY"
    CONFLICT = "CONFLICT"

    # Dependency
    STUDENTS_HAVE_SUBMISSIONS = "STUDENTS_HAVE_SUBMISSIONS"
    HAS_SUBMISSIONS = "HAS_SUBMISSIONS"
    GROUP_HAS_SUBMISSIONS = "GROUP_HAS_SUBMISSIONS"

    # Infrastructure
    DATABASE_CONNECTION_ERROR = "DATABASE_CONNECTION_ERROR"
    FILE_UPLOAD_ERROR = "FILE_UPLOAD_ERROR"
    EMAIL_DELIVERY_FAILED = "EMAIL_DELIVERY_FAILED"

    # Internal
    INTERNAL_SERVER_ERROR = "INTERNAL_SERVER_ERROR"

    @property
    def kind(self) -> ErrorKind:
        return CODE_KIND[self]

    @property
    def status_code(self) -> int:
        return KIND_STATUS[self.kind]


CODE_KIND = {
    ErrorCode.VALIDATION_ERROR: ErrorKind.VALIDATION,
    ErrorCode.MISSING_STUDENT_IDS: ErrorKind.VALIDATION,
    ErrorCode.TOO_MANY_STUDENTS: ErrorKind.VALIDATION,
    ErrorCode.INVALID_STUDENTS: ErrorKind.VALIDATION,
    ErrorCode.ASSIGNMENT_INACTIVE: ErrorKind.VALIDATION,
    ErrorCode.INVALID_SCORE: ErrorKind.VALIDATION,
    ErrorCode.FILE_LIMIT_EXCEEDED: ErrorKind.VALIDATION,
    ErrorCode.FOREIGN_KEY_VIOLATION: ErrorKind.VALIDATION,
    ErrorCode.ASSIGNMENT_NOT_FOUND: ErrorKind.NOT_FOUND,
    ErrorCode.SUPERVISOR_NOT_FOUND: ErrorKind.NOT_FOUND,
    ErrorCode.SUBMISSION_NOT_FOUND: ErrorKind.NOT_FOUND,
    ErrorCode.GROUP_NOT_FOUND: ErrorKind.NOT_FOUND,
    ErrorCode.STUDENTS_NOT_FOUND: ErrorKind.NOT_FOUND,
    ErrorCode.NO_INVITATIONS_FOUND: ErrorKind.NOT_FOUND,
    ErrorCode.ACCESS_DENIED: ErrorKind.AUTHORIZATION,
    ErrorCode.ALREADY_INVITED: ErrorKind.CONFLICT,
    ErrorCode.DUPLICATE_GROUP_NAME: ErrorKind.CONFLICT,
    ErrorCode.STUDENT_ALREADY_IN_GROUP: ErrorKind.CONFLICT,
    ErrorCode.GROUP_SIZE_EXCEEDED: ErrorKind.CONFLICT,
    ErrorCode.STATUS_UNCHANGED: ErrorKind.CONFLICT,
    ErrorCode.DUPLICATE_TITLE: ErrorKind.CONFLICT,
    ErrorCode.DUPLICATE_ENTRY: ErrorKind.CONFLICT,
    ErrorCode.CONFLICT: ErrorKind.CONFLICT,
    ErrorCode.STUDENTS_HAVE_SUBMISSIONS: ErrorKind.DEPENDENCY,
    ErrorCode.HAS_SUBMISSIONS: ErrorKind.DEPENDENCY,
    ErrorCode.GROUP_HAS_SUBMISSIONS: ErrorKind.DEPENDENCY,
    ErrorCode.DATABASE_CONNECTION_ERROR: ErrorKind.INFRASTRUCTURE,
    ErrorCode.FILE_UPLOAD_ERROR: ErrorKind.INFRASTRUCTURE,
    ErrorCode.EMAIL_DELIVERY_FAILED: ErrorKind.INFRASTRUCTURE,
    ErrorCode.INTERNAL_SERVER_ERROR: ErrorKind.INTERNAL,
}


class PortalError(Exception):
    def __init__(
        self,
        code: ErrorCode,
        message: str,
        errors: Optional[Dict[str, str]] = None,
        data: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.code = code
        self.message = message
        self.errors = errors
        self.data = data

    @property
    def status_code(self) -> int:
        return self.code.status_code

    @property
    def retryable(self) -> bool:
        return self.code.kind == ErrorKind.INFRASTRUCTURE

    def to_response(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {
            "message": self.message,
            "success": False,
            "error": self.code.value,
        }
        if self.errors:
            body["errors"] = self.errors
        if self.data:
            body["data"] = self.data
        return body


def validation_error(errors: Dict[str, str]) -> PortalError:
    return PortalError(
        ErrorCode.VALIDATION_ERROR,
        "Please correct the following validation errors:",
        errors=errors,
    )
