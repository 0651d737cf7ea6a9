import logging
import math
from typing import List, Optional, Tuple, Union

from sqlalchemy.orm import Session

from portal.core.errors import ErrorCode, PortalError, validation_error
from portal.crud import submissions as submissions_crud
from portal.db.session import transaction
from portal.models.notification import NotificationKind
from portal.models.submission import Submission, SubmissionStatus
from portal.services.notifications import NotificationDispatcher
from portal.utils.helpers import format_datetime, get_utc_now

logger = logging.getLogger(__name__)

GRADE_STATUSES = {
    SubmissionStatus.APPROVED,
    SubmissionStatus.CHANGES_REQUIRED,
    SubmissionStatus.REJECTED,
}


def _parse_status(status: Union[str, SubmissionStatus, None]) -> Optional[SubmissionStatus]:
    if isinstance(status, SubmissionStatus):
        return status if status in GRADE_STATUSES else None
    try:
        parsed = SubmissionStatus(status)
    except ValueError:
        return None
    return parsed if parsed in GRADE_STATUSES else None


def _recipients(submission: Submission):
    if submission.group is not None:
        return [member.student for member in submission.group.members]
    if submission.student is not None:
        return [submission.student]
    return []


def grade_submission(
    db: Session,
    dispatcher: NotificationDispatcher,
    submission_id: int,
    supervisor_id: int,
    score: float,
    feedback: Optional[str],
    status: Union[str, SubmissionStatus, None],
    expected_version: Optional[int] = None,
) -> Tuple[dict, List[int]]:
    """
    Record a grade for a submission.

    Returns the graded submission payload and the ids of the outbox rows the
    caller should deliver once the response is on its way.
    """
    errors = {}
    if not feedback or not feedback.strip():
        errors["feedback"] = "Feedback is required"
    parsed_status = _parse_status(status)
    if parsed_status is None:
        errors["status"] = "Status must be one of: approved, changes_required, rejected"
    if errors:
        raise validation_error(errors)

    submission = submissions_crud.get_submission(db, submission_id)
    if not submission:
        raise PortalError(ErrorCode.SUBMISSION_NOT_FOUND, "Submission not found")

    assignment = submission.assignment
    if not assignment.is_owned_by(supervisor_id):
        raise PortalError(ErrorCode.ACCESS_DENIED, "You can only grade submissions for your own assignments")

    if score is None or not math.isfinite(score) or score < 0 or score > assignment.max_score:
        raise PortalError(
            ErrorCode.INVALID_SCORE,
            f"Score must be between 0 and {assignment.max_score}",
        )

    if expected_version is not None and expected_version != submission.version:
        raise PortalError(
            ErrorCode.CONFLICT,
            "The submission was modified by another request. Please reload and try again.",
        )

    with transaction(db):
        submission.score = score
        submission.feedback = feedback.strip()
        submission.status = parsed_status
        submission.graded_at = get_utc_now()
        db.flush()

        rows = [
            dispatcher.enqueue(
                db,
                NotificationKind.GRADE,
                student.email,
                student.full_name,
                assignment_id=assignment.id,
                assignment_title=assignment.title,
                score=score,
                max_score=assignment.max_score,
                status=parsed_status.value,
                feedback=submission.feedback,
            )
            for student in _recipients(submission)
        ]
        row_ids = [row.id for row in rows]

    logger.info(
        f"Submission {submission.id} graded {score}/{assignment.max_score} "
        f"({parsed_status.value}) by supervisor {supervisor_id}"
    )
    return {
        "id": submission.id,
        "assignment_id": submission.assignment_id,
        "student_id": submission.student_id,
        "group_id": submission.group_id,
        "score": submission.score,
        "max_score": assignment.max_score,
        "feedback": submission.feedback,
        "status": submission.status.value,
        "graded_at": format_datetime(submission.graded_at),
        "version": submission.version,
    }, row_ids
