import logging
from typing import Iterable, List, Optional

from sqlalchemy.orm import Session

from portal.core.config.settings import get_settings
from portal.core.errors import ErrorCode, PortalError
from portal.crud import assignments as assignments_crud
from portal.crud import directory as directory_crud
from portal.crud import invitations as invitations_crud
from portal.crud import submissions as submissions_crud
from portal.db.session import transaction
from portal.models.assignment import Assignment
from portal.models.directory import StudentStatus
from portal.models.invitation import InvitationStatus
from portal.models.notification import NotificationKind
from portal.services.notifications import DeliveryReport, NotificationDispatcher
from portal.utils.helpers import format_datetime, get_utc_now

logger = logging.getLogger(__name__)


def normalize_student_ids(student_ids: Optional[Iterable[int]]) -> List[int]:
    """Distinct ids in request order, bounded by MAX_INVITES_PER_REQUEST"""
    if not student_ids:
        raise PortalError(ErrorCode.MISSING_STUDENT_IDS, "At least one student must be selected")
    ids = list(dict.fromkeys(student_ids))
    limit = get_settings().MAX_INVITES_PER_REQUEST
    if len(ids) > limit:
        raise PortalError(
            ErrorCode.TOO_MANY_STUDENTS,
            f"Cannot process more than {limit} students at once",
        )
    return ids


def _owned_assignment(db: Session, assignment_id: int, supervisor_id: int) -> Assignment:
    assignment = assignments_crud.get_assignment(db, assignment_id)
    if not assignment:
        raise PortalError(ErrorCode.ASSIGNMENT_NOT_FOUND, "Assignment not found")
    if not assignment.is_owned_by(supervisor_id):
        raise PortalError(
            ErrorCode.ACCESS_DENIED,
            "You can only manage invitations for assignments you created",
        )
    return assignment


def invite(
    db: Session,
    dispatcher: NotificationDispatcher,
    assignment_id: int,
    supervisor_id: int,
    student_ids: Iterable[int],
    custom_message: Optional[str] = None,
) -> dict:
    ids = normalize_student_ids(student_ids)
    assignment = _owned_assignment(db, assignment_id, supervisor_id)
    if not assignment.is_active:
        raise PortalError(ErrorCode.ASSIGNMENT_INACTIVE, "Cannot invite students to an inactive assignment")

    supervisor = directory_crud.get_supervisor(db, supervisor_id)
    if not supervisor:
        raise PortalError(ErrorCode.SUPERVISOR_NOT_FOUND, "Supervisor not found")

    found = {s.id: s for s in directory_crud.get_department_students(db, supervisor.department_id, ids)}
    invalid = [student_id for student_id in ids if student_id not in found]
    if invalid:
        raise PortalError(
            ErrorCode.INVALID_STUDENTS,
            "Some students were not found in your department",
            data={"invalid_student_ids": invalid},
        )
    students = [found[student_id] for student_id in ids]

    warnings = []
    for student in students:
        if student.status == StudentStatus.INACTIVE:
            logger.warning(f"Inviting inactive student {student.id} to assignment {assignment_id}")
            warnings.append(f"{student.full_name} is currently inactive")

    existing = invitations_crud.get_invitations(db, assignment_id, ids)
    if existing:
        names = [found[inv.student_id].full_name for inv in existing]
        raise PortalError(
            ErrorCode.ALREADY_INVITED,
            f"Some students are already invited: {', '.join(names)}",
            data={"already_invited": [inv.student_id for inv in existing]},
        )

    message = custom_message.strip() if custom_message and custom_message.strip() else None
    now = get_utc_now()
    rows = []
    with transaction(db, on_unique=ErrorCode.ALREADY_INVITED):
        for student in students:
            invitations_crud.create_invitation(db, {
                "assignment_id": assignment.id,
                "student_id": student.id,
                "status": InvitationStatus.PENDING,
                "invited_at": now,
                "custom_message": message,
                "created_at": now,
            })
            rows.append(dispatcher.enqueue(
                db,
                NotificationKind.INVITATION,
                student.email,
                student.full_name,
                assignment_id=assignment.id,
                assignment_title=assignment.title,
                assignment_description=assignment.description,
                due_date=format_datetime(assignment.due_date),
                max_score=assignment.max_score,
                supervisor_name=supervisor.full_name,
                custom_message=message,
            ))

    try:
        report = dispatcher.deliver_committed(db, rows)
    except PortalError as e:
        # Rows stay pending for retry
        logger.error(f"Could not record invitation deliveries: {e.message}")
        report = DeliveryReport(failed=[s.full_name for s in students])

    logger.info(
        f"Assignment {assignment.id}: invited {len(students)} students, "
        f"emails sent {report.sent_count}, failed {report.failed_count}"
    )
    return {
        "invitations_sent": len(students),
        **report.as_dict(),
        "invited_students": [
            {"id": s.id, "name": s.full_name, "email": s.email, "status": s.status.value}
            for s in students
        ],
        "warnings": warnings,
    }


def uninvite(
    db: Session,
    dispatcher: NotificationDispatcher,
    assignment_id: int,
    supervisor_id: int,
    student_ids: Iterable[int],
    reason: Optional[str] = None,
) -> dict:
    ids = normalize_student_ids(student_ids)
    assignment = _owned_assignment(db, assignment_id, supervisor_id)

    supervisor = directory_crud.get_supervisor(db, supervisor_id)
    if not supervisor:
        raise PortalError(ErrorCode.SUPERVISOR_NOT_FOUND, "Supervisor not found")

    invitations = invitations_crud.get_invitations(db, assignment_id, ids)
    if not invitations:
        raise PortalError(
            ErrorCode.NO_INVITATIONS_FOUND,
            "None of the selected students are invited to this assignment",
        )

    invited_ids = [inv.student_id for inv in invitations]
    submitted = submissions_crud.students_with_submissions(db, assignment_id, invited_ids)
    if submitted:
        names = [inv.student.full_name for inv in invitations if inv.student_id in submitted]
        raise PortalError(
            ErrorCode.STUDENTS_HAVE_SUBMISSIONS,
            f"Cannot remove students who have already submitted: {', '.join(names)}",
            data={"students_with_submissions": sorted(submitted)},
        )

    removal_reason = reason.strip() if reason and reason.strip() else None
    removed = [inv.student for inv in invitations]
    with transaction(db):
        rows = [
            dispatcher.enqueue(
                db,
                NotificationKind.REMOVAL,
                student.email,
                student.full_name,
                assignment_id=assignment.id,
                assignment_title=assignment.title,
                supervisor_name=supervisor.full_name,
                reason=removal_reason,
            )
            for student in removed
        ]
        # Notices go out while the invitations still exist
        report = dispatcher.deliver(db, rows)
        invitations_crud.delete_invitations(db, assignment_id, invited_ids)

    logger.info(
        f"Assignment {assignment.id}: removed {len(removed)} invitations, "
        f"emails sent {report.sent_count}, failed {report.failed_count}"
    )
    return {
        "invitations_removed": len(removed),
        **report.as_dict(),
        "removed_students": [
            {"id": s.id, "name": s.full_name, "email": s.email} for s in removed
        ],
        "removal_reason": removal_reason,
    }
