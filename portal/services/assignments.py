"""
Assignment management: create, update, activate/deactivate, delete and the
roster-scoped read views.
"""
import logging
import os
from datetime import datetime
from typing import Dict, List, Optional, Tuple

from fastapi import UploadFile
from sqlalchemy.orm import Session

from portal.core.config.settings import get_settings
from portal.core.errors import ErrorCode, PortalError, validation_error
from portal.crud import assignments as assignments_crud
from portal.crud import directory as directory_crud
from portal.crud import groups as groups_crud
from portal.crud import invitations as invitations_crud
from portal.crud import submissions as submissions_crud
from portal.db.session import transaction
from portal.models.assignment import Assignment, AssignmentType, CreatorRole
from portal.models.invitation import InvitationStatus
from portal.models.notification import NotificationKind
from portal.models.submission import Submission, SubmissionStatus
from portal.services import analytics
from portal.services.file_storage import FileStorage, FileStorageError
from portal.services.groups import serialize_group
from portal.services.lifecycle import snapshot_status
from portal.services.notifications import NotificationDispatcher
from portal.utils.helpers import as_utc, format_datetime, get_utc_now

logger = logging.getLogger(__name__)

TEXT_LIMITS = {
    "title": (5, 200),
    "description": (10, 2000),
    "instructions": (10, 5000),
}


def _years_after(dt: datetime, years: int) -> datetime:
    try:
        return dt.replace(year=dt.year + years)
    except ValueError:
        # Feb 29 in a non-leap target year
        return dt.replace(year=dt.year + years, day=28)


def validate_fields(fields: dict, now: datetime, allow_past_due: bool = False) -> Dict[str, str]:
    settings = get_settings()
    errors = {}

    for name, (low, high) in TEXT_LIMITS.items():
        value = (fields.get(name) or "").strip()
        label = name.capitalize()
        if not value:
            errors[name] = f"{label} is required"
        elif len(value) < low:
            errors[name] = f"{label} must be at least {low} characters"
        elif len(value) > high:
            errors[name] = f"{label} cannot exceed {high} characters"

    due_date = fields.get("due_date")
    if due_date is None:
        errors["due_date"] = "Due date is required"
    else:
        due = as_utc(due_date)
        if not allow_past_due and due <= now:
            errors["due_date"] = "Due date must be in the future"
        elif due > _years_after(now, settings.MAX_DUE_DATE_YEARS):
            errors["due_date"] = f"Due date cannot be more than {settings.MAX_DUE_DATE_YEARS} years in the future"

    max_score = fields.get("max_score")
    if max_score is None:
        errors["max_score"] = "Maximum score is required"
    elif max_score < 1 or max_score > settings.MAX_SCORE_LIMIT:
        errors["max_score"] = f"Maximum score must be between 1 and {settings.MAX_SCORE_LIMIT}"

    assignment_type = fields.get("assignment_type") or AssignmentType.INDIVIDUAL.value
    if assignment_type not in {t.value for t in AssignmentType}:
        errors["assignment_type"] = "Assignment type must be individual or group"
    elif assignment_type == AssignmentType.GROUP.value:
        size = fields.get("max_group_size")
        if size is None or size < 2:
            errors["max_group_size"] = "Group assignments need a maximum group size of at least 2"

    return errors


async def _file_size(file: UploadFile) -> int:
    if file.size is not None:
        return file.size
    content = await file.read()
    await file.seek(0)
    return len(content)


async def validate_files(files: List[UploadFile], max_count: Optional[int] = None) -> Dict[str, str]:
    settings = get_settings()
    max_count = settings.MAX_ATTACHMENTS if max_count is None else max_count
    if len(files) > max_count:
        return {"attachments": f"You can attach at most {settings.MAX_ATTACHMENTS} files"}
    for file in files:
        extension = os.path.splitext(file.filename or "")[1].lower()
        if extension not in settings.ALLOWED_EXTENSIONS:
            return {"attachments": f"{file.filename}: only PDF, DOC and DOCX files are allowed"}
        if await _file_size(file) > settings.MAX_UPLOAD_SIZE:
            limit_mb = settings.MAX_UPLOAD_SIZE // (1024 * 1024)
            return {"attachments": f"{file.filename}: files must be smaller than {limit_mb}MB"}
    return {}


async def _upload_all(storage: FileStorage, files: List[UploadFile], name_hint: str) -> List[str]:
    urls = []
    try:
        for file in files:
            urls.append(await storage.upload(file, name_hint))
    except FileStorageError as e:
        _discard(storage, urls)
        raise PortalError(ErrorCode.FILE_UPLOAD_ERROR, f"Failed to upload attachments: {str(e)}")
    return urls


def _discard(storage: FileStorage, urls: List[str]) -> None:
    for url in urls:
        storage.delete(url)


def _column_values(fields: dict) -> dict:
    assignment_type = AssignmentType(fields.get("assignment_type") or AssignmentType.INDIVIDUAL.value)
    return {
        "title": fields["title"].strip(),
        "description": fields["description"].strip(),
        "instructions": fields["instructions"].strip(),
        "due_date": as_utc(fields["due_date"]),
        "max_score": fields["max_score"],
        "assignment_type": assignment_type,
        "max_group_size": fields.get("max_group_size") if assignment_type == AssignmentType.GROUP else None,
    }


def serialize_assignment(assignment: Assignment) -> dict:
    return {
        "id": assignment.id,
        "hashed_id": assignment.hashed_id,
        "title": assignment.title,
        "description": assignment.description,
        "instructions": assignment.instructions,
        "due_date": format_datetime(assignment.due_date),
        "is_active": assignment.is_active,
        "max_score": assignment.max_score,
        "attachments": list(assignment.attachments or []),
        "created_by": assignment.created_by,
        "creator_role": assignment.creator_role.value,
        "updated_by": assignment.updated_by,
        "assignment_type": assignment.assignment_type.value,
        "max_group_size": assignment.max_group_size,
        "created_at": format_datetime(assignment.created_at),
        "updated_at": format_datetime(assignment.updated_at),
    }


def _check_existing_work(db: Session, assignment: Assignment, values: dict) -> None:
    """An edit may not invalidate groups or grades that already exist"""
    groups = groups_crud.list_groups(db, assignment.id)
    if groups and values["assignment_type"] != AssignmentType.GROUP:
        raise validation_error({
            "assignment_type": "Cannot change to an individual assignment while groups exist",
        })
    largest = max((len(group.members) for group in groups), default=0)
    if values["max_group_size"] is not None and largest > values["max_group_size"]:
        raise PortalError(
            ErrorCode.GROUP_SIZE_EXCEEDED,
            f"An existing group has {largest} members, more than the new maximum of {values['max_group_size']}",
        )

    scores = [s.score for s in assignment.submissions if s.score is not None]
    if scores and max(scores) > values["max_score"]:
        raise PortalError(
            ErrorCode.INVALID_SCORE,
            f"Maximum score cannot be lower than an existing score of {max(scores)}",
        )


def _owned(db: Session, assignment_id: int, supervisor_id: int, action: str) -> Assignment:
    assignment = assignments_crud.get_assignment(db, assignment_id)
    if not assignment:
        raise PortalError(ErrorCode.ASSIGNMENT_NOT_FOUND, "Assignment not found")
    if not assignment.is_owned_by(supervisor_id):
        raise PortalError(ErrorCode.ACCESS_DENIED, f"You can only {action} assignments you created")
    return assignment


async def create_assignment(
    db: Session,
    storage: FileStorage,
    fields: dict,
    files: List[UploadFile],
    created_by: int,
    now: Optional[datetime] = None,
) -> dict:
    now = as_utc(now or get_utc_now())
    errors = validate_fields(fields, now)
    errors.update(await validate_files(files))
    if errors:
        raise validation_error(errors)

    if not directory_crud.get_supervisor(db, created_by):
        raise PortalError(ErrorCode.SUPERVISOR_NOT_FOUND, "Supervisor not found")
    if assignments_crud.find_by_title(db, created_by, fields["title"]):
        raise PortalError(ErrorCode.DUPLICATE_TITLE, "You already have an assignment with this title")

    urls = await _upload_all(storage, files, f"assignment_{created_by}")
    try:
        with transaction(db, on_unique=ErrorCode.DUPLICATE_TITLE):
            assignment = assignments_crud.create_assignment(db, {
                **_column_values(fields),
                "is_active": True,
                "attachments": urls,
                "created_by": created_by,
                "creator_role": CreatorRole.SUPERVISOR,
                "updated_by": created_by,
                "created_at": now,
                "updated_at": now,
            })
    except PortalError:
        _discard(storage, urls)
        raise

    logger.info(f"Assignment {assignment.id} created by supervisor {created_by}")
    return serialize_assignment(assignment)


async def update_assignment(
    db: Session,
    storage: FileStorage,
    assignment_id: int,
    fields: dict,
    files: List[UploadFile],
    keep_existing_files: bool,
    supervisor_id: int,
    now: Optional[datetime] = None,
) -> dict:
    now = as_utc(now or get_utc_now())
    errors = validate_fields(fields, now, allow_past_due=True)
    # Count limit is checked against kept files below
    errors.update(await validate_files(files, max_count=len(files)))
    if errors:
        raise validation_error(errors)

    assignment = _owned(db, assignment_id, supervisor_id, "update")
    if assignments_crud.find_by_title(db, assignment.created_by, fields["title"], exclude_id=assignment.id):
        raise PortalError(ErrorCode.DUPLICATE_TITLE, "You already have an assignment with this title")
    values = _column_values(fields)
    _check_existing_work(db, assignment, values)

    existing = list(assignment.attachments or [])
    kept = existing if keep_existing_files else []
    max_files = get_settings().MAX_ATTACHMENTS
    if len(kept) + len(files) > max_files:
        raise PortalError(
            ErrorCode.FILE_LIMIT_EXCEEDED,
            f"An assignment can have at most {max_files} attachments",
        )

    urls = await _upload_all(storage, files, f"assignment_{assignment.id}")
    try:
        with transaction(db, on_unique=ErrorCode.DUPLICATE_TITLE):
            assignments_crud.update_assignment(db, assignment, {
                **values,
                "attachments": kept + urls,
                "updated_by": supervisor_id,
                "updated_at": now,
            })
    except PortalError:
        _discard(storage, urls)
        raise

    if not keep_existing_files:
        _discard(storage, existing)
    logger.info(f"Assignment {assignment.id} updated by supervisor {supervisor_id}")
    return serialize_assignment(assignment)


def toggle_status(
    db: Session,
    dispatcher: NotificationDispatcher,
    assignment_id: int,
    supervisor_id: int,
    is_active: bool,
) -> Tuple[dict, List[int]]:
    assignment = _owned(db, assignment_id, supervisor_id, "change the status of")
    if assignment.is_active == is_active:
        state = "active" if is_active else "inactive"
        raise PortalError(ErrorCode.STATUS_UNCHANGED, f"Assignment is already {state}")

    invitations = invitations_crud.get_invitations(db, assignment.id)
    with transaction(db):
        assignment.is_active = is_active
        assignment.updated_by = supervisor_id
        assignment.updated_at = get_utc_now()
        rows = [
            dispatcher.enqueue(
                db,
                NotificationKind.STATUS_CHANGE,
                inv.student.email,
                inv.student.full_name,
                assignment_id=assignment.id,
                assignment_title=assignment.title,
                is_active=is_active,
                due_date=format_datetime(assignment.due_date),
            )
            for inv in invitations
        ]
        row_ids = [row.id for row in rows]

    logger.info(
        f"Assignment {assignment.id} {'activated' if is_active else 'deactivated'} "
        f"by supervisor {supervisor_id}; {len(row_ids)} notices queued"
    )
    return {
        "id": assignment.id,
        "title": assignment.title,
        "is_active": assignment.is_active,
        "notified_students": len(row_ids),
    }, row_ids


def delete_assignment(db: Session, storage: FileStorage, assignment_id: int, supervisor_id: int) -> dict:
    assignment = _owned(db, assignment_id, supervisor_id, "delete")
    if submissions_crud.count_for_assignment(db, assignment.id) > 0:
        raise PortalError(ErrorCode.HAS_SUBMISSIONS, "Cannot delete an assignment that has submissions")

    attachments = list(assignment.attachments or [])
    deleted = {"id": assignment.id, "title": assignment.title}
    with transaction(db):
        removed = invitations_crud.delete_invitations(db, assignment.id)
        for group in groups_crud.list_groups(db, assignment.id):
            groups_crud.delete_group(db, group)
        assignments_crud.delete_assignment(db, assignment)

    _discard(storage, attachments)
    logger.info(f"Assignment {deleted['id']} deleted with {removed} invitations")
    deleted["invitations_removed"] = removed
    return deleted


def _creator_names(db: Session, supervisor_id: int) -> Dict[Tuple[CreatorRole, int], str]:
    supervisor = directory_crud.get_supervisor(db, supervisor_id)
    names = {(CreatorRole.STUDENT, student.id): student.full_name for student in supervisor.students}
    names[(CreatorRole.SUPERVISOR, supervisor.id)] = supervisor.full_name
    return names


def _score_stats(submissions: List[Submission]) -> dict:
    scores = [s.score for s in submissions if s.score is not None]
    return {
        "total": len(submissions),
        "graded": len(scores),
        "pending": sum(1 for s in submissions if s.status == SubmissionStatus.PENDING),
        "average_score": round(sum(scores) / len(scores), 1) if scores else 0,
        "highest_score": max(scores) if scores else None,
        "lowest_score": min(scores) if scores else None,
    }


def list_assignments(db: Session, supervisor_id: int, now: Optional[datetime] = None) -> List[dict]:
    if not directory_crud.get_supervisor(db, supervisor_id):
        raise PortalError(ErrorCode.SUPERVISOR_NOT_FOUND, "Supervisor not found")

    now = as_utc(now or get_utc_now())
    assignments = assignments_crud.list_for_roster(db, directory_crud.get_roster(db, supervisor_id))
    ids = [a.id for a in assignments]
    invitations = invitations_crud.list_for_assignments(db, ids)
    submissions = submissions_crud.list_for_assignments(db, ids)
    members = groups_crud.members_for_assignments(db, ids)
    snaps = {s.assignment_id: s for s in analytics.snapshots(assignments, invitations, submissions, members)}
    names = _creator_names(db, supervisor_id)

    by_assignment: Dict[int, List[Submission]] = {a.id: [] for a in assignments}
    for submission in submissions:
        by_assignment[submission.assignment_id].append(submission)

    result = []
    for assignment in assignments:
        snap = snaps[assignment.id]
        stats = _score_stats(by_assignment[assignment.id])
        result.append({
            **serialize_assignment(assignment),
            "status": snapshot_status(snap, now).value,
            "creator_name": names.get((assignment.creator_role, assignment.created_by)),
            "submissions_count": stats["total"],
            "invited_students_count": snap.invited_count,
            "submitted_students_count": snap.submitted_count,
            "average_score": stats["average_score"],
        })
    return result


def _serialize_submission(submission: Submission) -> dict:
    return {
        "id": submission.id,
        "student_id": submission.student_id,
        "student_name": submission.student.full_name if submission.student else None,
        "group_id": submission.group_id,
        "group_name": submission.group.group_name if submission.group else None,
        "submission_text": submission.submission_text,
        "attachments": list(submission.attachments or []),
        "submitted_at": format_datetime(submission.submitted_at),
        "score": submission.score,
        "feedback": submission.feedback,
        "status": submission.status.value,
        "graded_at": format_datetime(submission.graded_at),
        "version": submission.version,
    }


def view_assignment(
    db: Session, assignment_id: int, supervisor_id: Optional[int] = None, now: Optional[datetime] = None
) -> dict:
    assignment = assignments_crud.get_assignment(db, assignment_id)
    if not assignment:
        raise PortalError(ErrorCode.ASSIGNMENT_NOT_FOUND, "Assignment not found")
    if supervisor_id is not None and not directory_crud.get_roster(db, supervisor_id).includes(assignment):
        raise PortalError(ErrorCode.ACCESS_DENIED, "You do not have access to this assignment")

    now = as_utc(now or get_utc_now())
    invitations = invitations_crud.get_invitations(db, assignment.id)
    submissions = sorted(assignment.submissions, key=lambda s: s.id)
    groups = groups_crud.list_groups(db, assignment.id)
    members = [member for group in groups for member in group.members]
    snap = analytics.snapshots([assignment], invitations, submissions, members)[0]
    submitters = analytics.submitters_by_assignment(submissions, members)[assignment.id]

    invitation_stats = {
        "total": len(invitations),
        "pending": sum(1 for i in invitations if i.status == InvitationStatus.PENDING),
        "accepted": sum(1 for i in invitations if i.status == InvitationStatus.ACCEPTED),
        "declined": sum(1 for i in invitations if i.status == InvitationStatus.DECLINED),
        "submitted": snap.submitted_count,
    }
    serialized_groups = [serialize_group(db, group) for group in groups]
    group_stats = {
        "total_groups": len(groups),
        "total_members": len(members),
        "groups_with_submissions": sum(1 for g in serialized_groups if g["has_submission"]),
    }

    return {
        **serialize_assignment(assignment),
        "status": snapshot_status(snap, now).value,
        "submission_stats": _score_stats(submissions),
        "invitation_stats": invitation_stats,
        "submissions": [_serialize_submission(s) for s in submissions],
        "invitations": [
            {
                "id": inv.id,
                "student_id": inv.student_id,
                "student_name": inv.student.full_name,
                "student_email": inv.student.email,
                "status": inv.status.value,
                "invited_at": format_datetime(inv.invited_at),
                "responded_at": format_datetime(inv.responded_at),
                "custom_message": inv.custom_message,
                "has_submitted": inv.student_id in submitters,
            }
            for inv in invitations
        ],
        "groups": serialized_groups,
        "group_stats": group_stats,
    }


def recent_submissions(db: Session, supervisor_id: int, limit: int = 10) -> List[dict]:
    return [
        {
            "id": s.id,
            "assignment_id": s.assignment_id,
            "assignment_title": s.assignment.title,
            "max_score": s.assignment.max_score,
            "student_id": s.student_id,
            "student_name": s.student.full_name if s.student else None,
            "group_id": s.group_id,
            "group_name": s.group.group_name if s.group else None,
            "submitted_at": format_datetime(s.submitted_at),
            "status": s.status.value,
        }
        for s in submissions_crud.pending_for_creator(db, supervisor_id, limit)
    ]
