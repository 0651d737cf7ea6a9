"""
Dashboard analytics for a supervisor's roster.

Every metric is computed twice: over everything the roster owns, and over the
trailing month (entities created on or after ``now - 1 month``). The monthly
figures feed ``percentage_change``. Assignment statuses in both windows come
from ``derive_status``.
"""
import logging
from collections import defaultdict
from datetime import datetime, timedelta
from typing import Dict, Iterable, List, Optional, Set

from sqlalchemy.orm import Session

from portal.core.errors import ErrorCode, PortalError
from portal.crud import assignments as assignments_crud
from portal.crud import directory as directory_crud
from portal.crud import groups as groups_crud
from portal.crud import invitations as invitations_crud
from portal.crud import submissions as submissions_crud
from portal.models.assignment import Assignment
from portal.models.group import GroupMember
from portal.models.invitation import Invitation
from portal.models.submission import Submission, SubmissionStatus
from portal.services.lifecycle import AssignmentSnapshot, AssignmentStatus, snapshot_status
from portal.utils.helpers import as_utc, get_utc_now

logger = logging.getLogger(__name__)

METRICS = (
    "total_assignments",
    "active_assignments",
    "inactive_assignments",
    "completed_assignments",
    "overdue_assignments",
    "total_submissions",
    "pending_submissions",
    "average_score",
    "students_invited",
)


def percentage_change(current: float, previous: float) -> int:
    if previous == 0:
        return 100 if current > 0 else 0
    return round((current - previous) / previous * 100)


def one_month_before(now: datetime) -> datetime:
    """Same day of the previous month, clamped to that month's last day"""
    year, month = (now.year, now.month - 1) if now.month > 1 else (now.year - 1, 12)
    next_month_start = datetime(year + (month // 12), month % 12 + 1, 1, tzinfo=now.tzinfo)
    last_day = (next_month_start - timedelta(days=1)).day
    return now.replace(year=year, month=month, day=min(now.day, last_day))


def submitters_by_assignment(
    submissions: Iterable[Submission], members: Iterable[GroupMember]
) -> Dict[int, Set[int]]:
    """Students who submitted, individually or as members of a submitting group"""
    group_members: Dict[int, Set[int]] = defaultdict(set)
    for member in members:
        group_members[member.group_id].add(member.student_id)

    result: Dict[int, Set[int]] = defaultdict(set)
    for submission in submissions:
        if submission.student_id is not None:
            result[submission.assignment_id].add(submission.student_id)
        if submission.group_id is not None:
            result[submission.assignment_id] |= group_members.get(submission.group_id, set())
    return result


def snapshots(
    assignments: Iterable[Assignment],
    invitations: Iterable[Invitation],
    submissions: Iterable[Submission],
    members: Iterable[GroupMember],
) -> List[AssignmentSnapshot]:
    invited: Dict[int, Set[int]] = defaultdict(set)
    for invitation in invitations:
        invited[invitation.assignment_id].add(invitation.student_id)
    submitted = submitters_by_assignment(submissions, members)

    return [
        AssignmentSnapshot(
            assignment_id=a.id,
            is_active=a.is_active,
            due_date=a.due_date,
            invited_count=len(invited[a.id]),
            submitted_count=len(invited[a.id] & submitted[a.id]),
        )
        for a in assignments
    ]


def _window_metrics(
    assignments: List[Assignment],
    invitations: List[Invitation],
    submissions: List[Submission],
    members: List[GroupMember],
    now: datetime,
    since: Optional[datetime] = None,
) -> dict:
    def in_window(created_at) -> bool:
        return since is None or (created_at is not None and as_utc(created_at) >= since)

    assignments = [a for a in assignments if in_window(a.created_at)]
    invitations = [i for i in invitations if in_window(i.created_at)]
    submissions = [s for s in submissions if in_window(s.created_at)]

    statuses = [snapshot_status(snap, now) for snap in snapshots(assignments, invitations, submissions, members)]
    scores = [s.score for s in submissions if s.score is not None]

    return {
        "total_assignments": len(assignments),
        "active_assignments": statuses.count(AssignmentStatus.ACTIVE),
        "inactive_assignments": statuses.count(AssignmentStatus.INACTIVE),
        "completed_assignments": statuses.count(AssignmentStatus.COMPLETED),
        "overdue_assignments": statuses.count(AssignmentStatus.OVERDUE),
        "total_submissions": len(submissions),
        "pending_submissions": sum(1 for s in submissions if s.status == SubmissionStatus.PENDING),
        "average_score": round(sum(scores) / len(scores), 1) if scores else 0,
        "students_invited": len({i.student_id for i in invitations}),
    }


def empty_analytics() -> dict:
    payload = {metric: 0 for metric in METRICS}
    payload["percentage_change"] = {metric: 0 for metric in METRICS}
    payload["last_month"] = {metric: 0 for metric in METRICS}
    return payload


def get_assignment_analytics(db: Session, supervisor_id: int, now: Optional[datetime] = None) -> dict:
    if not directory_crud.get_supervisor(db, supervisor_id):
        raise PortalError(ErrorCode.SUPERVISOR_NOT_FOUND, "Supervisor not found")

    now = as_utc(now or get_utc_now())
    roster = directory_crud.get_roster(db, supervisor_id)
    assignments = assignments_crud.list_for_roster(db, roster)
    if not assignments:
        return empty_analytics()

    ids = [a.id for a in assignments]
    invitations = invitations_crud.list_for_assignments(db, ids)
    submissions = submissions_crud.list_for_assignments(db, ids)
    members = groups_crud.members_for_assignments(db, ids)

    current = _window_metrics(assignments, invitations, submissions, members, now)
    previous = _window_metrics(assignments, invitations, submissions, members, now, since=one_month_before(now))

    payload = dict(current)
    payload["percentage_change"] = {
        metric: percentage_change(current[metric], previous[metric]) for metric in METRICS
    }
    payload["last_month"] = previous
    logger.info(f"Analytics computed for supervisor {supervisor_id} over {len(assignments)} assignments")
    return payload
