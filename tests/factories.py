import asyncio
from datetime import timedelta
from typing import List

import jwt

from portal.core.config.settings import get_settings
from portal.models.assignment import Assignment, AssignmentType
from portal.models.group import AssignmentGroup, GroupMember
from portal.models.invitation import Invitation
from portal.models.submission import Submission, SubmissionStatus
from portal.services.email import Notifier
from portal.utils.helpers import get_utc_now, hash_id


class RecordingNotifier(Notifier):
    """Captures outgoing mail instead of sending it"""

    def __init__(self):
        super().__init__(get_settings())
        self.sent: List[tuple] = []
        self.attachments: List[tuple] = []
        self.fail_for = set()

    def _deliver(self, to_email, subject, html_content, attachments=()):
        if to_email in self.fail_for:
            return False
        self.sent.append((to_email, subject))
        self.attachments.extend((to_email, a) for a in attachments)
        return True

    def subjects_for(self, email):
        return [subject for to_email, subject in self.sent if to_email == email]


def watch_event_loop(notifier, monkeypatch) -> List[bool]:
    """Record, per delivery, whether it ran on a thread with a running event loop"""
    seen = []
    deliver = notifier._deliver

    def tracking(to_email, subject, html_content, attachments=()):
        try:
            asyncio.get_running_loop()
        except RuntimeError:
            seen.append(False)
        else:
            seen.append(True)
        return deliver(to_email, subject, html_content, attachments)

    monkeypatch.setattr(notifier, "_deliver", tracking)
    return seen


def auth_headers(supervisor_id: int) -> dict:
    settings = get_settings()
    token = jwt.encode({"sub": str(supervisor_id)}, settings.SECRET_KEY, algorithm=settings.ALGORITHM)
    return {"Authorization": f"Bearer {token}"}


def make_assignment(db, created_by: int, **overrides) -> Assignment:
    now = get_utc_now()
    values = {
        "title": "Literature Review",
        "description": "Survey the related work in the field",
        "instructions": "Write at least ten pages with citations",
        "due_date": now + timedelta(days=7),
        "is_active": True,
        "max_score": 100,
        "attachments": [],
        "created_by": created_by,
        "updated_by": created_by,
        "assignment_type": AssignmentType.INDIVIDUAL,
        "created_at": now,
        "updated_at": now,
    }
    values.update(overrides)
    assignment = Assignment(**values)
    db.add(assignment)
    db.flush()
    assignment.hashed_id = hash_id(assignment.id)
    db.commit()
    return assignment


def make_invitations(db, assignment: Assignment, student_ids, created_at=None) -> List[Invitation]:
    rows = []
    for student_id in student_ids:
        row = Invitation(assignment_id=assignment.id, student_id=student_id)
        if created_at is not None:
            row.created_at = created_at
            row.invited_at = created_at
        db.add(row)
        rows.append(row)
    db.commit()
    return rows


def make_submission(db, assignment: Assignment, student_id=None, group_id=None, **overrides) -> Submission:
    values = {
        "assignment_id": assignment.id,
        "student_id": student_id,
        "group_id": group_id,
        "submission_text": "Here is my work",
        "status": SubmissionStatus.PENDING,
    }
    values.update(overrides)
    submission = Submission(**values)
    db.add(submission)
    db.commit()
    return submission


def make_group(db, assignment: Assignment, name: str, student_ids) -> AssignmentGroup:
    group = AssignmentGroup(
        assignment_id=assignment.id,
        group_name=name,
        created_by=assignment.created_by,
        max_members=len(student_ids),
    )
    db.add(group)
    db.flush()
    for student_id in student_ids:
        db.add(GroupMember(group_id=group.id, assignment_id=assignment.id, student_id=student_id))
    db.commit()
    return group
