from typing import Iterable, List, Set
from sqlalchemy.orm import Session
from portal.models.assignment import Assignment, CreatorRole
from portal.models.group import GroupMember
from portal.models.submission import Submission

def get_submission(db: Session, submission_id: int):
    return db.query(Submission).filter(Submission.id == submission_id).first()

def list_for_assignments(db: Session, assignment_ids: Iterable[int]) -> List[Submission]:
    ids = list(assignment_ids)
    if not ids:
        return []
    return db.query(Submission).filter(Submission.assignment_id.in_(ids)).all()

def count_for_assignment(db: Session, assignment_id: int) -> int:
    return db.query(Submission).filter(Submission.assignment_id == assignment_id).count()

def students_with_submissions(db: Session, assignment_id: int, student_ids: Iterable[int]) -> Set[int]:
    """Students among ``student_ids`` who submitted alone or through a group"""
    ids = list(student_ids)
    if not ids:
        return set()
    individual = (
        db.query(Submission.student_id)
        .filter(Submission.assignment_id == assignment_id, Submission.student_id.in_(ids))
        .all()
    )
    through_group = (
        db.query(GroupMember.student_id)
        .join(Submission, Submission.group_id == GroupMember.group_id)
        .filter(Submission.assignment_id == assignment_id, GroupMember.student_id.in_(ids))
        .all()
    )
    return {row[0] for row in individual} | {row[0] for row in through_group}

def pending_for_creator(db: Session, creator_id: int, limit: int = 10) -> List[Submission]:
    return (
        db.query(Submission)
        .join(Assignment, Assignment.id == Submission.assignment_id)
        .filter(
            Assignment.created_by == creator_id,
            Assignment.creator_role == CreatorRole.SUPERVISOR,
            Submission.score.is_(None),
        )
        .order_by(Submission.submitted_at.desc(), Submission.id.desc())
        .limit(limit)
        .all()
    )
