from typing import List, Optional
from sqlalchemy import and_, func, or_
from sqlalchemy.orm import Session
from portal.crud.directory import Roster
from portal.models.assignment import Assignment, CreatorRole
from portal.utils.helpers import hash_id

def get_assignment(db: Session, assignment_id: int):
    return db.query(Assignment).filter(Assignment.id == assignment_id).first()

def find_by_title(db: Session, supervisor_id: int, title: str, exclude_id: Optional[int] = None):
    query = db.query(Assignment).filter(
        Assignment.creator_role == CreatorRole.SUPERVISOR,
        Assignment.created_by == supervisor_id,
        func.lower(Assignment.title) == title.strip().lower(),
    )
    if exclude_id is not None:
        query = query.filter(Assignment.id != exclude_id)
    return query.first()

def list_for_roster(db: Session, roster: Roster) -> List[Assignment]:
    owned = and_(Assignment.creator_role == CreatorRole.SUPERVISOR, Assignment.created_by == roster.supervisor_id)
    if roster.student_ids:
        delegated = and_(
            Assignment.creator_role == CreatorRole.STUDENT,
            Assignment.created_by.in_(roster.student_ids),
        )
        owned = or_(owned, delegated)
    return (
        db.query(Assignment)
        .filter(owned)
        .order_by(Assignment.created_at.desc(), Assignment.id.desc())
        .all()
    )

def create_assignment(db: Session, assignment_data: dict) -> Assignment:
    assignment = Assignment(**assignment_data)
    db.add(assignment)
    db.flush()
    assignment.hashed_id = hash_id(assignment.id)
    db.flush()
    return assignment

def update_assignment(db: Session, assignment: Assignment, assignment_data: dict) -> Assignment:
    for key, value in assignment_data.items():
        setattr(assignment, key, value)
    db.flush()
    return assignment

def delete_assignment(db: Session, assignment: Assignment) -> None:
    db.delete(assignment)
    db.flush()
