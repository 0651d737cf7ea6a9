from typing import Iterable, List, Optional
from sqlalchemy import func
from sqlalchemy.orm import Session
from portal.models.group import AssignmentGroup, GroupMember
from portal.models.submission import Submission

def get_group(db: Session, group_id: int):
    return db.query(AssignmentGroup).filter(AssignmentGroup.id == group_id).first()

def list_groups(db: Session, assignment_id: int) -> List[AssignmentGroup]:
    return (
        db.query(AssignmentGroup)
        .filter(AssignmentGroup.assignment_id == assignment_id)
        .order_by(AssignmentGroup.created_at, AssignmentGroup.id)
        .all()
    )

def find_by_name(db: Session, assignment_id: int, group_name: str, exclude_id: Optional[int] = None):
    query = db.query(AssignmentGroup).filter(
        AssignmentGroup.assignment_id == assignment_id,
        func.lower(func.trim(AssignmentGroup.group_name)) == group_name.strip().lower(),
    )
    if exclude_id is not None:
        query = query.filter(AssignmentGroup.id != exclude_id)
    return query.first()

def find_memberships(
    db: Session, assignment_id: int, student_ids: Iterable[int], exclude_group_id: Optional[int] = None
) -> List[GroupMember]:
    ids = list(student_ids)
    if not ids:
        return []
    query = db.query(GroupMember).filter(
        GroupMember.assignment_id == assignment_id, GroupMember.student_id.in_(ids)
    )
    if exclude_group_id is not None:
        query = query.filter(GroupMember.group_id != exclude_group_id)
    return query.all()

def members_for_assignments(db: Session, assignment_ids: Iterable[int]) -> List[GroupMember]:
    ids = list(assignment_ids)
    if not ids:
        return []
    return db.query(GroupMember).filter(GroupMember.assignment_id.in_(ids)).all()

def create_group(db: Session, group_data: dict) -> AssignmentGroup:
    group = AssignmentGroup(**group_data)
    db.add(group)
    db.flush()
    return group

def add_members(db: Session, group: AssignmentGroup, student_ids: Iterable[int]) -> List[GroupMember]:
    members = []
    for student_id in student_ids:
        member = GroupMember(group_id=group.id, assignment_id=group.assignment_id, student_id=student_id)
        db.add(member)
        members.append(member)
    db.flush()
    return members

def remove_members(db: Session, group: AssignmentGroup) -> int:
    removed = db.query(GroupMember).filter(GroupMember.group_id == group.id).delete(synchronize_session=False)
    db.expire(group, ["members"])
    return removed

def has_submission(db: Session, group_id: int) -> bool:
    return db.query(Submission.id).filter(Submission.group_id == group_id).first() is not None

def delete_group(db: Session, group: AssignmentGroup) -> None:
    remove_members(db, group)
    db.delete(group)
    db.flush()
