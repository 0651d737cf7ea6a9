from typing import Iterable, List, Optional
from sqlalchemy.orm import Session
from portal.models.invitation import Invitation

def get_invitations(db: Session, assignment_id: int, student_ids: Optional[Iterable[int]] = None) -> List[Invitation]:
    query = db.query(Invitation).filter(Invitation.assignment_id == assignment_id)
    if student_ids is not None:
        query = query.filter(Invitation.student_id.in_(list(student_ids)))
    return query.order_by(Invitation.id).all()

def list_for_assignments(db: Session, assignment_ids: Iterable[int]) -> List[Invitation]:
    ids = list(assignment_ids)
    if not ids:
        return []
    return db.query(Invitation).filter(Invitation.assignment_id.in_(ids)).all()

def create_invitation(db: Session, invitation_data: dict) -> Invitation:
    invitation = Invitation(**invitation_data)
    db.add(invitation)
    db.flush()
    return invitation

def delete_invitations(db: Session, assignment_id: int, student_ids: Optional[Iterable[int]] = None) -> int:
    query = db.query(Invitation).filter(Invitation.assignment_id == assignment_id)
    if student_ids is not None:
        query = query.filter(Invitation.student_id.in_(list(student_ids)))
    return query.delete(synchronize_session=False)
