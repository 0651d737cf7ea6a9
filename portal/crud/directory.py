from dataclasses import dataclass
from typing import Iterable, List, Tuple
from sqlalchemy.orm import Session
from portal.models.assignment import Assignment, CreatorRole
from portal.models.directory import Student, Supervisor

@dataclass(frozen=True)
class Roster:
    """A supervisor plus the students they supervise"""
    supervisor_id: int
    student_ids: Tuple[int, ...]

    def includes(self, assignment: Assignment) -> bool:
        if assignment.creator_role == CreatorRole.STUDENT:
            return assignment.created_by in self.student_ids
        return assignment.created_by == self.supervisor_id

def get_supervisor(db: Session, supervisor_id: int):
    return db.query(Supervisor).filter(Supervisor.id == supervisor_id).first()

def get_students(db: Session, student_ids: Iterable[int]) -> List[Student]:
    ids = list(student_ids)
    if not ids:
        return []
    return db.query(Student).filter(Student.id.in_(ids)).order_by(Student.id).all()

def get_department_students(db: Session, department_id: int, student_ids: Iterable[int]) -> List[Student]:
    ids = list(student_ids)
    if not ids or department_id is None:
        return []
    return (
        db.query(Student)
        .filter(Student.id.in_(ids), Student.department_id == department_id)
        .order_by(Student.id)
        .all()
    )

def get_roster(db: Session, supervisor_id: int) -> Roster:
    rows = db.query(Student.id).filter(Student.supervisor_id == supervisor_id).order_by(Student.id).all()
    return Roster(supervisor_id=supervisor_id, student_ids=tuple(row[0] for row in rows))
