from sqlalchemy import Column, Integer, ForeignKey, Float, DateTime, Text, Enum, JSON, UniqueConstraint
from sqlalchemy.orm import relationship
from datetime import datetime, timezone
import enum
from portal.db.base import Base

class SubmissionStatus(enum.Enum):
    PENDING = "pending"
    APPROVED = "approved"
    CHANGES_REQUIRED = "changes_required"
    REJECTED = "rejected"

class Submission(Base):
    __tablename__ = "assignment_submissions"
    __table_args__ = (
        UniqueConstraint("assignment_id", "student_id", name="uq_submission_assignment_student"),
        UniqueConstraint("assignment_id", "group_id", name="uq_submission_assignment_group"),
    )

    id = Column(Integer, primary_key=True)
    assignment_id = Column(Integer, ForeignKey("assignments.id"), nullable=False, index=True)
    student_id = Column(Integer, ForeignKey("students.id"), nullable=True)
    group_id = Column(Integer, ForeignKey("assignment_groups.id"), nullable=True)
    submission_text = Column(Text, nullable=True)
    attachments = Column(JSON, nullable=False, default=list)
    submitted_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    score = Column(Float, nullable=True)
    feedback = Column(Text, nullable=True)
    status = Column(Enum(SubmissionStatus), nullable=False, default=SubmissionStatus.PENDING)
    graded_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    version = Column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}

    assignment = relationship("Assignment", back_populates="submissions")
    student = relationship("Student")
    group = relationship("AssignmentGroup", back_populates="submissions")
