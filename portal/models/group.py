from sqlalchemy import Column, Integer, String, ForeignKey, DateTime, UniqueConstraint
from sqlalchemy.orm import relationship
from datetime import datetime, timezone
from portal.db.base import Base

class AssignmentGroup(Base):
    __tablename__ = "assignment_groups"

    id = Column(Integer, primary_key=True)
    assignment_id = Column(Integer, ForeignKey("assignments.id"), nullable=False, index=True)
    group_name = Column(String(100), nullable=False)
    created_by = Column(Integer, nullable=False)
    max_members = Column(Integer, nullable=False)
    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    updated_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    assignment = relationship("Assignment", back_populates="groups")
    members = relationship(
        "GroupMember",
        back_populates="group",
        cascade="all, delete-orphan",
        order_by="GroupMember.id",
    )
    submissions = relationship("Submission", back_populates="group")

class GroupMember(Base):
    __tablename__ = "group_members"
    # A student joins at most one group per assignment
    __table_args__ = (
        UniqueConstraint("assignment_id", "student_id", name="uq_group_member_assignment_student"),
    )

    id = Column(Integer, primary_key=True)
    group_id = Column(Integer, ForeignKey("assignment_groups.id"), nullable=False, index=True)
    assignment_id = Column(Integer, ForeignKey("assignments.id"), nullable=False)
    student_id = Column(Integer, ForeignKey("students.id"), nullable=False)
    joined_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))

    group = relationship("AssignmentGroup", back_populates="members")
    student = relationship("Student")
