from sqlalchemy import Column, Integer, String, Text, Boolean, DateTime, Enum, JSON
from sqlalchemy.orm import relationship
from datetime import datetime, timezone
import enum
from portal.db.base import Base

class AssignmentType(enum.Enum):
    INDIVIDUAL = "individual"
    GROUP = "group"

class CreatorRole(enum.Enum):
    SUPERVISOR = "supervisor"
    STUDENT = "student"

class Assignment(Base):
    __tablename__ = "assignments"

    id = Column(Integer, primary_key=True)
    hashed_id = Column(String(64), unique=True, nullable=True)
    title = Column(String(200), nullable=False)
    description = Column(Text, nullable=False)
    instructions = Column(Text, nullable=False)
    due_date = Column(DateTime(timezone=True), nullable=False)
    is_active = Column(Boolean, nullable=False, default=True)
    max_score = Column(Integer, nullable=False, default=100)
    attachments = Column(JSON, nullable=False, default=list)
    # Supervisor or delegated student id, depending on creator_role
    created_by = Column(Integer, nullable=False, index=True)
    creator_role = Column(Enum(CreatorRole), nullable=False, default=CreatorRole.SUPERVISOR)
    updated_by = Column(Integer, nullable=True)
    assignment_type = Column(Enum(AssignmentType), nullable=False, default=AssignmentType.INDIVIDUAL)
    max_group_size = Column(Integer, nullable=True)
    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    updated_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    invitations = relationship("Invitation", back_populates="assignment", passive_deletes=True)
    submissions = relationship("Submission", back_populates="assignment", passive_deletes=True)
    groups = relationship("AssignmentGroup", back_populates="assignment", passive_deletes=True)

    @property
    def is_group(self) -> bool:
        return self.assignment_type == AssignmentType.GROUP

    def is_owned_by(self, supervisor_id: int) -> bool:
        return self.creator_role == CreatorRole.SUPERVISOR and self.created_by == supervisor_id
