from sqlalchemy import Column, Integer, String, ForeignKey, Enum
from sqlalchemy.orm import relationship
import enum
from portal.db.base import Base

class StudentStatus(enum.Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"

class Department(Base):
    __tablename__ = "departments"
    id = Column(Integer, primary_key=True)
    name = Column(String(200), nullable=False, unique=True)

    supervisors = relationship("Supervisor", back_populates="department")
    students = relationship("Student", back_populates="department")

class Supervisor(Base):
    __tablename__ = "supervisors"
    id = Column(Integer, primary_key=True)
    first_name = Column(String(100), nullable=False)
    last_name = Column(String(100), nullable=False)
    email = Column(String(255), nullable=False, unique=True)
    department_id = Column(Integer, ForeignKey("departments.id"), nullable=True)

    department = relationship("Department", back_populates="supervisors")
    students = relationship("Student", back_populates="supervisor")

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}"

class Student(Base):
    __tablename__ = "students"
    id = Column(Integer, primary_key=True)
    first_name = Column(String(100), nullable=False)
    last_name = Column(String(100), nullable=False)
    email = Column(String(255), nullable=False, unique=True)
    phone = Column(String(50), nullable=True)
    status = Column(Enum(StudentStatus), nullable=False, default=StudentStatus.ACTIVE)
    department_id = Column(Integer, ForeignKey("departments.id"), nullable=True)
    supervisor_id = Column(Integer, ForeignKey("supervisors.id"), nullable=True, index=True)

    department = relationship("Department", back_populates="students")
    supervisor = relationship("Supervisor", back_populates="students")

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}"
