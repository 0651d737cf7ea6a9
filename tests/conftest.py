import os
import tempfile

_tmp = tempfile.mkdtemp(prefix="portal-tests-")
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["SECRET_KEY"] = "test-secret"
os.environ["EMAIL_HOST"] = ""
os.environ["REDIS_URL"] = ""
os.environ["UPLOAD_DIR"] = os.path.join(_tmp, "uploads")
os.environ["LOG_DIR"] = os.path.join(_tmp, "logs")

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, List

import pytest
from fastapi.testclient import TestClient

from portal.db.base import Base
from portal.db.init_db import init_db
from portal.db.session import SessionLocal, engine
from portal.dependencies.services import get_file_storage, get_notifier
from portal.main import app
from portal.models.directory import Department, Student, StudentStatus, Supervisor
from portal.services.file_storage import FileStorage
from portal.services.notifications import NotificationDispatcher
from factories import RecordingNotifier

FROZEN_NOW = datetime(2025, 3, 15, 12, 0, tzinfo=timezone.utc)


@dataclass
class Seed:
    department_id: int
    other_department_id: int
    supervisor_id: int
    other_supervisor_id: int
    outsider_supervisor_id: int
    students: List[int] = field(default_factory=list)
    inactive_student_id: int = 0
    foreign_student_id: int = 0
    emails: Dict[int, str] = field(default_factory=dict)


@pytest.fixture
def frozen_now():
    return FROZEN_NOW


@pytest.fixture
def db():
    init_db(engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def seed(db):
    science = Department(name="Computer Science")
    arts = Department(name="Fine Arts")
    db.add_all([science, arts])
    db.flush()

    supervisor = Supervisor(first_name="Grace", last_name="Hopper", email="grace@uni.edu", department_id=science.id)
    colleague = Supervisor(first_name="Alan", last_name="Turing", email="alan@uni.edu", department_id=science.id)
    outsider = Supervisor(first_name="Frida", last_name="Kahlo", email="frida@uni.edu", department_id=arts.id)
    db.add_all([supervisor, colleague, outsider])
    db.flush()

    students = [
        Student(
            first_name=f"Student{i}",
            last_name=f"Lastname{i}",
            email=f"student{i}@uni.edu",
            status=StudentStatus.ACTIVE,
            department_id=science.id,
            supervisor_id=supervisor.id,
        )
        for i in range(1, 8)
    ]
    inactive = Student(
        first_name="Idle", last_name="Person", email="idle@uni.edu",
        status=StudentStatus.INACTIVE, department_id=science.id, supervisor_id=supervisor.id,
    )
    foreign = Student(
        first_name="Far", last_name="Away", email="far@uni.edu",
        status=StudentStatus.ACTIVE, department_id=arts.id, supervisor_id=outsider.id,
    )
    db.add_all(students + [inactive, foreign])
    db.commit()

    everyone = students + [inactive, foreign]
    return Seed(
        department_id=science.id,
        other_department_id=arts.id,
        supervisor_id=supervisor.id,
        other_supervisor_id=colleague.id,
        outsider_supervisor_id=outsider.id,
        students=[s.id for s in students],
        inactive_student_id=inactive.id,
        foreign_student_id=foreign.id,
        emails={s.id: s.email for s in everyone},
    )


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def dispatcher(notifier):
    return NotificationDispatcher(notifier, max_attempts=3)


@pytest.fixture
def storage(tmp_path):
    return FileStorage(upload_dir=str(tmp_path / "uploads"))


@pytest.fixture
def client(db, notifier, storage):
    app.dependency_overrides[get_notifier] = lambda: notifier
    app.dependency_overrides[get_file_storage] = lambda: storage
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


