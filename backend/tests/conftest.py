import os

# Point the app's default engine at SQLite before settings are first read.
os.environ.setdefault("DATABASE_URL", "sqlite+pysqlite://")

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

import timetabler.models  # noqa: F401
from timetabler.api.deps import get_db, snapshot_cache
from timetabler.db.base import Base
from timetabler.main import app
from timetabler.models.school import School
from timetabler.models.school_class import SchoolClass
from timetabler.models.subject import Subject
from timetabler.models.teacher import Teacher
from timetabler.models.teacher_assignment import TeacherClassSubject


@pytest.fixture()
def engine():
    engine = create_engine(
        "sqlite+pysqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture()
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture()
def db_session(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture()
def client(session_factory):
    snapshot_cache.clear()  # school ids repeat across per-test databases

    def override_get_db():
        db = session_factory()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db

    with TestClient(app) as test_client:
        yield test_client

    app.dependency_overrides.clear()
    snapshot_cache.clear()


@pytest.fixture()
def seeded(db_session):
    """One school, two classes sharing a maths teacher.

    7A: maths (Ada, 4 credits) and english (Ben, 3 credits).
    7B: maths (Ada) and science (Cy, 2 credits); 7B is capped at 6 periods.
    """
    school = School(name="Greenfield Primary", code="GFP")
    db_session.add(school)
    db_session.flush()

    class_a = SchoolClass(school_id=school.id, name="7A")
    class_b = SchoolClass(school_id=school.id, name="7B", max_periods_per_day=6)
    maths = Subject(school_id=school.id, name="Mathematics", code="MATH", credit_hours=4)
    english = Subject(school_id=school.id, name="English", code="ENG", credit_hours=3)
    science = Subject(school_id=school.id, name="Science", code="SCI", credit_hours=2)
    ada = Teacher(school_id=school.id, first_name="Ada", last_name="Lovelace")
    ben = Teacher(school_id=school.id, first_name="Ben", last_name="Okri")
    cy = Teacher(school_id=school.id, first_name="Cy", last_name="Young")
    db_session.add_all([class_a, class_b, maths, english, science, ada, ben, cy])
    db_session.flush()

    db_session.add_all(
        [
            TeacherClassSubject(school_id=school.id, teacher_id=ada.id, class_id=class_a.id, subject_id=maths.id),
            TeacherClassSubject(school_id=school.id, teacher_id=ben.id, class_id=class_a.id, subject_id=english.id),
            TeacherClassSubject(school_id=school.id, teacher_id=ada.id, class_id=class_b.id, subject_id=maths.id),
            TeacherClassSubject(school_id=school.id, teacher_id=cy.id, class_id=class_b.id, subject_id=science.id),
        ]
    )
    db_session.commit()
    return {
        "school_id": school.id,
        "class_a": class_a.id,
        "class_b": class_b.id,
        "maths": maths.id,
        "english": english.id,
        "science": science.id,
        "ada": ada.id,
        "ben": ben.id,
        "cy": cy.id,
    }
