from datetime import date
from types import SimpleNamespace

import bcrypt
import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from timetable.auth import Identity, create_access_token
from timetable.database import init_db
from timetable.db import build_engine, get_db
from timetable.main import app
from timetable.models import Group, Teacher, Room, Subject, User, ScheduleEntry, Grade

PASSWORD = "secret"
# Low cost factor keeps the suite fast
PASSWORD_HASH = bcrypt.hashpw(PASSWORD.encode("utf-8"), bcrypt.gensalt(rounds=4)).decode("utf-8")


@pytest.fixture
def engine():
    engine = build_engine("sqlite://", poolclass=StaticPool)
    init_db(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine)


@pytest.fixture
def session(session_factory):
    with session_factory() as session:
        yield session


@pytest.fixture
def seed(session_factory):
    """Two groups, two teachers with one subject each, five users, five slots, four grades."""
    with session_factory() as s:
        g1 = Group(name="CS-101", description="First year")
        g2 = Group(name="CS-102")
        t1 = Teacher(name="Ivan Ivanov", email="ivanov@university.ru", department="Computer Science")
        t2 = Teacher(name="Anna Petrova", email="petrova@university.ru", phone="+7 900 000 00 00",
                     department="Information Systems")
        r1 = Room(name="A-101", capacity=30)
        r2 = Room(name="B-202", capacity=120, description="Lecture hall")
        s.add_all([g1, g2, t1, t2, r1, r2])
        s.flush()

        algorithms = Subject(name="Algorithms", teacher_id=t1.id)
        databases = Subject(name="Databases", teacher_id=t2.id)
        s.add_all([algorithms, databases])
        s.flush()

        admin = User(name="Administrator", email="admin@university.ru", password=PASSWORD_HASH, role="admin")
        teacher1 = User(name="Ivan Ivanov", email="ivanov@mail.ru", password=PASSWORD_HASH, role="teacher",
                        teacher_id=t1.id)
        teacher2 = User(name="Anna Petrova", email="petrova@mail.ru", password=PASSWORD_HASH, role="teacher",
                        teacher_id=t2.id)
        student1 = User(name="Petr Sidorov", email="sidorov@mail.ru", password=PASSWORD_HASH, role="student",
                        group_id=g1.id)
        student2 = User(name="Olga Smirnova", email="smirnova@mail.ru", password=PASSWORD_HASH, role="student",
                        group_id=g2.id)
        s.add_all([admin, teacher1, teacher2, student1, student2])
        s.flush()

        # Inserted out of chronological order on purpose
        entries = [
            ScheduleEntry(group_id=g1.id, subject_id=algorithms.id, teacher_id=t1.id, room_id=r1.id,
                          date=date(2024, 1, 16), time_start="09:00", time_end="10:30"),
            ScheduleEntry(group_id=g1.id, subject_id=databases.id, teacher_id=t2.id, room_id=r2.id,
                          date=date(2024, 1, 15), time_start="11:00", time_end="12:30"),
            ScheduleEntry(group_id=g2.id, subject_id=algorithms.id, teacher_id=t1.id, room_id=r1.id,
                          date=date(2024, 1, 15), time_start="09:00", time_end="10:30"),
            ScheduleEntry(group_id=g2.id, subject_id=databases.id, teacher_id=t2.id, room_id=r2.id,
                          date=date(2024, 1, 17), time_start="13:00", time_end="14:30"),
            ScheduleEntry(group_id=g1.id, subject_id=algorithms.id, teacher_id=t1.id, room_id=r2.id,
                          date=date(2024, 1, 15), time_start="08:00", time_end="09:00"),
        ]
        s.add_all(entries)

        grades = [
            Grade(student_id=student1.id, subject_id=algorithms.id, teacher_id=t1.id, grade=5,
                  grade_type="exam", date=date(2024, 1, 20)),
            Grade(student_id=student1.id, subject_id=databases.id, teacher_id=t2.id, grade=3,
                  grade_type="test", date=date(2024, 1, 21)),
            Grade(student_id=student2.id, subject_id=algorithms.id, teacher_id=t1.id, grade=4,
                  grade_type="homework", description="Sorting", date=date(2024, 1, 22)),
            Grade(student_id=student1.id, subject_id=algorithms.id, teacher_id=t1.id, grade=4,
                  grade_type="test", date=date(2024, 1, 25)),
        ]
        s.add_all(grades)
        s.commit()

        users = {"admin": admin, "teacher1": teacher1, "teacher2": teacher2,
                 "student1": student1, "student2": student2}
        data = SimpleNamespace(
            group1=g1.id, group2=g2.id,
            teacher1=t1.id, teacher2=t2.id,
            room1=r1.id, room2=r2.id,
            algorithms=algorithms.id, databases=databases.id,
            users={key: user.id for key, user in users.items()},
            identities={key: Identity.from_user(user) for key, user in users.items()},
            entries=[e.id for e in entries],
            grades=[g.id for g in grades],
        )
    return data


@pytest.fixture
def client(session_factory):
    def override_get_db():
        db = session_factory()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def headers(seed):
    """Authorization headers per seeded user: headers("student1")."""
    def make(key):
        token = create_access_token(seed.identities[key])
        return {"Authorization": f"Bearer {token}"}
    return make
