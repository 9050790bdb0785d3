import logging
from datetime import date as date_type, datetime
from pathlib import Path
from typing import Union, Dict, List, Optional

import pandas as pd
from sqlalchemy import func
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from .auth import hash_password
from .errors import NotFoundError, StorageError, ValidationError
from .models import Base, Group, Teacher, Room, Subject, User, ScheduleEntry, Grade
from .utils import model_to_dict, normalize_time

logger = logging.getLogger(__name__)

# Query parameter name -> schedule column it constrains
SCHEDULE_FILTERS = {
    "group_id": ScheduleEntry.group_id,
    "teacher_id": ScheduleEntry.teacher_id,
    "room_id": ScheduleEntry.room_id,
    "subject_id": ScheduleEntry.subject_id,
    "date": ScheduleEntry.date,
}


# --- Helpers ---

def init_db(engine) -> None:
    Base.metadata.create_all(bind=engine)

def _commit(session: Session, action: str) -> None:
    try:
        session.commit()
    except IntegrityError as e:
        session.rollback()
        logger.warning("%s rejected by a constraint: %s", action, e.orig)
        raise StorageError(f"{action}: referenced record missing or value already exists", status_code=400) from e
    except SQLAlchemyError as e:
        session.rollback()
        logger.error("%s failed: %s", action, e)
        raise StorageError(f"{action} failed") from e

def _fetch_all(query, action: str) -> list:
    try:
        return query.all()
    except SQLAlchemyError as e:
        logger.error("%s failed: %s", action, e)
        raise StorageError(f"{action} failed") from e

def _as_date(value: Union[str, date_type]) -> date_type:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date_type):
        return value
    try:
        return datetime.strptime(value, "%Y-%m-%d").date()
    except (TypeError, ValueError):
        raise ValidationError("date must be in YYYY-MM-DD format")

def _time_range(time_start: str, time_end: str):
    try:
        start, end = normalize_time(time_start), normalize_time(time_end)
    except ValueError as ve:
        raise ValidationError(str(ve))
    if end <= start:
        raise ValidationError("timeEnd must be later than timeStart")
    return start, end

def _get_or_404(session: Session, model, entity_id: int, label: str):
    obj = session.query(model).get(entity_id)
    if not obj:
        raise NotFoundError(f"{label} not found")
    return obj


# --- Schedule ---

def _schedule_query(session: Session):
    return (session.query(ScheduleEntry,
                          Subject.name.label("subject_name"),
                          Teacher.name.label("teacher_name"),
                          Room.name.label("room_name"),
                          Group.name.label("group_name"))
            .join(Subject, ScheduleEntry.subject_id == Subject.id)
            .join(Teacher, ScheduleEntry.teacher_id == Teacher.id)
            .join(Room, ScheduleEntry.room_id == Room.id)
            .join(Group, ScheduleEntry.group_id == Group.id))

def _schedule_row(row) -> Dict:
    data = model_to_dict(row[0])
    data.update(subject_name=row.subject_name, teacher_name=row.teacher_name,
                room_name=row.room_name, group_name=row.group_name)
    return data

# Schedule with optional equality filters, oldest first
def query_schedule(session: Session, group_id: Optional[int] = None, teacher_id: Optional[int] = None,
                   room_id: Optional[int] = None, subject_id: Optional[int] = None,
                   date: Union[str, date_type, None] = None) -> List[Dict]:
    # Returns:
    # [
    #     {"id": 1, "group_id": 1, ..., "date": "2024-01-15", "time_start": "09:00",
    #      "subject_name": "...", "teacher_name": "...", "room_name": "...", "group_name": "..."}
    # ]
    values = {
        "group_id": group_id,
        "teacher_id": teacher_id,
        "room_id": room_id,
        "subject_id": subject_id,
        "date": _as_date(date) if date is not None else None,
    }
    query = _schedule_query(session)
    for name, value in values.items():
        if value is not None:
            query = query.filter(SCHEDULE_FILTERS[name] == value)
    query = query.order_by(ScheduleEntry.date, ScheduleEntry.time_start, ScheduleEntry.id)
    return [_schedule_row(row) for row in _fetch_all(query, "Schedule query")]

def create_schedule_entry(session: Session, group_id: int, subject_id: int, teacher_id: int, room_id: int,
                          date: Union[str, date_type], time_start: str, time_end: str) -> ScheduleEntry:
    # Overlapping slots for the same room/teacher/group are not checked
    start, end = _time_range(time_start, time_end)
    entry = ScheduleEntry(group_id=group_id, subject_id=subject_id, teacher_id=teacher_id, room_id=room_id,
                          date=_as_date(date), time_start=start, time_end=end)
    session.add(entry)
    _commit(session, "Create schedule entry")
    session.refresh(entry)
    return entry

def update_schedule_entry(session: Session, entry_id: int, group_id: int, subject_id: int, teacher_id: int,
                          room_id: int, date: Union[str, date_type], time_start: str, time_end: str) -> ScheduleEntry:
    entry = _get_or_404(session, ScheduleEntry, entry_id, "Schedule entry")
    start, end = _time_range(time_start, time_end)
    entry.group_id = group_id
    entry.subject_id = subject_id
    entry.teacher_id = teacher_id
    entry.room_id = room_id
    entry.date = _as_date(date)
    entry.time_start = start
    entry.time_end = end
    _commit(session, "Update schedule entry")
    return entry

def delete_schedule_entry(session: Session, entry_id: int) -> None:
    entry = _get_or_404(session, ScheduleEntry, entry_id, "Schedule entry")
    session.delete(entry)
    _commit(session, "Delete schedule entry")


# --- Grades ---

def _grade_query(session: Session):
    return (session.query(Grade,
                          Subject.name.label("subject_name"),
                          Teacher.name.label("teacher_name"),
                          User.name.label("student_name"))
            .join(Subject, Grade.subject_id == Subject.id)
            .join(Teacher, Grade.teacher_id == Teacher.id)
            .join(User, Grade.student_id == User.id))

def _grade_row(row) -> Dict:
    data = model_to_dict(row[0])
    data.update(subject_name=row.subject_name, teacher_name=row.teacher_name, student_name=row.student_name)
    return data

# Grades, newest first
def list_grades(session: Session, student_id: Optional[int] = None, teacher_id: Optional[int] = None,
                subject_id: Optional[int] = None) -> List[Dict]:
    query = _grade_query(session)
    if student_id is not None:
        query = query.filter(Grade.student_id == student_id)
    if teacher_id is not None:
        query = query.filter(Grade.teacher_id == teacher_id)
    if subject_id is not None:
        query = query.filter(Grade.subject_id == subject_id)
    query = query.order_by(Grade.date.desc(), Grade.id.desc())
    return [_grade_row(row) for row in _fetch_all(query, "Grade query")]

def get_grade(session: Session, grade_id: int) -> Grade:
    return _get_or_404(session, Grade, grade_id, "Grade")

def create_grade(session: Session, student_id: int, subject_id: int, teacher_id: int, grade: int,
                 grade_type: str, date: Union[str, date_type], description: Optional[str] = None) -> Grade:
    new_grade = Grade(student_id=student_id, subject_id=subject_id, teacher_id=teacher_id, grade=grade,
                      grade_type=grade_type, description=description or None, date=_as_date(date))
    session.add(new_grade)
    _commit(session, "Create grade")
    session.refresh(new_grade)
    logger.info("Grade %s created for student %s by teacher %s", new_grade.id, student_id, teacher_id)
    return new_grade

# Student, subject and teacher of a grade are fixed once recorded
def update_grade(session: Session, existing: Grade, grade: int, grade_type: str,
                 date: Union[str, date_type], description: Optional[str] = None) -> Grade:
    existing.grade = grade
    existing.grade_type = grade_type
    existing.description = description or None
    existing.date = _as_date(date)
    _commit(session, "Update grade")
    logger.info("Grade %s updated", existing.id)
    return existing

def delete_grade(session: Session, existing: Grade) -> None:
    grade_id = existing.id
    session.delete(existing)
    _commit(session, "Delete grade")
    logger.info("Grade %s deleted", grade_id)

# Per-subject average for one student
def grade_averages(session: Session, student_id: int) -> List[Dict]:
    query = (session.query(Subject.id.label("subject_id"),
                           Subject.name.label("subject_name"),
                           Teacher.name.label("teacher_name"),
                           func.avg(Grade.grade).label("average_grade"),
                           func.count(Grade.id).label("total_grades"))
             .join(Subject, Grade.subject_id == Subject.id)
             .join(Teacher, Subject.teacher_id == Teacher.id)
             .filter(Grade.student_id == student_id)
             .group_by(Subject.id, Subject.name, Teacher.name)
             .order_by(Subject.name))
    return [
        {
            "subject_id": row.subject_id,
            "subject_name": row.subject_name,
            "teacher_name": row.teacher_name,
            "average_grade": round(float(row.average_grade), 2),
            "total_grades": row.total_grades,
        }
        for row in _fetch_all(query, "Grade averages")
    ]

# Grades to an Excel workbook
def export_grades_to_excel(session: Session, excel_file: Union[str, Path], student_id: Optional[int] = None) -> Path:
    rows = list_grades(session, student_id=student_id)
    if not rows:
        raise NotFoundError("No grades to export")
    data = [
        {
            "ID": row["id"],
            "Student": row["student_name"],
            "Subject": row["subject_name"],
            "Teacher": row["teacher_name"],
            "Grade": row["grade"],
            "Type": row["grade_type"],
            "Description": row["description"],
            "Date": row["date"],
        }
        for row in rows
    ]
    df = pd.DataFrame(data)
    df.to_excel(excel_file, index=False)
    logger.info("Exported %d grades to %s", len(df), excel_file)
    return Path(excel_file)


# --- Reference data ---

def list_entities(session: Session, model) -> List[Dict]:
    query = session.query(model).order_by(model.name)
    return [model_to_dict(obj) for obj in _fetch_all(query, f"{model.__name__} list")]

def create_entity(session: Session, model, **fields):
    obj = model(**fields)
    session.add(obj)
    _commit(session, f"Create {model.__name__.lower()}")
    session.refresh(obj)
    return obj

def update_entity(session: Session, model, entity_id: int, **fields):
    obj = _get_or_404(session, model, entity_id, model.__name__)
    for key, value in fields.items():
        setattr(obj, key, value)
    _commit(session, f"Update {model.__name__.lower()}")
    return obj

# Dependent schedule and grade rows go with it (ON DELETE CASCADE)
def delete_entity(session: Session, model, entity_id: int) -> None:
    obj = _get_or_404(session, model, entity_id, model.__name__)
    session.delete(obj)
    _commit(session, f"Delete {model.__name__.lower()}")

def list_subjects(session: Session, teacher_id: Optional[int] = None) -> List[Dict]:
    query = (session.query(Subject, Teacher.name.label("teacher_name"))
             .join(Teacher, Subject.teacher_id == Teacher.id))
    if teacher_id is not None:
        query = query.filter(Subject.teacher_id == teacher_id)
    query = query.order_by(Subject.name)
    result = []
    for row in _fetch_all(query, "Subject list"):
        data = model_to_dict(row[0])
        data["teacher_name"] = row.teacher_name
        result.append(data)
    return result

def list_students(session: Session, group_id: Optional[int] = None) -> List[Dict]:
    query = (session.query(User, Group.name.label("group_name"))
             .outerjoin(Group, User.group_id == Group.id)
             .filter(User.role == "student"))
    if group_id is not None:
        query = query.filter(User.group_id == group_id)
    query = query.order_by(User.name)
    result = []
    for row in _fetch_all(query, "Student list"):
        data = model_to_dict(row[0], exclude=("password",))
        data["group_name"] = row.group_name
        result.append(data)
    return result


# --- Users ---

def create_user(session: Session, name: str, email: str, password: str, role: str,
                group_id: Optional[int] = None, teacher_id: Optional[int] = None) -> User:
    # group/teacher links are stored as given, whatever the role
    if session.query(User).filter(User.email == email).first():
        raise ValidationError("User with this email already exists")
    user = User(name=name, email=email, password=hash_password(password), role=role,
                group_id=group_id, teacher_id=teacher_id)
    session.add(user)
    _commit(session, "Create user")
    session.refresh(user)
    return user

def user_to_dict(user: User) -> Dict:
    return model_to_dict(user, exclude=("password",))

# Default administrator on first start
def ensure_admin_account(session: Session, email: str, password: str) -> bool:
    if session.query(User).filter(User.email == email).first():
        return False
    create_user(session, "Administrator", email, password, "admin")
    logger.info("Admin user %s created", email)
    return True
