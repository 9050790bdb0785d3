import logging
import datetime as dt
from pathlib import Path
from typing import Optional, Literal

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel
from sqlalchemy.orm import Session
from starlette.responses import FileResponse

from .auth import (Identity, authenticate, create_access_token, get_current_identity, get_current_user,
                   get_verified_identity)
from .config import EXPORT_DIR
from .database import (query_schedule, create_schedule_entry, update_schedule_entry, delete_schedule_entry,
                       list_grades, get_grade, create_grade, update_grade, delete_grade, grade_averages,
                       export_grades_to_excel, list_entities, create_entity, update_entity, delete_entity,
                       list_subjects, list_students, create_user, user_to_dict)
from .db import get_db
from .models import Group, Teacher, Room, Subject, User
from .policy import (ensure_admin, ensure_staff, ensure_can_read_student_grades, ensure_can_read_teacher_grades,
                     ensure_can_create_grade, ensure_can_modify_grade, grade_writer)
from .utils import mkdir, model_to_dict

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api")
auth_router = APIRouter(prefix="/auth", tags=["auth"])
schedule_router = APIRouter(prefix="/schedule", tags=["schedule"])
grades_router = APIRouter(prefix="/grades", tags=["grades"])
data_router = APIRouter(prefix="/data", tags=["data"])


# Request bodies use camelCase keys (groupId, timeStart, ...)
class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

# --- Auth ---
class LoginRequest(CamelModel):
    email: str
    password: str

class RegisterRequest(CamelModel):
    name: str = Field(..., min_length=1)
    email: str = Field(..., min_length=3)
    password: str = Field(..., min_length=1)
    role: Literal["admin", "student", "teacher"]
    group_id: Optional[int] = None
    teacher_id: Optional[int] = None

# --- Schedule ---
class ScheduleEntryRequest(CamelModel):
    group_id: int
    subject_id: int
    teacher_id: int
    room_id: int
    date: dt.date
    time_start: str
    time_end: str

# --- Grades ---
class GradeCreateRequest(CamelModel):
    student_id: int
    subject_id: int
    teacher_id: int
    grade: int = Field(..., ge=1, le=5)
    grade_type: Literal["exam", "test", "homework", "project", "attendance"]
    description: Optional[str] = None
    date: dt.date

class GradeUpdateRequest(CamelModel):
    grade: int = Field(..., ge=1, le=5)
    grade_type: Literal["exam", "test", "homework", "project", "attendance"]
    description: Optional[str] = None
    date: dt.date

# --- Reference data ---
class GroupRequest(CamelModel):
    name: str = Field(..., min_length=1)
    description: Optional[str] = None

class TeacherRequest(CamelModel):
    name: str = Field(..., min_length=1)
    email: str = Field(..., min_length=3)
    phone: Optional[str] = None
    department: str = Field(..., min_length=1)

class RoomRequest(CamelModel):
    name: str = Field(..., min_length=1)
    capacity: int = Field(..., gt=0)
    description: Optional[str] = None

class SubjectRequest(CamelModel):
    name: str = Field(..., min_length=1)
    teacher_id: int
    description: Optional[str] = None


# ============ Auth ============

# Login
@auth_router.post("/login")
async def login(request: LoginRequest, db: Session = Depends(get_db)):
    user = authenticate(db, request.email, request.password)
    token = create_access_token(Identity.from_user(user))
    return {"status": "success", "token": token, "user": user_to_dict(user)}

# Create an account (admin only)
@auth_router.post("/register", status_code=201)
async def register(request: RegisterRequest, db: Session = Depends(get_db),
                   identity: Identity = Depends(get_current_identity)):
    ensure_admin(identity)
    user = create_user(db, request.name, request.email, request.password, request.role,
                       group_id=request.group_id, teacher_id=request.teacher_id)
    logger.info("User %s created with role %s by %s", user.email, user.role, identity.email)
    return {"status": "success", "message": "User created", "userId": user.id}

# Current user
@auth_router.get("/me")
async def me(user: User = Depends(get_current_user)):
    return {"status": "success", "data": user_to_dict(user)}


# ============ Schedule ============

# Schedule with optional filters
@schedule_router.get("")
async def get_schedule(group_id: Optional[int] = Query(None, alias="groupId"),
                       teacher_id: Optional[int] = Query(None, alias="teacherId"),
                       room_id: Optional[int] = Query(None, alias="roomId"),
                       subject_id: Optional[int] = Query(None, alias="subjectId"),
                       on_date: Optional[dt.date] = Query(None, alias="date"),
                       db: Session = Depends(get_db),
                       identity: Identity = Depends(get_current_identity)):
    data = query_schedule(db, group_id=group_id, teacher_id=teacher_id, room_id=room_id,
                          subject_id=subject_id, date=on_date)
    return {"status": "success", "data": data}

# Whole schedule (admin only)
@schedule_router.get("/all")
async def get_all_schedule(db: Session = Depends(get_db), identity: Identity = Depends(get_current_identity)):
    ensure_admin(identity)
    return {"status": "success", "data": query_schedule(db)}

# Schedule of one group
@schedule_router.get("/group/{group_id}")
async def get_group_schedule(group_id: int, db: Session = Depends(get_db),
                             identity: Identity = Depends(get_current_identity)):
    return {"status": "success", "data": query_schedule(db, group_id=group_id)}

# Schedule of one teacher
@schedule_router.get("/teacher/{teacher_id}")
async def get_teacher_schedule(teacher_id: int, db: Session = Depends(get_db),
                               identity: Identity = Depends(get_current_identity)):
    return {"status": "success", "data": query_schedule(db, teacher_id=teacher_id)}

# Occupancy of one room
@schedule_router.get("/room/{room_id}")
async def get_room_schedule(room_id: int, db: Session = Depends(get_db),
                            identity: Identity = Depends(get_current_identity)):
    return {"status": "success", "data": query_schedule(db, room_id=room_id)}

@schedule_router.post("", status_code=201)
async def add_schedule_entry(request: ScheduleEntryRequest, db: Session = Depends(get_db),
                             identity: Identity = Depends(get_current_identity)):
    ensure_admin(identity)
    entry = create_schedule_entry(db, request.group_id, request.subject_id, request.teacher_id, request.room_id,
                                  request.date, request.time_start, request.time_end)
    return {"status": "success", "message": "Schedule entry created", "scheduleId": entry.id}

@schedule_router.put("/{entry_id}")
async def edit_schedule_entry(entry_id: int, request: ScheduleEntryRequest, db: Session = Depends(get_db),
                              identity: Identity = Depends(get_current_identity)):
    ensure_admin(identity)
    update_schedule_entry(db, entry_id, request.group_id, request.subject_id, request.teacher_id,
                          request.room_id, request.date, request.time_start, request.time_end)
    return {"status": "success", "message": "Schedule entry updated"}

@schedule_router.delete("/{entry_id}")
async def remove_schedule_entry(entry_id: int, db: Session = Depends(get_db),
                                identity: Identity = Depends(get_current_identity)):
    ensure_admin(identity)
    delete_schedule_entry(db, entry_id)
    return {"status": "success", "message": "Schedule entry deleted"}


# ============ Grades ============

# Grades of one student
@grades_router.get("/student/{student_id}")
async def get_student_grades(student_id: int, db: Session = Depends(get_db),
                             identity: Identity = Depends(get_current_identity)):
    ensure_can_read_student_grades(identity, student_id)
    return {"status": "success", "data": list_grades(db, student_id=student_id)}

# Grades of one student in one subject
@grades_router.get("/student/{student_id}/subject/{subject_id}")
async def get_student_subject_grades(student_id: int, subject_id: int, db: Session = Depends(get_db),
                                     identity: Identity = Depends(get_current_identity)):
    ensure_can_read_student_grades(identity, student_id)
    return {"status": "success", "data": list_grades(db, student_id=student_id, subject_id=subject_id)}

# Per-subject averages of one student
@grades_router.get("/student/{student_id}/averages")
async def get_student_averages(student_id: int, db: Session = Depends(get_db),
                               identity: Identity = Depends(get_current_identity)):
    ensure_can_read_student_grades(identity, student_id)
    return {"status": "success", "data": grade_averages(db, student_id)}

# Grades given by one teacher
@grades_router.get("/teacher/{teacher_id}")
async def get_teacher_grades(teacher_id: int, db: Session = Depends(get_db),
                             identity: Identity = Depends(get_verified_identity)):
    ensure_can_read_teacher_grades(identity, teacher_id)
    return {"status": "success", "data": list_grades(db, teacher_id=teacher_id)}

# All grades (admin only)
@grades_router.get("/all")
async def get_all_grades(db: Session = Depends(get_db), identity: Identity = Depends(get_current_identity)):
    ensure_admin(identity)
    return {"status": "success", "data": list_grades(db)}

# Download grades as an Excel workbook (admin only)
@grades_router.get("/export")
async def export_grades(student_id: Optional[int] = Query(None, alias="studentId"), db: Session = Depends(get_db),
                        identity: Identity = Depends(get_current_identity)) -> FileResponse:
    ensure_admin(identity)
    export_folder = mkdir(EXPORT_DIR)
    suffix = f"student_{student_id}" if student_id is not None else "all"
    excel_file = export_folder / f"grades_{suffix}_{dt.datetime.now():%Y%m%d%H%M%S}.xlsx"
    path = export_grades_to_excel(db, excel_file, student_id=student_id)
    return FileResponse(path=str(path), filename=Path(path).name,
                        media_type="application/vnd.openxmlformats-officedocument.spreadsheetml.sheet")

@grades_router.post("", status_code=201)
async def add_grade(request: GradeCreateRequest, db: Session = Depends(get_db),
                    identity: Identity = Depends(grade_writer)):
    ensure_can_create_grade(identity, request.teacher_id)
    grade = create_grade(db, request.student_id, request.subject_id, request.teacher_id, request.grade,
                         request.grade_type, request.date, description=request.description)
    return {"status": "success", "message": "Grade added", "gradeId": grade.id}

@grades_router.put("/{grade_id}")
async def edit_grade(grade_id: int, request: GradeUpdateRequest, db: Session = Depends(get_db),
                     identity: Identity = Depends(grade_writer)):
    existing = get_grade(db, grade_id)
    ensure_can_modify_grade(identity, existing.teacher_id)
    update_grade(db, existing, request.grade, request.grade_type, request.date, description=request.description)
    return {"status": "success", "message": "Grade updated"}

@grades_router.delete("/{grade_id}")
async def remove_grade(grade_id: int, db: Session = Depends(get_db),
                       identity: Identity = Depends(grade_writer)):
    existing = get_grade(db, grade_id)
    ensure_can_modify_grade(identity, existing.teacher_id)
    delete_grade(db, existing)
    return {"status": "success", "message": "Grade deleted"}


# ============ Reference data ============

@data_router.get("/groups")
async def get_groups(db: Session = Depends(get_db), identity: Identity = Depends(get_current_identity)):
    return {"status": "success", "data": list_entities(db, Group)}

@data_router.get("/teachers")
async def get_teachers(db: Session = Depends(get_db), identity: Identity = Depends(get_current_identity)):
    return {"status": "success", "data": list_entities(db, Teacher)}

@data_router.get("/rooms")
async def get_rooms(db: Session = Depends(get_db), identity: Identity = Depends(get_current_identity)):
    return {"status": "success", "data": list_entities(db, Room)}

@data_router.get("/subjects")
async def get_subjects(db: Session = Depends(get_db), identity: Identity = Depends(get_current_identity)):
    return {"status": "success", "data": list_subjects(db)}

# Subjects owned by one teacher
@data_router.get("/teacher/{teacher_id}/subjects")
async def get_teacher_subjects(teacher_id: int, db: Session = Depends(get_db),
                               identity: Identity = Depends(get_current_identity)):
    return {"status": "success", "data": list_subjects(db, teacher_id=teacher_id)}

# Students (admin and teachers)
@data_router.get("/students")
async def get_students(db: Session = Depends(get_db), identity: Identity = Depends(get_current_identity)):
    ensure_staff(identity)
    return {"status": "success", "data": list_students(db)}

@data_router.get("/students/group/{group_id}")
async def get_group_students(group_id: int, db: Session = Depends(get_db),
                             identity: Identity = Depends(get_current_identity)):
    ensure_staff(identity)
    return {"status": "success", "data": list_students(db, group_id=group_id)}

# --- Groups (admin only) ---
@data_router.post("/groups", status_code=201)
async def add_group(request: GroupRequest, db: Session = Depends(get_db),
                    identity: Identity = Depends(get_current_identity)):
    ensure_admin(identity)
    group = create_entity(db, Group, **request.model_dump())
    return {"status": "success", "message": "Group created", "groupId": group.id}

@data_router.put("/groups/{group_id}")
async def edit_group(group_id: int, request: GroupRequest, db: Session = Depends(get_db),
                     identity: Identity = Depends(get_current_identity)):
    ensure_admin(identity)
    group = update_entity(db, Group, group_id, **request.model_dump())
    return {"status": "success", "message": "Group updated", "data": model_to_dict(group)}

@data_router.delete("/groups/{group_id}")
async def remove_group(group_id: int, db: Session = Depends(get_db),
                       identity: Identity = Depends(get_current_identity)):
    ensure_admin(identity)
    delete_entity(db, Group, group_id)
    return {"status": "success", "message": "Group deleted"}

# --- Teachers (admin only) ---
@data_router.post("/teachers", status_code=201)
async def add_teacher(request: TeacherRequest, db: Session = Depends(get_db),
                      identity: Identity = Depends(get_current_identity)):
    ensure_admin(identity)
    teacher = create_entity(db, Teacher, **request.model_dump())
    return {"status": "success", "message": "Teacher created", "teacherId": teacher.id}

@data_router.put("/teachers/{teacher_id}")
async def edit_teacher(teacher_id: int, request: TeacherRequest, db: Session = Depends(get_db),
                       identity: Identity = Depends(get_current_identity)):
    ensure_admin(identity)
    teacher = update_entity(db, Teacher, teacher_id, **request.model_dump())
    return {"status": "success", "message": "Teacher updated", "data": model_to_dict(teacher)}

@data_router.delete("/teachers/{teacher_id}")
async def remove_teacher(teacher_id: int, db: Session = Depends(get_db),
                         identity: Identity = Depends(get_current_identity)):
    ensure_admin(identity)
    delete_entity(db, Teacher, teacher_id)
    return {"status": "success", "message": "Teacher deleted"}

# --- Rooms (admin only) ---
@data_router.post("/rooms", status_code=201)
async def add_room(request: RoomRequest, db: Session = Depends(get_db),
                   identity: Identity = Depends(get_current_identity)):
    ensure_admin(identity)
    room = create_entity(db, Room, **request.model_dump())
    return {"status": "success", "message": "Room created", "roomId": room.id}

@data_router.put("/rooms/{room_id}")
async def edit_room(room_id: int, request: RoomRequest, db: Session = Depends(get_db),
                    identity: Identity = Depends(get_current_identity)):
    ensure_admin(identity)
    room = update_entity(db, Room, room_id, **request.model_dump())
    return {"status": "success", "message": "Room updated", "data": model_to_dict(room)}

@data_router.delete("/rooms/{room_id}")
async def remove_room(room_id: int, db: Session = Depends(get_db),
                      identity: Identity = Depends(get_current_identity)):
    ensure_admin(identity)
    delete_entity(db, Room, room_id)
    return {"status": "success", "message": "Room deleted"}

# --- Subjects (admin only) ---
@data_router.post("/subjects", status_code=201)
async def add_subject(request: SubjectRequest, db: Session = Depends(get_db),
                      identity: Identity = Depends(get_current_identity)):
    ensure_admin(identity)
    subject = create_entity(db, Subject, **request.model_dump())
    return {"status": "success", "message": "Subject created", "subjectId": subject.id}

@data_router.put("/subjects/{subject_id}")
async def edit_subject(subject_id: int, request: SubjectRequest, db: Session = Depends(get_db),
                       identity: Identity = Depends(get_current_identity)):
    ensure_admin(identity)
    subject = update_entity(db, Subject, subject_id, **request.model_dump())
    return {"status": "success", "message": "Subject updated", "data": model_to_dict(subject)}

@data_router.delete("/subjects/{subject_id}")
async def remove_subject(subject_id: int, db: Session = Depends(get_db),
                         identity: Identity = Depends(get_current_identity)):
    ensure_admin(identity)
    delete_entity(db, Subject, subject_id)
    return {"status": "success", "message": "Subject deleted"}


router.include_router(auth_router)
router.include_router(schedule_router)
router.include_router(grades_router)
router.include_router(data_router)
