import io

import pandas as pd

from timetable.models import Grade, User


def _new_grade(seed, **overrides):
    body = {
        "studentId": seed.users["student1"],
        "subjectId": seed.algorithms,
        "teacherId": seed.teacher1,
        "grade": 5,
        "gradeType": "exam",
        "description": "Final exam",
        "date": "2024-02-10",
    }
    body.update(overrides)
    return body


# --- Reads ---

def test_student_reads_own_grades_newest_first(client, seed, headers):
    resp = client.get(f"/api/grades/student/{seed.users['student1']}", headers=headers("student1"))
    assert resp.status_code == 200
    data = resp.json()["data"]
    assert [row["date"] for row in data] == ["2024-01-25", "2024-01-21", "2024-01-20"]
    assert data[0]["subject_name"] == "Algorithms"
    assert data[0]["teacher_name"] == "Ivan Ivanov"
    assert data[0]["student_name"] == "Petr Sidorov"


def test_student_cannot_read_other_student(client, seed, headers):
    resp = client.get(f"/api/grades/student/{seed.users['student2']}", headers=headers("student1"))
    assert resp.status_code == 403
    assert "data" not in resp.json()
    resp = client.get(f"/api/grades/student/{seed.users['student2']}/averages", headers=headers("student1"))
    assert resp.status_code == 403


def test_teacher_reads_any_student(client, seed, headers):
    # teacher2 never graded student2, the read is still allowed
    resp = client.get(f"/api/grades/student/{seed.users['student2']}", headers=headers("teacher2"))
    assert resp.status_code == 200
    assert len(resp.json()["data"]) == 1


def test_grades_by_subject(client, seed, headers):
    resp = client.get(f"/api/grades/student/{seed.users['student1']}/subject/{seed.algorithms}",
                      headers=headers("student1"))
    assert resp.status_code == 200
    assert [row["grade"] for row in resp.json()["data"]] == [4, 5]


def test_averages(client, seed, headers):
    resp = client.get(f"/api/grades/student/{seed.users['student1']}/averages", headers=headers("student1"))
    assert resp.status_code == 200
    assert resp.json()["data"] == [
        {"subject_id": seed.algorithms, "subject_name": "Algorithms", "teacher_name": "Ivan Ivanov",
         "average_grade": 4.5, "total_grades": 2},
        {"subject_id": seed.databases, "subject_name": "Databases", "teacher_name": "Anna Petrova",
         "average_grade": 3.0, "total_grades": 1},
    ]


def test_teacher_grades(client, seed, headers):
    resp = client.get(f"/api/grades/teacher/{seed.teacher1}", headers=headers("teacher1"))
    assert resp.status_code == 200
    assert len(resp.json()["data"]) == 3
    assert client.get(f"/api/grades/teacher/{seed.teacher2}", headers=headers("teacher1")).status_code == 403
    assert client.get(f"/api/grades/teacher/{seed.teacher1}", headers=headers("student1")).status_code == 403
    assert client.get(f"/api/grades/teacher/{seed.teacher2}", headers=headers("admin")).status_code == 200


def test_all_grades_admin_only(client, seed, headers):
    assert client.get("/api/grades/all", headers=headers("teacher1")).status_code == 403
    assert client.get("/api/grades/all", headers=headers("student1")).status_code == 403
    resp = client.get("/api/grades/all", headers=headers("admin"))
    assert resp.status_code == 200
    assert len(resp.json()["data"]) == 4


# --- Create ---

def test_teacher_creates_grade_for_own_teacher_id(client, seed, headers):
    resp = client.post("/api/grades", json=_new_grade(seed), headers=headers("teacher1"))
    assert resp.status_code == 201
    grade_id = resp.json()["gradeId"]

    data = client.get(f"/api/grades/student/{seed.users['student1']}", headers=headers("student1")).json()["data"]
    created = next(row for row in data if row["id"] == grade_id)
    assert created["grade"] == 5
    assert created["grade_type"] == "exam"
    assert created["description"] == "Final exam"
    assert created["date"] == "2024-02-10"
    assert created["subject_id"] == seed.algorithms
    assert created["teacher_id"] == seed.teacher1
    assert created["student_id"] == seed.users["student1"]


def test_teacher_cannot_create_for_other_teacher(client, seed, headers, session_factory):
    resp = client.post("/api/grades", json=_new_grade(seed, teacherId=seed.teacher2), headers=headers("teacher1"))
    assert resp.status_code == 403
    with session_factory() as s:
        assert s.query(Grade).count() == 4


def test_student_cannot_create(client, seed, headers):
    resp = client.post("/api/grades", json=_new_grade(seed), headers=headers("student1"))
    assert resp.status_code == 403


def test_student_is_denied_before_body_validation(client, seed, headers):
    h = headers("student1")
    resp = client.post("/api/grades", json={"grade": 9}, headers=h)
    assert resp.status_code == 403
    assert resp.json()["status"] == "fail"
    assert client.put(f"/api/grades/{seed.grades[0]}", json={"grade": "x"}, headers=h).status_code == 403
    # Admins with the same body still get the validation error
    assert client.post("/api/grades", json={"grade": 9}, headers=headers("admin")).status_code == 400


def test_admin_creates_for_any_teacher(client, seed, headers):
    resp = client.post("/api/grades", json=_new_grade(seed, teacherId=seed.teacher2, subjectId=seed.databases,
                                                      studentId=seed.users["student2"]),
                       headers=headers("admin"))
    assert resp.status_code == 201


def test_create_validation(client, seed, headers):
    h = headers("admin")
    assert client.post("/api/grades", json=_new_grade(seed, grade=6), headers=h).status_code == 400
    assert client.post("/api/grades", json=_new_grade(seed, grade=0), headers=h).status_code == 400
    assert client.post("/api/grades", json=_new_grade(seed, gradeType="quiz"), headers=h).status_code == 400
    body = _new_grade(seed)
    del body["date"]
    assert client.post("/api/grades", json=body, headers=h).status_code == 400
    # Unknown student violates the foreign key
    assert client.post("/api/grades", json=_new_grade(seed, studentId=999), headers=h).status_code == 400


# --- Update / delete ---

def _update_body(**overrides):
    body = {"grade": 2, "gradeType": "attendance", "description": None, "date": "2024-01-30"}
    body.update(overrides)
    return body


def test_teacher_updates_own_grade(client, seed, headers, session_factory):
    grade_id = seed.grades[0]
    resp = client.put(f"/api/grades/{grade_id}", json=_update_body(), headers=headers("teacher1"))
    assert resp.status_code == 200
    with session_factory() as s:
        grade = s.query(Grade).get(grade_id)
        assert (grade.grade, grade.grade_type, grade.date.isoformat()) == (2, "attendance", "2024-01-30")
        assert grade.teacher_id == seed.teacher1


def test_teacher_cannot_touch_other_teachers_grade(client, seed, headers, session_factory):
    grade_id = seed.grades[1]  # graded by teacher2
    assert client.put(f"/api/grades/{grade_id}", json=_update_body(), headers=headers("teacher1")).status_code == 403
    assert client.delete(f"/api/grades/{grade_id}", headers=headers("teacher1")).status_code == 403
    with session_factory() as s:
        assert s.query(Grade).get(grade_id).grade == 3


def test_missing_grade_is_404_not_403(client, seed, headers):
    assert client.put("/api/grades/999", json=_update_body(), headers=headers("teacher1")).status_code == 404
    assert client.delete("/api/grades/999", headers=headers("teacher1")).status_code == 404


def test_student_cannot_modify(client, seed, headers):
    grade_id = seed.grades[0]
    assert client.put(f"/api/grades/{grade_id}", json=_update_body(), headers=headers("student1")).status_code == 403
    assert client.delete(f"/api/grades/{grade_id}", headers=headers("student1")).status_code == 403
    assert client.delete("/api/grades/999", headers=headers("student1")).status_code == 403


def test_admin_bypasses_ownership(client, seed, headers, session_factory):
    h = headers("admin")
    assert client.put(f"/api/grades/{seed.grades[1]}", json=_update_body(grade=5), headers=h).status_code == 200
    assert client.delete(f"/api/grades/{seed.grades[2]}", headers=h).status_code == 200
    with session_factory() as s:
        assert s.query(Grade).get(seed.grades[1]).grade == 5
        assert s.query(Grade).get(seed.grades[2]) is None


def test_teacher_deletes_own_grade(client, seed, headers, session_factory):
    assert client.delete(f"/api/grades/{seed.grades[3]}", headers=headers("teacher1")).status_code == 200
    with session_factory() as s:
        assert s.query(Grade).get(seed.grades[3]) is None


# --- Export ---

def test_export_to_excel(client, seed, headers, tmp_path, monkeypatch):
    monkeypatch.setattr("timetable.routes.EXPORT_DIR", str(tmp_path))
    assert client.get("/api/grades/export", headers=headers("teacher1")).status_code == 403

    resp = client.get("/api/grades/export", params={"studentId": seed.users["student1"]}, headers=headers("admin"))
    assert resp.status_code == 200
    df = pd.read_excel(io.BytesIO(resp.content))
    assert len(df) == 3
    assert set(df["Student"]) == {"Petr Sidorov"}
    assert list(tmp_path.glob("grades_student_*.xlsx"))


def test_export_without_grades_is_404(client, seed, headers, tmp_path, monkeypatch):
    monkeypatch.setattr("timetable.routes.EXPORT_DIR", str(tmp_path))
    resp = client.get("/api/grades/export", params={"studentId": 999}, headers=headers("admin"))
    assert resp.status_code == 404


def test_unlinked_teacher_loses_grade_access_with_old_token(client, seed, headers):
    old = headers("teacher1")
    assert client.get(f"/api/grades/teacher/{seed.teacher1}", headers=old).status_code == 200

    assert client.delete(f"/api/data/teachers/{seed.teacher1}", headers=headers("admin")).status_code == 200

    # The token still says teacherId=teacher1; the stored user no longer does
    assert client.get(f"/api/grades/teacher/{seed.teacher1}", headers=old).status_code == 403
    body = _new_grade(seed, subjectId=seed.databases)
    assert client.post("/api/grades", json=body, headers=old).status_code == 403


def test_grade_write_with_token_of_deleted_user(client, seed, headers, session_factory):
    old = headers("teacher2")
    with session_factory() as s:
        s.delete(s.query(User).get(seed.users["teacher2"]))
        s.commit()
    assert client.delete(f"/api/grades/{seed.grades[1]}", headers=old).status_code == 401
