import pytest

from app import app as flask_app
from db import init_db, transaction
import exams


@pytest.fixture
def app(tmp_path):
    flask_app.config.update(TESTING=True, DATABASE=str(tmp_path / "school.db"))
    with flask_app.app_context():
        init_db()
        yield flask_app


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def school(app):
    """Two sections of Grade 10, three students and one account per role."""
    with transaction() as db:
        class_a = db.execute(
            "INSERT INTO classes (class_name, section) VALUES ('Grade 10', 'A')"
        ).lastrowid
        class_b = db.execute(
            "INSERT INTO classes (class_name, section) VALUES ('Grade 10', 'B')"
        ).lastrowid
        asha = db.execute(
            "INSERT INTO students (name, roll_no, class_id) VALUES ('Asha', '1', ?)", (class_a,)
        ).lastrowid
        ravi = db.execute(
            "INSERT INTO students (name, roll_no, class_id) VALUES ('Ravi', '2', ?)", (class_a,)
        ).lastrowid
        meera = db.execute(
            "INSERT INTO students (name, roll_no, class_id) VALUES ('Meera', '1', ?)", (class_b,)
        ).lastrowid

        users = {}
        for username, role, student_id in [
            ("teacher", "teacher", None),
            ("accountant", "accountant", None),
            ("asha", "student", asha),
        ]:
            users[username] = db.execute(
                "INSERT INTO users (username, password_hash, role, student_id) VALUES (?,?,?,?)",
                (username, "!", role, student_id),
            ).lastrowid
        users["principal"] = db.execute(
            "SELECT id FROM users WHERE role = 'principal'"
        ).fetchone()["id"]

    return {
        "class_a": class_a,
        "class_b": class_b,
        "asha": asha,
        "ravi": ravi,
        "meera": meera,
        "users": users,
    }


def exam_payload(class_id, **overrides):
    payload = {
        "name": "Unit Test 1",
        "classId": class_id,
        "date": "2025-08-01",
        "totalQuestions": 2,
        "totalMarks": 10,
        "questions": [
            {
                "id": 1,
                "question": "2 + 2 = ?",
                "optionA": "4",
                "optionB": "3",
                "optionC": "5",
                "optionD": "22",
                "correctAnswer": "A",
                "marks": 5,
            },
            {
                "id": 2,
                "question": "Capital of France?",
                "optionA": "Rome",
                "optionB": "Paris",
                "optionC": "Madrid",
                "optionD": "Berlin",
                "correctAnswer": "B",
                "marks": 5,
            },
        ],
    }
    payload.update(overrides)
    return payload


@pytest.fixture
def exam(school):
    """The two-question exam (5 + 5 marks, answers A and B) and its question ids."""
    with transaction() as db:
        exam_id = exams.create_exam(db, exam_payload(school["class_a"]))
        questions = exams.get_exam(db, exam_id)["questions"]
    return {"id": exam_id, "q1": questions[0]["id"], "q2": questions[1]["id"]}


def login_as(client, user_id):
    with client.session_transaction() as sess:
        sess["user_id"] = user_id
