"""
Copyright (c) 2025 Amit Kadam

All Rights Reserved. No part of this software may be copied, reproduced, distributed, or used in derivative works without the prior written permission of the copyright holder.

For permission requests, contact: amitkadam96k@gmail.com
"""

import math
from datetime import datetime

from flask import current_app

from errors import ConflictError, NotFound, ValidationError
from grading import grade_answer, summarize


OPTIONS = ("A", "B", "C", "D")

IN_PROGRESS = "in_progress"
SUBMITTED = "submitted"
GRADED = "graded"
# Scoring happens inside submit, so "graded" is never a separate step
FINALIZED = (SUBMITTED, GRADED)

REQUIRED_EXAM_FIELDS = ("name", "classId", "date", "totalQuestions", "totalMarks", "questions")


def _now():
    return datetime.now().isoformat(sep=" ", timespec="seconds")


def _missing(value):
    return value is None or (isinstance(value, str) and not value.strip())


def _as_id(value, field):
    if _missing(value) or isinstance(value, bool):
        raise ValidationError(f"{field} is required", field)
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ValidationError(f"Invalid {field}", field)


def _positive_number(value, field):
    if isinstance(value, bool):
        raise ValidationError(f"{field} must be a positive number", field)
    try:
        number = float(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{field} must be a positive number", field)
    if not math.isfinite(number) or number <= 0:
        raise ValidationError(f"{field} must be a positive number", field)
    return int(number) if number.is_integer() else number


# ---------- PROJECTIONS ----------

def _exam_dict(row):
    return {
        "id": row["id"],
        "name": row["name"],
        "classId": row["class_id"],
        "date": row["exam_date"],
        "totalQuestions": row["total_questions"],
        "totalMarks": row["total_marks"],
        "createdAt": row["created_at"],
    }


def _question_dict(row, include_answers):
    q = {
        "id": row["id"],
        "number": row["question_number"],
        "question": row["question_text"],
        "optionA": row["option_a"],
        "optionB": row["option_b"],
        "optionC": row["option_c"],
        "optionD": row["option_d"],
        "marks": row["marks"],
    }
    if include_answers:
        q["correctAnswer"] = row["correct_answer"]
    return q


def _submission_dict(row):
    return {
        "id": row["id"],
        "studentId": row["student_id"],
        "examId": row["exam_id"],
        "status": row["status"],
        "totalScore": row["total_score"],
        "percentage": row["percentage"],
        "startedAt": row["started_at"],
        "submittedAt": row["submitted_at"],
        "timeTakenMinutes": row["time_taken_minutes"],
    }


def _answer_dict(row):
    return {
        "questionId": row["question_id"],
        "studentAnswer": row["student_answer"],
        "isCorrect": bool(row["is_correct"]),
        "marksObtained": row["marks_obtained"],
    }


# ---------- AUTHORING ----------

def _question_marks(questions, total_marks, total_questions):
    """Marks per question; omitted marks share whatever the explicit ones leave.

    Each omitted question defaults to floor(totalMarks / totalQuestions) and the
    last omitted one absorbs the remainder, so the marks always add up to the
    declared total.
    """
    default = math.floor(total_marks / total_questions)
    marks = []
    omitted = []
    for position, q in enumerate(questions, start=1):
        if _missing(q.get("marks")):
            omitted.append(position - 1)
            marks.append(default)
        else:
            marks.append(_positive_number(q.get("marks"), f"questions[{position}].marks"))

    if omitted:
        last = omitted[-1]
        others = sum(m for i, m in enumerate(marks) if i != last)
        marks[last] = round(total_marks - others, 2)

    if any(m <= 0 for m in marks):
        raise ValidationError(
            "Not enough marks left for questions without explicit marks", "questions"
        )
    if abs(sum(marks) - total_marks) > 1e-9:
        raise ValidationError(
            f"Question marks add up to {sum(marks)}, expected totalMarks {total_marks}",
            "totalMarks",
        )
    return marks


def create_exam(db, data):
    for field in REQUIRED_EXAM_FIELDS:
        if _missing(data.get(field)):
            raise ValidationError("Missing required fields", field)

    questions = data["questions"]
    if not isinstance(questions, list) or not questions:
        raise ValidationError("Questions array is required and must not be empty", "questions")

    name = str(data["name"]).strip()
    class_id = _as_id(data["classId"], "classId")
    total_questions = _positive_number(data["totalQuestions"], "totalQuestions")
    total_marks = _positive_number(data["totalMarks"], "totalMarks")
    if total_questions != len(questions):
        raise ValidationError(
            f"totalQuestions is {total_questions} but {len(questions)} questions were given",
            "totalQuestions",
        )

    rows = []
    for position, q in enumerate(questions, start=1):
        if not isinstance(q, dict):
            raise ValidationError(f"Question {position} must be an object", "questions")
        text = str(q.get("question") or "").strip()
        options = [str(q.get(f"option{letter}") or "").strip() for letter in OPTIONS]
        correct = str(q.get("correctAnswer") or "").strip().upper()
        if not text or not all(options):
            raise ValidationError(
                f"Question {position} needs text and four options", f"questions[{position}]"
            )
        if correct not in OPTIONS:
            raise ValidationError(
                f"Question {position} correctAnswer must be one of A, B, C, D",
                f"questions[{position}].correctAnswer",
            )
        rows.append([position, text] + options + [correct])

    marks = _question_marks(questions, total_marks, total_questions)

    cls = db.execute("SELECT id FROM classes WHERE id=?", (class_id,)).fetchone()
    if cls is None:
        raise NotFound("Class not found")

    cur = db.execute(
        "INSERT INTO exams (name, class_id, exam_date, total_questions, total_marks) "
        "VALUES (?,?,?,?,?)",
        (name, class_id, str(data["date"]), total_questions, total_marks),
    )
    exam_id = cur.lastrowid

    for row, m in zip(rows, marks):
        db.execute(
            "INSERT INTO questions "
            "(exam_id, question_number, question_text, option_a, option_b, option_c, "
            "option_d, correct_answer, marks) VALUES (?,?,?,?,?,?,?,?,?)",
            [exam_id] + row + [m],
        )

    current_app.logger.info(
        "MCQ exam %s created for class %s with %d questions", exam_id, class_id, len(rows)
    )
    return exam_id


def get_exam(db, exam_id, include_answers=True):
    exam = db.execute("SELECT * FROM exams WHERE id=?", (exam_id,)).fetchone()
    if exam is None:
        raise NotFound("Exam not found")
    questions = db.execute(
        "SELECT * FROM questions WHERE exam_id=? ORDER BY question_number",
        (exam_id,),
    ).fetchall()
    result = _exam_dict(exam)
    result["questions"] = [_question_dict(q, include_answers) for q in questions]
    return result


def list_exams(db):
    exams = db.execute("SELECT * FROM exams ORDER BY created_at DESC, id DESC").fetchall()
    questions = db.execute(
        "SELECT * FROM questions ORDER BY exam_id, question_number"
    ).fetchall()

    by_exam = {}
    for q in questions:
        by_exam.setdefault(q["exam_id"], []).append(_question_dict(q, True))

    result = []
    for e in exams:
        exam = _exam_dict(e)
        exam["questions"] = by_exam.get(e["id"], [])
        result.append(exam)
    return result


def list_exams_for_student(db, student_id):
    student_id = _as_id(student_id, "studentId")
    student = db.execute(
        "SELECT class_id FROM students WHERE id=?", (student_id,)
    ).fetchone()
    if student is None:
        raise NotFound("Student not found")
    exams = db.execute(
        "SELECT * FROM exams WHERE class_id=? ORDER BY exam_date DESC, id DESC",
        (student["class_id"],),
    ).fetchall()
    return [_exam_dict(e) for e in exams]


def delete_exam(db, exam_id):
    exam = db.execute("SELECT id FROM exams WHERE id=?", (exam_id,)).fetchone()
    if exam is None:
        raise NotFound("Exam not found")

    # Children before parent
    db.execute(
        "DELETE FROM answers WHERE submission_id IN "
        "(SELECT id FROM submissions WHERE exam_id=?)",
        (exam_id,),
    )
    db.execute("DELETE FROM submissions WHERE exam_id=?", (exam_id,))
    db.execute("DELETE FROM questions WHERE exam_id=?", (exam_id,))
    db.execute("DELETE FROM exams WHERE id=?", (exam_id,))
    current_app.logger.info("MCQ exam %s deleted", exam_id)


# ---------- SUBMISSIONS ----------

def _get_or_create_submission(db, student_id, exam_id):
    exam = db.execute("SELECT id FROM exams WHERE id=?", (exam_id,)).fetchone()
    if exam is None:
        raise NotFound("Exam not found")
    student = db.execute("SELECT id FROM students WHERE id=?", (student_id,)).fetchone()
    if student is None:
        raise NotFound("Student not found")

    cur = db.execute(
        "INSERT INTO submissions (student_id, exam_id, status, started_at) "
        "VALUES (?,?,?,?) ON CONFLICT(student_id, exam_id) DO NOTHING",
        (student_id, exam_id, IN_PROGRESS, _now()),
    )
    if cur.rowcount == 1:
        current_app.logger.info(
            "Submission started: student %s, exam %s", student_id, exam_id
        )
    return db.execute(
        "SELECT * FROM submissions WHERE student_id=? AND exam_id=?",
        (student_id, exam_id),
    ).fetchone()


def _upsert_answer(db, submission_id, question_id, chosen, is_correct, marks_obtained):
    db.execute(
        "INSERT INTO answers "
        "(submission_id, question_id, student_answer, is_correct, marks_obtained) "
        "VALUES (?,?,?,?,?) "
        "ON CONFLICT(submission_id, question_id) DO UPDATE SET "
        "student_answer=excluded.student_answer, "
        "is_correct=excluded.is_correct, "
        "marks_obtained=excluded.marks_obtained",
        (submission_id, question_id, chosen, int(is_correct), marks_obtained),
    )


def start_or_resume(db, student_id, exam_id):
    student_id = _as_id(student_id, "studentId")
    exam_id = _as_id(exam_id, "examId")
    submission = _get_or_create_submission(db, student_id, exam_id)
    return {"id": submission["id"], "status": submission["status"]}


def save_answer(db, submission_id, question_id, student_answer):
    submission_id = _as_id(submission_id, "submissionId")
    question_id = _as_id(question_id, "questionId")
    if _missing(student_answer):
        raise ValidationError("studentAnswer is required", "studentAnswer")
    if not isinstance(student_answer, str) or student_answer not in OPTIONS:
        raise ValidationError("studentAnswer must be one of A, B, C, D", "studentAnswer")

    submission = db.execute(
        "SELECT id, exam_id, status FROM submissions WHERE id=?", (submission_id,)
    ).fetchone()
    if submission is None:
        raise NotFound("Submission not found")
    if submission["status"] in FINALIZED:
        current_app.logger.warning(
            "Refused answer edit on finalized submission %s", submission_id
        )
        raise ConflictError("Exam already submitted; answers can no longer be changed")

    question = db.execute(
        "SELECT id, correct_answer, marks FROM questions WHERE id=? AND exam_id=?",
        (question_id, submission["exam_id"]),
    ).fetchone()
    if question is None:
        raise NotFound("Question not found")

    is_correct, marks_obtained = grade_answer(question, student_answer)
    _upsert_answer(db, submission_id, question_id, student_answer, is_correct, marks_obtained)


def _parse_answers(answers):
    """questionId -> option; blank options count as unanswered."""
    parsed = {}
    for key, option in answers.items():
        try:
            question_id = int(key)
        except (TypeError, ValueError):
            current_app.logger.warning("Ignoring answer with invalid question id %r", key)
            continue
        if _missing(option):
            continue
        if not isinstance(option, str) or option not in OPTIONS:
            raise ValidationError(
                f"answers[{key}] must be one of A, B, C, D", "answers"
            )
        parsed[question_id] = option
    return parsed


def _exam_total_marks(db, exam_id):
    return db.execute(
        "SELECT COALESCE(SUM(marks), 0) AS total FROM questions WHERE exam_id=?",
        (exam_id,),
    ).fetchone()["total"]


def _summary(submission_id, total_score, total_marks, percentage):
    return {
        "success": True,
        "submissionId": submission_id,
        "totalScore": total_score,
        "totalMarks": total_marks,
        "percentage": f"{percentage:.2f}",
    }


def submit_exam(db, student_id, exam_id, answers, time_taken_minutes=None):
    if _missing(student_id) or _missing(exam_id) or answers is None:
        raise ValidationError("Student ID, Exam ID, and answers are required")
    student_id = _as_id(student_id, "studentId")
    exam_id = _as_id(exam_id, "examId")
    if not isinstance(answers, dict):
        raise ValidationError("answers must be an object of questionId to option", "answers")
    answers = _parse_answers(answers)

    if time_taken_minutes is None or time_taken_minutes == "":
        time_taken_minutes = 0
    try:
        time_taken_minutes = int(time_taken_minutes)
    except (TypeError, ValueError):
        raise ValidationError("timeTakenMinutes must be a whole number", "timeTakenMinutes")
    if time_taken_minutes < 0:
        raise ValidationError("timeTakenMinutes cannot be negative", "timeTakenMinutes")

    submission = _get_or_create_submission(db, student_id, exam_id)
    submission_id = submission["id"]

    if submission["status"] in FINALIZED:
        # Forward-only: a repeat submit reports the stored result unchanged
        current_app.logger.info("Submission %s already finalized; returning stored result", submission_id)
        return _summary(
            submission_id,
            submission["total_score"],
            _exam_total_marks(db, exam_id),
            submission["percentage"] or 0,
        )

    questions = db.execute(
        "SELECT id, correct_answer, marks FROM questions WHERE exam_id=? ORDER BY question_number",
        (exam_id,),
    ).fetchall()

    unknown = set(answers) - {q["id"] for q in questions}
    if unknown:
        current_app.logger.warning(
            "Submission %s: ignoring answers for questions outside exam %s: %s",
            submission_id, exam_id, sorted(unknown),
        )

    results = []
    for q in questions:
        chosen = answers.get(q["id"]) or None
        is_correct, marks_obtained = grade_answer(q, chosen)
        _upsert_answer(db, submission_id, q["id"], chosen, is_correct, marks_obtained)
        results.append((marks_obtained, q["marks"]))

    total_score, total_marks, percentage = summarize(results)

    db.execute(
        "UPDATE submissions SET status=?, submitted_at=?, total_score=?, percentage=?, "
        "time_taken_minutes=? WHERE id=?",
        (SUBMITTED, _now(), total_score, percentage, time_taken_minutes, submission_id),
    )
    current_app.logger.info(
        "Submission %s graded: %s/%s (%.2f%%)", submission_id, total_score, total_marks, percentage
    )
    return _summary(submission_id, total_score, total_marks, percentage)


# ---------- READ SIDE ----------

def get_submission(db, student_id, exam_id):
    row = db.execute(
        "SELECT * FROM submissions WHERE student_id=? AND exam_id=?",
        (_as_id(student_id, "studentId"), _as_id(exam_id, "examId")),
    ).fetchone()
    return _submission_dict(row) if row else None


def list_submissions(db, student_id):
    rows = db.execute(
        "SELECT * FROM submissions WHERE student_id=? ORDER BY submitted_at DESC, id DESC",
        (_as_id(student_id, "studentId"),),
    ).fetchall()
    return [_submission_dict(r) for r in rows]


def _require_submission(db, submission_id):
    row = db.execute("SELECT * FROM submissions WHERE id=?", (submission_id,)).fetchone()
    if row is None:
        raise NotFound("Submission not found")
    return row


def get_answers(db, submission_id):
    _require_submission(db, submission_id)
    rows = db.execute(
        "SELECT a.* FROM answers a JOIN questions q ON q.id = a.question_id "
        "WHERE a.submission_id=? ORDER BY q.question_number",
        (submission_id,),
    ).fetchall()
    return [_answer_dict(r) for r in rows]


def get_result(db, submission_id):
    """Result view: the only student-facing projection that carries correct answers."""
    submission = _require_submission(db, submission_id)
    if submission["status"] not in FINALIZED:
        raise ConflictError("Results are available once the exam has been submitted")
    result = _submission_dict(submission)
    result["exam"] = get_exam(db, submission["exam_id"], include_answers=True)
    result["answers"] = get_answers(db, submission_id)
    return result
