"""
Copyright (c) 2025 Amit Kadam

All Rights Reserved. No part of this software may be copied, reproduced, distributed, or used in derivative works without the prior written permission of the copyright holder.

For permission requests, contact: amitkadam96k@gmail.com
"""

import sqlite3
from contextlib import contextmanager

from flask import current_app
from werkzeug.security import generate_password_hash


SCHEMA = """
CREATE TABLE IF NOT EXISTS classes (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    class_name TEXT NOT NULL,
    section TEXT NOT NULL,
    UNIQUE(class_name, section)
);

CREATE TABLE IF NOT EXISTS students (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    name TEXT NOT NULL,
    roll_no TEXT NOT NULL,
    class_id INTEGER NOT NULL,
    FOREIGN KEY(class_id) REFERENCES classes(id) ON DELETE CASCADE,
    UNIQUE(class_id, roll_no)
);

-- Users for roles; student accounts point at their students row
CREATE TABLE IF NOT EXISTS users (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    username TEXT UNIQUE NOT NULL,
    password_hash TEXT NOT NULL,
    role TEXT NOT NULL
        CHECK (role IN ('admin', 'principal', 'teacher', 'accountant', 'student')),
    student_id INTEGER,
    FOREIGN KEY(student_id) REFERENCES students(id) ON DELETE SET NULL
);

-- MCQ exams
CREATE TABLE IF NOT EXISTS exams (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    name TEXT NOT NULL,
    class_id INTEGER NOT NULL,
    exam_date TEXT NOT NULL,
    total_questions INTEGER NOT NULL,
    total_marks REAL NOT NULL,
    created_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP,
    FOREIGN KEY(class_id) REFERENCES classes(id)
);

CREATE TABLE IF NOT EXISTS questions (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    exam_id INTEGER NOT NULL,
    question_number INTEGER NOT NULL,
    question_text TEXT NOT NULL,
    option_a TEXT NOT NULL,
    option_b TEXT NOT NULL,
    option_c TEXT NOT NULL,
    option_d TEXT NOT NULL,
    correct_answer TEXT NOT NULL CHECK (correct_answer IN ('A', 'B', 'C', 'D')),
    marks REAL NOT NULL CHECK (marks > 0),
    UNIQUE(exam_id, question_number),
    FOREIGN KEY(exam_id) REFERENCES exams(id)
);

CREATE TABLE IF NOT EXISTS submissions (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    student_id INTEGER NOT NULL,
    exam_id INTEGER NOT NULL,
    status TEXT NOT NULL DEFAULT 'in_progress'
        CHECK (status IN ('in_progress', 'submitted', 'graded')),
    total_score REAL,
    percentage REAL,
    started_at TEXT NOT NULL,
    submitted_at TEXT,
    time_taken_minutes INTEGER,
    UNIQUE(student_id, exam_id),
    FOREIGN KEY(student_id) REFERENCES students(id),
    FOREIGN KEY(exam_id) REFERENCES exams(id)
);

CREATE TABLE IF NOT EXISTS answers (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    submission_id INTEGER NOT NULL,
    question_id INTEGER NOT NULL,
    student_answer TEXT,
    is_correct INTEGER NOT NULL DEFAULT 0,
    marks_obtained REAL NOT NULL DEFAULT 0,
    UNIQUE(submission_id, question_id),
    FOREIGN KEY(submission_id) REFERENCES submissions(id),
    FOREIGN KEY(question_id) REFERENCES questions(id)
);

-- Fees
CREATE TABLE IF NOT EXISTS fee_structures (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    school_id INTEGER NOT NULL DEFAULT 1,
    class_name TEXT NOT NULL UNIQUE,
    tuition_fee REAL NOT NULL DEFAULT 0,
    annual_fee REAL NOT NULL DEFAULT 0,
    total_fee REAL NOT NULL DEFAULT 0,
    q1 REAL NOT NULL DEFAULT 0,
    q2 REAL NOT NULL DEFAULT 0,
    q3 REAL NOT NULL DEFAULT 0,
    q4 REAL NOT NULL DEFAULT 0,
    additional_services TEXT,
    notes TEXT,
    created_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP,
    updated_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP
);

CREATE TABLE IF NOT EXISTS section_extra_fees (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    fees_structure_id INTEGER,
    class_name TEXT NOT NULL,
    section TEXT NOT NULL,
    service_name TEXT NOT NULL,
    amount REAL NOT NULL,
    q1 REAL NOT NULL DEFAULT 0,
    q2 REAL NOT NULL DEFAULT 0,
    q3 REAL NOT NULL DEFAULT 0,
    q4 REAL NOT NULL DEFAULT 0,
    is_active INTEGER NOT NULL DEFAULT 1,
    created_by INTEGER,
    created_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP,
    updated_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP,
    UNIQUE(class_name, section, service_name),
    FOREIGN KEY(fees_structure_id) REFERENCES fee_structures(id) ON DELETE SET NULL,
    FOREIGN KEY(created_by) REFERENCES users(id) ON DELETE SET NULL
);

CREATE TABLE IF NOT EXISTS fee_services (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    name TEXT NOT NULL UNIQUE,
    description TEXT,
    default_amount REAL NOT NULL DEFAULT 0,
    is_mandatory INTEGER NOT NULL DEFAULT 0,
    created_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP
);

CREATE TABLE IF NOT EXISTS student_services (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    student_id INTEGER NOT NULL,
    service_name TEXT NOT NULL,
    amount REAL NOT NULL,
    is_active INTEGER NOT NULL DEFAULT 1,
    start_date TEXT,
    end_date TEXT,
    notes TEXT,
    created_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP,
    updated_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP,
    UNIQUE(student_id, service_name),
    FOREIGN KEY(student_id) REFERENCES students(id) ON DELETE CASCADE
);

-- Payment ledger, one row per payment against a quarter
CREATE TABLE IF NOT EXISTS fee_payments (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    student_id INTEGER NOT NULL,
    quarter TEXT NOT NULL CHECK (quarter IN ('Q1', 'Q2', 'Q3', 'Q4')),
    paid_amount REAL NOT NULL CHECK (paid_amount > 0),
    paid_on TEXT NOT NULL,
    mode TEXT,
    FOREIGN KEY(student_id) REFERENCES students(id) ON DELETE CASCADE
);
"""


# ---------- CONNECTIONS ----------

def get_db():
    conn = sqlite3.connect(
        current_app.config["DATABASE"], timeout=30, check_same_thread=False
    )
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA journal_mode=WAL;")
    conn.execute("PRAGMA foreign_keys = ON;")
    return conn


@contextmanager
def connection():
    """Read-only access: a fresh connection, closed on exit."""
    db = get_db()
    try:
        yield db
    finally:
        db.close()


@contextmanager
def transaction():
    """Unit of work around a multi-statement write.

    Takes the write lock up front (BEGIN IMMEDIATE) so check-then-insert
    sequences are serialized across connections. Commits on normal exit,
    rolls back on any exception, always closes the connection.
    """
    db = get_db()
    db.isolation_level = None
    try:
        db.execute("BEGIN IMMEDIATE")
        try:
            yield db
        except BaseException:
            if db.in_transaction:
                db.execute("ROLLBACK")
            raise
        db.execute("COMMIT")
    finally:
        db.close()


# ---------- SCHEMA ----------

def init_db():
    with connection() as db:
        db.executescript(SCHEMA)

        # Create default principal if not exists
        username = current_app.config["DEFAULT_PRINCIPAL_USERNAME"]
        cur = db.execute("SELECT id FROM users WHERE username = ?", (username,))
        if cur.fetchone() is None:
            db.execute(
                "INSERT INTO users (username, password_hash, role) VALUES (?,?,?)",
                (
                    username,
                    generate_password_hash(current_app.config["DEFAULT_PRINCIPAL_PASSWORD"]),
                    "principal",
                ),
            )
            db.commit()
            current_app.logger.info("Default principal created: username=%s", username)

    current_app.logger.info("Database ready with exams, submissions, fee structures & payments")
