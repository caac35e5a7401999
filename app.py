"""
Copyright (c) 2025 Amit Kadam

All Rights Reserved. No part of this software may be copied, reproduced, distributed, or used in derivative works without the prior written permission of the copyright holder.

For permission requests, contact: amitkadam96k@gmail.com
"""

import sqlite3
from datetime import datetime
from functools import wraps

import click
from flask import Flask, request, session, g, jsonify
from werkzeug.exceptions import HTTPException

import exams
import fees
from config import Config
from db import connection, transaction, init_db
from errors import AuthorizationError, ServiceError, StoreError, ValidationError

app = Flask(__name__)
app.config.from_object(Config)
app.logger.setLevel(app.config["LOG_LEVEL"])

AUTHORS = ("admin", "principal", "teacher")
FEE_MANAGERS = ("admin", "principal", "accountant")


# ---------- AUTH HELPERS ----------

@app.before_request
def load_logged_in_user():
    user_id = session.get("user_id")
    if user_id is None:
        g.user = None
    else:
        with connection() as db:
            g.user = db.execute(
                "SELECT id, username, role, student_id FROM users WHERE id=?",
                (user_id,),
            ).fetchone()


def login_required(view):
    @wraps(view)
    def wrapped_view(**kwargs):
        if g.user is None:
            return jsonify({"status": 0, "success": False, "error": "Login required."}), 401
        return view(**kwargs)

    return wrapped_view


def require_role(*roles):
    def decorator(view):
        @wraps(view)
        def wrapped_view(**kwargs):
            if g.user is None:
                return jsonify({"status": 0, "success": False, "error": "Login required."}), 401
            if g.user["role"] not in roles:
                app.logger.warning(
                    "User %s (%s) refused on %s", g.user["id"], g.user["role"], request.path
                )
                raise AuthorizationError("You do not have access to this action.")
            return view(**kwargs)

        return wrapped_view

    return decorator


def check_student(student_id):
    """Students may only act on their own records."""
    if g.user["role"] != "student":
        return
    if student_id is None or str(g.user["student_id"]) != str(student_id):
        raise AuthorizationError("Students can only access their own exams.")


def json_body():
    data = request.get_json(silent=True)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object")
    return data


# ---------- ERROR HANDLING ----------

@app.errorhandler(ServiceError)
def handle_service_error(exc):
    body = exc.to_dict()
    body.update(status=0, success=False)
    return jsonify(body), exc.status_code


@app.errorhandler(sqlite3.Error)
def handle_store_error(exc):
    # Driver detail stays in the log, never in the response
    app.logger.error("Database error on %s %s", request.method, request.path, exc_info=exc)
    return handle_service_error(StoreError())


@app.errorhandler(HTTPException)
def handle_http_error(exc):
    return jsonify({"status": 0, "success": False, "error": exc.description}), exc.code


# ---------- MCQ EXAMS (AUTHORING) ----------

@app.route("/api/exams/mcq", methods=["POST"])
@require_role(*AUTHORS)
def create_exam():
    with transaction() as db:
        exam_id = exams.create_exam(db, json_body())
    return jsonify({
        "success": True,
        "message": "MCQ exam created successfully",
        "examId": exam_id,
    })


@app.route("/api/exams/mcq")
@require_role(*AUTHORS)
def list_exams():
    with connection() as db:
        return jsonify(exams.list_exams(db))


@app.route("/api/exams/mcq/<int:exam_id>")
@require_role(*AUTHORS)
def get_exam(exam_id):
    with connection() as db:
        return jsonify(exams.get_exam(db, exam_id, include_answers=True))


@app.route("/api/exams/mcq/<int:exam_id>", methods=["DELETE"])
@require_role(*AUTHORS)
def delete_exam(exam_id):
    with transaction() as db:
        exams.delete_exam(db, exam_id)
    return jsonify({"success": True, "message": "Exam deleted successfully"})


# ---------- STUDENT EXAMS ----------

@app.route("/api/student/exams")
@login_required
def student_exams():
    student_id = request.args.get("studentId")
    if not student_id:
        raise ValidationError("Student ID is required", "studentId")
    check_student(student_id)
    with connection() as db:
        return jsonify(exams.list_exams_for_student(db, student_id))


@app.route("/api/student/exams/<int:exam_id>/take")
@login_required
def take_exam(exam_id):
    with connection() as db:
        return jsonify(exams.get_exam(db, exam_id, include_answers=False))


@app.route("/api/student/exams/<int:exam_id>/submission")
@login_required
def exam_submission(exam_id):
    student_id = request.args.get("studentId")
    if not student_id:
        raise ValidationError("Student ID is required", "studentId")
    check_student(student_id)
    with connection() as db:
        return jsonify(exams.get_submission(db, student_id, exam_id))


@app.route("/api/student/exams/submissions")
@login_required
def student_submissions():
    student_id = request.args.get("studentId")
    if not student_id:
        raise ValidationError("Student ID is required", "studentId")
    check_student(student_id)
    with connection() as db:
        return jsonify(exams.list_submissions(db, student_id))


@app.route("/api/student/exams/submissions", methods=["POST"])
@login_required
def start_submission():
    data = json_body()
    check_student(data.get("studentId"))
    with transaction() as db:
        result = exams.start_or_resume(db, data.get("studentId"), data.get("examId"))
    return jsonify(result)


def check_submission_owner(db, submission_id):
    if g.user["role"] != "student":
        return
    row = db.execute(
        "SELECT student_id FROM submissions WHERE id=?", (submission_id,)
    ).fetchone()
    if row is not None:
        check_student(row["student_id"])


@app.route("/api/student/exams/submissions/<int:submission_id>/answers")
@login_required
def submission_answers(submission_id):
    with connection() as db:
        check_submission_owner(db, submission_id)
        return jsonify(exams.get_answers(db, submission_id))


@app.route("/api/student/exams/submissions/<int:submission_id>/answers", methods=["POST"])
@login_required
def save_answer(submission_id):
    data = json_body()
    with transaction() as db:
        check_submission_owner(db, submission_id)
        exams.save_answer(db, submission_id, data.get("questionId"), data.get("studentAnswer"))
    return jsonify({"success": True})


@app.route("/api/student/exams/submissions/<int:submission_id>/result")
@login_required
def submission_result(submission_id):
    with connection() as db:
        check_submission_owner(db, submission_id)
        return jsonify(exams.get_result(db, submission_id))


@app.route("/api/student/exams/submit", methods=["POST"])
@login_required
def submit_exam():
    data = json_body()
    check_student(data.get("studentId"))
    with transaction() as db:
        result = exams.submit_exam(
            db,
            data.get("studentId"),
            data.get("examId"),
            data.get("answers"),
            data.get("timeTakenMinutes"),
        )
    return jsonify(result)


# ---------- FEES STRUCTURE ----------

@app.route("/api/fees-structure")
@login_required
def list_fee_structures():
    with connection() as db:
        return jsonify({"status": 1, "result": fees.list_structures(db)})


@app.route("/api/fees-structure", methods=["POST"])
@require_role(*FEE_MANAGERS)
def create_fee_structure():
    with transaction() as db:
        structure_id = fees.create_structure(db, json_body())
    return jsonify({
        "status": 1,
        "message": "Fees structure created successfully",
        "result": {"id": structure_id},
    })


@app.route("/api/fees-structure/<int:structure_id>", methods=["PUT"])
@require_role(*FEE_MANAGERS)
def update_fee_structure(structure_id):
    with transaction() as db:
        fees.update_structure(db, structure_id, json_body())
    return jsonify({"status": 1, "message": "Fees structure updated successfully"})


@app.route("/api/fees-structure/<int:structure_id>", methods=["DELETE"])
@require_role(*FEE_MANAGERS)
def delete_fee_structure(structure_id):
    with transaction() as db:
        fees.delete_structure(db, structure_id)
    return jsonify({"status": 1, "message": "Fees structure deleted successfully"})


@app.route("/api/fees-structure/calculate-quarters", methods=["POST"])
@login_required
def calculate_quarters():
    return jsonify({"status": 1, "result": fees.calculate_quarters(json_body())})


# ---------- SECTION EXTRA FEES ----------

@app.route("/api/fees-structure/section-extra-fees")
@login_required
def list_section_extra_fees():
    with connection() as db:
        result = fees.list_section_extra_fees(
            db, request.args.get("class_name"), request.args.get("section")
        )
    return jsonify({"status": 1, "result": result})


@app.route("/api/fees-structure/section-extra-fees", methods=["POST"])
@login_required
def create_section_extra_fee():
    with transaction() as db:
        fee_id = fees.add_section_extra_fee(db, g.user, json_body())
    return jsonify({
        "status": 1,
        "message": "Section extra fee created successfully",
        "result": {"id": fee_id},
    })


@app.route("/api/fees-structure/section-extra-fees/<int:fee_id>", methods=["PUT"])
@login_required
def update_section_extra_fee(fee_id):
    with transaction() as db:
        fees.update_section_extra_fee(db, g.user, fee_id, json_body())
    return jsonify({"status": 1, "message": "Section extra fee updated successfully"})


@app.route("/api/fees-structure/section-extra-fees/<int:fee_id>", methods=["DELETE"])
@login_required
def delete_section_extra_fee(fee_id):
    with transaction() as db:
        fees.delete_section_extra_fee(db, g.user, fee_id)
    return jsonify({"status": 1, "message": "Section extra fee deleted successfully"})


# ---------- SERVICES ----------

@app.route("/api/fees-structure/services")
@login_required
def list_fee_services():
    with connection() as db:
        return jsonify({"status": 1, "result": fees.list_services(db)})


@app.route("/api/fees-structure/services", methods=["POST"])
@require_role(*FEE_MANAGERS)
def create_fee_service():
    with transaction() as db:
        service_id = fees.create_service(db, json_body())
    return jsonify({
        "status": 1,
        "message": "Service created successfully",
        "result": {"id": service_id},
    })


@app.route("/api/student-services")
@login_required
def list_student_services():
    with connection() as db:
        result = fees.list_student_services(
            db,
            request.args.get("studentId"),
            request.args.get("classId"),
            request.args.get("serviceName"),
        )
    return jsonify({"status": 1, "result": result})


@app.route("/api/student-services", methods=["POST"])
@require_role(*FEE_MANAGERS)
def create_student_service():
    with transaction() as db:
        service_id = fees.add_student_service(db, json_body())
    return jsonify({
        "status": 1,
        "message": "Student service created successfully",
        "result": {"id": service_id},
    })


@app.route("/api/student-services/<int:service_id>", methods=["PUT"])
@require_role(*FEE_MANAGERS)
def update_student_service(service_id):
    with transaction() as db:
        fees.update_student_service(db, service_id, json_body())
    return jsonify({"status": 1, "message": "Student service updated successfully"})


@app.route("/api/student-services/<int:service_id>", methods=["DELETE"])
@require_role(*FEE_MANAGERS)
def delete_student_service(service_id):
    with transaction() as db:
        fees.delete_student_service(db, service_id)
    return jsonify({"status": 1, "message": "Student service deleted successfully"})


# ---------- PAYMENTS ----------

@app.route("/api/fees-structure/payments", methods=["POST"])
@require_role(*FEE_MANAGERS)
def record_payment():
    with transaction() as db:
        payment_id = fees.record_payment(db, json_body())
    return jsonify({
        "status": 1,
        "message": "Payment recorded.",
        "result": {"id": payment_id},
    })


@app.route("/api/fees-structure/payments/class-wise")
@require_role(*FEE_MANAGERS)
def class_wise_payments():
    filters = {
        key: request.args.get(key)
        for key in ("class_name", "section", "quarter", "status")
        if request.args.get(key)
    }
    as_of = request.args.get("as_of")
    if as_of:
        try:
            as_of = datetime.strptime(as_of, "%Y-%m-%d").date()
        except ValueError:
            raise ValidationError("as_of must be a YYYY-MM-DD date", "as_of")
    with connection() as db:
        result = fees.compute_class_wise_payments(db, filters, as_of or None)
    return jsonify({"status": 1, "result": result})


# ---------- HEALTH ----------

@app.route("/api/health")
def health_check():
    with connection() as db:
        db.execute("SELECT 1").fetchone()
    return jsonify({"status": "OK", "db": True, "timestamp": datetime.now().isoformat()})


@app.cli.command("init-db")
def init_db_command():
    init_db()
    click.echo("Database initialised.")


if __name__ == "__main__":
    with app.app_context():
        init_db()
    print("\nSCHOOL CORE: MCQ EXAMS, FEE STRUCTURES, QUARTERLY INSTALLMENTS")
    print(f"Default principal: {app.config['DEFAULT_PRINCIPAL_USERNAME']}")
    print("Open: http://127.0.0.1:5000/api/health\n")
    app.run(port=5000, debug=True)
