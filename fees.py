"""
Copyright (c) 2025 Amit Kadam

All Rights Reserved. No part of this software may be copied, reproduced, distributed, or used in derivative works without the prior written permission of the copyright holder.

For permission requests, contact: amitkadam96k@gmail.com
"""

import calendar
import json
import sqlite3
from datetime import date

from flask import current_app

from errors import AuthorizationError, ConflictError, NotFound, ValidationError, InvalidAmount
from money import (
    QUARTERS, QUARTER_KEYS, ZERO, Quarters, as_number, distribute_quarters,
    fee_components, quarters_from_payload, to_money,
)


PRINCIPAL = "principal"
PAYMENT_STATUSES = ("paid", "pending", "overdue")

DEFAULT_SERVICES = [
    {
        "id": "digital_learning",
        "name": "Digital Learning Suite",
        "description": "LMS, smart classroom subscription, e-books",
        "defaultAmount": 1500,
        "mandatory": False,
    },
    {
        "id": "transport",
        "name": "School Transport",
        "description": "Bus / cab facility",
        "defaultAmount": 2500,
        "mandatory": False,
    },
    {
        "id": "lab",
        "name": "Laboratory Charges",
        "description": "Science, computer and language lab maintenance",
        "defaultAmount": 900,
        "mandatory": False,
    },
    {
        "id": "activities",
        "name": "Extracurricular Activities",
        "description": "Clubs, sports, cultural programs",
        "defaultAmount": 600,
        "mandatory": False,
    },
    {
        "id": "hostel",
        "name": "Hostel & Boarding",
        "description": "Applicable for residential students",
        "defaultAmount": 5000,
        "mandatory": False,
    },
    {
        "id": "insurance",
        "name": "Student Insurance",
        "description": "Annual coverage for student safety",
        "defaultAmount": 300,
        "mandatory": False,
    },
]


def _text(data, field, required=True):
    value = data.get(field)
    value = str(value).strip() if value is not None else ""
    if required and not value:
        raise ValidationError(f"{field} is required", field)
    return value or None


def _flag(value, default=True):
    """JSON booleans, 0/1 and the usual form strings ("false", "off", ...)."""
    if value is None or value == "":
        return default
    if isinstance(value, str):
        text = value.strip().lower()
        if text in ("1", "true", "yes", "on"):
            return True
        if text in ("0", "false", "no", "off"):
            return False
        raise ValidationError("is_active must be true or false", "is_active")
    return bool(value)


def _quarter(value):
    quarter = str(value or "").strip().upper()
    if quarter not in QUARTERS:
        raise ValidationError("quarter must be one of Q1, Q2, Q3, Q4", "quarter")
    return quarter


# ---------- FEE STRUCTURES ----------

def _structure_dict(row):
    fee = dict(row)
    fee["additional_services"] = (
        json.loads(fee["additional_services"]) if fee["additional_services"] else None
    )
    return fee


def _structure_values(data):
    class_name = _text(data, "class_name")
    components = fee_components(
        data.get("tuition_fee"), data.get("annual_fee"), data.get("services")
    )
    quarters = quarters_from_payload(data, components["total"])
    services = components["services"]
    additional_services = (
        json.dumps({name: as_number(amount) for name, amount in services.items()})
        if services else None
    )
    return [
        class_name,
        as_number(components["tuition"]),
        as_number(components["annual"]),
        as_number(components["total"]),
    ] + [as_number(q) for q in quarters] + [
        additional_services,
        _text(data, "notes", required=False),
    ]


def list_structures(db):
    rows = db.execute("SELECT * FROM fee_structures ORDER BY class_name").fetchall()
    return [_structure_dict(r) for r in rows]


def get_structure(db, structure_id):
    row = db.execute("SELECT * FROM fee_structures WHERE id=?", (structure_id,)).fetchone()
    if row is None:
        raise NotFound("Fees structure not found")
    return _structure_dict(row)


def create_structure(db, data):
    values = _structure_values(data)
    school_id = data.get("school_id") or current_app.config["DEFAULT_SCHOOL_ID"]
    try:
        cur = db.execute(
            "INSERT INTO fee_structures "
            "(class_name, tuition_fee, annual_fee, total_fee, q1, q2, q3, q4, "
            "additional_services, notes, school_id) VALUES (?,?,?,?,?,?,?,?,?,?,?)",
            values + [school_id],
        )
    except sqlite3.IntegrityError:
        raise ConflictError("A fees structure for this class already exists", "class_name")
    current_app.logger.info(
        "Fees structure %s created for %s (total %s)", cur.lastrowid, values[0], values[3]
    )
    return cur.lastrowid


def update_structure(db, structure_id, data):
    values = _structure_values(data)
    try:
        cur = db.execute(
            "UPDATE fee_structures SET class_name=?, tuition_fee=?, annual_fee=?, "
            "total_fee=?, q1=?, q2=?, q3=?, q4=?, additional_services=?, notes=?, "
            "updated_at=CURRENT_TIMESTAMP WHERE id=?",
            values + [structure_id],
        )
    except sqlite3.IntegrityError:
        raise ConflictError("A fees structure for this class already exists", "class_name")
    if cur.rowcount == 0:
        raise NotFound("Fees structure not found")
    current_app.logger.info("Fees structure %s updated (total %s)", structure_id, values[3])


def delete_structure(db, structure_id):
    cur = db.execute("DELETE FROM fee_structures WHERE id=?", (structure_id,))
    if cur.rowcount == 0:
        raise NotFound("Fees structure not found")
    current_app.logger.info("Fees structure %s deleted", structure_id)


def calculate_quarters(data):
    quarters = distribute_quarters(
        data.get("total_amount"),
        data.get("distribution_type") or "equal",
        data.get("custom_distribution"),
    )
    result = {key: as_number(q) for key, q in zip(QUARTER_KEYS, quarters)}
    result["total"] = as_number(sum(quarters))
    return result


# ---------- SECTION EXTRA FEES (PRINCIPAL ONLY) ----------

def _require_principal(principal, action):
    if principal is None or principal["role"] != PRINCIPAL:
        current_app.logger.warning(
            "Refused section extra fee %s for user %s",
            action, principal["id"] if principal is not None else None,
        )
        raise AuthorizationError(f"Unauthorized. Only Principal can {action} extra fees.")


def _section_fee_dict(row):
    fee = dict(row)
    fee["is_active"] = bool(fee["is_active"])
    return fee


def list_section_extra_fees(db, class_name=None, section=None):
    sql = "SELECT * FROM section_extra_fees WHERE 1=1"
    params = []
    if class_name:
        sql += " AND class_name = ?"
        params.append(class_name)
    if section:
        sql += " AND section = ?"
        params.append(section.strip().upper())
    sql += " ORDER BY class_name, section, service_name"
    return [_section_fee_dict(r) for r in db.execute(sql, params).fetchall()]


def add_section_extra_fee(db, principal, data):
    _require_principal(principal, "create")

    class_name = _text(data, "class_name")
    section = _text(data, "section").upper()
    service_name = _text(data, "service_name")
    if data.get("amount") is None:
        raise ValidationError("amount is required", "amount")
    amount = to_money(data["amount"])
    if amount < 0:
        raise InvalidAmount("amount cannot be negative", "amount")
    quarters = quarters_from_payload(data, amount)

    structure_id = data.get("fees_structure_id")
    if structure_id:
        get_structure(db, structure_id)
    else:
        row = db.execute(
            "SELECT id FROM fee_structures WHERE class_name=?", (class_name,)
        ).fetchone()
        structure_id = row["id"] if row else None

    try:
        cur = db.execute(
            "INSERT INTO section_extra_fees "
            "(fees_structure_id, class_name, section, service_name, amount, "
            "q1, q2, q3, q4, is_active, created_by) VALUES (?,?,?,?,?,?,?,?,?,?,?)",
            [structure_id, class_name, section, service_name, as_number(amount)]
            + [as_number(q) for q in quarters]
            + [int(_flag(data.get("is_active"))), principal["id"]],
        )
    except sqlite3.IntegrityError:
        raise ConflictError(
            "This service already exists for this class section", "service_name"
        )
    current_app.logger.info(
        "Section extra fee %s (%s) added to %s-%s by user %s",
        cur.lastrowid, service_name, class_name, section, principal["id"],
    )
    return cur.lastrowid


def update_section_extra_fee(db, principal, fee_id, data):
    _require_principal(principal, "update")

    existing = db.execute(
        "SELECT * FROM section_extra_fees WHERE id=?", (fee_id,)
    ).fetchone()
    if existing is None:
        raise NotFound("Section extra fee not found")

    service_name = _text(data, "service_name", required=False) or existing["service_name"]
    amount = to_money(data["amount"]) if data.get("amount") is not None else to_money(existing["amount"])
    if amount < 0:
        raise InvalidAmount("amount cannot be negative", "amount")

    quarters_given = any(data.get(key) is not None for key in QUARTER_KEYS)
    if quarters_given or amount != to_money(existing["amount"]):
        quarters = quarters_from_payload(data, amount)
    else:
        quarters = Quarters(*(to_money(existing[key]) for key in QUARTER_KEYS))

    is_active = _flag(data.get("is_active"), bool(existing["is_active"]))

    try:
        db.execute(
            "UPDATE section_extra_fees SET service_name=?, amount=?, q1=?, q2=?, q3=?, q4=?, "
            "is_active=?, updated_at=CURRENT_TIMESTAMP WHERE id=?",
            [service_name, as_number(amount)]
            + [as_number(q) for q in quarters]
            + [int(is_active), fee_id],
        )
    except sqlite3.IntegrityError:
        raise ConflictError(
            "This service already exists for this class section", "service_name"
        )
    current_app.logger.info("Section extra fee %s updated by user %s", fee_id, principal["id"])


def delete_section_extra_fee(db, principal, fee_id):
    _require_principal(principal, "delete")
    cur = db.execute("DELETE FROM section_extra_fees WHERE id=?", (fee_id,))
    if cur.rowcount == 0:
        raise NotFound("Section extra fee not found")
    current_app.logger.info("Section extra fee %s deleted by user %s", fee_id, principal["id"])


# ---------- SERVICE CATALOGUE ----------

def list_services(db):
    rows = db.execute(
        "SELECT id, name, description, default_amount, is_mandatory FROM fee_services "
        "ORDER BY name"
    ).fetchall()
    if not rows:
        return DEFAULT_SERVICES
    return [
        {
            "id": r["id"],
            "name": r["name"],
            "description": r["description"],
            "defaultAmount": r["default_amount"],
            "mandatory": bool(r["is_mandatory"]),
        }
        for r in rows
    ]


def create_service(db, data):
    name = _text(data, "name")
    default_amount = to_money(data.get("defaultAmount"), "defaultAmount")
    if default_amount < 0:
        raise InvalidAmount("defaultAmount cannot be negative", "defaultAmount")
    try:
        cur = db.execute(
            "INSERT INTO fee_services (name, description, default_amount, is_mandatory) "
            "VALUES (?,?,?,?)",
            (
                name,
                _text(data, "description", required=False),
                as_number(default_amount),
                int(bool(data.get("mandatory"))),
            ),
        )
    except sqlite3.IntegrityError:
        raise ConflictError("A service with this name already exists", "name")
    return cur.lastrowid


# ---------- STUDENT SERVICES ----------

def list_student_services(db, student_id=None, class_id=None, service_name=None):
    sql = """
        SELECT ss.*, s.name AS student_name, s.roll_no, c.class_name, c.section
        FROM student_services ss
        JOIN students s ON ss.student_id = s.id
        LEFT JOIN classes c ON s.class_id = c.id
        WHERE 1=1
    """
    params = []
    if student_id:
        sql += " AND ss.student_id = ?"
        params.append(student_id)
    if class_id:
        sql += " AND s.class_id = ?"
        params.append(class_id)
    if service_name:
        sql += " AND ss.service_name LIKE ?"
        params.append(f"%{service_name}%")
    sql += " ORDER BY s.name, ss.service_name"
    rows = db.execute(sql, params).fetchall()
    return [dict(r, is_active=bool(r["is_active"])) for r in rows]


def add_student_service(db, data):
    if data.get("student_id") is None or data.get("amount") is None:
        raise ValidationError("Student ID, service name, and amount are required")
    service_name = _text(data, "service_name")
    amount = to_money(data["amount"])
    if amount < 0:
        raise InvalidAmount("amount cannot be negative", "amount")

    student = db.execute(
        "SELECT id FROM students WHERE id=?", (data["student_id"],)
    ).fetchone()
    if student is None:
        raise NotFound("Student not found")

    try:
        cur = db.execute(
            "INSERT INTO student_services "
            "(student_id, service_name, amount, is_active, start_date, end_date, notes) "
            "VALUES (?,?,?,?,?,?,?)",
            (
                student["id"],
                service_name,
                as_number(amount),
                int(_flag(data.get("is_active"))),
                _text(data, "start_date", required=False),
                _text(data, "end_date", required=False),
                _text(data, "notes", required=False),
            ),
        )
    except sqlite3.IntegrityError:
        raise ConflictError("This service already exists for this student", "service_name")
    return cur.lastrowid


def update_student_service(db, service_id, data):
    """Full update of one student service; is_active keeps its value when omitted."""
    if data.get("amount") is None:
        raise ValidationError("Service name and amount are required", "amount")
    service_name = _text(data, "service_name")
    amount = to_money(data["amount"])
    if amount < 0:
        raise InvalidAmount("amount cannot be negative", "amount")

    existing = db.execute(
        "SELECT is_active FROM student_services WHERE id=?", (service_id,)
    ).fetchone()
    if existing is None:
        raise NotFound("Student service not found")

    try:
        db.execute(
            "UPDATE student_services SET service_name=?, amount=?, is_active=?, "
            "start_date=?, end_date=?, notes=?, updated_at=CURRENT_TIMESTAMP WHERE id=?",
            (
                service_name,
                as_number(amount),
                int(_flag(data.get("is_active"), bool(existing["is_active"]))),
                _text(data, "start_date", required=False),
                _text(data, "end_date", required=False),
                _text(data, "notes", required=False),
                service_id,
            ),
        )
    except sqlite3.IntegrityError:
        raise ConflictError("This service already exists for this student", "service_name")
    current_app.logger.info("Student service %s updated", service_id)


def delete_student_service(db, service_id):
    cur = db.execute("DELETE FROM student_services WHERE id=?", (service_id,))
    if cur.rowcount == 0:
        raise NotFound("Student service not found")


# ---------- PAYMENTS ----------

def record_payment(db, data):
    if data.get("student_id") is None:
        raise ValidationError("student_id is required", "student_id")
    quarter = _quarter(data.get("quarter"))
    amount = to_money(data.get("amount"))
    if amount <= 0:
        raise InvalidAmount("Payment amount must be positive.", "amount")

    student = db.execute(
        "SELECT id FROM students WHERE id=?", (data["student_id"],)
    ).fetchone()
    if student is None:
        raise NotFound("Student not found")

    cur = db.execute(
        "INSERT INTO fee_payments (student_id, quarter, paid_amount, paid_on, mode) "
        "VALUES (?,?,?,?,?)",
        (
            student["id"],
            quarter,
            as_number(amount),
            _text(data, "paid_on", required=False) or date.today().isoformat(),
            _text(data, "mode", required=False),
        ),
    )
    current_app.logger.info(
        "Payment %s recorded: student %s, %s, %s", cur.lastrowid, student["id"], quarter, amount
    )
    return cur.lastrowid


def quarter_due_dates(as_of):
    start_month = current_app.config["ACADEMIC_YEAR_START_MONTH"]
    due_day = current_app.config["QUARTER_DUE_DAY"]
    year = as_of.year if as_of.month >= start_month else as_of.year - 1

    dates = {}
    for i, quarter in enumerate(QUARTERS):
        month = start_month + 3 * i
        y = year + (month - 1) // 12
        m = (month - 1) % 12 + 1
        day = min(due_day, calendar.monthrange(y, m)[1])
        dates[quarter] = date(y, m, day)
    return dates


def _new_group():
    return {
        "total_students": 0,
        "paid_students": 0,
        "pending_students": 0,
        "overdue_students": 0,
        "total_amount": ZERO,
        "paid_amount": ZERO,
        "pending_amount": ZERO,
        "overdue_amount": ZERO,
        "quarterly_breakdown": {
            q: {"paid": ZERO, "pending": ZERO, "overdue": ZERO} for q in QUARTERS
        },
    }


def _floats(value):
    if isinstance(value, dict):
        return {k: _floats(v) for k, v in value.items()}
    if isinstance(value, int):
        return value
    return as_number(value)


def compute_class_wise_payments(db, filters=None, as_of=None):
    """Paid / pending / overdue totals per class and section.

    A student's quarter is due the structure's quarterly amount plus the
    section's active extra fees for that quarter. It is paid once payments for
    that quarter cover the amount due, overdue once its due date has passed
    without that, pending otherwise.
    """
    filters = filters or {}
    as_of = as_of or date.today()

    quarters = QUARTERS
    if filters.get("quarter"):
        quarters = (_quarter(filters["quarter"]),)
    status_filter = filters.get("status")
    if status_filter and status_filter not in PAYMENT_STATUSES:
        raise ValidationError("status must be one of paid, pending, overdue", "status")

    sql = (
        "SELECT s.id, c.class_name, UPPER(TRIM(c.section)) AS section FROM students s "
        "JOIN classes c ON s.class_id = c.id WHERE 1=1"
    )
    params = []
    if filters.get("class_name"):
        sql += " AND c.class_name = ?"
        params.append(filters["class_name"])
    if filters.get("section"):
        sql += " AND UPPER(TRIM(c.section)) = ?"
        params.append(filters["section"].strip().upper())
    sql += " ORDER BY c.class_name, section, s.roll_no"
    students = db.execute(sql, params).fetchall()

    structures = {
        r["class_name"]: r
        for r in db.execute("SELECT class_name, q1, q2, q3, q4 FROM fee_structures").fetchall()
    }

    extras = {}
    for r in db.execute(
        "SELECT class_name, section, q1, q2, q3, q4 FROM section_extra_fees WHERE is_active = 1"
    ).fetchall():
        totals = extras.setdefault((r["class_name"], r["section"]), dict.fromkeys(QUARTERS, ZERO))
        for quarter, key in zip(QUARTERS, QUARTER_KEYS):
            totals[quarter] += to_money(r[key])

    payments = {
        (r["student_id"], r["quarter"]): to_money(r["paid"])
        for r in db.execute(
            "SELECT student_id, quarter, SUM(paid_amount) AS paid FROM fee_payments "
            "GROUP BY student_id, quarter"
        ).fetchall()
    }

    due_dates = quarter_due_dates(as_of)
    organized = {}

    for stu in students:
        structure = structures.get(stu["class_name"])
        section_extras = extras.get((stu["class_name"], stu["section"]), {})

        entries = []
        for quarter in quarters:
            due = to_money(structure[quarter.lower()]) if structure else ZERO
            due += section_extras.get(quarter, ZERO)
            if due <= 0:
                continue
            collected = min(payments.get((stu["id"], quarter), ZERO), due)
            if collected >= due:
                status = "paid"
            elif due_dates[quarter] < as_of:
                status = "overdue"
            else:
                status = "pending"
            if status_filter and status != status_filter:
                continue
            entries.append((quarter, status, due, collected))

        if not entries:
            continue

        group = organized.setdefault(stu["class_name"], {}).setdefault(
            stu["section"], _new_group()
        )
        group["total_students"] += 1
        statuses = {status for _, status, _, _ in entries}
        if "overdue" in statuses:
            group["overdue_students"] += 1
        elif statuses == {"paid"}:
            group["paid_students"] += 1
        else:
            group["pending_students"] += 1

        for quarter, status, due, collected in entries:
            outstanding = due - collected
            breakdown = group["quarterly_breakdown"][quarter]
            group["total_amount"] += due
            group["paid_amount"] += collected
            breakdown["paid"] += collected
            if status != "paid":
                group[f"{status}_amount"] += outstanding
                breakdown[status] += outstanding

    return _floats(organized)
