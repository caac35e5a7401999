"""
Tests for exam authoring and the submission state machine.
"""

import threading

import pytest

import exams
from conftest import exam_payload
from db import connection, transaction
from errors import ConflictError, NotFound, ValidationError


def count(table, where="1=1", params=()):
    with connection() as db:
        return db.execute(f"SELECT COUNT(*) FROM {table} WHERE {where}", params).fetchone()[0]


def answer_rows(submission_id):
    with connection() as db:
        return exams.get_answers(db, submission_id)


# ─────────────────────────────────────────────────────────────────────────────
# Authoring
# ─────────────────────────────────────────────────────────────────────────────

class TestCreateExam:

    def test_questions_stored_in_order_with_sequence_numbers(self, exam):
        with connection() as db:
            result = exams.get_exam(db, exam["id"])
        assert result["totalMarks"] == 10
        assert [q["number"] for q in result["questions"]] == [1, 2]
        assert [q["correctAnswer"] for q in result["questions"]] == ["A", "B"]
        assert [q["marks"] for q in result["questions"]] == [5, 5]

    def test_omitted_marks_share_total_with_last_absorbing_remainder(self, school):
        payload = exam_payload(school["class_a"], totalQuestions=3, totalMarks=10)
        payload["questions"] = [dict(q) for q in payload["questions"]] + [
            dict(payload["questions"][0], question="1 + 1 = ?")
        ]
        for q in payload["questions"]:
            q.pop("marks")
        with transaction() as db:
            exam_id = exams.create_exam(db, payload)
            marks = [q["marks"] for q in exams.get_exam(db, exam_id)["questions"]]
        assert marks == [3, 3, 4]

    def test_omitted_marks_fill_what_explicit_marks_leave(self, school):
        payload = exam_payload(school["class_a"], totalQuestions=3, totalMarks=10)
        payload["questions"] = [
            dict(payload["questions"][0], marks=5),
            dict(payload["questions"][1], marks=None),
            dict(payload["questions"][1], question="Capital of Spain?", marks=None),
        ]
        with transaction() as db:
            exam_id = exams.create_exam(db, payload)
            marks = [q["marks"] for q in exams.get_exam(db, exam_id)["questions"]]
        assert marks == [5, 3, 2]

    def test_explicit_marks_must_match_total(self, school):
        payload = exam_payload(school["class_a"])
        payload["questions"][1]["marks"] = 4
        with pytest.raises(ValidationError) as err:
            with transaction() as db:
                exams.create_exam(db, payload)
        assert err.value.field == "totalMarks"
        assert count("exams") == 0

    def test_question_count_must_match_declared_total(self, school):
        with pytest.raises(ValidationError):
            with transaction() as db:
                exams.create_exam(db, exam_payload(school["class_a"], totalQuestions=3))

    @pytest.mark.parametrize("field", ["name", "classId", "date", "totalQuestions", "totalMarks", "questions"])
    def test_required_fields(self, school, field):
        payload = exam_payload(school["class_a"])
        payload.pop(field)
        with pytest.raises(ValidationError):
            with transaction() as db:
                exams.create_exam(db, payload)

    def test_empty_question_list_rejected(self, school):
        with pytest.raises(ValidationError, match="must not be empty"):
            with transaction() as db:
                exams.create_exam(db, exam_payload(school["class_a"], questions=[]))

    def test_correct_answer_must_be_an_option(self, school):
        payload = exam_payload(school["class_a"])
        payload["questions"][0]["correctAnswer"] = "E"
        with pytest.raises(ValidationError):
            with transaction() as db:
                exams.create_exam(db, payload)

    def test_unknown_class_leaves_nothing_behind(self, school):
        with pytest.raises(NotFound):
            with transaction() as db:
                exams.create_exam(db, exam_payload(9999))
        assert count("exams") == 0
        assert count("questions") == 0


class TestReadAndDelete:

    def test_student_view_withholds_correct_answers(self, exam):
        with connection() as db:
            view = exams.get_exam(db, exam["id"], include_answers=False)
        assert all("correctAnswer" not in q for q in view["questions"])
        assert [q["marks"] for q in view["questions"]] == [5, 5]

    def test_missing_exam(self, app):
        with connection() as db:
            with pytest.raises(NotFound):
                exams.get_exam(db, 42)

    def test_list_exams_includes_questions(self, exam):
        with connection() as db:
            listed = exams.list_exams(db)
        assert [e["id"] for e in listed] == [exam["id"]]
        assert len(listed[0]["questions"]) == 2

    def test_exams_for_student_follow_their_class(self, school, exam):
        with connection() as db:
            assert [e["id"] for e in exams.list_exams_for_student(db, school["asha"])] == [exam["id"]]
            assert exams.list_exams_for_student(db, school["meera"]) == []
            with pytest.raises(NotFound):
                exams.list_exams_for_student(db, 9999)

    def test_delete_removes_children_first(self, school, exam):
        with transaction() as db:
            exams.submit_exam(db, school["asha"], exam["id"], {exam["q1"]: "A"})
        with transaction() as db:
            exams.delete_exam(db, exam["id"])
        for table in ("exams", "questions", "submissions", "answers"):
            assert count(table) == 0

    def test_delete_missing_exam(self, app):
        with pytest.raises(NotFound):
            with transaction() as db:
                exams.delete_exam(db, 42)


# ─────────────────────────────────────────────────────────────────────────────
# Submission state machine
# ─────────────────────────────────────────────────────────────────────────────

class TestStartOrResume:

    def test_creates_in_progress_submission_once(self, school, exam):
        with transaction() as db:
            first = exams.start_or_resume(db, school["asha"], exam["id"])
        with transaction() as db:
            second = exams.start_or_resume(db, school["asha"], exam["id"])
        assert first == second
        assert first["status"] == "in_progress"
        assert count("submissions") == 1

    def test_concurrent_calls_converge_on_one_row(self, app, school, exam):
        barrier = threading.Barrier(4)
        results, failures = [], []

        def worker():
            with app.app_context():
                barrier.wait()
                try:
                    with transaction() as db:
                        results.append(exams.start_or_resume(db, school["asha"], exam["id"]))
                except Exception as exc:  # surfaced by the assertion below
                    failures.append(exc)

        threads = [threading.Thread(target=worker) for _ in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert failures == []
        assert len({r["id"] for r in results}) == 1
        assert count("submissions") == 1

    def test_unknown_exam(self, school):
        with pytest.raises(NotFound):
            with transaction() as db:
                exams.start_or_resume(db, school["asha"], 9999)

    def test_requires_ids(self, school):
        with pytest.raises(ValidationError):
            with transaction() as db:
                exams.start_or_resume(db, None, 1)


class TestSaveAnswer:

    def start(self, school, exam):
        with transaction() as db:
            return exams.start_or_resume(db, school["asha"], exam["id"])["id"]

    def test_upsert_keeps_one_row_per_question(self, school, exam):
        submission_id = self.start(school, exam)
        with transaction() as db:
            exams.save_answer(db, submission_id, exam["q1"], "C")
        with transaction() as db:
            exams.save_answer(db, submission_id, exam["q1"], "A")
        rows = answer_rows(submission_id)
        assert rows == [
            {"questionId": exam["q1"], "studentAnswer": "A", "isCorrect": True, "marksObtained": 5}
        ]

    def test_does_not_touch_submission_score(self, school, exam):
        submission_id = self.start(school, exam)
        with transaction() as db:
            exams.save_answer(db, submission_id, exam["q1"], "A")
        with connection() as db:
            submission = exams.get_submission(db, school["asha"], exam["id"])
        assert submission["totalScore"] is None
        assert submission["status"] == "in_progress"

    def test_rejects_question_from_another_exam(self, school, exam):
        submission_id = self.start(school, exam)
        with transaction() as db:
            other = exams.create_exam(db, exam_payload(school["class_a"], name="Other"))
            other_q = exams.get_exam(db, other)["questions"][0]["id"]
        with pytest.raises(NotFound):
            with transaction() as db:
                exams.save_answer(db, submission_id, other_q, "A")

    @pytest.mark.parametrize("option", ["E", "a", ["A"]])
    def test_rejects_non_option(self, school, exam, option):
        submission_id = self.start(school, exam)
        with pytest.raises(ValidationError):
            with transaction() as db:
                exams.save_answer(db, submission_id, exam["q1"], option)

    def test_missing_submission(self, exam):
        with pytest.raises(NotFound):
            with transaction() as db:
                exams.save_answer(db, 9999, exam["q1"], "A")

    def test_rejected_after_submit(self, school, exam):
        submission_id = self.start(school, exam)
        with transaction() as db:
            exams.submit_exam(db, school["asha"], exam["id"], {exam["q1"]: "A"})
        with pytest.raises(ConflictError):
            with transaction() as db:
                exams.save_answer(db, submission_id, exam["q2"], "B")
        assert answer_rows(submission_id)[1]["studentAnswer"] is None


class TestSubmitExam:

    def test_scores_one_right_one_wrong(self, school, exam):
        with transaction() as db:
            result = exams.submit_exam(
                db, school["asha"], exam["id"], {exam["q1"]: "A", exam["q2"]: "C"}, 12
            )
        assert result["success"] is True
        assert result["totalScore"] == 5
        assert result["totalMarks"] == 10
        assert result["percentage"] == "50.00"

        with connection() as db:
            submission = exams.get_submission(db, school["asha"], exam["id"])
        assert submission["status"] == "submitted"
        assert submission["timeTakenMinutes"] == 12
        assert submission["submittedAt"] is not None

    def test_string_keys_from_json_are_accepted(self, school, exam):
        with transaction() as db:
            result = exams.submit_exam(
                db, school["asha"], exam["id"], {str(exam["q1"]): "A", str(exam["q2"]): "B"}
            )
        assert result["percentage"] == "100.00"

    def test_every_question_gets_an_answer_row(self, school, exam):
        with transaction() as db:
            result = exams.submit_exam(db, school["asha"], exam["id"], {})
        rows = answer_rows(result["submissionId"])
        assert [r["studentAnswer"] for r in rows] == [None, None]
        assert result["percentage"] == "0.00"

    def test_autosave_then_submit_matches_direct_submit(self, school, exam):
        with transaction() as db:
            saved = exams.start_or_resume(db, school["asha"], exam["id"])["id"]
            exams.save_answer(db, saved, exam["q1"], "A")
            exams.save_answer(db, saved, exam["q2"], "C")
        final = {exam["q1"]: "A", exam["q2"]: "C"}
        with transaction() as db:
            via_autosave = exams.submit_exam(db, school["asha"], exam["id"], final)
        with transaction() as db:
            direct = exams.submit_exam(db, school["ravi"], exam["id"], final)

        assert via_autosave["totalScore"] == direct["totalScore"]
        assert answer_rows(saved) == answer_rows(direct["submissionId"])

    def test_resubmission_is_safe(self, school, exam):
        answers = {exam["q1"]: "A", exam["q2"]: "C"}
        with transaction() as db:
            first = exams.submit_exam(db, school["asha"], exam["id"], answers)
        with transaction() as db:
            second = exams.submit_exam(db, school["asha"], exam["id"], answers)

        assert first == second
        assert count("submissions") == 1
        assert count("answers") == 2

    def test_finalized_submission_is_not_regraded(self, school, exam):
        with transaction() as db:
            first = exams.submit_exam(db, school["asha"], exam["id"], {exam["q1"]: "A"})
        with transaction() as db:
            again = exams.submit_exam(
                db, school["asha"], exam["id"], {exam["q1"]: "A", exam["q2"]: "B"}
            )
        assert again == first
        assert answer_rows(first["submissionId"])[1]["studentAnswer"] is None

    def test_answers_outside_exam_are_ignored(self, school, exam):
        with transaction() as db:
            result = exams.submit_exam(
                db, school["asha"], exam["id"], {exam["q1"]: "A", 9999: "A", "junk": "B"}
            )
        assert result["totalScore"] == 5
        assert count("answers") == 2

    @pytest.mark.parametrize("option", ["a", "E", ["A"], 1])
    def test_options_checked_like_autosave(self, school, exam, option):
        with pytest.raises(ValidationError) as err:
            with transaction() as db:
                exams.submit_exam(db, school["asha"], exam["id"], {exam["q1"]: option, exam["q2"]: "B"})
        assert err.value.field == "answers"
        assert count("submissions") == 0
        assert count("answers") == 0

    def test_blank_option_counts_as_unanswered(self, school, exam):
        with transaction() as db:
            result = exams.submit_exam(db, school["asha"], exam["id"], {exam["q1"]: "", exam["q2"]: "B"})
        assert result["totalScore"] == 5
        assert answer_rows(result["submissionId"])[0]["studentAnswer"] is None

    @pytest.mark.parametrize("student, exam_id, answers", [
        (None, 1, {}),
        (1, None, {}),
        (1, 1, None),
        (1, 1, ["A"]),
    ])
    def test_validation(self, school, student, exam_id, answers):
        with pytest.raises(ValidationError):
            with transaction() as db:
                exams.submit_exam(db, student, exam_id, answers)

    def test_unknown_exam(self, school):
        with pytest.raises(NotFound):
            with transaction() as db:
                exams.submit_exam(db, school["asha"], 9999, {})
        assert count("submissions") == 0


class TestResults:

    def test_result_only_after_submission(self, school, exam):
        with transaction() as db:
            submission_id = exams.start_or_resume(db, school["asha"], exam["id"])["id"]
        with connection() as db:
            with pytest.raises(ConflictError):
                exams.get_result(db, submission_id)

        with transaction() as db:
            exams.submit_exam(db, school["asha"], exam["id"], {exam["q1"]: "A"})
        with connection() as db:
            result = exams.get_result(db, submission_id)
        assert result["status"] == "submitted"
        assert [q["correctAnswer"] for q in result["exam"]["questions"]] == ["A", "B"]
        assert [a["isCorrect"] for a in result["answers"]] == [True, False]

    def test_list_submissions(self, school, exam):
        with transaction() as db:
            exams.submit_exam(db, school["asha"], exam["id"], {})
        with connection() as db:
            listed = exams.list_submissions(db, school["asha"])
            assert exams.get_submission(db, school["ravi"], exam["id"]) is None
        assert [s["examId"] for s in listed] == [exam["id"]]
