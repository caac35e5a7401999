"""
Copyright (c) 2025 Amit Kadam

All Rights Reserved. No part of this software may be copied, reproduced, distributed, or used in derivative works without the prior written permission of the copyright holder.

For permission requests, contact: amitkadam96k@gmail.com
"""


def grade_answer(question, chosen):
    """Return (is_correct, marks_obtained) for one MCQ answer.

    `question` is any mapping with `correct_answer` and `marks` (a questions
    row works). An unanswered question (None) is never correct. No partial
    credit, no negative marking.
    """
    is_correct = chosen is not None and chosen == question["correct_answer"]
    marks_obtained = question["marks"] if is_correct else 0
    return is_correct, marks_obtained


def summarize(results):
    """results: iterable of (marks_obtained, question_marks)."""
    total_score = 0
    total_marks = 0
    for obtained, marks in results:
        total_score += obtained
        total_marks += marks
    percentage = (total_score / total_marks * 100) if total_marks > 0 else 0.0
    return total_score, total_marks, percentage
