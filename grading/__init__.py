"""Grading service modules."""

from .scale import (
    GradeResult,
    StudentTotals,
    class_average,
    letter_grade,
    percentage,
    require_grade,
    require_max_score,
    score,
    student_totals,
)

__all__ = [
    "GradeResult",
    "StudentTotals",
    "class_average",
    "letter_grade",
    "percentage",
    "require_grade",
    "require_max_score",
    "score",
    "student_totals",
]
