"""Pure grading helpers: letter scale, percentages and grade-book totals.

Grades arrive from DynamoDB as ``Decimal`` and from API payloads as ``int`` or
``float``; every helper here accepts either and returns plain floats.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Iterable, Mapping

DEFAULT_MAX_SCORE = 100

_LETTER_SCALE: tuple[tuple[float, str], ...] = (
    (97.0, "A+"),
    (93.0, "A"),
    (90.0, "A-"),
    (87.0, "B+"),
    (83.0, "B"),
    (80.0, "B-"),
    (77.0, "C+"),
    (73.0, "C"),
    (70.0, "C-"),
    (67.0, "D+"),
    (63.0, "D"),
    (60.0, "D-"),
)


def _as_float(value: Any) -> float | None:
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, (int, float, Decimal)):
        number = float(value)
        return number if math.isfinite(number) else None
    return None


def letter_grade(percent: float) -> str:
    """Map a percentage onto the plus/minus letter scale; below 60 is F."""
    for threshold, letter in _LETTER_SCALE:
        if percent >= threshold:
            return letter
    return "F"


def percentage(grade: Any, max_score: Any) -> float:
    """Return grade / maxScore * 100, or 0 when maxScore is missing or zero."""
    earned = _as_float(grade)
    possible = _as_float(max_score)
    if earned is None or not possible:
        return 0.0
    return earned / possible * 100.0


@dataclass(frozen=True)
class GradeResult:
    grade: float
    max_score: float
    percentage: float
    letter_grade: str

    def to_mapping(self) -> dict[str, Any]:
        return {
            "grade": self.grade,
            "maxScore": self.max_score,
            "percentage": round(self.percentage, 2),
            "letterGrade": self.letter_grade,
        }


def require_grade(value: Any) -> float:
    """Return value as a finite float >= 0 or raise ValueError."""
    earned = _as_float(value)
    if earned is None:
        raise ValueError("grade must be a number")
    if earned < 0:
        raise ValueError("grade must be greater than or equal to 0")
    return earned


def require_max_score(value: Any) -> float:
    possible = _as_float(value)
    if possible is None or possible <= 0:
        raise ValueError("maxScore must be a positive number")
    return possible


def score(grade: Any, max_score: Any = DEFAULT_MAX_SCORE) -> GradeResult:
    """Validate one grade against its maximum and derive percentage and letter.

    Raises:
        ValueError: when grade is not a number >= 0, maxScore is not positive,
            or grade exceeds maxScore.
    """
    earned = require_grade(grade)
    possible = require_max_score(max_score)
    if earned > possible:
        raise ValueError(f"grade cannot exceed maxScore ({possible:g})")

    percent = percentage(earned, possible)
    return GradeResult(grade=earned, max_score=possible, percentage=percent, letter_grade=letter_grade(percent))


@dataclass(frozen=True)
class StudentTotals:
    earned: float
    possible: float
    graded_count: int

    @property
    def percentage(self) -> float:
        return round(percentage(self.earned, self.possible), 1)

    @property
    def letter_grade(self) -> str:
        if self.graded_count == 0:
            return "N/A"
        return letter_grade(self.percentage)


def student_totals(
    grades_by_assignment: Mapping[str, Any],
    max_scores: Mapping[str, Any],
) -> StudentTotals:
    """Sum earned and possible points over the graded assignments only."""
    earned = 0.0
    possible = 0.0
    graded = 0
    for assignment_id, grade in grades_by_assignment.items():
        value = _as_float(grade)
        if value is None:
            continue
        earned += value
        possible += _as_float(max_scores.get(assignment_id)) or float(DEFAULT_MAX_SCORE)
        graded += 1
    return StudentTotals(earned=earned, possible=possible, graded_count=graded)


def class_average(totals: Iterable[StudentTotals]) -> float:
    """Mean percentage of students with at least one grade, 1 decimal place."""
    graded = [row.percentage for row in totals if row.graded_count > 0]
    if not graded:
        return 0.0
    return round(sum(graded) / len(graded), 1)
