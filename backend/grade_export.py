"""Course grade book export as JSON or CSV."""

from __future__ import annotations

import csv
import io
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Mapping

from backend.tables import get_item, scan_all
from classcast.errors import RecordNotFoundError
from coursework.models import SUBMISSION_STATUS_GRADED, from_dynamodb_number, is_visible_submission, utc_now_rfc3339
from grading.scale import DEFAULT_MAX_SCORE, class_average, student_totals

logger = logging.getLogger(__name__)

EXPORT_FORMATS = ("json", "csv")


@dataclass(frozen=True)
class StudentGradeRow:
    student_id: str
    first_name: str
    last_name: str
    email: str
    grades: dict[str, Any]
    earned: float
    possible: float
    percentage: float
    letter_grade: str

    @property
    def display_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip() or self.email or self.student_id

    def to_mapping(self) -> dict[str, Any]:
        return {
            "studentId": self.student_id,
            "studentName": self.display_name,
            "email": self.email,
            "grades": dict(self.grades),
            "totalEarned": _plain(self.earned),
            "totalPossible": _plain(self.possible),
            "percentage": self.percentage,
            "letterGrade": self.letter_grade,
        }


@dataclass(frozen=True)
class GradeReport:
    course: dict[str, Any]
    assignments: list[dict[str, Any]]
    students: list[StudentGradeRow] = field(default_factory=list)
    average_grade: float = 0.0
    exported_at: str = ""

    def summary(self) -> dict[str, Any]:
        return {
            "totalStudents": len(self.students),
            "totalAssignments": len(self.assignments),
            "averageGrade": self.average_grade,
        }

    def to_mapping(self) -> dict[str, Any]:
        return {
            "course": dict(self.course),
            "assignments": [dict(row) for row in self.assignments],
            "students": [row.to_mapping() for row in self.students],
            "summary": self.summary(),
            "exportedAt": self.exported_at,
        }

    def csv_filename(self) -> str:
        code = str(self.course.get("code") or self.course.get("courseId") or "course")
        return f"{code}-grades.csv"

    def to_csv(self) -> str:
        buffer = io.StringIO()
        buffer.write(f"# Course: {self.course.get('title') or ''} ({self.course.get('code') or ''})\n")
        buffer.write(f"# Exported: {self.exported_at}\n")
        writer = csv.writer(buffer, quoting=csv.QUOTE_ALL, lineterminator="\n")
        writer.writerow(
            ["Student Name", "Email"]
            + [f"{row['title']} ({row['maxScore']} pts)" for row in self.assignments]
            + ["Total Earned", "Total Possible", "Percentage", "Letter Grade"]
        )
        for student in self.students:
            writer.writerow(
                [student.display_name, student.email]
                + ["" if student.grades.get(row["assignmentId"]) is None else student.grades[row["assignmentId"]] for row in self.assignments]
                + [_plain(student.earned), _plain(student.possible), student.percentage, student.letter_grade]
            )
        return buffer.getvalue()


def _plain(value: float) -> int | float:
    return int(value) if float(value).is_integer() else round(value, 2)


def _roster_students(course: Mapping[str, Any]) -> list[dict[str, Any]]:
    enrollment = course.get("enrollment")
    if not isinstance(enrollment, Mapping):
        return []
    students: list[dict[str, Any]] = []
    for entry in enrollment.get("students") or []:
        if isinstance(entry, Mapping) and entry.get("userId"):
            students.append(dict(entry))
        elif isinstance(entry, str) and entry.strip():
            students.append({"userId": entry.strip()})
    return students


def _latest_grades(submissions: list[dict[str, Any]]) -> dict[tuple[str, str], Any]:
    """Latest graded score per (student, assignment)."""
    ordered = sorted(submissions, key=lambda row: str(row.get("gradedAt") or row.get("submittedAt") or ""))
    grades: dict[tuple[str, str], Any] = {}
    for row in ordered:
        if row.get("status") != SUBMISSION_STATUS_GRADED or row.get("grade") is None:
            continue
        grades[(str(row.get("studentId")), str(row.get("assignmentId")))] = from_dynamodb_number(row.get("grade"))
    return grades


def export_grades(
    *,
    courses_table: Any,
    assignments_table: Any,
    submissions_table: Any,
    course_id: str,
    assignment_id: str | None = None,
    clock: Callable[[], str] = utc_now_rfc3339,
) -> GradeReport:
    course = get_item(courses_table, {"courseId": course_id})
    if course is None:
        raise RecordNotFoundError(f"course {course_id} not found")

    assignments = scan_all(
        assignments_table,
        lambda row: row.get("courseId") == course_id and (not assignment_id or row.get("assignmentId") == assignment_id),
    )
    assignments.sort(key=lambda row: str(row.get("dueDate") or ""))
    max_scores = {
        str(row["assignmentId"]): from_dynamodb_number(row.get("maxScore")) or DEFAULT_MAX_SCORE for row in assignments
    }
    assignment_ids = set(max_scores)

    submissions = scan_all(
        submissions_table,
        lambda row: row.get("courseId") == course_id
        and row.get("assignmentId") in assignment_ids
        and is_visible_submission(row),
    )
    grades = _latest_grades(submissions)

    rows: list[StudentGradeRow] = []
    for entry in _roster_students(course):
        student_id = str(entry["userId"])
        per_assignment = {aid: grades.get((student_id, aid)) for aid in max_scores}
        totals = student_totals(per_assignment, max_scores)
        rows.append(
            StudentGradeRow(
                student_id=student_id,
                first_name=str(entry.get("firstName") or ""),
                last_name=str(entry.get("lastName") or ""),
                email=str(entry.get("email") or ""),
                grades=per_assignment,
                earned=totals.earned,
                possible=totals.possible,
                percentage=totals.percentage,
                letter_grade=totals.letter_grade,
            )
        )
    rows.sort(key=lambda row: (row.last_name.casefold(), row.first_name.casefold(), row.student_id))

    average = class_average(
        student_totals(row.grades, max_scores) for row in rows
    )
    logger.info("Exported grades for course %s (%s students)", course_id, len(rows))
    return GradeReport(
        course={
            "courseId": course_id,
            "title": course.get("title"),
            "code": course.get("code"),
            "semester": course.get("semester"),
            "year": from_dynamodb_number(course.get("year")),
        },
        assignments=[
            {
                "assignmentId": str(row["assignmentId"]),
                "title": row.get("title"),
                "maxScore": max_scores[str(row["assignmentId"])],
                "dueDate": row.get("dueDate"),
            }
            for row in assignments
        ],
        students=rows,
        average_grade=average,
        exported_at=clock(),
    )
