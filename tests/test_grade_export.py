"""Unit tests for grade book export."""

from __future__ import annotations

import unittest
from decimal import Decimal

from backend.grade_export import export_grades
from classcast.errors import RecordNotFoundError
from memory_dynamo import MemoryTable

_EXPORTED = "2026-09-15T00:00:00Z"


def _graded(submission_id: str, student_id: str, assignment_id: str, grade: str, graded_at: str, **fields: object) -> dict:
    item = {
        "submissionId": submission_id,
        "studentId": student_id,
        "assignmentId": assignment_id,
        "courseId": "c1",
        "status": "graded",
        "grade": Decimal(grade),
        "gradedAt": graded_at,
    }
    item.update(fields)
    return item


class ExportGradesTests(unittest.TestCase):
    def setUp(self) -> None:
        self.courses = MemoryTable("courses", "courseId").seed(
            {
                "courseId": "c1",
                "title": "Intro to Film",
                "code": "FILM101",
                "semester": "Fall",
                "year": Decimal("2026"),
                "enrollment": {
                    "students": [
                        {"userId": "u2", "firstName": "Zed", "lastName": "Adams", "email": "z@example.com"},
                        {"userId": "u1", "firstName": "Amy", "lastName": "Brown", "email": "a@example.com"},
                        {"userId": "u3", "email": "c@example.com"},
                    ],
                    "waitlist": [{"userId": "u4"}],
                },
            }
        )
        self.assignments = MemoryTable("assignments", "assignmentId").seed(
            {"assignmentId": "a2", "courseId": "c1", "title": "Demo", "dueDate": "2026-09-20T00:00:00Z"},
            {"assignmentId": "a1", "courseId": "c1", "title": "Pitch", "maxScore": Decimal("50"), "dueDate": "2026-09-10T00:00:00Z"},
            {"assignmentId": "a3", "courseId": "c2", "title": "Elsewhere", "dueDate": "2026-09-01T00:00:00Z"},
        )
        self.submissions = MemoryTable("submissions", "submissionId").seed(
            _graded("s1", "u1", "a1", "40", "2026-09-11T00:00:00Z"),
            _graded("s2", "u1", "a1", "45", "2026-09-12T00:00:00Z"),
            {"submissionId": "s3", "studentId": "u1", "assignmentId": "a2", "courseId": "c1", "status": "submitted"},
            _graded("s4", "u2", "a1", "30", "2026-09-11T00:00:00Z"),
            _graded("s5", "u2", "a2", "90", "2026-09-21T00:00:00Z"),
            _graded("s6", "u2", "a2", "100", "2026-09-22T00:00:00Z", isHidden=True),
        )

    def _export(self, assignment_id: str | None = None):
        return export_grades(
            courses_table=self.courses,
            assignments_table=self.assignments,
            submissions_table=self.submissions,
            course_id="c1",
            assignment_id=assignment_id,
            clock=lambda: _EXPORTED,
        )

    def test_json_mapping(self) -> None:
        report = self._export().to_mapping()

        self.assertEqual(report["course"]["code"], "FILM101")
        self.assertEqual(report["course"]["year"], 2026)
        self.assertEqual([row["assignmentId"] for row in report["assignments"]], ["a1", "a2"])
        self.assertEqual([row["maxScore"] for row in report["assignments"]], [50, 100])
        self.assertEqual([row["studentId"] for row in report["students"]], ["u3", "u2", "u1"])

        amy = report["students"][2]
        self.assertEqual(amy["studentName"], "Amy Brown")
        self.assertEqual(amy["grades"], {"a1": 45, "a2": None})
        self.assertEqual((amy["totalEarned"], amy["totalPossible"]), (45, 50))
        self.assertEqual((amy["percentage"], amy["letterGrade"]), (90.0, "A-"))

        zed = report["students"][1]
        self.assertEqual((zed["percentage"], zed["letterGrade"]), (80.0, "B-"))

        ungraded = report["students"][0]
        self.assertEqual(ungraded["studentName"], "c@example.com")
        self.assertEqual(ungraded["letterGrade"], "N/A")

        self.assertEqual(report["summary"], {"totalStudents": 3, "totalAssignments": 2, "averageGrade": 85.0})
        self.assertEqual(report["exportedAt"], _EXPORTED)

    def test_csv_text(self) -> None:
        report = self._export()

        self.assertEqual(report.csv_filename(), "FILM101-grades.csv")
        self.assertEqual(
            report.to_csv().splitlines(),
            [
                "# Course: Intro to Film (FILM101)",
                f"# Exported: {_EXPORTED}",
                '"Student Name","Email","Pitch (50 pts)","Demo (100 pts)","Total Earned","Total Possible","Percentage","Letter Grade"',
                '"c@example.com","c@example.com","","","0","0","0.0","N/A"',
                '"Zed Adams","z@example.com","30","90","120","150","80.0","B-"',
                '"Amy Brown","a@example.com","45","","45","50","90.0","A-"',
            ],
        )

    def test_single_assignment_export(self) -> None:
        report = self._export(assignment_id="a2").to_mapping()

        self.assertEqual([row["title"] for row in report["assignments"]], ["Demo"])
        zed = next(row for row in report["students"] if row["studentId"] == "u2")
        self.assertEqual(zed["grades"], {"a2": 90})
        self.assertEqual(report["summary"]["averageGrade"], 90.0)

    def test_missing_course(self) -> None:
        with self.assertRaises(RecordNotFoundError):
            export_grades(
                courses_table=self.courses,
                assignments_table=self.assignments,
                submissions_table=self.submissions,
                course_id="missing",
            )


if __name__ == "__main__":
    unittest.main()
