"""Unit tests for the grading queue, grading, regrading and the student grade view."""

from __future__ import annotations

import unittest
from decimal import Decimal

from backend.email_notifications import EmailConfig
from backend.grading_workflow import grade, grading_queue, regrade, student_grades
from classcast.errors import RecordNotFoundError
from memory_dynamo import MemoryTable

_NOW = "2026-09-05T12:00:00Z"


class RecordingMailer:
    def __init__(self) -> None:
        self.config = EmailConfig(sender="noreply@example.com", app_base_url="https://app.test")
        self.sent: list[tuple[str, object]] = []

    def send(self, to: str, message: object) -> bool:
        self.sent.append((to, message))
        return True


def _submission(submission_id: str, **fields: object) -> dict:
    item = {
        "submissionId": submission_id,
        "assignmentId": "a1",
        "courseId": "c1",
        "studentId": "u1",
        "status": "submitted",
        "submittedAt": "2026-09-01T00:00:00Z",
        "isHidden": False,
        "isDeleted": False,
    }
    item.update(fields)
    return item


class GradingQueueTests(unittest.TestCase):
    def setUp(self) -> None:
        self.table = MemoryTable("submissions", "submissionId").seed(
            _submission("s1", submittedAt="2026-09-03T00:00:00Z"),
            _submission("s2", submittedAt="2026-09-01T00:00:00Z"),
            _submission("s3", status="graded"),
            _submission("s4", isDeleted=True),
            _submission("s5", assignmentId="a2", courseId="c2"),
        )

    def test_oldest_first_pending_only_by_default(self) -> None:
        result = grading_queue(self.table, assignment_id="a1")
        self.assertEqual([row["submissionId"] for row in result["submissions"]], ["s2", "s1"])
        self.assertEqual((result["count"], result["total"]), (2, 2))

    def test_status_all_and_limit(self) -> None:
        result = grading_queue(self.table, course_id="c1", status="all", limit="2")
        self.assertEqual(result["count"], 2)
        self.assertEqual(result["total"], 3)

    def test_requires_scope_and_valid_limit(self) -> None:
        with self.assertRaisesRegex(ValueError, "assignmentId or courseId is required"):
            grading_queue(self.table)
        with self.assertRaisesRegex(ValueError, "limit must be between 1 and 200"):
            grading_queue(self.table, course_id="c1", limit="500")
        with self.assertRaisesRegex(ValueError, "limit must be an integer"):
            grading_queue(self.table, course_id="c1", limit="ten")


class GradeTests(unittest.TestCase):
    def setUp(self) -> None:
        self.submissions = MemoryTable("submissions", "submissionId").seed(_submission("s1", videoTitle="Pitch"))
        self.assignments = MemoryTable("assignments", "assignmentId").seed({"assignmentId": "a1", "maxScore": 50})
        self.users = MemoryTable("users", "userId").seed({"userId": "u1", "email": "u1@example.com"})
        self.mailer = RecordingMailer()

    def _grade(self, payload: dict, *, assignments: MemoryTable | None = None) -> dict:
        return grade(
            submissions_table=self.submissions,
            assignments_table=assignments if assignments is not None else self.assignments,
            users_table=self.users,
            payload=payload,
            mailer=self.mailer,
            clock=lambda: _NOW,
        )

    def test_grade_uses_assignment_max_score(self) -> None:
        updated = self._grade({"submissionId": "s1", "grade": 45, "gradedBy": "inst-1", "feedback": "Strong open"})

        self.assertEqual(updated["status"], "graded")
        self.assertEqual(updated["maxScore"], Decimal("50.0"))
        self.assertEqual(updated["percentage"], Decimal("90.0"))
        self.assertEqual(updated["letterGrade"], "A-")
        self.assertEqual(updated["gradedBy"], "inst-1")
        self.assertEqual(updated["gradedAt"], _NOW)
        self.assertEqual(updated["rubricScores"], {})

        to, message = self.mailer.sent[0]
        self.assertEqual(to, "u1@example.com")
        self.assertIn("45/50 (A-)", message.body)
        self.assertIn("https://app.test/student/grades", message.body)

    def test_payload_max_score_overrides_assignment(self) -> None:
        updated = self._grade({"submissionId": "s1", "grade": 80, "maxScore": 100, "gradedBy": "inst-1"})
        self.assertEqual(updated["letterGrade"], "B-")

    def test_defaults_to_hundred_without_assignment(self) -> None:
        updated = self._grade(
            {"submissionId": "s1", "grade": 97, "gradedBy": "inst-1"},
            assignments=MemoryTable("assignments", "assignmentId"),
        )
        self.assertEqual(updated["maxScore"], Decimal("100.0"))
        self.assertEqual(updated["letterGrade"], "A+")

    def test_grade_validation(self) -> None:
        with self.assertRaisesRegex(ValueError, r"grade cannot exceed maxScore \(50\)"):
            self._grade({"submissionId": "s1", "grade": 51, "gradedBy": "inst-1"})
        with self.assertRaisesRegex(ValueError, "gradedBy is required"):
            self._grade({"submissionId": "s1", "grade": 10})
        with self.assertRaisesRegex(ValueError, "rubricScores must be an object"):
            self._grade({"submissionId": "s1", "grade": 10, "gradedBy": "i", "rubricScores": [1, 2]})
        with self.assertRaises(RecordNotFoundError):
            self._grade({"submissionId": "missing", "grade": 10, "gradedBy": "i"})
        self.assertEqual(self.mailer.sent, [])


class RegradeTests(unittest.TestCase):
    def test_regrade_recalculates_with_merged_values(self) -> None:
        table = MemoryTable("submissions", "submissionId").seed(
            _submission("s1", status="graded", grade=Decimal("40"), maxScore=Decimal("50"), letterGrade="B-")
        )

        updated = regrade(table, {"submissionId": "s1", "grade": 48}, clock=lambda: _NOW)

        self.assertEqual(updated["grade"], Decimal("48.0"))
        self.assertEqual(updated["percentage"], Decimal("96.0"))
        self.assertEqual(updated["letterGrade"], "A")
        self.assertEqual(updated["updatedAt"], _NOW)

    def test_feedback_only_regrade_keeps_scores(self) -> None:
        table = MemoryTable("submissions", "submissionId").seed(_submission("s1"))
        updated = regrade(table, {"submissionId": "s1", "feedback": "See comments"}, clock=lambda: _NOW)
        self.assertEqual(updated["feedback"], "See comments")
        self.assertNotIn("letterGrade", updated)

    def test_regrade_requires_changes(self) -> None:
        table = MemoryTable("submissions", "submissionId").seed(_submission("s1"))
        with self.assertRaisesRegex(ValueError, "nothing to update"):
            regrade(table, {"submissionId": "s1"})

    def test_regrade_validates_values_without_stored_max_score(self) -> None:
        quick_graded = _submission("s1", status="graded", grade=Decimal("30"))
        table = MemoryTable("submissions", "submissionId").seed(quick_graded)

        cases = (
            ({"grade": -40}, "greater than or equal to 0"),
            ({"grade": "banana"}, "grade must be a number"),
            ({"grade": float("nan")}, "grade must be a number"),
            ({"grade": None}, "grade must be a number"),
            ({"maxScore": 0}, "maxScore must be a positive number"),
            ({"maxScore": "50"}, "maxScore must be a positive number"),
            ({"feedback": 42}, "feedback must be a string"),
        )
        for changes, message in cases:
            with self.subTest(changes=changes):
                with self.assertRaisesRegex(ValueError, message):
                    regrade(table, {"submissionId": "s1", **changes}, clock=lambda: _NOW)

        self.assertEqual(table.rows["s1"], quick_graded)

    def test_regrade_without_max_score_stores_grade_only(self) -> None:
        table = MemoryTable("submissions", "submissionId").seed(_submission("s1", status="graded", grade=Decimal("30")))

        updated = regrade(table, {"submissionId": "s1", "grade": 35}, clock=lambda: _NOW)

        self.assertEqual(updated["grade"], Decimal("35.0"))
        self.assertNotIn("letterGrade", updated)

    def test_regrade_rejects_grade_above_merged_max_score(self) -> None:
        table = MemoryTable("submissions", "submissionId").seed(
            _submission("s1", status="graded", grade=Decimal("40"), maxScore=Decimal("50"))
        )
        with self.assertRaisesRegex(ValueError, "exceed"):
            regrade(table, {"submissionId": "s1", "grade": 60})
        self.assertEqual(table.rows["s1"]["grade"], Decimal("40"))


class StudentGradesTests(unittest.TestCase):
    def test_splits_graded_and_pending_with_titles(self) -> None:
        submissions = MemoryTable("submissions", "submissionId").seed(
            _submission("s1", status="graded", grade=Decimal("45"), maxScore=Decimal("50"), percentage=Decimal("90"), gradedAt="2026-09-02T00:00:00Z"),
            _submission("s2", assignmentId="a2", status="graded", grade=Decimal("35"), maxScore=Decimal("50"), gradedAt="2026-09-04T00:00:00Z"),
            _submission("s3", assignmentId="a3"),
            _submission("s4", studentId="u2", status="graded", grade=Decimal("10")),
            _submission("s5", status="graded", grade=Decimal("1"), isHidden=True),
        )
        assignments = MemoryTable("assignments", "assignmentId").seed(
            {"assignmentId": "a1", "title": "Pitch"},
            {"assignmentId": "a2", "title": "Demo"},
        )
        courses = MemoryTable("courses", "courseId").seed({"courseId": "c1", "title": "Film"})

        result = student_grades(
            submissions_table=submissions,
            assignments_table=assignments,
            courses_table=courses,
            user_id="u1",
        )

        self.assertEqual([row["submissionId"] for row in result["grades"]], ["s2", "s1"])
        self.assertEqual(result["grades"][0]["assignmentTitle"], "Demo")
        self.assertEqual(result["grades"][0]["courseTitle"], "Film")
        self.assertEqual([row["submissionId"] for row in result["pending"]], ["s3"])
        self.assertIsNone(result["pending"][0]["assignmentTitle"])
        self.assertEqual(result["summary"], {"totalGraded": 2, "averagePercentage": 80.0})


if __name__ == "__main__":
    unittest.main()
