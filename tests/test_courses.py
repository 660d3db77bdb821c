"""Unit tests for course, section and assignment catalog operations."""

from __future__ import annotations

import unittest
from datetime import datetime, timezone

from backend.courses import (
    create_assignment,
    create_course,
    create_section,
    delete_course,
    generate_class_code,
    get_course,
    list_assignments,
    list_courses,
    list_sections,
    set_course_status,
    update_course,
)
from classcast.errors import ConcurrentUpdateError, RecordConflictError, RecordNotFoundError
from coursework.models import ModelValidationError
from memory_dynamo import MemoryTable

_NOW = datetime(2026, 9, 1, 12, 0, tzinfo=timezone.utc)


def _clock() -> datetime:
    return _NOW


def _ids(*values: str):
    remaining = list(values)
    return lambda: remaining.pop(0)


class CourseCatalogTests(unittest.TestCase):
    def setUp(self) -> None:
        self.courses = MemoryTable("courses", "courseId")

    def _create(self, **overrides: object) -> dict:
        payload = {"title": "Intro to Film", "code": "film101", "instructorId": "inst-1"}
        payload.update(overrides)
        return create_course(self.courses, payload, id_factory=_ids("course-1"), clock=_clock)

    def test_create_course_starts_as_empty_draft(self) -> None:
        created = self._create(credits=3, maxStudents=25)

        self.assertEqual(created["courseId"], "course-1")
        self.assertEqual(created["code"], "FILM101")
        self.assertEqual(created["status"], "draft")
        self.assertEqual(created["currentEnrollment"], 0)
        self.assertNotIn("enrollment", created)
        stored = self.courses.rows["course-1"]
        self.assertEqual(stored["enrollment"], {"students": [], "waitlist": []})
        self.assertEqual(stored["version"], 0)
        self.assertEqual(stored["createdAt"], "2026-09-01T12:00:00Z")

    def test_create_course_rejects_duplicate_code_case_insensitively(self) -> None:
        self._create()
        with self.assertRaises(RecordConflictError):
            create_course(
                self.courses,
                {"title": "Other", "code": "FILM101", "instructorId": "inst-2"},
                id_factory=_ids("course-2"),
                clock=_clock,
            )

    def test_create_course_validates_credits_and_capacity(self) -> None:
        with self.assertRaisesRegex(ModelValidationError, "credits must be between 1 and 6"):
            self._create(credits=9)
        with self.assertRaisesRegex(ModelValidationError, "maxStudents must be >= 1"):
            self._create(maxStudents=0)
        with self.assertRaisesRegex(ModelValidationError, "title is required"):
            self._create(title=" ")

    def test_update_course_bumps_version_and_keeps_roster(self) -> None:
        self._create()
        self.courses.rows["course-1"]["enrollment"]["students"].append({"userId": "s1"})
        self.courses.rows["course-1"]["currentEnrollment"] = 1

        updated = update_course(
            self.courses,
            "course-1",
            {"title": "Film Studies", "maxStudents": 10, "enrollment": {"students": []}},
            clock=_clock,
        )

        self.assertEqual(updated["title"], "Film Studies")
        self.assertEqual(updated["maxStudents"], 10)
        stored = self.courses.rows["course-1"]
        self.assertEqual(stored["version"], 1)
        self.assertEqual(stored["enrollment"]["students"], [{"userId": "s1"}])

    def test_update_course_rejects_capacity_below_enrollment(self) -> None:
        self._create()
        self.courses.rows["course-1"]["currentEnrollment"] = 5

        with self.assertRaisesRegex(ModelValidationError, r"current enrollment \(5\)"):
            update_course(self.courses, "course-1", {"maxStudents": 4}, clock=_clock)

    def test_update_course_requires_known_fields(self) -> None:
        self._create()
        with self.assertRaisesRegex(ModelValidationError, "no updatable fields"):
            update_course(self.courses, "course-1", {"status": "published"}, clock=_clock)

    def test_update_course_reports_concurrent_roster_write(self) -> None:
        self._create()

        class _RacingTable(MemoryTable):
            def update_item(self, **kwargs):  # type: ignore[override]
                self.rows["course-1"]["version"] = 7
                return super().update_item(**kwargs)

        racing = _RacingTable("courses", "courseId").seed(self.courses.rows["course-1"])
        with self.assertRaises(ConcurrentUpdateError):
            update_course(racing, "course-1", {"title": "Race"}, clock=_clock)

    def test_delete_course_requires_empty_roster(self) -> None:
        self._create()
        self.courses.rows["course-1"]["currentEnrollment"] = 2
        with self.assertRaises(RecordConflictError):
            delete_course(self.courses, "course-1")

        self.courses.rows["course-1"]["currentEnrollment"] = 0
        delete_course(self.courses, "course-1")
        self.assertNotIn("course-1", self.courses.rows)

        with self.assertRaises(RecordNotFoundError):
            delete_course(self.courses, "course-1")

    def test_status_transitions_and_listing(self) -> None:
        self._create()
        published = set_course_status(self.courses, "course-1", "published", clock=_clock)
        self.assertEqual(published["status"], "published")

        with self.assertRaises(ValueError):
            set_course_status(self.courses, "course-1", "draft", clock=_clock)

        self.assertEqual([row["courseId"] for row in list_courses(self.courses, status="published")], ["course-1"])
        self.assertEqual(list_courses(self.courses, instructor_id="someone-else"), [])
        self.assertEqual(get_course(self.courses, "course-1")["title"], "Intro to Film")
        with self.assertRaises(RecordNotFoundError):
            get_course(self.courses, "missing")


class SectionAndAssignmentTests(unittest.TestCase):
    def setUp(self) -> None:
        self.courses = MemoryTable("courses", "courseId").seed({"courseId": "course-1", "title": "Film", "code": "F1"})
        self.sections = MemoryTable("sections", "sectionId")
        self.assignments = MemoryTable("assignments", "assignmentId")

    def test_generate_class_code_shape(self) -> None:
        code = generate_class_code()
        self.assertEqual(len(code), 6)
        self.assertTrue(code.isalnum())
        self.assertEqual(code, code.upper())

    def test_create_and_list_sections_sorted_by_name(self) -> None:
        ids = _ids("section-b", "section-a")
        create_section(
            self.courses,
            self.sections,
            "course-1",
            {"sectionName": "Evening", "maxEnrollment": 20},
            id_factory=ids,
            code_factory=lambda: "ABC123",
            clock=_clock,
        )
        created = create_section(
            self.courses,
            self.sections,
            "course-1",
            {"sectionName": "Afternoon", "maxEnrollment": 15},
            id_factory=ids,
            code_factory=lambda: "XYZ789",
            clock=_clock,
        )

        self.assertEqual(created["classCode"], "XYZ789")
        self.assertEqual(created["currentEnrollment"], 0)
        self.assertTrue(created["isActive"])
        self.assertEqual([row["sectionName"] for row in list_sections(self.sections, "course-1")], ["Afternoon", "Evening"])

    def test_create_section_requires_course_and_capacity(self) -> None:
        with self.assertRaises(RecordNotFoundError):
            create_section(self.courses, self.sections, "missing", {"sectionName": "A", "maxEnrollment": 5})
        with self.assertRaisesRegex(ModelValidationError, "maxEnrollment must be >= 1"):
            create_section(self.courses, self.sections, "course-1", {"sectionName": "A", "maxEnrollment": 0})

    def test_create_assignment_defaults_to_draft(self) -> None:
        created = create_assignment(
            self.courses,
            self.assignments,
            "course-1",
            {"title": "Pitch video", "dueDate": "2026-09-10T23:59:00Z", "maxScore": 50},
            id_factory=_ids("assignment-1"),
            clock=_clock,
        )

        self.assertEqual(created["status"], "draft")
        self.assertEqual(created["maxScore"], 50)
        self.assertEqual(created["peerReview"]["enabled"], False)
        self.assertIn("assignment-1", self.assignments.rows)

    def test_create_assignment_rejects_past_due_date(self) -> None:
        with self.assertRaisesRegex(ModelValidationError, "dueDate must be in the future"):
            create_assignment(
                self.courses,
                self.assignments,
                "course-1",
                {"title": "Late", "dueDate": "2026-08-01T00:00:00Z", "maxScore": 10},
                clock=_clock,
            )

    def test_list_assignments_sorted_by_due_date(self) -> None:
        self.assignments.seed(
            {"assignmentId": "a2", "courseId": "course-1", "dueDate": "2026-10-02T00:00:00Z"},
            {"assignmentId": "a1", "courseId": "course-1", "dueDate": "2026-09-20T00:00:00Z"},
            {"assignmentId": "a3", "courseId": "course-2", "dueDate": "2026-09-01T00:00:00Z"},
        )
        self.assertEqual([row["assignmentId"] for row in list_assignments(self.assignments, "course-1")], ["a1", "a2"])


if __name__ == "__main__":
    unittest.main()
