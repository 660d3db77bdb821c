"""Unit tests for course roster invariants and course document mapping."""

from __future__ import annotations

import unittest
from decimal import Decimal

from classcast.enrollment.model import LEGACY_TIMESTAMP, CourseRoster, RosterEntry, SectionSeats, WaitlistEntry
from classcast.errors import CorruptRecordError, RecordConflictError, RecordNotFoundError


def _entry(user_id: str, section_id: str | None = None) -> RosterEntry:
    return RosterEntry(user_id=user_id, enrolled_at="2026-09-01T10:00:00Z", section_id=section_id)


def _waiting(user_id: str) -> WaitlistEntry:
    return WaitlistEntry(user_id=user_id, added_at="2026-09-01T11:00:00Z")


class CourseRosterTests(unittest.TestCase):
    def test_rejects_student_listed_twice(self) -> None:
        with self.assertRaisesRegex(ValueError, "more than once"):
            CourseRoster(course_id="course-1", status="published", students=(_entry("s1"), _entry("s1")))

    def test_rejects_student_both_enrolled_and_waitlisted(self) -> None:
        with self.assertRaisesRegex(ValueError, "more than once"):
            CourseRoster(
                course_id="course-1",
                status="published",
                students=(_entry("s1"),),
                waitlist=(_waiting("s1"),),
            )

    def test_current_enrollment_is_derived_from_students(self) -> None:
        roster = CourseRoster(course_id="course-1", status="published", students=(_entry("s1"), _entry("s2")))
        self.assertEqual(roster.current_enrollment, 2)
        self.assertEqual(roster.enrollment_attributes()["currentEnrollment"], 2)

    def test_with_student_refuses_duplicate_and_full_course(self) -> None:
        roster = CourseRoster(course_id="course-1", status="published", max_students=1, students=(_entry("s1"),))

        with self.assertRaises(RecordConflictError):
            roster.with_student(_entry("s1"))
        with self.assertRaisesRegex(RecordConflictError, "full"):
            roster.with_student(_entry("s2"))

    def test_without_student_raises_for_unknown_student(self) -> None:
        roster = CourseRoster(course_id="course-1", status="published")
        with self.assertRaises(RecordNotFoundError):
            roster.without_student("ghost")

    def test_promote_next_moves_waitlist_head_into_roster(self) -> None:
        roster = CourseRoster(
            course_id="course-1",
            status="published",
            max_students=2,
            students=(_entry("s1"),),
            waitlist=(_waiting("w1"), _waiting("w2")),
        )

        promoted_roster, promoted = roster.promote_next(enrolled_at="2026-09-02T09:00:00Z")

        self.assertIsNotNone(promoted)
        assert promoted is not None
        self.assertEqual(promoted.user_id, "w1")
        self.assertIsNone(promoted.section_id)
        self.assertEqual([row.user_id for row in promoted_roster.students], ["s1", "w1"])
        self.assertEqual([row.user_id for row in promoted_roster.waitlist], ["w2"])

    def test_promote_next_is_noop_when_course_still_full(self) -> None:
        roster = CourseRoster(
            course_id="course-1",
            status="published",
            max_students=1,
            students=(_entry("s1"),),
            waitlist=(_waiting("w1"),),
        )
        unchanged, promoted = roster.promote_next(enrolled_at="2026-09-02T09:00:00Z")
        self.assertIsNone(promoted)
        self.assertIs(unchanged, roster)

    def test_waitlist_position_is_one_based(self) -> None:
        roster = CourseRoster(course_id="course-1", status="published", waitlist=(_waiting("w1"), _waiting("w2")))
        self.assertEqual(roster.waitlist_position("w2"), 2)
        self.assertIsNone(roster.waitlist_position("s9"))


class CourseDocumentMappingTests(unittest.TestCase):
    def test_legacy_document_without_version_maps_to_version_zero(self) -> None:
        item = {
            "courseId": "course-1",
            "title": "Intro to Film",
            "status": "published",
            "maxStudents": Decimal("30"),
            "currentEnrollment": Decimal("5"),
            "enrollment": {
                "students": [
                    {"userId": "s1", "email": "s1@example.edu", "enrolledAt": "2026-09-01T10:00:00.000Z", "status": "active"}
                ]
            },
        }

        roster = CourseRoster.from_course_item(item)

        self.assertEqual(roster.version, 0)
        self.assertEqual(roster.max_students, 30)
        self.assertEqual(roster.current_enrollment, 1)
        self.assertEqual(roster.students[0].email, "s1@example.edu")
        self.assertEqual(roster.waitlist, ())

    def test_students_stored_as_bare_ids_are_kept(self) -> None:
        item = {
            "courseId": "course_001",
            "status": "active",
            "createdAt": "2024-01-01T08:00:00.000Z",
            "enrollment": {
                "students": ["user_001", "user_002"],
                "maxStudents": 30,
                "enrollmentDates": {"user_002": "2024-01-16T09:30:00+00:00"},
            },
        }

        roster = CourseRoster.from_course_item(item)

        self.assertEqual([entry.user_id for entry in roster.students], ["user_001", "user_002"])
        self.assertEqual(roster.students[0].enrolled_at, "2024-01-01T08:00:00.000Z")
        self.assertEqual(roster.students[1].enrolled_at, "2024-01-16T09:30:00Z")
        self.assertEqual(roster.status, "published")
        self.assertTrue(roster.is_open)
        self.assertEqual(roster.max_students, 30)

    def test_promoted_row_with_only_added_at_is_kept(self) -> None:
        item = {
            "courseId": "course-1",
            "status": "published",
            "enrollment": {
                "students": [{"userId": "w1", "email": "w1@example.edu", "addedAt": "2026-09-02T08:00:00Z"}],
            },
        }

        roster = CourseRoster.from_course_item(item)

        self.assertEqual(roster.students[0].enrolled_at, "2026-09-02T08:00:00Z")
        self.assertEqual(roster.enrollment_attributes()["enrollment"]["students"][0]["email"], "w1@example.edu")

    def test_row_without_any_timestamp_gets_placeholder(self) -> None:
        roster = CourseRoster.from_course_item(
            {"courseId": "course-1", "status": "published", "enrollment": {"students": [{"userId": "s1"}]}}
        )
        self.assertEqual(roster.students[0].enrolled_at, LEGACY_TIMESTAMP)

    def test_unreadable_rows_raise_instead_of_being_dropped(self) -> None:
        cases = (
            {"students": [42]},
            {"students": [{"email": "no-id@example.edu"}]},
            {"students": ["  "]},
            {"waitlist": [{"userId": ""}]},
        )
        for enrollment in cases:
            with self.subTest(enrollment=enrollment):
                with self.assertRaisesRegex(CorruptRecordError, "course-1 has an unreadable roster"):
                    CourseRoster.from_course_item({"courseId": "course-1", "status": "published", "enrollment": enrollment})

    def test_zero_max_students_means_unlimited(self) -> None:
        roster = CourseRoster.from_course_item({"courseId": "course-1", "status": "published", "maxStudents": 0})
        self.assertIsNone(roster.max_students)
        self.assertFalse(roster.is_full)

    def test_enrollment_attributes_serialize_moved_fields(self) -> None:
        entry = RosterEntry(
            user_id="s1",
            enrolled_at="2026-09-03T10:00:00Z",
            moved_from="course-0",
            moved_at="2026-09-03T10:00:00Z",
        )
        roster = CourseRoster(course_id="course-1", status="published", students=(entry,), version=4)

        attributes = roster.enrollment_attributes()

        student = attributes["enrollment"]["students"][0]
        self.assertEqual(student["movedFrom"], "course-0")
        self.assertIsNone(student["sectionId"])
        self.assertEqual(attributes["version"], 4)


class SectionSeatsTests(unittest.TestCase):
    def test_from_item_coerces_decimal_counters(self) -> None:
        seats = SectionSeats.from_item(
            {
                "sectionId": "sec-a",
                "courseId": "course-1",
                "maxEnrollment": Decimal("2"),
                "currentEnrollment": Decimal("2"),
                "isActive": True,
            }
        )
        self.assertTrue(seats.is_full)

    def test_rejects_non_positive_capacity(self) -> None:
        with self.assertRaises(ValueError):
            SectionSeats(section_id="sec-a", course_id="course-1", max_enrollment=0)


if __name__ == "__main__":
    unittest.main()
