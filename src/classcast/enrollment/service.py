"""Enrollment orchestration: enroll, unenroll with waitlist promotion, and moves."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, replace
from typing import Callable, Mapping, TypeVar

from classcast.errors import (
    AlreadyEnrolledError,
    ConcurrentUpdateError,
    RecordConflictError,
    RecordNotFoundError,
    StaleWriteError,
)

from .model import CourseRoster, RosterEntry, WaitlistEntry, utc_now_rfc3339
from .repository import CourseRosterStore

logger = logging.getLogger(__name__)

Clock = Callable[[], str]
_T = TypeVar("_T")

_TRUE_VALUES = frozenset({"1", "true", "yes", "on"})

STATUS_ENROLLED = "enrolled"
STATUS_WAITLISTED = "waitlisted"


@dataclass(frozen=True)
class EnrollmentConfig:
    """Runtime knobs for roster writes."""

    max_write_attempts: int = 3
    waitlist_enabled: bool = True

    @classmethod
    def from_env(cls, env: Mapping[str, str] | None = None) -> "EnrollmentConfig":
        source = os.environ if env is None else env
        raw_attempts = source.get("ENROLLMENT_MAX_WRITE_ATTEMPTS", "").strip()
        try:
            attempts = int(raw_attempts) if raw_attempts else cls.max_write_attempts
        except ValueError:
            attempts = cls.max_write_attempts
        if attempts < 1:
            attempts = cls.max_write_attempts

        raw_waitlist = source.get("ENROLLMENT_WAITLIST_ENABLED", "true")
        return cls(
            max_write_attempts=attempts,
            waitlist_enabled=raw_waitlist.strip().lower() in _TRUE_VALUES,
        )


@dataclass(frozen=True)
class StudentProfile:
    """Identity fields copied into roster entries."""

    user_id: str
    email: str = ""
    first_name: str = ""
    last_name: str = ""


@dataclass(frozen=True)
class EnrollmentOutcome:
    roster: CourseRoster
    student_id: str
    status: str
    waitlist_position: int | None = None


@dataclass(frozen=True)
class UnenrollOutcome:
    roster: CourseRoster
    removed_from_waitlist: bool
    promoted: RosterEntry | None = None


@dataclass(frozen=True)
class MoveOutcome:
    source: CourseRoster
    target: CourseRoster
    entry: RosterEntry


def _with_retries(config: EnrollmentConfig, label: str, attempt: Callable[[], _T]) -> _T:
    """Re-run a read-modify-write until its conditional write wins."""
    for number in range(1, config.max_write_attempts + 1):
        try:
            return attempt()
        except StaleWriteError:
            logger.info("%s lost a concurrent write race (attempt %s of %s)", label, number, config.max_write_attempts)
    raise ConcurrentUpdateError(f"{label} failed after {config.max_write_attempts} attempts; try again")


def _load_roster(store: CourseRosterStore, course_id: str) -> CourseRoster:
    roster = store.load(course_id)
    if roster is None:
        raise RecordNotFoundError(f"course {course_id} not found")
    return roster


def enroll_student(
    *,
    store: CourseRosterStore,
    course_id: str,
    student: StudentProfile,
    section_id: str | None = None,
    config: EnrollmentConfig | None = None,
    clock: Clock = utc_now_rfc3339,
) -> EnrollmentOutcome:
    """Add a student to a published course, or to its waitlist when full.

    Raises:
      RecordNotFoundError: course or section missing.
      ValueError: course not published, or section belongs elsewhere / inactive.
      RecordConflictError: duplicate enrollment, full section, or full course
        with the waitlist disabled.
      ConcurrentUpdateError: optimistic retries exhausted.
    """
    settings = config or EnrollmentConfig()
    if not student.user_id.strip():
        raise ValueError("studentId is required")

    def attempt() -> EnrollmentOutcome:
        roster = _load_roster(store, course_id)
        if not roster.is_open:
            raise ValueError(f"course {course_id} is not open for enrollment")
        if roster.contains(student.user_id):
            raise AlreadyEnrolledError(f"student {student.user_id} is already enrolled in course {course_id}")

        section = None
        if section_id:
            section = store.load_section(section_id)
            if section is None:
                raise RecordNotFoundError(f"section {section_id} not found")
            if section.course_id != course_id:
                raise ValueError(f"section {section_id} does not belong to course {course_id}")
            if not section.is_active:
                raise ValueError(f"section {section_id} is not active")

        now = clock()
        if roster.is_full:
            if not settings.waitlist_enabled:
                raise RecordConflictError(f"course {course_id} is full")
            waitlisted = roster.with_waitlisted(
                WaitlistEntry(
                    user_id=student.user_id,
                    added_at=now,
                    email=student.email,
                    first_name=student.first_name,
                    last_name=student.last_name,
                )
            )
            saved = store.save(waitlisted)
            return EnrollmentOutcome(
                roster=saved,
                student_id=student.user_id,
                status=STATUS_WAITLISTED,
                waitlist_position=saved.waitlist_position(student.user_id),
            )

        section_changes: dict[str, int] = {}
        if section is not None:
            if section.is_full:
                raise RecordConflictError(f"section {section_id} has no free seats")
            section_changes[section_id] = 1

        enrolled = roster.with_student(
            RosterEntry(
                user_id=student.user_id,
                enrolled_at=now,
                email=student.email,
                first_name=student.first_name,
                last_name=student.last_name,
                section_id=section_id or None,
            )
        )
        saved = store.save(enrolled, section_changes=section_changes)
        return EnrollmentOutcome(roster=saved, student_id=student.user_id, status=STATUS_ENROLLED)

    outcome = _with_retries(settings, f"enroll {student.user_id} in {course_id}", attempt)
    logger.info("Student %s %s in course %s", student.user_id, outcome.status, course_id)
    return outcome


def unenroll_student(
    *,
    store: CourseRosterStore,
    course_id: str,
    student_id: str,
    config: EnrollmentConfig | None = None,
    clock: Clock = utc_now_rfc3339,
) -> UnenrollOutcome:
    """Remove a student (or waitlisted student) and promote the waitlist head."""
    settings = config or EnrollmentConfig()

    def attempt() -> UnenrollOutcome:
        roster = _load_roster(store, course_id)
        if roster.waitlist_position(student_id) is not None:
            remaining, _ = roster.without_waitlisted(student_id)
            return UnenrollOutcome(roster=store.save(remaining), removed_from_waitlist=True)

        remaining, removed = roster.without_student(student_id)
        section_changes: dict[str, int] = {}
        if removed.section_id:
            section = store.load_section(removed.section_id)
            if section is not None and section.current_enrollment > 0:
                section_changes[removed.section_id] = -1

        promoted_roster, promoted = remaining.promote_next(enrolled_at=clock())
        saved = store.save(promoted_roster, section_changes=section_changes)
        return UnenrollOutcome(roster=saved, removed_from_waitlist=False, promoted=promoted)

    outcome = _with_retries(settings, f"unenroll {student_id} from {course_id}", attempt)
    logger.info("Student %s removed from course %s", student_id, course_id)
    if outcome.promoted is not None:
        logger.info("Student %s promoted from waitlist in course %s", outcome.promoted.user_id, course_id)
    return outcome


def move_student(
    *,
    store: CourseRosterStore,
    student_id: str,
    from_course_id: str,
    to_course_id: str,
    config: EnrollmentConfig | None = None,
    clock: Clock = utc_now_rfc3339,
) -> MoveOutcome:
    """Move an enrolled student between courses in a single transaction.

    The moved entry keeps its profile, records where it came from and loses
    its section assignment. The target's capacity applies; a move never
    waitlists.
    """
    settings = config or EnrollmentConfig()
    if from_course_id == to_course_id:
        raise ValueError("fromCourseId and toCourseId must differ")

    def attempt() -> MoveOutcome:
        source = _load_roster(store, from_course_id)
        target = _load_roster(store, to_course_id)
        if target.contains(student_id):
            raise AlreadyEnrolledError(f"student {student_id} is already enrolled in course {to_course_id}")

        remaining, entry = source.without_student(student_id)
        now = clock()
        moved = replace(entry, section_id=None, moved_from=from_course_id, moved_at=now, enrolled_at=now)
        updated_target = target.with_student(moved)

        section_changes: dict[str, int] = {}
        if entry.section_id:
            section = store.load_section(entry.section_id)
            if section is not None and section.current_enrollment > 0:
                section_changes[entry.section_id] = -1

        saved_source, saved_target = store.save_pair(remaining, updated_target, section_changes=section_changes)
        return MoveOutcome(source=saved_source, target=saved_target, entry=moved)

    outcome = _with_retries(settings, f"move {student_id} from {from_course_id} to {to_course_id}", attempt)
    logger.info("Student %s moved from course %s to %s", student_id, from_course_id, to_course_id)
    return outcome
