"""Course roster persistence and enrollment workflows."""

from .model import CourseRoster, RosterEntry, SectionSeats, WaitlistEntry, utc_now_rfc3339
from .repository import CourseRosterStore, DynamoDbCourseRosterStore
from .service import (
    STATUS_ENROLLED,
    STATUS_WAITLISTED,
    EnrollmentConfig,
    EnrollmentOutcome,
    MoveOutcome,
    StudentProfile,
    UnenrollOutcome,
    enroll_student,
    move_student,
    unenroll_student,
)

__all__ = [
    "CourseRoster",
    "CourseRosterStore",
    "DynamoDbCourseRosterStore",
    "EnrollmentConfig",
    "EnrollmentOutcome",
    "MoveOutcome",
    "RosterEntry",
    "STATUS_ENROLLED",
    "STATUS_WAITLISTED",
    "SectionSeats",
    "StudentProfile",
    "UnenrollOutcome",
    "WaitlistEntry",
    "enroll_student",
    "move_student",
    "unenroll_student",
    "utc_now_rfc3339",
]
