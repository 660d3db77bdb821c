"""Course roster model stored inside course documents."""

from __future__ import annotations

import re
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Mapping

from classcast.errors import AlreadyEnrolledError, CorruptRecordError, RecordConflictError, RecordNotFoundError

_RFC3339_UTC_RE = re.compile(r"^\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2}(\.\d+)?Z$")

COURSE_STATUS_DRAFT = "draft"
COURSE_STATUS_PUBLISHED = "published"
COURSE_STATUS_ARCHIVED = "archived"
COURSE_STATUSES = frozenset((COURSE_STATUS_DRAFT, COURSE_STATUS_PUBLISHED, COURSE_STATUS_ARCHIVED))

# Older course documents use "active" for an open course.
_LEGACY_COURSE_STATUSES = {"active": COURSE_STATUS_PUBLISHED}
LEGACY_TIMESTAMP = "1970-01-01T00:00:00Z"

STUDENT_STATUS_ACTIVE = "active"


def utc_now_rfc3339() -> str:
    """Return the current UTC timestamp in RFC3339 form with trailing Z."""
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def _validate_non_empty(field_name: str, value: Any) -> None:
    if not isinstance(value, str):
        raise ValueError(f"{field_name} must be a string")
    if not value.strip():
        raise ValueError(f"{field_name} must not be empty")


def _validate_timestamp(field_name: str, value: Any) -> None:
    if not isinstance(value, str) or not _RFC3339_UTC_RE.match(value):
        raise ValueError(f"{field_name} must be RFC3339 UTC with trailing Z")


def normalized_timestamp(value: Any) -> str | None:
    """Return value as RFC3339 UTC with trailing Z, or None when unreadable."""
    if not isinstance(value, str):
        return None
    if _RFC3339_UTC_RE.match(value):
        return value
    try:
        parsed = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def _first_timestamp(*candidates: Any) -> str:
    for candidate in candidates:
        normalized = normalized_timestamp(candidate)
        if normalized is not None:
            return normalized
    return LEGACY_TIMESTAMP


def _optional_str(value: Any) -> str | None:
    if isinstance(value, str) and value.strip():
        return value.strip()
    return None


def _as_int(value: Any, default: int | None = None) -> int | None:
    """Coerce DynamoDB numbers (Decimal) and JSON numbers to int."""
    if isinstance(value, bool):
        return default
    if isinstance(value, (int, Decimal)):
        return int(value)
    if isinstance(value, float) and value.is_integer():
        return int(value)
    return default


@dataclass(frozen=True)
class RosterEntry:
    """Active student enrollment within a course roster."""

    user_id: str
    enrolled_at: str
    email: str = ""
    first_name: str = ""
    last_name: str = ""
    section_id: str | None = None
    status: str = STUDENT_STATUS_ACTIVE
    moved_from: str | None = None
    moved_at: str | None = None

    def __post_init__(self) -> None:
        _validate_non_empty("userId", self.user_id)
        _validate_timestamp("enrolledAt", self.enrolled_at)
        if self.moved_at is not None:
            _validate_timestamp("movedAt", self.moved_at)

    def to_item(self) -> dict[str, Any]:
        item: dict[str, Any] = {
            "userId": self.user_id,
            "email": self.email,
            "firstName": self.first_name,
            "lastName": self.last_name,
            "sectionId": self.section_id,
            "enrolledAt": self.enrolled_at,
            "status": self.status,
        }
        if self.moved_from is not None:
            item["movedFrom"] = self.moved_from
        if self.moved_at is not None:
            item["movedAt"] = self.moved_at
        return item

    @classmethod
    def from_item(cls, item: Mapping[str, Any], *, default_enrolled_at: str = LEGACY_TIMESTAMP) -> "RosterEntry":
        """Read a stored entry; promoted waitlist rows may only carry ``addedAt``."""
        return cls(
            user_id=item.get("userId"),
            enrolled_at=_first_timestamp(item.get("enrolledAt"), item.get("addedAt"), default_enrolled_at),
            email=str(item.get("email") or ""),
            first_name=str(item.get("firstName") or ""),
            last_name=str(item.get("lastName") or ""),
            section_id=_optional_str(item.get("sectionId")),
            status=str(item.get("status") or STUDENT_STATUS_ACTIVE),
            moved_from=_optional_str(item.get("movedFrom")),
            moved_at=normalized_timestamp(item.get("movedAt")),
        )


@dataclass(frozen=True)
class WaitlistEntry:
    """Student waiting for a seat in a full course."""

    user_id: str
    added_at: str
    email: str = ""
    first_name: str = ""
    last_name: str = ""

    def __post_init__(self) -> None:
        _validate_non_empty("userId", self.user_id)
        _validate_timestamp("addedAt", self.added_at)

    def promote(self, *, enrolled_at: str) -> RosterEntry:
        """Turn the waitlist entry into an active enrollment without a section."""
        return RosterEntry(
            user_id=self.user_id,
            enrolled_at=enrolled_at,
            email=self.email,
            first_name=self.first_name,
            last_name=self.last_name,
        )

    def to_item(self) -> dict[str, Any]:
        return {
            "userId": self.user_id,
            "email": self.email,
            "firstName": self.first_name,
            "lastName": self.last_name,
            "addedAt": self.added_at,
        }

    @classmethod
    def from_item(cls, item: Mapping[str, Any], *, default_added_at: str = LEGACY_TIMESTAMP) -> "WaitlistEntry":
        return cls(
            user_id=item.get("userId"),
            added_at=_first_timestamp(item.get("addedAt"), default_added_at),
            email=str(item.get("email") or ""),
            first_name=str(item.get("firstName") or ""),
            last_name=str(item.get("lastName") or ""),
        )


@dataclass(frozen=True)
class SectionSeats:
    """Capacity view of a course section."""

    section_id: str
    course_id: str
    max_enrollment: int
    current_enrollment: int = 0
    is_active: bool = True

    def __post_init__(self) -> None:
        _validate_non_empty("sectionId", self.section_id)
        _validate_non_empty("courseId", self.course_id)
        if self.max_enrollment < 1:
            raise ValueError("maxEnrollment must be >= 1")
        if self.current_enrollment < 0:
            raise ValueError("currentEnrollment must be >= 0")

    @property
    def is_full(self) -> bool:
        return self.current_enrollment >= self.max_enrollment

    @classmethod
    def from_item(cls, item: Mapping[str, Any]) -> "SectionSeats":
        return cls(
            section_id=item.get("sectionId"),
            course_id=item.get("courseId"),
            max_enrollment=_as_int(item.get("maxEnrollment"), 0) or 0,
            current_enrollment=_as_int(item.get("currentEnrollment"), 0) or 0,
            is_active=item.get("isActive", True) is not False,
        )


@dataclass(frozen=True)
class CourseRoster:
    """Enrollment state of one course document.

    Invariants enforced on construction:
      - a student id appears at most once across students and waitlist;
      - version is a non-negative compare-and-swap counter.
    """

    course_id: str
    title: str = ""
    status: str = COURSE_STATUS_DRAFT
    max_students: int | None = None
    students: tuple[RosterEntry, ...] = ()
    waitlist: tuple[WaitlistEntry, ...] = ()
    version: int = 0
    instructor_id: str | None = None
    instructor_email: str | None = None

    def __post_init__(self) -> None:
        _validate_non_empty("courseId", self.course_id)
        if self.status not in COURSE_STATUSES:
            raise ValueError(f"status: unsupported value '{self.status}'")
        if self.max_students is not None and self.max_students < 1:
            raise ValueError("maxStudents must be >= 1")
        if self.version < 0:
            raise ValueError("version must be >= 0")

        seen: set[str] = set()
        for user_id in [entry.user_id for entry in self.students] + [entry.user_id for entry in self.waitlist]:
            if user_id in seen:
                raise ValueError(f"student {user_id} appears more than once in roster")
            seen.add(user_id)

    @property
    def current_enrollment(self) -> int:
        return len(self.students)

    @property
    def is_full(self) -> bool:
        return self.max_students is not None and self.current_enrollment >= self.max_students

    @property
    def is_open(self) -> bool:
        return self.status == COURSE_STATUS_PUBLISHED

    def contains(self, user_id: str) -> bool:
        return self.find_student(user_id) is not None or self.waitlist_position(user_id) is not None

    def find_student(self, user_id: str) -> RosterEntry | None:
        for entry in self.students:
            if entry.user_id == user_id:
                return entry
        return None

    def waitlist_position(self, user_id: str) -> int | None:
        """1-based position on the waitlist, or None when not waitlisted."""
        for index, entry in enumerate(self.waitlist):
            if entry.user_id == user_id:
                return index + 1
        return None

    def with_student(self, entry: RosterEntry) -> "CourseRoster":
        if self.contains(entry.user_id):
            raise AlreadyEnrolledError(f"student {entry.user_id} is already enrolled in course {self.course_id}")
        if self.is_full:
            raise RecordConflictError(f"course {self.course_id} is full")
        return replace(self, students=self.students + (entry,))

    def with_waitlisted(self, entry: WaitlistEntry) -> "CourseRoster":
        if self.contains(entry.user_id):
            raise AlreadyEnrolledError(f"student {entry.user_id} is already enrolled in course {self.course_id}")
        return replace(self, waitlist=self.waitlist + (entry,))

    def without_student(self, user_id: str) -> tuple["CourseRoster", RosterEntry]:
        entry = self.find_student(user_id)
        if entry is None:
            raise RecordNotFoundError(f"student {user_id} is not enrolled in course {self.course_id}")
        remaining = tuple(row for row in self.students if row.user_id != user_id)
        return replace(self, students=remaining), entry

    def without_waitlisted(self, user_id: str) -> tuple["CourseRoster", WaitlistEntry]:
        position = self.waitlist_position(user_id)
        if position is None:
            raise RecordNotFoundError(f"student {user_id} is not waitlisted in course {self.course_id}")
        entry = self.waitlist[position - 1]
        remaining = tuple(row for row in self.waitlist if row.user_id != user_id)
        return replace(self, waitlist=remaining), entry

    def promote_next(self, *, enrolled_at: str) -> tuple["CourseRoster", RosterEntry | None]:
        """Move the head of the waitlist into the roster when a seat is free."""
        if not self.waitlist or self.is_full:
            return self, None
        promoted = self.waitlist[0].promote(enrolled_at=enrolled_at)
        roster = replace(self, students=self.students + (promoted,), waitlist=self.waitlist[1:])
        return roster, promoted

    def next_version(self) -> "CourseRoster":
        return replace(self, version=self.version + 1)

    def enrollment_attributes(self) -> dict[str, Any]:
        """Attributes owned by the roster inside the course document."""
        return {
            "enrollment": {
                "students": [entry.to_item() for entry in self.students],
                "waitlist": [entry.to_item() for entry in self.waitlist],
            },
            "currentEnrollment": self.current_enrollment,
            "version": self.version,
        }

    def to_api_dict(self) -> dict[str, Any]:
        return {
            "courseId": self.course_id,
            "title": self.title,
            "currentEnrollment": self.current_enrollment,
            "maxStudents": self.max_students,
            "students": [entry.to_item() for entry in self.students],
            "waitlist": [entry.to_item() for entry in self.waitlist],
        }

    @classmethod
    def from_course_item(cls, item: Mapping[str, Any]) -> "CourseRoster":
        """Build roster from a course document.

        Legacy documents have no version, may list students as bare user ids
        with dates under ``enrollment.enrollmentDates``, and may hold promoted
        waitlist rows without ``enrolledAt``. A row that cannot be read raises
        CorruptRecordError so that no write drops it.
        """
        course_id = item.get("courseId")
        enrollment = item.get("enrollment")
        if not isinstance(enrollment, Mapping):
            enrollment = {}
        dates = enrollment.get("enrollmentDates")
        if not isinstance(dates, Mapping):
            dates = {}
        created_at = _first_timestamp(item.get("createdAt"))

        students: list[RosterEntry] = []
        waitlist: list[WaitlistEntry] = []
        try:
            for row in enrollment.get("students") or []:
                if isinstance(row, str) and row.strip():
                    students.append(
                        RosterEntry(user_id=row.strip(), enrolled_at=_first_timestamp(dates.get(row), created_at))
                    )
                elif isinstance(row, Mapping):
                    students.append(RosterEntry.from_item(row, default_enrolled_at=created_at))
                else:
                    raise ValueError(f"unsupported roster row {row!r}")
            for row in enrollment.get("waitlist") or []:
                if isinstance(row, str) and row.strip():
                    waitlist.append(WaitlistEntry(user_id=row.strip(), added_at=created_at))
                elif isinstance(row, Mapping):
                    waitlist.append(WaitlistEntry.from_item(row, default_added_at=created_at))
                else:
                    raise ValueError(f"unsupported waitlist row {row!r}")
        except ValueError as exc:
            raise CorruptRecordError(f"course {course_id} has an unreadable roster: {exc}") from exc

        max_students = _as_int(item.get("maxStudents", enrollment.get("maxStudents")))
        if max_students is not None and max_students < 1:
            max_students = None
        status = str(item.get("status") or COURSE_STATUS_DRAFT)

        return cls(
            course_id=course_id,
            title=str(item.get("title") or item.get("courseName") or ""),
            status=_LEGACY_COURSE_STATUSES.get(status, status),
            max_students=max_students,
            students=tuple(students),
            waitlist=tuple(waitlist),
            version=_as_int(item.get("version"), 0) or 0,
            instructor_id=_optional_str(item.get("instructorId")),
            instructor_email=_optional_str(item.get("instructorEmail")),
        )
