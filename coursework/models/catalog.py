"""Course, section and assignment records with DynamoDB mapping helpers."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any, Mapping

from .fields import (
    ModelValidationError,
    format_timestamp,
    from_dynamodb_number,
    optional_string,
    parse_timestamp,
    validate_int_range,
    validate_non_empty_string,
    without_none,
)

COURSE_STATUSES = frozenset(("draft", "published", "archived"))
ASSIGNMENT_STATUSES = frozenset(("draft", "published", "completed"))
SUBMISSION_TYPES = frozenset(("video", "text", "file", "youtube"))

MIN_CREDITS = 1
MAX_CREDITS = 6
MIN_ASSIGNMENT_POINTS = 1
MAX_ASSIGNMENT_POINTS = 1000

UPDATABLE_COURSE_FIELDS = (
    "title",
    "code",
    "description",
    "credits",
    "maxStudents",
    "instructorEmail",
    "semester",
    "year",
)


def _optional_int(payload: Mapping[str, Any], field_name: str, *, minimum: int, maximum: int | None = None) -> int | None:
    value = payload.get(field_name)
    if value is None:
        return None
    return validate_int_range(value, field_name, minimum=minimum, maximum=maximum)


@dataclass(frozen=True)
class Course:
    """Course document without its roster; enrollment lives in classcast.enrollment."""

    course_id: str
    title: str
    code: str
    instructor_id: str
    created_at: str
    updated_at: str
    description: str = ""
    status: str = "draft"
    credits: int | None = None
    max_students: int | None = None
    instructor_email: str | None = None
    semester: str | None = None
    year: int | None = None

    def __post_init__(self) -> None:
        validate_non_empty_string(self.course_id, "courseId")
        validate_non_empty_string(self.title, "title")
        validate_non_empty_string(self.code, "code")
        validate_non_empty_string(self.instructor_id, "instructorId")
        if self.status not in COURSE_STATUSES:
            raise ModelValidationError(f"status: unsupported value '{self.status}'")
        if self.credits is not None:
            validate_int_range(self.credits, "credits", minimum=MIN_CREDITS, maximum=MAX_CREDITS)
        if self.max_students is not None:
            validate_int_range(self.max_students, "maxStudents", minimum=1)

    @classmethod
    def from_create_payload(cls, payload: Mapping[str, Any], *, course_id: str, now: str) -> "Course":
        return cls(
            course_id=course_id,
            title=validate_non_empty_string(payload.get("title"), "title"),
            code=validate_non_empty_string(payload.get("code"), "code").upper(),
            instructor_id=validate_non_empty_string(payload.get("instructorId"), "instructorId"),
            description=optional_string(payload, "description"),
            credits=_optional_int(payload, "credits", minimum=MIN_CREDITS, maximum=MAX_CREDITS),
            max_students=_optional_int(payload, "maxStudents", minimum=1),
            instructor_email=optional_string(payload, "instructorEmail") or None,
            semester=optional_string(payload, "semester") or None,
            year=_optional_int(payload, "year", minimum=2000, maximum=2100),
            created_at=now,
            updated_at=now,
        )

    def to_dynamodb_item(self) -> dict[str, Any]:
        """Serialize a new course document with an empty roster at version 0."""
        item = without_none(
            {
                "courseId": self.course_id,
                "title": self.title,
                "code": self.code,
                "description": self.description,
                "instructorId": self.instructor_id,
                "instructorEmail": self.instructor_email,
                "status": self.status,
                "credits": self.credits,
                "maxStudents": self.max_students,
                "semester": self.semester,
                "year": self.year,
                "createdAt": self.created_at,
                "updatedAt": self.updated_at,
            }
        )
        item.update(
            {
                "currentEnrollment": 0,
                "enrollment": {"students": [], "waitlist": []},
                "version": 0,
            }
        )
        return item


def validate_course_updates(payload: Mapping[str, Any], *, current_enrollment: int) -> dict[str, Any]:
    """Return the subset of allowed course fields, validated for storage."""
    updates: dict[str, Any] = {}
    for name in UPDATABLE_COURSE_FIELDS:
        if name not in payload:
            continue
        value = payload[name]
        if name in {"title", "code"}:
            value = validate_non_empty_string(value, name)
            if name == "code":
                value = value.upper()
        elif name == "credits":
            value = validate_int_range(value, name, minimum=MIN_CREDITS, maximum=MAX_CREDITS)
        elif name == "maxStudents":
            if value is not None:
                value = validate_int_range(value, name, minimum=1)
                if value < current_enrollment:
                    raise ModelValidationError(
                        f"maxStudents cannot be lower than current enrollment ({current_enrollment})"
                    )
        elif name == "year":
            value = validate_int_range(value, name, minimum=2000, maximum=2100)
        else:
            value = optional_string(payload, name)
        updates[name] = value

    if not updates:
        raise ModelValidationError(f"no updatable fields supplied; allowed: {list(UPDATABLE_COURSE_FIELDS)}")
    return updates


def course_summary(item: Mapping[str, Any]) -> dict[str, Any]:
    """API view of a course document without roster arrays."""
    summary = {key: value for key, value in item.items() if key not in {"enrollment", "version"}}
    for name in ("credits", "maxStudents", "currentEnrollment", "year"):
        if name in summary:
            summary[name] = from_dynamodb_number(summary[name])
    return summary


@dataclass(frozen=True)
class Section:
    """Course section with its own seat capacity."""

    section_id: str
    course_id: str
    section_name: str
    max_enrollment: int
    class_code: str
    created_at: str
    section_code: str = ""
    schedule: Mapping[str, Any] = field(default_factory=dict)
    instructor_id: str | None = None
    current_enrollment: int = 0
    is_active: bool = True

    def __post_init__(self) -> None:
        validate_non_empty_string(self.section_id, "sectionId")
        validate_non_empty_string(self.course_id, "courseId")
        validate_non_empty_string(self.section_name, "sectionName")
        validate_int_range(self.max_enrollment, "maxEnrollment", minimum=1)
        validate_non_empty_string(self.class_code, "classCode")

    @classmethod
    def from_create_payload(
        cls,
        payload: Mapping[str, Any],
        *,
        course_id: str,
        section_id: str,
        class_code: str,
        now: str,
    ) -> "Section":
        schedule = payload.get("schedule") or {}
        if not isinstance(schedule, Mapping):
            raise ModelValidationError("schedule must be an object")
        return cls(
            section_id=section_id,
            course_id=course_id,
            section_name=validate_non_empty_string(payload.get("sectionName"), "sectionName"),
            section_code=optional_string(payload, "sectionCode"),
            max_enrollment=validate_int_range(payload.get("maxEnrollment"), "maxEnrollment", minimum=1),
            class_code=class_code,
            schedule=dict(schedule),
            instructor_id=optional_string(payload, "instructorId") or None,
            created_at=now,
        )

    def to_dynamodb_item(self) -> dict[str, Any]:
        return without_none(
            {
                "sectionId": self.section_id,
                "courseId": self.course_id,
                "sectionName": self.section_name,
                "sectionCode": self.section_code,
                "classCode": self.class_code,
                "maxEnrollment": self.max_enrollment,
                "currentEnrollment": self.current_enrollment,
                "schedule": dict(self.schedule),
                "instructorId": self.instructor_id,
                "isActive": self.is_active,
                "createdAt": self.created_at,
                "updatedAt": self.created_at,
            }
        )


@dataclass(frozen=True)
class PeerReviewSettings:
    enabled: bool = False
    min_responses: int = 1
    max_responses: int = 3
    word_limit: int | None = None
    character_limit: int | None = None

    def __post_init__(self) -> None:
        if not self.enabled:
            return
        if self.min_responses < 1:
            raise ModelValidationError("peerReview.minResponses must be at least 1")
        if self.max_responses < self.min_responses:
            raise ModelValidationError("peerReview.maxResponses must be greater than or equal to minResponses")
        if self.word_limit is not None and self.word_limit < 10:
            raise ModelValidationError("peerReview.wordLimit must be at least 10")
        if self.character_limit is not None and self.character_limit < 50:
            raise ModelValidationError("peerReview.characterLimit must be at least 50")

    @classmethod
    def from_payload(cls, payload: Any) -> "PeerReviewSettings":
        if payload is None:
            return cls()
        if not isinstance(payload, Mapping):
            raise ModelValidationError("peerReview must be an object")

        def _int(name: str, default: int | None) -> int | None:
            value = payload.get(name, default)
            if value is None:
                return None
            if isinstance(value, bool) or not isinstance(value, (int, Decimal)):
                raise ModelValidationError(f"peerReview.{name} must be an integer")
            return int(value)

        return cls(
            enabled=payload.get("enabled") is True,
            min_responses=_int("minResponses", 1) or 0,
            max_responses=_int("maxResponses", 3) or 0,
            word_limit=_int("wordLimit", None),
            character_limit=_int("characterLimit", None),
        )

    def to_item(self) -> dict[str, Any]:
        return without_none(
            {
                "enabled": self.enabled,
                "minResponses": self.min_responses,
                "maxResponses": self.max_responses,
                "wordLimit": self.word_limit,
                "characterLimit": self.character_limit,
            }
        )


@dataclass(frozen=True)
class Assignment:
    assignment_id: str
    course_id: str
    title: str
    due_date: str
    max_score: int
    created_at: str
    description: str = ""
    instructions: str = ""
    submission_type: str = "video"
    status: str = "draft"
    peer_review: PeerReviewSettings = field(default_factory=PeerReviewSettings)

    def __post_init__(self) -> None:
        validate_non_empty_string(self.assignment_id, "assignmentId")
        validate_non_empty_string(self.course_id, "courseId")
        validate_non_empty_string(self.title, "title")
        parse_timestamp(self.due_date, "dueDate")
        validate_int_range(self.max_score, "maxScore", minimum=MIN_ASSIGNMENT_POINTS, maximum=MAX_ASSIGNMENT_POINTS)
        if self.status not in ASSIGNMENT_STATUSES:
            raise ModelValidationError(f"status: unsupported value '{self.status}'")
        if self.submission_type not in SUBMISSION_TYPES:
            raise ModelValidationError(f"submissionType: unsupported value '{self.submission_type}'")

    @classmethod
    def from_create_payload(
        cls,
        payload: Mapping[str, Any],
        *,
        course_id: str,
        assignment_id: str,
        now: datetime,
    ) -> "Assignment":
        due = parse_timestamp(payload.get("dueDate"), "dueDate")
        if due <= now:
            raise ModelValidationError("dueDate must be in the future")

        raw_score = payload.get("maxScore")
        if raw_score is None:
            raw_score = payload.get("points")
        if raw_score is None:
            raise ModelValidationError("maxScore is required")

        return cls(
            assignment_id=assignment_id,
            course_id=course_id,
            title=validate_non_empty_string(payload.get("title"), "title"),
            due_date=format_timestamp(due),
            max_score=validate_int_range(
                raw_score,
                "maxScore",
                minimum=MIN_ASSIGNMENT_POINTS,
                maximum=MAX_ASSIGNMENT_POINTS,
            ),
            description=optional_string(payload, "description"),
            instructions=optional_string(payload, "instructions"),
            submission_type=optional_string(payload, "submissionType", "video") or "video",
            status="published" if payload.get("status") == "published" else "draft",
            peer_review=PeerReviewSettings.from_payload(payload.get("peerReview")),
            created_at=format_timestamp(now),
        )

    def to_dynamodb_item(self) -> dict[str, Any]:
        return {
            "assignmentId": self.assignment_id,
            "courseId": self.course_id,
            "title": self.title,
            "description": self.description,
            "instructions": self.instructions,
            "dueDate": self.due_date,
            "maxScore": self.max_score,
            "submissionType": self.submission_type,
            "status": self.status,
            "peerReview": self.peer_review.to_item(),
            "createdAt": self.created_at,
            "updatedAt": self.created_at,
        }
