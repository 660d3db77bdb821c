"""Typed records for ClassCast coursework documents."""

from .catalog import (
    ASSIGNMENT_STATUSES,
    COURSE_STATUSES,
    UPDATABLE_COURSE_FIELDS,
    Assignment,
    Course,
    PeerReviewSettings,
    Section,
    course_summary,
    validate_course_updates,
)
from .fields import (
    ModelValidationError,
    format_timestamp,
    from_dynamodb_number,
    parse_timestamp,
    to_dynamodb_number,
    to_dynamodb_value,
    utc_now_rfc3339,
)
from .submissions import (
    SUBMISSION_STATUS_GRADED,
    SUBMISSION_STATUS_SUBMITTED,
    PeerReview,
    VideoSubmission,
    is_visible_submission,
)

__all__ = [
    "ASSIGNMENT_STATUSES",
    "COURSE_STATUSES",
    "UPDATABLE_COURSE_FIELDS",
    "SUBMISSION_STATUS_GRADED",
    "SUBMISSION_STATUS_SUBMITTED",
    "Assignment",
    "Course",
    "ModelValidationError",
    "PeerReview",
    "PeerReviewSettings",
    "Section",
    "VideoSubmission",
    "course_summary",
    "format_timestamp",
    "from_dynamodb_number",
    "is_visible_submission",
    "parse_timestamp",
    "to_dynamodb_number",
    "to_dynamodb_value",
    "utc_now_rfc3339",
    "validate_course_updates",
]
