"""Video submission and peer review records."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Mapping

from .fields import (
    ModelValidationError,
    optional_string,
    to_dynamodb_number,
    validate_non_empty_string,
    validate_number,
    without_none,
)

SUBMISSION_STATUS_SUBMITTED = "submitted"
SUBMISSION_STATUS_GRADED = "graded"
SUBMISSION_METHODS = frozenset(("record", "upload", "youtube"))


def is_visible_submission(item: Mapping[str, Any]) -> bool:
    return not item.get("isHidden") and not item.get("isDeleted")


@dataclass(frozen=True)
class VideoSubmission:
    """Submitted video (uploaded object or YouTube link) for one assignment."""

    submission_id: str
    assignment_id: str
    student_id: str
    course_id: str
    submitted_at: str
    video_url: str | None = None
    youtube_url: str | None = None
    section_id: str | None = None
    thumbnail_url: str | None = None
    video_title: str = "Video Submission"
    video_description: str = ""
    duration: int | float | None = None
    file_name: str = "video.webm"
    file_size: int | None = None
    file_type: str = "video/webm"
    submission_method: str = "unknown"
    s3_key: str | None = None

    def __post_init__(self) -> None:
        validate_non_empty_string(self.submission_id, "submissionId")
        validate_non_empty_string(self.assignment_id, "assignmentId")
        validate_non_empty_string(self.student_id, "studentId")
        validate_non_empty_string(self.course_id, "courseId")
        if not self.video_url and not self.youtube_url:
            raise ModelValidationError("videoUrl or youtubeUrl is required")

    @classmethod
    def from_create_payload(cls, payload: Mapping[str, Any], *, submission_id: str, now: str) -> "VideoSubmission":
        youtube_url = optional_string(payload, "youtubeUrl") or None
        is_youtube = youtube_url is not None and not payload.get("videoUrl")
        method = payload.get("submissionMethod")
        if method not in SUBMISSION_METHODS:
            method = "youtube" if is_youtube else "unknown"

        duration = payload.get("duration")
        if duration is not None:
            duration = validate_number(duration, "duration")
        file_size = payload.get("fileSize")
        if file_size is not None:
            file_size = int(validate_number(file_size, "fileSize"))

        return cls(
            submission_id=submission_id,
            assignment_id=validate_non_empty_string(payload.get("assignmentId"), "assignmentId"),
            student_id=validate_non_empty_string(payload.get("studentId"), "studentId"),
            course_id=validate_non_empty_string(payload.get("courseId"), "courseId"),
            submitted_at=now,
            video_url=optional_string(payload, "videoUrl") or None,
            youtube_url=youtube_url,
            section_id=optional_string(payload, "sectionId") or None,
            thumbnail_url=optional_string(payload, "thumbnailUrl") or None,
            video_title=optional_string(payload, "videoTitle") or "Video Submission",
            video_description=optional_string(payload, "videoDescription"),
            duration=duration,
            file_name=optional_string(payload, "fileName") or ("youtube-video" if is_youtube else "video.webm"),
            file_size=file_size,
            file_type=optional_string(payload, "fileType") or ("youtube" if is_youtube else "video/webm"),
            submission_method=method,
            s3_key=optional_string(payload, "s3Key") or None,
        )

    def to_dynamodb_item(self) -> dict[str, Any]:
        item = without_none(
            {
                "submissionId": self.submission_id,
                "assignmentId": self.assignment_id,
                "studentId": self.student_id,
                "courseId": self.course_id,
                "sectionId": self.section_id,
                "videoUrl": self.video_url,
                "youtubeUrl": self.youtube_url,
                "thumbnailUrl": self.thumbnail_url,
                "videoTitle": self.video_title,
                "videoDescription": self.video_description,
                "duration": to_dynamodb_number(self.duration) if self.duration is not None else None,
                "fileName": self.file_name,
                "fileSize": self.file_size,
                "fileType": self.file_type,
                "submissionMethod": self.submission_method,
                "s3Key": self.s3_key,
                "status": SUBMISSION_STATUS_SUBMITTED,
                "submittedAt": self.submitted_at,
                "createdAt": self.submitted_at,
                "updatedAt": self.submitted_at,
            }
        )
        item["grade"] = None
        item["feedback"] = None
        item["peerReviews"] = []
        item["isHidden"] = False
        item["isDeleted"] = False
        return item

    def community_video_item(self, *, video_id: str) -> dict[str, Any]:
        """Community feed entry mirroring this submission with zeroed stats."""
        return without_none(
            {
                "videoId": video_id,
                "submissionId": self.submission_id,
                "title": self.video_title,
                "description": self.video_description,
                "videoUrl": self.video_url or self.youtube_url,
                "thumbnailUrl": self.thumbnail_url,
                "userId": self.student_id,
                "courseId": self.course_id,
                "assignmentId": self.assignment_id,
                "views": 0,
                "likes": 0,
                "comments": 0,
                "createdAt": self.submitted_at,
            }
        )


@dataclass(frozen=True)
class PeerReview:
    review_id: str
    submission_id: str
    reviewer_id: str
    reviewer_name: str
    score: int | float
    max_score: int | float
    feedback: str
    submitted_at: str
    assignment_id: str | None = None
    course_id: str | None = None
    video_response: Mapping[str, Any] | None = None

    def __post_init__(self) -> None:
        validate_non_empty_string(self.review_id, "reviewId")
        validate_non_empty_string(self.submission_id, "submissionId")
        validate_non_empty_string(self.reviewer_id, "reviewerId")
        validate_non_empty_string(self.feedback, "feedback")
        if self.score < 0 or self.score > self.max_score:
            raise ModelValidationError(f"score must be between 0 and {self.max_score}")

    @property
    def response_type(self) -> str:
        return "video" if self.video_response else "text"

    def to_dynamodb_item(self) -> dict[str, Any]:
        return without_none(
            {
                "reviewId": self.review_id,
                "submissionId": self.submission_id,
                "reviewerId": self.reviewer_id,
                "reviewerName": self.reviewer_name,
                "assignmentId": self.assignment_id,
                "courseId": self.course_id,
                "score": to_dynamodb_number(self.score),
                "maxScore": to_dynamodb_number(self.max_score),
                "feedback": self.feedback,
                "responseType": self.response_type,
                "videoResponse": dict(self.video_response) if self.video_response else None,
                "submittedAt": self.submitted_at,
                "createdAt": self.submitted_at,
            }
        )

    def summary_item(self) -> dict[str, Any]:
        """Compact entry appended to the reviewed submission's peerReviews list."""
        return {
            "reviewId": self.review_id,
            "reviewerId": self.reviewer_id,
            "reviewerName": self.reviewer_name,
            "score": to_dynamodb_number(self.score),
            "submittedAt": self.submitted_at,
        }
