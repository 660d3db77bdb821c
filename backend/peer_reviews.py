"""Peer review creation and listing."""

from __future__ import annotations

import logging
import math
import uuid
from typing import Any, Callable, Mapping

from botocore.exceptions import ClientError

from backend.tables import error_code, get_item, scan_all
from classcast.errors import RecordConflictError, RecordNotFoundError
from coursework.models import PeerReview, from_dynamodb_number, utc_now_rfc3339

logger = logging.getLogger(__name__)

DEFAULT_MAX_SCORE = 100

_REVIEW_NAMESPACE = uuid.uuid5(uuid.NAMESPACE_URL, "classcast:peer-review")


def review_id_for(submission_id: str, reviewer_id: str) -> str:
    """Stable review id; one review per reviewer and submission."""
    name = "\n".join((submission_id, reviewer_id))
    return f"review-{uuid.uuid5(_REVIEW_NAMESPACE, name)}"


def _required_text(payload: Mapping[str, Any], field: str) -> str:
    value = payload.get(field)
    if not isinstance(value, str) or not value.strip():
        raise ValueError(f"{field} is required")
    return value.strip()


def create_review(
    *,
    peer_responses_table: Any,
    submissions_table: Any,
    users_table: Any | None,
    payload: Mapping[str, Any],
    clock: Callable[[], str] = utc_now_rfc3339,
) -> dict[str, Any]:
    submission_id = _required_text(payload, "submissionId")
    reviewer_id = _required_text(payload, "reviewerId")
    feedback = _required_text(payload, "feedback")
    raw_score = payload.get("score")
    if isinstance(raw_score, bool) or not isinstance(raw_score, (int, float)) or not math.isfinite(raw_score):
        raise ValueError("score must be a number")

    submission = get_item(submissions_table, {"submissionId": submission_id})
    if submission is None:
        raise RecordNotFoundError(f"submission {submission_id} not found")
    if submission.get("studentId") == reviewer_id:
        raise ValueError("reviewers cannot review their own submission")

    max_score = payload.get("maxScore")
    if max_score is None:
        max_score = from_dynamodb_number(submission.get("maxScore"))
    if (
        isinstance(max_score, bool)
        or not isinstance(max_score, (int, float))
        or not math.isfinite(max_score)
        or max_score <= 0
    ):
        max_score = DEFAULT_MAX_SCORE

    duplicates = scan_all(
        peer_responses_table,
        lambda row: row.get("submissionId") == submission_id and row.get("reviewerId") == reviewer_id,
    )
    if duplicates:
        raise RecordConflictError(f"reviewer {reviewer_id} already reviewed submission {submission_id}")

    reviewer_name = "Unknown Reviewer"
    if users_table is not None:
        reviewer = get_item(users_table, {"userId": reviewer_id})
        if reviewer is not None:
            name = " ".join(str(reviewer.get(part) or "") for part in ("firstName", "lastName")).strip()
            reviewer_name = name or str(reviewer.get("email") or reviewer_name)

    video_response = payload.get("videoResponse")
    review = PeerReview(
        review_id=review_id_for(submission_id, reviewer_id),
        submission_id=submission_id,
        reviewer_id=reviewer_id,
        reviewer_name=reviewer_name,
        score=raw_score,
        max_score=max_score,
        feedback=feedback,
        submitted_at=clock(),
        assignment_id=submission.get("assignmentId"),
        course_id=submission.get("courseId"),
        video_response=video_response if isinstance(video_response, Mapping) else None,
    )
    item = review.to_dynamodb_item()
    try:
        peer_responses_table.put_item(Item=item, ConditionExpression="attribute_not_exists(reviewId)")
    except ClientError as exc:
        if error_code(exc) == "ConditionalCheckFailedException":
            raise RecordConflictError(
                f"reviewer {reviewer_id} already reviewed submission {submission_id}"
            ) from exc
        raise

    submissions_table.update_item(
        Key={"submissionId": submission_id},
        UpdateExpression="SET #reviews = list_append(if_not_exists(#reviews, :empty), :review)",
        ExpressionAttributeNames={"#reviews": "peerReviews"},
        ExpressionAttributeValues={":empty": [], ":review": [review.summary_item()]},
    )
    logger.info("Peer review %s stored for submission %s", review.review_id, submission_id)
    return item


def list_reviews(
    peer_responses_table: Any,
    *,
    submission_id: str | None = None,
    reviewer_id: str | None = None,
) -> dict[str, Any]:
    if not submission_id and not reviewer_id:
        raise ValueError("submissionId or reviewerId is required")
    field, value = ("submissionId", submission_id) if submission_id else ("reviewerId", reviewer_id)

    try:
        rows = scan_all(peer_responses_table, lambda row: row.get(field) == value)
    except ClientError as exc:
        if error_code(exc) != "ResourceNotFoundException":
            raise
        logger.warning("Peer responses table not found; returning no reviews")
        rows = []
    rows.sort(key=lambda row: str(row.get("submittedAt") or ""), reverse=True)
    return {"reviews": rows, "count": len(rows)}
