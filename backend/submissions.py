"""Video submission listing, creation and quick grading."""

from __future__ import annotations

import logging
import math
import uuid
from typing import Any, Callable, Mapping

from botocore.exceptions import ClientError

from backend import email_notifications
from backend.email_notifications import Mailer
from backend.tables import error_code, scan_all
from classcast.errors import RecordNotFoundError
from coursework.models import (
    SUBMISSION_STATUS_GRADED,
    VideoSubmission,
    is_visible_submission,
    to_dynamodb_number,
    utc_now_rfc3339,
)

logger = logging.getLogger(__name__)


def list_submissions(
    submissions_table: Any,
    *,
    assignment_id: str | None = None,
    student_id: str | None = None,
    course_id: str | None = None,
) -> dict[str, Any]:
    """Filter by the most specific id supplied; hidden and deleted rows never show."""
    if assignment_id:
        field, value = "assignmentId", assignment_id
    elif student_id:
        field, value = "studentId", student_id
    elif course_id:
        field, value = "courseId", course_id
    else:
        field, value = None, None

    rows = scan_all(
        submissions_table,
        lambda row: is_visible_submission(row) and (field is None or row.get(field) == value),
    )
    rows.sort(key=lambda row: str(row.get("submittedAt") or row.get("createdAt") or ""), reverse=True)
    return {"submissions": rows, "count": len(rows)}


def create_submission(
    *,
    submissions_table: Any,
    videos_table: Any | None,
    payload: Mapping[str, Any],
    mailer: Mailer | None = None,
    id_factory: Callable[[], str] | None = None,
    clock: Callable[[], str] = utc_now_rfc3339,
) -> dict[str, Any]:
    new_id = id_factory or (lambda: str(uuid.uuid4()))
    submission = VideoSubmission.from_create_payload(payload, submission_id=f"submission-{new_id()}", now=clock())
    item = submission.to_dynamodb_item()
    submissions_table.put_item(Item=item)
    logger.info(
        "Stored submission %s for assignment %s by %s",
        submission.submission_id,
        submission.assignment_id,
        submission.student_id,
    )

    if videos_table is not None:
        try:
            videos_table.put_item(Item=submission.community_video_item(video_id=f"video-{new_id()}"))
        except Exception:  # noqa: BLE001
            logger.exception("Community video entry failed for submission %s", submission.submission_id)

    if mailer is not None and mailer.config.admin_email:
        mailer.send_admin(
            email_notifications.new_submission_alert(
                student_id=submission.student_id,
                course_id=submission.course_id,
                assignment_id=submission.assignment_id,
                video_title=submission.video_title,
                submission_url=mailer.config.link(f"/instructor/grading?submissionId={submission.submission_id}"),
            )
        )
    return item


def grade_submission(
    submissions_table: Any,
    payload: Mapping[str, Any],
    *,
    clock: Callable[[], str] = utc_now_rfc3339,
) -> dict[str, Any]:
    submission_id = payload.get("submissionId")
    if not isinstance(submission_id, str) or not submission_id.strip():
        raise ValueError("submissionId is required")

    names = {"#status": "status", "#gradedAt": "gradedAt", "#updated": "updatedAt"}
    now = clock()
    values: dict[str, Any] = {":status": SUBMISSION_STATUS_GRADED, ":gradedAt": now, ":updatedAt": now}
    assignments = ["#status = :status", "#gradedAt = :gradedAt", "#updated = :updatedAt"]

    if "grade" in payload and payload["grade"] is not None:
        grade = payload["grade"]
        if isinstance(grade, bool) or not isinstance(grade, (int, float)) or not math.isfinite(grade) or grade < 0:
            raise ValueError("grade must be a number >= 0")
        names["#grade"] = "grade"
        values[":grade"] = to_dynamodb_number(grade)
        assignments.append("#grade = :grade")
    if "feedback" in payload:
        feedback = payload["feedback"]
        if feedback is not None and not isinstance(feedback, str):
            raise ValueError("feedback must be a string")
        names["#feedback"] = "feedback"
        values[":feedback"] = feedback
        assignments.append("#feedback = :feedback")

    try:
        response = submissions_table.update_item(
            Key={"submissionId": submission_id.strip()},
            UpdateExpression="SET " + ", ".join(assignments),
            ConditionExpression="attribute_exists(submissionId)",
            ExpressionAttributeNames=names,
            ExpressionAttributeValues=values,
            ReturnValues="ALL_NEW",
        )
    except ClientError as exc:
        if error_code(exc) == "ConditionalCheckFailedException":
            raise RecordNotFoundError(f"submission {submission_id} not found") from exc
        raise
    return response.get("Attributes") or {}
