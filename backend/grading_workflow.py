"""Instructor grading queue, grading and regrading, and the student grade view."""

from __future__ import annotations

import logging
from typing import Any, Callable, Mapping

from backend import email_notifications
from backend.email_notifications import Mailer
from backend.tables import get_item, scan_all
from classcast.errors import RecordNotFoundError
from coursework.models import (
    SUBMISSION_STATUS_GRADED,
    SUBMISSION_STATUS_SUBMITTED,
    from_dynamodb_number,
    is_visible_submission,
    to_dynamodb_value,
    utc_now_rfc3339,
)
from grading.scale import DEFAULT_MAX_SCORE, percentage, require_grade, require_max_score, score

logger = logging.getLogger(__name__)

DEFAULT_QUEUE_LIMIT = 50
MAX_QUEUE_LIMIT = 200


def _require_submission(submissions_table: Any, submission_id: Any) -> dict[str, Any]:
    if not isinstance(submission_id, str) or not submission_id.strip():
        raise ValueError("submissionId is required")
    item = get_item(submissions_table, {"submissionId": submission_id.strip()})
    if item is None:
        raise RecordNotFoundError(f"submission {submission_id} not found")
    return item


def _queue_limit(raw: str | None) -> int:
    if raw is None or not raw.strip():
        return DEFAULT_QUEUE_LIMIT
    try:
        limit = int(raw)
    except ValueError as exc:
        raise ValueError("limit must be an integer") from exc
    if limit < 1 or limit > MAX_QUEUE_LIMIT:
        raise ValueError(f"limit must be between 1 and {MAX_QUEUE_LIMIT}")
    return limit


def grading_queue(
    submissions_table: Any,
    *,
    assignment_id: str | None = None,
    course_id: str | None = None,
    status: str | None = None,
    limit: str | None = None,
) -> dict[str, Any]:
    """Oldest-first submissions awaiting grading for an assignment or course."""
    if not assignment_id and not course_id:
        raise ValueError("assignmentId or courseId is required")
    wanted_status = (status or SUBMISSION_STATUS_SUBMITTED).strip()
    max_rows = _queue_limit(limit)

    def matches(row: Mapping[str, Any]) -> bool:
        if not is_visible_submission(row):
            return False
        if assignment_id and row.get("assignmentId") != assignment_id:
            return False
        if not assignment_id and row.get("courseId") != course_id:
            return False
        return wanted_status == "all" or row.get("status") == wanted_status

    rows = scan_all(submissions_table, matches)
    rows.sort(key=lambda row: str(row.get("submittedAt") or row.get("createdAt") or ""))
    return {"submissions": rows[:max_rows], "count": min(len(rows), max_rows), "total": len(rows)}


def _assignment_max_score(assignments_table: Any | None, assignment_id: Any) -> Any:
    if assignments_table is None or not isinstance(assignment_id, str) or not assignment_id:
        return None
    assignment = get_item(assignments_table, {"assignmentId": assignment_id})
    if assignment is None:
        return None
    return assignment.get("maxScore")


def _store_grade(
    submissions_table: Any,
    submission_id: str,
    fields: Mapping[str, Any],
) -> dict[str, Any]:
    names: dict[str, str] = {}
    values: dict[str, Any] = {}
    assignments: list[str] = []
    for index, (name, value) in enumerate(fields.items()):
        names[f"#f{index}"] = name
        values[f":f{index}"] = to_dynamodb_value(value)
        assignments.append(f"#f{index} = :f{index}")
    response = submissions_table.update_item(
        Key={"submissionId": submission_id},
        UpdateExpression="SET " + ", ".join(assignments),
        ExpressionAttributeNames=names,
        ExpressionAttributeValues=values,
        ReturnValues="ALL_NEW",
    )
    return response.get("Attributes") or {}


def grade(
    *,
    submissions_table: Any,
    assignments_table: Any | None,
    users_table: Any | None,
    payload: Mapping[str, Any],
    mailer: Mailer | None = None,
    clock: Callable[[], str] = utc_now_rfc3339,
) -> dict[str, Any]:
    """Grade a submission and e-mail the student.

    maxScore comes from the payload, else the assignment, else 100.
    """
    submission = _require_submission(submissions_table, payload.get("submissionId"))
    graded_by = payload.get("gradedBy")
    if not isinstance(graded_by, str) or not graded_by.strip():
        raise ValueError("gradedBy is required")

    max_score = payload.get("maxScore")
    if max_score is None:
        max_score = _assignment_max_score(assignments_table, submission.get("assignmentId"))
    if max_score is None:
        max_score = DEFAULT_MAX_SCORE
    result = score(payload.get("grade"), max_score)

    rubric = payload.get("rubricScores")
    if rubric is not None and not isinstance(rubric, Mapping):
        raise ValueError("rubricScores must be an object")
    feedback = payload.get("feedback")
    if feedback is not None and not isinstance(feedback, str):
        raise ValueError("feedback must be a string")

    now = clock()
    updated = _store_grade(
        submissions_table,
        str(submission["submissionId"]),
        {
            **result.to_mapping(),
            "feedback": feedback,
            "rubricScores": dict(rubric or {}),
            "status": SUBMISSION_STATUS_GRADED,
            "gradedAt": now,
            "gradedBy": graded_by.strip(),
            "updatedAt": now,
        },
    )
    logger.info("Graded submission %s (%s)", submission["submissionId"], result.letter_grade)

    if mailer is not None and users_table is not None:
        student = get_item(users_table, {"userId": str(submission.get("studentId", ""))})
        if student is not None and student.get("email"):
            mailer.send(
                str(student["email"]),
                email_notifications.grade_posted(
                    assignment_title=str(submission.get("videoTitle") or submission.get("assignmentId")),
                    grade=result.grade,
                    max_score=result.max_score,
                    letter=result.letter_grade,
                    feedback=feedback,
                    grades_url=mailer.config.link("/student/grades"),
                ),
            )
    return updated


def regrade(
    submissions_table: Any,
    payload: Mapping[str, Any],
    *,
    clock: Callable[[], str] = utc_now_rfc3339,
) -> dict[str, Any]:
    """Partially update a grade; percentage and letter follow the merged values."""
    submission = _require_submission(submissions_table, payload.get("submissionId"))
    changes: dict[str, Any] = {}
    for name in ("grade", "maxScore", "feedback", "rubricScores"):
        if name in payload:
            changes[name] = payload[name]
    if not changes:
        raise ValueError("nothing to update; supply grade, maxScore, feedback or rubricScores")
    if "grade" in changes:
        changes["grade"] = require_grade(changes["grade"])
    if "maxScore" in changes:
        changes["maxScore"] = require_max_score(changes["maxScore"])
    if "feedback" in changes and changes["feedback"] is not None and not isinstance(changes["feedback"], str):
        raise ValueError("feedback must be a string")
    if "rubricScores" in changes and changes["rubricScores"] is not None and not isinstance(changes["rubricScores"], Mapping):
        raise ValueError("rubricScores must be an object")

    merged_grade = changes.get("grade", submission.get("grade"))
    merged_max = changes.get("maxScore", submission.get("maxScore"))
    if merged_grade is not None and merged_max is not None:
        changes.update(score(merged_grade, merged_max).to_mapping())

    changes["updatedAt"] = clock()
    return _store_grade(submissions_table, str(submission["submissionId"]), changes)


def student_grades(
    *,
    submissions_table: Any,
    assignments_table: Any | None,
    courses_table: Any | None,
    user_id: str,
) -> dict[str, Any]:
    rows = scan_all(submissions_table, lambda row: row.get("studentId") == user_id and is_visible_submission(row))

    assignment_titles: dict[str, str] = {}
    course_titles: dict[str, str] = {}

    def title_for(table: Any | None, key: str, value: Any, cache: dict[str, str]) -> str | None:
        if table is None or not isinstance(value, str) or not value:
            return None
        if value not in cache:
            item = get_item(table, {key: value})
            cache[value] = str(item.get("title") or "") if item is not None else ""
        return cache[value] or None

    graded: list[dict[str, Any]] = []
    pending: list[dict[str, Any]] = []
    for row in rows:
        entry = dict(row)
        entry["assignmentTitle"] = title_for(assignments_table, "assignmentId", row.get("assignmentId"), assignment_titles)
        entry["courseTitle"] = title_for(courses_table, "courseId", row.get("courseId"), course_titles)
        if row.get("status") == SUBMISSION_STATUS_GRADED and row.get("grade") is not None:
            graded.append(entry)
        else:
            pending.append(entry)

    graded.sort(key=lambda row: str(row.get("gradedAt") or ""), reverse=True)
    pending.sort(key=lambda row: str(row.get("submittedAt") or ""), reverse=True)

    percentages = [
        from_dynamodb_number(row.get("percentage"))
        if row.get("percentage") is not None
        else percentage(row.get("grade"), row.get("maxScore"))
        for row in graded
    ]
    average = round(sum(percentages) / len(percentages), 1) if percentages else 0.0
    return {
        "grades": graded,
        "pending": pending,
        "summary": {"totalGraded": len(graded), "averagePercentage": average},
    }
