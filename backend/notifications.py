"""Role-specific notification feed built from the last 24 hours of activity."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Mapping

from backend.tables import scan_all
from coursework.models import ModelValidationError, format_timestamp, parse_timestamp

logger = logging.getLogger(__name__)

FEED_WINDOW = timedelta(hours=24)
ROLE_STUDENT = "student"
ROLE_INSTRUCTOR = "instructor"

Clock = Callable[[], datetime]


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class FeedTables:
    courses: Any
    assignments: Any
    submissions: Any
    peer_responses: Any


@dataclass(frozen=True)
class Notification:
    id: str
    type: str
    title: str
    message: str
    url: str
    timestamp: str
    priority: str = "medium"

    def to_mapping(self) -> dict[str, str]:
        return {
            "id": self.id,
            "type": self.type,
            "title": self.title,
            "message": self.message,
            "url": self.url,
            "timestamp": self.timestamp,
            "priority": self.priority,
        }


def _plural(count: int, word: str) -> str:
    return f"{count} {word}" if count == 1 else f"{count} {word}s"


def _within(value: Any, cutoff: datetime) -> bool:
    if not value:
        return False
    try:
        return parse_timestamp(value, "timestamp") > cutoff
    except ModelValidationError:
        return False


def _enrolled_ids(course: Mapping[str, Any]) -> set[str]:
    enrollment = course.get("enrollment")
    if not isinstance(enrollment, Mapping):
        return set()
    ids: set[str] = set()
    for entry in enrollment.get("students") or []:
        if isinstance(entry, Mapping) and entry.get("userId"):
            ids.add(str(entry["userId"]))
        elif isinstance(entry, str):
            ids.add(entry)
    return ids


def _student_feed(tables: FeedTables, user_id: str, cutoff: datetime, now: str) -> list[Notification]:
    feed: list[Notification] = []

    own_submissions = scan_all(tables.submissions, lambda row: row.get("studentId") == user_id)
    for row in own_submissions:
        if row.get("grade") is None or not _within(row.get("gradedAt"), cutoff):
            continue
        title = row.get("videoTitle") or "Assignment"
        feed.append(
            Notification(
                id=f"graded_{row.get('submissionId')}",
                type="grade",
                title="Assignment Graded",
                message=f"{title} has been graded",
                url=f"/student/assignments/{row.get('assignmentId')}",
                timestamp=str(row.get("gradedAt")),
                priority="high",
            )
        )

    submission_ids = {row.get("submissionId") for row in own_submissions}
    responses = scan_all(
        tables.peer_responses,
        lambda row: row.get("submissionId") in submission_ids
        and row.get("reviewerId") != user_id
        and _within(row.get("submittedAt"), cutoff),
    )
    if responses:
        feed.append(
            Notification(
                id=f"peer_responses_{user_id}",
                type="peer_response",
                title="New Peer Responses",
                message=f"{_plural(len(responses), 'new response')} to your videos",
                url="/student/peer-reviews",
                timestamp=now,
            )
        )

    course_ids = {row.get("courseId") for row in scan_all(tables.courses, lambda row: user_id in _enrolled_ids(row))}
    if course_ids:
        assignments = scan_all(
            tables.assignments,
            lambda row: row.get("courseId") in course_ids and _within(row.get("createdAt"), cutoff),
        )
        for row in assignments:
            feed.append(
                Notification(
                    id=f"new_assignment_{row.get('assignmentId')}",
                    type="assignment",
                    title="New Assignment Posted",
                    message=f"{row.get('title') or 'An assignment'} is now available",
                    url=f"/student/assignments/{row.get('assignmentId')}",
                    timestamp=str(row.get("createdAt")),
                    priority="high",
                )
            )
    return feed


def _instructor_feed(tables: FeedTables, user_id: str, cutoff: datetime, now: str) -> list[Notification]:
    feed: list[Notification] = []
    course_ids = {row.get("courseId") for row in scan_all(tables.courses, lambda row: row.get("instructorId") == user_id)}
    if not course_ids:
        return feed

    ungraded = scan_all(
        tables.submissions,
        lambda row: row.get("courseId") in course_ids
        and row.get("status") == "submitted"
        and not row.get("isDeleted")
        and _within(row.get("submittedAt") or row.get("createdAt"), cutoff),
    )
    if ungraded:
        feed.append(
            Notification(
                id=f"ungraded_submissions_{user_id}",
                type="submission",
                title="Submissions to Grade",
                message=f"{_plural(len(ungraded), 'new submission')} awaiting grading",
                url="/instructor/grading",
                timestamp=now,
                priority="high",
            )
        )

    responses = scan_all(
        tables.peer_responses,
        lambda row: row.get("courseId") in course_ids and _within(row.get("submittedAt"), cutoff),
    )
    if responses:
        feed.append(
            Notification(
                id=f"new_peer_responses_{user_id}",
                type="peer_activity",
                title="New Peer Responses",
                message=f"{_plural(len(responses), 'new peer response')} to review",
                url="/instructor/grading",
                timestamp=now,
            )
        )
    return feed


def notification_feed(
    tables: FeedTables,
    *,
    user_id: str | None,
    role: str | None,
    clock: Clock = _utc_now,
) -> dict[str, Any]:
    if not user_id:
        raise ValueError("userId is required")
    wanted_role = (role or ROLE_STUDENT).strip().lower()
    if wanted_role not in {ROLE_STUDENT, ROLE_INSTRUCTOR}:
        raise ValueError("role must be student or instructor")

    current = clock()
    cutoff = current - FEED_WINDOW
    now = format_timestamp(current)
    if wanted_role == ROLE_STUDENT:
        feed = _student_feed(tables, user_id, cutoff, now)
    else:
        feed = _instructor_feed(tables, user_id, cutoff, now)

    feed.sort(key=lambda item: parse_timestamp(item.timestamp, "timestamp"), reverse=True)
    logger.debug("Built %s notifications for %s %s", len(feed), wanted_role, user_id)
    return {"notifications": [item.to_mapping() for item in feed], "count": len(feed)}
