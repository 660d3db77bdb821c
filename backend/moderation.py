"""Instructor moderation queue across community content, peer responses and submissions."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable, Mapping

from backend.tables import get_item, scan_all
from classcast.errors import RecordNotFoundError
from coursework.models import utc_now_rfc3339

logger = logging.getLogger(__name__)

MAX_ROWS_PER_SOURCE = 100
DEFAULT_REASON = "Inappropriate content"

TYPE_COMMUNITY_POST = "community_post"
TYPE_COMMUNITY_COMMENT = "community_comment"
TYPE_PEER_RESPONSE = "peer_response"
TYPE_VIDEO_SUBMISSION = "video_submission"

_QUEUE_FILTERS = {
    "all": (TYPE_COMMUNITY_POST, TYPE_COMMUNITY_COMMENT, TYPE_PEER_RESPONSE, TYPE_VIDEO_SUBMISSION),
    "posts": (TYPE_COMMUNITY_POST,),
    "comments": (TYPE_COMMUNITY_COMMENT,),
    "responses": (TYPE_PEER_RESPONSE,),
    "submissions": (TYPE_VIDEO_SUBMISSION,),
}


@dataclass(frozen=True)
class ModerationTables:
    posts: Any
    comments: Any
    peer_responses: Any
    submissions: Any

    def for_type(self, content_type: str) -> tuple[Any, str]:
        return {
            TYPE_COMMUNITY_POST: (self.posts, "postId"),
            TYPE_COMMUNITY_COMMENT: (self.comments, "commentId"),
            TYPE_PEER_RESPONSE: (self.peer_responses, "reviewId"),
            TYPE_VIDEO_SUBMISSION: (self.submissions, "submissionId"),
        }[content_type]


def _newest(rows: list[dict[str, Any]], field: str = "createdAt") -> list[dict[str, Any]]:
    rows.sort(key=lambda row: str(row.get(field) or row.get("createdAt") or ""), reverse=True)
    return rows[:MAX_ROWS_PER_SOURCE]


def _normalized(
    content_type: str,
    row: Mapping[str, Any],
    *,
    id_field: str,
    content: Any,
    author_field: str,
    course_id: Any,
    created_at: Any,
) -> dict[str, Any]:
    return {
        "id": row.get(id_field),
        "type": content_type,
        "content": content if isinstance(content, str) else "",
        "authorId": row.get(author_field),
        "courseId": course_id,
        "createdAt": created_at,
    }


def moderation_queue(tables: ModerationTables, *, content_type: str = "all", course_id: str | None = None) -> dict[str, Any]:
    wanted = _QUEUE_FILTERS.get(content_type or "all")
    if wanted is None:
        raise ValueError(f"type must be one of: {', '.join(_QUEUE_FILTERS)}")

    def in_course(row: Mapping[str, Any]) -> bool:
        return course_id is None or row.get("courseId") == course_id

    items: list[dict[str, Any]] = []
    posts = scan_all(tables.posts)
    post_courses = {str(row.get("postId")): row.get("courseId") for row in posts}

    if TYPE_COMMUNITY_POST in wanted:
        for row in _newest([row for row in posts if in_course(row)]):
            items.append(
                _normalized(
                    TYPE_COMMUNITY_POST,
                    row,
                    id_field="postId",
                    content=row.get("content"),
                    author_field="userId",
                    course_id=row.get("courseId"),
                    created_at=row.get("createdAt"),
                )
            )

    if TYPE_COMMUNITY_COMMENT in wanted:
        comments = scan_all(
            tables.comments,
            lambda row: course_id is None or post_courses.get(str(row.get("postId"))) == course_id,
        )
        for row in _newest(comments):
            items.append(
                _normalized(
                    TYPE_COMMUNITY_COMMENT,
                    row,
                    id_field="commentId",
                    content=row.get("content"),
                    author_field="userId",
                    course_id=post_courses.get(str(row.get("postId"))),
                    created_at=row.get("createdAt"),
                )
            )

    if TYPE_PEER_RESPONSE in wanted:
        for row in _newest(scan_all(tables.peer_responses, in_course), "submittedAt"):
            items.append(
                _normalized(
                    TYPE_PEER_RESPONSE,
                    row,
                    id_field="reviewId",
                    content=row.get("feedback"),
                    author_field="reviewerId",
                    course_id=row.get("courseId"),
                    created_at=row.get("submittedAt") or row.get("createdAt"),
                )
            )

    if TYPE_VIDEO_SUBMISSION in wanted:
        submissions = scan_all(tables.submissions, lambda row: in_course(row) and not row.get("isDeleted"))
        for row in _newest(submissions, "submittedAt"):
            items.append(
                _normalized(
                    TYPE_VIDEO_SUBMISSION,
                    row,
                    id_field="submissionId",
                    content=row.get("videoDescription") or row.get("videoTitle"),
                    author_field="studentId",
                    course_id=row.get("courseId"),
                    created_at=row.get("submittedAt") or row.get("createdAt"),
                )
            )

    items.sort(key=lambda row: str(row.get("createdAt") or ""), reverse=True)
    return {"posts": items, "count": len(items)}


def remove_content(
    tables: ModerationTables,
    payload: Mapping[str, Any],
    *,
    moderator_id: str,
    clock: Callable[[], str] = utc_now_rfc3339,
) -> dict[str, Any]:
    """Soft-delete video submissions; hard-delete every other content type."""
    content_id = payload.get("postId")
    if not isinstance(content_id, str) or not content_id.strip():
        raise ValueError("postId is required")
    content_type = payload.get("postType")
    if content_type not in {TYPE_COMMUNITY_POST, TYPE_COMMUNITY_COMMENT, TYPE_PEER_RESPONSE, TYPE_VIDEO_SUBMISSION}:
        raise ValueError(
            "postType must be one of: community_post, community_comment, peer_response, video_submission"
        )
    reason = payload.get("reason")
    if not isinstance(reason, str) or not reason.strip():
        reason = DEFAULT_REASON

    table, key_name = tables.for_type(content_type)
    key = {key_name: content_id.strip()}
    if get_item(table, key) is None:
        raise RecordNotFoundError(f"{content_type.replace('_', ' ')} {content_id} not found")

    if content_type == TYPE_VIDEO_SUBMISSION:
        now = clock()
        table.update_item(
            Key=key,
            UpdateExpression=(
                "SET isDeleted = :yes, isHidden = :yes, moderationReason = :reason, "
                "moderatedAt = :now, moderatedBy = :by, updatedAt = :now"
            ),
            ExpressionAttributeValues={":yes": True, ":reason": reason.strip(), ":now": now, ":by": moderator_id},
        )
    else:
        table.delete_item(Key=key)

    logger.info("Moderator %s removed %s %s", moderator_id, content_type, content_id)
    return {
        "message": f"{content_type.replace('_', ' ')} has been removed",
        "postId": content_id.strip(),
        "postType": content_type,
        "reason": reason.strip(),
    }
