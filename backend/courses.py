"""Course, section and assignment catalog operations."""

from __future__ import annotations

import logging
import secrets
import string
import uuid
from datetime import datetime, timezone
from typing import Any, Callable, Mapping

from botocore.exceptions import ClientError

from backend.tables import error_code, get_item, scan_all
from classcast.errors import ConcurrentUpdateError, RecordConflictError, RecordNotFoundError
from coursework.models import (
    Assignment,
    Course,
    Section,
    course_summary,
    format_timestamp,
    from_dynamodb_number,
    validate_course_updates,
)

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]
IdFactory = Callable[[], str]

CLASS_CODE_LENGTH = 6
_CLASS_CODE_ALPHABET = string.ascii_uppercase + string.digits


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _new_id(prefix: str) -> str:
    return f"{prefix}-{uuid.uuid4().hex[:12]}"


def generate_class_code() -> str:
    return "".join(secrets.choice(_CLASS_CODE_ALPHABET) for _ in range(CLASS_CODE_LENGTH))


def _require_course(courses_table: Any, course_id: str) -> dict[str, Any]:
    item = get_item(courses_table, {"courseId": course_id})
    if item is None:
        raise RecordNotFoundError(f"course {course_id} not found")
    return item


def _code_in_use(courses_table: Any, code: str, *, exclude_course_id: str | None = None) -> bool:
    normalized = code.strip().upper()
    return bool(
        scan_all(
            courses_table,
            lambda row: str(row.get("code", "")).strip().upper() == normalized
            and row.get("courseId") != exclude_course_id,
        )
    )


def list_courses(courses_table: Any, *, instructor_id: str | None = None, status: str | None = None) -> list[dict[str, Any]]:
    rows = scan_all(
        courses_table,
        lambda row: (instructor_id is None or row.get("instructorId") == instructor_id)
        and (status is None or row.get("status") == status),
    )
    rows.sort(key=lambda row: str(row.get("createdAt", "")), reverse=True)
    return [course_summary(row) for row in rows]


def get_course(courses_table: Any, course_id: str) -> dict[str, Any]:
    return course_summary(_require_course(courses_table, course_id))


def create_course(
    courses_table: Any,
    payload: Mapping[str, Any],
    *,
    id_factory: IdFactory | None = None,
    clock: Clock = _utc_now,
) -> dict[str, Any]:
    """Create a draft course with an empty roster; course codes are unique."""
    course_id = (id_factory or (lambda: _new_id("course")))()
    course = Course.from_create_payload(payload, course_id=course_id, now=format_timestamp(clock()))
    if _code_in_use(courses_table, course.code):
        raise RecordConflictError(f"course code {course.code} already exists")

    item = course.to_dynamodb_item()
    try:
        courses_table.put_item(Item=item, ConditionExpression="attribute_not_exists(courseId)")
    except ClientError as exc:
        if error_code(exc) == "ConditionalCheckFailedException":
            raise RecordConflictError(f"course {course_id} already exists") from exc
        raise
    logger.info("Created course %s (%s)", course_id, course.code)
    return course_summary(item)


def update_course(
    courses_table: Any,
    course_id: str,
    payload: Mapping[str, Any],
    *,
    clock: Clock = _utc_now,
) -> dict[str, Any]:
    """Apply catalog field changes, conditioned on the stored roster version."""
    current = _require_course(courses_table, course_id)
    enrolled = from_dynamodb_number(current.get("currentEnrollment")) or 0
    updates = validate_course_updates(payload, current_enrollment=int(enrolled))
    if "code" in updates and _code_in_use(courses_table, updates["code"], exclude_course_id=course_id):
        raise RecordConflictError(f"course code {updates['code']} already exists")

    names: dict[str, str] = {"#v": "version", "#updated": "updatedAt"}
    values: dict[str, Any] = {":updatedAt": format_timestamp(clock())}
    assignments = ["#updated = :updatedAt"]
    for index, (name, value) in enumerate(sorted(updates.items())):
        names[f"#f{index}"] = name
        values[f":f{index}"] = value
        assignments.append(f"#f{index} = :f{index}")

    version = int(from_dynamodb_number(current.get("version")) or 0)
    values[":expected"] = version
    values[":next"] = version + 1
    assignments.append("#v = :next")

    try:
        response = courses_table.update_item(
            Key={"courseId": course_id},
            UpdateExpression="SET " + ", ".join(assignments),
            ConditionExpression="attribute_exists(courseId) AND (attribute_not_exists(#v) OR #v = :expected)",
            ExpressionAttributeNames=names,
            ExpressionAttributeValues=values,
            ReturnValues="ALL_NEW",
        )
    except ClientError as exc:
        if error_code(exc) == "ConditionalCheckFailedException":
            raise ConcurrentUpdateError(f"course {course_id} changed while updating; try again") from exc
        raise
    return course_summary(response.get("Attributes") or {**current, **updates})


def delete_course(courses_table: Any, course_id: str) -> None:
    """Delete a course that has no enrolled students."""
    current = _require_course(courses_table, course_id)
    if (from_dynamodb_number(current.get("currentEnrollment")) or 0) > 0:
        raise RecordConflictError(f"course {course_id} has enrolled students; unenroll them first")
    try:
        courses_table.delete_item(
            Key={"courseId": course_id},
            ConditionExpression="attribute_not_exists(currentEnrollment) OR currentEnrollment = :zero",
            ExpressionAttributeValues={":zero": 0},
        )
    except ClientError as exc:
        if error_code(exc) == "ConditionalCheckFailedException":
            raise RecordConflictError(f"course {course_id} has enrolled students; unenroll them first") from exc
        raise
    logger.info("Deleted course %s", course_id)


def set_course_status(courses_table: Any, course_id: str, status: str, *, clock: Clock = _utc_now) -> dict[str, Any]:
    if status not in {"published", "archived"}:
        raise ValueError(f"unsupported status transition: {status}")
    _require_course(courses_table, course_id)
    try:
        response = courses_table.update_item(
            Key={"courseId": course_id},
            UpdateExpression="SET #status = :status, #updated = :updatedAt",
            ConditionExpression="attribute_exists(courseId)",
            ExpressionAttributeNames={"#status": "status", "#updated": "updatedAt"},
            ExpressionAttributeValues={":status": status, ":updatedAt": format_timestamp(clock())},
            ReturnValues="ALL_NEW",
        )
    except ClientError as exc:
        if error_code(exc) == "ConditionalCheckFailedException":
            raise RecordNotFoundError(f"course {course_id} not found") from exc
        raise
    logger.info("Course %s is now %s", course_id, status)
    return course_summary(response.get("Attributes") or {})


def create_section(
    courses_table: Any,
    sections_table: Any,
    course_id: str,
    payload: Mapping[str, Any],
    *,
    id_factory: IdFactory | None = None,
    code_factory: IdFactory = generate_class_code,
    clock: Clock = _utc_now,
) -> dict[str, Any]:
    _require_course(courses_table, course_id)
    section = Section.from_create_payload(
        payload,
        course_id=course_id,
        section_id=(id_factory or (lambda: _new_id("section")))(),
        class_code=code_factory(),
        now=format_timestamp(clock()),
    )
    item = section.to_dynamodb_item()
    sections_table.put_item(Item=item, ConditionExpression="attribute_not_exists(sectionId)")
    return _plain_section(item)


def _plain_section(item: Mapping[str, Any]) -> dict[str, Any]:
    section = dict(item)
    for name in ("maxEnrollment", "currentEnrollment"):
        if name in section:
            section[name] = from_dynamodb_number(section[name])
    return section


def list_sections(sections_table: Any, course_id: str) -> list[dict[str, Any]]:
    rows = scan_all(sections_table, lambda row: row.get("courseId") == course_id)
    rows.sort(key=lambda row: str(row.get("sectionName", "")).lower())
    return [_plain_section(row) for row in rows]


def create_assignment(
    courses_table: Any,
    assignments_table: Any,
    course_id: str,
    payload: Mapping[str, Any],
    *,
    id_factory: IdFactory | None = None,
    clock: Clock = _utc_now,
) -> dict[str, Any]:
    _require_course(courses_table, course_id)
    assignment = Assignment.from_create_payload(
        payload,
        course_id=course_id,
        assignment_id=(id_factory or (lambda: _new_id("assignment")))(),
        now=clock(),
    )
    item = assignment.to_dynamodb_item()
    assignments_table.put_item(Item=item)
    logger.info("Created assignment %s in course %s", assignment.assignment_id, course_id)
    return item


def list_assignments(assignments_table: Any, course_id: str) -> list[dict[str, Any]]:
    rows = scan_all(assignments_table, lambda row: row.get("courseId") == course_id)
    rows.sort(key=lambda row: str(row.get("dueDate", "")))
    return rows
