"""Persistence boundaries for course rosters with optimistic concurrency."""

from __future__ import annotations

import logging
from typing import Any, Mapping, Protocol, Sequence, runtime_checkable

from botocore.exceptions import ClientError

from classcast.errors import RecordConflictError, StaleWriteError

from .model import CourseRoster, SectionSeats, utc_now_rfc3339

logger = logging.getLogger(__name__)

MAX_TRANSACTION_ITEMS = 100

_ROSTER_UPDATE_EXPRESSION = "SET #enrollment = :enrollment, #count = :count, #v = :next, #updated = :updatedAt"
_ROSTER_CONDITION = "attribute_exists(courseId) AND (attribute_not_exists(#v) OR #v = :expected)"
_ROSTER_NAMES = {
    "#enrollment": "enrollment",
    "#count": "currentEnrollment",
    "#v": "version",
    "#updated": "updatedAt",
}
_SECTION_NAMES = {"#count": "currentEnrollment", "#max": "maxEnrollment"}


@runtime_checkable
class CourseRosterStore(Protocol):
    """Storage interface for course rosters and section seat counters."""

    def load(self, course_id: str) -> CourseRoster | None:
        """Read the roster of a course, or None when the course does not exist."""

    def load_section(self, section_id: str) -> SectionSeats | None:
        """Read the seat counters of a section."""

    def save(
        self,
        roster: CourseRoster,
        *,
        section_changes: Mapping[str, int] | None = None,
    ) -> CourseRoster:
        """Persist a roster if the stored version still equals roster.version."""

    def save_pair(
        self,
        source: CourseRoster,
        target: CourseRoster,
        *,
        section_changes: Mapping[str, int] | None = None,
    ) -> tuple[CourseRoster, CourseRoster]:
        """Persist two rosters in one all-or-nothing write."""

    def repoint_submissions(
        self,
        submissions_table_name: str,
        submission_ids: Sequence[str],
        *,
        from_course_id: str,
        to_course_id: str,
    ) -> int:
        """Point submissions still on the source course at the target course."""


def _error_code(exc: ClientError) -> str:
    return str(exc.response.get("Error", {}).get("Code", ""))


def _cancellation_codes(exc: ClientError) -> list[str]:
    reasons = exc.response.get("CancellationReasons") or []
    return [str(reason.get("Code", "")) if isinstance(reason, Mapping) else "" for reason in reasons]


class DynamoDbCourseRosterStore:
    """DynamoDB adapter that keeps the roster inside the course document.

    Single-roster writes are conditional UpdateItem calls on the ``version``
    attribute. Writes that also move section counters, and course-to-course
    moves, go through TransactWriteItems so that every document changes or
    none does.
    """

    def __init__(self, courses_table: Any, sections_table: Any | None = None, *, client: Any | None = None) -> None:
        self._courses = courses_table
        self._sections = sections_table
        self._client = client if client is not None else courses_table.meta.client

    def load(self, course_id: str) -> CourseRoster | None:
        response = self._courses.get_item(Key={"courseId": course_id}, ConsistentRead=True)
        item = response.get("Item")
        if item is None:
            return None
        return CourseRoster.from_course_item(item)

    def load_section(self, section_id: str) -> SectionSeats | None:
        if self._sections is None:
            raise RuntimeError("server misconfiguration: SECTIONS_TABLE missing")
        response = self._sections.get_item(Key={"sectionId": section_id}, ConsistentRead=True)
        item = response.get("Item")
        if item is None:
            return None
        return SectionSeats.from_item(item)

    def save(
        self,
        roster: CourseRoster,
        *,
        section_changes: Mapping[str, int] | None = None,
    ) -> CourseRoster:
        stored = roster.next_version()
        changes = {key: delta for key, delta in (section_changes or {}).items() if delta}
        if not changes:
            try:
                self._courses.update_item(**self._roster_update(roster))
            except ClientError as exc:
                if _error_code(exc) == "ConditionalCheckFailedException":
                    raise StaleWriteError(f"course {roster.course_id} changed since it was read") from exc
                raise
            return stored

        transact_items = [{"Update": self._serialized(self._courses.name, self._roster_update(roster))}]
        section_ids = list(changes)
        for section_id in section_ids:
            transact_items.append({"Update": self._section_update(section_id, changes[section_id])})

        self._transact(transact_items, roster_count=1, section_changes=changes)
        return stored

    def save_pair(
        self,
        source: CourseRoster,
        target: CourseRoster,
        *,
        section_changes: Mapping[str, int] | None = None,
    ) -> tuple[CourseRoster, CourseRoster]:
        if source.course_id == target.course_id:
            raise ValueError("source and target must be different courses")

        stored_source = source.next_version()
        stored_target = target.next_version()
        transact_items = [
            {"Update": self._serialized(self._courses.name, self._roster_update(source))},
            {"Update": self._serialized(self._courses.name, self._roster_update(target))},
        ]
        changes = {key: delta for key, delta in (section_changes or {}).items() if delta}
        section_ids = list(changes)
        for section_id in section_ids:
            transact_items.append({"Update": self._section_update(section_id, changes[section_id])})

        self._transact(transact_items, roster_count=2, section_changes=changes)
        return stored_source, stored_target

    def repoint_submissions(
        self,
        submissions_table_name: str,
        submission_ids: Sequence[str],
        *,
        from_course_id: str,
        to_course_id: str,
    ) -> int:
        """Move submissions to another course in transactional batches.

        Each update only applies while the submission still points at the
        source course. A cancelled batch is retried row by row so that rows
        changed concurrently are skipped instead of blocking the rest.
        """
        updated = 0
        ids = list(submission_ids)
        for start in range(0, len(ids), MAX_TRANSACTION_ITEMS):
            chunk = ids[start : start + MAX_TRANSACTION_ITEMS]
            requests = [
                self._submission_repoint(submissions_table_name, submission_id, from_course_id, to_course_id)
                for submission_id in chunk
            ]
            try:
                self._client.transact_write_items(TransactItems=[{"Update": request} for request in requests])
                updated += len(chunk)
                continue
            except ClientError as exc:
                if _error_code(exc) != "TransactionCanceledException":
                    raise
                logger.warning(
                    "Submission repoint batch cancelled for course %s -> %s; retrying %s row(s) individually",
                    from_course_id,
                    to_course_id,
                    len(chunk),
                )

            for request in requests:
                try:
                    self._client.update_item(**request)
                    updated += 1
                except ClientError as exc:
                    if _error_code(exc) != "ConditionalCheckFailedException":
                        raise
        return updated

    def _transact(
        self,
        transact_items: list[dict[str, Any]],
        *,
        roster_count: int,
        section_changes: Mapping[str, int],
    ) -> None:
        try:
            self._client.transact_write_items(TransactItems=transact_items)
        except ClientError as exc:
            if _error_code(exc) != "TransactionCanceledException":
                raise
            codes = _cancellation_codes(exc)
            for index, section_id in enumerate(section_changes, start=roster_count):
                if index >= len(codes) or codes[index] != "ConditionalCheckFailed":
                    continue
                if section_changes[section_id] > 0:
                    raise RecordConflictError(f"section {section_id} has no free seats") from exc
                raise RecordConflictError(f"section {section_id} has no enrolled seat to release") from exc
            raise StaleWriteError("roster changed since it was read") from exc

    @staticmethod
    def _roster_update(roster: CourseRoster) -> dict[str, Any]:
        attributes = roster.next_version().enrollment_attributes()
        return {
            "Key": {"courseId": roster.course_id},
            "UpdateExpression": _ROSTER_UPDATE_EXPRESSION,
            "ConditionExpression": _ROSTER_CONDITION,
            "ExpressionAttributeNames": dict(_ROSTER_NAMES),
            "ExpressionAttributeValues": {
                ":enrollment": attributes["enrollment"],
                ":count": attributes["currentEnrollment"],
                ":next": attributes["version"],
                ":expected": roster.version,
                ":updatedAt": utc_now_rfc3339(),
            },
        }

    def _section_update(self, section_id: str, delta: int) -> dict[str, Any]:
        if self._sections is None:
            raise RuntimeError("server misconfiguration: SECTIONS_TABLE missing")
        if delta > 0:
            condition = "attribute_exists(sectionId) AND #count < #max"
        else:
            condition = "attribute_exists(sectionId) AND #count > :zero"
        request = {
            "Key": {"sectionId": section_id},
            "UpdateExpression": "ADD #count :delta",
            "ConditionExpression": condition,
            "ExpressionAttributeNames": dict(_SECTION_NAMES),
            "ExpressionAttributeValues": {":delta": delta},
        }
        if delta < 0:
            request["ExpressionAttributeValues"][":zero"] = 0
        return self._serialized(self._sections.name, request)

    def _submission_repoint(
        self,
        table_name: str,
        submission_id: str,
        from_course_id: str,
        to_course_id: str,
    ) -> dict[str, Any]:
        return self._serialized(
            table_name,
            {
                "Key": {"submissionId": submission_id},
                "UpdateExpression": "SET #course = :to, #updated = :updatedAt",
                "ConditionExpression": "#course = :from",
                "ExpressionAttributeNames": {"#course": "courseId", "#updated": "updatedAt"},
                "ExpressionAttributeValues": {
                    ":to": to_course_id,
                    ":from": from_course_id,
                    ":updatedAt": utc_now_rfc3339(),
                },
            },
        )

    @staticmethod
    def _serialized(table_name: str, request: Mapping[str, Any]) -> dict[str, Any]:
        """Convert a resource-style request into the low-level client wire shape."""
        from boto3.dynamodb.types import TypeSerializer

        serializer = TypeSerializer()
        serialized: dict[str, Any] = {"TableName": table_name}
        for field, value in request.items():
            if field in {"Key", "ExpressionAttributeValues"}:
                serialized[field] = {name: serializer.serialize(raw) for name, raw in value.items()}
            else:
                serialized[field] = value
        return serialized
