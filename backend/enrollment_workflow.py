"""Enrollment API operations: single and bulk enroll, unenroll, moves and cascade removal."""

from __future__ import annotations

import logging
import re
from typing import Any, Mapping, Sequence
from urllib.parse import unquote, urlparse

from botocore.exceptions import ClientError

from backend import email_notifications
from backend.email_notifications import Mailer
from backend.identity_client import CognitoIdentityClient, IdentityProviderError
from backend.tables import get_item, scan_all
from classcast.enrollment import (
    STATUS_WAITLISTED,
    CourseRosterStore,
    EnrollmentConfig,
    StudentProfile,
    enroll_student,
    move_student as move_roster_entry,
    unenroll_student,
    utc_now_rfc3339,
)
from classcast.errors import AlreadyEnrolledError, ConcurrentUpdateError, RecordConflictError, RecordNotFoundError

logger = logging.getLogger(__name__)

S3_DELETE_BATCH_SIZE = 1000
_EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


def _display_name(profile: StudentProfile) -> str:
    return " ".join(part for part in (profile.first_name, profile.last_name) if part).strip()


def student_profile(users_table: Any | None, student_id: str) -> StudentProfile:
    """Profile fields copied into roster entries; missing users get an id-only profile."""
    if users_table is None:
        return StudentProfile(user_id=student_id)
    item = get_item(users_table, {"userId": student_id})
    if item is None:
        return StudentProfile(user_id=student_id)
    return StudentProfile(
        user_id=student_id,
        email=str(item.get("email") or ""),
        first_name=str(item.get("firstName") or ""),
        last_name=str(item.get("lastName") or ""),
    )


def _require_roster(store: CourseRosterStore, course_id: str) -> Any:
    roster = store.load(course_id)
    if roster is None:
        raise RecordNotFoundError(f"course {course_id} not found")
    return roster


def get_roster(store: CourseRosterStore, course_id: str, *, viewer_id: str | None = None) -> dict[str, Any]:
    """Course roster; with ``viewer_id`` only that student's own rows are listed."""
    roster = _require_roster(store, course_id).to_api_dict()
    if viewer_id is not None:
        roster["students"] = [row for row in roster["students"] if row.get("userId") == viewer_id]
        roster["waitlist"] = [row for row in roster["waitlist"] if row.get("userId") == viewer_id]
    return roster


def enroll(
    *,
    store: CourseRosterStore,
    users_table: Any | None,
    course_id: str,
    student_id: str,
    section_id: str | None = None,
    config: EnrollmentConfig | None = None,
    mailer: Mailer | None = None,
) -> dict[str, Any]:
    profile = student_profile(users_table, student_id)
    outcome = enroll_student(
        store=store,
        course_id=course_id,
        student=profile,
        section_id=section_id,
        config=config,
    )

    if mailer is not None and outcome.roster.instructor_email:
        mailer.send(
            outcome.roster.instructor_email,
            email_notifications.enrollment_notice(
                course_title=outcome.roster.title or course_id,
                student_name=_display_name(profile),
                student_email=profile.email,
                status=outcome.status,
            ),
        )

    response: dict[str, Any] = {
        "courseId": course_id,
        "studentId": student_id,
        "status": outcome.status,
        "currentEnrollment": outcome.roster.current_enrollment,
    }
    if outcome.status == STATUS_WAITLISTED:
        response["waitlistPosition"] = outcome.waitlist_position
    return response


def unenroll(
    *,
    store: CourseRosterStore,
    course_id: str,
    student_id: str,
    config: EnrollmentConfig | None = None,
    mailer: Mailer | None = None,
) -> dict[str, Any]:
    outcome = unenroll_student(store=store, course_id=course_id, student_id=student_id, config=config)

    promoted = outcome.promoted
    if promoted is not None and mailer is not None and promoted.email:
        mailer.send(
            promoted.email,
            email_notifications.waitlist_promotion(
                course_title=outcome.roster.title or course_id,
                first_name=promoted.first_name,
                course_url=mailer.config.link(f"/student/courses/{course_id}"),
            ),
        )

    return {
        "courseId": course_id,
        "studentId": student_id,
        "currentEnrollment": outcome.roster.current_enrollment,
        "promotedStudentId": promoted.user_id if promoted is not None else None,
    }


def bulk_enroll(
    *,
    store: CourseRosterStore,
    users_table: Any,
    identity: CognitoIdentityClient,
    course_id: str,
    students: Any,
    config: EnrollmentConfig | None = None,
    mailer: Mailer | None = None,
) -> dict[str, Any]:
    """Create missing student accounts and enroll each student, reporting per row.

    Rows are processed in order and never abort the batch; a student who is
    already enrolled counts as successful.
    """
    roster = _require_roster(store, course_id)
    if not isinstance(students, list) or not students:
        raise ValueError("students must be a non-empty list")

    users_by_email: dict[str, dict[str, Any]] = {}
    for row in scan_all(users_table):
        email = str(row.get("email") or "").strip().lower()
        if email:
            users_by_email.setdefault(email, row)

    results: list[dict[str, Any]] = []
    errors: list[str] = []
    for raw in students:
        entry = raw if isinstance(raw, Mapping) else {}
        email = str(entry.get("email") or "").strip()
        first_name = str(entry.get("firstName") or "").strip()
        last_name = str(entry.get("lastName") or "").strip()
        result: dict[str, Any] = {"email": email, "success": False, "userId": None, "invitationSent": False}
        results.append(result)

        if not _EMAIL_PATTERN.match(email):
            result["error"] = "Invalid email address"
            errors.append(f"{email or '<missing>'}: Invalid email address")
            continue

        try:
            existing = users_by_email.get(email.lower())
            if existing is not None:
                user_id = str(existing["userId"])
                first_name = first_name or str(existing.get("firstName") or "")
                last_name = last_name or str(existing.get("lastName") or "")
            else:
                account = identity.create_student_account(email=email, first_name=first_name, last_name=last_name)
                user_id = account.user_id
                result["userId"] = user_id
                now = utc_now_rfc3339()
                user_item = {
                    "userId": user_id,
                    "email": email,
                    "firstName": first_name,
                    "lastName": last_name,
                    "role": "student",
                    "createdAt": now,
                    "updatedAt": now,
                }
                users_table.put_item(Item=user_item)
                users_by_email[email.lower()] = user_item
                if account.temporary_password and mailer is not None:
                    result["invitationSent"] = mailer.send(
                        email,
                        email_notifications.bulk_welcome(
                            course_title=roster.title or course_id,
                            first_name=first_name,
                            email=email,
                            temporary_password=account.temporary_password,
                            login_url=mailer.config.link("/login"),
                        ),
                    )
            result["userId"] = user_id

            outcome = enroll_student(
                store=store,
                course_id=course_id,
                student=StudentProfile(user_id=user_id, email=email, first_name=first_name, last_name=last_name),
                config=config,
            )
            result["success"] = True
            result["status"] = outcome.status
        except AlreadyEnrolledError:
            result["success"] = True
            result["error"] = "Already enrolled"
        except (IdentityProviderError, RecordConflictError, RecordNotFoundError, ConcurrentUpdateError, ValueError) as exc:
            result["error"] = str(exc)
            errors.append(f"{email}: {exc}")
        except ClientError as exc:
            logger.exception("Bulk enrollment row failed for %s in course %s", email, course_id)
            result["error"] = str(exc)
            errors.append(f"{email}: {exc}")

    successful = sum(1 for row in results if row["success"])
    logger.info("Bulk enrollment for course %s: %s of %s succeeded", course_id, successful, len(results))
    return {
        "total": len(results),
        "successful": successful,
        "failed": len(results) - successful,
        "errors": errors,
        "results": results,
    }


def move_student(
    *,
    store: CourseRosterStore,
    submissions_table: Any,
    student_id: str,
    from_course_id: str,
    to_course_id: str,
    config: EnrollmentConfig | None = None,
) -> dict[str, Any]:
    move_roster_entry(
        store=store,
        student_id=student_id,
        from_course_id=from_course_id,
        to_course_id=to_course_id,
        config=config,
    )

    submission_ids = [
        str(row["submissionId"])
        for row in scan_all(
            submissions_table,
            lambda row: row.get("studentId") == student_id and row.get("courseId") == from_course_id,
        )
    ]
    updated = 0
    if submission_ids:
        updated = store.repoint_submissions(
            submissions_table.name,
            submission_ids,
            from_course_id=from_course_id,
            to_course_id=to_course_id,
        )
    return {
        "studentId": student_id,
        "fromCourseId": from_course_id,
        "toCourseId": to_course_id,
        "submissionsUpdated": updated,
    }


def s3_key_for_url(url: Any, bucket: str) -> str | None:
    """Object key when ``url`` points into ``bucket`` (virtual-host or path style)."""
    if not isinstance(url, str) or not url.strip() or not bucket:
        return None
    parsed = urlparse(url.strip())
    host = parsed.netloc.lower()
    path = unquote(parsed.path.lstrip("/"))
    if parsed.scheme == "s3":
        if host != bucket.lower():
            return None
        return path or None
    if host.startswith(f"{bucket.lower()}.s3"):
        return path or None
    if host.startswith("s3") and path.startswith(f"{bucket}/"):
        return path[len(bucket) + 1 :] or None
    return None


def _submission_keys(submission: Mapping[str, Any], bucket: str) -> list[str]:
    keys: list[str] = []
    s3_key = submission.get("s3Key")
    if isinstance(s3_key, str) and s3_key.strip():
        keys.append(s3_key.strip())
    for field in ("videoUrl", "thumbnailUrl"):
        key = s3_key_for_url(submission.get(field), bucket)
        if key and key not in keys:
            keys.append(key)
    return keys


def delete_s3_objects(s3_client: Any, bucket: str, keys: Sequence[str]) -> tuple[int, list[str]]:
    """Delete keys in DeleteObjects batches; returns (deleted count, per-key errors)."""
    deleted = 0
    errors: list[str] = []
    unique = list(dict.fromkeys(keys))
    for start in range(0, len(unique), S3_DELETE_BATCH_SIZE):
        chunk = unique[start : start + S3_DELETE_BATCH_SIZE]
        try:
            response = s3_client.delete_objects(
                Bucket=bucket,
                Delete={"Objects": [{"Key": key} for key in chunk], "Quiet": False},
            )
        except Exception as exc:  # noqa: BLE001
            logger.exception("S3 batch delete failed for %s key(s) in %s", len(chunk), bucket)
            errors.extend(f"{key}: {exc}" for key in chunk)
            continue
        deleted += len(response.get("Deleted", []))
        for failure in response.get("Errors", []):
            errors.append(f"{failure.get('Key')}: {failure.get('Message') or failure.get('Code')}")
    return deleted, errors


def remove_student(
    *,
    store: CourseRosterStore,
    submissions_table: Any,
    peer_responses_table: Any,
    posts_table: Any,
    comments_table: Any,
    s3_client: Any,
    bucket: str,
    course_id: str,
    student_id: str,
    config: EnrollmentConfig | None = None,
) -> dict[str, Any]:
    """Remove a student from a course together with everything they created in it.

    Content is deleted first and the roster entry last, so a failed run can be
    repeated. Object storage failures are reported per key and do not stop
    the removal.
    """
    roster = _require_roster(store, course_id)
    if roster.find_student(student_id) is None and roster.waitlist_position(student_id) is None:
        raise RecordNotFoundError(f"student {student_id} is not enrolled in course {course_id}")

    report: dict[str, Any] = {
        "studentRemoved": False,
        "submissionsDeleted": 0,
        "peerResponsesDeleted": 0,
        "communityPostsDeleted": 0,
        "communityCommentsDeleted": 0,
        "s3ObjectsDeleted": 0,
        "s3Errors": [],
        "errors": [],
    }

    keys: list[str] = []
    submissions = scan_all(
        submissions_table,
        lambda row: row.get("studentId") == student_id and row.get("courseId") == course_id,
    )
    with submissions_table.batch_writer() as batch:
        for submission in submissions:
            keys.extend(_submission_keys(submission, bucket))
            batch.delete_item(Key={"submissionId": submission["submissionId"]})
    report["submissionsDeleted"] = len(submissions)

    responses = scan_all(
        peer_responses_table,
        lambda row: row.get("reviewerId") == student_id and row.get("courseId") == course_id,
    )
    with peer_responses_table.batch_writer() as batch:
        for response in responses:
            batch.delete_item(Key={"reviewId": response["reviewId"]})
    report["peerResponsesDeleted"] = len(responses)

    posts = scan_all(posts_table, lambda row: row.get("userId") == student_id and row.get("courseId") == course_id)
    with posts_table.batch_writer() as batch:
        for post in posts:
            batch.delete_item(Key={"postId": post["postId"]})
    report["communityPostsDeleted"] = len(posts)

    post_ids = {str(post["postId"]) for post in scan_all(posts_table, lambda row: row.get("courseId") == course_id)}
    post_ids.update(str(post["postId"]) for post in posts)
    comments = scan_all(
        comments_table,
        lambda row: row.get("userId") == student_id and str(row.get("postId")) in post_ids,
    )
    with comments_table.batch_writer() as batch:
        for comment in comments:
            batch.delete_item(Key={"commentId": comment["commentId"]})
    report["communityCommentsDeleted"] = len(comments)

    if keys:
        deleted, s3_errors = delete_s3_objects(s3_client, bucket, keys)
        report["s3ObjectsDeleted"] = deleted
        report["s3Errors"] = s3_errors

    try:
        unenroll_student(store=store, course_id=course_id, student_id=student_id, config=config)
        report["studentRemoved"] = True
    except RecordNotFoundError:
        report["studentRemoved"] = True
    except ConcurrentUpdateError as exc:
        report["errors"].append(str(exc))

    logger.info(
        "Removed student %s from course %s: %s submission(s), %s object(s)",
        student_id,
        course_id,
        report["submissionsDeleted"],
        report["s3ObjectsDeleted"],
    )
    return report
