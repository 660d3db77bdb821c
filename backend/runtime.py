"""API Gateway proxy entrypoint that routes every /api request to a workflow module."""

from __future__ import annotations

import json
import logging
import os
import re
from decimal import Decimal
from typing import Any, Callable, Dict, Mapping

from backend import (
    courses,
    enrollment_workflow,
    grade_export,
    grading_workflow,
    moderation,
    notifications,
    peer_reviews,
    submissions,
    tables,
    uploads,
)
from backend.auth import ROLE_INSTRUCTOR, ROLE_STUDENT, Principal, authenticate
from backend.email_notifications import Mailer
from backend.identity_client import CognitoIdentityClient, IdentityProviderError
from classcast.enrollment import DynamoDbCourseRosterStore, EnrollmentConfig
from classcast.errors import ConcurrentUpdateError, CorruptRecordError, RecordConflictError, RecordNotFoundError
from coursework.models import from_dynamodb_number

logger = logging.getLogger(__name__)

_API_PREFIX = "/api"
_COURSE_ROUTE = re.compile(r"/courses/([^/]+)")
_COURSE_ACTION_ROUTE = re.compile(r"/courses/([^/]+)/(publish|archive|sections|assignments)")
_REMOVE_STUDENT_ROUTE = re.compile(r"/instructor/courses/([^/]+)/students/([^/]+)")
_EXPORT_GRADES_ROUTE = re.compile(r"/instructor/courses/([^/]+)/export-grades")
_RESERVED_COURSE_SEGMENTS = frozenset({"enrollment", "bulk-enroll"})


def _json_default(value: Any) -> Any:
    if isinstance(value, Decimal):
        return from_dynamodb_number(value)
    if isinstance(value, (set, frozenset)):
        return sorted(value)
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


def _json_response(status_code: int, payload: Mapping[str, Any]) -> Dict[str, Any]:
    return {
        "statusCode": status_code,
        "headers": {"Content-Type": "application/json"},
        "body": json.dumps(payload, default=_json_default),
    }


def _text_response(
    status_code: int,
    payload: str,
    *,
    content_type: str,
    extra_headers: Mapping[str, str] | None = None,
) -> Dict[str, Any]:
    return {
        "statusCode": status_code,
        "headers": {"Content-Type": content_type, **dict(extra_headers or {})},
        "body": payload,
    }


def _success(status_code: int, data: Any) -> Dict[str, Any]:
    return _json_response(status_code, {"success": True, "data": data})


def _error(status_code: int, message: str) -> Dict[str, Any]:
    return _json_response(status_code, {"success": False, "error": message})


def _request_method(event: Mapping[str, Any]) -> str:
    if isinstance(event.get("requestContext"), dict):
        context = event["requestContext"]
        if isinstance(context.get("http"), dict):
            method = context["http"].get("method")
            if isinstance(method, str) and method:
                return method.upper()

    method = event.get("httpMethod", "")
    if isinstance(method, str):
        return method.upper()
    return ""


def _request_path(event: Mapping[str, Any]) -> str:
    raw_path = event.get("rawPath")
    if isinstance(raw_path, str) and raw_path:
        return raw_path

    path = event.get("path")
    if isinstance(path, str) and path:
        return path

    return "/"


def _normalized_path(event: Mapping[str, Any], path: str) -> str:
    """Strip API Gateway stage prefixes (for example '/dev') from request paths."""
    context = event.get("requestContext")
    if not isinstance(context, dict):
        return path

    stage = context.get("stage")
    if not isinstance(stage, str) or not stage.strip():
        return path

    stage_prefix = f"/{stage.strip()}"
    if path == stage_prefix:
        return "/"
    if path.startswith(f"{stage_prefix}/"):
        return path[len(stage_prefix) :]
    return path


def _api_path(path: str) -> str | None:
    """Route path below /api, or None for paths outside the API."""
    trimmed = path.rstrip("/") or "/"
    if trimmed == _API_PREFIX:
        return "/"
    if trimmed.startswith(f"{_API_PREFIX}/"):
        return trimmed[len(_API_PREFIX) :]
    return None


def _query_params(event: Mapping[str, Any]) -> dict[str, str]:
    raw = event.get("queryStringParameters")
    if not isinstance(raw, dict):
        return {}

    params: dict[str, str] = {}
    for key, value in raw.items():
        if isinstance(key, str) and isinstance(value, str):
            params[key] = value
    return params


def _parse_json_body(event: Mapping[str, Any]) -> tuple[dict[str, Any] | None, str | None]:
    body = event.get("body")

    if isinstance(body, dict):
        return body, None

    if not isinstance(body, str):
        return None, "request body must be a JSON object"

    try:
        decoded = json.loads(body)
    except json.JSONDecodeError:
        return None, "request body must be valid JSON"

    if not isinstance(decoded, dict):
        return None, "request body must be a JSON object"

    return decoded, None


def _require_non_empty_string(payload: Mapping[str, Any], field: str) -> str:
    value = payload.get(field)
    if not isinstance(value, str) or not value.strip():
        raise ValueError(f"{field} is required")
    return value.strip()


def _optional_query(params: Mapping[str, str], name: str) -> str | None:
    value = params.get(name, "").strip()
    return value or None


def _optional_table(env_name: str) -> Any | None:
    table_name = os.getenv(env_name, "").strip()
    if not table_name:
        return None
    return tables.dynamodb_table(table_name)


def _roster_store() -> DynamoDbCourseRosterStore:
    return DynamoDbCourseRosterStore(
        tables.required_table("COURSES_TABLE"),
        _optional_table("SECTIONS_TABLE"),
        client=tables.dynamodb_client(),
    )


def _identity_client() -> CognitoIdentityClient:
    return CognitoIdentityClient.from_env()


def _mailer() -> Mailer:
    return Mailer()


def _run(operation: Callable[[], Any], *, status_code: int = 200) -> Dict[str, Any]:
    """Execute one operation and map domain errors to HTTP statuses."""
    try:
        data = operation()
    except RecordNotFoundError as exc:
        return _error(404, str(exc))
    except RecordConflictError as exc:
        return _error(409, str(exc))
    except ConcurrentUpdateError as exc:
        return _error(409, str(exc))
    except PermissionError as exc:
        return _error(403, str(exc))
    except IdentityProviderError as exc:
        return _error(502, str(exc))
    except ValueError as exc:
        return _error(400, str(exc))
    except CorruptRecordError as exc:
        logger.error("Refusing to serve unreadable record: %s", exc)
        return _error(500, str(exc))
    except RuntimeError as exc:
        return _error(500, str(exc))
    except Exception:  # pragma: no cover - defensive runtime guard
        logger.exception("Unhandled error while serving request")
        return _error(500, "internal server error")
    return _success(status_code, data)


def _with_body(
    event: Mapping[str, Any],
    operation: Callable[[dict[str, Any]], Any],
    *,
    status_code: int = 200,
) -> Dict[str, Any]:
    payload, error = _parse_json_body(event)
    if error is not None or payload is None:
        return _error(400, error or "request body must be a JSON object")
    return _run(lambda: operation(payload), status_code=status_code)


def _handle_courses_collection(method: str, event: Mapping[str, Any], principal: Principal) -> Dict[str, Any]:
    if method == "GET":
        params = _query_params(event)
        return _run(
            lambda: courses.list_courses(
                tables.required_table("COURSES_TABLE"),
                instructor_id=_optional_query(params, "instructorId"),
                status=_optional_query(params, "status"),
            )
        )

    def create(payload: dict[str, Any]) -> dict[str, Any]:
        payload.setdefault("instructorId", principal.user_id)
        if principal.email:
            payload.setdefault("instructorEmail", principal.email)
        return courses.create_course(tables.required_table("COURSES_TABLE"), payload)

    return _with_body(event, create, status_code=201)


def _handle_course(method: str, event: Mapping[str, Any], course_id: str) -> Dict[str, Any]:
    if method == "GET":
        return _run(lambda: courses.get_course(tables.required_table("COURSES_TABLE"), course_id))
    if method == "PUT":
        return _with_body(
            event,
            lambda payload: courses.update_course(tables.required_table("COURSES_TABLE"), course_id, payload),
        )

    def delete() -> dict[str, Any]:
        courses.delete_course(tables.required_table("COURSES_TABLE"), course_id)
        return {"courseId": course_id, "deleted": True}

    return _run(delete)


def _handle_course_action(method: str, event: Mapping[str, Any], course_id: str, action: str) -> Dict[str, Any]:
    if action in {"publish", "archive"}:
        status = "published" if action == "publish" else "archived"
        return _run(lambda: courses.set_course_status(tables.required_table("COURSES_TABLE"), course_id, status))

    if action == "sections":
        if method == "GET":
            return _run(lambda: courses.list_sections(tables.required_table("SECTIONS_TABLE"), course_id))
        return _with_body(
            event,
            lambda payload: courses.create_section(
                tables.required_table("COURSES_TABLE"),
                tables.required_table("SECTIONS_TABLE"),
                course_id,
                payload,
            ),
            status_code=201,
        )

    if method == "GET":
        return _run(lambda: courses.list_assignments(tables.required_table("ASSIGNMENTS_TABLE"), course_id))
    return _with_body(
        event,
        lambda payload: courses.create_assignment(
            tables.required_table("COURSES_TABLE"),
            tables.required_table("ASSIGNMENTS_TABLE"),
            course_id,
            payload,
        ),
        status_code=201,
    )


def _handle_enrollment(method: str, event: Mapping[str, Any], principal: Principal) -> Dict[str, Any]:
    params = _query_params(event)

    if method == "GET":
        def roster() -> dict[str, Any]:
            course_id = _require_non_empty_string(params, "courseId")
            viewer_id = None if principal.is_instructor else principal.user_id
            return enrollment_workflow.get_roster(_roster_store(), course_id, viewer_id=viewer_id)

        return _run(roster)

    if method == "DELETE":
        def unenroll() -> dict[str, Any]:
            course_id = _require_non_empty_string(params, "courseId")
            student_id = params.get("studentId", "").strip() or principal.user_id
            if student_id != principal.user_id and not principal.is_instructor:
                raise PermissionError("students may only unenroll themselves")
            return enrollment_workflow.unenroll(
                store=_roster_store(),
                course_id=course_id,
                student_id=student_id,
                config=EnrollmentConfig.from_env(),
                mailer=_mailer(),
            )

        return _run(unenroll)

    def enroll(payload: dict[str, Any]) -> dict[str, Any]:
        course_id = _require_non_empty_string(payload, "courseId")
        student_id = str(payload.get("studentId") or principal.user_id).strip()
        if student_id != principal.user_id and not principal.is_instructor:
            raise PermissionError("students may only enroll themselves")
        section_id = payload.get("sectionId")
        return enrollment_workflow.enroll(
            store=_roster_store(),
            users_table=_optional_table("USERS_TABLE"),
            course_id=course_id,
            student_id=student_id,
            section_id=section_id if isinstance(section_id, str) and section_id.strip() else None,
            config=EnrollmentConfig.from_env(),
            mailer=_mailer(),
        )

    payload, error = _parse_json_body(event)
    if error is not None or payload is None:
        return _error(400, error or "request body must be a JSON object")
    return _run(lambda: enroll(payload))


def _handle_bulk_enroll(event: Mapping[str, Any]) -> Dict[str, Any]:
    def bulk(payload: dict[str, Any]) -> dict[str, Any]:
        course_id = _require_non_empty_string(payload, "courseId")
        return enrollment_workflow.bulk_enroll(
            store=_roster_store(),
            users_table=tables.required_table("USERS_TABLE"),
            identity=_identity_client(),
            course_id=course_id,
            students=payload.get("students"),
            config=EnrollmentConfig.from_env(),
            mailer=_mailer(),
        )

    return _with_body(event, bulk)


def _handle_move_student(event: Mapping[str, Any]) -> Dict[str, Any]:
    def move(payload: dict[str, Any]) -> dict[str, Any]:
        student_id = _require_non_empty_string(payload, "studentId")
        from_course_id = _require_non_empty_string(payload, "fromCourseId")
        to_course_id = _require_non_empty_string(payload, "toCourseId")
        return enrollment_workflow.move_student(
            store=_roster_store(),
            submissions_table=tables.required_table("SUBMISSIONS_TABLE"),
            student_id=student_id,
            from_course_id=from_course_id,
            to_course_id=to_course_id,
            config=EnrollmentConfig.from_env(),
        )

    return _with_body(event, move)


def _handle_remove_student(course_id: str, student_id: str) -> Dict[str, Any]:
    return _run(
        lambda: enrollment_workflow.remove_student(
            store=_roster_store(),
            submissions_table=tables.required_table("SUBMISSIONS_TABLE"),
            peer_responses_table=tables.required_table("PEER_RESPONSES_TABLE"),
            posts_table=tables.required_table("COMMUNITY_POSTS_TABLE"),
            comments_table=tables.required_table("COMMUNITY_COMMENTS_TABLE"),
            s3_client=tables.s3_client(),
            bucket=tables.required_env("VIDEO_BUCKET"),
            course_id=course_id,
            student_id=student_id,
            config=EnrollmentConfig.from_env(),
        )
    )


def _handle_export_grades(event: Mapping[str, Any], course_id: str) -> Dict[str, Any]:
    params = _query_params(event)
    export_format = (params.get("format") or "json").strip().lower()
    if export_format not in grade_export.EXPORT_FORMATS:
        return _error(400, f"format must be one of: {', '.join(grade_export.EXPORT_FORMATS)}")

    reports: list[grade_export.GradeReport] = []

    def export() -> dict[str, Any]:
        report = grade_export.export_grades(
            courses_table=tables.required_table("COURSES_TABLE"),
            assignments_table=tables.required_table("ASSIGNMENTS_TABLE"),
            submissions_table=tables.required_table("SUBMISSIONS_TABLE"),
            course_id=course_id,
            assignment_id=_optional_query(params, "assignmentId"),
        )
        reports.append(report)
        return report.to_mapping()

    response = _run(export)
    if export_format == "json" or not reports:
        return response
    report = reports[0]
    return _text_response(
        200,
        report.to_csv(),
        content_type="text/csv",
        extra_headers={"Content-Disposition": f'attachment; filename="{report.csv_filename()}"'},
    )


def _handle_video_submissions(method: str, event: Mapping[str, Any], principal: Principal) -> Dict[str, Any]:
    if method == "GET":
        params = _query_params(event)
        return _run(
            lambda: submissions.list_submissions(
                tables.required_table("SUBMISSIONS_TABLE"),
                assignment_id=_optional_query(params, "assignmentId"),
                student_id=_optional_query(params, "studentId"),
                course_id=_optional_query(params, "courseId"),
            )
        )

    if method == "PUT":
        if not principal.is_instructor:
            return _error(403, "instructor role required")
        return _with_body(
            event,
            lambda payload: submissions.grade_submission(tables.required_table("SUBMISSIONS_TABLE"), payload),
        )

    def create(payload: dict[str, Any]) -> dict[str, Any]:
        payload.setdefault("studentId", principal.user_id)
        return submissions.create_submission(
            submissions_table=tables.required_table("SUBMISSIONS_TABLE"),
            videos_table=_optional_table("VIDEOS_TABLE"),
            payload=payload,
            mailer=_mailer(),
        )

    return _with_body(event, create, status_code=201)


def _handle_grading(method: str, event: Mapping[str, Any], principal: Principal) -> Dict[str, Any]:
    if method == "GET":
        params = _query_params(event)
        return _run(
            lambda: grading_workflow.grading_queue(
                tables.required_table("SUBMISSIONS_TABLE"),
                assignment_id=_optional_query(params, "assignmentId"),
                course_id=_optional_query(params, "courseId"),
                status=_optional_query(params, "status"),
                limit=_optional_query(params, "limit"),
            )
        )

    if not principal.is_instructor:
        return _error(403, "instructor role required")

    if method == "PUT":
        return _with_body(
            event,
            lambda payload: grading_workflow.regrade(tables.required_table("SUBMISSIONS_TABLE"), payload),
        )

    def grade(payload: dict[str, Any]) -> dict[str, Any]:
        payload.setdefault("gradedBy", principal.user_id)
        return grading_workflow.grade(
            submissions_table=tables.required_table("SUBMISSIONS_TABLE"),
            assignments_table=_optional_table("ASSIGNMENTS_TABLE"),
            users_table=_optional_table("USERS_TABLE"),
            payload=payload,
            mailer=_mailer(),
        )

    return _with_body(event, grade)


def _handle_student_grades(event: Mapping[str, Any], principal: Principal) -> Dict[str, Any]:
    user_id = _optional_query(_query_params(event), "userId") or principal.user_id
    if user_id != principal.user_id and not principal.is_instructor:
        return _error(403, "students may only view their own grades")
    return _run(
        lambda: grading_workflow.student_grades(
            submissions_table=tables.required_table("SUBMISSIONS_TABLE"),
            assignments_table=_optional_table("ASSIGNMENTS_TABLE"),
            courses_table=_optional_table("COURSES_TABLE"),
            user_id=user_id,
        )
    )


def _handle_peer_reviews(method: str, event: Mapping[str, Any], principal: Principal) -> Dict[str, Any]:
    if method == "GET":
        params = _query_params(event)
        return _run(
            lambda: peer_reviews.list_reviews(
                tables.required_table("PEER_RESPONSES_TABLE"),
                submission_id=_optional_query(params, "submissionId"),
                reviewer_id=_optional_query(params, "reviewerId"),
            )
        )

    def create(payload: dict[str, Any]) -> dict[str, Any]:
        payload.setdefault("reviewerId", principal.user_id)
        return peer_reviews.create_review(
            peer_responses_table=tables.required_table("PEER_RESPONSES_TABLE"),
            submissions_table=tables.required_table("SUBMISSIONS_TABLE"),
            users_table=_optional_table("USERS_TABLE"),
            payload=payload,
        )

    return _with_body(event, create, status_code=201)


def _moderation_tables() -> moderation.ModerationTables:
    return moderation.ModerationTables(
        posts=tables.required_table("COMMUNITY_POSTS_TABLE"),
        comments=tables.required_table("COMMUNITY_COMMENTS_TABLE"),
        peer_responses=tables.required_table("PEER_RESPONSES_TABLE"),
        submissions=tables.required_table("SUBMISSIONS_TABLE"),
    )


def _handle_moderation(method: str, event: Mapping[str, Any], principal: Principal) -> Dict[str, Any]:
    if method == "GET":
        params = _query_params(event)
        return _run(
            lambda: moderation.moderation_queue(
                _moderation_tables(),
                content_type=(params.get("type") or "all").strip().lower(),
                course_id=_optional_query(params, "courseId"),
            )
        )
    return _with_body(
        event,
        lambda payload: moderation.remove_content(_moderation_tables(), payload, moderator_id=principal.user_id),
    )


def _handle_notifications(event: Mapping[str, Any], principal: Principal) -> Dict[str, Any]:
    params = _query_params(event)
    user_id = _optional_query(params, "userId") or principal.user_id
    if user_id != principal.user_id and not principal.is_instructor:
        return _error(403, "students may only read their own notifications")
    role = _optional_query(params, "role") or (ROLE_INSTRUCTOR if principal.is_instructor else ROLE_STUDENT)
    return _run(
        lambda: notifications.notification_feed(
            notifications.FeedTables(
                courses=tables.required_table("COURSES_TABLE"),
                assignments=tables.required_table("ASSIGNMENTS_TABLE"),
                submissions=tables.required_table("SUBMISSIONS_TABLE"),
                peer_responses=tables.required_table("PEER_RESPONSES_TABLE"),
            ),
            user_id=user_id,
            role=role,
        )
    )


def _route(method: str, path: str, event: Mapping[str, Any], context: Any, principal: Principal) -> Dict[str, Any] | None:
    instructor = principal.is_instructor

    if method == "POST" and path in {"/uploads", "/uploads/video"}:
        return uploads.lambda_handler(event, context)

    if path == "/courses" and method in {"GET", "POST"}:
        if method == "POST" and not instructor:
            return _error(403, "instructor role required")
        return _handle_courses_collection(method, event, principal)

    if path == "/courses/enrollment" and method in {"GET", "POST", "DELETE"}:
        return _handle_enrollment(method, event, principal)

    if path == "/courses/bulk-enroll" and method == "POST":
        return _handle_bulk_enroll(event) if instructor else _error(403, "instructor role required")

    match = _COURSE_ACTION_ROUTE.fullmatch(path)
    if match:
        course_id, action = match.groups()
        allowed = {"GET", "POST"} if action in {"sections", "assignments"} else {"POST"}
        if method not in allowed:
            return None
        if method != "GET" and not instructor:
            return _error(403, "instructor role required")
        return _handle_course_action(method, event, course_id, action)

    match = _COURSE_ROUTE.fullmatch(path)
    if match and match.group(1) not in _RESERVED_COURSE_SEGMENTS and method in {"GET", "PUT", "DELETE"}:
        if method != "GET" and not instructor:
            return _error(403, "instructor role required")
        return _handle_course(method, event, match.group(1))

    if path == "/instructor/students/move-course" and method == "POST":
        return _handle_move_student(event) if instructor else _error(403, "instructor role required")

    match = _EXPORT_GRADES_ROUTE.fullmatch(path)
    if match and method == "GET":
        return _handle_export_grades(event, match.group(1)) if instructor else _error(403, "instructor role required")

    match = _REMOVE_STUDENT_ROUTE.fullmatch(path)
    if match and method == "DELETE":
        if not instructor:
            return _error(403, "instructor role required")
        return _handle_remove_student(*match.groups())

    if path == "/video-submissions" and method in {"GET", "POST", "PUT"}:
        return _handle_video_submissions(method, event, principal)

    if path == "/grading" and method in {"GET", "POST", "PUT"}:
        return _handle_grading(method, event, principal)

    if path == "/student/grades" and method == "GET":
        return _handle_student_grades(event, principal)

    if path == "/peer/reviews" and method in {"GET", "POST"}:
        return _handle_peer_reviews(method, event, principal)

    if path == "/instructor/moderation/posts" and method in {"GET", "DELETE"}:
        return _handle_moderation(method, event, principal) if instructor else _error(403, "instructor role required")

    if path == "/notifications" and method == "GET":
        return _handle_notifications(event, principal)

    return None


def lambda_handler(event: Mapping[str, Any], context: Any) -> Dict[str, Any]:
    """API Gateway Lambda entrypoint for every /api route."""
    method = _request_method(event)
    path = _api_path(_normalized_path(event, _request_path(event)))
    if path is None:
        return _error(404, "not found")

    if method == "GET" and path == "/health":
        return _success(200, {"status": "ok"})

    principal = authenticate(event)
    if principal is None:
        return _error(401, "authenticated principal is required")

    response = _route(method, path, event, context, principal)
    if response is None:
        return _error(404, "not found")
    return response
