"""Presigned S3 upload flow for course files and assignment videos."""

from __future__ import annotations

import json
import logging
import os
import re
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Callable, Dict, Mapping, Protocol

from backend.auth import authenticate

logger = logging.getLogger(__name__)

ALLOWED_CONTENT_TYPES = frozenset(
    {
        "image/jpeg",
        "image/png",
        "image/gif",
        "image/webp",
        "video/mp4",
        "video/quicktime",
        "video/x-msvideo",
        "video/x-ms-wmv",
        "video/webm",
        "video/ogg",
        "audio/mpeg",
        "audio/wav",
        "audio/mp4",
        "audio/ogg",
        "audio/webm",
        "application/pdf",
        "text/plain",
        "application/msword",
        "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
        "application/vnd.ms-excel",
        "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
        "application/zip",
        "application/x-rar-compressed",
    }
)
DEFAULT_VIDEO_TYPES = (
    "video/mp4",
    "video/avi",
    "video/mov",
    "video/wmv",
    "video/flv",
    "video/webm",
    "video/mkv",
    "video/quicktime",
)
UPLOAD_TYPES = frozenset({"assignment", "lecture", "presentation", "demo", "other"})
MAX_VIDEO_FILE_BYTES = 100 * 1024 * 1024
MAX_OTHER_FILE_BYTES = 10 * 1024 * 1024
UPLOAD_URL_EXPIRY_SECONDS = 3600
MIN_VIDEO_EXPIRY_SECONDS = 300
MAX_VIDEO_EXPIRY_SECONDS = 86400
MAX_FILE_NAME_LENGTH = 255
_VIDEO_FILE_NAME_PATTERN = re.compile(r"^[a-zA-Z0-9._-]+$")
_SEGMENT_PATTERN = re.compile(r"^[A-Za-z0-9._-]+$")


class UploadValidationError(ValueError):
    """Raised when upload requests violate API constraints."""


class S3PresignClient(Protocol):
    """Protocol for the boto3 S3 client method used by this module."""

    def generate_presigned_url(
        self,
        ClientMethod: str,  # noqa: N803 - boto3 naming
        Params: Dict[str, Any],  # noqa: N803 - boto3 naming
        ExpiresIn: int,  # noqa: N803 - boto3 naming
        HttpMethod: str | None = ...,  # noqa: N803 - boto3 naming
    ) -> str: ...


def _positive_int_env(source: Mapping[str, str], name: str, default: int) -> int:
    raw = str(source.get(name, "")).strip()
    if not raw:
        return default
    try:
        parsed = int(raw)
    except ValueError:
        return default
    return parsed if parsed > 0 else default


@dataclass(frozen=True)
class VideoUploadConfig:
    """Limits applied to assignment video uploads."""

    max_size_mb: int = 500
    expiry_seconds: int = UPLOAD_URL_EXPIRY_SECONDS
    allowed_types: tuple[str, ...] = DEFAULT_VIDEO_TYPES

    @property
    def max_size_bytes(self) -> int:
        return self.max_size_mb * 1024 * 1024

    @classmethod
    def from_env(cls, env: Mapping[str, str] | None = None) -> "VideoUploadConfig":
        source = os.environ if env is None else env
        raw_types = str(source.get("ALLOWED_VIDEO_TYPES", "")).strip()
        allowed = tuple(value.strip() for value in raw_types.split(",") if value.strip()) if raw_types else ()
        return cls(
            max_size_mb=_positive_int_env(source, "MAX_VIDEO_SIZE_MB", 500),
            expiry_seconds=_positive_int_env(source, "UPLOAD_EXPIRY_SECONDS", UPLOAD_URL_EXPIRY_SECONDS),
            allowed_types=allowed or DEFAULT_VIDEO_TYPES,
        )


@dataclass(frozen=True)
class UploadRequest:
    """Validated general file upload payload."""

    file_name: str
    content_type: str
    folder: str = "uploads"
    file_size: int | None = None


@dataclass(frozen=True)
class VideoUploadRequest:
    """Validated assignment video upload payload."""

    file_name: str
    file_type: str
    file_size: int
    assignment_id: str
    course_id: str
    expires_in: int
    upload_type: str = "assignment"


def _require_non_empty_string(payload: Mapping[str, Any], field: str) -> str:
    value = payload.get(field)
    if not isinstance(value, str) or not value.strip():
        raise UploadValidationError(f"'{field}' must be a non-empty string")
    return value.strip()


def _require_key_segment(payload: Mapping[str, Any], field: str) -> str:
    value = _require_non_empty_string(payload, field)
    if not _SEGMENT_PATTERN.match(value):
        raise UploadValidationError(f"'{field}' must contain only letters, numbers, '.', '_' or '-'")
    return value


def parse_upload_request(payload: Mapping[str, Any]) -> UploadRequest:
    """Validate a general upload payload."""
    file_name = _require_non_empty_string(payload, "fileName")
    content_type = _require_non_empty_string(payload, "contentType")
    file_size = payload.get("fileSize")

    basename = Path(file_name).name
    if basename != file_name or basename in {"", ".", ".."}:
        raise UploadValidationError("'fileName' must be a bare file name")

    if content_type not in ALLOWED_CONTENT_TYPES:
        raise UploadValidationError(f"'contentType' {content_type} is not allowed")

    if file_size is not None:
        if isinstance(file_size, bool) or not isinstance(file_size, int) or file_size <= 0:
            raise UploadValidationError("'fileSize' must be a positive integer")
        is_video = content_type.startswith("video/")
        limit = MAX_VIDEO_FILE_BYTES if is_video else MAX_OTHER_FILE_BYTES
        if file_size > limit:
            raise UploadValidationError(f"file size exceeds {'100MB' if is_video else '10MB'} limit")

    folder = payload.get("folder") or "uploads"
    if not isinstance(folder, str) or not _SEGMENT_PATTERN.match(folder):
        raise UploadValidationError("'folder' must contain only letters, numbers, '.', '_' or '-'")

    return UploadRequest(file_name=basename, content_type=content_type, folder=folder, file_size=file_size)


def parse_video_upload_request(payload: Mapping[str, Any], config: VideoUploadConfig) -> VideoUploadRequest:
    """Validate an assignment video upload payload against the configured limits."""
    file_name = _require_non_empty_string(payload, "fileName")
    if len(file_name) > MAX_FILE_NAME_LENGTH:
        raise UploadValidationError(f"'fileName' must be at most {MAX_FILE_NAME_LENGTH} characters")
    if not _VIDEO_FILE_NAME_PATTERN.match(file_name):
        raise UploadValidationError("'fileName' may contain only letters, numbers, '.', '_' or '-'")

    file_type = _require_non_empty_string(payload, "fileType")
    if file_type not in config.allowed_types:
        raise UploadValidationError(f"'fileType' must be one of: {', '.join(config.allowed_types)}")

    file_size = payload.get("fileSize")
    if isinstance(file_size, bool) or not isinstance(file_size, int) or file_size <= 0:
        raise UploadValidationError("'fileSize' must be a positive integer")
    if file_size > config.max_size_bytes:
        raise UploadValidationError(f"file size exceeds {config.max_size_mb}MB limit")

    expires_in = payload.get("expiresIn", config.expiry_seconds)
    if isinstance(expires_in, bool) or not isinstance(expires_in, int):
        raise UploadValidationError("'expiresIn' must be an integer")
    if expires_in < MIN_VIDEO_EXPIRY_SECONDS or expires_in > MAX_VIDEO_EXPIRY_SECONDS:
        raise UploadValidationError(
            f"'expiresIn' must be between {MIN_VIDEO_EXPIRY_SECONDS} and {MAX_VIDEO_EXPIRY_SECONDS} seconds"
        )

    upload_type = payload.get("uploadType") or "assignment"
    if upload_type not in UPLOAD_TYPES:
        raise UploadValidationError(f"'uploadType' must be one of: {', '.join(sorted(UPLOAD_TYPES))}")

    return VideoUploadRequest(
        file_name=file_name,
        file_type=file_type,
        file_size=file_size,
        assignment_id=_require_key_segment(payload, "assignmentId"),
        course_id=_require_key_segment(payload, "courseId"),
        expires_in=expires_in,
        upload_type=upload_type,
    )


def build_s3_key(upload: UploadRequest, *, user_id: str, object_id: str) -> str:
    return f"{upload.folder}/{user_id}/{object_id}-{upload.file_name}"


def build_video_s3_key(upload: VideoUploadRequest, *, user_id: str, epoch_millis: int) -> str:
    """Key layout groups videos by course, assignment and student."""
    return f"{upload.course_id}/{upload.assignment_id}/{user_id}/{epoch_millis}_{upload.file_name}"


def create_upload(
    payload: Mapping[str, Any],
    *,
    user_id: str,
    bucket: str,
    s3_client: S3PresignClient,
    expires_in_seconds: int = UPLOAD_URL_EXPIRY_SECONDS,
    id_factory: Callable[[], str] | None = None,
) -> Dict[str, Any]:
    """Validate request and produce upload metadata + presigned S3 URL."""
    if not bucket:
        raise ValueError("bucket is required")

    upload = parse_upload_request(payload)
    object_id = (id_factory or (lambda: str(uuid.uuid4())))()
    key = build_s3_key(upload, user_id=user_id, object_id=object_id)

    upload_url = s3_client.generate_presigned_url(
        "put_object",
        Params={
            "Bucket": bucket,
            "Key": key,
            "ContentType": upload.content_type,
        },
        ExpiresIn=expires_in_seconds,
        HttpMethod="PUT",
    )

    return {
        "uploadUrl": upload_url,
        "key": key,
        "fileName": upload.file_name,
        "expiresInSeconds": expires_in_seconds,
        "contentType": upload.content_type,
    }


def create_video_upload(
    payload: Mapping[str, Any],
    *,
    user_id: str,
    bucket: str,
    s3_client: S3PresignClient,
    config: VideoUploadConfig | None = None,
    clock: Callable[[], datetime] | None = None,
) -> Dict[str, Any]:
    """Validate a video upload request and presign a PUT carrying upload metadata."""
    if not bucket:
        raise ValueError("bucket is required")

    upload = parse_video_upload_request(payload, config or VideoUploadConfig.from_env())
    now = (clock or (lambda: datetime.now(timezone.utc)))()
    key = build_video_s3_key(upload, user_id=user_id, epoch_millis=int(now.timestamp() * 1000))

    upload_url = s3_client.generate_presigned_url(
        "put_object",
        Params={
            "Bucket": bucket,
            "Key": key,
            "ContentType": upload.file_type,
            "Metadata": {
                "assignment-id": upload.assignment_id,
                "course-id": upload.course_id,
                "user-id": user_id,
                "upload-type": upload.upload_type,
            },
        },
        ExpiresIn=upload.expires_in,
        HttpMethod="PUT",
    )
    logger.info("Presigned video upload %s for user %s", key, user_id)

    expires_at = now + timedelta(seconds=upload.expires_in)
    return {
        "uploadUrl": upload_url,
        "key": key,
        "expiresInSeconds": upload.expires_in,
        "expiresAt": expires_at.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ"),
        "contentType": upload.file_type,
    }


def _build_json_response(status_code: int, payload: Mapping[str, Any]) -> Dict[str, Any]:
    """Build API Gateway Lambda proxy response."""
    origin = os.getenv("CORS_ALLOW_ORIGIN", "*").strip() or "*"
    methods = os.getenv("CORS_ALLOW_METHODS", "GET,POST,OPTIONS").strip() or "GET,POST,OPTIONS"
    allow_headers = os.getenv(
        "CORS_ALLOW_HEADERS",
        "Content-Type,Authorization,X-Amz-Date,X-Api-Key,X-Amz-Security-Token",
    ).strip() or "Content-Type,Authorization,X-Amz-Date,X-Api-Key,X-Amz-Security-Token"
    return {
        "statusCode": status_code,
        "headers": {
            "Content-Type": "application/json",
            "Access-Control-Allow-Origin": origin,
            "Access-Control-Allow-Methods": methods,
            "Access-Control-Allow-Headers": allow_headers,
        },
        "body": json.dumps(payload),
    }


def _error(status_code: int, message: str) -> Dict[str, Any]:
    return _build_json_response(status_code, {"success": False, "error": message})


def _load_json_body(event: Mapping[str, Any]) -> Mapping[str, Any]:
    body = event.get("body")
    if isinstance(body, dict):
        return body
    if isinstance(body, str):
        parsed = json.loads(body)
        if not isinstance(parsed, dict):
            raise UploadValidationError("request body must be a JSON object")
        return parsed
    raise UploadValidationError("request body must be a JSON object")


def _is_video_route(event: Mapping[str, Any]) -> bool:
    path = event.get("rawPath") or event.get("path") or ""
    return isinstance(path, str) and path.rstrip("/").endswith("/uploads/video")


def create_default_s3_client() -> S3PresignClient:
    """Create boto3 S3 client lazily to keep test dependencies small."""
    import boto3

    return boto3.client("s3")


def lambda_handler(
    event: Mapping[str, Any],
    _context: Any,
    *,
    s3_client: S3PresignClient | None = None,
) -> Dict[str, Any]:
    """Lambda entrypoint for POST /uploads and POST /uploads/video."""
    principal = authenticate(event)
    if principal is None:
        return _error(401, "authenticated principal is required")

    bucket = os.getenv("VIDEO_BUCKET", "").strip()
    if not bucket:
        return _error(500, "server misconfiguration: VIDEO_BUCKET missing")

    client = s3_client or create_default_s3_client()

    try:
        payload = _load_json_body(event)
        if _is_video_route(event):
            response = create_video_upload(payload, user_id=principal.user_id, bucket=bucket, s3_client=client)
        else:
            response = create_upload(payload, user_id=principal.user_id, bucket=bucket, s3_client=client)
        return _build_json_response(200, {"success": True, "data": response})
    except UploadValidationError as exc:
        return _error(400, str(exc))
    except json.JSONDecodeError:
        return _error(400, "request body must be valid JSON")
