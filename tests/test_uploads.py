"""Unit tests for presigned course file and video upload flows."""

from __future__ import annotations

import json
import unittest
from datetime import datetime, timezone
from unittest.mock import patch

from backend.uploads import (
    UploadValidationError,
    VideoUploadConfig,
    create_upload,
    create_video_upload,
    lambda_handler,
    parse_upload_request,
    parse_video_upload_request,
)


class FakeS3Client:
    """Minimal fake for boto3 S3 presign calls."""

    def __init__(self, upload_url: str = "https://s3.example.com/presigned") -> None:
        self.upload_url = upload_url
        self.calls = []

    def generate_presigned_url(self, ClientMethod, Params, ExpiresIn, HttpMethod=None):  # noqa: N803
        self.calls.append(
            {
                "ClientMethod": ClientMethod,
                "Params": Params,
                "ExpiresIn": ExpiresIn,
                "HttpMethod": HttpMethod,
            }
        )
        return self.upload_url


def _video_payload(**overrides: object) -> dict:
    payload = {
        "fileName": "pitch_final.mp4",
        "fileType": "video/mp4",
        "fileSize": 20 * 1024 * 1024,
        "assignmentId": "asg-1",
        "courseId": "course-1",
    }
    payload.update(overrides)
    return payload


class GeneralUploadTests(unittest.TestCase):
    def test_rejects_unsupported_content_type(self) -> None:
        with self.assertRaisesRegex(UploadValidationError, "contentType"):
            parse_upload_request({"fileName": "notes.md", "contentType": "text/markdown"})

    def test_rejects_path_like_file_name(self) -> None:
        with self.assertRaisesRegex(UploadValidationError, "fileName"):
            parse_upload_request({"fileName": "nested/notes.pdf", "contentType": "application/pdf"})

    def test_size_limit_depends_on_media_type(self) -> None:
        video = parse_upload_request({"fileName": "clip.mp4", "contentType": "video/mp4", "fileSize": 50 * 1024 * 1024})
        self.assertEqual(video.file_size, 50 * 1024 * 1024)

        with self.assertRaisesRegex(UploadValidationError, "10MB"):
            parse_upload_request({"fileName": "notes.pdf", "contentType": "application/pdf", "fileSize": 11 * 1024 * 1024})
        with self.assertRaisesRegex(UploadValidationError, "100MB"):
            parse_upload_request({"fileName": "clip.mp4", "contentType": "video/mp4", "fileSize": 101 * 1024 * 1024})

    def test_create_upload_wires_presign_and_key_layout(self) -> None:
        s3_client = FakeS3Client()

        response = create_upload(
            {"fileName": "syllabus.pdf", "contentType": "application/pdf", "folder": "course-files"},
            user_id="inst-1",
            bucket="classcast-videos",
            s3_client=s3_client,
            id_factory=lambda: "abc",
        )

        self.assertEqual(response["key"], "course-files/inst-1/abc-syllabus.pdf")
        self.assertEqual(response["expiresInSeconds"], 3600)
        self.assertEqual(
            s3_client.calls,
            [
                {
                    "ClientMethod": "put_object",
                    "Params": {
                        "Bucket": "classcast-videos",
                        "Key": "course-files/inst-1/abc-syllabus.pdf",
                        "ContentType": "application/pdf",
                    },
                    "ExpiresIn": 3600,
                    "HttpMethod": "PUT",
                }
            ],
        )


class VideoUploadTests(unittest.TestCase):
    def test_config_reads_env_and_falls_back_on_bad_values(self) -> None:
        config = VideoUploadConfig.from_env(
            {"MAX_VIDEO_SIZE_MB": "-5", "UPLOAD_EXPIRY_SECONDS": "600", "ALLOWED_VIDEO_TYPES": "video/mp4, video/webm"}
        )
        self.assertEqual(config.max_size_mb, 500)
        self.assertEqual(config.expiry_seconds, 600)
        self.assertEqual(config.allowed_types, ("video/mp4", "video/webm"))
        self.assertIn("video/quicktime", VideoUploadConfig.from_env({}).allowed_types)

    def test_rejects_unsafe_file_names(self) -> None:
        config = VideoUploadConfig()
        with self.assertRaisesRegex(UploadValidationError, "fileName"):
            parse_video_upload_request(_video_payload(fileName="my video.mp4"), config)
        with self.assertRaisesRegex(UploadValidationError, "255"):
            parse_video_upload_request(_video_payload(fileName="a" * 252 + ".mp4"), config)

    def test_enforces_type_size_expiry_and_upload_type(self) -> None:
        config = VideoUploadConfig(max_size_mb=10)
        cases = (
            ({"fileType": "video/ogg"}, "fileType"),
            ({"fileSize": 0}, "fileSize"),
            ({"fileSize": 11 * 1024 * 1024}, "10MB"),
            ({"expiresIn": 60}, "expiresIn"),
            ({"expiresIn": 90000}, "expiresIn"),
            ({"uploadType": "homework"}, "uploadType"),
        )
        for override, message in cases:
            with self.subTest(override=override):
                with self.assertRaisesRegex(UploadValidationError, message):
                    parse_video_upload_request(_video_payload(**override), config)

    def test_create_video_upload_signs_metadata_and_expiry(self) -> None:
        s3_client = FakeS3Client()
        fixed = datetime(2026, 9, 1, 10, 0, tzinfo=timezone.utc)

        response = create_video_upload(
            _video_payload(expiresIn=600, uploadType="demo"),
            user_id="stu-1",
            bucket="classcast-videos",
            s3_client=s3_client,
            config=VideoUploadConfig(),
            clock=lambda: fixed,
        )

        millis = int(fixed.timestamp() * 1000)
        self.assertEqual(response["key"], f"course-1/asg-1/stu-1/{millis}_pitch_final.mp4")
        self.assertEqual(response["expiresAt"], "2026-09-01T10:10:00Z")
        self.assertEqual(response["expiresInSeconds"], 600)
        params = s3_client.calls[0]["Params"]
        self.assertEqual(
            params["Metadata"],
            {"assignment-id": "asg-1", "course-id": "course-1", "user-id": "stu-1", "upload-type": "demo"},
        )
        self.assertEqual(params["ContentType"], "video/mp4")


class UploadLambdaTests(unittest.TestCase):
    def _invoke(self, event: dict, env: dict[str, str]) -> tuple[dict, dict]:
        with patch.dict("os.environ", env, clear=True):
            response = lambda_handler(event, None, s3_client=FakeS3Client())
        return response, json.loads(response["body"])

    def test_video_route_returns_envelope_and_cors_headers(self) -> None:
        event = {
            "rawPath": "/api/uploads/video",
            "body": json.dumps(_video_payload()),
            "requestContext": {"authorizer": {"claims": {"sub": "stu-1"}}},
        }

        response, body = self._invoke(event, {"VIDEO_BUCKET": "classcast-videos", "CORS_ALLOW_ORIGIN": "https://app"})

        self.assertEqual(response["statusCode"], 200)
        self.assertTrue(body["success"])
        self.assertTrue(body["data"]["key"].startswith("course-1/asg-1/stu-1/"))
        self.assertEqual(response["headers"]["Access-Control-Allow-Origin"], "https://app")

    def test_requires_principal_outside_demo_mode(self) -> None:
        response, body = self._invoke({"body": "{}"}, {"VIDEO_BUCKET": "classcast-videos"})
        self.assertEqual(response["statusCode"], 401)
        self.assertFalse(body["success"])

    def test_missing_bucket_is_server_error(self) -> None:
        response, body = self._invoke({"body": "{}"}, {"DEMO_MODE": "true"})
        self.assertEqual(response["statusCode"], 500)
        self.assertIn("VIDEO_BUCKET", body["error"])

    def test_validation_and_json_errors_return_400(self) -> None:
        env = {"VIDEO_BUCKET": "classcast-videos", "DEMO_MODE": "true"}
        response, body = self._invoke({"path": "/uploads", "body": "{not json"}, env)
        self.assertEqual((response["statusCode"], body["error"]), (400, "request body must be valid JSON"))

        response, body = self._invoke(
            {"path": "/uploads", "body": json.dumps({"fileName": "x.exe", "contentType": "application/x-msdownload"})},
            env,
        )
        self.assertEqual(response["statusCode"], 400)


if __name__ == "__main__":
    unittest.main()
