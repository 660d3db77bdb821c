"""Transactional e-mail through SES; every send is best effort."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from typing import Any, Mapping

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class EmailConfig:
    sender: str = ""
    admin_email: str = ""
    app_base_url: str = ""

    @property
    def enabled(self) -> bool:
        return bool(self.sender)

    @classmethod
    def from_env(cls, env: Mapping[str, str] | None = None) -> "EmailConfig":
        source = os.environ if env is None else env
        return cls(
            sender=str(source.get("NOTIFICATION_SENDER_EMAIL", "")).strip(),
            admin_email=str(source.get("ADMIN_NOTIFICATION_EMAIL", "")).strip(),
            app_base_url=str(source.get("APP_BASE_URL", "")).strip().rstrip("/"),
        )

    def link(self, path: str) -> str:
        return f"{self.app_base_url}{path}"


@dataclass(frozen=True)
class EmailMessage:
    subject: str
    body: str


def create_default_ses_client() -> Any:
    import boto3

    return boto3.client("ses")


def send_email(
    to: str,
    subject: str,
    body: str,
    *,
    config: EmailConfig | None = None,
    ses_client: Any | None = None,
) -> bool:
    """Send a plain-text e-mail; returns False instead of raising on failure."""
    settings = config or EmailConfig.from_env()
    if not to:
        return False
    if not settings.enabled:
        logger.info("E-mail disabled (NOTIFICATION_SENDER_EMAIL unset); skipped '%s' to %s", subject, to)
        return False

    try:
        client = ses_client or create_default_ses_client()
        client.send_email(
            Source=settings.sender,
            Destination={"ToAddresses": [to]},
            Message={
                "Subject": {"Data": subject, "Charset": "UTF-8"},
                "Body": {"Text": {"Data": body, "Charset": "UTF-8"}},
            },
        )
    except Exception:  # noqa: BLE001
        logger.exception("Failed to send '%s' to %s", subject, to)
        return False
    return True


def enrollment_notice(*, course_title: str, student_name: str, student_email: str, status: str) -> EmailMessage:
    subject = f"New enrollment in {course_title}"
    if status == "waitlisted":
        subject = f"New waitlist entry for {course_title}"
    return EmailMessage(
        subject=subject,
        body=(
            f"{student_name or student_email or 'A student'} ({student_email or 'no e-mail on file'}) "
            f"is now {status} in {course_title}."
        ),
    )


def waitlist_promotion(*, course_title: str, first_name: str, course_url: str) -> EmailMessage:
    return EmailMessage(
        subject=f"You're enrolled in {course_title}",
        body=(
            f"Hi {first_name or 'there'},\n\n"
            f"A seat opened up and you have been moved from the waitlist into {course_title}.\n"
            f"Course page: {course_url}\n"
        ),
    )


def bulk_welcome(
    *,
    course_title: str,
    first_name: str,
    email: str,
    temporary_password: str | None,
    login_url: str,
) -> EmailMessage:
    lines = [
        f"Hi {first_name or 'there'},",
        "",
        f"Your instructor has enrolled you in {course_title} on ClassCast.",
        f"Sign in at {login_url} with {email}.",
    ]
    if temporary_password:
        lines.append(f"Temporary password: {temporary_password}")
        lines.append("You will be asked to choose a new password on first sign-in.")
    return EmailMessage(subject=f"Welcome to {course_title}", body="\n".join(lines) + "\n")


def grade_posted(
    *,
    assignment_title: str,
    grade: float,
    max_score: float,
    letter: str,
    feedback: str | None,
    grades_url: str,
) -> EmailMessage:
    body = f"Your submission for {assignment_title} was graded: {grade:g}/{max_score:g} ({letter}).\n"
    if feedback:
        body += f"\nFeedback:\n{feedback}\n"
    body += f"\nView your grades: {grades_url}\n"
    return EmailMessage(subject=f"Grade posted: {assignment_title}", body=body)


def new_submission_alert(
    *,
    student_id: str,
    course_id: str,
    assignment_id: str,
    video_title: str,
    submission_url: str,
) -> EmailMessage:
    return EmailMessage(
        subject=f"New video submission: {video_title}",
        body=(
            f"Student {student_id} submitted '{video_title}' for assignment {assignment_id} "
            f"in course {course_id}.\n{submission_url}\n"
        ),
    )


class Mailer:
    """Sends the templates above with one shared config and SES client."""

    def __init__(self, config: EmailConfig | None = None, *, ses_client: Any | None = None) -> None:
        self.config = config or EmailConfig.from_env()
        self._ses_client = ses_client

    def send(self, to: str, message: EmailMessage) -> bool:
        if self._ses_client is None and self.config.enabled:
            try:
                self._ses_client = create_default_ses_client()
            except Exception:  # noqa: BLE001
                logger.exception("Unable to create SES client")
                return False
        return send_email(to, message.subject, message.body, config=self.config, ses_client=self._ses_client)

    def send_admin(self, message: EmailMessage) -> bool:
        return self.send(self.config.admin_email, message)
