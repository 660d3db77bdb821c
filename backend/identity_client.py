"""Cognito user pool adapter for instructor-driven student account creation."""

from __future__ import annotations

import logging
import os
import secrets
import string
from dataclasses import dataclass
from typing import Any, Mapping

from botocore.exceptions import BotoCoreError, ClientError

logger = logging.getLogger(__name__)

TEMPORARY_PASSWORD_LENGTH = 12
_SYMBOLS = "!@#$%^&*"
_PASSWORD_ALPHABET = string.ascii_letters + string.digits + _SYMBOLS


class IdentityProviderError(RuntimeError):
    """Raised when the identity provider rejects or fails an account operation."""


@dataclass(frozen=True)
class StudentAccount:
    user_id: str
    email: str
    temporary_password: str | None
    created: bool


def generate_temporary_password(length: int = TEMPORARY_PASSWORD_LENGTH) -> str:
    """Random password with at least one upper, lower, digit and symbol."""
    if length < 4:
        raise ValueError("length must be at least 4")
    required = [
        secrets.choice(string.ascii_uppercase),
        secrets.choice(string.ascii_lowercase),
        secrets.choice(string.digits),
        secrets.choice(_SYMBOLS),
    ]
    rest = [secrets.choice(_PASSWORD_ALPHABET) for _ in range(length - len(required))]
    characters = required + rest
    secrets.SystemRandom().shuffle(characters)
    return "".join(characters)


def _attribute(attributes: Any, name: str) -> str | None:
    if not isinstance(attributes, list):
        return None
    for attribute in attributes:
        if isinstance(attribute, dict) and attribute.get("Name") == name:
            value = attribute.get("Value")
            return value if isinstance(value, str) else None
    return None


def create_default_cognito_client() -> Any:
    import boto3

    return boto3.client("cognito-idp")


class CognitoIdentityClient:
    def __init__(self, user_pool_id: str, *, client: Any | None = None, student_group: str = "students") -> None:
        if not user_pool_id:
            raise RuntimeError("server misconfiguration: COGNITO_USER_POOL_ID missing")
        self._user_pool_id = user_pool_id
        self._client = client or create_default_cognito_client()
        self._student_group = student_group

    @classmethod
    def from_env(cls, env: Mapping[str, str] | None = None, *, client: Any | None = None) -> "CognitoIdentityClient":
        source = os.environ if env is None else env
        return cls(
            str(source.get("COGNITO_USER_POOL_ID", "")).strip(),
            client=client,
            student_group=str(source.get("COGNITO_STUDENT_GROUP", "")).strip() or "students",
        )

    def create_student_account(self, *, email: str, first_name: str, last_name: str) -> StudentAccount:
        """Create a student login with a temporary password, or return the existing one.

        Invitations are suppressed so the welcome e-mail can carry the course
        context; the user must change the temporary password on first sign-in.
        """
        password = generate_temporary_password()
        try:
            response = self._client.admin_create_user(
                UserPoolId=self._user_pool_id,
                Username=email,
                TemporaryPassword=password,
                MessageAction="SUPPRESS",
                UserAttributes=[
                    {"Name": "email", "Value": email},
                    {"Name": "email_verified", "Value": "true"},
                    {"Name": "given_name", "Value": first_name},
                    {"Name": "family_name", "Value": last_name},
                    {"Name": "custom:role", "Value": "student"},
                ],
            )
        except ClientError as exc:
            if exc.response.get("Error", {}).get("Code") == "UsernameExistsException":
                return self._existing_account(email)
            raise IdentityProviderError(f"unable to create account for {email}: {exc}") from exc
        except BotoCoreError as exc:
            raise IdentityProviderError(f"unable to create account for {email}: {exc}") from exc

        user = response.get("User") or {}
        user_id = _attribute(user.get("Attributes"), "sub") or str(user.get("Username") or email)

        try:
            self._client.admin_add_user_to_group(
                UserPoolId=self._user_pool_id,
                Username=email,
                GroupName=self._student_group,
            )
            self._client.admin_set_user_password(
                UserPoolId=self._user_pool_id,
                Username=email,
                Password=password,
                Permanent=False,
            )
        except (ClientError, BotoCoreError) as exc:
            raise IdentityProviderError(f"account for {email} created but setup failed: {exc}") from exc

        logger.info("Created identity provider account %s", user_id)
        return StudentAccount(user_id=user_id, email=email, temporary_password=password, created=True)

    def _existing_account(self, email: str) -> StudentAccount:
        try:
            response = self._client.admin_get_user(UserPoolId=self._user_pool_id, Username=email)
        except (ClientError, BotoCoreError) as exc:
            raise IdentityProviderError(f"unable to look up existing account {email}: {exc}") from exc
        user_id = _attribute(response.get("UserAttributes"), "sub") or str(response.get("Username") or email)
        return StudentAccount(user_id=user_id, email=email, temporary_password=None, created=False)
