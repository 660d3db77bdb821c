"""Caller identity and role resolution from API Gateway authorizer context."""

from __future__ import annotations

import os
import re
from dataclasses import dataclass
from typing import Any, Mapping

ROLE_STUDENT = "student"
ROLE_INSTRUCTOR = "instructor"
ROLE_ADMIN = "admin"
ROLES = frozenset((ROLE_STUDENT, ROLE_INSTRUCTOR, ROLE_ADMIN))

_GROUP_ROLES = {"instructors": ROLE_INSTRUCTOR, "students": ROLE_STUDENT, "admins": ROLE_ADMIN}
_DEMO_MODE_TRUE_VALUES = frozenset({"1", "true", "yes", "on"})
_GROUP_SPLIT = re.compile(r"[\s,]+")


@dataclass(frozen=True)
class Principal:
    """Authenticated caller."""

    user_id: str
    role: str = ROLE_STUDENT
    email: str | None = None

    @property
    def is_instructor(self) -> bool:
        return self.role in {ROLE_INSTRUCTOR, ROLE_ADMIN}


def is_demo_mode() -> bool:
    raw = os.getenv("DEMO_MODE", "false")
    return raw.strip().lower() in _DEMO_MODE_TRUE_VALUES


def _claims(authorizer: Mapping[str, Any]) -> Mapping[str, Any]:
    claims = authorizer.get("claims")
    if isinstance(claims, dict):
        return claims
    jwt = authorizer.get("jwt")
    if isinstance(jwt, dict) and isinstance(jwt.get("claims"), dict):
        return jwt["claims"]
    return {}


def _groups(raw: Any) -> list[str]:
    if isinstance(raw, list):
        return [str(value) for value in raw]
    if isinstance(raw, str):
        # REST API authorizers flatten list claims to "[a b]" or "a,b".
        return [value for value in _GROUP_SPLIT.split(raw.strip("[]")) if value]
    return []


def role_from_claims(claims: Mapping[str, Any]) -> str:
    custom_role = claims.get("custom:role")
    if isinstance(custom_role, str) and custom_role.strip().lower() in ROLES:
        return custom_role.strip().lower()

    for group in _groups(claims.get("cognito:groups")):
        role = _GROUP_ROLES.get(group.strip().lower())
        if role is not None:
            return role
    return ROLE_STUDENT


def extract_principal(event: Mapping[str, Any]) -> Principal | None:
    context = event.get("requestContext")
    if not isinstance(context, dict):
        return None

    authorizer = context.get("authorizer")
    if isinstance(authorizer, dict):
        claims = _claims(authorizer)
        role = role_from_claims(claims)
        email = claims.get("email") if isinstance(claims.get("email"), str) else None

        principal_id = authorizer.get("principalId")
        if isinstance(principal_id, str) and principal_id.strip():
            return Principal(user_id=principal_id.strip(), role=role, email=email)

        sub = claims.get("sub")
        if isinstance(sub, str) and sub.strip():
            return Principal(user_id=sub.strip(), role=role, email=email)

    identity = context.get("identity")
    if isinstance(identity, dict):
        user_arn = identity.get("userArn")
        if isinstance(user_arn, str) and user_arn.strip():
            return Principal(user_id=user_arn.strip())
    return None


def authenticate(event: Mapping[str, Any]) -> Principal | None:
    """Return the caller, falling back to the demo principal when DEMO_MODE is on."""
    principal = extract_principal(event)
    if principal is not None:
        return principal
    if not is_demo_mode():
        return None

    user_id = os.getenv("DEMO_USER_ID", "demo-instructor").strip() or "demo-instructor"
    role = os.getenv("DEMO_USER_ROLE", ROLE_INSTRUCTOR).strip().lower()
    return Principal(user_id=user_id, role=role if role in ROLES else ROLE_INSTRUCTOR)
