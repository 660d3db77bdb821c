"""Field validators and DynamoDB number helpers shared by coursework models."""

from __future__ import annotations

import math
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Mapping


class ModelValidationError(ValueError):
    """Raised when model payloads or records fail validation."""


def validate_non_empty_string(value: Any, field_name: str) -> str:
    """Require non-empty strings and return them stripped."""
    if not isinstance(value, str):
        raise ModelValidationError(f"{field_name} is required")
    text = value.strip()
    if not text:
        raise ModelValidationError(f"{field_name} is required")
    return text


def optional_string(payload: Mapping[str, Any], field_name: str, default: str = "") -> str:
    value = payload.get(field_name)
    if value is None:
        return default
    if not isinstance(value, str):
        raise ModelValidationError(f"{field_name} must be a string")
    return value.strip()


def validate_number(value: Any, field_name: str) -> int | float | Decimal:
    if isinstance(value, bool) or not isinstance(value, (int, float, Decimal)):
        raise ModelValidationError(f"{field_name} must be a number")
    if not math.isfinite(value):
        raise ModelValidationError(f"{field_name} must be a finite number")
    return value


def validate_int_range(value: Any, field_name: str, *, minimum: int, maximum: int | None = None) -> int:
    if isinstance(value, bool) or not isinstance(value, (int, Decimal)) or int(value) != value:
        raise ModelValidationError(f"{field_name} must be an integer")
    number = int(value)
    if number < minimum or (maximum is not None and number > maximum):
        if maximum is None:
            raise ModelValidationError(f"{field_name} must be >= {minimum}")
        raise ModelValidationError(f"{field_name} must be between {minimum} and {maximum}")
    return number


def parse_timestamp(value: Any, field_name: str) -> datetime:
    """Parse ISO-8601/RFC3339 timestamps; naive values are treated as UTC."""
    text = validate_non_empty_string(value, field_name)
    try:
        parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
    except ValueError as exc:
        raise ModelValidationError(f"{field_name} must be an RFC3339 timestamp") from exc
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def format_timestamp(value: datetime) -> str:
    return value.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def utc_now_rfc3339() -> str:
    return format_timestamp(datetime.now(timezone.utc))


def to_dynamodb_number(value: float | int | Decimal) -> int | Decimal:
    """Convert floats to Decimal because boto3 DynamoDB does not accept float."""
    if isinstance(value, float):
        return Decimal(str(value))
    return value


def from_dynamodb_number(value: Any) -> int | float | None:
    """Convert DynamoDB Decimals back to plain numbers for JSON payloads."""
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, Decimal):
        return int(value) if value == value.to_integral_value() else float(value)
    if isinstance(value, (int, float)):
        return value
    return None


def without_none(item: Mapping[str, Any]) -> dict[str, Any]:
    return {key: value for key, value in item.items() if value is not None}


def to_dynamodb_value(value: Any) -> Any:
    """Recursively convert floats inside nested payloads to Decimal."""
    if isinstance(value, bool):
        return value
    if isinstance(value, float):
        return Decimal(str(value))
    if isinstance(value, Mapping):
        return {key: to_dynamodb_value(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [to_dynamodb_value(item) for item in value]
    return value
