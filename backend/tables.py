"""Lazy boto3 factories and small DynamoDB helpers shared by workflow modules."""

from __future__ import annotations

import os
from typing import Any, Callable, Mapping

from botocore.exceptions import ClientError


def dynamodb_table(table_name: str) -> Any:
    import boto3

    return boto3.resource("dynamodb").Table(table_name)


def dynamodb_client() -> Any:
    import boto3

    return boto3.client("dynamodb")


def s3_client() -> Any:
    import boto3

    return boto3.client("s3")


def required_table(env_name: str) -> Any:
    table_name = os.getenv(env_name, "").strip()
    if not table_name:
        raise RuntimeError(f"server misconfiguration: {env_name} missing")
    return dynamodb_table(table_name)


def required_env(name: str) -> str:
    value = os.getenv(name, "").strip()
    if not value:
        raise RuntimeError(f"server misconfiguration: {name} missing")
    return value


def error_code(exc: ClientError) -> str:
    return str(exc.response.get("Error", {}).get("Code", ""))


def get_item(table: Any, key: Mapping[str, Any]) -> dict[str, Any] | None:
    response = table.get_item(Key=dict(key))
    item = response.get("Item")
    return item if isinstance(item, dict) else None


def scan_all(table: Any, predicate: Callable[[Mapping[str, Any]], bool] | None = None) -> list[dict[str, Any]]:
    """Read every page of a scan and keep the rows matching ``predicate``."""
    response = table.scan()
    rows = list(response.get("Items", []))
    while "LastEvaluatedKey" in response:
        response = table.scan(ExclusiveStartKey=response["LastEvaluatedKey"])
        rows.extend(response.get("Items", []))
    if predicate is None:
        return rows
    return [row for row in rows if predicate(row)]
