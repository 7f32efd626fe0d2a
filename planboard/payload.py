"""Payload validation helpers for tool endpoints."""

from __future__ import annotations

import datetime as dt
from typing import Any

from planboard.errors import PlanboardError


def _ensure_payload_dict(payload: Any) -> dict[str, Any]:
    if not isinstance(payload, dict):
        raise PlanboardError(
            "INVALID_TYPE",
            "Payload must be an object.",
            {"type": type(payload).__name__},
        )
    return payload


def _reject_unknown_fields(payload: dict[str, Any], allowed_fields: set[str]) -> None:
    unknown_fields = sorted(set(payload) - allowed_fields)
    if unknown_fields:
        raise PlanboardError(
            "UNKNOWN_FIELD",
            "Unknown fields are not allowed.",
            {"fields": unknown_fields},
        )


def _require_string(payload: dict[str, Any], field_name: str) -> str:
    if field_name not in payload:
        raise PlanboardError(
            "MISSING_FIELDS",
            f"{field_name} is required.",
            {"fields": [field_name]},
        )
    value = payload[field_name]
    if not isinstance(value, str) or not value.strip():
        raise PlanboardError(
            "INVALID_TYPE",
            f"{field_name} must be a non-empty string.",
            {field_name: str(value)},
        )
    return value.strip()


def _optional_int(payload: dict[str, Any], field_name: str, default: int = 0) -> int:
    value = payload.get(field_name, default)
    if not isinstance(value, int) or isinstance(value, bool):
        raise PlanboardError(
            "INVALID_TYPE",
            f"{field_name} must be an integer.",
            {field_name: str(value)},
        )
    return value


def _optional_bool(payload: dict[str, Any], field_name: str, default: bool = False) -> bool:
    value = payload.get(field_name, default)
    if not isinstance(value, bool):
        raise PlanboardError(
            "INVALID_TYPE",
            f"{field_name} must be a boolean.",
            {field_name: str(value)},
        )
    return value


def _optional_date(payload: dict[str, Any], field_name: str) -> dt.date | None:
    value = payload.get(field_name)
    if value is None:
        return None
    if not isinstance(value, str):
        raise PlanboardError(
            "INVALID_TYPE",
            f"{field_name} must be an ISO date string.",
            {field_name: str(value)},
        )
    try:
        return dt.date.fromisoformat(value.strip())
    except ValueError as exc:
        raise PlanboardError(
            "INVALID_DATE",
            f"{field_name} must be an ISO date (YYYY-MM-DD).",
            {field_name: value},
        ) from exc


def _optional_string_list(payload: dict[str, Any], field_name: str) -> list[str] | None:
    value = payload.get(field_name)
    if value is None:
        return None
    if not isinstance(value, list) or not all(isinstance(item, str) for item in value):
        raise PlanboardError(
            "INVALID_TYPE",
            f"{field_name} must be a list of strings.",
            {field_name: str(value)},
        )
    return value
