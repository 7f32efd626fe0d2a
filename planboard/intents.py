"""Reschedule intents emitted by timeline gestures."""

from __future__ import annotations

from dataclasses import asdict, dataclass, fields
from typing import Any, ClassVar, Union

from planboard.errors import PlanboardError


@dataclass(frozen=True)
class BarMoved:
    kind: ClassVar[str] = "bar-moved"
    task_key: str
    delta_days: int


@dataclass(frozen=True)
class BarResized:
    kind: ClassVar[str] = "bar-resized"
    task_key: str
    delta_start: int
    delta_due: int


@dataclass(frozen=True)
class ProjectBarMoved:
    kind: ClassVar[str] = "project-bar-moved"
    project_key: str
    delta_days: int


@dataclass(frozen=True)
class ProjectBarResized:
    kind: ClassVar[str] = "project-bar-resized"
    project_key: str
    delta_start: int
    delta_end: int


RescheduleIntent = Union[BarMoved, BarResized, ProjectBarMoved, ProjectBarResized]

INTENT_TYPES: dict[str, type] = {
    intent_type.kind: intent_type
    for intent_type in (BarMoved, BarResized, ProjectBarMoved, ProjectBarResized)
}

_WIRE_FIELDS = {
    "task_key": "taskKey",
    "project_key": "projectKey",
    "delta_days": "deltaDays",
    "delta_start": "deltaStart",
    "delta_due": "deltaDue",
    "delta_end": "deltaEnd",
}


def intent_to_dict(intent: RescheduleIntent) -> dict[str, Any]:
    data = {_WIRE_FIELDS[name]: value for name, value in asdict(intent).items()}
    data["type"] = intent.kind
    return data


def intent_from_dict(data: Any) -> RescheduleIntent:
    """Build an intent from its wire form, e.g. ``{"type": "bar-moved", ...}``."""
    if not isinstance(data, dict):
        raise PlanboardError(
            "INVALID_TYPE",
            "intent must be an object.",
            {"intent": str(data)},
        )
    kind = data.get("type")
    intent_type = INTENT_TYPES.get(kind) if isinstance(kind, str) else None
    if intent_type is None:
        raise PlanboardError(
            "INVALID_INTENT",
            "Unknown intent type.",
            {"type": str(kind), "allowed": sorted(INTENT_TYPES)},
        )

    values: dict[str, Any] = {}
    missing = []
    for name in (item.name for item in fields(intent_type)):
        wire_name = _WIRE_FIELDS[name]
        if wire_name not in data:
            missing.append(wire_name)
            continue
        value = data[wire_name]
        expects_int = name.startswith("delta_")
        if expects_int and (not isinstance(value, int) or isinstance(value, bool)):
            raise PlanboardError(
                "INVALID_TYPE",
                f"{wire_name} must be an integer.",
                {wire_name: str(value)},
            )
        if not expects_int and (not isinstance(value, str) or not value.strip()):
            raise PlanboardError(
                "INVALID_TYPE",
                f"{wire_name} must be a non-empty string.",
                {wire_name: str(value)},
            )
        values[name] = value
    if missing:
        raise PlanboardError(
            "MISSING_FIELDS",
            "Intent is missing required fields.",
            {"fields": missing},
        )
    return intent_type(**values)
