"""Task and project mutation endpoints."""

from __future__ import annotations

from typing import Any

from fastapi import Request

from planboard.errors import PlanboardError, success_response
from planboard.intents import intent_from_dict
from planboard.models import TaskStatus
from planboard.mutations import MutationResult
from planboard.payload import (
    _ensure_payload_dict,
    _optional_int,
    _reject_unknown_fields,
    _require_string,
)
from planboard.services import get_request_services
from planboard.tool_router import tool_router


def _mutation_response(services, result: MutationResult) -> dict[str, Any]:
    return success_response(
        {
            "result": result.value,
            "applied": result is MutationResult.APPLIED,
            "generation": services.index.generation,
            "commitSha": services.store.git_head()
            if result is MutationResult.APPLIED
            else None,
        }
    )


@tool_router.post("/tool:update_task")
async def update_task(payload: dict[str, Any], request: Request) -> dict[str, Any]:
    """Rewrite ``key:: value`` properties on a task line."""
    payload = _ensure_payload_dict(payload)
    _reject_unknown_fields(payload, {"id", "changes"})
    task_id = _require_string(payload, "id")

    changes = payload.get("changes")
    if not isinstance(changes, dict) or not changes:
        raise PlanboardError(
            "INVALID_TYPE",
            "changes must be a non-empty object.",
            {"changes": str(changes)},
        )
    invalid = sorted(
        str(key)
        for key, value in changes.items()
        if not isinstance(key, str)
        or not key.strip()
        or "::" in key
        or not isinstance(value, str)
        or "\n" in value
    )
    if invalid:
        raise PlanboardError(
            "INVALID_CHANGES",
            "changes must map property names to single-line strings.",
            {"fields": invalid},
        )

    services = get_request_services(request)
    result = await services.gateway.update_task(task_id, changes)
    return _mutation_response(services, result)


@tool_router.post("/tool:move_task_to_status")
async def move_task_to_status(payload: dict[str, Any], request: Request) -> dict[str, Any]:
    """Set a task's checkbox marker (and status property, when present)."""
    payload = _ensure_payload_dict(payload)
    _reject_unknown_fields(payload, {"id", "status"})
    task_id = _require_string(payload, "id")
    raw_status = _require_string(payload, "status")
    try:
        status = TaskStatus(raw_status)
    except ValueError as exc:
        raise PlanboardError(
            "INVALID_STATUS",
            "status is not a recognised value.",
            {"status": raw_status, "allowed": [item.value for item in TaskStatus]},
        ) from exc

    services = get_request_services(request)
    result = await services.gateway.move_task_to_status(task_id, status)
    return _mutation_response(services, result)


@tool_router.post("/tool:shift_task_dates")
async def shift_task_dates(payload: dict[str, Any], request: Request) -> dict[str, Any]:
    """Shift a task's start/due dates by whole days."""
    payload = _ensure_payload_dict(payload)
    _reject_unknown_fields(payload, {"taskKey", "deltaStart", "deltaDue"})
    task_key = _require_string(payload, "taskKey")
    delta_start = _optional_int(payload, "deltaStart")
    delta_due = _optional_int(payload, "deltaDue")

    services = get_request_services(request)
    result = await services.gateway.shift_task_dates(task_key, delta_start, delta_due)
    return _mutation_response(services, result)


@tool_router.post("/tool:shift_project_dates")
async def shift_project_dates(payload: dict[str, Any], request: Request) -> dict[str, Any]:
    """Shift a project's front-matter Start/End dates by whole days."""
    payload = _ensure_payload_dict(payload)
    _reject_unknown_fields(payload, {"path", "deltaStart", "deltaEnd"})
    path = _require_string(payload, "path")
    delta_start = _optional_int(payload, "deltaStart")
    delta_end = _optional_int(payload, "deltaEnd")

    services = get_request_services(request)
    result = await services.gateway.shift_project_dates(path, delta_start, delta_end)
    return _mutation_response(services, result)


@tool_router.post("/tool:apply_intent")
async def apply_intent(payload: dict[str, Any], request: Request) -> dict[str, Any]:
    """Apply a reschedule intent produced by a timeline gesture."""
    payload = _ensure_payload_dict(payload)
    _reject_unknown_fields(payload, {"intent"})
    if "intent" not in payload:
        raise PlanboardError(
            "MISSING_FIELDS",
            "intent is required.",
            {"fields": ["intent"]},
        )
    intent = intent_from_dict(payload["intent"])

    services = get_request_services(request)
    result = await services.gateway.apply_intent(intent)
    return _mutation_response(services, result)
