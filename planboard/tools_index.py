"""Index query endpoints."""

from __future__ import annotations

import datetime as dt
from typing import Any

from fastapi import Request

from planboard.derivation import schedule_status
from planboard.errors import PlanboardError, success_response
from planboard.hierarchy import resolve_hierarchy
from planboard.models import HierarchyRole, Priority, TaskStatus
from planboard.payload import (
    _ensure_payload_dict,
    _optional_bool,
    _reject_unknown_fields,
    _require_string,
)
from planboard.services import get_request_services
from planboard.tool_router import tool_router


def _anchor_date(services) -> dt.date:
    return services.config.timeline_start or dt.date.today()


def _read_enum(payload: dict[str, Any], field_name: str, enum_type):
    value = payload.get(field_name)
    if value is None:
        return None
    try:
        return enum_type(value)
    except ValueError as exc:
        raise PlanboardError(
            "INVALID_FILTER",
            f"{field_name} is not a recognised value.",
            {field_name: str(value), "allowed": [item.value for item in enum_type]},
        ) from exc


@tool_router.post("/tool:reindex")
async def reindex(payload: dict[str, Any], request: Request) -> dict[str, Any]:
    """Rescan the library and replace the index."""
    payload = _ensure_payload_dict(payload)
    _reject_unknown_fields(payload, set())
    services = get_request_services(request)
    result = await services.index.reindex()
    return success_response({"reindex": result.to_dict()})


@tool_router.post("/tool:poll_changes")
async def poll_changes(payload: dict[str, Any], request: Request) -> dict[str, Any]:
    """Detect documents changed outside the service and reindex once per signal."""
    payload = _ensure_payload_dict(payload)
    _reject_unknown_fields(payload, set())
    services = get_request_services(request)
    changed = await services.store.poll_changes()
    await services.index.drain()
    return success_response(
        {"changed": changed, "generation": services.index.generation}
    )


@tool_router.post("/tool:list_projects")
def list_projects(payload: dict[str, Any], request: Request) -> dict[str, Any]:
    """List indexed projects with their aggregate progress."""
    payload = _ensure_payload_dict(payload)
    _reject_unknown_fields(payload, {"includeTasks"})
    include_tasks = _optional_bool(payload, "includeTasks")

    services = get_request_services(request)
    anchor = _anchor_date(services)
    projects = []
    for project in services.index.projects:
        entry = project.to_dict(include_tasks=include_tasks)
        entry["scheduleStatus"] = schedule_status(project, anchor).value
        projects.append(entry)
    return success_response(
        {"projects": projects, "generation": services.index.generation}
    )


@tool_router.post("/tool:get_project")
def get_project(payload: dict[str, Any], request: Request) -> dict[str, Any]:
    """Return one project with its cascade, rollups and milestones."""
    payload = _ensure_payload_dict(payload)
    _reject_unknown_fields(payload, {"path"})
    path = _require_string(payload, "path")

    services = get_request_services(request)
    project = services.index.get_project(path)
    if project is None:
        raise PlanboardError(
            "PROJECT_NOT_FOUND",
            "No indexed project at this path.",
            {"path": path},
        )
    data = project.to_dict(include_tasks=True)
    data["scheduleStatus"] = schedule_status(project, _anchor_date(services)).value
    data["hierarchy"] = resolve_hierarchy(project.tasks).to_dict()
    data["milestones"] = [
        milestone.to_dict() for milestone in services.index.milestones_for(path)
    ]
    return success_response({"project": data})


@tool_router.post("/tool:get_task")
def get_task(payload: dict[str, Any], request: Request) -> dict[str, Any]:
    """Look up a task by key, or by bare id (first match in path order wins)."""
    payload = _ensure_payload_dict(payload)
    _reject_unknown_fields(payload, {"id"})
    task_id = _require_string(payload, "id")

    services = get_request_services(request)
    task = services.index.get_task(task_id)
    if task is None:
        raise PlanboardError(
            "TASK_NOT_FOUND",
            "No indexed task matches this id.",
            {"id": task_id},
        )
    return success_response({"task": task.to_dict()})


@tool_router.post("/tool:list_tasks")
def list_tasks(payload: dict[str, Any], request: Request) -> dict[str, Any]:
    """List tasks, optionally filtered by project, status, priority or role."""
    payload = _ensure_payload_dict(payload)
    _reject_unknown_fields(payload, {"path", "status", "priority", "role"})

    path = payload.get("path")
    if path is not None and not isinstance(path, str):
        raise PlanboardError(
            "INVALID_TYPE",
            "path must be a string.",
            {"path": str(path)},
        )
    status = _read_enum(payload, "status", TaskStatus)
    priority = _read_enum(payload, "priority", Priority)
    role = _read_enum(payload, "role", HierarchyRole)

    services = get_request_services(request)
    tasks = services.index.tasks_for(path) if path else services.index.tasks
    filtered = [
        task.to_dict()
        for task in tasks
        if (status is None or task.status is status)
        and (priority is None or task.priority is priority)
        and (role is None or task.role is role)
    ]
    return success_response({"tasks": filtered})
