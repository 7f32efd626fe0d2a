"""Tool endpoint registration."""

# ruff: noqa: F401

from __future__ import annotations

from typing import Any

from fastapi import FastAPI

from planboard.errors import PlanboardError, success_response
from planboard.tool_router import tool_router
from tools.tool_schemas import ToolSchemaError, load_tool_definitions

# Import modules to register routes with the shared router.
from planboard import activity, tools_index, tools_tasks, tools_timeline

# Re-export endpoints for tests and direct imports.
from planboard.activity import read_activity_log
from planboard.tools_index import (
    get_project,
    get_task,
    list_projects,
    list_tasks,
    poll_changes,
    reindex,
)
from planboard.tools_tasks import (
    apply_intent,
    move_task_to_status,
    shift_project_dates,
    shift_task_dates,
    update_task,
)
from planboard.tools_timeline import drag_gesture, timeline_layout, zoom_timeline


@tool_router.get("/tools")
def list_tool_schemas() -> dict[str, Any]:
    """Return the current tool definitions."""
    try:
        definitions = load_tool_definitions()
    except ToolSchemaError as exc:
        raise PlanboardError(
            "TOOL_SCHEMA_ERROR",
            "Tool definitions could not be loaded.",
            {"error": str(exc)},
        ) from exc
    return success_response({"tools": definitions})


def register_tool_handlers(app: FastAPI) -> None:
    """Attach tool routes to the FastAPI application."""
    app.include_router(tool_router)
