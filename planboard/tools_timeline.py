"""Timeline layout, drag gesture and zoom endpoints."""

from __future__ import annotations

import datetime as dt
from typing import Any

from fastapi import Request

from planboard.errors import PlanboardError, success_response
from planboard.intents import intent_to_dict
from planboard.models import HierarchyRole, TaskRecord
from planboard.payload import (
    _ensure_payload_dict,
    _optional_bool,
    _optional_date,
    _optional_string_list,
    _reject_unknown_fields,
    _require_string,
)
from planboard.routing import route_edges
from planboard.services import Services, get_request_services
from planboard.timeline import (
    DragController,
    DragMode,
    FrameThrottle,
    TimelineLayout,
    build_timeline,
    index_to_zoom,
    normalize_zoom,
    visible_set,
)
from planboard.tool_router import tool_router

LAYOUT_FIELDS = {"anchor", "pxPerDay", "paths", "hideEpics", "hideDone"}


def _read_zoom(payload: dict[str, Any], default: int) -> int:
    value = payload.get("pxPerDay", default)
    if not isinstance(value, (int, float)) or isinstance(value, bool):
        raise PlanboardError(
            "INVALID_TYPE",
            "pxPerDay must be a number.",
            {"pxPerDay": str(value)},
        )
    return normalize_zoom(value)


def _task_filter(payload: dict[str, Any]):
    hide_epics = _optional_bool(payload, "hideEpics")
    hide_done = _optional_bool(payload, "hideDone")

    def keep(task: TaskRecord) -> bool:
        if hide_epics and task.role is HierarchyRole.EPIC:
            return False
        if hide_done and task.is_done():
            return False
        return True

    return keep


def _build_layout(
    services: Services, payload: dict[str, Any], px_per_day: int
) -> TimelineLayout:
    config = services.config
    anchor = _optional_date(payload, "anchor") or config.timeline_start or dt.date.today()
    paths = _optional_string_list(payload, "paths")
    projects = visible_set(
        services.index.projects,
        (lambda project: project.owner_key in paths) if paths is not None else None,
    )
    return build_timeline(
        projects,
        anchor=anchor,
        px_per_day=px_per_day,
        configured_end=config.timeline_end,
        milestones_for=services.index.milestones_for,
        task_filter=_task_filter(payload),
    )


def _layout_response(services: Services, layout: TimelineLayout) -> dict[str, Any]:
    data = layout.to_dict()
    data["connectors"] = [
        connector.to_dict() for connector in route_edges(layout, services.index.edges)
    ]
    data["generation"] = services.index.generation
    return data


@tool_router.post("/tool:timeline_layout")
def timeline_layout(payload: dict[str, Any], request: Request) -> dict[str, Any]:
    """Lay out rows, bars, heat map, milestones and dependency connectors."""
    payload = _ensure_payload_dict(payload)
    _reject_unknown_fields(payload, LAYOUT_FIELDS)
    services = get_request_services(request)
    px_per_day = _read_zoom(payload, services.config.zoom_px_per_day)
    layout = _build_layout(services, payload, px_per_day)
    return success_response({"timeline": _layout_response(services, layout)})


@tool_router.post("/tool:zoom_timeline")
def zoom_timeline(payload: dict[str, Any], request: Request) -> dict[str, Any]:
    """Apply a burst of zoom-slider positions with a single recompute."""
    payload = _ensure_payload_dict(payload)
    _reject_unknown_fields(payload, LAYOUT_FIELDS - {"pxPerDay"} | {"zoomIndexes"})
    indexes = payload.get("zoomIndexes")
    if (
        not isinstance(indexes, list)
        or not indexes
        or not all(isinstance(item, int) and not isinstance(item, bool) for item in indexes)
    ):
        raise PlanboardError(
            "INVALID_TYPE",
            "zoomIndexes must be a non-empty list of integers.",
            {"zoomIndexes": str(indexes)},
        )

    services = get_request_services(request)
    recomputes = []

    def recompute(index: int) -> TimelineLayout:
        recomputes.append(index)
        return _build_layout(services, payload, index_to_zoom(index))

    throttle: FrameThrottle[int, TimelineLayout] = FrameThrottle(recompute)
    for index in indexes:
        throttle.request(index)
    layout = throttle.flush()
    return success_response(
        {
            "timeline": _layout_response(services, layout),
            "requests": len(indexes),
            "recomputes": len(recomputes),
        }
    )


def _read_pointer(payload: dict[str, Any], field_name: str) -> float:
    value = payload.get(field_name)
    if not isinstance(value, (int, float)) or isinstance(value, bool):
        raise PlanboardError(
            "INVALID_TYPE",
            f"{field_name} must be a number.",
            {field_name: str(value)},
        )
    return float(value)


@tool_router.post("/tool:drag_gesture")
async def drag_gesture(payload: dict[str, Any], request: Request) -> dict[str, Any]:
    """Replay a pointer gesture on a bar; optionally apply the resulting intent."""
    payload = _ensure_payload_dict(payload)
    _reject_unknown_fields(
        payload,
        LAYOUT_FIELDS | {"key", "mode", "startX", "moves", "releaseX", "apply"},
    )
    key = _require_string(payload, "key")
    raw_mode = _require_string(payload, "mode")
    try:
        mode = DragMode(raw_mode)
    except ValueError as exc:
        raise PlanboardError(
            "INVALID_MODE",
            "mode is not a recognised drag mode.",
            {"mode": raw_mode, "allowed": [item.value for item in DragMode]},
        ) from exc
    start_x = _read_pointer(payload, "startX")
    release_x = _read_pointer(payload, "releaseX")
    moves = payload.get("moves", [])
    if not isinstance(moves, list) or not all(
        isinstance(item, (int, float)) and not isinstance(item, bool) for item in moves
    ):
        raise PlanboardError(
            "INVALID_TYPE",
            "moves must be a list of numbers.",
            {"moves": str(moves)},
        )
    apply = _optional_bool(payload, "apply")

    services = get_request_services(request)
    px_per_day = _read_zoom(payload, services.config.zoom_px_per_day)
    layout = _build_layout(services, payload, px_per_day)
    bar = layout.bar_for(key)
    if bar is None:
        raise PlanboardError(
            "BAR_NOT_FOUND",
            "No timeline bar for this key.",
            {"key": key},
        )
    project_mode = mode.value.startswith("project-")
    if project_mode != (bar.kind == "project"):
        raise PlanboardError(
            "INVALID_MODE",
            "Drag mode does not match the bar kind.",
            {"mode": mode.value, "kind": bar.kind},
        )

    controller = DragController(px_per_day)
    begin = {
        DragMode.MOVE: controller.begin_move,
        DragMode.RESIZE_LEFT: controller.begin_resize_left,
        DragMode.RESIZE_RIGHT: controller.begin_resize_right,
        DragMode.PROJECT_MOVE: controller.begin_project_move,
        DragMode.PROJECT_RESIZE_LEFT: controller.begin_project_resize_left,
        DragMode.PROJECT_RESIZE_RIGHT: controller.begin_project_resize_right,
    }[mode]
    begin(bar, start_x)
    previews = [controller.pointer_move(float(x)).to_dict() for x in moves]
    intent = controller.release(release_x)

    result = None
    if apply and intent is not None:
        result = (await services.gateway.apply_intent(intent)).value
    return success_response(
        {
            "previews": previews,
            "intent": intent_to_dict(intent) if intent is not None else None,
            "result": result,
        }
    )
