"""Timeline geometry, drag gestures and zoom throttling.

All geometry is expressed in day offsets from an anchor date and in pixels
at the current zoom stop. Nothing here mutates documents: a finished drag
gesture yields a reschedule intent for the mutation gateway.
"""

from __future__ import annotations

import calendar
import datetime as dt
import enum
import math
from dataclasses import dataclass, field
from typing import Any, Callable, Generic, Iterable, TypeVar

from planboard.config import DEFAULT_ZOOM_PX_PER_DAY, ZOOM_STOPS
from planboard.derivation import WARNING_WINDOW_DAYS, ScheduleStatus, schedule_status
from planboard.hierarchy import resolve_hierarchy, round_half_up
from planboard.intents import (
    BarMoved,
    BarResized,
    ProjectBarMoved,
    ProjectBarResized,
    RescheduleIntent,
)
from planboard.models import HierarchyRole, ProjectRecord, TaskRecord

MINIMUM_HORIZON_DAYS = 30
MINIMUM_BAR_WIDTH = 3
HEAT_EXCLUDED_ROLES = (HierarchyRole.EPIC, HierarchyRole.STORY)

T = TypeVar("T")
R = TypeVar("R")


def normalize_zoom(px_per_day: Any) -> int:
    """Return a zoom stop; integral floats such as 8.0 count as their integer."""
    if isinstance(px_per_day, float) and px_per_day.is_integer():
        px_per_day = int(px_per_day)
    if isinstance(px_per_day, bool) or not isinstance(px_per_day, int):
        return DEFAULT_ZOOM_PX_PER_DAY
    if px_per_day in ZOOM_STOPS:
        return px_per_day
    return DEFAULT_ZOOM_PX_PER_DAY


def zoom_to_index(px_per_day: float) -> int:
    """Index of the closest zoom stop, clamped to the ends of the list."""
    if px_per_day <= ZOOM_STOPS[0]:
        return 0
    if px_per_day >= ZOOM_STOPS[-1]:
        return len(ZOOM_STOPS) - 1
    return min(range(len(ZOOM_STOPS)), key=lambda index: abs(ZOOM_STOPS[index] - px_per_day))


def index_to_zoom(index: int) -> int:
    return ZOOM_STOPS[min(max(index, 0), len(ZOOM_STOPS) - 1)]


def _end_of_month(day: dt.date) -> dt.date:
    return day.replace(day=calendar.monthrange(day.year, day.month)[1])


def _add_months(day: dt.date, months: int) -> dt.date:
    month_index = day.month - 1 + months
    year = day.year + month_index // 12
    month = month_index % 12 + 1
    return dt.date(year, month, min(day.day, calendar.monthrange(year, month)[1]))


def compute_horizon(
    anchor: dt.date,
    latest_due: dt.date | None = None,
    configured_end: dt.date | None = None,
) -> int:
    """Days rendered after the anchor: at least a month, normally a full year."""
    if configured_end is not None and configured_end > anchor:
        return (configured_end - anchor).days + 1
    latest_days = 0
    if latest_due is not None:
        latest_days = (_end_of_month(latest_due) - anchor).days + 1
    one_year_days = (_end_of_month(_add_months(anchor, 11)) - anchor).days + 1
    return max(MINIMUM_HORIZON_DAYS, latest_days, one_year_days)


def bar_span(
    start: dt.date | None, due: dt.date | None, anchor: dt.date
) -> tuple[int, int] | None:
    """Return (start offset, span in days); tasks without a due date have no bar."""
    if due is None:
        return None
    if start is None:
        return (due - anchor).days, 1
    return (start - anchor).days, max((due - start).days, 0) + 1


def round_half_away(value: float) -> int:
    return int(math.copysign(math.floor(abs(value) + 0.5), value))


@dataclass(frozen=True)
class Rect:
    x: float
    y: float
    width: float
    height: float

    @property
    def x2(self) -> float:
        return self.x + self.width

    @property
    def y2(self) -> float:
        return self.y + self.height

    @property
    def center_y(self) -> float:
        return self.y + self.height / 2

    def to_dict(self) -> dict[str, float]:
        return {"x": self.x, "y": self.y, "width": self.width, "height": self.height}


@dataclass(frozen=True)
class LayoutOptions:
    row_height: int = 24
    project_row_height: int = 28
    bar_height: int = 14
    top: int = 0


@dataclass(frozen=True)
class TimelineBar:
    key: str
    kind: str
    start_offset: int
    span_days: int
    rect: Rect
    role: HierarchyRole | None = None
    urgency: str | None = None
    done: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "key": self.key,
            "kind": self.kind,
            "startOffset": self.start_offset,
            "spanDays": self.span_days,
            "rect": self.rect.to_dict(),
            "role": self.role.value if self.role else None,
            "urgency": self.urgency,
            "done": self.done,
        }


@dataclass(frozen=True)
class TimelineRow:
    key: str
    kind: str
    label: str
    depth: int
    top: float
    height: float
    bar: TimelineBar | None = None
    percent: int | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "key": self.key,
            "kind": self.kind,
            "label": self.label,
            "depth": self.depth,
            "top": self.top,
            "height": self.height,
            "bar": self.bar.to_dict() if self.bar else None,
            "percent": self.percent,
        }


@dataclass(frozen=True)
class HeatDay:
    offset: int
    date: dt.date
    count: int
    weekend: bool

    def to_dict(self) -> dict[str, Any]:
        return {
            "offset": self.offset,
            "date": self.date.isoformat(),
            "count": self.count,
            "weekend": self.weekend,
        }


@dataclass(frozen=True)
class MilestoneMarker:
    offset: int
    date: dt.date
    label: str
    document: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "offset": self.offset,
            "date": self.date.isoformat(),
            "label": self.label,
            "document": self.document,
        }


@dataclass
class TimelineLayout:
    anchor: dt.date
    px_per_day: int
    horizon: int
    rows: list[TimelineRow] = field(default_factory=list)
    bars: dict[str, TimelineBar] = field(default_factory=dict)
    heat: list[HeatDay] = field(default_factory=list)
    milestones: list[MilestoneMarker] = field(default_factory=list)
    project_status: dict[str, ScheduleStatus] = field(default_factory=dict)

    @property
    def width(self) -> int:
        return (self.horizon + 1) * self.px_per_day

    def bar_for(self, key: str) -> TimelineBar | None:
        return self.bars.get(key)

    def to_dict(self) -> dict[str, Any]:
        return {
            "anchor": self.anchor.isoformat(),
            "pxPerDay": self.px_per_day,
            "zoomIndex": zoom_to_index(self.px_per_day),
            "horizon": self.horizon,
            "width": self.width,
            "rows": [row.to_dict() for row in self.rows],
            "heat": [day.to_dict() for day in self.heat],
            "milestones": [marker.to_dict() for marker in self.milestones],
            "projectStatus": {key: status.value for key, status in self.project_status.items()},
        }


def visible_set(
    records: Iterable[T], predicate: Callable[[T], bool] | None = None
) -> list[T]:
    """Filter records with a caller-supplied predicate; no view state is kept here."""
    if predicate is None:
        return list(records)
    return [record for record in records if predicate(record)]


def _urgency(task: TaskRecord, anchor: dt.date) -> str | None:
    if task.is_done() or task.due is None:
        return None
    remaining = (task.due - anchor).days
    if remaining < 0:
        return "overdue"
    if remaining <= WARNING_WINDOW_DAYS:
        return "warning"
    return None


def _bar_rect(
    start_offset: int,
    span: int,
    px_per_day: int,
    row_top: float,
    row_height: int,
    bar_height: int,
) -> Rect:
    return Rect(
        x=start_offset * px_per_day,
        y=row_top + (row_height - bar_height) / 2,
        width=max(span * px_per_day, MINIMUM_BAR_WIDTH),
        height=bar_height,
    )


def build_timeline(
    projects: Iterable[ProjectRecord],
    *,
    anchor: dt.date,
    px_per_day: int = DEFAULT_ZOOM_PX_PER_DAY,
    configured_end: dt.date | None = None,
    milestones_for: Callable[[str], list] | None = None,
    task_filter: Callable[[TaskRecord], bool] | None = None,
    options: LayoutOptions = LayoutOptions(),
) -> TimelineLayout:
    """Lay out one row per project followed by its tasks in cascade order."""
    projects = list(projects)
    px_per_day = normalize_zoom(px_per_day)
    due_dates = [task.due for project in projects for task in project.tasks if task.due]
    horizon = compute_horizon(anchor, max(due_dates) if due_dates else None, configured_end)
    layout = TimelineLayout(anchor=anchor, px_per_day=px_per_day, horizon=horizon)
    tally: dict[int, int] = {}
    top = float(options.top)

    for project in projects:
        layout.project_status[project.owner_key] = schedule_status(project, anchor)
        project_bar = None
        if project.start and project.end and project.end >= project.start:
            start_offset = (project.start - anchor).days
            span = (project.end - project.start).days + 1
            project_bar = TimelineBar(
                key=project.owner_key,
                kind="project",
                start_offset=start_offset,
                span_days=span,
                rect=_bar_rect(
                    start_offset, span, px_per_day, top,
                    options.project_row_height, options.bar_height,
                ),
                done=bool(project.total_tasks) and project.completed_tasks == project.total_tasks,
            )
            layout.bars[project.owner_key] = project_bar
        layout.rows.append(
            TimelineRow(
                key=project.owner_key,
                kind="project",
                label=project.title,
                depth=0,
                top=top,
                height=options.project_row_height,
                bar=project_bar,
                percent=round_half_up(project.completion_ratio * 100),
            )
        )
        top += options.project_row_height

        hierarchy = resolve_hierarchy(project.tasks)
        for row in hierarchy.rows:
            task = row.task
            if task_filter is not None and not task_filter(task):
                continue
            bar = None
            span_info = bar_span(task.start, task.due, anchor)
            if span_info is not None:
                start_offset, span = span_info
                bar = TimelineBar(
                    key=task.key,
                    kind="task",
                    start_offset=start_offset,
                    span_days=span,
                    rect=_bar_rect(
                        start_offset, span, px_per_day, top,
                        options.row_height, options.bar_height,
                    ),
                    role=task.role,
                    urgency=_urgency(task, anchor),
                    done=hierarchy.done_for(task),
                )
                layout.bars[task.key] = bar
                if task.role not in HEAT_EXCLUDED_ROLES:
                    for offset in range(start_offset, start_offset + span):
                        if (anchor + dt.timedelta(days=offset)).weekday() < 5:
                            tally[offset] = tally.get(offset, 0) + 1
                if task.is_milestone:
                    layout.milestones.append(
                        MilestoneMarker(
                            offset=start_offset,
                            date=anchor + dt.timedelta(days=start_offset),
                            label=task.local_id,
                            document=project.owner_key,
                        )
                    )
            layout.rows.append(
                TimelineRow(
                    key=task.key,
                    kind="task",
                    label=row.label,
                    depth=row.depth,
                    top=top,
                    height=options.row_height,
                    bar=bar,
                    percent=hierarchy.percent_for(task),
                )
            )
            top += options.row_height

        for milestone in (milestones_for(project.owner_key) if milestones_for else []):
            layout.milestones.append(
                MilestoneMarker(
                    offset=(milestone.date - anchor).days,
                    date=milestone.date,
                    label=milestone.title,
                    document=project.owner_key,
                )
            )

    for offset in range(horizon + 1):
        day = anchor + dt.timedelta(days=offset)
        layout.heat.append(
            HeatDay(
                offset=offset,
                date=day,
                count=tally.get(offset, 0),
                weekend=day.weekday() >= 5,
            )
        )
    return layout


class DragMode(str, enum.Enum):
    MOVE = "move"
    RESIZE_LEFT = "resize-left"
    RESIZE_RIGHT = "resize-right"
    PROJECT_MOVE = "project-move"
    PROJECT_RESIZE_LEFT = "project-resize-left"
    PROJECT_RESIZE_RIGHT = "project-resize-right"


@dataclass(frozen=True)
class DragPreview:
    start_offset: int
    span_days: int
    x: float
    width: float

    def to_dict(self) -> dict[str, Any]:
        return {
            "startOffset": self.start_offset,
            "spanDays": self.span_days,
            "x": self.x,
            "width": self.width,
        }


@dataclass
class _DragState:
    mode: DragMode
    key: str
    origin_offset: int
    origin_span: int
    pointer_x: float


class DragController:
    """Turns one pointer gesture into at most one reschedule intent.

    ``pointer_move`` only previews geometry. ``release`` rounds the pixel
    delta to whole days and emits nothing when the bar ends where it began.
    """

    def __init__(self, px_per_day: int = DEFAULT_ZOOM_PX_PER_DAY) -> None:
        self.px_per_day = normalize_zoom(px_per_day)
        self._state: _DragState | None = None

    @property
    def active(self) -> bool:
        return self._state is not None

    def begin_move(self, bar: TimelineBar, pointer_x: float) -> None:
        self._begin(DragMode.MOVE, bar, pointer_x)

    def begin_resize_left(self, bar: TimelineBar, pointer_x: float) -> None:
        self._begin(DragMode.RESIZE_LEFT, bar, pointer_x)

    def begin_resize_right(self, bar: TimelineBar, pointer_x: float) -> None:
        self._begin(DragMode.RESIZE_RIGHT, bar, pointer_x)

    def begin_project_move(self, bar: TimelineBar, pointer_x: float) -> None:
        self._begin(DragMode.PROJECT_MOVE, bar, pointer_x)

    def begin_project_resize_left(self, bar: TimelineBar, pointer_x: float) -> None:
        self._begin(DragMode.PROJECT_RESIZE_LEFT, bar, pointer_x)

    def begin_project_resize_right(self, bar: TimelineBar, pointer_x: float) -> None:
        self._begin(DragMode.PROJECT_RESIZE_RIGHT, bar, pointer_x)

    def _begin(self, mode: DragMode, bar: TimelineBar, pointer_x: float) -> None:
        self._state = _DragState(mode, bar.key, bar.start_offset, bar.span_days, pointer_x)

    def _delta_days(self, pointer_x: float) -> int:
        assert self._state is not None
        return round_half_away((pointer_x - self._state.pointer_x) / self.px_per_day)

    def pointer_move(self, pointer_x: float) -> DragPreview | None:
        state = self._state
        if state is None:
            return None
        delta = self._delta_days(pointer_x)
        offset, span = state.origin_offset, state.origin_span
        if state.mode in (DragMode.MOVE, DragMode.PROJECT_MOVE):
            offset += delta
        elif state.mode in (DragMode.RESIZE_LEFT, DragMode.PROJECT_RESIZE_LEFT):
            if span - delta >= 1:
                offset, span = offset + delta, span - delta
        elif span + delta >= 1:
            span += delta
        return DragPreview(
            start_offset=offset,
            span_days=span,
            x=offset * self.px_per_day,
            width=max(span * self.px_per_day, MINIMUM_BAR_WIDTH),
        )

    def release(self, pointer_x: float) -> RescheduleIntent | None:
        state = self._state
        if state is None:
            return None
        delta = self._delta_days(pointer_x)
        self._state = None
        if delta == 0:
            return None
        if state.mode is DragMode.MOVE:
            return BarMoved(task_key=state.key, delta_days=delta)
        if state.mode is DragMode.RESIZE_LEFT:
            return BarResized(task_key=state.key, delta_start=delta, delta_due=0)
        if state.mode is DragMode.RESIZE_RIGHT:
            return BarResized(task_key=state.key, delta_start=0, delta_due=delta)
        if state.mode is DragMode.PROJECT_MOVE:
            return ProjectBarMoved(project_key=state.key, delta_days=delta)
        if state.mode is DragMode.PROJECT_RESIZE_LEFT:
            return ProjectBarResized(project_key=state.key, delta_start=delta, delta_end=0)
        return ProjectBarResized(project_key=state.key, delta_start=0, delta_end=delta)

    def cancel(self) -> None:
        self._state = None


class FrameThrottle(Generic[T, R]):
    """Coalesce requests so the recompute runs at most once per frame."""

    def __init__(self, recompute: Callable[[T], R]) -> None:
        self._recompute = recompute
        self._pending: list[T] = []

    @property
    def pending(self) -> bool:
        return bool(self._pending)

    def request(self, value: T) -> None:
        self._pending[:] = [value]

    def flush(self) -> R | None:
        if not self._pending:
            return None
        value = self._pending.pop()
        return self._recompute(value)
