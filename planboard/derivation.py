"""Derived task and project fields, resolved once per scan."""

from __future__ import annotations

import datetime as dt
import enum
import re

from planboard.models import (
    CheckboxState,
    CompletionSignal,
    HierarchyRole,
    Priority,
    ProjectRecord,
    TaskRecord,
    TaskStatus,
)
from planboard.parsing import is_truthy

WARNING_WINDOW_DAYS = 10

DONE_STATUSES = frozenset({"done", "complete", "completed"})
STATUS_SYNONYMS = {
    TaskStatus.IN_PROGRESS: frozenset(
        {"in progress", "in-progress", "inprogress", "doing", "active", "started", "wip"}
    ),
    TaskStatus.ON_HOLD: frozenset(
        {"on hold", "on-hold", "onhold", "hold", "blocked", "paused"}
    ),
    TaskStatus.NOT_STARTED: frozenset(
        {"not started", "not-started", "notstarted", "todo", "to do", "open", "backlog"}
    ),
}

RATIO_KEYS = ("progress", "percent", "percent complete", "percentcomplete", "completion")
COMPLETION_DATE_KEYS = ("completed", "completion date", "completiondate")

PRIORITY_VALUES = {
    Priority.HIGH: frozenset({"high", "h", "1", "p1"}),
    Priority.MEDIUM: frozenset({"medium", "med", "m", "2", "p2"}),
    Priority.LOW: frozenset({"low", "l", "3", "p3"}),
}
PRIORITY_TAGS = (
    (Priority.HIGH, re.compile(r"(?<![\w/])#(?:high|priority)\b", re.IGNORECASE)),
    (Priority.MEDIUM, re.compile(r"(?<![\w/])#(?:medium|med)\b", re.IGNORECASE)),
    (Priority.LOW, re.compile(r"(?<![\w/])#low\b", re.IGNORECASE)),
)

ROLE_PATTERNS = (
    (HierarchyRole.SUBTASK, re.compile(r"^sb[-_\d]", re.IGNORECASE)),
    (HierarchyRole.STORY, re.compile(r"^s[-_\d]", re.IGNORECASE)),
    (HierarchyRole.EPIC, re.compile(r"^e[-_\d]", re.IGNORECASE)),
)
MILESTONE_ID_PATTERN = re.compile(r"^m[-_\d]", re.IGNORECASE)


class ScheduleStatus(str, enum.Enum):
    COMPLETE = "complete"
    OFF_TRACK = "off-track"
    WARNING = "warning"
    ON_TRACK = "on-track"
    NO_DATE = "no-date"


def _status_text(task: TaskRecord) -> str:
    return " ".join((task.prop("status") or "").lower().split())


def parse_ratio(raw_value: str | None) -> float | None:
    """Read a completion ratio: ``40%``, ``0.4`` and ``40`` all mean 0.4."""
    if raw_value is None:
        return None
    cleaned = raw_value.strip()
    percent = cleaned.endswith("%")
    try:
        number = float(cleaned.rstrip("%").strip())
    except ValueError:
        return None
    if percent or number > 1:
        number /= 100
    return min(max(number, 0.0), 1.0)


def _explicit_ratio(task: TaskRecord) -> float | None:
    for key in RATIO_KEYS:
        ratio = parse_ratio(task.prop(key))
        if ratio is not None:
            return ratio
    return None


def detect_completion_signal(task: TaskRecord) -> CompletionSignal | None:
    """Return the first completion signal that holds, in precedence order."""
    if is_truthy(task.prop("done")):
        return CompletionSignal.DONE_FLAG
    if _status_text(task) in DONE_STATUSES:
        return CompletionSignal.STATUS_STRING
    ratio = _explicit_ratio(task)
    if ratio is not None and ratio >= 1:
        return CompletionSignal.COMPLETION_RATIO
    if task.checkbox is CheckboxState.DONE:
        return CompletionSignal.CHECKBOX
    if any(task.prop(key) for key in COMPLETION_DATE_KEYS):
        return CompletionSignal.COMPLETION_DATE
    return None


def classify_status(task: TaskRecord, signal: CompletionSignal | None) -> TaskStatus:
    if signal is not None:
        return TaskStatus.DONE
    status_text = _status_text(task)
    for status, synonyms in STATUS_SYNONYMS.items():
        if status_text in synonyms:
            return status
    if task.checkbox is CheckboxState.IN_PROGRESS:
        return TaskStatus.IN_PROGRESS
    if task.checkbox is CheckboxState.ON_HOLD:
        return TaskStatus.ON_HOLD
    ratio = _explicit_ratio(task)
    if ratio is not None and ratio > 0:
        return TaskStatus.IN_PROGRESS
    return TaskStatus.NOT_STARTED


def classify_priority(task: TaskRecord) -> Priority:
    explicit = (task.prop("priority") or "").strip().lower()
    for priority, values in PRIORITY_VALUES.items():
        if explicit in values:
            return priority
    for priority, pattern in PRIORITY_TAGS:
        if pattern.search(task.raw):
            return priority
    return Priority.NONE


def infer_role(local_id: str) -> HierarchyRole:
    for role, pattern in ROLE_PATTERNS:
        if pattern.match(local_id):
            return role
    return HierarchyRole.OTHER


def is_milestone_task(task: TaskRecord) -> bool:
    return bool(MILESTONE_ID_PATTERN.match(task.local_id)) or is_truthy(task.prop("milestone"))


def derive_task(task: TaskRecord) -> TaskRecord:
    """Resolve status, ratio, priority and role onto the record in place."""
    signal = detect_completion_signal(task)
    task.completion_signal = signal
    task.status = classify_status(task, signal)
    if task.status is TaskStatus.DONE:
        task.completion_ratio = 1.0
    else:
        task.completion_ratio = _explicit_ratio(task) or 0.0
    task.priority = classify_priority(task)
    task.role = infer_role(task.local_id)
    task.is_milestone = is_milestone_task(task)
    return task


def derive_project(project: ProjectRecord) -> ProjectRecord:
    total = len(project.tasks)
    done = sum(1 for task in project.tasks if task.is_done())
    project.total_tasks = total
    project.completed_tasks = done
    project.completion_ratio = done / total if total else 0.0
    open_due_dates = [task.due for task in project.tasks if task.due and not task.is_done()]
    project.next_due = min(open_due_dates) if open_due_dates else None
    return project


def schedule_status(project: ProjectRecord, today: dt.date) -> ScheduleStatus:
    if project.total_tasks and project.completed_tasks == project.total_tasks:
        return ScheduleStatus.COMPLETE
    deadline = project.end or project.next_due
    if deadline is None:
        return ScheduleStatus.NO_DATE
    remaining = (deadline - today).days
    if remaining < 0:
        return ScheduleStatus.OFF_TRACK
    if remaining <= WARNING_WINDOW_DAYS:
        return ScheduleStatus.WARNING
    return ScheduleStatus.ON_TRACK
