"""Targeted text edits for task and project state changes.

Edits touch a single line (or the front-matter Start/End lines for a
project) and leave the rest of the document byte-for-byte unchanged. A
missing task or line is reported as a result value.
"""

from __future__ import annotations

import datetime as dt
import enum
import logging
import re
from typing import Callable, Union

from planboard.derivation import COMPLETION_DATE_KEYS, RATIO_KEYS, parse_ratio
from planboard.errors import PlanboardError
from planboard.intents import (
    BarMoved,
    BarResized,
    ProjectBarMoved,
    ProjectBarResized,
    RescheduleIntent,
)
from planboard.models import CheckboxState, TaskRecord, TaskStatus, normalize_prop_key
from planboard.parsing import (
    BLOCK_REF_TAIL,
    ISO_DATE_PATTERN,
    PROP_KEY_PATTERN,
    block_reference,
    normalize_frontmatter_key,
    parse_iso_date,
    split_frontmatter,
    split_table_row,
)

logger = logging.getLogger(__name__)

LIST_CHECKBOX_PATTERN = re.compile(r"^(\s*(?:[-*+]|\d+[.)])\s+)\[[ xX/\-]\]")
CELL_CHECKBOX_PATTERN = re.compile(r"(\|\s*(?:[-*+]\s+)?)\[[ xX/\-]\]")
ANY_CHECKBOX_PATTERN = re.compile(r"\[[ xX/\-]\]")
FRONTMATTER_LINE_PATTERN = re.compile(r"^(?P<key>[^:#][^:]*?)\s*:(?P<value>.*)$")

STATUS_MARKERS = {
    TaskStatus.DONE: CheckboxState.DONE,
    TaskStatus.IN_PROGRESS: CheckboxState.IN_PROGRESS,
    TaskStatus.ON_HOLD: CheckboxState.ON_HOLD,
    TaskStatus.NOT_STARTED: CheckboxState.UNCHECKED,
}
STATUS_WORDS = {
    TaskStatus.DONE: "done",
    TaskStatus.IN_PROGRESS: "in progress",
    TaskStatus.ON_HOLD: "on hold",
    TaskStatus.NOT_STARTED: "not started",
}
DATE_PROPERTIES = ("start", "due")
START_KEYS = ("startdate", "start")
END_KEYS = ("enddate", "end")
REFERENCE_KEYS = ("depends", "story", "epic")


class MutationResult(str, enum.Enum):
    APPLIED = "applied"
    NOT_FOUND = "not-found"
    INVALID_DATE = "invalid-date"
    NO_CHANGE = "no-change"


LineEdit = Callable[[str, TaskRecord], Union[str, MutationResult]]


def _declared_id(line: str, columns: dict[str, int]) -> str | None:
    """The id a line declares for itself, with the precedence the parser uses."""
    reference = block_reference(line)
    if reference:
        return reference.lower()
    declared = property_value(line, "id")
    if declared:
        return declared.lower()
    if split_table_row(line) is not None:
        cell = cell_value(line, columns.get("id", 0))
        if cell:
            return cell.lower()
    return None


def _without_references(line: str, columns: dict[str, int]) -> str:
    for key in REFERENCE_KEYS:
        span = _property_value_span(line, key)
        if span is not None:
            line = f"{line[: span[0]]}{line[span[1] :]}"
        elif key in columns:
            line = set_cell(line, columns[key], "")
    return line


def locate_task_line(lines: list[str], task: TaskRecord) -> int | None:
    """Find the task's line, trusting the cached line number only if it still matches.

    A line matches when its own id (trailing ``^id``, ``id::`` or ID cell) is the
    task's. Lines that merely reference the task through ``depends``, ``story``
    or ``epic`` never match.
    """
    task_id = task.local_id.lower()
    if 0 <= task.line < len(lines) and _declared_id(lines[task.line], task.columns) == task_id:
        return task.line
    for index, line in enumerate(lines):
        if ANY_CHECKBOX_PATTERN.search(line) and _declared_id(line, task.columns) == task_id:
            return index
    id_text = re.compile(rf"(?<![\w\-]){re.escape(task.local_id)}(?![\w\-])", re.IGNORECASE)
    for index, line in enumerate(lines):
        if not ANY_CHECKBOX_PATTERN.search(line) or _declared_id(line, task.columns):
            continue
        if id_text.search(_without_references(line, task.columns)):
            return index
    return None


def _property_value_span(line: str, key: str) -> tuple[int, int] | None:
    matches = list(PROP_KEY_PATTERN.finditer(line))
    for position, match in enumerate(matches):
        if normalize_prop_key(match.group("key")) != key:
            continue
        end = matches[position + 1].start() if position + 1 < len(matches) else len(line)
        segment = line[match.end() : end]
        for stop in ("|", "]"):
            if stop in segment:
                segment = segment[: segment.index(stop)]
        tail = BLOCK_REF_TAIL.search(segment)
        if tail:
            segment = segment[: tail.start()]
        stripped = segment.strip()
        if not stripped:
            return match.end(), match.end()
        start = match.end() + segment.index(stripped)
        return start, start + len(stripped)
    return None


def _insertion_point(line: str) -> int:
    tail = BLOCK_REF_TAIL.search(line.rstrip().rstrip("|").rstrip())
    if tail:
        return tail.start()
    checkbox = CELL_CHECKBOX_PATTERN.search(line)
    if checkbox:
        next_pipe = line.find("|", checkbox.end())
        if next_pipe != -1:
            return len(line[:next_pipe].rstrip())
    return len(line.rstrip())


def set_property(line: str, key: str, value: str) -> str:
    """Rewrite one ``key:: value`` token, appending it when absent."""
    key = normalize_prop_key(key)
    span = _property_value_span(line, key)
    if span is not None:
        start, end = span
        if start == end:
            return f"{line[:start]} {value}{line[end:]}"
        return f"{line[:start]}{value}{line[end:]}"
    point = _insertion_point(line)
    return f"{line[:point]} {key}:: {value}{line[point:]}"


def property_value(line: str, key: str) -> str | None:
    span = _property_value_span(line, normalize_prop_key(key))
    if span is None:
        return None
    return line[span[0] : span[1]]


def _cell_span(line: str, index: int) -> tuple[int, int] | None:
    pipes = [position for position, char in enumerate(line) if char == "|"]
    if not pipes or line[: pipes[0]].strip():
        return None
    spans = list(zip(pipes, pipes[1:]))
    trailing = line.rstrip()
    if len(trailing) > pipes[-1] + 1:
        spans.append((pipes[-1], len(trailing)))
    if index >= len(spans):
        return None
    start, end = spans[index]
    return start + 1, end


def cell_value(line: str, index: int) -> str | None:
    span = _cell_span(line, index)
    if span is None:
        return None
    return line[span[0] : span[1]].strip()


def set_cell(line: str, index: int, value: str) -> str:
    """Replace the content of one table cell, keeping its padding."""
    span = _cell_span(line, index)
    if span is None:
        return line
    start, end = span
    cell = line[start:end]
    content = cell.strip()
    if not content:
        return f"{line[:start]} {value} {line[end:]}"
    offset = start + len(cell) - len(cell.lstrip())
    return f"{line[:offset]}{value}{line[offset + len(content):]}"


def read_task_property(
    line: str, key: str, columns: dict[str, int] | None = None
) -> str | None:
    """Inline ``key:: value`` first, then the header column the key came from."""
    key = normalize_prop_key(key)
    value = property_value(line, key)
    if value is None and columns and key in columns:
        return cell_value(line, columns[key])
    return value


def write_task_property(
    line: str, key: str, value: str, columns: dict[str, int] | None = None
) -> str:
    key = normalize_prop_key(key)
    if property_value(line, key) is None and columns and key in columns:
        if _cell_span(line, columns[key]) is not None:
            return set_cell(line, columns[key], value)
    return set_property(line, key, value)


def set_checkbox(line: str, state: CheckboxState) -> str:
    replacement = rf"\g<1>[{state.marker}]"
    if LIST_CHECKBOX_PATTERN.search(line):
        return LIST_CHECKBOX_PATTERN.sub(replacement, line, count=1)
    return CELL_CHECKBOX_PATTERN.sub(replacement, line, count=1)


def remove_property(line: str, key: str) -> str:
    """Drop one ``key:: value`` token together with the space before it."""
    key = normalize_prop_key(key)
    for match in PROP_KEY_PATTERN.finditer(line):
        if normalize_prop_key(match.group("key")) != key:
            continue
        _, end = _property_value_span(line, key)
        if match.group(0).startswith("[") and line[end:].lstrip().startswith("]"):
            end = line.index("]", end) + 1
        start = match.start()
        while start > 0 and line[start - 1] in " \t":
            start -= 1
        return f"{line[:start]}{line[end:]}"
    return line


def clear_completion(line: str, columns: dict[str, int] | None = None) -> str:
    """Remove the ratio and completion-date signals that would keep a task done."""
    for key in RATIO_KEYS:
        value = read_task_property(line, key, columns)
        ratio = parse_ratio(value)
        if ratio is not None and ratio >= 1:
            reset = "0%" if value.strip().endswith("%") else "0"
            line = write_task_property(line, key, reset, columns)
    for key in COMPLETION_DATE_KEYS:
        if property_value(line, key) is not None:
            line = remove_property(line, key)
        elif columns and key in columns and cell_value(line, columns[key]):
            line = set_cell(line, columns[key], "")
    return line


def shift_line_dates(
    line: str, delta_start: int, delta_due: int, columns: dict[str, int] | None = None
) -> str | MutationResult:
    """Shift the ISO start and due values present on a task line or its table cells."""
    deltas = dict(zip(DATE_PROPERTIES, (delta_start, delta_due)))
    shifted = line
    for key, delta in deltas.items():
        if delta == 0:
            continue
        current = read_task_property(shifted, key, columns)
        if current is None or current == "":
            continue
        if not ISO_DATE_PATTERN.match(current):
            return MutationResult.INVALID_DATE
        try:
            moved = parse_iso_date(current) + dt.timedelta(days=delta)
        except ValueError:
            return MutationResult.INVALID_DATE
        shifted = write_task_property(shifted, key, moved.isoformat(), columns)
    return shifted


def shift_frontmatter_dates(
    text: str, delta_start: int, delta_end: int
) -> str | MutationResult:
    """Shift the front-matter Start/End lines; both keys must exist."""
    block, body_start = split_frontmatter(text)
    if block is None:
        return MutationResult.NOT_FOUND
    lines = text.splitlines(keepends=True)
    found: dict[tuple[str, ...], int] = {}
    for index in range(1, body_start):
        match = FRONTMATTER_LINE_PATTERN.match(lines[index].rstrip("\r\n"))
        if not match:
            continue
        normalized = normalize_frontmatter_key(match.group("key"))
        for keys in (START_KEYS, END_KEYS):
            if normalized in keys and keys not in found:
                found[keys] = index
    if len(found) != 2:
        return MutationResult.NOT_FOUND

    for keys, delta in ((START_KEYS, delta_start), (END_KEYS, delta_end)):
        if delta == 0:
            continue
        index = found[keys]
        raw_line = lines[index]
        body = raw_line.rstrip("\r\n")
        ending = raw_line[len(body) :]
        match = FRONTMATTER_LINE_PATTERN.match(body)
        try:
            current = parse_iso_date(match.group("value"))
        except ValueError:
            return MutationResult.INVALID_DATE
        moved = current + dt.timedelta(days=delta)
        lines[index] = f"{body[: match.end('key')]}: {moved.isoformat()}{ending}"
    return "".join(lines)


class MutationGateway:
    """Applies task and project edits through the store, then reindexes."""

    def __init__(self, store, index) -> None:
        self.store = store
        self.index = index

    async def update_task(self, task_id: str, changes: dict[str, str]) -> MutationResult:
        normalized = {normalize_prop_key(key): str(value) for key, value in changes.items()}
        for key in DATE_PROPERTIES:
            value = normalized.get(key)
            if value:
                try:
                    parse_iso_date(value)
                except ValueError:
                    return MutationResult.INVALID_DATE
        if not normalized:
            return MutationResult.NO_CHANGE

        def edit(line: str, task: TaskRecord) -> str:
            for key, value in normalized.items():
                line = write_task_property(line, key, value, task.columns)
            return line

        summary = ", ".join(f"{key}={value}" for key, value in normalized.items())
        return await self._edit_task_line(task_id, "update_task", summary, edit)

    async def move_task_to_status(self, task_id: str, status: TaskStatus) -> MutationResult:
        status = TaskStatus(status)

        def edit(line: str, task: TaskRecord) -> str:
            line = set_checkbox(line, STATUS_MARKERS[status])
            if read_task_property(line, "status", task.columns) is not None:
                line = write_task_property(line, "status", STATUS_WORDS[status], task.columns)
            if read_task_property(line, "done", task.columns) is not None:
                done = "true" if status is TaskStatus.DONE else "false"
                line = write_task_property(line, "done", done, task.columns)
            if status is not TaskStatus.DONE:
                line = clear_completion(line, task.columns)
            return line

        return await self._edit_task_line(task_id, "move_task_to_status", status.value, edit)

    async def shift_task_dates(
        self, task_key: str, delta_start: int, delta_due: int
    ) -> MutationResult:
        if delta_start == 0 and delta_due == 0:
            return MutationResult.NO_CHANGE
        summary = f"start {delta_start:+d}d, due {delta_due:+d}d"
        return await self._edit_task_line(
            task_key,
            "shift_task_dates",
            summary,
            lambda line, task: shift_line_dates(line, delta_start, delta_due, task.columns),
        )

    async def shift_project_dates(
        self, project_key: str, delta_start: int, delta_end: int
    ) -> MutationResult:
        if delta_start == 0 and delta_end == 0:
            return MutationResult.NO_CHANGE
        if self.index.get_project(project_key) is None:
            return MutationResult.NOT_FOUND
        text = await self._read(project_key)
        if text is None:
            return MutationResult.NOT_FOUND
        shifted = shift_frontmatter_dates(text, delta_start, delta_end)
        if isinstance(shifted, MutationResult):
            return shifted
        if shifted == text:
            return MutationResult.NO_CHANGE
        summary = f"start {delta_start:+d}d, end {delta_end:+d}d"
        await self._commit(project_key, shifted, "shift_project_dates", summary)
        return MutationResult.APPLIED

    async def apply_intent(self, intent: RescheduleIntent) -> MutationResult:
        if isinstance(intent, BarMoved):
            return await self.shift_task_dates(
                intent.task_key, intent.delta_days, intent.delta_days
            )
        if isinstance(intent, BarResized):
            return await self.shift_task_dates(
                intent.task_key, intent.delta_start, intent.delta_due
            )
        if isinstance(intent, ProjectBarMoved):
            return await self.shift_project_dates(
                intent.project_key, intent.delta_days, intent.delta_days
            )
        if isinstance(intent, ProjectBarResized):
            return await self.shift_project_dates(
                intent.project_key, intent.delta_start, intent.delta_end
            )
        raise TypeError(f"Unsupported intent: {intent!r}")

    async def _read(self, key: str) -> str | None:
        try:
            return await self.store.read(key)
        except (OSError, UnicodeDecodeError, PlanboardError):
            logger.debug("Document %s could not be read for mutation", key)
            return None

    async def _edit_task_line(
        self, task_id: str, operation: str, summary: str, edit: LineEdit
    ) -> MutationResult:
        task = self.index.get_task(task_id)
        if task is None:
            return MutationResult.NOT_FOUND
        text = await self._read(task.owner_key)
        if text is None:
            return MutationResult.NOT_FOUND

        lines = text.splitlines(keepends=True)
        bodies = [line.rstrip("\r\n") for line in lines]
        index = locate_task_line(bodies, task)
        if index is None:
            logger.debug("No line found for task %s in %s", task.local_id, task.owner_key)
            return MutationResult.NOT_FOUND

        edited = edit(bodies[index], task)
        if isinstance(edited, MutationResult):
            return edited
        if edited == bodies[index]:
            return MutationResult.NO_CHANGE
        lines[index] = edited + lines[index][len(bodies[index]) :]
        await self._commit(
            task.owner_key, "".join(lines), operation, f"{task.local_id}: {summary}"
        )
        return MutationResult.APPLIED

    async def _commit(self, key: str, content: str, operation: str, summary: str) -> None:
        await self.store.write(key, content, operation=operation, summary=summary)
        logger.info("Applied %s to %s", operation, key)
        await self.index.reindex()
