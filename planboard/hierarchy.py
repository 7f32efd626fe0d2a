"""Epic / Story / Subtask display order and progress rollups.

Membership comes from the ``epic::`` and ``story::`` references; a Subtask
without a story reference falls back to its first dependency. The cascade
emits each record at most once, so inconsistent or cyclic references can
only move a record to the top level, never duplicate or drop it.
"""

from __future__ import annotations

import math
from collections import defaultdict, deque
from dataclasses import dataclass, field
from typing import Any, Iterable

from planboard.models import HierarchyRole, TaskRecord, normalize_task_id
from planboard.parsing import parse_depends, strip_link_type

LABEL_PREFIXES = {
    HierarchyRole.EPIC: "E",
    HierarchyRole.STORY: "S",
    HierarchyRole.SUBTASK: "SB",
}


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def task_percent(task: TaskRecord) -> float:
    """Percentage on a 0..100 scale; done tasks count as 100."""
    return 100.0 if task.is_done() else task.completion_ratio * 100


@dataclass(frozen=True)
class StoryRollup:
    story_key: str
    percent: int
    done: bool
    subtask_count: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "story": self.story_key,
            "percent": self.percent,
            "done": self.done,
            "subtasks": self.subtask_count,
        }


@dataclass(frozen=True)
class EpicCount:
    epic_key: str
    done: int
    total: int

    @property
    def label(self) -> str:
        return f"{self.done}/{self.total}"

    def to_dict(self) -> dict[str, Any]:
        return {"epic": self.epic_key, "done": self.done, "total": self.total, "label": self.label}


@dataclass(frozen=True)
class CascadeRow:
    task: TaskRecord
    depth: int

    @property
    def label(self) -> str:
        prefix = LABEL_PREFIXES.get(self.task.role)
        if prefix is None:
            return self.task.text
        number = self.task.local_id[len(prefix):].lstrip("-_")
        return f"{prefix}-{number}. {self.task.text}"


@dataclass
class Membership:
    stories_by_epic: dict[str, list[TaskRecord]] = field(
        default_factory=lambda: defaultdict(list)
    )
    subtasks_by_story: dict[str, list[TaskRecord]] = field(
        default_factory=lambda: defaultdict(list)
    )


def story_reference(task: TaskRecord) -> str | None:
    explicit = task.prop("story")
    if explicit:
        return strip_link_type(explicit) or None
    references = parse_depends(task.prop("depends"))
    if references:
        return normalize_task_id(references[0][1])
    return None


def epic_reference(task: TaskRecord) -> str | None:
    explicit = task.prop("epic")
    return strip_link_type(explicit) if explicit else None


def build_membership(tasks: Iterable[TaskRecord]) -> Membership:
    membership = Membership()
    for task in tasks:
        if task.role is HierarchyRole.STORY:
            epic_id = epic_reference(task)
            if epic_id:
                membership.stories_by_epic[epic_id].append(task)
        elif task.role is HierarchyRole.SUBTASK:
            story_id = story_reference(task)
            if story_id:
                membership.subtasks_by_story[story_id].append(task)
    return membership


def cascade(tasks: list[TaskRecord], membership: Membership | None = None) -> list[CascadeRow]:
    """Return every task once: Epics with their Stories and Subtasks first."""
    membership = membership or build_membership(tasks)
    emitted: set[str] = set()
    rows: list[CascadeRow] = []

    def emit(task: TaskRecord, depth: int) -> bool:
        if task.key in emitted:
            return False
        emitted.add(task.key)
        rows.append(CascadeRow(task=task, depth=depth))
        return True

    def emit_story(story: TaskRecord, depth: int) -> None:
        if not emit(story, depth):
            return
        for subtask in membership.subtasks_by_story.get(story.id_lower, ()):
            emit(subtask, depth + 1)

    for epic in tasks:
        if epic.role is not HierarchyRole.EPIC:
            continue
        if emit(epic, 0):
            for story in membership.stories_by_epic.get(epic.id_lower, ()):
                emit_story(story, 1)

    for story in tasks:
        if story.role is HierarchyRole.STORY:
            emit_story(story, 0)

    for task in tasks:
        emit(task, 0)
    return rows


def rollup_story(story: TaskRecord, subtasks: list[TaskRecord]) -> StoryRollup:
    if not subtasks:
        percent = round_half_up(task_percent(story))
        return StoryRollup(story.key, percent, story.is_done(), 0)
    mean = sum(task_percent(subtask) for subtask in subtasks) / len(subtasks)
    percent = round_half_up(mean)
    return StoryRollup(story.key, percent, mean >= 100, len(subtasks))


def _dependency_ids(task: TaskRecord) -> set[str]:
    return {normalize_task_id(reference) for _, reference in parse_depends(task.prop("depends"))}


def count_epic_subtasks(
    epic: TaskRecord, tasks: list[TaskRecord], membership: Membership | None = None
) -> EpicCount:
    """Breadth-first walk over membership and dependency links from an Epic."""
    membership = membership or build_membership(tasks)
    dependents: dict[str, list[TaskRecord]] = defaultdict(list)
    for task in tasks:
        for dependency_id in _dependency_ids(task):
            dependents[dependency_id].append(task)

    seen = {epic.key}
    queue = deque([epic])
    subtasks: list[TaskRecord] = []
    while queue:
        node = queue.popleft()
        children = (
            list(membership.stories_by_epic.get(node.id_lower, ()))
            + list(membership.subtasks_by_story.get(node.id_lower, ()))
            + dependents.get(node.id_lower, [])
        )
        for child in children:
            if child.key in seen:
                continue
            seen.add(child.key)
            queue.append(child)
            if child.role is HierarchyRole.SUBTASK:
                subtasks.append(child)
    done = sum(1 for subtask in subtasks if subtask.is_done())
    return EpicCount(epic.key, done, len(subtasks))


@dataclass
class Hierarchy:
    rows: list[CascadeRow]
    stories: dict[str, StoryRollup]
    epics: dict[str, EpicCount]

    def percent_for(self, task: TaskRecord) -> int:
        rollup = self.stories.get(task.key)
        if rollup is not None:
            return rollup.percent
        return round_half_up(task_percent(task))

    def done_for(self, task: TaskRecord) -> bool:
        rollup = self.stories.get(task.key)
        return rollup.done if rollup is not None else task.is_done()

    def to_dict(self) -> dict[str, Any]:
        return {
            "rows": [
                {
                    "key": row.task.key,
                    "id": row.task.local_id,
                    "depth": row.depth,
                    "label": row.label,
                    "role": row.task.role.value,
                    "percent": self.percent_for(row.task),
                    "done": self.done_for(row.task),
                }
                for row in self.rows
            ],
            "stories": [rollup.to_dict() for rollup in self.stories.values()],
            "epics": [count.to_dict() for count in self.epics.values()],
        }


def resolve_hierarchy(tasks: list[TaskRecord]) -> Hierarchy:
    membership = build_membership(tasks)
    stories = {
        task.key: rollup_story(task, membership.subtasks_by_story.get(task.id_lower, []))
        for task in tasks
        if task.role is HierarchyRole.STORY
    }
    epics = {
        task.key: count_epic_subtasks(task, tasks, membership)
        for task in tasks
        if task.role is HierarchyRole.EPIC
    }
    return Hierarchy(rows=cascade(tasks, membership), stories=stories, epics=epics)
