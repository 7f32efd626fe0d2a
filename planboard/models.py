"""Records produced by a scan of the document library.

Every record is rebuilt from scratch on each reindex. Holders of a record
must re-resolve it through the index after a rebuild instead of keeping
references across scans.
"""

from __future__ import annotations

import datetime as dt
import enum
from dataclasses import dataclass, field
from typing import Any


class CheckboxState(str, enum.Enum):
    UNCHECKED = "unchecked"
    IN_PROGRESS = "in-progress"
    ON_HOLD = "on-hold"
    DONE = "done"

    @classmethod
    def from_marker(cls, marker: str) -> "CheckboxState":
        return _CHECKBOX_MARKERS[marker]

    @property
    def marker(self) -> str:
        return _MARKERS_BY_STATE[self]


_CHECKBOX_MARKERS = {
    " ": CheckboxState.UNCHECKED,
    "/": CheckboxState.IN_PROGRESS,
    "-": CheckboxState.ON_HOLD,
    "x": CheckboxState.DONE,
    "X": CheckboxState.DONE,
}
_MARKERS_BY_STATE = {
    CheckboxState.UNCHECKED: " ",
    CheckboxState.IN_PROGRESS: "/",
    CheckboxState.ON_HOLD: "-",
    CheckboxState.DONE: "x",
}


class TaskStatus(str, enum.Enum):
    NOT_STARTED = "not-started"
    IN_PROGRESS = "in-progress"
    ON_HOLD = "on-hold"
    DONE = "done"


class CompletionSignal(str, enum.Enum):
    """Which piece of evidence marked a task done, in precedence order."""

    DONE_FLAG = "done-flag"
    STATUS_STRING = "status-string"
    COMPLETION_RATIO = "completion-ratio"
    CHECKBOX = "checkbox"
    COMPLETION_DATE = "completion-date"


class Priority(str, enum.Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"
    NONE = "none"


class HierarchyRole(str, enum.Enum):
    EPIC = "epic"
    STORY = "story"
    SUBTASK = "subtask"
    OTHER = "other"


class LinkType(str, enum.Enum):
    FINISH_START = "FS"
    START_START = "SS"
    FINISH_FINISH = "FF"
    START_FINISH = "SF"


def make_task_key(owner_key: str, local_id: str) -> str:
    """Compose the global identity of a task: owner path plus lower-cased id."""
    return f"{owner_key}::{normalize_task_id(local_id)}"


def normalize_task_id(raw_id: str) -> str:
    return raw_id.replace("\u00a0", " ").strip().lstrip("^").strip().lower()


def split_task_key(task_key: str) -> tuple[str, str]:
    owner_key, _, local_id = task_key.rpartition("::")
    return owner_key, local_id


@dataclass(frozen=True)
class DependencyEdge:
    source_key: str
    destination_key: str
    link_type: LinkType = LinkType.FINISH_START

    @property
    def is_cross_document(self) -> bool:
        return split_task_key(self.source_key)[0] != split_task_key(self.destination_key)[0]

    def to_dict(self) -> dict[str, Any]:
        return {
            "source": self.source_key,
            "destination": self.destination_key,
            "linkType": self.link_type.value,
            "crossDocument": self.is_cross_document,
        }


@dataclass
class TaskRecord:
    local_id: str
    owner_key: str
    text: str
    props: dict[str, str]
    checkbox: CheckboxState
    line: int
    raw: str
    status: TaskStatus = TaskStatus.NOT_STARTED
    completion_ratio: float = 0.0
    completion_signal: CompletionSignal | None = None
    priority: Priority = Priority.NONE
    role: HierarchyRole = HierarchyRole.OTHER
    start: dt.date | None = None
    due: dt.date | None = None
    depends: list[str] = field(default_factory=list)
    edges: list[DependencyEdge] = field(default_factory=list)
    is_milestone: bool = False
    description: str = ""
    columns: dict[str, int] = field(default_factory=dict)

    @property
    def key(self) -> str:
        return make_task_key(self.owner_key, self.local_id)

    @property
    def id_lower(self) -> str:
        return normalize_task_id(self.local_id)

    def is_done(self) -> bool:
        return self.status is TaskStatus.DONE

    def prop(self, name: str) -> str | None:
        return self.props.get(normalize_prop_key(name))

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.local_id,
            "key": self.key,
            "document": self.owner_key,
            "text": self.text,
            "props": dict(self.props),
            "checkbox": self.checkbox.value,
            "status": self.status.value,
            "completionRatio": self.completion_ratio,
            "completionSignal": (
                self.completion_signal.value if self.completion_signal else None
            ),
            "priority": self.priority.value,
            "role": self.role.value,
            "start": self.start.isoformat() if self.start else None,
            "due": self.due.isoformat() if self.due else None,
            "depends": list(self.depends),
            "edges": [edge.to_dict() for edge in self.edges],
            "milestone": self.is_milestone,
            "description": self.description,
            "line": self.line,
        }


@dataclass
class MilestoneRecord:
    milestone_id: str
    title: str
    date: dt.date
    owner_key: str
    description: str | None = None
    document: str | None = None

    @property
    def belongs_to(self) -> str:
        """Document the milestone is drawn for: explicit file, else its container."""
        return self.document or self.owner_key

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.milestone_id,
            "title": self.title,
            "date": self.date.isoformat(),
            "description": self.description,
            "document": self.belongs_to,
        }


@dataclass
class ProjectRecord:
    owner_key: str
    title: str
    frontmatter: dict[str, Any]
    tasks: list[TaskRecord] = field(default_factory=list)
    start: dt.date | None = None
    end: dt.date | None = None
    completion_ratio: float = 0.0
    next_due: dt.date | None = None
    completed_tasks: int = 0
    total_tasks: int = 0

    def to_dict(self, *, include_tasks: bool = False) -> dict[str, Any]:
        data: dict[str, Any] = {
            "path": self.owner_key,
            "title": self.title,
            "start": self.start.isoformat() if self.start else None,
            "end": self.end.isoformat() if self.end else None,
            "completionRatio": self.completion_ratio,
            "nextDue": self.next_due.isoformat() if self.next_due else None,
            "completedTasks": self.completed_tasks,
            "totalTasks": self.total_tasks,
        }
        if include_tasks:
            data["tasks"] = [task.to_dict() for task in self.tasks]
        return data


def normalize_prop_key(raw_key: str) -> str:
    """Property keys compare case-insensitively, with NBSP and runs of spaces folded."""
    return " ".join(raw_key.replace("\u00a0", " ").split()).lower()
