"""Library scan that rebuilds the project, task and milestone collections."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from pathlib import PurePosixPath
from typing import Any, Callable, Iterable

from planboard.change_bus import ChangeBus
from planboard.derivation import derive_project, derive_task
from planboard.document_store import CHANGED, METADATA_RESOLVED
from planboard.errors import PlanboardError
from planboard.models import (
    DependencyEdge,
    MilestoneRecord,
    ProjectRecord,
    TaskRecord,
    make_task_key,
    normalize_task_id,
)
from planboard.parsing import ParsedDocument, parse_depends, parse_document

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ReindexResult:
    generation: int
    stale: bool
    projects: int = 0
    tasks: int = 0
    milestones: int = 0
    skipped: tuple[str, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        return {
            "generation": self.generation,
            "stale": self.stale,
            "projects": self.projects,
            "tasks": self.tasks,
            "milestones": self.milestones,
            "skipped": list(self.skipped),
        }


@dataclass
class IndexSnapshot:
    generation: int = 0
    projects: dict[str, ProjectRecord] = field(default_factory=dict)
    tasks: list[TaskRecord] = field(default_factory=list)
    tasks_by_key: dict[str, TaskRecord] = field(default_factory=dict)
    first_task_by_id: dict[str, TaskRecord] = field(default_factory=dict)
    milestones: list[MilestoneRecord] = field(default_factory=list)
    edges: list[DependencyEdge] = field(default_factory=list)


def _resolve_edges(snapshot: IndexSnapshot) -> None:
    for task in snapshot.tasks:
        for link_type, reference in parse_depends(task.prop("depends")):
            source_key = make_task_key(task.owner_key, reference)
            if source_key not in snapshot.tasks_by_key:
                fallback = snapshot.first_task_by_id.get(normalize_task_id(reference))
                if fallback is not None:
                    source_key = fallback.key
            edge = DependencyEdge(
                source_key=source_key,
                destination_key=task.key,
                link_type=link_type,
            )
            task.edges.append(edge)
            snapshot.edges.append(edge)


def build_snapshot(generation: int, documents: Iterable[ParsedDocument]) -> IndexSnapshot:
    """Derive every record for one scan; documents are consumed in key order."""
    snapshot = IndexSnapshot(generation=generation)
    for document in sorted(documents, key=lambda item: item.key):
        project = ProjectRecord(
            owner_key=document.key,
            title=document.title,
            frontmatter=document.frontmatter,
            start=document.start,
            end=document.end,
        )
        for task in document.tasks:
            if task.key in snapshot.tasks_by_key:
                logger.debug("Omitting duplicate task id %s in %s", task.local_id, task.owner_key)
                continue
            derive_task(task)
            project.tasks.append(task)
            snapshot.tasks.append(task)
            snapshot.tasks_by_key[task.key] = task
            snapshot.first_task_by_id.setdefault(task.id_lower, task)
        snapshot.projects[document.key] = derive_project(project)
        snapshot.milestones.extend(document.milestones)
    _resolve_edges(snapshot)
    return snapshot


class ProjectIndex:
    """Holds the last committed scan and rebuilds it on demand.

    Each call to :meth:`reindex` takes a new generation number. A scan that
    finishes after a newer generation was committed is discarded.
    """

    def __init__(
        self,
        store,
        *,
        project_flag: str = "project",
        bus: ChangeBus[ReindexResult] | None = None,
    ) -> None:
        self.store = store
        self.project_flag = project_flag
        self.bus: ChangeBus[ReindexResult] = bus or ChangeBus("index")
        self._issued_generation = 0
        self._snapshot = IndexSnapshot()
        self._pending: set[asyncio.Task] = set()

    @property
    def generation(self) -> int:
        return self._snapshot.generation

    def subscribe(self, callback: Callable[[ReindexResult], Any]) -> Callable[[], None]:
        return self.bus.subscribe(callback)

    async def reindex(self) -> ReindexResult:
        self._issued_generation += 1
        generation = self._issued_generation

        documents: list[ParsedDocument] = []
        skipped: list[str] = []
        for key in await self.store.list_documents():
            try:
                text = await self.store.read(key)
            except (OSError, UnicodeDecodeError, PlanboardError):
                logger.warning("Skipping unreadable document %s", key)
                skipped.append(key)
                continue
            parsed = parse_document(key, text, project_flag=self.project_flag)
            if parsed.is_project:
                documents.append(parsed)

        snapshot = build_snapshot(generation, documents)
        if self._snapshot.generation > generation:
            logger.warning(
                "Discarding stale scan %d; generation %d is already committed",
                generation,
                self._snapshot.generation,
            )
            return ReindexResult(generation=generation, stale=True, skipped=tuple(skipped))

        self._snapshot = snapshot
        result = ReindexResult(
            generation=generation,
            stale=False,
            projects=len(snapshot.projects),
            tasks=len(snapshot.tasks),
            milestones=len(snapshot.milestones),
            skipped=tuple(skipped),
        )
        logger.info(
            "Committed scan %d: %d projects, %d tasks, %d milestones",
            generation,
            result.projects,
            result.tasks,
            result.milestones,
        )
        self.bus.notify(result)
        return result

    def attach(self, store=None) -> Callable[[], None]:
        """Map each store signal to one scheduled reindex."""
        store = store or self.store
        unsubscribers = [
            store.on(CHANGED, self._schedule_reindex),
            store.on(METADATA_RESOLVED, self._schedule_reindex),
        ]

        def detach() -> None:
            for unsubscribe in unsubscribers:
                unsubscribe()

        return detach

    def _schedule_reindex(self, _payload: Any = None) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            asyncio.run(self.reindex())
            return
        task = loop.create_task(self.reindex())
        self._pending.add(task)
        task.add_done_callback(self._reindex_finished)

    def _reindex_finished(self, task: asyncio.Task) -> None:
        self._pending.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.error("Scheduled reindex failed", exc_info=error)

    async def drain(self) -> None:
        """Wait for every scheduled reindex to finish; failures are already logged."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    @property
    def projects(self) -> list[ProjectRecord]:
        return list(self._snapshot.projects.values())

    @property
    def tasks(self) -> list[TaskRecord]:
        return list(self._snapshot.tasks)

    @property
    def milestones(self) -> list[MilestoneRecord]:
        return list(self._snapshot.milestones)

    @property
    def edges(self) -> list[DependencyEdge]:
        return list(self._snapshot.edges)

    def get_project(self, path: str) -> ProjectRecord | None:
        return self._snapshot.projects.get(path)

    def get_task(self, task_id: str) -> TaskRecord | None:
        """Look a task up by key, or by bare id with the first match winning."""
        if "::" in task_id:
            return self.get_task_by_key(task_id)
        return self._snapshot.first_task_by_id.get(normalize_task_id(task_id))

    def get_task_by_key(self, task_key: str) -> TaskRecord | None:
        owner_key, _, local_id = task_key.rpartition("::")
        return self._snapshot.tasks_by_key.get(make_task_key(owner_key, local_id))

    def tasks_for(self, owner_key: str) -> list[TaskRecord]:
        project = self.get_project(owner_key)
        return list(project.tasks) if project else []

    def milestones_for(self, owner_key: str) -> list[MilestoneRecord]:
        owner_path = PurePosixPath(owner_key)
        aliases = {owner_key, owner_path.stem, owner_path.with_suffix("").as_posix()}
        return [
            milestone
            for milestone in self._snapshot.milestones
            if milestone.belongs_to in aliases
        ]

    def visible_projects(
        self, predicate: Callable[[ProjectRecord], bool] | None = None
    ) -> list[ProjectRecord]:
        if predicate is None:
            return self.projects
        return [project for project in self._snapshot.projects.values() if predicate(project)]
