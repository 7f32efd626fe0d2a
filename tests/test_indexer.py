import asyncio
import logging
import os

from planboard.change_bus import ChangeBus
from planboard.document_store import CHANGED, METADATA_RESOLVED, SIGNALS, FileDocumentStore
from planboard.indexer import ProjectIndex

ALPHA = "\n".join(
    [
        "---",
        "project: true",
        "---",
        "- [ ] Plan ^T-1",
        "- [x] Shared ^X-1",
        "",
    ]
)
BETA = "\n".join(
    [
        "---",
        "project: true",
        "---",
        "- [ ] Local twin ^T-1",
        "- [ ] Uses alpha depends:: X-1 ^T-5",
        "- [ ] Uses local depends:: SS:T-1 ^T-6",
        "- [ ] Dangling depends:: NOPE ^T-7",
        "- [ ] Repeated id ^T-1",
        "",
        "| ID | Title | Date | File |",
        "| --- | --- | --- | --- |",
        "| M-1 | Beta review | 2024-02-01 | beta |",
        "",
    ]
)
NOTES = "Plain notes\n- [ ] Not a project task ^N-1\n"


class MemoryStore:
    """In-memory stand-in for the document store with an optional read gate."""

    def __init__(self, documents):
        self.documents = dict(documents)
        self.hold = None
        self._buses = {signal: ChangeBus(signal) for signal in SIGNALS}

    async def list_documents(self):
        return sorted(self.documents)

    async def read(self, key):
        if self.hold is not None:
            hold, self.hold = self.hold, None
            await hold.wait()
        value = self.documents[key]
        if isinstance(value, Exception):
            raise value
        return value

    def on(self, signal, callback):
        return self._buses[signal].subscribe(callback)

    def emit(self, signal, payload=None):
        self._buses[signal].notify(payload)


def _library():
    return {"projects/alpha.md": ALPHA, "projects/beta.md": BETA, "notes.md": NOTES}


def test_reindex_builds_projects_from_flagged_documents():
    index = ProjectIndex(MemoryStore(_library()))

    result = asyncio.run(index.reindex())

    assert result.stale is False
    assert result.generation == 1
    assert [project.owner_key for project in index.projects] == [
        "projects/alpha.md",
        "projects/beta.md",
    ]
    assert result.tasks == 6
    assert index.get_project("notes.md") is None


def test_reindex_is_idempotent():
    index = ProjectIndex(MemoryStore(_library()))

    asyncio.run(index.reindex())
    first = [task.to_dict() for task in index.tasks]
    asyncio.run(index.reindex())
    second = [task.to_dict() for task in index.tasks]

    assert first == second
    assert index.generation == 2


def test_duplicate_ids_in_one_document_keep_the_first():
    index = ProjectIndex(MemoryStore(_library()))
    asyncio.run(index.reindex())

    twins = [task for task in index.tasks_for("projects/beta.md") if task.id_lower == "t-1"]

    assert [task.text for task in twins] == ["Local twin"]


def test_bare_id_lookup_first_match_wins():
    index = ProjectIndex(MemoryStore(_library()))
    asyncio.run(index.reindex())

    assert index.get_task("t-1").owner_key == "projects/alpha.md"
    assert index.get_task("projects/beta.md::T-1").text == "Local twin"
    assert index.get_task("missing") is None


def test_dependency_edges_resolve_locally_then_globally():
    index = ProjectIndex(MemoryStore(_library()))
    asyncio.run(index.reindex())

    edges = {edge.destination_key: edge for edge in index.edges}

    cross = edges["projects/beta.md::t-5"]
    assert cross.source_key == "projects/alpha.md::x-1"
    assert cross.is_cross_document is True

    local = edges["projects/beta.md::t-6"]
    assert local.source_key == "projects/beta.md::t-1"
    assert local.link_type.value == "SS"
    assert local.is_cross_document is False

    dangling = edges["projects/beta.md::t-7"]
    assert dangling.source_key == "projects/beta.md::nope"
    assert index.get_task_by_key(dangling.source_key) is None


def test_milestones_for_matches_file_alias():
    index = ProjectIndex(MemoryStore(_library()))
    asyncio.run(index.reindex())

    assert [milestone.title for milestone in index.milestones_for("projects/beta.md")] == [
        "Beta review"
    ]
    assert index.milestones_for("projects/alpha.md") == []


def test_unreadable_document_is_skipped(caplog):
    documents = _library()
    documents["projects/alpha.md"] = OSError("gone")
    index = ProjectIndex(MemoryStore(documents))

    with caplog.at_level(logging.WARNING, logger="planboard.indexer"):
        result = asyncio.run(index.reindex())

    assert result.skipped == ("projects/alpha.md",)
    assert [project.owner_key for project in index.projects] == ["projects/beta.md"]
    assert "Skipping unreadable document projects/alpha.md" in caplog.text


def test_visible_projects_applies_predicate():
    index = ProjectIndex(MemoryStore(_library()))
    asyncio.run(index.reindex())

    visible = index.visible_projects(lambda project: project.owner_key.endswith("beta.md"))

    assert [project.owner_key for project in visible] == ["projects/beta.md"]
    assert len(index.visible_projects()) == 2


def test_stale_scan_is_discarded(caplog):
    store = MemoryStore(_library())
    index = ProjectIndex(store)
    notified = []
    index.subscribe(notified.append)

    async def scenario():
        gate = asyncio.Event()
        store.hold = gate
        slow = asyncio.create_task(index.reindex())
        await asyncio.sleep(0)
        store.documents["projects/gamma.md"] = "---\nproject: true\n---\n"
        fast = await index.reindex()
        gate.set()
        return await slow, fast

    with caplog.at_level(logging.WARNING, logger="planboard.indexer"):
        slow, fast = asyncio.run(scenario())

    assert (slow.generation, slow.stale) == (1, True)
    assert (fast.generation, fast.stale) == (2, False)
    assert index.generation == 2
    assert index.get_project("projects/gamma.md") is not None
    assert [result.generation for result in notified] == [2]
    assert "Discarding stale scan 1" in caplog.text


def test_store_signals_each_schedule_one_reindex():
    store = MemoryStore(_library())
    index = ProjectIndex(store)
    index.attach()

    async def scenario():
        store.emit(CHANGED, "projects/alpha.md")
        store.emit(METADATA_RESOLVED)
        await index.drain()

    asyncio.run(scenario())

    assert index.generation == 2


def test_failed_scheduled_reindex_is_logged(caplog):
    store = MemoryStore({"projects/alpha.md": RuntimeError("disk gone")})
    index = ProjectIndex(store)
    index.attach()

    async def scenario():
        store.emit(CHANGED, "projects/alpha.md")
        await index.drain()

    with caplog.at_level(logging.ERROR, logger="planboard.indexer"):
        asyncio.run(scenario())

    assert index.generation == 0
    assert "Scheduled reindex failed" in caplog.text
    assert "disk gone" in caplog.text


def test_signal_outside_event_loop_reindexes_immediately():
    store = MemoryStore(_library())
    index = ProjectIndex(store)
    detach = index.attach(store)

    store.emit(CHANGED, "projects/alpha.md")
    assert index.generation == 1

    detach()
    store.emit(CHANGED, "projects/alpha.md")
    assert index.generation == 1


def test_poll_changes_on_file_store_triggers_reindex(tmp_path):
    (tmp_path / "alpha.md").write_text(ALPHA, encoding="utf-8")
    store = FileDocumentStore(tmp_path, git_commits=False)
    index = ProjectIndex(store)
    index.attach()

    async def scenario():
        await store.prime_snapshot()
        unchanged = await store.poll_changes()
        target = tmp_path / "alpha.md"
        target.write_text(ALPHA + "- [ ] Added ^T-2\n", encoding="utf-8")
        stat = target.stat()
        os.utime(target, ns=(stat.st_atime_ns, stat.st_mtime_ns + 5_000_000_000))
        changed = await store.poll_changes()
        await index.drain()
        return unchanged, changed

    unchanged, changed = asyncio.run(scenario())

    assert unchanged == []
    assert changed == ["alpha.md"]
    assert index.generation == 2
    assert index.get_task("alpha.md::t-2") is not None
