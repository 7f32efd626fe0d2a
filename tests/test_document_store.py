import asyncio

import pytest

from planboard.document_store import CHANGED, METADATA_RESOLVED, FileDocumentStore
from planboard.errors import PlanboardError


def _populate(root):
    (root / "projects").mkdir()
    (root / "projects" / "alpha.md").write_text("# Alpha\n", encoding="utf-8")
    (root / "projects" / "beta.markdown").write_text("# Beta\n", encoding="utf-8")
    (root / "notes.md").write_text("notes\n", encoding="utf-8")
    (root / "image.png").write_bytes(b"\x89PNG")
    (root / ".obsidian").mkdir()
    (root / ".obsidian" / "workspace.md").write_text("hidden\n", encoding="utf-8")
    (root / "link.md").symlink_to(root / "notes.md")


def test_list_documents_skips_hidden_symlinks_and_other_files(tmp_path):
    _populate(tmp_path)
    store = FileDocumentStore(tmp_path, git_commits=False)

    documents = asyncio.run(store.list_documents())

    assert documents == ["notes.md", "projects/alpha.md", "projects/beta.markdown"]


def test_read_returns_document_text(tmp_path):
    _populate(tmp_path)
    store = FileDocumentStore(tmp_path, git_commits=False)

    assert asyncio.run(store.read("projects/alpha.md")) == "# Alpha\n"


def test_read_rejects_traversal(tmp_path):
    store = FileDocumentStore(tmp_path, git_commits=False)

    with pytest.raises(PlanboardError) as excinfo:
        asyncio.run(store.read("../outside.md"))

    assert excinfo.value.error.code == "PATH_TRAVERSAL"


def test_write_creates_parent_directories_and_commits(tmp_path):
    store = FileDocumentStore(tmp_path)

    receipt = asyncio.run(
        store.write(
            "projects/new/gamma.md", "# Gamma\n", operation="create", summary="gamma"
        )
    )

    assert (tmp_path / "projects" / "new" / "gamma.md").read_text(encoding="utf-8") == (
        "# Gamma\n"
    )
    assert receipt.commit_sha == store.git_head()
    assert receipt.to_dict() == {
        "path": "projects/new/gamma.md",
        "commitSha": receipt.commit_sha,
    }


def test_write_without_git_leaves_no_repository(tmp_path):
    store = FileDocumentStore(tmp_path, git_commits=False)

    receipt = asyncio.run(
        store.write("plan.md", "# Plan\n", operation="create", summary="plan")
    )

    assert receipt.commit_sha is None
    assert store.git_head() is None
    assert not (tmp_path / ".git").exists()


def test_write_rejects_directory_target(tmp_path):
    (tmp_path / "folder.md").mkdir()
    store = FileDocumentStore(tmp_path, git_commits=False)

    with pytest.raises(PlanboardError) as excinfo:
        asyncio.run(store.write("folder.md", "x", operation="create", summary="x"))

    assert excinfo.value.error.code in {"INVALID_PATH", "INVALID_TYPE"}


def test_unknown_signal_is_rejected(tmp_path):
    store = FileDocumentStore(tmp_path, git_commits=False)

    with pytest.raises(ValueError):
        store.on("renamed", lambda _payload: None)
    with pytest.raises(ValueError):
        store.emit("renamed")


def test_poll_changes_reports_added_and_removed_documents(tmp_path):
    _populate(tmp_path)
    store = FileDocumentStore(tmp_path, git_commits=False)
    asyncio.run(store.prime_snapshot())
    events = []
    store.on(CHANGED, lambda key: events.append((CHANGED, key)))
    store.on(METADATA_RESOLVED, lambda _payload: events.append((METADATA_RESOLVED, None)))

    (tmp_path / "notes.md").unlink()
    (tmp_path / "projects" / "delta.md").write_text("# Delta\n", encoding="utf-8")
    changed = asyncio.run(store.poll_changes())

    assert changed == ["notes.md", "projects/delta.md"]
    assert events == [
        (CHANGED, "notes.md"),
        (CHANGED, "projects/delta.md"),
        (METADATA_RESOLVED, None),
    ]
    assert asyncio.run(store.poll_changes()) == []


def test_store_write_does_not_report_its_own_change(tmp_path):
    _populate(tmp_path)
    store = FileDocumentStore(tmp_path, git_commits=False)
    asyncio.run(store.prime_snapshot())

    asyncio.run(
        store.write("projects/alpha.md", "# Alpha v2\n", operation="edit", summary="v2")
    )

    assert asyncio.run(store.poll_changes()) == []
