"""Filesystem-backed document store.

Documents are addressed by their POSIX path relative to the library root.
Every write is atomic, committed to the library's git history and recorded
in the activity log; a failed commit restores the previous content.
"""

from __future__ import annotations

import asyncio
import logging
import os
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable

from planboard.activity import ActivityEntry, append_activity
from planboard.change_bus import ChangeBus
from planboard.errors import PlanboardError
from planboard.git_history import LibraryHistory
from planboard.paths import ALLOWED_MARKDOWN_EXTENSIONS, validate_document_path

logger = logging.getLogger(__name__)

CHANGED = "changed"
METADATA_RESOLVED = "metadata-resolved"
SIGNALS = (CHANGED, METADATA_RESOLVED)


def _replace_file(target_path: Path, content: str) -> None:
    """Write through a hidden sibling temp file and rename it over the target."""
    fd, temp_name = tempfile.mkstemp(
        dir=target_path.parent, prefix=f".{target_path.name}.", suffix=".tmp"
    )
    try:
        with os.fdopen(fd, "w", encoding="utf-8", newline="") as temp_file:
            temp_file.write(content)
            temp_file.flush()
            os.fsync(temp_file.fileno())
        os.replace(temp_name, target_path)
    except BaseException:
        Path(temp_name).unlink(missing_ok=True)
        raise


@dataclass(frozen=True)
class WriteReceipt:
    key: str
    commit_sha: str | None

    def to_dict(self) -> dict[str, Any]:
        return {"path": self.key, "commitSha": self.commit_sha}


class FileDocumentStore:
    def __init__(self, library_root: Path, *, git_commits: bool = True) -> None:
        self.library_root = Path(library_root).resolve()
        self.git_commits = git_commits
        self._buses: dict[str, ChangeBus[Any]] = {
            signal: ChangeBus(signal) for signal in SIGNALS
        }
        self._snapshot: dict[str, int] = {}
        self.history = LibraryHistory(self.library_root)

    def on(self, signal: str, callback: Callable[[Any], Any]) -> Callable[[], None]:
        """Subscribe to ``changed`` (payload: document key) or ``metadata-resolved``."""
        if signal not in self._buses:
            raise ValueError(f"Unknown store signal: {signal}")
        return self._buses[signal].subscribe(callback)

    def emit(self, signal: str, payload: Any = None) -> None:
        if signal not in self._buses:
            raise ValueError(f"Unknown store signal: {signal}")
        self._buses[signal].notify(payload)

    def resolve(self, key: str) -> Path:
        return validate_document_path(self.library_root, key)

    def git_head(self) -> str | None:
        return self.history.head()

    async def list_documents(self) -> list[str]:
        return await asyncio.to_thread(self._collect_documents)

    async def read(self, key: str) -> str:
        path = self.resolve(key)
        raw = await asyncio.to_thread(path.read_bytes)
        return raw.decode("utf-8")

    async def write(
        self, key: str, content: str, *, operation: str, summary: str
    ) -> WriteReceipt:
        receipt = await asyncio.to_thread(
            self._write_document, key, content, operation, summary
        )
        self._snapshot[key] = self._mtime(self.resolve(key))
        return receipt

    async def prime_snapshot(self) -> None:
        """Record current modification times without emitting any signal."""
        self._snapshot = await asyncio.to_thread(self._take_snapshot)

    async def poll_changes(self) -> list[str]:
        """Compare file modification times with the last poll and emit signals."""
        snapshot = await asyncio.to_thread(self._take_snapshot)
        previous = self._snapshot
        self._snapshot = snapshot
        changed = sorted(
            key
            for key in set(previous) | set(snapshot)
            if previous.get(key) != snapshot.get(key)
        )
        for key in changed:
            self.emit(CHANGED, key)
        if changed:
            self.emit(METADATA_RESOLVED)
        return changed

    def _collect_documents(self) -> list[str]:
        documents: list[str] = []
        for path in self.library_root.rglob("*"):
            relative = path.relative_to(self.library_root)
            if any(part.startswith(".") for part in relative.parts):
                continue
            if path.is_symlink() or not path.is_file():
                continue
            if path.suffix.lower() not in ALLOWED_MARKDOWN_EXTENSIONS:
                continue
            documents.append(relative.as_posix())
        return sorted(documents)

    def _take_snapshot(self) -> dict[str, int]:
        return {
            key: self._mtime(self.library_root / key)
            for key in self._collect_documents()
        }

    @staticmethod
    def _mtime(path: Path) -> int:
        try:
            return path.stat().st_mtime_ns
        except OSError:
            return -1

    def _write_document(
        self, key: str, content: str, operation: str, summary: str
    ) -> WriteReceipt:
        target_path = self.resolve(key)
        if target_path.exists() and not target_path.is_file():
            raise PlanboardError(
                "INVALID_PATH",
                "Path must reference a file.",
                {"path": key},
            )
        original_content = (
            target_path.read_bytes().decode("utf-8") if target_path.exists() else None
        )
        relative_path = target_path.relative_to(self.library_root)
        if self.git_commits:
            self.history.open()
        head_state = self.history.head_state()

        target_path.parent.mkdir(parents=True, exist_ok=True)
        _replace_file(target_path, content)

        commit_sha = None
        if self.git_commits:
            try:
                commit_sha = self.history.commit(relative_path, f"{operation}: {key}")
            except Exception as exc:
                self._restore(target_path, relative_path, original_content)
                raise PlanboardError(
                    "GIT_ERROR",
                    "Git commit failed; mutation rolled back.",
                    {"path": key, "operation": operation},
                ) from exc

        try:
            append_activity(
                self.library_root,
                ActivityEntry(
                    operation=operation, path=key, summary=summary, commit_sha=commit_sha
                ),
            )
        except Exception as exc:
            self._restore(target_path, relative_path, original_content)
            if self.git_commits:
                self.history.reset_head(head_state)
            raise PlanboardError(
                "LOG_ERROR",
                "Activity log write failed; mutation rolled back.",
                {"path": key, "operation": operation},
            ) from exc

        logger.info("%s %s (%s)", operation, key, commit_sha or "no commit")
        return WriteReceipt(key=key, commit_sha=commit_sha)

    def _restore(
        self, target_path: Path, relative_path: Path, original_content: str | None
    ) -> None:
        """Put back the previous content, or remove a file the write created."""
        if original_content is None:
            target_path.unlink(missing_ok=True)
        else:
            _replace_file(target_path, original_content)
        if self.git_commits:
            self.history.restage(relative_path)
