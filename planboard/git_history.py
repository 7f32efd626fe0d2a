"""Git history of the document library.

Every store write becomes one dulwich commit. The store records the branch
tip before writing so that a failure after the commit can move it back.
"""

from __future__ import annotations

import logging
from pathlib import Path, PurePath

from dulwich import porcelain
from dulwich.repo import Repo

from planboard.errors import PlanboardError

logger = logging.getLogger(__name__)

HeadState = tuple[Path | None, str | None]


def _packed_ref_sha(packed_refs: Path, ref_name: str) -> str | None:
    try:
        contents = packed_refs.read_text(encoding="utf-8")
    except OSError:
        return None
    for line in contents.splitlines():
        if line.startswith(("#", "^")):
            continue
        sha, _, name = line.partition(" ")
        if name.strip() == ref_name:
            return sha
    return None


class LibraryHistory:
    def __init__(self, library_root: Path) -> None:
        self.library_root = Path(library_root)
        self.git_dir = self.library_root / ".git"

    def head(self) -> str | None:
        """Commit sha HEAD resolves to, or None before the first commit."""
        return self.head_state()[1]

    def head_state(self) -> HeadState:
        """Return the branch ref file HEAD points at (None when detached) and its sha."""
        try:
            head = (self.git_dir / "HEAD").read_text(encoding="utf-8").strip()
        except OSError:
            return None, None
        if not head.startswith("ref:"):
            return None, head or None

        ref_name = head[len("ref:") :].strip()
        if not ref_name:
            return None, None
        ref_path = self.git_dir / ref_name
        if not ref_path.exists():
            return ref_path, _packed_ref_sha(self.git_dir / "packed-refs", ref_name)
        try:
            return ref_path, ref_path.read_text(encoding="utf-8").strip() or None
        except OSError:
            return ref_path, None

    def open(self) -> Repo:
        """Open the library repository, initializing it on first use."""
        try:
            if self.git_dir.exists():
                return Repo(str(self.library_root))
            logger.info("Initializing git history in %s", self.library_root)
            return porcelain.init(str(self.library_root))
        except Exception as exc:
            raise PlanboardError(
                "GIT_ERROR",
                "Git repository could not be initialized.",
                {"path": str(self.library_root)},
            ) from exc

    def commit(self, relative_path: PurePath, message: str) -> str:
        repo = self.open()
        repo.get_worktree().stage([relative_path.as_posix()])
        sha = porcelain.commit(repo, message=message)
        return sha.decode("ascii") if isinstance(sha, bytes) else str(sha)

    def restage(self, relative_path: PurePath) -> None:
        """Bring the index back in line with the working tree after a rollback."""
        try:
            self.open().get_worktree().stage([relative_path.as_posix()])
        except Exception:
            logger.warning("Could not restage %s after rollback", relative_path, exc_info=True)

    def reset_head(self, state: HeadState) -> None:
        """Point HEAD, or the branch it names, back at a recorded sha."""
        ref_path, sha = state
        try:
            if ref_path is not None:
                if sha is None:
                    ref_path.unlink(missing_ok=True)
                else:
                    ref_path.parent.mkdir(parents=True, exist_ok=True)
                    ref_path.write_text(f"{sha}\n", encoding="utf-8")
            elif sha is not None:
                (self.git_dir / "HEAD").write_text(f"{sha}\n", encoding="utf-8")
        except OSError:
            logger.warning("Could not restore git HEAD in %s", self.library_root, exc_info=True)
