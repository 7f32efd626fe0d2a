"""Document key validation for enforcing the library boundary."""

from __future__ import annotations

from pathlib import Path, PurePosixPath

from planboard.errors import PlanboardError

ALLOWED_MARKDOWN_EXTENSIONS = {".md", ".markdown"}


def validate_path(library_root: Path, raw_path: str) -> Path:
    """Validate a document key and return the absolute path it names."""
    if not isinstance(raw_path, str):
        raise PlanboardError(
            "INVALID_TYPE",
            "Path must be a string.",
            {"path": str(raw_path), "type": type(raw_path).__name__},
        )

    normalized = raw_path.replace("\\", "/")
    candidate = PurePosixPath(normalized)

    if candidate.is_absolute():
        raise PlanboardError(
            "ABSOLUTE_PATH",
            "Absolute paths are not allowed.",
            {"path": raw_path},
        )

    if ".." in candidate.parts:
        raise PlanboardError(
            "PATH_TRAVERSAL",
            "Path traversal is not allowed.",
            {"path": raw_path},
        )

    if _contains_symlink(library_root, candidate):
        raise PlanboardError(
            "PATH_SYMLINK",
            "Symlinked paths are not allowed.",
            {"path": raw_path},
        )

    return library_root.joinpath(*candidate.parts)


def validate_document_path(library_root: Path, raw_path: str) -> Path:
    """Validate a document key that must name a markdown file."""
    resolved = validate_path(library_root, raw_path)
    if resolved.suffix.lower() not in ALLOWED_MARKDOWN_EXTENSIONS:
        raise PlanboardError(
            "NOT_MARKDOWN",
            "Only markdown documents are allowed.",
            {"path": raw_path},
        )
    return resolved


def _contains_symlink(library_root: Path, relative_path: PurePosixPath) -> bool:
    current = library_root
    for segment in relative_path.parts:
        current = current / segment
        if current.is_symlink():
            return True
    return False
