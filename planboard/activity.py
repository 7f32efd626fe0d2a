"""Mutation activity log.

One JSON object per line in ``activity.log`` at the library root, written
after the git commit of the change it describes. Lines that are blank or not
JSON objects are skipped when reading.
"""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from fastapi import Request

from planboard.errors import PlanboardError, success_response
from planboard.payload import (
    _ensure_payload_dict,
    _optional_int,
    _reject_unknown_fields,
)
from planboard.services import get_request_services
from planboard.tool_router import tool_router

logger = logging.getLogger(__name__)

ACTIVITY_LOG_FILENAME = "activity.log"
DEFAULT_LIMIT = 50


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class ActivityEntry:
    operation: str
    path: str
    summary: str
    commit_sha: str | None = None
    timestamp: datetime = field(default_factory=_utc_now)

    def to_dict(self) -> dict[str, str]:
        return {
            "timestamp": self.timestamp.isoformat(),
            "operation": self.operation,
            "path": self.path,
            "summary": self.summary,
            "commitSha": self.commit_sha or "",
        }


def append_activity(library_root: Path, entry: ActivityEntry) -> None:
    line = json.dumps(entry.to_dict(), sort_keys=True, separators=(",", ":"))
    with (library_root / ACTIVITY_LOG_FILENAME).open("a", encoding="utf-8") as log_file:
        log_file.write(line + "\n")
        log_file.flush()
        os.fsync(log_file.fileno())


def _as_utc(moment: datetime) -> datetime:
    return moment if moment.tzinfo else moment.replace(tzinfo=timezone.utc)


def _entry_time(entry: dict[str, Any]) -> datetime | None:
    try:
        return _as_utc(datetime.fromisoformat(entry["timestamp"]))
    except (KeyError, TypeError, ValueError):
        return None


def read_activity(
    library_root: Path,
    *,
    since: datetime | None = None,
    limit: int = DEFAULT_LIMIT,
    path: str | None = None,
    operation: str | None = None,
) -> list[dict[str, Any]]:
    """Return the newest ``limit`` matching entries, oldest first."""
    log_path = library_root / ACTIVITY_LOG_FILENAME
    if not log_path.exists():
        return []
    since = _as_utc(since) if since else None

    entries: list[dict[str, Any]] = []
    with log_path.open(encoding="utf-8") as log_file:
        for number, line in enumerate(log_file, start=1):
            if not line.strip():
                continue
            try:
                entry = json.loads(line)
            except json.JSONDecodeError:
                logger.debug("Skipping malformed activity line %d", number)
                continue
            if not isinstance(entry, dict):
                continue
            if path is not None and entry.get("path") != path:
                continue
            if operation is not None and entry.get("operation") != operation:
                continue
            if since is not None:
                entry_time = _entry_time(entry)
                if entry_time is not None and entry_time < since:
                    continue
            entries.append(entry)
    return entries[-limit:]


def _optional_filter(payload: dict[str, Any], field_name: str) -> str | None:
    value = payload.get(field_name)
    if value is not None and (not isinstance(value, str) or not value.strip()):
        raise PlanboardError(
            "INVALID_TYPE",
            f"{field_name} must be a non-empty string.",
            {field_name: str(value)},
        )
    return value.strip() if value else None


@tool_router.post("/tool:read_activity_log")
def read_activity_log(payload: dict[str, Any], request: Request) -> dict[str, Any]:
    """Read mutation activity, optionally narrowed by time, document or operation."""
    payload = _ensure_payload_dict(payload)
    _reject_unknown_fields(payload, {"limit", "since", "path", "operation"})

    limit = _optional_int(payload, "limit", DEFAULT_LIMIT)
    if limit <= 0:
        raise PlanboardError(
            "INVALID_TYPE",
            "limit must be a positive integer.",
            {"limit": str(limit)},
        )

    since_value = payload.get("since")
    since = None
    if since_value is not None:
        try:
            since = datetime.fromisoformat(str(since_value))
        except ValueError as exc:
            raise PlanboardError(
                "INVALID_DATE",
                "since must be an ISO date or date-time.",
                {"since": str(since_value)},
            ) from exc

    path = _optional_filter(payload, "path")
    operation = _optional_filter(payload, "operation")

    services = get_request_services(request)
    entries = read_activity(
        services.store.library_root,
        since=since,
        limit=limit,
        path=path,
        operation=operation,
    )
    return success_response({"entries": entries})
