"""Best-effort extraction of tasks, milestones and front matter from markdown.

Parsing is heuristic and partial-success: a task or milestone whose id or
date cannot be read is left out of the result, the rest of the document is
still indexed.
"""

from __future__ import annotations

import datetime as dt
import logging
import re
from dataclasses import dataclass, field
from pathlib import PurePosixPath
from typing import Any

import yaml

from planboard.models import (
    CheckboxState,
    LinkType,
    MilestoneRecord,
    TaskRecord,
    normalize_prop_key,
)

logger = logging.getLogger(__name__)

FRONTMATTER_PATTERN = re.compile(r"\A---\r?\n(?P<body>.*?)\r?\n---[ \t]*(?:\r?\n|\Z)", re.DOTALL)
ISO_DATE_PATTERN = re.compile(r"^\d{4}-\d{2}-\d{2}$")

LIST_TASK_PATTERN = re.compile(
    r"^(?P<indent>\s*)(?P<bullet>[-*+]|\d+[.)])\s+\[(?P<mark>[ xX/\-])\](?P<body>.*)$"
)
CELL_TASK_PATTERN = re.compile(r"^(?:[-*+]\s+)?\[(?P<mark>[ xX/\-])\](?P<body>.*)$")
BLOCK_REF_TAIL = re.compile(r"(?:^|\s)\^(?P<id>[A-Za-z0-9][\w\-]*)\s*$")
PROP_KEY_PATTERN = re.compile(r"(?<![\w\-:])\[?(?P<key>[A-Za-z_][\w\-\u00a0]*)[ \t\u00a0]*::")
TABLE_SEPARATOR_PATTERN = re.compile(r"^\|?\s*:?-{2,}:?\s*(\|\s*:?-{2,}:?\s*)*\|?\s*$")
PLAIN_ID_PATTERN = re.compile(r"^[A-Za-z0-9][\w.\-]*$")

_ID_COLUMNS = ("id",)
_TITLE_COLUMNS = ("title", "name", "milestone")
_DESCRIPTION_COLUMNS = ("description", "desc")
_FILE_COLUMNS = ("file", "path", "project")


@dataclass
class ParsedDocument:
    key: str
    title: str
    frontmatter: dict[str, Any]
    is_project: bool
    start: dt.date | None = None
    end: dt.date | None = None
    tasks: list[TaskRecord] = field(default_factory=list)
    milestones: list[MilestoneRecord] = field(default_factory=list)


def parse_iso_date(raw_value: Any) -> dt.date:
    """Parse a strict YYYY-MM-DD value; raise ValueError for anything else."""
    if isinstance(raw_value, dt.datetime):
        return raw_value.date()
    if isinstance(raw_value, dt.date):
        return raw_value
    if not isinstance(raw_value, str):
        raise ValueError(f"not a date: {raw_value!r}")
    cleaned = raw_value.replace("\u00a0", " ").strip().strip("\"'")
    if not ISO_DATE_PATTERN.match(cleaned):
        raise ValueError(f"not an ISO date: {raw_value!r}")
    return dt.date.fromisoformat(cleaned)


def normalize_frontmatter_key(raw_key: Any) -> str:
    """Front-matter keys match ignoring case, spaces and underscores."""
    return re.sub(r"[\s_]+", "", str(raw_key)).lower()


def split_frontmatter(text: str) -> tuple[str | None, int]:
    """Return the raw front-matter block and the line index where the body starts."""
    match = FRONTMATTER_PATTERN.match(text)
    if not match:
        return None, 0
    return match.group("body"), match.group(0).count("\n")


def parse_frontmatter(text: str, *, document_key: str = "") -> dict[str, Any]:
    block, _ = split_frontmatter(text)
    if block is None:
        return {}
    try:
        loaded = yaml.safe_load(block)
    except yaml.YAMLError:
        logger.warning("Ignoring invalid front matter in %s", document_key)
        return {}
    if not isinstance(loaded, dict):
        return {}
    return {str(key): value for key, value in loaded.items()}


def frontmatter_value(frontmatter: dict[str, Any], *names: str) -> Any:
    wanted = {normalize_frontmatter_key(name) for name in names}
    for key, value in frontmatter.items():
        if normalize_frontmatter_key(key) in wanted:
            return value
    return None


def is_truthy(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return value != 0
    if isinstance(value, str):
        return value.strip().lower() in {"true", "yes", "1", "on", "done", "y"}
    return False


def parse_inline_props(segment: str) -> dict[str, str]:
    """Collect ``key:: value`` tokens; the first occurrence of a key wins."""
    matches = list(PROP_KEY_PATTERN.finditer(segment))
    props: dict[str, str] = {}
    for index, match in enumerate(matches):
        end = matches[index + 1].start() if index + 1 < len(matches) else len(segment)
        value = segment[match.end() : end].split("|", 1)[0]
        value = BLOCK_REF_TAIL.sub("", value)
        value = value.replace("\u00a0", " ").strip()
        if match.group(0).startswith("[") and value.endswith("]"):
            value = value[:-1].strip()
        key = normalize_prop_key(match.group("key"))
        if key and key not in props:
            props[key] = value
    return props


def strip_inline_props(segment: str) -> str:
    """Remove property tokens and a trailing block reference, leaving display text."""
    match = PROP_KEY_PATTERN.search(segment)
    text = segment[: match.start()] if match else segment
    text = BLOCK_REF_TAIL.sub("", text)
    return " ".join(text.replace("\u00a0", " ").split())


def parse_depends(raw_value: str | None) -> list[tuple[LinkType, str]]:
    """Split a ``depends::`` value into (link type, referenced id) pairs."""
    if not raw_value:
        return []
    references: list[tuple[LinkType, str]] = []
    for part in raw_value.split(","):
        token = part.replace("\u00a0", " ").strip()
        if not token:
            continue
        link_type = LinkType.FINISH_START
        prefix, sep, rest = token.partition(":")
        if sep and prefix.strip().upper() in {item.value for item in LinkType}:
            link_type = LinkType(prefix.strip().upper())
            token = rest.strip()
        token = token.lstrip("^").strip()
        if token:
            references.append((link_type, token))
    return references


def strip_link_type(raw_reference: str) -> str:
    """Drop an FS/SS/FF/SF prefix and a caret from a single dependency entry."""
    parsed = parse_depends(raw_reference)
    if not parsed:
        return ""
    return parsed[0][1].lower()


def split_table_row(line: str) -> list[str] | None:
    stripped = line.strip()
    if not stripped.startswith("|"):
        return None
    body = stripped[1:]
    if body.endswith("|"):
        body = body[:-1]
    return [cell.replace("\u00a0", " ").strip() for cell in body.split("|")]


def is_table_separator(line: str) -> bool:
    return bool(TABLE_SEPARATOR_PATTERN.match(line.strip())) and "-" in line


def _column(headers: list[str], names: tuple[str, ...]) -> int | None:
    for index, header in enumerate(headers):
        if header in names:
            return index
    return None


def _cell(cells: list[str], index: int | None) -> str:
    if index is None or index >= len(cells):
        return ""
    return cells[index]


def block_reference(line: str) -> str | None:
    """Trailing ``^id`` of a task line, ignoring a closing table pipe."""
    trimmed = line.rstrip().rstrip("|").rstrip()
    match = BLOCK_REF_TAIL.search(trimmed)
    return match.group("id") if match else None


def _read_task_dates(
    props: dict[str, str], document_key: str, line_index: int
) -> tuple[dt.date | None, dt.date | None] | None:
    dates: dict[str, dt.date | None] = {"start": None, "due": None}
    for name in dates:
        raw_value = props.get(name)
        if not raw_value:
            continue
        try:
            dates[name] = parse_iso_date(raw_value)
        except ValueError:
            logger.debug(
                "Omitting task at %s:%d: unparsable %s date %r",
                document_key,
                line_index + 1,
                name,
                raw_value,
            )
            return None
    return dates["start"], dates["due"]


def _build_task(
    *,
    document_key: str,
    line_index: int,
    line: str,
    local_id: str | None,
    mark: str,
    text: str,
    props: dict[str, str],
    columns: dict[str, int] | None = None,
) -> TaskRecord | None:
    if not local_id or not PLAIN_ID_PATTERN.match(local_id.lstrip("^")):
        logger.debug("Omitting task at %s:%d: no usable id", document_key, line_index + 1)
        return None
    dates = _read_task_dates(props, document_key, line_index)
    if dates is None:
        return None
    start, due = dates
    return TaskRecord(
        local_id=local_id.lstrip("^"),
        owner_key=document_key,
        text=text,
        props=props,
        checkbox=CheckboxState.from_marker(mark),
        line=line_index,
        raw=line,
        start=start,
        due=due,
        depends=[ref for _, ref in parse_depends(props.get("depends"))],
        description=props.get("description", ""),
        columns=columns or {},
    )


def _parse_list_task(
    document_key: str, line_index: int, line: str
) -> TaskRecord | None:
    match = LIST_TASK_PATTERN.match(line)
    if not match:
        return None
    body = match.group("body")
    props = parse_inline_props(body)
    local_id = block_reference(line) or props.get("id")
    return _build_task(
        document_key=document_key,
        line_index=line_index,
        line=line,
        local_id=local_id,
        mark=match.group("mark"),
        text=strip_inline_props(body),
        props=props,
    )


def _parse_table_task(
    document_key: str,
    line_index: int,
    line: str,
    cells: list[str],
    headers: list[str],
) -> TaskRecord | None:
    checkbox_index = None
    checkbox_match = None
    for index, cell in enumerate(cells):
        checkbox_match = CELL_TASK_PATTERN.match(cell)
        if checkbox_match:
            checkbox_index = index
            break
    if checkbox_match is None or checkbox_index is None:
        return None

    props: dict[str, str] = {}
    columns: dict[str, int] = {}
    for cell in cells:
        for key, value in parse_inline_props(cell).items():
            props.setdefault(key, value)

    id_index = _column(headers, _ID_COLUMNS)
    if id_index is None and checkbox_index != 0:
        id_index = 0
    for index, cell in enumerate(cells):
        if index in (checkbox_index, id_index) or index >= len(headers):
            continue
        header = headers[index]
        if not header or header in props or "::" in cell:
            continue
        columns[header] = index
        if cell:
            props[header] = cell
    if id_index is not None:
        columns["id"] = id_index

    local_id = block_reference(line) or props.get("id") or _cell(cells, id_index) or None
    return _build_task(
        document_key=document_key,
        line_index=line_index,
        line=line,
        local_id=local_id,
        mark=checkbox_match.group("mark"),
        text=strip_inline_props(checkbox_match.group("body")),
        props=props,
        columns=columns,
    )


def _parse_milestone_row(
    document_key: str,
    line_index: int,
    cells: list[str],
    headers: list[str],
) -> MilestoneRecord | None:
    date_index = _column(headers, ("date",))
    title_index = _column(headers, _TITLE_COLUMNS)
    id_index = _column(headers, _ID_COLUMNS)
    if date_index is None or (title_index is None and id_index is None):
        return None
    if any(CELL_TASK_PATTERN.match(cell) for cell in cells):
        return None

    milestone_id = _cell(cells, id_index if id_index is not None else 0)
    raw_date = _cell(cells, date_index)
    if not milestone_id or not PLAIN_ID_PATTERN.match(milestone_id):
        logger.debug("Omitting milestone at %s:%d: no usable id", document_key, line_index + 1)
        return None
    try:
        date = parse_iso_date(raw_date)
    except ValueError:
        logger.debug(
            "Omitting milestone at %s:%d: unparsable date %r",
            document_key,
            line_index + 1,
            raw_date,
        )
        return None

    description = _cell(cells, _column(headers, _DESCRIPTION_COLUMNS)) or None
    document = _cell(cells, _column(headers, _FILE_COLUMNS)) or None
    return MilestoneRecord(
        milestone_id=milestone_id,
        title=_cell(cells, title_index) or milestone_id,
        date=date,
        owner_key=document_key,
        description=description,
        document=document,
    )


def _document_title(document_key: str) -> str:
    return PurePosixPath(document_key).stem


def parse_document(
    document_key: str, text: str, *, project_flag: str = "project"
) -> ParsedDocument:
    """Extract front matter, tasks and milestones from one markdown document."""
    frontmatter = parse_frontmatter(text, document_key=document_key)
    parsed = ParsedDocument(
        key=document_key,
        title=_document_title(document_key),
        frontmatter=frontmatter,
        is_project=is_truthy(frontmatter_value(frontmatter, project_flag)),
    )
    for attribute, names in (("start", ("start date", "start")), ("end", ("end date", "end"))):
        raw_value = frontmatter_value(frontmatter, *names)
        if raw_value is None or raw_value == "":
            continue
        try:
            setattr(parsed, attribute, parse_iso_date(raw_value))
        except ValueError:
            logger.debug(
                "Ignoring unparsable %s date %r in %s", attribute, raw_value, document_key
            )

    _, body_start = split_frontmatter(text)
    lines = text.splitlines()
    headers: list[str] = []
    for line_index in range(body_start, len(lines)):
        line = lines[line_index]
        cells = split_table_row(line)
        if cells is None:
            headers = []
            task = _parse_list_task(document_key, line_index, line)
            if task is not None:
                parsed.tasks.append(task)
            continue

        if is_table_separator(line):
            continue
        next_line = lines[line_index + 1] if line_index + 1 < len(lines) else ""
        if is_table_separator(next_line):
            headers = [normalize_prop_key(cell) for cell in cells]
            continue

        task = _parse_table_task(document_key, line_index, line, cells, headers)
        if task is not None:
            parsed.tasks.append(task)
            continue
        milestone = _parse_milestone_row(document_key, line_index, cells, headers)
        if milestone is not None:
            parsed.milestones.append(milestone)

    return parsed
