"""Configuration loading for the planboard service."""

from __future__ import annotations

import datetime as dt
import logging
import os
from dataclasses import dataclass
from pathlib import Path

ZOOM_STOPS = (3, 4, 5, 6, 7, 8, 9, 10, 11, 12)
DEFAULT_ZOOM_PX_PER_DAY = ZOOM_STOPS[1]

_LOG_LEVELS = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}


class ConfigError(RuntimeError):
    """Raised when required configuration is missing or invalid."""


@dataclass(frozen=True)
class AppConfig:
    library_path: Path
    project_flag: str = "project"
    timeline_start: dt.date | None = None
    timeline_end: dt.date | None = None
    zoom_px_per_day: int = DEFAULT_ZOOM_PX_PER_DAY
    git_commits: bool = True
    service_token: str | None = None
    log_dir: Path | None = None
    log_level: str = "INFO"

    @property
    def console_log_level(self) -> int:
        return getattr(logging, self.log_level)


def _read_dotenv_value(dotenv_path: Path, key: str) -> str | None:
    """Read a single key from a .env file without mutating the environment."""
    if not dotenv_path.is_file():
        return None
    try:
        content = dotenv_path.read_text(encoding="utf-8")
    except OSError:
        return None

    for line in content.splitlines():
        stripped = line.strip()
        if not stripped or stripped.startswith("#"):
            continue
        if stripped.startswith("export "):
            stripped = stripped[len("export ") :].strip()
        if "=" not in stripped:
            continue
        name, value = stripped.split("=", 1)
        name = name.strip()
        if name != key:
            continue
        value = value.strip()
        if len(value) >= 2 and value[0] == value[-1] and value[0] in {"'", '"'}:
            value = value[1:-1]
        return value or None
    return None


def _read_setting(dotenv_path: Path, key: str) -> str | None:
    raw_value = os.environ.get(key)
    if raw_value is None:
        raw_value = _read_dotenv_value(dotenv_path, key)
    if raw_value is None:
        return None
    raw_value = raw_value.strip()
    return raw_value or None


def _read_bool(raw_value: str | None, *, default: bool, key: str) -> bool:
    if raw_value is None:
        return default
    normalized = raw_value.strip().lower()
    if not normalized:
        return default
    if normalized in {"1", "true", "yes", "on"}:
        return True
    if normalized in {"0", "false", "no", "off"}:
        return False
    raise ConfigError(f"{key} must be a boolean value.")


def _read_date(raw_value: str | None, *, key: str) -> dt.date | None:
    if raw_value is None:
        return None
    try:
        return dt.date.fromisoformat(raw_value)
    except ValueError as exc:
        raise ConfigError(f"{key} must be an ISO date (YYYY-MM-DD).") from exc


def _read_zoom(raw_value: str | None, *, key: str) -> int:
    if raw_value is None:
        return DEFAULT_ZOOM_PX_PER_DAY
    try:
        value = int(raw_value)
    except ValueError as exc:
        raise ConfigError(f"{key} must be an integer.") from exc
    if value not in ZOOM_STOPS:
        stops = ", ".join(str(stop) for stop in ZOOM_STOPS)
        raise ConfigError(f"{key} must be one of the zoom stops: {stops}.")
    return value


def load_config() -> AppConfig:
    """Load configuration from the environment, falling back to ./.env."""
    dotenv_path = Path.cwd() / ".env"

    library_key = "PLANBOARD_LIBRARY_PATH"
    raw_path = _read_setting(dotenv_path, library_key)
    if not raw_path:
        raise ConfigError(
            "PLANBOARD_LIBRARY_PATH is required; set it to the document library root."
        )

    project_flag = _read_setting(dotenv_path, "PLANBOARD_PROJECT_FLAG") or "project"

    start_key = "PLANBOARD_TIMELINE_START"
    end_key = "PLANBOARD_TIMELINE_END"
    timeline_start = _read_date(_read_setting(dotenv_path, start_key), key=start_key)
    timeline_end = _read_date(_read_setting(dotenv_path, end_key), key=end_key)

    zoom_key = "PLANBOARD_ZOOM_PX_PER_DAY"
    zoom_px_per_day = _read_zoom(_read_setting(dotenv_path, zoom_key), key=zoom_key)

    git_key = "PLANBOARD_GIT_COMMITS"
    git_commits = _read_bool(
        _read_setting(dotenv_path, git_key), default=True, key=git_key
    )

    service_token = _read_setting(dotenv_path, "PLANBOARD_SERVICE_TOKEN")

    raw_log_dir = _read_setting(dotenv_path, "PLANBOARD_LOG_DIR")
    log_dir = Path(raw_log_dir).resolve() if raw_log_dir else None

    level_key = "PLANBOARD_LOG_LEVEL"
    log_level = (_read_setting(dotenv_path, level_key) or "INFO").upper()
    if log_level not in _LOG_LEVELS:
        raise ConfigError(f"{level_key} must be one of {', '.join(sorted(_LOG_LEVELS))}.")

    return AppConfig(
        library_path=Path(raw_path).resolve(),
        project_flag=project_flag,
        timeline_start=timeline_start,
        timeline_end=timeline_end,
        zoom_px_per_day=zoom_px_per_day,
        git_commits=git_commits,
        service_token=service_token,
        log_dir=log_dir,
        log_level=log_level,
    )
