"""
Shared file and run-directory helpers.

Provides utilities for:
- UTC timestamps and date-stamped run folders
- Atomic JSON/text writes (temp file + rename)
- Crawl run report locations
"""

import json
import os
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional, Union

PathLike = Union[str, Path]

RUN_REPORT_NAME = "crawl_report.json"


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def utc_now_iso() -> str:
    """Current UTC time as ISO 8601 with a ``Z`` suffix and millisecond precision."""
    return utc_now().isoformat(timespec="milliseconds").replace("+00:00", "Z")


def today_str() -> str:
    """Current UTC date as YYYY-MM-DD."""
    return utc_now().strftime("%Y-%m-%d")


def parse_iso_datetime(value: Any) -> Optional[datetime]:
    """
    Parse an ISO 8601 timestamp, accepting a trailing ``Z``.

    Returns:
        Aware datetime, or None if the value is not a valid timestamp
    """
    if not isinstance(value, str) or not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def atomic_write_text(path: PathLike, content: str) -> None:
    """
    Write text atomically (write to temp then rename).

    Args:
        path: Destination file; parent directories are created
        content: Text written as UTF-8
    """
    file_path = Path(path)
    file_path.parent.mkdir(parents=True, exist_ok=True)
    temp_path = file_path.with_name(file_path.name + ".tmp")
    try:
        with open(temp_path, "w", encoding="utf-8") as f:
            f.write(content)
        os.replace(temp_path, file_path)
    except Exception:
        if temp_path.exists():
            temp_path.unlink()
        raise


def atomic_write_bytes(path: PathLike, content: bytes) -> None:
    """Binary counterpart of atomic_write_text()."""
    file_path = Path(path)
    file_path.parent.mkdir(parents=True, exist_ok=True)
    temp_path = file_path.with_name(file_path.name + ".tmp")
    try:
        with open(temp_path, "wb") as f:
            f.write(content)
        os.replace(temp_path, file_path)
    except Exception:
        if temp_path.exists():
            temp_path.unlink()
        raise


def write_json(path: PathLike, data: Any) -> None:
    """Pretty-print JSON (indent=2, UTF-8 kept) and write it atomically."""
    atomic_write_text(path, json.dumps(data, indent=2, ensure_ascii=False) + "\n")


def load_json(path: PathLike) -> Any:
    with open(path, "r", encoding="utf-8") as f:
        return json.load(f)


def run_dir_for(runs_dir: PathLike, date: Optional[str] = None) -> Path:
    """Directory for a crawl run report: ``<runs_dir>/<YYYY-MM-DD>``."""
    return Path(runs_dir) / (date or today_str())
