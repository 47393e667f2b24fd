"""Helpers for constructing session file names and locating session files."""

from __future__ import annotations

import datetime as _dt
import re
from pathlib import Path
from typing import List

SESSION_PREFIX = "accel_data"
META_SUFFIX = ".meta.json"

_SESSION_FILE_RE = re.compile(
    r"^accel_data_(\d{4}-\d{2}-\d{2}_\d{2}-\d{2}-\d{2})(?:_part(\d+)|_\d+)?\.csv$"
)


def _format_start_ts(start_dt: _dt.datetime) -> str:
    """Return the canonical timestamp string used in session filenames."""

    return start_dt.strftime("%Y-%m-%d_%H-%M-%S")


def session_filename(start_dt: _dt.datetime, sequence: int | None = None) -> str:
    """
    Build the session CSV name from the start time and part number.

    Example: ``accel_data_2025-11-05_14-30-00_part003.csv``. The manual
    single-shot export has no part number.
    """
    stem = f"{SESSION_PREFIX}_{_format_start_ts(start_dt)}"
    if sequence is not None:
        stem = f"{stem}_part{int(sequence):03d}"
    return f"{stem}.csv"


def meta_path_for(data_path: Path) -> Path:
    """Return the ``.meta.json`` sidecar path for a session CSV."""

    return data_path.with_suffix(data_path.suffix + META_SUFFIX)


def parse_sequence(filename: str) -> int | None:
    """Return the part number embedded in a session filename, if any."""

    match = _SESSION_FILE_RE.match(Path(filename).name)
    if match is None or match.group(2) is None:
        return None
    return int(match.group(2))


def list_session_files(root: Path) -> List[Path]:
    """Return session CSVs under *root*, oldest first."""

    root = Path(root)
    if not root.is_dir():
        return []
    files = [p for p in root.glob(f"{SESSION_PREFIX}_*.csv") if p.is_file()]
    return sorted(files, key=lambda p: p.name)


def unique_export_path(root: Path, start_dt: _dt.datetime) -> Path:
    """
    Return a path for a manual export that does not exist yet.

    Exports within the same second get ``_2``, ``_3``, ... appended so an
    earlier file that is still queued for transfer is never overwritten.
    """

    root = Path(root)
    base = session_filename(start_dt)
    path = root / base
    copy = 2
    while path.exists():
        path = root / f"{Path(base).stem}_{copy}.csv"
        copy += 1
    return path
