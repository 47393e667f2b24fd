"""Utilities for loading recorded session CSVs."""

from __future__ import annotations

import csv
import logging
from pathlib import Path
from typing import Dict, Iterator, List

import numpy as np

from ..core.models import Reading, ReadingSource

logger = logging.getLogger(__name__)


def _data_lines(path: Path) -> Iterator[tuple[int, str]]:
    """Yield ``(line_no, text)`` for lines that are neither comments nor blank."""
    with path.open("r", encoding="utf-8") as fh:
        for line_no, line in enumerate(fh, start=1):
            stripped = line.strip()
            if not stripped or stripped.startswith("#"):
                continue
            yield line_no, stripped


def _is_header(fields: List[str]) -> bool:
    return bool(fields) and fields[0].strip().lower() == "timestamp"


def _parse_row(fields: List[str]) -> Reading | None:
    """Return a :class:`Reading` for a 4- or 5-column row, else ``None``."""
    if len(fields) not in (4, 5):
        return None
    try:
        timestamp, x, y, z = (float(value) for value in fields[:4])
    except ValueError:
        return None
    if len(fields) == 5:
        try:
            source = ReadingSource(fields[4].strip())
        except ValueError:
            return None
    else:
        # Legacy exports only ever contained live readings.
        source = ReadingSource.REALTIME
    return Reading(timestamp, x, y, z, source)


def iter_readings(path: Path, *, strict: bool = False) -> Iterator[Reading]:
    """
    Yield readings from a session CSV in file order.

    ``#`` lines and the header row are skipped. Rows with the wrong shape
    (e.g. the tail of a partially written file) are logged and dropped, or
    raise :class:`ValueError` when ``strict`` is set.
    """
    path = Path(path)
    for line_no, text in _data_lines(path):
        fields = next(csv.reader([text]))
        if _is_header(fields):
            continue
        reading = _parse_row(fields)
        if reading is None:
            if strict:
                raise ValueError(f"{path.name}:{line_no}: malformed row {text!r}")
            logger.warning("Skipping malformed row %s:%d: %r", path.name, line_no, text)
            continue
        yield reading


def load_readings(path: Path, *, strict: bool = False) -> List[Reading]:
    """Load all readings from a session CSV."""
    return list(iter_readings(path, strict=strict))


def load_csv_array(path: Path) -> np.ndarray:
    """
    Load a session CSV as an ``(n, 4)`` float array of ``t, x, y, z``.

    The source column, comments, and header are dropped.
    """
    rows = [(r.timestamp, r.x, r.y, r.z) for r in iter_readings(path)]
    if not rows:
        return np.empty((0, 4))
    return np.asarray(rows, dtype=np.float64)


def read_metadata(path: Path) -> Dict[str, str]:
    """Return ``key: value`` pairs from the leading ``#`` comment block."""
    meta: Dict[str, str] = {}
    with Path(path).open("r", encoding="utf-8") as fh:
        for line in fh:
            if not line.startswith("#"):
                break
            body = line[1:].strip()
            key, sep, value = body.partition(":")
            if sep and key.strip():
                meta[key.strip()] = value.strip()
    return meta
