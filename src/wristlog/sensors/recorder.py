"""
Adapters for the always-on accelerometer recorder.

The sensor daemon keeps sampling while this process is suspended and
appends one JSON line per sample to a journal:

  - t_s          : float unix seconds (or ``timestamp_ns`` as int nanoseconds)
  - ax, ay, az   : float acceleration in g

Older daemons wrote comma-separated ``t_s,ax,ay,az`` lines instead;
``parse_journal_line()`` accepts both.
"""

from __future__ import annotations

import json
import logging
import os
import time
from pathlib import Path
from typing import Any, Iterator, Mapping, Optional, Protocol

from ..core.models import Reading, ReadingSource
from ..errors import HardwareUnavailable

logger = logging.getLogger(__name__)


class SampleRecorder(Protocol):
    """Capability surface the session coordinator needs from a recorder."""

    def is_available(self) -> bool:  # pragma: no cover - protocol
        ...

    def begin_continuous_recording(self, max_duration_s: float) -> None:  # pragma: no cover - protocol
        ...

    def fetch_samples(self, start: float, end: float) -> Iterator[Reading]:  # pragma: no cover - protocol
        ...


def _coerce_number(value: Any) -> Optional[float]:
    if isinstance(value, bool):
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _extract_timestamp(obj: Mapping[str, Any]) -> Optional[float]:
    ts = _coerce_number(obj.get("t_s"))
    if ts is not None:
        return ts
    ts_ns = _coerce_number(obj.get("timestamp_ns"))
    if ts_ns is not None:
        return ts_ns * 1e-9
    return None


def _parse_json_line(text: str) -> Reading | None:
    try:
        obj = json.loads(text)
    except json.JSONDecodeError as exc:
        logger.warning("Bad JSON in sample journal: %r (%s)", text, exc)
        return None
    if not isinstance(obj, dict):
        logger.debug("Skipping non-object journal entry: %r", obj)
        return None

    timestamp = _extract_timestamp(obj)
    if timestamp is None:
        logger.warning("Missing or bad timestamp in journal entry: %r", obj)
        return None

    x, y, z = (_coerce_number(obj.get(key)) for key in ("ax", "ay", "az"))
    if x is None or y is None or z is None:
        logger.warning("Bad axis value in journal entry: %r", obj)
        return None

    return Reading(timestamp, x, y, z, ReadingSource.RECORDER)


def _parse_csv_line(text: str) -> Reading | None:
    parts = text.split(",")
    if len(parts) < 4:
        logger.warning("Short CSV journal line: %r", text)
        return None
    try:
        timestamp, x, y, z = (float(p) for p in parts[:4])
    except ValueError as exc:
        logger.warning("Bad CSV journal line %r (%s)", text, exc)
        return None
    return Reading(timestamp, x, y, z, ReadingSource.RECORDER)


def parse_journal_line(line: str) -> Optional[Reading]:
    text = line.strip()
    if not text or text.startswith("#"):
        return None
    if text.startswith("{"):
        return _parse_json_line(text)
    return _parse_csv_line(text)


class SampleJournalRecorder:
    """Recorder adapter backed by the sensor daemon's sample journal."""

    def __init__(self, journal_path: Path, control_path: Optional[Path] = None) -> None:
        self.journal_path = Path(journal_path).expanduser()
        if control_path is None:
            control_path = self.journal_path.with_name("recorder_control.json")
        self.control_path = Path(control_path).expanduser()

    def is_available(self) -> bool:
        return self.journal_path.is_file()

    def begin_continuous_recording(self, max_duration_s: float) -> None:
        """Ask the daemon to keep recording for up to ``max_duration_s``."""
        now = time.time()
        request = {
            "requested_at": now,
            "record_until": now + float(max_duration_s),
        }
        tmp_path = self.control_path.with_suffix(self.control_path.suffix + ".tmp")
        try:
            tmp_path.write_text(json.dumps(request), encoding="utf-8")
            os.replace(tmp_path, self.control_path)
        except OSError as exc:
            raise HardwareUnavailable(f"Cannot reach recorder daemon: {exc}") from exc
        logger.info(
            "Requested continuous recording for %.0f s via %s",
            max_duration_s,
            self.control_path,
        )

    def fetch_samples(self, start: float, end: float) -> Iterator[Reading]:
        """Yield journal readings with ``start <= timestamp < end`` in file order."""
        if not self.journal_path.is_file():
            raise HardwareUnavailable(f"Sample journal missing: {self.journal_path}")
        return self._iter_window(start, end)

    def _iter_window(self, start: float, end: float) -> Iterator[Reading]:
        try:
            with self.journal_path.open("r", encoding="utf-8", errors="replace") as fh:
                for line in fh:
                    reading = parse_journal_line(line)
                    if reading is None:
                        continue
                    if start <= reading.timestamp < end:
                        yield reading
        except OSError as exc:
            raise HardwareUnavailable(f"Cannot read sample journal: {exc}") from exc
