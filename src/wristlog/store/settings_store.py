"""Durable key/value settings that survive process restarts."""

from __future__ import annotations

import logging
import os
from pathlib import Path
from threading import RLock
from typing import Any, Dict

import yaml

from ..errors import SettingsWriteFailure

logger = logging.getLogger(__name__)

# Keys shared with the companion app; do not rename.
KEY_SHOULD_CONTINUE_COLLECTING = "shouldContinueCollecting"
KEY_SESSION_FILE_SEQUENCE = "sessionFileSequence"


class SettingsStore:
    """
    Small YAML-backed store for the sticky collection intent and counters.

    Every :meth:`set` is written through to disk before returning, using a
    temporary file and :func:`os.replace` so a crash never leaves a
    half-written settings file behind.
    """

    def __init__(self, path: Path) -> None:
        self.path = Path(path)
        self._lock = RLock()
        self._values: Dict[str, Any] = self._load()

    def _load(self) -> Dict[str, Any]:
        if not self.path.exists():
            return {}
        try:
            with self.path.open("r", encoding="utf-8") as fh:
                raw = yaml.safe_load(fh) or {}
        except (OSError, yaml.YAMLError) as exc:
            logger.warning("Ignoring unreadable settings file %s (%s)", self.path, exc)
            return {}
        if not isinstance(raw, dict):
            logger.warning("Ignoring settings file %s: expected mapping", self.path)
            return {}
        return raw

    def _flush(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.path.with_suffix(self.path.suffix + ".tmp")
        with tmp_path.open("w", encoding="utf-8") as fh:
            yaml.safe_dump(self._values, fh, default_flow_style=False, sort_keys=True)
            fh.flush()
            os.fsync(fh.fileno())
        os.replace(tmp_path, self.path)

    def get(self, key: str, default: Any = None) -> Any:
        with self._lock:
            return self._values.get(key, default)

    def set(self, key: str, value: Any) -> None:
        """
        Store ``value`` and write it through to disk.

        On an I/O error the new value is kept in memory and
        :class:`~wristlog.errors.SettingsWriteFailure` is raised.
        """
        with self._lock:
            self._values[key] = value
            try:
                self._flush()
            except OSError as exc:
                raise SettingsWriteFailure(f"Could not write {self.path}: {exc}") from exc

    def reload(self) -> None:
        """Re-read the backing file (used when another process wrote it)."""
        with self._lock:
            self._values = self._load()

    # ------------------------------------------------------------------
    # Typed accessors
    # ------------------------------------------------------------------
    @property
    def collection_intent(self) -> bool:
        return bool(self.get(KEY_SHOULD_CONTINUE_COLLECTING, False))

    @collection_intent.setter
    def collection_intent(self, enabled: bool) -> None:
        self.set(KEY_SHOULD_CONTINUE_COLLECTING, bool(enabled))

    @property
    def session_file_sequence(self) -> int:
        try:
            return int(self.get(KEY_SESSION_FILE_SEQUENCE, 0))
        except (TypeError, ValueError):
            return 0

    @session_file_sequence.setter
    def session_file_sequence(self, value: int) -> None:
        self.set(KEY_SESSION_FILE_SEQUENCE, max(0, int(value)))
