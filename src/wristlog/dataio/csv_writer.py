"""CSV writing helpers for recorded accelerometer sessions."""

from __future__ import annotations

import csv
import logging
from pathlib import Path
from typing import Any, Iterable, Mapping, Optional, Sequence, TextIO

from ..core.models import Reading
from ..errors import FileWriteFailure

logger = logging.getLogger(__name__)

CSV_HEADER = ("Timestamp", "X", "Y", "Z", "Source")


class SessionCsvWriter:
    """
    Incremental writer for one session file.

    ``#`` comment lines carrying ``metadata`` are emitted first, then the
    header row; readings are appended batch by batch so only one batch is
    ever held in memory.
    """

    def __init__(self, path: Path, metadata: Optional[Mapping[str, Any]] = None) -> None:
        self.path = Path(path)
        self.metadata = dict(metadata or {})
        self.rows_written = 0
        self._fh: TextIO | None = None
        self._writer = None

    def open(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self._fh = self.path.open("w", newline="", encoding="utf-8")
        if self.metadata:
            self._fh.write("# Accelerometer Data Export\n")
            for key, value in self.metadata.items():
                self._fh.write(f"# {key}: {value}\n")
            self._fh.write("#\n")
        self._writer = csv.writer(self._fh, lineterminator="\n")
        self._writer.writerow(CSV_HEADER)

    def write_batch(self, readings: Sequence[Reading]) -> int:
        if self._writer is None:
            raise RuntimeError("SessionCsvWriter.open() must be called first")
        self._writer.writerows(r.as_row() for r in readings)
        self.rows_written += len(readings)
        return len(readings)

    def close(self) -> None:
        fh = self._fh
        self._fh = None
        self._writer = None
        if fh is not None:
            fh.close()

    def __enter__(self) -> SessionCsvWriter:
        self.open()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()


def write_readings(
    path: Path,
    batches: Iterable[Sequence[Reading]],
    metadata: Optional[Mapping[str, Any]] = None,
) -> int:
    """
    Write batches of readings to ``path`` and return the number of rows.

    I/O errors are re-raised as :class:`~wristlog.errors.FileWriteFailure`.
    A failure mid-way leaves a partial file behind; readers reject it by
    row shape.
    """
    try:
        with SessionCsvWriter(path, metadata=metadata) as writer:
            for batch in batches:
                writer.write_batch(batch)
                logger.debug("Wrote %d rows to %s", len(batch), path.name)
            return writer.rows_written
    except OSError as exc:
        raise FileWriteFailure(f"Could not write {path}: {exc}") from exc
