"""Shared dataclasses for WristLog sessions, readings, and transfers."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Optional


class ReadingSource(str, Enum):
    REALTIME = "realtime"
    RECORDER = "recorder"


@dataclass(frozen=True)
class Reading:
    """One accelerometer sample (seconds, acceleration in g)."""

    timestamp: float
    x: float
    y: float
    z: float
    source: ReadingSource = ReadingSource.RECORDER

    def as_row(self) -> tuple[float, float, float, float, str]:
        return (self.timestamp, self.x, self.y, self.z, self.source.value)


class SessionPhase(str, Enum):
    IDLE = "idle"
    STARTING = "starting"
    RUNNING = "running"
    BACKGROUNDED = "backgrounded"
    STOPPING = "stopping"
    ERROR = "error"


# Phases during which the recorder is considered to be collecting.
ACTIVE_PHASES = frozenset(
    {
        SessionPhase.STARTING,
        SessionPhase.RUNNING,
        SessionPhase.BACKGROUNDED,
        SessionPhase.STOPPING,
    }
)


@dataclass(frozen=True)
class SessionState:
    """Current lifecycle phase; ``message`` is only set for ``ERROR``."""

    phase: SessionPhase = SessionPhase.IDLE
    message: Optional[str] = None

    @classmethod
    def idle(cls) -> SessionState:
        return cls(SessionPhase.IDLE)

    @classmethod
    def starting(cls) -> SessionState:
        return cls(SessionPhase.STARTING)

    @classmethod
    def running(cls) -> SessionState:
        return cls(SessionPhase.RUNNING)

    @classmethod
    def backgrounded(cls) -> SessionState:
        return cls(SessionPhase.BACKGROUNDED)

    @classmethod
    def stopping(cls) -> SessionState:
        return cls(SessionPhase.STOPPING)

    @classmethod
    def error(cls, message: str) -> SessionState:
        return cls(SessionPhase.ERROR, message)

    @property
    def is_active(self) -> bool:
        return self.phase in ACTIVE_PHASES

    @property
    def is_recording(self) -> bool:
        return self.phase in (SessionPhase.RUNNING, SessionPhase.BACKGROUNDED)

    def __str__(self) -> str:
        if self.message:
            return f"{self.phase.value}: {self.message}"
        return self.phase.value


@dataclass(frozen=True)
class SessionFile:
    """A materialized session CSV on local storage."""

    path: Path
    sequence: int
    row_count: int
    started_at: datetime
    ended_at: datetime

    @property
    def filename(self) -> str:
        return self.path.name

    @property
    def elapsed_s(self) -> float:
        return (self.ended_at - self.started_at).total_seconds()


class TransferStatus(str, Enum):
    QUEUED = "queued"
    TRANSFERRING = "transferring"
    DELIVERED = "delivered"
    FAILED = "failed"


@dataclass
class TransferRecord:
    filename: str
    status: TransferStatus = TransferStatus.QUEUED
    error: Optional[str] = None
