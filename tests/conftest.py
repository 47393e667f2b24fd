from __future__ import annotations

import itertools
import threading
from pathlib import Path
from typing import Callable, List, Optional, Tuple

import pytest

from wristlog.config.runtime import WristLogConfig
from wristlog.core.models import Reading, ReadingSource
from wristlog.core.session import SessionCoordinator
from wristlog.runtime.lease import InvalidationReason, LeaseInvalidated, LeaseWillExpire
from wristlog.store.settings_store import SettingsStore


class FakeClock:
    def __init__(self, now: float = 1_700_000_000.0) -> None:
        self.now = now
        self._lock = threading.Lock()

    def __call__(self) -> float:
        with self._lock:
            return self.now

    def advance(self, seconds: float) -> None:
        with self._lock:
            self.now += seconds


class FakeRecorder:
    def __init__(self, available: bool = True) -> None:
        self.available = available
        self.samples: List[Reading] = []
        self.begin_calls: List[float] = []
        self.fetch_calls: List[Tuple[float, float]] = []
        self.on_is_available: Optional[Callable[[], None]] = None

    def is_available(self) -> bool:
        if self.on_is_available is not None:
            self.on_is_available()
        return self.available

    def begin_continuous_recording(self, max_duration_s: float) -> None:
        self.begin_calls.append(max_duration_s)

    def fetch_samples(self, start: float, end: float):
        self.fetch_calls.append((start, end))
        return iter([r for r in self.samples if start <= r.timestamp < end])

    def add_samples(self, start: float, count: int, rate_hz: float = 50.0, x: float = 0.1) -> None:
        for i in range(count):
            self.samples.append(
                Reading(start + i / rate_hz, x + i * 0.001, 0.0, -1.0, ReadingSource.RECORDER)
            )


class FakeLease:
    _ids = itertools.count(1)

    def __init__(self) -> None:
        self._listener = None
        self._lease_id: Optional[int] = None
        self.starts = 0
        self.invalidations = 0

    @property
    def is_active(self) -> bool:
        return self._lease_id is not None

    def set_listener(self, listener) -> None:
        self._listener = listener

    def start(self) -> None:
        if self._lease_id is None:
            self._lease_id = next(self._ids)
            self.starts += 1

    def invalidate(self) -> None:
        self._end(InvalidationReason.INVALIDATED_BY_HOLDER, None)

    def host_expire(self, error: Optional[str] = None) -> None:
        reason = InvalidationReason.ERROR if error else InvalidationReason.EXPIRED
        self._end(reason, error)

    def warn(self) -> None:
        if self._lease_id is not None and self._listener is not None:
            self._listener(LeaseWillExpire(self._lease_id))

    def _end(self, reason: InvalidationReason, error: Optional[str]) -> None:
        lease_id = self._lease_id
        if lease_id is None:
            return
        self._lease_id = None
        self.invalidations += 1
        if self._listener is not None:
            self._listener(LeaseInvalidated(lease_id, reason, error))


class FakeTransport:
    def __init__(self, activated: bool = True) -> None:
        self.activated = activated
        self.listener = None
        self.transfers: List[Tuple[Path, dict]] = []
        self.broadcasts: List[dict] = []
        self.closed = False

    @property
    def is_activated(self) -> bool:
        return self.activated

    def set_transfer_listener(self, listener) -> None:
        self.listener = listener

    def activate(self) -> bool:
        return self.activated

    def close(self) -> None:
        self.closed = True

    def transfer_file(self, path, metadata=None):
        if not self.activated:
            return False, "Peer link not activated"
        self.transfers.append((Path(path), dict(metadata or {})))
        return True, "File queued for transfer"

    def broadcast_state(self, fields) -> bool:
        self.broadcasts.append(dict(fields))
        return self.activated

    def complete(self, path: Path, error: Optional[str] = None) -> None:
        self.listener(path, error)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def recorder() -> FakeRecorder:
    return FakeRecorder()


@pytest.fixture
def lease() -> FakeLease:
    return FakeLease()


@pytest.fixture
def store(tmp_path: Path) -> SettingsStore:
    return SettingsStore(tmp_path / "settings.yaml")


@pytest.fixture
def sessions_dir(tmp_path: Path) -> Path:
    return tmp_path / "sessions"


@pytest.fixture
def make_coordinator(recorder, lease, store, sessions_dir, clock):
    created: List[SessionCoordinator] = []

    def _make(**overrides) -> SessionCoordinator:
        config = overrides.pop("config", WristLogConfig(auto_resume_delay_s=0.0, tick_interval_s=60.0))
        coordinator = SessionCoordinator(
            overrides.pop("recorder", recorder),
            overrides.pop("lease", lease),
            overrides.pop("store", store),
            overrides.pop("sessions_dir", sessions_dir),
            config=config,
            clock=overrides.pop("clock", clock),
            **overrides,
        )
        created.append(coordinator)
        return coordinator

    yield _make

    for coordinator in created:
        coordinator.shutdown()
