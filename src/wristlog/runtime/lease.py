"""Background execution lease: a time-boxed grant to keep running unattended.

A lease emits two kinds of notifications into the holder's event channel:

- :class:`LeaseWillExpire` shortly before the grant runs out, giving the
  holder a chance to renew.
- :class:`LeaseInvalidated` once the grant has ended, whether it expired,
  was invalidated by the holder, or was terminated externally. The host may
  invalidate without any prior warning, so holders should treat this as the
  authoritative signal.
"""

from __future__ import annotations

import itertools
import logging
import threading
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional, Protocol, Union

logger = logging.getLogger(__name__)


class InvalidationReason(str, Enum):
    EXPIRED = "expired"
    INVALIDATED_BY_HOLDER = "invalidated_by_holder"
    ERROR = "error"


@dataclass(frozen=True)
class LeaseWillExpire:
    lease_id: int


@dataclass(frozen=True)
class LeaseInvalidated:
    lease_id: int
    reason: InvalidationReason
    error: Optional[str] = None


LeaseEvent = Union[LeaseWillExpire, LeaseInvalidated]
LeaseListener = Callable[[LeaseEvent], None]


class ExecutionLease(Protocol):
    """Capability surface the session coordinator needs from a lease."""

    @property
    def is_active(self) -> bool:  # pragma: no cover - protocol
        ...

    def set_listener(self, listener: Optional[LeaseListener]) -> None:  # pragma: no cover - protocol
        ...

    def start(self) -> None:  # pragma: no cover - protocol
        ...

    def invalidate(self) -> None:  # pragma: no cover - protocol
        ...


class TimedExecutionLease:
    """Lease that lasts ``duration_s`` and warns ``warning_s`` before the end."""

    _ids = itertools.count(1)

    def __init__(
        self,
        duration_s: float = 3600.0,
        warning_s: float = 30.0,
        listener: Optional[LeaseListener] = None,
    ) -> None:
        if duration_s <= 0:
            raise ValueError("duration_s must be positive")
        self.duration_s = float(duration_s)
        self.warning_s = min(max(0.0, float(warning_s)), self.duration_s)
        self._listener = listener
        self._lock = threading.Lock()
        self._lease_id: Optional[int] = None
        self._timers: list[threading.Timer] = []

    @property
    def is_active(self) -> bool:
        with self._lock:
            return self._lease_id is not None

    @property
    def lease_id(self) -> Optional[int]:
        with self._lock:
            return self._lease_id

    def set_listener(self, listener: Optional[LeaseListener]) -> None:
        self._listener = listener

    def start(self) -> None:
        with self._lock:
            if self._lease_id is not None:
                logger.debug("Lease %d already active", self._lease_id)
                return
            lease_id = next(self._ids)
            self._lease_id = lease_id
            warn_at = self.duration_s - self.warning_s
            self._timers = [
                threading.Timer(warn_at, self._on_warning, args=(lease_id,)),
                threading.Timer(
                    self.duration_s,
                    self._end,
                    args=(lease_id, InvalidationReason.EXPIRED, None),
                ),
            ]
            for timer in self._timers:
                timer.daemon = True
                timer.start()
        logger.info("Execution lease %d started (%.0f s)", lease_id, self.duration_s)

    def invalidate(self) -> None:
        lease_id = self.lease_id
        if lease_id is not None:
            self._end(lease_id, InvalidationReason.INVALIDATED_BY_HOLDER, None)

    def terminate(self, error: str) -> None:
        """End the lease as if the host revoked it."""
        lease_id = self.lease_id
        if lease_id is not None:
            self._end(lease_id, InvalidationReason.ERROR, error)

    # ------------------------------------------------------------------ internals
    def _on_warning(self, lease_id: int) -> None:
        if self.lease_id != lease_id:
            return
        logger.info("Execution lease %d about to expire", lease_id)
        self._emit(LeaseWillExpire(lease_id))

    def _end(self, lease_id: int, reason: InvalidationReason, error: Optional[str]) -> None:
        with self._lock:
            if self._lease_id != lease_id:
                return
            self._lease_id = None
            timers, self._timers = self._timers, []
        current = threading.current_thread()
        for timer in timers:
            if timer is not current:
                timer.cancel()
        if error:
            logger.warning("Execution lease %d ended (%s): %s", lease_id, reason.value, error)
        else:
            logger.info("Execution lease %d ended (%s)", lease_id, reason.value)
        self._emit(LeaseInvalidated(lease_id, reason, error))

    def _emit(self, event: LeaseEvent) -> None:
        listener = self._listener
        if listener is None:
            return
        try:
            listener(event)
        except Exception:
            logger.exception("Lease listener failed for %r", event)
