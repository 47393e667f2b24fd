from __future__ import annotations

import threading
from collections import deque
from typing import Deque, List, Optional

from .models import Reading

DEFAULT_BUFFER_CAPACITY = 36_000  # one hour at 10 Hz


class ReadingBuffer:
    """
    Fixed-size buffer of live readings.

    Overwrites the oldest entries when full and counts how many were lost,
    so an unattended session cannot grow memory without bound.
    """

    def __init__(self, capacity: int = DEFAULT_BUFFER_CAPACITY) -> None:
        if capacity <= 0:
            raise ValueError("capacity must be positive")
        self._capacity = capacity
        self._data: Deque[Reading] = deque(maxlen=capacity)
        self._overwritten = 0
        self._lock = threading.RLock()

    @property
    def capacity(self) -> int:
        return self._capacity

    @property
    def overwritten(self) -> int:
        """Number of readings evicted since the last :meth:`clear`."""
        with self._lock:
            return self._overwritten

    def append(self, reading: Reading) -> None:
        with self._lock:
            if len(self._data) == self._capacity:
                self._overwritten += 1
            self._data.append(reading)

    def clear(self) -> None:
        with self._lock:
            self._data.clear()
            self._overwritten = 0

    def snapshot(self) -> List[Reading]:
        """Return a copy of the logical contents, oldest first."""
        with self._lock:
            return list(self._data)

    def latest(self) -> Optional[Reading]:
        with self._lock:
            return self._data[-1] if self._data else None

    def __len__(self) -> int:
        with self._lock:
            return len(self._data)
