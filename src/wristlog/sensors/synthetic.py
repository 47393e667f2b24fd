"""Synthetic recorder used for demos and ``wristlog run --simulate``."""

from __future__ import annotations

import logging
import math
import time
from typing import Callable, Iterator, Optional

import numpy as np

from ..core.models import Reading, ReadingSource

logger = logging.getLogger(__name__)


class SyntheticRecorder:
    """
    Deterministic stand-in for the hardware recorder.

    Once :meth:`begin_continuous_recording` is called, a sample "exists" at
    every ``1 / rate_hz`` step from the begin time until the requested
    duration runs out, so fetches behave like a recorder that kept running
    while the process was suspended.
    """

    def __init__(
        self,
        rate_hz: float = 50.0,
        *,
        available: bool = True,
        seed: int = 0,
        clock: Callable[[], float] = time.time,
    ) -> None:
        if rate_hz <= 0:
            raise ValueError("rate_hz must be positive")
        self.rate_hz = float(rate_hz)
        self.available = available
        self._clock = clock
        self._seed = seed
        self._recording_from: Optional[float] = None
        self._recording_until: Optional[float] = None

    def is_available(self) -> bool:
        return self.available

    def begin_continuous_recording(self, max_duration_s: float) -> None:
        now = self._clock()
        if self._recording_from is None or (
            self._recording_until is not None and now >= self._recording_until
        ):
            self._recording_from = now
        self._recording_until = now + float(max_duration_s)
        logger.info("Synthetic recorder running at %.1f Hz", self.rate_hz)

    def fetch_samples(self, start: float, end: float) -> Iterator[Reading]:
        if self._recording_from is None or self._recording_until is None:
            return iter(())
        lo = max(start, self._recording_from)
        hi = min(end, self._recording_until)
        return self._generate(lo, hi)

    def _generate(self, lo: float, hi: float) -> Iterator[Reading]:
        if hi <= lo:
            return
        origin = self._recording_from or 0.0
        dt = 1.0 / self.rate_hz
        first = math.ceil((lo - origin) / dt - 1e-9)
        rng = np.random.default_rng(self._seed + first)
        k = first
        while True:
            t = origin + k * dt
            if t >= hi:
                break
            phase = 2.0 * math.pi * 1.2 * (t - origin)
            noise = rng.normal(0.0, 0.01, size=3)
            yield Reading(
                timestamp=t,
                x=0.15 * math.sin(phase) + float(noise[0]),
                y=0.15 * math.cos(phase) + float(noise[1]),
                z=-1.0 + float(noise[2]),
                source=ReadingSource.RECORDER,
            )
            k += 1
