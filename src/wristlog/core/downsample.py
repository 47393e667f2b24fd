"""Downsampling and outlier rejection for recorder sample streams.

Recorder fetches can span days, so everything here is lazy: raw readings are
consumed in arrival order and handed on in fixed-size batches, keeping peak
memory bounded by one batch regardless of session length.
"""

from __future__ import annotations

import logging
from itertools import islice
from typing import Iterable, Iterator, List

import numpy as np

from .models import Reading

logger = logging.getLogger(__name__)

DEFAULT_DOWNSAMPLE_FACTOR = 5
DEFAULT_MAX_ABS_G = 8.0
DEFAULT_BATCH_SIZE = 1000


def downsample(readings: Iterable[Reading], factor: int) -> Iterator[Reading]:
    """Keep raw index ``i`` when ``(i + 1) % factor == 0``; drop the rest."""
    if factor <= 0:
        raise ValueError(f"factor must be a positive integer, got {factor}")
    # islice keeps indices factor-1, 2*factor-1, ...
    return islice(readings, factor - 1, None, factor)


def outlier_mask(batch: List[Reading], max_abs_g: float) -> np.ndarray:
    """Return a boolean mask that is True for readings within ``max_abs_g``."""
    if not batch:
        return np.zeros(0, dtype=bool)
    xyz = np.fromiter(
        (v for r in batch for v in (r.x, r.y, r.z)),
        dtype=np.float64,
        count=3 * len(batch),
    ).reshape(-1, 3)
    with np.errstate(invalid="ignore"):
        return np.all(np.abs(xyz) <= max_abs_g, axis=1)


def reject_outliers(batch: List[Reading], max_abs_g: float) -> List[Reading]:
    """
    Drop readings where any axis exceeds ``max_abs_g`` in magnitude.

    NaN axes count as outliers. Drops are logged, never raised.
    """
    mask = outlier_mask(batch, max_abs_g)
    kept = [r for r, ok in zip(batch, mask) if ok]
    dropped = len(batch) - len(kept)
    if dropped:
        logger.info("Dropped %d reading(s) above %.2f g", dropped, max_abs_g)
    return kept


def batched(readings: Iterable[Reading], batch_size: int) -> Iterator[List[Reading]]:
    """Yield lists of at most ``batch_size`` readings."""
    if batch_size <= 0:
        raise ValueError(f"batch_size must be a positive integer, got {batch_size}")
    it = iter(readings)
    while True:
        batch = list(islice(it, batch_size))
        if not batch:
            return
        yield batch


def materialize(
    readings: Iterable[Reading],
    *,
    factor: int = DEFAULT_DOWNSAMPLE_FACTOR,
    max_abs_g: float = DEFAULT_MAX_ABS_G,
    batch_size: int = DEFAULT_BATCH_SIZE,
) -> Iterator[List[Reading]]:
    """Downsample, batch, and validate ``readings``; empty batches are skipped."""
    for batch in batched(downsample(readings, factor), batch_size):
        kept = reject_outliers(batch, max_abs_g)
        if kept:
            yield kept
