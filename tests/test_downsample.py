from __future__ import annotations

import math

import pytest

from wristlog.core.downsample import batched, downsample, materialize, reject_outliers
from wristlog.core.models import Reading


def _readings(n: int, x: float = 0.1) -> list[Reading]:
    return [Reading(float(i), x, 0.0, -1.0) for i in range(n)]


@pytest.mark.parametrize("n, factor", [(0, 5), (4, 5), (5, 5), (12, 5), (100, 5), (7, 1), (9, 3)])
def test_downsample_keeps_every_nth_reading(n: int, factor: int) -> None:
    kept = list(downsample(_readings(n), factor))

    assert len(kept) == n // factor
    assert [r.timestamp for r in kept] == [float((i + 1) * factor - 1) for i in range(n // factor)]


def test_downsample_rejects_non_positive_factor() -> None:
    with pytest.raises(ValueError):
        downsample(_readings(3), 0)


def test_downsample_is_lazy() -> None:
    def endless():
        i = 0
        while True:
            yield Reading(float(i), 0.0, 0.0, 0.0)
            i += 1

    it = downsample(endless(), 5)
    assert next(it).timestamp == 4.0
    assert next(it).timestamp == 9.0


def test_reject_outliers_uses_absolute_ceiling() -> None:
    batch = [
        Reading(0.0, 9.0, 0.0, 0.0),
        Reading(1.0, 7.99, 0.0, 0.0),
        Reading(2.0, 0.0, -8.5, 0.0),
        Reading(3.0, 0.0, 0.0, 8.0),
        Reading(4.0, math.nan, 0.0, 0.0),
    ]

    kept = reject_outliers(batch, 8.0)

    assert [r.timestamp for r in kept] == [1.0, 3.0]


def test_batched_splits_into_bounded_lists() -> None:
    batches = list(batched(_readings(2500), 1000))

    assert [len(b) for b in batches] == [1000, 1000, 500]


def test_materialize_skips_batches_that_become_empty() -> None:
    readings = _readings(10, x=20.0) + _readings(10)

    batches = list(materialize(readings, factor=5, max_abs_g=8.0, batch_size=2))

    assert [len(b) for b in batches] == [2]
    assert all(r.x == 0.1 for r in batches[0])


def test_materialize_of_empty_input_yields_nothing() -> None:
    assert list(materialize(iter(()), factor=5)) == []
