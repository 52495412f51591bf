from __future__ import annotations

import pytest

from localfirst.sync.backoff import backoff_delay


def test_delay_doubles_per_attempt() -> None:
    delays = [backoff_delay(n, base_s=1.0, rand=lambda: 0.5) for n in range(1, 6)]

    assert delays == [1.0, 2.0, 4.0, 8.0, 16.0]


def test_delay_is_capped() -> None:
    assert backoff_delay(30, base_s=1.0, cap_s=300.0, rand=lambda: 0.5) == 300.0
    assert backoff_delay(10_000, base_s=1.0, cap_s=60.0, rand=lambda: 0.5) == 60.0


@pytest.mark.parametrize(("rand", "expected"), [(0.0, 3.2), (1.0, 4.8)])
def test_jitter_stays_within_twenty_percent(rand: float, expected: float) -> None:
    assert backoff_delay(3, base_s=1.0, rand=lambda: rand) == pytest.approx(expected)


def test_delay_never_drops_below_previous_interval() -> None:
    high = backoff_delay(10, cap_s=300.0, rand=lambda: 1.0)
    low = backoff_delay(11, cap_s=300.0, rand=lambda: 0.0, previous_s=high)

    assert high == pytest.approx(360.0)
    assert low == high


def test_no_delay_before_first_attempt() -> None:
    assert backoff_delay(0) == 0.0
