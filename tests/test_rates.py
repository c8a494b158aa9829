"""Tests for the rate and percentage calculator."""

import math
import random

import pytest

from sysmeter.procfs import CpuTimes
from sysmeter.rates import (
    busy_percent,
    clamp_percent,
    clamp_rate,
    counter_delta,
    process_cpu_percent,
    ratio_percent,
    throughput,
)


def times(user: int = 0, system: int = 0, idle: int = 0, iowait: int = 0) -> CpuTimes:
    return CpuTimes(user=user, system=system, idle=idle, iowait=iowait)


class TestClamp:
    def test_percent_bounds(self) -> None:
        assert clamp_percent(-5) == 0.0
        assert clamp_percent(150) == 100.0
        assert clamp_percent(42.5) == 42.5

    def test_percent_nan(self) -> None:
        assert clamp_percent(math.nan) == 0.0

    def test_rate_bounds(self) -> None:
        assert clamp_rate(-1.0) == 0.0
        assert clamp_rate(1e9) == 1e9
        assert clamp_rate(math.nan) == 0.0


def test_counter_delta_backward_is_zero() -> None:
    """A counter that went backward (reset, wrap) yields zero."""
    assert counter_delta(100, 150) == 50
    assert counter_delta(150, 100) == 0


class TestBusyPercent:
    def test_no_previous_snapshot(self) -> None:
        assert busy_percent(None, times(100, 50, 800)) is None

    def test_basic(self) -> None:
        prev = times(user=100, system=100, idle=800)
        curr = times(user=150, system=150, idle=900)
        # busy delta 100 of total 200
        assert busy_percent(prev, curr) == pytest.approx(50.0)

    def test_iowait_counts_as_idle(self) -> None:
        prev = times(user=0, idle=0, iowait=0)
        curr = times(user=25, idle=50, iowait=25)
        assert busy_percent(prev, curr) == pytest.approx(25.0)

    def test_identical_snapshots(self) -> None:
        """Idempotent zero-delta: same snapshot twice is not a sample."""
        snap = times(100, 50, 800)
        assert busy_percent(snap, snap) is None

    def test_counter_decrease_is_skipped(self) -> None:
        prev = times(user=200, idle=800)
        curr = times(user=100, idle=1000)
        assert busy_percent(prev, curr) is None

    def test_result_is_clamped(self) -> None:
        prev = times(user=0, idle=0)
        curr = times(user=100, idle=0)
        assert busy_percent(prev, curr) == 100.0

    @pytest.mark.parametrize("seed", range(5))
    def test_random_pairs_stay_in_range(self, seed: int) -> None:
        """Random and adversarial counters: None or a finite value in [0, 100]."""
        rng = random.Random(seed)
        edges = [0, 1, 2**32 - 1, 2**32, 2**63 - 1, 2**64 - 1]

        def counter() -> int:
            if rng.random() < 0.3:
                return rng.choice(edges)
            return rng.randrange(0, 10**9)

        for _ in range(500):
            prev = CpuTimes(*(counter() for _ in range(8)))
            if rng.random() < 0.5:
                # mostly-forward pair with occasional rollbacks
                curr = CpuTimes(*(max(0, f + rng.randrange(-10, 10**6)) for f in prev.fields()))
            else:
                curr = CpuTimes(*(counter() for _ in range(8)))
            result = busy_percent(prev, curr)
            assert result is None or (0.0 <= result <= 100.0 and not math.isnan(result))


def test_throughput() -> None:
    assert throughput(0, 1000, 2.0) == 500.0
    assert throughput(1000, 0, 2.0) == 0.0
    assert throughput(0, 1000, 0.0) == 0.0


def test_ratio_percent() -> None:
    assert ratio_percent(25, 100) == 25.0
    assert ratio_percent(5, 0) == 0.0
    assert ratio_percent(200, 100) == 100.0


class TestProcessCpuPercent:
    def test_baseline_example(self) -> None:
        """user 100/sys 50 then 150/80 over 200 system jiffies is 40%."""
        assert process_cpu_percent(100 + 50, 150 + 80, 200) == pytest.approx(40.0)

    def test_no_system_delta(self) -> None:
        assert process_cpu_percent(100, 200, 0) == 0.0

    def test_never_negative(self) -> None:
        assert process_cpu_percent(500, 100, 200) == 0.0
