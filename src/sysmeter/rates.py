"""Pure functions turning two cumulative counter snapshots into derived values.

Percentages are always clamped to [0, 100]; throughputs to >= 0. A return
of None means "no data this tick": the caller keeps its previous value and
writes nothing to history.
"""

from sysmeter.procfs import CpuTimes


def clamp_percent(value: float) -> float:
    """Clamp a percentage into [0, 100]; NaN becomes 0."""
    if value != value:  # NaN
        return 0.0
    return max(0.0, min(100.0, float(value)))


def clamp_rate(value: float) -> float:
    """Clamp a throughput to >= 0; NaN becomes 0."""
    if value != value:  # NaN
        return 0.0
    return max(0.0, float(value))


def counter_delta(prev: int, curr: int) -> int:
    """Difference of two monotonic counters, 0 if the counter went backward."""
    if curr < prev:
        return 0
    return curr - prev


def busy_percent(prev: CpuTimes | None, curr: CpuTimes) -> float | None:
    """CPU busy percentage between two jiffy snapshots.

    busy = total - (idle + iowait). Returns None when there is no previous
    snapshot, when no jiffies elapsed, or when any counter moved backward.
    A busy delta larger than the total delta is clamped to 100%.
    """
    if prev is None:
        return None
    if any(c < p for p, c in zip(prev.fields(), curr.fields())):
        return None

    total_delta = curr.total - prev.total
    if total_delta <= 0:
        return None

    busy_delta = curr.busy - prev.busy
    busy_delta = max(0, min(busy_delta, total_delta))
    return clamp_percent(100.0 * busy_delta / total_delta)


def throughput(prev: int, curr: int, elapsed: float) -> float:
    """Counter units per second over elapsed seconds."""
    if elapsed <= 0:
        return 0.0
    return clamp_rate(counter_delta(prev, curr) / elapsed)


def ratio_percent(part: float, whole: float) -> float:
    """100 * part / whole, clamped; 0 when whole is not positive."""
    if whole <= 0:
        return 0.0
    return clamp_percent(100.0 * part / whole)


def process_cpu_percent(prev_ticks: int, curr_ticks: int, system_delta: int) -> float:
    """Share of all system jiffies spent by one process since its baseline."""
    if system_delta <= 0:
        return 0.0
    return clamp_rate(100.0 * (curr_ticks - prev_ticks) / system_delta)
