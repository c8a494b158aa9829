"""CPU collector: aggregate and per-core usage from /proc/stat."""

import platform
from dataclasses import dataclass
from enum import Enum

import psutil
import structlog

from sysmeter.collector import Collector
from sysmeter.config import Config
from sysmeter.procfs import ProcStat, SysPaths, read_cache_size, read_cpuinfo, read_proc_stat
from sysmeter.rates import busy_percent
from sysmeter.ringbuffer import HistoryRing, TickCursor

log = structlog.get_logger()

NOT_AVAILABLE = "N/A"


class CollectorState(Enum):
    """Lifecycle of a counter-differencing collector."""

    UNINITIALIZED = "uninitialized"  # No baseline snapshot yet
    READY = "ready"


@dataclass
class CpuStaticInfo:
    """Identity fields read once at init. Missing values read as "N/A"."""

    model_name: str = NOT_AVAILABLE
    vendor: str = NOT_AVAILABLE
    family: str = NOT_AVAILABLE
    stepping: str = NOT_AVAILABLE
    cache_size: str = NOT_AVAILABLE  # KB
    architecture: str = NOT_AVAILABLE
    bogomips: str = NOT_AVAILABLE
    address_sizes: str = NOT_AVAILABLE


class CpuCollector(Collector):
    """Aggregate and per-core CPU usage.

    All rings (aggregate plus one per core) share one TickCursor so every
    CPU graph stays time-aligned. The cursor advances once per tick, after
    every ring has been written. When one entity's delta is unusable but
    others succeeded, that entity repeats its last value to keep alignment.
    """

    domain = "cpu"

    def __init__(self, config: Config, paths: SysPaths | None = None) -> None:
        super().__init__(config, paths)
        self.state = CollectorState.UNINITIALIZED
        self.cursor = TickCursor(self.history_size)
        self.history = HistoryRing(cursor=self.cursor)
        self._core_rings: list[HistoryRing] = []
        self._prev: ProcStat | None = None
        self._initialized = False
        self.info = CpuStaticInfo()
        self.cores = 1
        self.threads = 1
        self.frequency_mhz = 0.0
        self.show_per_core = True

    def init(self) -> None:
        """Discover topology and cache static identity fields."""
        self._initialized = True
        cpuinfo = read_cpuinfo(self.paths)
        if cpuinfo is not None:
            self.info = CpuStaticInfo(
                model_name=cpuinfo.model_name or NOT_AVAILABLE,
                vendor=cpuinfo.vendor or NOT_AVAILABLE,
                family=cpuinfo.family or NOT_AVAILABLE,
                stepping=cpuinfo.stepping or NOT_AVAILABLE,
                bogomips=cpuinfo.bogomips or NOT_AVAILABLE,
                address_sizes=cpuinfo.address_sizes or NOT_AVAILABLE,
            )
            self.cores = len(cpuinfo.physical_ids) or 1
            if cpuinfo.mhz:
                self.frequency_mhz = sum(cpuinfo.mhz) / len(cpuinfo.mhz)
        self.info.cache_size = read_cache_size(self.paths) or NOT_AVAILABLE
        self.info.architecture = platform.machine() or NOT_AVAILABLE

        threads = psutil.cpu_count(logical=True)
        if not threads:
            stat = read_proc_stat(self.paths)
            threads = len(stat.cores) if stat is not None and stat.cores else 1
        self.threads = threads

        tracked = min(self.threads, self.config.limits.max_cores)
        self._core_rings = [HistoryRing(cursor=self.cursor) for _ in range(tracked)]
        log.debug(
            "cpu_initialized",
            model=self.info.model_name,
            cores=self.cores,
            threads=self.threads,
            tracked=tracked,
        )

    def update(self) -> None:
        if not self._initialized:
            self.init()

        stat = read_proc_stat(self.paths)
        if stat is None:
            log.debug("cpu_stat_unavailable")
            return

        self._update_frequency()

        prev = self._prev
        self._prev = stat
        if self.state is CollectorState.UNINITIALIZED:
            self.state = CollectorState.READY
            return
        assert prev is not None

        aggregate = busy_percent(prev.aggregate, stat.aggregate)
        per_core: list[float | None] = []
        for i in range(len(self._core_rings)):
            if i < len(prev.cores) and i < len(stat.cores):
                per_core.append(busy_percent(prev.cores[i], stat.cores[i]))
            else:
                per_core.append(None)

        if aggregate is None and all(v is None for v in per_core):
            return

        self.history.push(aggregate if aggregate is not None else self.history.latest)
        for ring, value in zip(self._core_rings, per_core):
            ring.push(value if value is not None else ring.latest)
        self.cursor.advance()

    def _update_frequency(self) -> None:
        cpuinfo = read_cpuinfo(self.paths)
        if cpuinfo is not None and cpuinfo.mhz:
            self.frequency_mhz = sum(cpuinfo.mhz) / len(cpuinfo.mhz)

    # ─────────────────────────────────────────────────────────────
    # Accessors
    # ─────────────────────────────────────────────────────────────

    @property
    def usage(self) -> float:
        """Aggregate busy percentage of the last completed tick."""
        return self.history.latest

    @property
    def write_index(self) -> int:
        return self.cursor.index

    @property
    def core_count(self) -> int:
        """Number of cores with a history ring (threads, capped)."""
        return len(self._core_rings)

    def core_usage(self, index: int) -> float:
        if 0 <= index < len(self._core_rings):
            return self._core_rings[index].latest
        return 0.0

    def core_history(self, index: int) -> HistoryRing | None:
        if 0 <= index < len(self._core_rings):
            return self._core_rings[index]
        return None

    def set_show_per_core(self, show: bool) -> None:
        """Toggle per-core graphs in the dashboard."""
        self.show_per_core = show
