"""Memory collector: RAM and swap usage from /proc/meminfo."""

import structlog

from sysmeter.collector import Collector
from sysmeter.config import Config
from sysmeter.procfs import SysPaths, read_meminfo
from sysmeter.rates import ratio_percent
from sysmeter.ringbuffer import HistoryRing

log = structlog.get_logger()


class MemoryCollector(Collector):
    """RAM and swap usage.

    All sizes are MB (kB // 1024). RAM and swap rings are independent,
    each with its own cursor. A ring is only pushed when its total is
    non-zero, so a machine without swap keeps an all-zero swap graph.
    """

    domain = "memory"

    def __init__(self, config: Config, paths: SysPaths | None = None) -> None:
        super().__init__(config, paths)
        self.history = HistoryRing(self.history_size)
        self.swap_history = HistoryRing(self.history_size)
        self.total_mb = 0
        self.free_mb = 0
        self.available_mb = 0
        self.buffers_mb = 0
        self.cached_mb = 0
        self.used_mb = 0
        self.swap_total_mb = 0
        self.swap_free_mb = 0
        self.swap_used_mb = 0
        self.usage_percent = 0.0
        self.swap_percent = 0.0

    def update(self) -> None:
        fields = read_meminfo(self.paths)
        if fields is None:
            log.debug("meminfo_unavailable")
            return

        def mb(key: str) -> int:
            return fields.get(key, 0) // 1024

        self.total_mb = mb("MemTotal")
        self.free_mb = mb("MemFree")
        self.available_mb = mb("MemAvailable")
        self.buffers_mb = mb("Buffers")
        self.cached_mb = mb("Cached")
        self.swap_total_mb = mb("SwapTotal")
        self.swap_free_mb = mb("SwapFree")

        used = self.total_mb - self.free_mb - self.buffers_mb - self.cached_mb
        self.used_mb = max(0, min(used, self.total_mb))
        self.swap_used_mb = max(0, self.swap_total_mb - self.swap_free_mb)

        if self.total_mb > 0:
            self.usage_percent = ratio_percent(self.used_mb, self.total_mb)
            self.history.push(self.usage_percent)

        if self.swap_total_mb > 0:
            self.swap_percent = ratio_percent(self.swap_used_mb, self.swap_total_mb)
            self.swap_history.push(self.swap_percent)
        else:
            self.swap_percent = 0.0

    @property
    def write_index(self) -> int:
        return self.history.write_index

    @property
    def swap_write_index(self) -> int:
        return self.swap_history.write_index
