"""Scheduling: one asyncio task per metric domain."""

import asyncio
import resource
import signal
import time
from collections.abc import Callable
from dataclasses import dataclass, field

import structlog

from sysmeter import logging as console
from sysmeter.collector import Collector
from sysmeter.config import DOMAINS, MIN_INTERVAL, Config
from sysmeter.cpu import CpuCollector
from sysmeter.disk import DiskCollector
from sysmeter.gpu import GpuCollector
from sysmeter.memory import MemoryCollector
from sysmeter.network import NetworkCollector
from sysmeter.processes import ProcessTable
from sysmeter.procfs import SysPaths

log = structlog.get_logger()

TickListener = Callable[[str], None]


class Monitor:
    """Owns one collector per domain. Built once, shared by sampler, CLI and TUI."""

    def __init__(
        self,
        config: Config,
        paths: SysPaths | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.config = config
        self.paths = paths or SysPaths()
        self.cpu = CpuCollector(config, self.paths)
        self.memory = MemoryCollector(config, self.paths)
        self.disk = DiskCollector(config, self.paths, clock=clock)
        self.network = NetworkCollector(config, self.paths)
        self.gpu = GpuCollector(config, self.paths)
        self.processes = ProcessTable(config, self.paths)

    @property
    def collectors(self) -> dict[str, Collector]:
        """Collectors keyed by domain, in display order."""
        return {domain: getattr(self, domain) for domain in DOMAINS}

    def get(self, domain: str) -> Collector:
        if domain not in DOMAINS:
            raise ValueError(f"Unknown domain: {domain!r}. Valid domains: {list(DOMAINS)}")
        return getattr(self, domain)

    def init(self) -> None:
        """Run one-time discovery for every collector."""
        for collector in self.collectors.values():
            collector.init()

    def tick(self, domains: tuple[str, ...] = DOMAINS) -> None:
        """Synchronously run one tick of the given domains."""
        for domain in domains:
            self.get(domain).tick()


@dataclass
class SamplerState:
    """Runtime counters of the sampler."""

    running: bool = False
    ticks: dict[str, int] = field(default_factory=lambda: {d: 0 for d in DOMAINS})
    failures: dict[str, int] = field(default_factory=lambda: {d: 0 for d in DOMAINS})


class Sampler:
    """Drives each domain's collector on its own interval.

    A domain never runs two updates at once: its task awaits the update
    before sleeping. A slow source stalls only its own domain. Tick
    listeners run on the event loop after every successful update.
    """

    def __init__(self, monitor: Monitor, config: Config | None = None) -> None:
        self.monitor = monitor
        self.config = config or monitor.config
        self.state = SamplerState()
        self._intervals = {d: self.config.intervals.get(d) for d in DOMAINS}
        self._listeners: list[TickListener] = []
        self._tasks: dict[str, asyncio.Task] = {}
        self._shutdown_event = asyncio.Event()

    # ─────────────────────────────────────────────────────────────
    # Configuration
    # ─────────────────────────────────────────────────────────────

    def interval(self, domain: str) -> float:
        if domain not in self._intervals:
            raise ValueError(f"Unknown domain: {domain!r}. Valid domains: {list(DOMAINS)}")
        return self._intervals[domain]

    def set_interval(self, domain: str, seconds: float) -> None:
        """Change a domain's poll interval. Takes effect after the current sleep."""
        if domain not in self._intervals:
            raise ValueError(f"Unknown domain: {domain!r}. Valid domains: {list(DOMAINS)}")
        if seconds < MIN_INTERVAL:
            raise ValueError(f"interval must be >= {MIN_INTERVAL}, got {seconds}")
        self._intervals[domain] = float(seconds)
        log.info("interval_changed", domain=domain, seconds=seconds)

    def add_listener(self, listener: TickListener) -> None:
        """Call listener(domain) after every completed tick."""
        self._listeners.append(listener)

    def remove_listener(self, listener: TickListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    # ─────────────────────────────────────────────────────────────
    # Lifecycle
    # ─────────────────────────────────────────────────────────────

    def start(self, domains: tuple[str, ...] = DOMAINS, ticks: int | None = None) -> None:
        """Spawn one task per domain. Must be called from a running loop.

        Args:
            domains: Domains to drive
            ticks: Stop each domain after this many ticks (None = until stopped)
        """
        self._shutdown_event.clear()
        self.state.running = True
        for domain in domains:
            self.interval(domain)
            self._tasks[domain] = asyncio.create_task(
                self._domain_loop(domain, ticks), name=f"sampler-{domain}"
            )
        log.info("sampler_started", domains=list(domains), intervals=self._intervals)

    def request_stop(self) -> None:
        """Ask every domain loop to exit after its current tick."""
        self._shutdown_event.set()

    async def stop(self) -> None:
        """Stop all domain tasks and wait for them."""
        log.info("sampler_stopping")
        self._shutdown_event.set()
        tasks = list(self._tasks.values())
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._tasks.clear()
        self.state.running = False
        log.info("sampler_stopped", ticks=self.state.ticks)

    async def wait(self) -> None:
        """Wait until every domain task has finished."""
        if self._tasks:
            await asyncio.gather(*self._tasks.values(), return_exceptions=True)

    async def run(
        self,
        domains: tuple[str, ...] = DOMAINS,
        ticks: int | None = None,
        handle_signals: bool = True,
    ) -> None:
        """Run until stopped by signal, request_stop(), or the tick limit."""
        if handle_signals:
            loop = asyncio.get_running_loop()
            for sig in (signal.SIGTERM, signal.SIGINT):
                loop.add_signal_handler(sig, lambda s=sig: self._handle_signal(s))

        self.start(domains, ticks)
        console.sampler_started(list(domains))
        try:
            await self.wait()
        finally:
            console.sampler_stopping()
            await self.stop()
            console.sampler_stopped()

    def _handle_signal(self, sig: signal.Signals) -> None:
        """Handle shutdown signals."""
        log.info("signal_received", signal=sig.name)
        console.signal_received(sig.name)
        self._shutdown_event.set()

    # ─────────────────────────────────────────────────────────────
    # Domain loop
    # ─────────────────────────────────────────────────────────────

    async def _domain_loop(self, domain: str, max_ticks: int | None) -> None:
        collector = self.monitor.get(domain)
        loop = asyncio.get_running_loop()
        done = 0

        while not self._shutdown_event.is_set():
            tick_start = loop.time()
            try:
                await collector.collect()
            except asyncio.CancelledError:
                break
            except Exception as e:
                self.state.failures[domain] += 1
                log.exception("collector_update_failed", domain=domain, error=str(e))
                console.update_failed(domain, str(e))
            else:
                self.state.ticks[domain] += 1
                self._notify(domain)
                if domain == "cpu":
                    self._maybe_heartbeat()

            done += 1
            if max_ticks is not None and done >= max_ticks:
                break

            sleep_time = self._intervals[domain] - (loop.time() - tick_start)
            if sleep_time > 0:
                try:
                    await asyncio.wait_for(self._shutdown_event.wait(), timeout=sleep_time)
                    break  # Shutdown requested during sleep
                except asyncio.TimeoutError:
                    pass
                except asyncio.CancelledError:
                    break

    def _notify(self, domain: str) -> None:
        for listener in list(self._listeners):
            try:
                listener(domain)
            except Exception:
                log.exception("tick_listener_failed", domain=domain)

    def _maybe_heartbeat(self) -> None:
        ticks = self.state.ticks["cpu"]
        if ticks % self.config.system.heartbeat_ticks != 0:
            return

        # ru_maxrss is KB on Linux
        rss_mb = resource.getrusage(resource.RUSAGE_SELF).ru_maxrss / 1024
        cpu_percent = self.monitor.cpu.usage
        mem_percent = self.monitor.memory.usage_percent
        process_count = self.monitor.processes.tree.process_count
        log.info(
            "sampler_heartbeat",
            ticks=ticks,
            cpu=round(cpu_percent, 1),
            mem=round(mem_percent, 1),
            processes=process_count,
            failures=sum(self.state.failures.values()),
            rss_mb=round(rss_mb, 1),
        )
        console.heartbeat(cpu_percent, mem_percent, process_count, ticks, rss_mb)


async def run_sampler(config: Config | None = None, ticks: int | None = None) -> None:
    """Run the headless sampler until shutdown.

    Args:
        config: Optional config, loads from file if not provided
        ticks: Stop after this many ticks per domain
    """
    if config is None:
        config = Config.load()

    console.configure(config, source="sampler")
    console.config_summary(
        {d: config.intervals.get(d) for d in DOMAINS}, config.system.history_size
    )

    monitor = Monitor(config)
    await asyncio.get_running_loop().run_in_executor(None, monitor.init)
    for gpu in monitor.gpu.gpus:
        console.gpu_discovered(gpu.name, gpu.vendor, gpu.discovered_by)
    sampler = Sampler(monitor, config)

    try:
        await sampler.run(ticks=ticks)
    except Exception as e:
        log.exception("sampler_crashed", error=str(e))
        raise
