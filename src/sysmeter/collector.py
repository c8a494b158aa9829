"""Base class for per-domain metric collectors."""

import asyncio

import structlog

from sysmeter.config import Config
from sysmeter.procfs import SysPaths

log = structlog.get_logger()


class Collector:
    """One metric domain: reads raw snapshots, derives values, fills history rings.

    Subclasses implement update(), which runs one tick synchronously and
    never raises for missing sources. Collectors hold no scheduling logic;
    the sampler decides when update() runs and guarantees at most one
    update() per collector at a time.
    """

    domain = ""

    def __init__(self, config: Config, paths: SysPaths | None = None) -> None:
        self.config = config
        self.paths = paths or SysPaths()
        self.timeout = config.sources.command_timeout
        self.history_size = config.system.history_size
        self.update_count = 0

    def init(self) -> None:
        """One-time discovery. Default: nothing to discover."""

    def update(self) -> None:
        """Run one tick."""
        raise NotImplementedError

    def tick(self) -> None:
        """Run one tick and count it."""
        self.update()
        self.update_count += 1

    async def collect(self) -> None:
        """Run one tick off the event loop so file and subprocess reads don't block it."""
        loop = asyncio.get_running_loop()
        await loop.run_in_executor(None, self.tick)
