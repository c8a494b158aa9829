"""Tests for the per-domain sampler."""

import asyncio
from types import SimpleNamespace
from unittest.mock import MagicMock, patch

import pytest

from sysmeter.config import DOMAINS, Config
from sysmeter.sampler import Monitor, Sampler, run_sampler


class CountingCollector:
    """Stands in for a collector; fails on the listed call numbers."""

    def __init__(self, fail_on: tuple[int, ...] = ()) -> None:
        self.calls = 0
        self.fail_on = fail_on

    async def collect(self) -> None:
        self.calls += 1
        if self.calls in self.fail_on:
            raise RuntimeError(f"boom on call {self.calls}")


class StubMonitor:
    """Monitor with counting collectors and the attributes the heartbeat reads."""

    def __init__(self, config: Config, **collectors: CountingCollector) -> None:
        self.config = config
        self._collectors = {d: collectors.get(d, CountingCollector()) for d in DOMAINS}
        self.cpu = SimpleNamespace(usage=12.5)
        self.memory = SimpleNamespace(usage_percent=40.0)
        self.processes = SimpleNamespace(tree=SimpleNamespace(process_count=123))
        self.gpu = SimpleNamespace(gpus=[])

    def get(self, domain: str) -> CountingCollector:
        return self._collectors[domain]

    def init(self) -> None:
        pass


@pytest.fixture
def fast_config() -> Config:
    config = Config()
    for domain in DOMAINS:
        setattr(config.intervals, domain, 0.1)
    return config


class TestIntervals:
    def test_defaults_from_config(self, config: Config) -> None:
        sampler = Sampler(StubMonitor(config))
        assert sampler.interval("cpu") == 1.0
        assert sampler.interval("network") == 2.0

    def test_set_interval(self, config: Config, captured_logs) -> None:
        sampler = Sampler(StubMonitor(config))
        sampler.set_interval("disk", 5)
        assert sampler.interval("disk") == 5.0
        assert captured_logs[-1]["event"] == "interval_changed"

    def test_set_interval_too_small(self, config: Config) -> None:
        sampler = Sampler(StubMonitor(config))
        with pytest.raises(ValueError, match="interval must be"):
            sampler.set_interval("cpu", 0.05)
        assert sampler.interval("cpu") == 1.0

    def test_unknown_domain(self, config: Config) -> None:
        sampler = Sampler(StubMonitor(config))
        with pytest.raises(ValueError, match="Unknown domain"):
            sampler.set_interval("battery", 1.0)
        with pytest.raises(ValueError, match="Unknown domain"):
            sampler.interval("battery")


class TestDomainLoops:
    @pytest.mark.asyncio
    async def test_tick_limit(self, fast_config: Config) -> None:
        monitor = StubMonitor(fast_config)
        sampler = Sampler(monitor)
        sampler.start(domains=("cpu", "memory"), ticks=3)
        await sampler.wait()
        assert monitor.get("cpu").calls == 3
        assert monitor.get("memory").calls == 3
        assert monitor.get("disk").calls == 0
        assert sampler.state.ticks["cpu"] == 3

    @pytest.mark.asyncio
    async def test_failure_logged_and_loop_continues(
        self, fast_config: Config, captured_logs, capsys
    ) -> None:
        """A collector that raises is logged and sampled again next interval."""
        monitor = StubMonitor(fast_config, disk=CountingCollector(fail_on=(1,)))
        sampler = Sampler(monitor)
        sampler.start(domains=("disk",), ticks=3)
        await sampler.wait()

        assert monitor.get("disk").calls == 3
        assert sampler.state.failures["disk"] == 1
        assert sampler.state.ticks["disk"] == 2
        failures = [e for e in captured_logs if e["event"] == "collector_update_failed"]
        assert len(failures) == 1
        assert failures[0]["domain"] == "disk"
        assert "boom on call 1" in failures[0]["error"]
        out = capsys.readouterr().out
        assert "disk update failed: boom on call 1" in out

    @pytest.mark.asyncio
    async def test_listeners_notified(self, fast_config: Config, captured_logs) -> None:
        sampler = Sampler(StubMonitor(fast_config))
        seen: list[str] = []

        def broken(domain: str) -> None:
            raise RuntimeError("listener bug")

        sampler.add_listener(broken)
        sampler.add_listener(seen.append)
        sampler.start(domains=("cpu", "gpu"), ticks=2)
        await sampler.wait()

        assert sorted(seen) == ["cpu", "cpu", "gpu", "gpu"]
        assert any(e["event"] == "tick_listener_failed" for e in captured_logs)

    @pytest.mark.asyncio
    async def test_removed_listener_not_called(self, fast_config: Config) -> None:
        sampler = Sampler(StubMonitor(fast_config))
        seen: list[str] = []
        sampler.add_listener(seen.append)
        sampler.remove_listener(seen.append)
        sampler.remove_listener(seen.append)
        sampler.start(domains=("cpu",), ticks=1)
        await sampler.wait()
        assert seen == []

    @pytest.mark.asyncio
    async def test_request_stop_ends_loops(self, fast_config: Config) -> None:
        monitor = StubMonitor(fast_config)
        sampler = Sampler(monitor)
        sampler.add_listener(lambda domain: sampler.request_stop())
        sampler.start(domains=("cpu",))
        await asyncio.wait_for(sampler.wait(), timeout=2.0)
        assert monitor.get("cpu").calls == 1

    @pytest.mark.asyncio
    async def test_stop_cancels_tasks(self, config: Config) -> None:
        sampler = Sampler(StubMonitor(config))
        sampler.start()
        assert sampler.state.running is True
        await asyncio.sleep(0.05)
        await sampler.stop()
        assert sampler.state.running is False
        assert sampler.state.ticks["cpu"] == 1

    @pytest.mark.asyncio
    async def test_heartbeat_every_n_cpu_ticks(self, fast_config: Config, captured_logs) -> None:
        fast_config.system.heartbeat_ticks = 2
        sampler = Sampler(StubMonitor(fast_config))
        with patch("sysmeter.sampler.console") as console:
            sampler.start(domains=("cpu",), ticks=4)
            await sampler.wait()

        beats = [e for e in captured_logs if e["event"] == "sampler_heartbeat"]
        assert [b["ticks"] for b in beats] == [2, 4]
        assert beats[0]["cpu"] == 12.5
        assert beats[0]["processes"] == 123
        assert console.heartbeat.call_count == 2


@pytest.mark.asyncio
async def test_run_prints_lifecycle(fast_config: Config) -> None:
    sampler = Sampler(StubMonitor(fast_config))
    with patch("sysmeter.sampler.console") as console:
        await sampler.run(domains=("memory",), ticks=1, handle_signals=False)
    console.sampler_started.assert_called_once_with(["memory"])
    console.sampler_stopping.assert_called_once()
    console.sampler_stopped.assert_called_once()
    assert sampler.state.running is False


@pytest.mark.asyncio
async def test_run_sampler_wires_everything(fast_config: Config) -> None:
    monitor = StubMonitor(fast_config)
    monitor.gpu.gpus = [SimpleNamespace(name="NVIDIA A100", vendor="NVIDIA", discovered_by="drm")]
    with (
        patch("sysmeter.sampler.console") as console,
        patch("sysmeter.sampler.Monitor", return_value=monitor),
    ):
        await run_sampler(fast_config, ticks=1)
    console.configure.assert_called_once_with(fast_config, source="sampler")
    console.gpu_discovered.assert_called_once_with("NVIDIA A100", "NVIDIA", "drm")
    assert all(monitor.get(d).calls == 1 for d in DOMAINS)


class TestMonitor:
    def test_collectors_in_domain_order(self, fake, config: Config) -> None:
        monitor = Monitor(config, fake.paths)
        assert list(monitor.collectors) == list(DOMAINS)
        assert monitor.get("cpu") is monitor.cpu
        assert monitor.get("processes") is monitor.processes

    def test_get_unknown(self, fake, config: Config) -> None:
        monitor = Monitor(config, fake.paths)
        with pytest.raises(ValueError, match="Unknown domain"):
            monitor.get("battery")

    def test_tick_selected_domains(self, fake, config: Config) -> None:
        fake.write_meminfo(MemTotal=2048 * 1024, MemFree=1024 * 1024)
        monitor = Monitor(config, fake.paths)
        monitor.tick(("memory",))
        assert monitor.memory.update_count == 1
        assert monitor.memory.usage_percent == 50.0
        assert monitor.cpu.update_count == 0

    def test_collectors_share_paths(self, fake, config: Config) -> None:
        monitor = Monitor(config, fake.paths, clock=MagicMock(return_value=1.0))
        assert all(c.paths is fake.paths for c in monitor.collectors.values())
