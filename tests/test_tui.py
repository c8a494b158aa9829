# tests/test_tui.py
"""Tests for TUI app initialization and tick-driven redraws."""

from unittest.mock import patch

import pytest
from textual.widgets import DataTable, Input

from sysmeter.config import Config
from sysmeter.sampler import Monitor


def test_tui_app_starts_without_crash(fake):
    """TUI app initializes without errors."""
    from sysmeter.tui.app import SysmeterApp

    config = Config()
    app = SysmeterApp(config=config, monitor=Monitor(config, fake.paths), start_sampler=False)
    assert app is not None
    assert app.sampler.monitor is app.monitor
    assert app.usage_gradient(0) == config.tui.colors.usage.low


@pytest.fixture
def populated_monitor(fake) -> Monitor:
    fake.write_stat((100, 100, 800, 0))
    fake.write_meminfo(MemTotal=4096 * 1024, MemFree=2048 * 1024, SwapTotal=0)
    fake.write_pid(10, "bash", rss_kb=2048)
    fake.write_pid(11, "bash", rss_kb=1024)
    fake.write_pid(20, "vim")
    monitor = Monitor(Config(), fake.paths)
    monitor.tick(("memory", "processes"))
    return monitor


@pytest.mark.asyncio
async def test_tick_redraws_process_table(populated_monitor: Monitor) -> None:
    from sysmeter.tui.app import SysmeterApp

    app = SysmeterApp(config=Config(), monitor=populated_monitor, start_sampler=False)
    async with app.run_test() as pilot:
        app.on_tick("processes")
        await pilot.pause()
        table = app.query_one("#process-table", DataTable)
        # two groups plus the two bash leaves
        assert table.row_count == 4
        assert app.query_one("#processes").border_title == "PROCESSES (3)"


@pytest.mark.asyncio
async def test_tick_redraws_other_panels(populated_monitor: Monitor) -> None:
    from sysmeter.tui.app import SysmeterApp

    app = SysmeterApp(config=Config(), monitor=populated_monitor, start_sampler=False)
    async with app.run_test() as pilot:
        for domain in ("cpu", "memory", "disk", "network", "gpu"):
            app.on_tick(domain)
        await pilot.pause()
        assert app.query_one("#disk-table", DataTable).row_count == 0
        assert app.query_one("#net-table", DataTable).row_count == 0
        assert "threads" in app.query_one("#header").border_title


@pytest.mark.asyncio
async def test_filter_input_sets_process_filter(populated_monitor: Monitor) -> None:
    from sysmeter.tui.app import SysmeterApp

    app = SysmeterApp(config=Config(), monitor=populated_monitor, start_sampler=False)
    async with app.run_test() as pilot:
        await pilot.press("slash")
        assert isinstance(app.focused, Input)
        await pilot.press("v", "i")
        await pilot.pause()
        assert populated_monitor.processes.filter == "vi"


@pytest.mark.asyncio
async def test_per_core_rows_follow_toggle(fake) -> None:
    from sysmeter.tui.app import MetricRow, SysmeterApp

    fake.write_stat((100, 100, 800, 0), cores=[(50, 50, 400, 0), (50, 50, 400, 0)])
    monitor = Monitor(Config(), fake.paths)
    with patch("sysmeter.cpu.psutil.cpu_count", return_value=2):
        monitor.cpu.init()
    assert monitor.cpu.core_count == 2

    app = SysmeterApp(config=Config(), monitor=monitor, start_sampler=False)
    async with app.run_test() as pilot:
        app.on_tick("cpu")
        await pilot.pause()
        cores = app.query_one("#cores")
        assert len(cores.query(MetricRow)) == 2
        assert cores.display is True

        await pilot.press("escape")
        await pilot.press("c")
        await pilot.pause()
        assert monitor.cpu.show_per_core is False
        assert cores.display is False

        await pilot.press("c")
        await pilot.pause()
        assert monitor.cpu.show_per_core is True
        assert cores.display is True
