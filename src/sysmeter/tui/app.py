"""Live dashboard for sysmeter.

Widgets only read collector accessors. Each domain's widget is redrawn
from that domain's tick listener, which the sampler calls on the event
loop between updates of that collector.
"""

from typing import Any

from rich.text import Text
from textual.app import App, ComposeResult
from textual.containers import Horizontal, Vertical
from textual.css.query import NoMatches
from textual.widgets import DataTable, Footer, Input, Label, Static

from sysmeter.config import Config
from sysmeter.formatting import format_kb, format_mb, format_percent, format_rate, format_speed
from sysmeter.processes import ProcessGroup, ProcessTree
from sysmeter.ringbuffer import HistoryRing
from sysmeter.sampler import Monitor, Sampler
from sysmeter.tui.sparkline import GradientColor, Sparkline


class MetricRow(Horizontal):
    """Label plus sparkline for one percentage series."""

    DEFAULT_CSS = """
    MetricRow {
        height: auto;
        width: 100%;
    }

    MetricRow > Label {
        width: 28;
    }
    """

    def __init__(self, title: str, **kwargs: Any) -> None:
        super().__init__(**kwargs)
        self.metric_name = title

    def compose(self) -> ComposeResult:
        yield Label(f"{self.metric_name:<5}", classes="metric-label")

    def on_mount(self) -> None:
        tui = self.app.config.tui
        self.mount(Sparkline.from_config(tui.sparkline, tui.colors.usage, classes="metric-spark"))

    def show(self, value: float, detail: str, ring: HistoryRing) -> None:
        """Update label text and graph."""
        try:
            label = self.query_one(".metric-label", Label)
            spark = self.query_one(".metric-spark", Sparkline)
        except NoMatches:
            return
        color = self.app.usage_gradient(value)
        label.update(
            Text.assemble(f"{self.metric_name:<5}", (f"{value:5.1f}%", color), f" {detail}")
        )
        spark.set_history(ring)


class HeaderBar(Static):
    """CPU, memory, swap and GPU graphs."""

    DEFAULT_CSS = """
    HeaderBar {
        height: auto;
        padding: 0 1;
        border: solid green;
        border-title-align: left;
    }

    HeaderBar #cores {
        height: auto;
        max-height: 16;
        overflow-y: auto;
    }
    """

    def compose(self) -> ComposeResult:
        yield MetricRow("CPU", id="row-cpu")
        yield Vertical(id="cores")
        yield MetricRow("MEM", id="row-memory")
        yield MetricRow("SWAP", id="row-swap")
        yield MetricRow("GPU", id="row-gpu")

    def on_mount(self) -> None:
        self.border_title = "SYSTEM"
        self.styles.border = ("solid", self.app.config.tui.colors.border)

    def _row(self, row_id: str) -> MetricRow | None:
        try:
            return self.query_one(f"#{row_id}", MetricRow)
        except NoMatches:
            return None

    def update_cpu(self, monitor: Monitor) -> None:
        cpu = monitor.cpu
        row = self._row("row-cpu")
        if row is not None:
            row.show(cpu.usage, f"{cpu.frequency_mhz:.0f}MHz", cpu.history)
        self._update_cores(monitor)
        self.border_title = f"SYSTEM  {cpu.info.model_name}  {cpu.threads} threads"

    def _update_cores(self, monitor: Monitor) -> None:
        """One row per tracked core, hidden when per-core graphs are off."""
        cpu = monitor.cpu
        try:
            cores = self.query_one("#cores", Vertical)
        except NoMatches:
            return
        cores.display = cpu.show_per_core
        if not cpu.show_per_core:
            return
        rows = list(cores.query(MetricRow))
        if len(rows) < cpu.core_count:
            cores.mount(
                *(MetricRow(f"C{i}", id=f"row-core-{i}") for i in range(len(rows), cpu.core_count))
            )
        for i, row in enumerate(rows[: cpu.core_count]):
            ring = cpu.core_history(i)
            if ring is not None:
                row.show(cpu.core_usage(i), "", ring)

    def update_memory(self, monitor: Monitor) -> None:
        mem = monitor.memory
        row = self._row("row-memory")
        if row is not None:
            row.show(
                mem.usage_percent,
                f"{format_mb(mem.used_mb)}/{format_mb(mem.total_mb)}",
                mem.history,
            )
        row = self._row("row-swap")
        if row is not None:
            row.show(
                mem.swap_percent,
                f"{format_mb(mem.swap_used_mb)}/{format_mb(mem.swap_total_mb)}",
                mem.swap_history,
            )

    def update_gpu(self, monitor: Monitor) -> None:
        gpu = monitor.gpu.primary
        row = self._row("row-gpu")
        if gpu is None or row is None:
            return
        row.show(gpu.usage_percent, gpu.name, gpu.usage_history)


class DiskPanel(Static):
    """Physical disks with space and activity."""

    DEFAULT_CSS = """
    DiskPanel {
        border: solid $primary;
        border-title-align: left;
    }
    """

    def compose(self) -> ComposeResult:
        yield DataTable(id="disk-table", cursor_type="none")

    def on_mount(self) -> None:
        self.border_title = "DISKS"
        table = self.query_one("#disk-table", DataTable)
        table.add_columns("Disk", "Type", "Mount", "Used", "Size", "Activity")

    def update_disks(self, monitor: Monitor) -> None:
        table = self.query_one("#disk-table", DataTable)
        table.clear()
        gradient = self.app.usage_gradient
        for disk in monitor.disk.disks:
            table.add_row(
                disk.name,
                disk.disk_type,
                disk.mount_point,
                Text(format_percent(disk.usage_percent), style=gradient(disk.usage_percent)),
                format_mb(disk.total_mb),
                Text(format_percent(disk.activity_percent), style=gradient(disk.activity_percent)),
            )


class NetworkPanel(Static):
    """Physical interfaces with current rates."""

    DEFAULT_CSS = """
    NetworkPanel {
        border: solid $primary;
        border-title-align: left;
    }
    """

    def compose(self) -> ComposeResult:
        yield DataTable(id="net-table", cursor_type="none")

    def on_mount(self) -> None:
        self.border_title = "NETWORK"
        table = self.query_one("#net-table", DataTable)
        table.add_columns("Iface", "Type", "IP", "RX", "TX", "Link")

    def update_interfaces(self, monitor: Monitor) -> None:
        table = self.query_one("#net-table", DataTable)
        table.clear()
        for iface in monitor.network.interfaces:
            table.add_row(
                iface.name,
                iface.interface_type,
                iface.ip_address,
                format_rate(iface.rx_kbps),
                format_rate(iface.tx_kbps),
                format_speed(iface.link_speed_mbps),
            )


class ProcessPanel(Static):
    """Process tree with a name filter."""

    DEFAULT_CSS = """
    ProcessPanel {
        height: 1fr;
        border: solid $primary;
        border-title-align: left;
    }

    ProcessPanel Input {
        height: 3;
    }

    ProcessPanel DataTable {
        width: 100%;
        height: 1fr;
    }
    """

    def compose(self) -> ComposeResult:
        yield Input(placeholder="Filter by name ( / )", id="filter")
        yield DataTable(id="process-table", zebra_stripes=True, cursor_type="row")

    def on_mount(self) -> None:
        self.border_title = "PROCESSES"
        table = self.query_one("#process-table", DataTable)
        table.add_columns("Name", "PID", "CPU", "Memory")
        self.query_one("#filter", Input).value = self.app.monitor.processes.filter

    def update_tree(self, tree: ProcessTree) -> None:
        table = self.query_one("#process-table", DataTable)
        table.clear()
        colors = self.app.config.tui.colors
        gradient = self.app.usage_gradient
        limit = self.app.config.tui.process_rows
        for row in tree.sorted_by("cpu").rows()[:limit]:
            cpu = Text(f"{row.cpu_percent:5.1f}%", style=gradient(row.cpu_percent))
            if isinstance(row, ProcessGroup):
                name = f"{row.name} ({len(row.children)})" if len(row.children) > 1 else row.name
                name_text = Text(name, style=f"bold {colors.group}")
                table.add_row(name_text, "", cpu, format_kb(row.rss_kb))
            else:
                table.add_row(
                    Text(f"  {row.name}"),
                    Text(str(row.pid), style=colors.pid),
                    cpu,
                    format_kb(row.rss_kb),
                )
        self.border_title = f"PROCESSES ({tree.process_count})"

    def on_input_changed(self, event: Input.Changed) -> None:
        self.app.monitor.processes.set_filter(event.value)


class SysmeterApp(App):
    """Real-time system dashboard."""

    CSS = """
    Screen {
        layout: vertical;
    }

    #panels {
        height: 12;
    }

    #panels > * {
        width: 1fr;
    }
    """

    BINDINGS = [
        ("q", "quit", "Quit"),
        ("slash", "focus_filter", "Filter"),
        ("escape", "blur_filter", "Table"),
        ("c", "toggle_cores", "Per-core"),
    ]

    def __init__(
        self,
        config: Config | None = None,
        monitor: Monitor | None = None,
        start_sampler: bool = True,
    ):
        super().__init__()
        self.config = config or Config.load()
        self.monitor = monitor or Monitor(self.config)
        self.sampler = Sampler(self.monitor, self.config)
        self.usage_gradient = GradientColor.for_usage(self.config.tui.colors.usage)
        self._start_sampler = start_sampler

    def compose(self) -> ComposeResult:
        yield HeaderBar(id="header")
        yield Horizontal(
            DiskPanel(id="disks"),
            NetworkPanel(id="network"),
            id="panels",
        )
        yield ProcessPanel(id="processes")
        yield Footer()

    def on_mount(self) -> None:
        self.title = "sysmeter"
        self.sub_title = "System Monitor"
        self.sampler.add_listener(self.on_tick)
        if self._start_sampler:
            self.sampler.start()

    async def on_unmount(self) -> None:
        self.sampler.remove_listener(self.on_tick)
        if self.sampler.state.running:
            await self.sampler.stop()

    def on_tick(self, domain: str) -> None:
        """Redraw the widgets fed by one domain."""
        try:
            header = self.query_one("#header", HeaderBar)
            match domain:
                case "cpu":
                    header.update_cpu(self.monitor)
                case "memory":
                    header.update_memory(self.monitor)
                case "gpu":
                    header.update_gpu(self.monitor)
                case "disk":
                    self.query_one("#disks", DiskPanel).update_disks(self.monitor)
                case "network":
                    self.query_one("#network", NetworkPanel).update_interfaces(self.monitor)
                case "processes":
                    self.query_one("#processes", ProcessPanel).update_tree(
                        self.monitor.processes.tree
                    )
        except NoMatches:
            pass

    def action_toggle_cores(self) -> None:
        cpu = self.monitor.cpu
        cpu.set_show_per_core(not cpu.show_per_core)
        self.on_tick("cpu")

    def action_focus_filter(self) -> None:
        self.query_one("#filter", Input).focus()

    def action_blur_filter(self) -> None:
        self.query_one("#process-table", DataTable).focus()


def run_tui(config: Config | None = None) -> None:
    """Run the TUI application."""
    app = SysmeterApp(config)
    app.run()
