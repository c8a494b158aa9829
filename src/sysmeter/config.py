"""Configuration system for sysmeter."""

from dataclasses import dataclass, field, fields, is_dataclass
from pathlib import Path

import tomlkit

# Domains driven by the sampler, in display order
DOMAINS = ("cpu", "memory", "disk", "network", "gpu", "processes")

MIN_INTERVAL = 0.1


@dataclass
class SystemConfig:
    """History and housekeeping configuration."""

    history_size: int = 60  # Samples kept per history ring
    gpu_history_size: int = 60  # Samples kept per GPU ring
    heartbeat_ticks: int = 60  # Log heartbeat every N CPU ticks
    # Log file rotation
    log_max_bytes: int = 5 * 1024 * 1024  # Max log file size (5MB)
    log_backup_count: int = 3  # Number of backup log files to keep


@dataclass
class IntervalsConfig:
    """Per-domain poll intervals in seconds."""

    cpu: float = 1.0
    memory: float = 1.0
    disk: float = 2.0
    network: float = 2.0
    gpu: float = 2.0
    processes: float = 2.0

    def get(self, domain: str) -> float:
        """Return the interval for a domain."""
        if domain not in DOMAINS:
            raise ValueError(f"Unknown domain: {domain!r}. Valid domains: {list(DOMAINS)}")
        return getattr(self, domain)


@dataclass
class LimitsConfig:
    """Caps on tracked entities per domain."""

    max_cores: int = 64
    max_disks: int = 8
    max_interfaces: int = 8
    max_gpus: int = 8


@dataclass
class DiskConfig:
    """Disk activity normalization.

    Throughput in MB/s is multiplied by the scale for the disk class and
    clamped to 100. Faster devices get smaller scales.
    """

    nvme_scale: float = 0.05
    ssd_scale: float = 0.2
    hdd_scale: float = 0.7


@dataclass
class NetworkConfig:
    """Network collector configuration."""

    nominal_period: float = 2.0  # Seconds assumed between network ticks
    wireless_probe: bool = True  # Ask sysfs/iw whether an interface is wireless


@dataclass
class SourcesConfig:
    """External command configuration."""

    command_timeout: float = 2.0  # Seconds before a subprocess is abandoned


@dataclass
class ProcessesConfig:
    """Process table configuration."""

    filter: str = ""  # Case-insensitive substring filter on process name
    excluded_slices: list[str] = field(default_factory=lambda: ["system.slice"])
    kill_grace: float = 0.2  # Seconds between SIGTERM and SIGKILL


# =============================================================================
# TUI Configuration
# =============================================================================


@dataclass
class UsageColors:
    """Gradient stops for percentage sparklines.

    Default palette: Dracula theme.
    """

    low: str = "#50fa7b"  # Dracula green
    medium: str = "#f1fa8c"  # Dracula yellow
    high: str = "#ff5555"  # Dracula red


@dataclass
class TUIColorsConfig:
    """All TUI color configurations grouped together."""

    usage: UsageColors = field(default_factory=UsageColors)
    border: str = "#bd93f9"  # Dracula purple
    group: str = "#8be9fd"  # Dracula cyan, process group rows
    pid: str = "#6272a4"  # Dracula comment


@dataclass
class SparklineConfig:
    """Configuration for sparkline widgets.

    Sparklines are fed from history rings in chronological order.
    """

    height: int = 2  # Number of character rows (1-4). Each row adds 8 vertical levels.
    mode: str = "braille"  # "braille" or "blocks"


@dataclass
class TUIConfig:
    """TUI-specific configuration."""

    colors: TUIColorsConfig = field(default_factory=TUIColorsConfig)
    sparkline: SparklineConfig = field(default_factory=SparklineConfig)
    process_rows: int = 200  # Max rows rendered in the process table


def _dataclass_to_table(obj: object) -> tomlkit.items.Table:
    """Convert a dataclass instance to a tomlkit Table recursively."""
    table = tomlkit.table()
    for f in fields(obj):  # type: ignore[arg-type]
        value = getattr(obj, f.name)
        if is_dataclass(value) and not isinstance(value, type):
            table.add(f.name, _dataclass_to_table(value))
        else:
            table.add(f.name, value)
    return table


@dataclass
class Config:
    """Main configuration container."""

    system: SystemConfig = field(default_factory=SystemConfig)
    intervals: IntervalsConfig = field(default_factory=IntervalsConfig)
    limits: LimitsConfig = field(default_factory=LimitsConfig)
    disk: DiskConfig = field(default_factory=DiskConfig)
    network: NetworkConfig = field(default_factory=NetworkConfig)
    sources: SourcesConfig = field(default_factory=SourcesConfig)
    processes: ProcessesConfig = field(default_factory=ProcessesConfig)
    tui: TUIConfig = field(default_factory=TUIConfig)

    @property
    def config_dir(self) -> Path:
        """Configuration directory."""
        return Path.home() / ".config" / "sysmeter"

    @property
    def config_path(self) -> Path:
        """Path to config file."""
        return self.config_dir / "config.toml"

    @property
    def state_dir(self) -> Path:
        """State directory for logs."""
        return Path.home() / ".local" / "state" / "sysmeter"

    @property
    def log_path(self) -> Path:
        """Log file path.

        Logs are expendable persistent state, so they go in XDG_STATE_HOME.
        """
        return self.state_dir / "sysmeter.log"

    def to_toml(self) -> str:
        """Render every section as a TOML document."""
        doc = tomlkit.document()
        sections = [
            "system",
            "intervals",
            "limits",
            "disk",
            "network",
            "sources",
            "processes",
            "tui",
        ]
        for name in sections:
            doc.add(name, _dataclass_to_table(getattr(self, name)))
            doc.add(tomlkit.nl())
        return tomlkit.dumps(doc)

    def save(self, path: Path | None = None) -> None:
        """Save config to TOML file."""
        path = path or self.config_path
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(self.to_toml())

    @classmethod
    def load(cls, path: Path | None = None) -> "Config":
        """Load config from TOML file, returning defaults for missing values.

        All defaults come from the dataclass definitions, so Config() and
        Config.load() agree on every value the file does not set.
        """
        defaults = cls()
        path = path or defaults.config_path
        if not path.exists():
            return defaults

        try:
            with open(path) as f:
                data = tomlkit.load(f)
        except tomlkit.exceptions.TOMLKitError as e:
            raise ValueError(f"Failed to parse config file {path}: {e}") from e

        return cls(
            system=_load_system_config(data.get("system", {})),
            intervals=_load_intervals_config(data.get("intervals", {})),
            limits=_load_limits_config(data.get("limits", {})),
            disk=_load_disk_config(data.get("disk", {})),
            network=_load_network_config(data.get("network", {})),
            sources=_load_sources_config(data.get("sources", {})),
            processes=_load_processes_config(data.get("processes", {})),
            tui=_load_tui_config(data.get("tui", {})),
        )


def _load_system_config(data: dict) -> SystemConfig:
    """Load system config from TOML data, using dataclass defaults for missing fields."""
    d = SystemConfig()
    history_size = data.get("history_size", d.history_size)
    gpu_history_size = data.get("gpu_history_size", d.gpu_history_size)
    heartbeat_ticks = data.get("heartbeat_ticks", d.heartbeat_ticks)

    if history_size < 2:
        raise ValueError(f"history_size must be >= 2, got {history_size}")
    if gpu_history_size < 2:
        raise ValueError(f"gpu_history_size must be >= 2, got {gpu_history_size}")
    if heartbeat_ticks < 1:
        raise ValueError(f"heartbeat_ticks must be >= 1, got {heartbeat_ticks}")

    return SystemConfig(
        history_size=history_size,
        gpu_history_size=gpu_history_size,
        heartbeat_ticks=heartbeat_ticks,
        log_max_bytes=data.get("log_max_bytes", d.log_max_bytes),
        log_backup_count=data.get("log_backup_count", d.log_backup_count),
    )


def _load_intervals_config(data: dict) -> IntervalsConfig:
    """Load poll intervals, rejecting anything below MIN_INTERVAL."""
    d = IntervalsConfig()
    values = {}
    for domain in DOMAINS:
        value = data.get(domain, getattr(d, domain))
        if value < MIN_INTERVAL:
            raise ValueError(f"intervals.{domain} must be >= {MIN_INTERVAL}, got {value}")
        values[domain] = float(value)
    return IntervalsConfig(**values)


def _load_limits_config(data: dict) -> LimitsConfig:
    """Load entity caps from TOML data."""
    d = LimitsConfig()
    values = {}
    for f in fields(LimitsConfig):
        value = data.get(f.name, getattr(d, f.name))
        if value < 1:
            raise ValueError(f"limits.{f.name} must be >= 1, got {value}")
        values[f.name] = value
    return LimitsConfig(**values)


def _load_disk_config(data: dict) -> DiskConfig:
    """Load disk scale factors from TOML data."""
    d = DiskConfig()
    values = {}
    for f in fields(DiskConfig):
        value = data.get(f.name, getattr(d, f.name))
        if value <= 0:
            raise ValueError(f"disk.{f.name} must be > 0, got {value}")
        values[f.name] = float(value)
    return DiskConfig(**values)


def _load_network_config(data: dict) -> NetworkConfig:
    """Load network config from TOML data."""
    d = NetworkConfig()
    nominal_period = data.get("nominal_period", d.nominal_period)
    if nominal_period <= 0:
        raise ValueError(f"network.nominal_period must be > 0, got {nominal_period}")
    return NetworkConfig(
        nominal_period=float(nominal_period),
        wireless_probe=data.get("wireless_probe", d.wireless_probe),
    )


def _load_sources_config(data: dict) -> SourcesConfig:
    """Load external command config from TOML data."""
    d = SourcesConfig()
    command_timeout = data.get("command_timeout", d.command_timeout)
    if command_timeout <= 0:
        raise ValueError(f"sources.command_timeout must be > 0, got {command_timeout}")
    return SourcesConfig(command_timeout=float(command_timeout))


def _load_processes_config(data: dict) -> ProcessesConfig:
    """Load process table config from TOML data."""
    d = ProcessesConfig()
    kill_grace = data.get("kill_grace", d.kill_grace)
    if kill_grace < 0:
        raise ValueError(f"processes.kill_grace must be >= 0, got {kill_grace}")
    return ProcessesConfig(
        filter=str(data.get("filter", d.filter)),
        excluded_slices=[str(s) for s in data.get("excluded_slices", d.excluded_slices)],
        kill_grace=float(kill_grace),
    )


def _load_tui_config(data: dict) -> TUIConfig:
    """Load TUI config from TOML data.

    Handles nested [tui.colors.*] and [tui.sparkline] sections with defaults.
    """
    tui_defaults = TUIConfig()
    colors_data = data.get("colors", {})
    usage_data = colors_data.get("usage", {})
    sparkline_data = data.get("sparkline", {})

    c = TUIColorsConfig()
    u = UsageColors()
    sp = SparklineConfig()

    mode = sparkline_data.get("mode", sp.mode)
    if mode not in ("braille", "blocks"):
        raise ValueError(f"Invalid sparkline mode: {mode!r}. Must be 'braille' or 'blocks'")

    return TUIConfig(
        colors=TUIColorsConfig(
            usage=UsageColors(
                low=usage_data.get("low", u.low),
                medium=usage_data.get("medium", u.medium),
                high=usage_data.get("high", u.high),
            ),
            border=colors_data.get("border", c.border),
            group=colors_data.get("group", c.group),
            pid=colors_data.get("pid", c.pid),
        ),
        sparkline=SparklineConfig(
            height=sparkline_data.get("height", sp.height),
            mode=mode,
        ),
        process_rows=data.get("process_rows", tui_defaults.process_rows),
    )
