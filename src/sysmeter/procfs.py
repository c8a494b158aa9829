"""Parsers and readers for /proc and /sys.

Parsers take file text and return typed snapshots, so they can be tested
on literal strings. Readers resolve paths against a SysPaths root and
return None when a source is missing or unreadable; they never raise
OSError to callers.
"""

from dataclasses import dataclass, field
from pathlib import Path

CPU_FIELDS = ("user", "nice", "system", "idle", "iowait", "irq", "softirq", "steal")
SECTOR_SIZE = 512


@dataclass(frozen=True)
class SysPaths:
    """Filesystem roots for kernel interfaces. Tests point these at tmp_path."""

    proc: Path = Path("/proc")
    sys: Path = Path("/sys")


@dataclass(frozen=True)
class CpuTimes:
    """Cumulative jiffies for one /proc/stat cpu line."""

    user: int = 0
    nice: int = 0
    system: int = 0
    idle: int = 0
    iowait: int = 0
    irq: int = 0
    softirq: int = 0
    steal: int = 0

    def fields(self) -> tuple[int, ...]:
        return (
            self.user,
            self.nice,
            self.system,
            self.idle,
            self.iowait,
            self.irq,
            self.softirq,
            self.steal,
        )

    @property
    def total(self) -> int:
        return sum(self.fields())

    @property
    def idle_total(self) -> int:
        return self.idle + self.iowait

    @property
    def busy(self) -> int:
        return self.total - self.idle_total


@dataclass(frozen=True)
class ProcStat:
    """Aggregate and per-core CPU times from one read of /proc/stat."""

    aggregate: CpuTimes
    cores: tuple[CpuTimes, ...] = ()


@dataclass
class CpuInfo:
    """Fields of interest from /proc/cpuinfo."""

    model_name: str | None = None
    vendor: str | None = None
    family: str | None = None
    stepping: str | None = None
    bogomips: str | None = None
    address_sizes: str | None = None
    physical_ids: set[str] = field(default_factory=set)
    mhz: list[float] = field(default_factory=list)
    processors: int = 0


@dataclass(frozen=True)
class DiskCounters:
    """Cumulative sector counters for one block device."""

    sectors_read: int
    sectors_written: int

    @property
    def bytes_total(self) -> int:
        return (self.sectors_read + self.sectors_written) * SECTOR_SIZE


@dataclass(frozen=True)
class NetCounters:
    """Cumulative byte counters for one interface."""

    rx_bytes: int
    tx_bytes: int


# ─────────────────────────────────────────────────────────────────────────────
# Parsers
# ─────────────────────────────────────────────────────────────────────────────


def _parse_cpu_line(parts: list[str]) -> CpuTimes | None:
    values: list[int] = []
    for raw in parts[1 : 1 + len(CPU_FIELDS)]:
        try:
            values.append(int(raw))
        except ValueError:
            return None
    if len(values) < 4:
        return None
    values.extend([0] * (len(CPU_FIELDS) - len(values)))
    return CpuTimes(*values)


def parse_proc_stat(text: str) -> ProcStat | None:
    """Parse the cpu lines of /proc/stat.

    Returns None if the aggregate "cpu" line is missing or malformed.
    Per-core lines are returned in cpuN order.
    """
    aggregate: CpuTimes | None = None
    cores: dict[int, CpuTimes] = {}
    for line in text.splitlines():
        if not line.startswith("cpu"):
            continue
        parts = line.split()
        label = parts[0]
        times = _parse_cpu_line(parts)
        if times is None:
            continue
        if label == "cpu":
            aggregate = times
        elif label[3:].isdigit():
            cores[int(label[3:])] = times
    if aggregate is None:
        return None
    return ProcStat(aggregate=aggregate, cores=tuple(cores[i] for i in sorted(cores)))


def parse_cpuinfo(text: str) -> CpuInfo:
    """Parse /proc/cpuinfo. Scalar fields keep their first occurrence."""
    info = CpuInfo()
    first_value = {
        "model name": "model_name",
        "vendor_id": "vendor",
        "cpu family": "family",
        "stepping": "stepping",
        "bogomips": "bogomips",
        "address sizes": "address_sizes",
    }
    for line in text.splitlines():
        if ":" not in line:
            continue
        key, _, value = line.partition(":")
        key = key.strip()
        value = value.strip()
        if key == "processor":
            info.processors += 1
        elif key == "physical id":
            info.physical_ids.add(value)
        elif key == "cpu MHz":
            try:
                info.mhz.append(float(value))
            except ValueError:
                pass
        elif key in first_value and value and getattr(info, first_value[key]) is None:
            setattr(info, first_value[key], value)
    return info


def parse_meminfo(text: str) -> dict[str, int]:
    """Parse /proc/meminfo into {field: kB}."""
    result: dict[str, int] = {}
    for line in text.splitlines():
        key, sep, rest = line.partition(":")
        if not sep:
            continue
        parts = rest.split()
        if not parts:
            continue
        try:
            result[key.strip()] = int(parts[0])
        except ValueError:
            continue
    return result


def parse_diskstats(text: str) -> dict[str, DiskCounters]:
    """Parse /proc/diskstats into {device: DiskCounters}."""
    result: dict[str, DiskCounters] = {}
    for line in text.splitlines():
        parts = line.split()
        if len(parts) < 10:
            continue
        try:
            result[parts[2]] = DiskCounters(
                sectors_read=int(parts[5]),
                sectors_written=int(parts[9]),
            )
        except ValueError:
            continue
    return result


def parse_net_dev(text: str) -> dict[str, NetCounters]:
    """Parse /proc/net/dev into {interface: NetCounters}, in file order.

    The first two lines are column headers.
    """
    result: dict[str, NetCounters] = {}
    for line in text.splitlines()[2:]:
        name, sep, rest = line.partition(":")
        if not sep:
            continue
        parts = rest.split()
        if len(parts) < 9:
            continue
        try:
            result[name.strip()] = NetCounters(rx_bytes=int(parts[0]), tx_bytes=int(parts[8]))
        except ValueError:
            continue
    return result


def parse_pid_stat(text: str) -> tuple[int, int] | None:
    """Return (utime, stime) from /proc/<pid>/stat.

    The command name may contain spaces and parentheses, so fields are
    counted from the last ')'.
    """
    _, sep, rest = text.rpartition(")")
    if not sep:
        return None
    parts = rest.split()
    # state ppid pgrp session tty_nr tpgid flags minflt cminflt majflt cmajflt utime stime
    if len(parts) < 13:
        return None
    try:
        return int(parts[11]), int(parts[12])
    except ValueError:
        return None


def parse_vmrss_kb(text: str) -> int:
    """VmRSS in kB from /proc/<pid>/status, 0 if absent (kernel threads)."""
    for line in text.splitlines():
        if line.startswith("VmRSS:"):
            parts = line.split()
            if len(parts) >= 2 and parts[1].isdigit():
                return int(parts[1])
    return 0


def in_excluded_slice(cgroup_text: str, slices: list[str]) -> bool:
    """True if any cgroup path of the process lies in one of the slices."""
    return any(s and s in cgroup_text for s in slices)


# ─────────────────────────────────────────────────────────────────────────────
# Readers
# ─────────────────────────────────────────────────────────────────────────────


def read_text(path: Path) -> str | None:
    """Read a kernel file, None if it is missing or unreadable."""
    try:
        return path.read_text(errors="replace")
    except OSError:
        return None


def read_int(path: Path) -> int | None:
    """Read a sysfs file holding a single integer."""
    text = read_text(path)
    if text is None:
        return None
    try:
        return int(text.strip())
    except ValueError:
        return None


def read_proc_stat(paths: SysPaths) -> ProcStat | None:
    text = read_text(paths.proc / "stat")
    return parse_proc_stat(text) if text is not None else None


def read_cpuinfo(paths: SysPaths) -> CpuInfo | None:
    text = read_text(paths.proc / "cpuinfo")
    return parse_cpuinfo(text) if text is not None else None


def read_meminfo(paths: SysPaths) -> dict[str, int] | None:
    text = read_text(paths.proc / "meminfo")
    return parse_meminfo(text) if text is not None else None


def read_diskstats(paths: SysPaths) -> dict[str, DiskCounters] | None:
    text = read_text(paths.proc / "diskstats")
    return parse_diskstats(text) if text is not None else None


def read_net_dev(paths: SysPaths) -> dict[str, NetCounters] | None:
    text = read_text(paths.proc / "net" / "dev")
    return parse_net_dev(text) if text is not None else None


def read_cache_size(paths: SysPaths) -> str | None:
    """Largest cache size of cpu0 (L3, else L2) with the trailing K removed."""
    cache_dir = paths.sys / "devices" / "system" / "cpu" / "cpu0" / "cache"
    for index in ("index3", "index2"):
        text = read_text(cache_dir / index / "size")
        if text and text.strip():
            return text.strip().removesuffix("K")
    return None


def list_pids(paths: SysPaths) -> list[int]:
    """Numeric entries of /proc in ascending order."""
    try:
        entries = [p.name for p in paths.proc.iterdir()]
    except OSError:
        return []
    return sorted(int(name) for name in entries if name.isdigit())
