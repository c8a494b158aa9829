"""Disk collector: physical disks from lsblk, space from statvfs, activity from /proc/diskstats."""

import json
import re
import time
from collections.abc import Callable
from dataclasses import dataclass, field

import psutil
import structlog

from sysmeter.collector import Collector
from sysmeter.commands import run
from sysmeter.config import Config
from sysmeter.procfs import SECTOR_SIZE, DiskCounters, SysPaths, read_diskstats
from sysmeter.rates import clamp_percent, counter_delta, ratio_percent
from sysmeter.ringbuffer import HistoryRing

log = structlog.get_logger()

LSBLK_COMMAND = [
    "lsblk",
    "-d",
    "-J",
    "-b",
    "-o",
    "NAME,SIZE,TYPE,ROTA,RM,MOUNTPOINT,FSTYPE,MODEL",
]

SKIPPED_PREFIXES = ("loop", "zram", "ram", "dm-", "sr")
STORAGE_PREFIXES = ("sd", "nvme", "mmc", "vd", "hd", "xvd")
PREFERRED_MOUNTS = ("/", "/home")
DEFAULT_MOUNT = "/"

PSEUDO_FILESYSTEMS = frozenset(
    {
        "proc",
        "sysfs",
        "devtmpfs",
        "devpts",
        "tmpfs",
        "debugfs",
        "securityfs",
        "fusectl",
        "cgroup",
        "cgroup2",
        "pstore",
        "efivarfs",
        "autofs",
    }
)

MB = 1024 * 1024


@dataclass(frozen=True)
class BlockDevice:
    """One top-level entry of lsblk -J output."""

    name: str
    size: int = 0
    type: str = ""
    rotational: bool = False
    removable: bool = False
    mountpoint: str | None = None
    fstype: str | None = None
    model: str | None = None


@dataclass
class DiskEntry:
    """A tracked physical disk. Rebuilt from scratch when it reappears."""

    name: str
    disk_type: str = "Unknown"
    model: str = ""
    mount_point: str = DEFAULT_MOUNT
    fstype: str = "unknown"
    size_bytes: int = 0
    total_mb: int = 0
    used_mb: int = 0
    free_mb: int = 0
    usage_percent: float = 0.0
    activity_percent: float = 0.0
    usage_history: HistoryRing = field(default_factory=HistoryRing)
    activity_history: HistoryRing = field(default_factory=HistoryRing)
    prev_counters: DiskCounters | None = None
    prev_time: float | None = None


def _as_bool(value: object) -> bool:
    """lsblk reports flags as JSON booleans, or as "0"/"1" on older versions."""
    if isinstance(value, bool):
        return value
    if isinstance(value, int):
        return value != 0
    if isinstance(value, str):
        return value.strip().lower() in ("1", "true")
    return False


def _as_int(value: object) -> int:
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        try:
            return int(value)
        except ValueError:
            return 0
    return 0


def _as_str(value: object) -> str | None:
    if isinstance(value, str) and value.strip():
        return value.strip()
    return None


def parse_lsblk(text: str) -> list[BlockDevice] | None:
    """Parse lsblk -J output. Returns None when the document doesn't match the schema."""
    try:
        doc = json.loads(text)
    except json.JSONDecodeError:
        return None
    if not isinstance(doc, dict) or not isinstance(doc.get("blockdevices"), list):
        return None

    devices: list[BlockDevice] = []
    for item in doc["blockdevices"]:
        if not isinstance(item, dict):
            continue
        name = _as_str(item.get("name"))
        if name is None:
            continue
        devices.append(
            BlockDevice(
                name=name,
                size=_as_int(item.get("size")),
                type=_as_str(item.get("type")) or "",
                rotational=_as_bool(item.get("rota")),
                removable=_as_bool(item.get("rm")),
                mountpoint=_as_str(item.get("mountpoint")),
                fstype=_as_str(item.get("fstype")),
                model=_as_str(item.get("model")),
            )
        )
    return devices


def is_physical_disk(device: BlockDevice) -> bool:
    """Filter out loopback, RAM-backed, device-mapper and optical devices."""
    if device.name.startswith(SKIPPED_PREFIXES):
        return False
    return (
        device.type == "disk" or device.name.startswith(STORAGE_PREFIXES) or device.removable
    )


def classify_disk_type(name: str, rotational: bool, removable: bool) -> str:
    """Disk class from the rotational and removable flags."""
    if rotational:
        return "USB HDD" if removable else "HDD"
    if name.startswith("nvme"):
        return "NVMe"
    return "USB Flash" if removable else "SSD"


def is_partition_of(device: str, disk: str) -> bool:
    if not device.startswith(disk):
        return False
    suffix = device[len(disk) :]
    pattern = r"(p\d+)?" if disk[-1:].isdigit() else r"\d*"
    return re.fullmatch(pattern, suffix) is not None


def resolve_mount(name: str, partitions: list) -> tuple[str, str] | None:
    """Mount point and filesystem type for a disk from the mount table.

    The whole disk or any of its partitions matches (`sda1`, or `nvme0n1p2`
    when the disk name ends in a digit). "/" or "/home" win outright; otherwise the first match.
    """
    first: tuple[str, str] | None = None
    for part in partitions:
        if part.fstype in PSEUDO_FILESYSTEMS:
            continue
        device = part.device.rsplit("/", 1)[-1]
        if not is_partition_of(device, name):
            continue
        match = (part.mountpoint, part.fstype or "unknown")
        if part.mountpoint in PREFERRED_MOUNTS:
            return match
        if first is None:
            first = match
    return first


class DiskCollector(Collector):
    """Physical disks with space usage and I/O activity.

    The registry is rebuilt from lsblk every tick; a disk that drops out
    loses its history, and one that appears starts from zeros. Usage and
    activity rings are independent.
    """

    domain = "disk"

    def __init__(
        self,
        config: Config,
        paths: SysPaths | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        super().__init__(config, paths)
        self._clock = clock
        self._disks: dict[str, DiskEntry] = {}

    def update(self) -> None:
        devices = self._enumerate()
        counters = read_diskstats(self.paths) or {}
        partitions = self._partitions()
        now = self._clock()

        registry: dict[str, DiskEntry] = {}
        for device in devices:
            if len(registry) >= self.config.limits.max_disks:
                break
            entry = self._disks.get(device.name) or self._new_entry(device.name)
            if not self._update_space(entry, device, partitions):
                continue
            self._update_activity(entry, counters.get(device.name), now)
            registry[device.name] = entry

        dropped = set(self._disks) - set(registry)
        if dropped:
            log.debug("disks_dropped", disks=sorted(dropped))
        self._disks = registry

    def _new_entry(self, name: str) -> DiskEntry:
        return DiskEntry(
            name=name,
            usage_history=HistoryRing(self.history_size),
            activity_history=HistoryRing(self.history_size),
        )

    def _enumerate(self) -> list[BlockDevice]:
        output = run(LSBLK_COMMAND, self.timeout)
        if output is None:
            log.debug("lsblk_unavailable")
            return []
        devices = parse_lsblk(output)
        if devices is None:
            log.debug("lsblk_unparseable")
            return []
        return [d for d in devices if is_physical_disk(d)]

    def _partitions(self) -> list:
        try:
            return psutil.disk_partitions(all=True)
        except OSError as e:
            log.debug("mount_table_unavailable", error=str(e))
            return []

    def _update_space(self, entry: DiskEntry, device: BlockDevice, partitions: list) -> bool:
        mount = resolve_mount(device.name, partitions)
        if mount is None and device.mountpoint:
            mount = (device.mountpoint, device.fstype or "unknown")
        mount_point, fstype = mount or (DEFAULT_MOUNT, device.fstype or "unknown")

        try:
            usage = psutil.disk_usage(mount_point)
        except OSError as e:
            log.debug("disk_statvfs_failed", disk=device.name, mount=mount_point, error=str(e))
            return False

        entry.disk_type = classify_disk_type(device.name, device.rotational, device.removable)
        entry.model = device.model or ""
        entry.size_bytes = device.size
        entry.mount_point = mount_point
        entry.fstype = fstype
        entry.total_mb = usage.total // MB
        entry.free_mb = usage.free // MB
        entry.used_mb = usage.used // MB
        entry.usage_percent = ratio_percent(entry.used_mb, entry.total_mb)
        entry.usage_history.push(entry.usage_percent)
        return True

    def _update_activity(self, entry: DiskEntry, curr: DiskCounters | None, now: float) -> None:
        if curr is None:
            return
        prev, prev_time = entry.prev_counters, entry.prev_time
        entry.prev_counters, entry.prev_time = curr, now
        if prev is None or prev_time is None or now <= prev_time:
            return

        delta_bytes = (
            counter_delta(prev.sectors_read, curr.sectors_read)
            + counter_delta(prev.sectors_written, curr.sectors_written)
        ) * SECTOR_SIZE
        mb_per_sec = delta_bytes / MB / (now - prev_time)
        entry.activity_percent = clamp_percent(mb_per_sec * self.scale_factor(entry.disk_type))
        entry.activity_history.push(entry.activity_percent)

    def scale_factor(self, disk_type: str) -> float:
        """Activity scale for a disk class: NVMe most sensitive, HDD least."""
        if disk_type == "NVMe":
            return self.config.disk.nvme_scale
        if disk_type == "SSD":
            return self.config.disk.ssd_scale
        return self.config.disk.hdd_scale

    # ─────────────────────────────────────────────────────────────
    # Accessors
    # ─────────────────────────────────────────────────────────────

    @property
    def count(self) -> int:
        return len(self._disks)

    @property
    def disks(self) -> list[DiskEntry]:
        """Tracked disks in enumeration order."""
        return list(self._disks.values())

    def get(self, index: int) -> DiskEntry | None:
        disks = self.disks
        if 0 <= index < len(disks):
            return disks[index]
        return None

    def find(self, name: str) -> DiskEntry | None:
        return self._disks.get(name)

    def usage_percent(self, index: int) -> float:
        entry = self.get(index)
        return entry.usage_percent if entry else 0.0

    def activity_percent(self, index: int) -> float:
        entry = self.get(index)
        return entry.activity_percent if entry else 0.0

    def disk_type(self, index: int) -> str:
        entry = self.get(index)
        return entry.disk_type if entry else "Unknown"
