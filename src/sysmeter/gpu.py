"""GPU collector: discovery fallback chain and per-vendor utilization sources.

Discovery tries, in order, nvidia-smi, DRM sysfs, glxinfo, Intel lspci,
generic lspci, and stops at the first method that finds a GPU. When all of
them fail, one "Unknown GPU" placeholder is registered, so there is always
at least one GPU after init().

How a GPU is polled is carried by its source variant:

- NvidiaSource: nvidia-smi utilization and memory query, by GPU index
- AmdSource: amdgpu sysfs files of one DRM card
- IntelSource: intel_gpu_top render-engine busy, with system memory
  standing in for VRAM on integrated parts
- UnknownSource: nothing to poll
"""

import json
import os
import re
from dataclasses import dataclass, field

import psutil
import structlog

from sysmeter.collector import Collector
from sysmeter.commands import run, which
from sysmeter.config import Config
from sysmeter.procfs import SysPaths, read_int, read_text
from sysmeter.rates import clamp_percent, ratio_percent
from sysmeter.ringbuffer import HistoryRing, TickCursor

log = structlog.get_logger()

UNKNOWN_NAME = "Unknown GPU"
UNKNOWN_VENDOR = "Unknown"
NO_DRIVER = "-"

MB = 1024 * 1024

_PCI_ID = re.compile(r"\s*\[[0-9a-fA-F]{4}(?::[0-9a-fA-F]{4})?\]")
_CARD_NAME = re.compile(r"^card(\d+)$")
_VENDOR_LONG_NAMES = (
    ("NVIDIA Corporation", "NVIDIA"),
    ("Advanced Micro Devices, Inc.", "AMD"),
    ("Intel Corporation", "Intel"),
)


# ─────────────────────────────────────────────────────────────────────────────
# Vendor variants
# ─────────────────────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class NvidiaSource:
    """Polled through nvidia-smi using the GPU's index."""


@dataclass(frozen=True)
class AmdSource:
    """Polled through /sys/class/drm/card<card>/device."""

    card: int


@dataclass(frozen=True)
class IntelSource:
    """Polled through intel_gpu_top; system memory stands in for VRAM."""

    memory_proxy: bool = True


@dataclass(frozen=True)
class UnknownSource:
    """No utilization source."""


GpuSource = NvidiaSource | AmdSource | IntelSource | UnknownSource


@dataclass(frozen=True)
class DiscoveredGpu:
    """One GPU as reported by a discovery method."""

    gpu_id: int
    name: str
    vendor: str
    driver_version: str
    source: GpuSource


@dataclass(frozen=True)
class GpuReading:
    """One successful poll. A None field means "keep the previous value"."""

    usage_percent: float | None
    vram_used_mb: float | None
    vram_total_mb: float | None


@dataclass
class GpuEntry:
    """A tracked GPU. Usage and VRAM rings share one cursor."""

    gpu_id: int
    name: str
    vendor: str
    driver_version: str
    source: GpuSource
    discovered_by: str
    cursor: TickCursor
    usage_history: HistoryRing
    vram_history: HistoryRing
    usage_percent: float = 0.0
    vram_used_mb: float = 0.0
    vram_total_mb: float = 0.0
    vram_percent: float = 0.0
    failures: int = field(default=0, repr=False)


# ─────────────────────────────────────────────────────────────────────────────
# Name handling
# ─────────────────────────────────────────────────────────────────────────────


def _first_digit_tail(text: str) -> str | None:
    match = re.search(r"\d", text)
    return text[match.start() :] if match else None


def _format_model(vendor: str | None, model: str) -> str:
    if vendor == "NVIDIA":
        if any(k in model for k in ("GeForce", "Quadro", "Tesla", "RTX", "GTX")):
            return f"NVIDIA {model}"
        digits = _first_digit_tail(model)
        return f"NVIDIA GeForce {digits}" if digits else f"NVIDIA {model}"
    if vendor == "AMD":
        if "Radeon" in model:
            return f"AMD {model}"
        if "RX" in model or "Vega" in model:
            return f"AMD Radeon {model}"
        digits = _first_digit_tail(model)
        return f"AMD Radeon {digits}" if digits else f"AMD {model}"
    if vendor == "Intel":
        return f"Intel {model}"
    return model


def detect_vendor(text: str) -> str | None:
    """Vendor keyword in a device description."""
    if "NVIDIA" in text:
        return "NVIDIA"
    if "AMD" in text or "ATI" in text or "Advanced Micro Devices" in text or "Radeon" in text:
        return "AMD"
    if "Intel" in text:
        return "Intel"
    return None


def shorten_gpu_name(raw: str) -> str:
    """Turn a PCI or driver description into a concise vendor-prefixed name.

    "01:00.0 VGA compatible controller [0300]: NVIDIA Corporation GA104
    [GeForce RTX 3070] [10de:2484] (rev a1)" becomes "NVIDIA GeForce RTX 3070".
    """
    s = raw.strip()
    _, sep, rest = s.partition(": ")
    if sep:
        s = rest
    if s.startswith("VGA compatible controller"):
        for keyword in ("NVIDIA", "AMD", "Advanced Micro Devices"):
            pos = s.find(keyword)
            if pos >= 0:
                s = s[pos:]
                break

    s = _PCI_ID.sub("", s)
    s = re.sub(r"\((?:R|TM)\)", "", s, flags=re.IGNORECASE)
    models = re.findall(r"\[([^\[\]]+)\]", s)
    if models:
        s = _format_model(detect_vendor(s), models[-1])
    else:
        for long_name, short in _VENDOR_LONG_NAMES:
            s = s.replace(long_name, short)

    s = s.split("(", 1)[0]
    return s.strip()


# ─────────────────────────────────────────────────────────────────────────────
# Discovery
# ─────────────────────────────────────────────────────────────────────────────


def discover_nvidia(timeout: float) -> list[DiscoveredGpu]:
    output = run(
        ["nvidia-smi", "--query-gpu=index,name,driver_version", "--format=csv,noheader"],
        timeout,
    )
    if output is None:
        return []
    gpus = []
    for line in output.splitlines():
        parts = [p.strip() for p in line.split(",", 2)]
        if len(parts) != 3 or not parts[0].isdigit():
            continue
        gpus.append(
            DiscoveredGpu(
                gpu_id=int(parts[0]),
                name=parts[1],
                vendor="NVIDIA",
                driver_version=parts[2] or NO_DRIVER,
                source=NvidiaSource(),
            )
        )
    return gpus


def intel_details(timeout: float) -> tuple[str | None, str]:
    """Intel GPU name from lspci and driver version from modinfo, then glxinfo."""
    name = None
    output = run(["lspci", "-d", "8086:", "-nn"], timeout)
    if output:
        for line in output.splitlines():
            lowered = line.lower()
            if "vga" in lowered or "display" in lowered:
                name = shorten_gpu_name(line)
                break

    version = None
    output = run(["modinfo", "i915"], timeout)
    if output:
        for line in output.splitlines():
            key, sep, value = line.partition(":")
            if sep and key.strip().lower() == "version" and value.strip():
                version = value.strip()
                break
    if version is None:
        version = _glx_field("OpenGL version string", timeout)
    return name, version or NO_DRIVER


def discover_drm(paths: SysPaths, timeout: float) -> list[DiscoveredGpu]:
    drm = paths.sys / "class" / "drm"
    try:
        entries = list(drm.iterdir())
    except OSError:
        return []

    cards = []
    for entry in entries:
        match = _CARD_NAME.match(entry.name)
        if match:
            cards.append((int(match.group(1)), entry))

    gpus = []
    for index, card in sorted(cards):
        try:
            driver = os.path.basename(os.readlink(card / "device" / "driver"))
        except OSError:
            continue
        if not driver:
            continue

        product = (read_text(card / "device" / "product") or "").strip()
        name = product or f"{driver} GPU {index}"
        source: GpuSource
        if driver == "amdgpu":
            vendor = "AMD"
            version = (read_text(paths.sys / "module" / "amdgpu" / "version") or "").strip()
            version = version or NO_DRIVER
            source = AmdSource(card=index)
        elif driver in ("i915", "xe"):
            vendor = "Intel"
            intel_name, version = intel_details(timeout)
            if intel_name and not product:
                name = intel_name
            source = IntelSource()
        else:
            vendor = driver
            version = NO_DRIVER
            source = UnknownSource()
        gpus.append(DiscoveredGpu(index, name, vendor, version, source))
    return gpus


def _glx_field(label: str, timeout: float) -> str | None:
    output = run(["glxinfo"], timeout)
    if output is None:
        return None
    for line in output.splitlines():
        key, sep, value = line.partition(":")
        if sep and key.strip() == label and value.strip():
            return value.strip()
    return None


def _source_for(vendor: str | None) -> GpuSource:
    if vendor == "NVIDIA":
        return NvidiaSource()
    if vendor == "Intel":
        return IntelSource()
    return UnknownSource()


def discover_glxinfo(timeout: float) -> list[DiscoveredGpu]:
    renderer = _glx_field("OpenGL renderer string", timeout)
    if renderer is None:
        return []
    vendor = detect_vendor(renderer)
    version = _glx_field("OpenGL version string", timeout) or NO_DRIVER
    name = renderer
    if vendor == "Intel":
        intel_name, intel_version = intel_details(timeout)
        name = intel_name or renderer
        if intel_version != NO_DRIVER:
            version = intel_version
    # AMD without a DRM card index has no sysfs to poll
    return [
        DiscoveredGpu(0, name, vendor or UNKNOWN_VENDOR, version, _source_for(vendor))
    ]


def discover_lspci_intel(timeout: float) -> list[DiscoveredGpu]:
    name, version = intel_details(timeout)
    if name is None:
        return []
    return [DiscoveredGpu(0, name, "Intel", version, IntelSource())]


def discover_lspci(timeout: float) -> list[DiscoveredGpu]:
    output = run(["lspci", "-nn"], timeout)
    if output is None:
        return []
    for line in output.splitlines():
        if " vga " not in line.lower():
            continue
        vendor = detect_vendor(line)
        version = NO_DRIVER
        if vendor == "Intel":
            _, version = intel_details(timeout)
        return [
            DiscoveredGpu(
                0, line, vendor or UNKNOWN_VENDOR, version, _source_for(vendor)
            )
        ]
    return []


def placeholder_gpu() -> DiscoveredGpu:
    return DiscoveredGpu(0, UNKNOWN_NAME, UNKNOWN_VENDOR, NO_DRIVER, UnknownSource())


# ─────────────────────────────────────────────────────────────────────────────
# Polling
# ─────────────────────────────────────────────────────────────────────────────


def read_nvidia(gpu_id: int, timeout: float) -> GpuReading | None:
    output = run(
        [
            "nvidia-smi",
            "--query-gpu=index,utilization.gpu,memory.total,memory.used",
            "--format=csv,noheader,nounits",
            f"--id={gpu_id}",
        ],
        timeout,
    )
    if output is None:
        return None
    for line in output.splitlines():
        parts = [p.strip() for p in line.split(",")]
        if len(parts) != 4:
            continue
        try:
            util, total, used = float(parts[1]), float(parts[2]), float(parts[3])
        except ValueError:
            return None
        return GpuReading(usage_percent=util, vram_used_mb=used, vram_total_mb=total)
    return None


def read_amd(paths: SysPaths, card: int) -> GpuReading | None:
    device = paths.sys / "class" / "drm" / f"card{card}" / "device"
    busy = read_int(device / "gpu_busy_percent")
    used = read_int(device / "mem_info_vram_used")
    total = read_int(device / "mem_info_vram_total")
    if used is None or total is None:
        used = total = None
    if busy is None and total is None:
        return None
    return GpuReading(
        usage_percent=None if busy is None else float(busy),
        vram_used_mb=None if used is None else used / MB,
        vram_total_mb=None if total is None else total / MB,
    )


def parse_intel_gpu_top(text: str) -> float | None:
    """Render engine busy percent from the first complete intel_gpu_top -J sample."""
    start = text.find("{")
    if start < 0:
        return None
    try:
        sample, _ = json.JSONDecoder().raw_decode(text, start)
    except json.JSONDecodeError:
        return None
    engines = sample.get("engines") if isinstance(sample, dict) else None
    if not isinstance(engines, dict):
        return None
    for name, engine in engines.items():
        if name.lower().startswith("render") and isinstance(engine, dict):
            busy = engine.get("busy")
            if isinstance(busy, (int, float)):
                return float(busy)
    return None


def read_intel(memory_proxy: bool, timeout: float) -> GpuReading | None:
    usage = None
    if which("intel_gpu_top"):
        output = run(["intel_gpu_top", "-J", "-s", "100"], timeout, accept_partial=True)
        if output:
            usage = parse_intel_gpu_top(output)

    if not memory_proxy:
        if usage is None:
            return None
        return GpuReading(usage_percent=usage, vram_used_mb=0.0, vram_total_mb=0.0)

    mem = psutil.virtual_memory()
    if usage is None and mem.total <= 0:
        return None
    return GpuReading(
        usage_percent=usage,
        vram_used_mb=(mem.total - mem.available) / MB,
        vram_total_mb=mem.total / MB,
    )


class GpuCollector(Collector):
    """Discovered GPUs with utilization and VRAM history."""

    domain = "gpu"

    def __init__(self, config: Config, paths: SysPaths | None = None) -> None:
        super().__init__(config, paths)
        self.history_size = config.system.gpu_history_size
        self._gpus: list[GpuEntry] = []
        self._initialized = False

    def init(self) -> None:
        """Run the discovery chain and register at most max_gpus GPUs."""
        self._initialized = True
        methods = (
            ("nvidia-smi", lambda: discover_nvidia(self.timeout)),
            ("drm", lambda: discover_drm(self.paths, self.timeout)),
            ("glxinfo", lambda: discover_glxinfo(self.timeout)),
            ("lspci-intel", lambda: discover_lspci_intel(self.timeout)),
            ("lspci", lambda: discover_lspci(self.timeout)),
        )
        found: list[DiscoveredGpu] = []
        method_name = "placeholder"
        for name, method in methods:
            found = method()
            if found:
                method_name = name
                break
        if not found:
            found = [placeholder_gpu()]

        self._gpus = [
            self._new_entry(gpu, method_name) for gpu in found[: self.config.limits.max_gpus]
        ]
        for entry in self._gpus:
            log.info(
                "gpu_discovered",
                name=entry.name,
                vendor=entry.vendor,
                driver=entry.driver_version,
                method=method_name,
            )

    def _new_entry(self, gpu: DiscoveredGpu, method: str) -> GpuEntry:
        cursor = TickCursor(self.history_size)
        return GpuEntry(
            gpu_id=gpu.gpu_id,
            name=shorten_gpu_name(gpu.name) or UNKNOWN_NAME,
            vendor=gpu.vendor,
            driver_version=gpu.driver_version,
            source=gpu.source,
            discovered_by=method,
            cursor=cursor,
            usage_history=HistoryRing(cursor=cursor),
            vram_history=HistoryRing(cursor=cursor),
        )

    def update(self) -> None:
        if not self._initialized:
            self.init()
        for entry in self._gpus:
            reading = self._read(entry)
            if reading is None:
                entry.failures += 1
                continue
            if reading.usage_percent is not None:
                entry.usage_percent = clamp_percent(reading.usage_percent)
            if reading.vram_used_mb is not None and reading.vram_total_mb is not None:
                entry.vram_used_mb = reading.vram_used_mb
                entry.vram_total_mb = reading.vram_total_mb
                entry.vram_percent = ratio_percent(entry.vram_used_mb, entry.vram_total_mb)
            entry.usage_history.push(entry.usage_percent)
            entry.vram_history.push(entry.vram_percent)
            entry.cursor.advance()

    def _read(self, entry: GpuEntry) -> GpuReading | None:
        match entry.source:
            case NvidiaSource():
                return read_nvidia(entry.gpu_id, self.timeout)
            case AmdSource(card=card):
                return read_amd(self.paths, card)
            case IntelSource(memory_proxy=memory_proxy):
                return read_intel(memory_proxy, self.timeout)
            case UnknownSource():
                return None

    # ─────────────────────────────────────────────────────────────
    # Accessors
    # ─────────────────────────────────────────────────────────────

    @property
    def count(self) -> int:
        return len(self._gpus)

    @property
    def gpus(self) -> list[GpuEntry]:
        return list(self._gpus)

    def get(self, index: int) -> GpuEntry | None:
        if 0 <= index < len(self._gpus):
            return self._gpus[index]
        return None

    @property
    def primary(self) -> GpuEntry | None:
        return self.get(0)

    @property
    def name(self) -> str:
        return self._gpus[0].name if self._gpus else UNKNOWN_NAME

    @property
    def vendor(self) -> str:
        return self._gpus[0].vendor if self._gpus else UNKNOWN_VENDOR

    @property
    def driver_version(self) -> str:
        return self._gpus[0].driver_version if self._gpus else NO_DRIVER

    @property
    def usage(self) -> float:
        return self._gpus[0].usage_percent if self._gpus else 0.0

    @property
    def vram_used_mb(self) -> float:
        return self._gpus[0].vram_used_mb if self._gpus else 0.0

    @property
    def vram_total_mb(self) -> float:
        return self._gpus[0].vram_total_mb if self._gpus else 0.0

    @property
    def vram_percent(self) -> float:
        return self._gpus[0].vram_percent if self._gpus else 0.0

    @property
    def write_index(self) -> int:
        return self._gpus[0].cursor.index if self._gpus else 0
