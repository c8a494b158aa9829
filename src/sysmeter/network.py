"""Network collector: per-interface RX/TX rates from /proc/net/dev."""

import socket
from dataclasses import dataclass, field

import psutil
import structlog

from sysmeter.collector import Collector
from sysmeter.commands import run
from sysmeter.config import Config
from sysmeter.procfs import NetCounters, SysPaths, read_int, read_net_dev
from sysmeter.rates import clamp_rate, counter_delta
from sysmeter.ringbuffer import HistoryRing, TickCursor

log = structlog.get_logger()

VIRTUAL_PREFIXES = ("veth", "docker", "br-", "virbr")
NOT_CONNECTED = "Not connected"
NOT_AVAILABLE = "N/A"
SPEED_UNKNOWN = -1

TYPE_PREFIXES = (
    (("wlan", "wlp", "wifi"), "Wi-Fi"),
    (("eth", "enp", "eno"), "Ethernet"),
    (("usb",), "USB"),
    (("ppp",), "PPP"),
    (("tun",), "VPN Tunnel"),
)


@dataclass
class InterfaceEntry:
    """A tracked network interface. RX and TX rings share one cursor."""

    name: str
    cursor: TickCursor
    rx_history: HistoryRing
    tx_history: HistoryRing
    interface_type: str = "Unknown"
    mac_address: str = NOT_AVAILABLE
    mtu: int = 0
    link_speed_mbps: int = SPEED_UNKNOWN
    ip_address: str = NOT_CONNECTED
    is_active: bool = False
    rx_kbps: float = 0.0
    tx_kbps: float = 0.0
    prev: NetCounters | None = field(default=None, repr=False)


def is_physical_interface(name: str) -> bool:
    """Loopback and container/bridge interfaces are not tracked."""
    return name != "lo" and not name.startswith(VIRTUAL_PREFIXES)


def classify_interface(name: str) -> str:
    """Interface type from its name prefix."""
    for prefixes, label in TYPE_PREFIXES:
        if name.startswith(prefixes):
            return label
    return "Unknown"


def format_mac(address: str) -> str:
    """Upper-case colon-separated MAC, N/A for empty or all-zero addresses."""
    if not address:
        return NOT_AVAILABLE
    mac = address.replace("-", ":").upper()
    if all(c in "0:" for c in mac):
        return NOT_AVAILABLE
    return mac


class NetworkCollector(Collector):
    """Per-interface traffic rates and adapter details.

    Rates are KB/s computed against a fixed nominal tick period rather than
    measured elapsed time, so a late tick shows a burst instead of a dip.
    """

    domain = "network"

    def __init__(self, config: Config, paths: SysPaths | None = None) -> None:
        super().__init__(config, paths)
        self._interfaces: dict[str, InterfaceEntry] = {}

    def update(self) -> None:
        counters = read_net_dev(self.paths)
        if counters is None:
            log.debug("net_dev_unavailable")
            return

        addrs = self._if_addrs()
        stats = self._if_stats()

        registry: dict[str, InterfaceEntry] = {}
        for name, curr in counters.items():
            if not is_physical_interface(name):
                continue
            if len(registry) >= self.config.limits.max_interfaces:
                break
            entry = self._interfaces.get(name) or self._new_entry(name)
            self._update_rates(entry, curr)
            self._update_details(entry, addrs.get(name, []), stats.get(name))
            registry[name] = entry

        dropped = set(self._interfaces) - set(registry)
        if dropped:
            log.debug("interfaces_dropped", interfaces=sorted(dropped))
        self._interfaces = registry

    def _new_entry(self, name: str) -> InterfaceEntry:
        cursor = TickCursor(self.history_size)
        return InterfaceEntry(
            name=name,
            cursor=cursor,
            rx_history=HistoryRing(cursor=cursor),
            tx_history=HistoryRing(cursor=cursor),
            interface_type=self._interface_type(name),
        )

    def _update_rates(self, entry: InterfaceEntry, curr: NetCounters) -> None:
        prev = entry.prev
        entry.prev = curr
        if prev is None:
            return
        period = self.config.network.nominal_period
        entry.rx_kbps = clamp_rate(counter_delta(prev.rx_bytes, curr.rx_bytes) / 1024.0 / period)
        entry.tx_kbps = clamp_rate(counter_delta(prev.tx_bytes, curr.tx_bytes) / 1024.0 / period)
        entry.rx_history.push(entry.rx_kbps)
        entry.tx_history.push(entry.tx_kbps)
        entry.cursor.advance()

    def _update_details(self, entry: InterfaceEntry, addrs: list, stats) -> None:
        mac = NOT_AVAILABLE
        ip = NOT_CONNECTED
        for addr in addrs:
            if addr.family == psutil.AF_LINK:
                mac = format_mac(addr.address)
            elif addr.family == socket.AF_INET and ip == NOT_CONNECTED:
                ip = addr.address
        entry.mac_address = mac
        entry.ip_address = ip
        entry.is_active = ip != NOT_CONNECTED
        entry.mtu = stats.mtu if stats is not None else 0

        speed = read_int(self.paths.sys / "class" / "net" / entry.name / "speed")
        entry.link_speed_mbps = speed if speed is not None and speed >= 0 else SPEED_UNKNOWN

    def _interface_type(self, name: str) -> str:
        kind = classify_interface(name)
        if self.config.network.wireless_probe and self._is_wireless(name):
            return "Wi-Fi"
        return kind

    def _is_wireless(self, name: str) -> bool:
        if (self.paths.sys / "class" / "net" / name / "wireless").exists():
            return True
        output = run(["iw", "dev", name, "info"], self.timeout)
        return output is not None and "type managed" in output

    def _if_addrs(self) -> dict[str, list]:
        try:
            return psutil.net_if_addrs()
        except OSError as e:
            log.debug("if_addrs_unavailable", error=str(e))
            return {}

    def _if_stats(self) -> dict:
        try:
            return psutil.net_if_stats()
        except OSError as e:
            log.debug("if_stats_unavailable", error=str(e))
            return {}

    # ─────────────────────────────────────────────────────────────
    # Accessors
    # ─────────────────────────────────────────────────────────────

    @property
    def count(self) -> int:
        return len(self._interfaces)

    @property
    def interfaces(self) -> list[InterfaceEntry]:
        """Tracked interfaces in /proc/net/dev order."""
        return list(self._interfaces.values())

    def get(self, index: int) -> InterfaceEntry | None:
        interfaces = self.interfaces
        if 0 <= index < len(interfaces):
            return interfaces[index]
        return None

    def find(self, name: str) -> InterfaceEntry | None:
        return self._interfaces.get(name)

    def rx_kbps(self, index: int) -> float:
        entry = self.get(index)
        return entry.rx_kbps if entry else 0.0

    def tx_kbps(self, index: int) -> float:
        entry = self.get(index)
        return entry.tx_kbps if entry else 0.0

    def link_speed(self, index: int) -> int:
        entry = self.get(index)
        return entry.link_speed_mbps if entry else SPEED_UNKNOWN
