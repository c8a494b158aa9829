"""Shared test fixtures for sysmeter."""

from pathlib import Path

import pytest
from structlog.testing import capture_logs

from sysmeter.config import Config
from sysmeter.procfs import SysPaths

NET_DEV_HEADER = (
    "Inter-|   Receive                                                |  Transmit\n"
    " face |bytes    packets errs drop fifo frame compressed multicast"
    "|bytes    packets errs drop fifo colls carrier compressed\n"
)


def cpu_line(label: str, user: int = 0, system: int = 0, idle: int = 0, iowait: int = 0) -> str:
    """One /proc/stat cpu line with nice/irq/softirq/steal zeroed."""
    return f"{label} {user} 0 {system} {idle} {iowait} 0 0 0 0 0"


class FakeSystem:
    """Writes /proc and /sys files under a temporary root."""

    def __init__(self, root: Path) -> None:
        self.paths = SysPaths(proc=root / "proc", sys=root / "sys")
        self.paths.proc.mkdir(parents=True)
        self.paths.sys.mkdir(parents=True)

    def write(self, relative: str, text: str, under: str = "proc") -> Path:
        base = self.paths.proc if under == "proc" else self.paths.sys
        path = base / relative
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(text)
        return path

    def write_stat(
        self,
        aggregate: tuple[int, int, int, int],
        cores: list[tuple[int, int, int, int]] | None = None,
    ) -> None:
        """Aggregate and per-core (user, system, idle, iowait)."""
        lines = [cpu_line("cpu", *aggregate)]
        for i, core in enumerate(cores or []):
            lines.append(cpu_line(f"cpu{i}", *core))
        lines.append("intr 12345 0 0")
        lines.append("ctxt 987654")
        self.write("stat", "\n".join(lines) + "\n")

    def write_meminfo(self, **fields_kb: int) -> None:
        text = "".join(f"{key}: {value} kB\n" for key, value in fields_kb.items())
        self.write("meminfo", text)

    def write_diskstats(self, counters: dict[str, tuple[int, int]]) -> None:
        """{device: (sectors_read, sectors_written)}"""
        lines = [
            f"   8       0 {name} 100 0 {read} 50 200 0 {written} 80 0 120 130"
            for name, (read, written) in counters.items()
        ]
        self.write("diskstats", "\n".join(lines) + "\n")

    def write_net_dev(self, counters: dict[str, tuple[int, int]]) -> None:
        """{interface: (rx_bytes, tx_bytes)}"""
        lines = [
            f"{name:>6}: {rx} 10 0 0 0 0 0 0 {tx} 12 0 0 0 0 0 0"
            for name, (rx, tx) in counters.items()
        ]
        self.write("net/dev", NET_DEV_HEADER + "\n".join(lines) + "\n")

    def write_pid(
        self,
        pid: int,
        name: str,
        utime: int = 0,
        stime: int = 0,
        rss_kb: int | None = 1024,
        cgroup: str = "0::/user.slice/user-1000.slice/session-2.scope",
    ) -> None:
        base = f"{pid}"
        self.write(f"{base}/comm", f"{name}\n")
        fields = ["S", "1", str(pid), str(pid), "0", "-1", "4194304", "100", "0", "0", "0"]
        fields += [str(utime), str(stime), "0", "0", "20", "0", "1"]
        self.write(f"{base}/stat", f"{pid} ({name}) " + " ".join(fields) + "\n")
        status = f"Name:\t{name}\nState:\tS (sleeping)\n"
        if rss_kb is not None:
            status += f"VmRSS:\t  {rss_kb} kB\n"
        self.write(f"{base}/status", status)
        self.write(f"{base}/cgroup", cgroup + "\n")


@pytest.fixture(autouse=True)
def captured_logs():
    """Capture structlog events instead of printing them."""
    with capture_logs() as logs:
        yield logs


@pytest.fixture
def config() -> Config:
    """Default configuration."""
    return Config()


@pytest.fixture
def fake(tmp_path: Path) -> FakeSystem:
    """Empty fake /proc and /sys trees."""
    return FakeSystem(tmp_path)


@pytest.fixture
def isolated_home(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Point HOME at a temporary directory so config and log paths are sandboxed."""
    home = tmp_path / "home"
    home.mkdir()
    monkeypatch.setenv("HOME", str(home))
    return home
