"""Process table: per-PID CPU deltas grouped by executable name."""

import shlex
import subprocess
from dataclasses import dataclass, field

import psutil
import structlog

from sysmeter.collector import Collector
from sysmeter.config import Config
from sysmeter.procfs import (
    SysPaths,
    in_excluded_slice,
    list_pids,
    parse_pid_stat,
    parse_vmrss_kb,
    read_proc_stat,
    read_text,
)
from sysmeter.rates import process_cpu_percent

log = structlog.get_logger()

SORT_KEYS = ("name", "cpu", "memory", "pid")


@dataclass
class ProcessRow:
    """Leaf row: one process."""

    name: str
    pid: int
    cpu_percent: float
    rss_kb: int


@dataclass
class ProcessGroup:
    """Group row: all processes sharing an executable name this tick."""

    name: str
    cpu_percent: float = 0.0
    rss_kb: int = 0
    children: list[ProcessRow] = field(default_factory=list)

    def add(self, row: ProcessRow) -> None:
        self.children.append(row)
        self.cpu_percent += row.cpu_percent
        self.rss_kb += row.rss_kb


@dataclass
class ProcessTree:
    """Two-level process tree built by one tick, groups in first-seen order."""

    groups: list[ProcessGroup] = field(default_factory=list)
    process_count: int = 0

    def rows(self) -> list[ProcessGroup | ProcessRow]:
        """Flatten to display order: each group followed by its leaves."""
        result: list[ProcessGroup | ProcessRow] = []
        for group in self.groups:
            result.append(group)
            result.extend(group.children)
        return result

    def find(self, name: str) -> ProcessGroup | None:
        for group in self.groups:
            if group.name == name:
                return group
        return None

    def sorted_by(self, key: str, descending: bool | None = None) -> "ProcessTree":
        """Copy with groups and leaves sorted.

        CPU and memory sort descending by default; name and pid ascending.
        """
        if key not in SORT_KEYS:
            raise ValueError(f"Unknown sort key: {key!r}. Valid keys: {list(SORT_KEYS)}")
        if descending is None:
            descending = key in ("cpu", "memory")

        def row_key(row: ProcessRow):
            return {
                "name": (row.name.lower(), row.pid),
                "cpu": row.cpu_percent,
                "memory": row.rss_kb,
                "pid": row.pid,
            }[key]

        def group_key(group: ProcessGroup):
            return {
                "name": (group.name.lower(), 0),
                "cpu": group.cpu_percent,
                "memory": group.rss_kb,
                "pid": min((c.pid for c in group.children), default=0),
            }[key]

        groups = [
            ProcessGroup(
                name=g.name,
                cpu_percent=g.cpu_percent,
                rss_kb=g.rss_kb,
                children=sorted(g.children, key=row_key, reverse=descending),
            )
            for g in self.groups
        ]
        groups.sort(key=group_key, reverse=descending)
        return ProcessTree(groups=groups, process_count=self.process_count)


@dataclass
class _Baseline:
    ticks: int
    seen: bool = True


class ProcessTable(Collector):
    """Snapshots every process each tick and attributes CPU since its baseline.

    A PID's first tick shows 0% (no baseline yet). Processes in an excluded
    cgroup slice and processes not matching the name filter are left out of
    the tree. Baselines of PIDs not seen this tick are dropped.
    """

    domain = "processes"

    def __init__(self, config: Config, paths: SysPaths | None = None) -> None:
        super().__init__(config, paths)
        self._baselines: dict[int, _Baseline] = {}
        self._prev_system = 0
        self.filter = config.processes.filter
        self.excluded_slices = list(config.processes.excluded_slices)
        self.tree = ProcessTree()

    def set_filter(self, text: str) -> None:
        """Case-insensitive substring filter on process name, applied next tick."""
        self.filter = text

    def update(self) -> None:
        for baseline in self._baselines.values():
            baseline.seen = False

        system_delta = self._system_delta()
        needle = self.filter.lower()
        groups: dict[str, ProcessGroup] = {}
        count = 0

        for pid in list_pids(self.paths):
            row = self._sample(pid, system_delta)
            cgroup = read_text(self.paths.proc / str(pid) / "cgroup") or ""
            if in_excluded_slice(cgroup, self.excluded_slices):
                continue
            if needle and needle not in row.name.lower():
                continue
            groups.setdefault(row.name, ProcessGroup(name=row.name)).add(row)
            count += 1

        self._baselines = {pid: b for pid, b in self._baselines.items() if b.seen}
        self.tree = ProcessTree(groups=list(groups.values()), process_count=count)

    def _system_delta(self) -> int:
        stat = read_proc_stat(self.paths)
        if stat is None:
            log.debug("proc_stat_unavailable")
            return 0
        total = stat.aggregate.total
        prev = self._prev_system
        self._prev_system = total
        if prev > 0 and total > prev:
            return total - prev
        return 0

    def _sample(self, pid: int, system_delta: int) -> ProcessRow:
        base = self.paths.proc / str(pid)
        name = (read_text(base / "comm") or "").strip()
        status = read_text(base / "status")
        rss_kb = parse_vmrss_kb(status) if status is not None else 0

        stat = read_text(base / "stat")
        times = parse_pid_stat(stat) if stat is not None else None
        baseline = self._baselines.get(pid)

        if times is None:
            # Read failed mid-scan; keep the old baseline rather than resetting it to 0
            if baseline is not None:
                baseline.seen = True
            return ProcessRow(name=name, pid=pid, cpu_percent=0.0, rss_kb=rss_kb)

        ticks = times[0] + times[1]
        cpu = 0.0
        if baseline is not None:
            cpu = process_cpu_percent(baseline.ticks, ticks, system_delta)
        self._baselines[pid] = _Baseline(ticks=ticks)
        return ProcessRow(name=name, pid=pid, cpu_percent=cpu, rss_kb=rss_kb)

    @property
    def tracked_pids(self) -> set[int]:
        """PIDs with a CPU baseline."""
        return set(self._baselines)

    def terminate(self, pids: list[int], grace: float | None = None) -> list[int]:
        """Terminate processes. Returns the PIDs that could not be signalled."""
        if grace is None:
            grace = self.config.processes.kill_grace
        return sorted(terminate_processes(pids, grace))

    def launch(self, command: str) -> tuple[int | None, str | None]:
        """Start a detached command. Returns (pid, None) or (None, reason)."""
        return launch_process(command)


def terminate_processes(pids: list[int], grace: float = 0.2) -> dict[int, str]:
    """SIGTERM each PID, wait grace seconds, then SIGKILL survivors.

    Returns {pid: reason} for PIDs that could not be signalled.
    """
    failures: dict[int, str] = {}
    procs: list[psutil.Process] = []
    for pid in pids:
        try:
            proc = psutil.Process(pid)
            proc.terminate()
            procs.append(proc)
        except psutil.NoSuchProcess:
            failures[pid] = "no such process"
        except psutil.AccessDenied:
            failures[pid] = "access denied"

    if not procs:
        return failures

    _, alive = psutil.wait_procs(procs, timeout=grace)
    for proc in alive:
        try:
            proc.kill()
            log.info("process_killed", pid=proc.pid)
        except psutil.NoSuchProcess:
            pass
        except psutil.AccessDenied:
            failures[proc.pid] = "access denied"
    for proc in procs:
        if proc.pid not in failures:
            log.info("process_terminated", pid=proc.pid)
    return failures


def launch_process(command: str) -> tuple[int | None, str | None]:
    """Start a command in its own session, detached from our stdio.

    The command line is split shell-style but not run through a shell.
    Returns (pid, None) on success or (None, reason) when it could not start.
    """
    try:
        argv = shlex.split(command)
    except ValueError as e:
        return None, f"bad command line: {e}"
    if not argv:
        return None, "empty command"

    try:
        proc = subprocess.Popen(
            argv,
            stdin=subprocess.DEVNULL,
            stdout=subprocess.DEVNULL,
            stderr=subprocess.DEVNULL,
            start_new_session=True,
        )
    except FileNotFoundError:
        return None, f"command not found: {argv[0]}"
    except PermissionError:
        return None, f"permission denied: {argv[0]}"
    except OSError as e:
        return None, str(e)
    log.info("process_launched", pid=proc.pid, argv=argv)
    return proc.pid, None
