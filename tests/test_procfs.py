"""Tests for /proc and /sys parsers and readers."""

from pathlib import Path

from sysmeter.procfs import (
    SysPaths,
    in_excluded_slice,
    list_pids,
    parse_cpuinfo,
    parse_diskstats,
    parse_meminfo,
    parse_net_dev,
    parse_pid_stat,
    parse_proc_stat,
    parse_vmrss_kb,
    read_cache_size,
    read_int,
    read_meminfo,
    read_proc_stat,
    read_text,
)

PROC_STAT = """\
cpu  4705 356 584 3699 23 23 0 0 0 0
cpu0 1393 280 290 1829 5 16 0 0 0 0
cpu1 3312 76 294 1870 18 7 0 0 0 0
intr 114930548 113199788 3 0 5 263 0 4 [... lots more numbers ...]
ctxt 1990473
"""

CPUINFO = """\
processor\t: 0
vendor_id\t: GenuineIntel
cpu family\t: 6
model name\t: Intel(R) Core(TM) i7-8550U CPU @ 1.80GHz
stepping\t: 10
cpu MHz\t\t: 1800.000
physical id\t: 0
bogomips\t: 3999.93
address sizes\t: 39 bits physical, 48 bits virtual

processor\t: 1
vendor_id\t: GenuineIntel
model name\t: Intel(R) Core(TM) i7-8550U CPU @ 1.80GHz
cpu MHz\t\t: 2200.000
physical id\t: 0
"""


class TestProcStat:
    def test_aggregate_and_cores(self) -> None:
        stat = parse_proc_stat(PROC_STAT)
        assert stat is not None
        assert stat.aggregate.user == 4705
        assert stat.aggregate.idle == 3699
        assert len(stat.cores) == 2
        assert stat.cores[1].user == 3312

    def test_totals(self) -> None:
        stat = parse_proc_stat(PROC_STAT)
        assert stat is not None
        agg = stat.aggregate
        assert agg.total == 4705 + 356 + 584 + 3699 + 23 + 23
        assert agg.idle_total == 3699 + 23
        assert agg.busy == agg.total - agg.idle_total

    def test_short_line_padded(self) -> None:
        """Old kernels report only four fields."""
        stat = parse_proc_stat("cpu 10 20 30 40\n")
        assert stat is not None
        assert stat.aggregate.iowait == 0
        assert stat.aggregate.total == 100

    def test_missing_aggregate(self) -> None:
        assert parse_proc_stat("cpu0 1 2 3 4\n") is None
        assert parse_proc_stat("") is None


def test_parse_cpuinfo() -> None:
    info = parse_cpuinfo(CPUINFO)
    assert info.model_name == "Intel(R) Core(TM) i7-8550U CPU @ 1.80GHz"
    assert info.vendor == "GenuineIntel"
    assert info.family == "6"
    assert info.stepping == "10"
    assert info.bogomips == "3999.93"
    assert info.address_sizes == "39 bits physical, 48 bits virtual"
    assert info.physical_ids == {"0"}
    assert info.mhz == [1800.0, 2200.0]
    assert info.processors == 2


def test_parse_meminfo() -> None:
    text = "MemTotal:       16318480 kB\nMemFree:         1234 kB\nHugePages_Total:       0\n"
    fields = parse_meminfo(text)
    assert fields["MemTotal"] == 16318480
    assert fields["MemFree"] == 1234
    assert fields["HugePages_Total"] == 0


def test_parse_diskstats() -> None:
    text = (
        "   8       0 sda 52119 13766 3294554 29560 88376 101384 4506784 118004 0 67600 150344\n"
        "   8       1 sda1 5 0 10 0 0 0 0 0 0 0 0\n"
        "short line\n"
    )
    counters = parse_diskstats(text)
    assert counters["sda"].sectors_read == 3294554
    assert counters["sda"].sectors_written == 4506784
    assert counters["sda"].bytes_total == (3294554 + 4506784) * 512
    assert "sda1" in counters


def test_parse_net_dev() -> None:
    text = (
        "Inter-|   Receive |  Transmit\n"
        " face |bytes packets|bytes packets\n"
        "    lo: 1000 10 0 0 0 0 0 0 1000 10 0 0 0 0 0 0\n"
        "  eth0: 123456 200 0 0 0 0 0 0 654321 300 0 0 0 0 0 0\n"
    )
    counters = parse_net_dev(text)
    assert list(counters) == ["lo", "eth0"]
    assert counters["eth0"].rx_bytes == 123456
    assert counters["eth0"].tx_bytes == 654321


class TestPidFiles:
    def test_stat_with_spaces_in_name(self) -> None:
        text = "1234 (Web Content (x)) S 1 1234 1234 0 -1 4194560 100 0 0 0 150 80 0 0 20 0 1\n"
        assert parse_pid_stat(text) == (150, 80)

    def test_stat_truncated(self) -> None:
        assert parse_pid_stat("1234 (bash) S 1 2") is None
        assert parse_pid_stat("garbage") is None

    def test_vmrss(self) -> None:
        assert parse_vmrss_kb("Name:\tbash\nVmRSS:\t    5120 kB\n") == 5120

    def test_vmrss_kernel_thread(self) -> None:
        assert parse_vmrss_kb("Name:\tkworker/0:1\n") == 0

    def test_excluded_slice(self) -> None:
        assert in_excluded_slice("0::/system.slice/sshd.service\n", ["system.slice"])
        assert not in_excluded_slice("0::/user.slice/user-1000.slice\n", ["system.slice"])
        assert not in_excluded_slice("0::/system.slice/x\n", [])


class TestReaders:
    def test_missing_file_is_none(self, tmp_path: Path) -> None:
        assert read_text(tmp_path / "nope") is None
        assert read_int(tmp_path / "nope") is None

    def test_read_int_garbage(self, tmp_path: Path) -> None:
        path = tmp_path / "speed"
        path.write_text("invalid\n")
        assert read_int(path) is None
        path.write_text("1000\n")
        assert read_int(path) == 1000

    def test_readers_use_roots(self, fake) -> None:
        fake.write_stat((10, 5, 80, 5))
        fake.write_meminfo(MemTotal=2048)
        assert read_proc_stat(fake.paths).aggregate.user == 10
        assert read_meminfo(fake.paths) == {"MemTotal": 2048}

    def test_readers_missing_root(self, tmp_path: Path) -> None:
        paths = SysPaths(proc=tmp_path / "missing", sys=tmp_path / "missing")
        assert read_proc_stat(paths) is None
        assert list_pids(paths) == []

    def test_cache_size_prefers_l3(self, fake) -> None:
        fake.write("devices/system/cpu/cpu0/cache/index2/size", "256K\n", under="sys")
        assert read_cache_size(fake.paths) == "256"
        fake.write("devices/system/cpu/cpu0/cache/index3/size", "8192K\n", under="sys")
        assert read_cache_size(fake.paths) == "8192"

    def test_list_pids_numeric_only(self, fake) -> None:
        fake.write_pid(42, "bash")
        fake.write_pid(7, "init")
        fake.write("self/comm", "x\n")
        assert list_pids(fake.paths) == [7, 42]
