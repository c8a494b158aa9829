"""CLI commands for sysmeter."""

import click

SORT_CHOICES = ["cpu", "memory", "name", "pid"]


def _load_config():
    """Load config and route JSON logs to the state directory."""
    from sysmeter import logging as console
    from sysmeter.config import Config

    try:
        config = Config.load()
    except ValueError as e:
        raise click.ClickException(str(e)) from e
    console.configure(config, source="cli")
    return config


@click.group()
@click.version_option()
def main() -> None:
    """Linux system monitor: CPU, memory, disk, network, GPU and processes."""
    pass


@main.command()
def watch() -> None:
    """Launch interactive dashboard."""
    from sysmeter.tui.app import run_tui

    config = _load_config()
    run_tui(config)


@main.command()
@click.option("--ticks", "-t", default=None, type=click.IntRange(min=1), help="Stop after N ticks")
def run(ticks: int | None) -> None:
    """Run the headless sampler, logging periodic heartbeats."""
    import asyncio

    from sysmeter.sampler import run_sampler

    config = _load_config()
    asyncio.run(run_sampler(config, ticks=ticks))


@main.command()
@click.option("--ticks", "-t", default=2, type=click.IntRange(min=1), help="Ticks to sample")
@click.option("--interval", "-i", default=1.0, type=click.FloatRange(min=0.0), help="Tick spacing")
@click.option("--json", "as_json", is_flag=True, help="Output JSON")
def snapshot(ticks: int, interval: float, as_json: bool) -> None:
    """Sample every collector and print a summary.

    Rates need two ticks; with --ticks 1 CPU, disk activity and network
    rates read as zero.
    """
    import json
    import time

    from sysmeter.formatting import format_mb, format_percent, format_rate
    from sysmeter.sampler import Monitor

    config = _load_config()
    monitor = Monitor(config)
    monitor.init()
    for i in range(ticks):
        monitor.tick()
        if i < ticks - 1:
            time.sleep(interval)

    data = _snapshot_data(monitor)
    if as_json:
        click.echo(json.dumps(data, indent=2))
        return

    cpu = data["cpu"]
    mem = data["memory"]
    click.echo(f"CPU: {cpu['model']} ({cpu['cores']} cores, {cpu['threads']} threads)")
    click.echo(f"  Usage: {format_percent(cpu['usage'])} @ {cpu['frequency_mhz']:.0f} MHz")
    click.echo(
        f"Memory: {format_mb(mem['used_mb'])} / {format_mb(mem['total_mb'])} "
        f"({format_percent(mem['usage_percent'])})"
    )
    click.echo(
        f"  Swap: {format_mb(mem['swap_used_mb'])} / {format_mb(mem['swap_total_mb'])} "
        f"({format_percent(mem['swap_percent'])})"
    )
    for disk in data["disks"]:
        click.echo(
            f"Disk {disk['name']} [{disk['type']}] {disk['mount_point']}: "
            f"{format_percent(disk['usage_percent'])} used, "
            f"activity {format_percent(disk['activity_percent'])}"
        )
    for iface in data["interfaces"]:
        click.echo(
            f"Net {iface['name']} [{iface['type']}] {iface['ip_address']}: "
            f"rx {format_rate(iface['rx_kbps'])}, tx {format_rate(iface['tx_kbps'])}"
        )
    for gpu in data["gpus"]:
        click.echo(
            f"GPU {gpu['name']} [{gpu['vendor']}]: {format_percent(gpu['usage_percent'])}, "
            f"VRAM {format_mb(gpu['vram_used_mb'])} / {format_mb(gpu['vram_total_mb'])}"
        )
    click.echo(f"Processes: {data['processes']}")


def _snapshot_data(monitor) -> dict:
    cpu = monitor.cpu
    mem = monitor.memory
    return {
        "cpu": {
            "model": cpu.info.model_name,
            "cores": cpu.cores,
            "threads": cpu.threads,
            "frequency_mhz": round(cpu.frequency_mhz, 1),
            "usage": round(cpu.usage, 1),
            "per_core": [round(cpu.core_usage(i), 1) for i in range(cpu.core_count)],
        },
        "memory": {
            "total_mb": mem.total_mb,
            "used_mb": mem.used_mb,
            "available_mb": mem.available_mb,
            "usage_percent": round(mem.usage_percent, 1),
            "swap_total_mb": mem.swap_total_mb,
            "swap_used_mb": mem.swap_used_mb,
            "swap_percent": round(mem.swap_percent, 1),
        },
        "disks": [
            {
                "name": d.name,
                "type": d.disk_type,
                "model": d.model,
                "mount_point": d.mount_point,
                "fstype": d.fstype,
                "total_mb": d.total_mb,
                "used_mb": d.used_mb,
                "usage_percent": round(d.usage_percent, 1),
                "activity_percent": round(d.activity_percent, 1),
            }
            for d in monitor.disk.disks
        ],
        "interfaces": [
            {
                "name": n.name,
                "type": n.interface_type,
                "ip_address": n.ip_address,
                "mac_address": n.mac_address,
                "link_speed_mbps": n.link_speed_mbps,
                "rx_kbps": round(n.rx_kbps, 1),
                "tx_kbps": round(n.tx_kbps, 1),
            }
            for n in monitor.network.interfaces
        ],
        "gpus": [
            {
                "name": g.name,
                "vendor": g.vendor,
                "driver_version": g.driver_version,
                "usage_percent": round(g.usage_percent, 1),
                "vram_used_mb": round(g.vram_used_mb, 1),
                "vram_total_mb": round(g.vram_total_mb, 1),
            }
            for g in monitor.gpu.gpus
        ],
        "processes": monitor.processes.tree.process_count,
    }


@main.command()
@click.option("--filter", "-f", "name_filter", default=None, help="Substring match on process name")
@click.option("--sort", "-s", type=click.Choice(SORT_CHOICES), default="cpu", help="Sort key")
@click.option("--limit", "-n", default=20, type=click.IntRange(min=1), help="Groups to show")
@click.option("--interval", "-i", default=1.0, type=click.FloatRange(min=0.0), help="Window (s)")
def processes(name_filter: str | None, sort: str, limit: int, interval: float) -> None:
    """Show processes grouped by name.

    Samples twice, interval seconds apart, so CPU percentages are real.
    """
    import time

    from sysmeter.formatting import format_kb
    from sysmeter.processes import ProcessTable

    config = _load_config()
    table = ProcessTable(config)
    if name_filter is not None:
        table.set_filter(name_filter)

    table.tick()
    time.sleep(interval)
    table.tick()

    tree = table.tree.sorted_by(sort)
    if not tree.groups:
        click.echo("No matching processes.")
        return

    click.echo(f"{'NAME':<28} {'PID':>8} {'CPU%':>7} {'RSS':>10}")
    click.echo("-" * 56)
    for group in tree.groups[:limit]:
        click.echo(
            f"{group.name[:28]:<28} {'':>8} {group.cpu_percent:>6.1f}% "
            f"{format_kb(group.rss_kb):>10}"
        )
        if len(group.children) > 1:
            for row in group.children:
                click.echo(
                    f"  {row.name[:26]:<26} {row.pid:>8} {row.cpu_percent:>6.1f}% "
                    f"{format_kb(row.rss_kb):>10}"
                )
    click.echo(f"\n{tree.process_count} processes in {len(tree.groups)} groups")


@main.command()
@click.argument("pids", nargs=-1, required=True, type=int)
@click.option("--yes", "-y", is_flag=True, help="Skip confirmation prompt")
@click.option("--grace", type=click.FloatRange(min=0.0), help="Seconds before SIGKILL")
def kill(pids: tuple[int, ...], yes: bool, grace: float | None) -> None:
    """Terminate processes: SIGTERM, then SIGKILL after a grace period."""
    from sysmeter import logging as console
    from sysmeter.processes import ProcessTable
    from sysmeter.procfs import SysPaths, read_text

    config = _load_config()
    paths = SysPaths()
    names = {pid: (read_text(paths.proc / str(pid) / "comm") or "?").strip() for pid in pids}

    if not yes:
        listing = ", ".join(f"{names[pid]} ({pid})" for pid in pids)
        click.confirm(f"Terminate {listing}?", abort=True)

    table = ProcessTable(config, paths)
    failed = table.terminate(list(pids), grace)
    for pid in pids:
        if pid in failed:
            console.process_kill_failed(pid, "could not be signalled")
        else:
            console.process_killed(pid, names[pid])

    if failed:
        raise SystemExit(1)


@main.command(context_settings={"ignore_unknown_options": True})
@click.argument("command", nargs=-1, required=True, type=click.UNPROCESSED)
def start(command: tuple[str, ...]) -> None:
    """Start a new detached task, e.g. `sysmeter start -- firefox --new-window`."""
    import shlex

    from sysmeter import logging as console
    from sysmeter.processes import ProcessTable

    config = _load_config()
    line = command[0] if len(command) == 1 else shlex.join(command)
    pid, reason = ProcessTable(config).launch(line)
    if pid is None:
        console.process_launch_failed(line, reason or "unknown error")
        raise SystemExit(1)
    console.process_launched(pid, line)


@main.command()
def gpus() -> None:
    """List discovered GPUs."""
    from sysmeter.gpu import GpuCollector

    config = _load_config()
    collector = GpuCollector(config)
    collector.init()
    for i, gpu in enumerate(collector.gpus):
        click.echo(f"[{i}] {gpu.name}")
        click.echo(f"    Vendor: {gpu.vendor}")
        click.echo(f"    Driver: {gpu.driver_version}")
        click.echo(f"    Found by: {gpu.discovered_by}")


@main.command()
def disks() -> None:
    """List physical disks."""
    from sysmeter.disk import DiskCollector
    from sysmeter.formatting import format_mb

    config = _load_config()
    collector = DiskCollector(config)
    collector.tick()
    if collector.count == 0:
        click.echo("No physical disks found.")
        return
    for disk in collector.disks:
        click.echo(f"{disk.name} [{disk.disk_type}] {disk.model}".rstrip())
        click.echo(f"    Mount: {disk.mount_point} ({disk.fstype})")
        click.echo(
            f"    Space: {format_mb(disk.used_mb)} / {format_mb(disk.total_mb)} "
            f"({disk.usage_percent:.1f}%)"
        )


@main.command()
def interfaces() -> None:
    """List physical network interfaces."""
    from sysmeter.formatting import format_speed
    from sysmeter.network import NetworkCollector

    config = _load_config()
    collector = NetworkCollector(config)
    collector.tick()
    if collector.count == 0:
        click.echo("No physical interfaces found.")
        return
    for iface in collector.interfaces:
        click.echo(f"{iface.name} [{iface.interface_type}]")
        click.echo(f"    IP: {iface.ip_address}")
        click.echo(f"    MAC: {iface.mac_address}")
        click.echo(f"    MTU: {iface.mtu}, Speed: {format_speed(iface.link_speed_mbps)}")


@main.group()
def config() -> None:
    """Manage configuration."""
    pass


@config.command("init")
@click.option("--force", "-f", is_flag=True, help="Overwrite an existing config")
def config_init(force: bool) -> None:
    """Write a config file with default values."""
    from sysmeter import logging as console
    from sysmeter.config import Config

    cfg = Config()
    if cfg.config_path.exists() and not force:
        click.echo(f"Config already exists at {cfg.config_path} (use --force to overwrite)")
        return
    cfg.save()
    console.config_created(str(cfg.config_path))


@config.command("show")
def config_show() -> None:
    """Display current configuration as TOML."""
    from sysmeter.config import Config

    try:
        cfg = Config.load()
    except ValueError as e:
        raise click.ClickException(str(e)) from e

    click.echo(f"# Config file: {cfg.config_path}")
    click.echo(f"# Exists: {cfg.config_path.exists()}")
    click.echo(cfg.to_toml())


@config.command("path")
def config_path() -> None:
    """Print the config file path."""
    from sysmeter.config import Config

    click.echo(str(Config().config_path))
