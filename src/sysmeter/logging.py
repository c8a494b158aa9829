"""Console lines and the JSON log file.

Two outputs with different readers:

- The terminal gets short Rich-marked lines (`HH:MM:SS [info] ✓ message`)
  from `info`/`error` and the event helpers below. Nothing here is parsed.
- The state directory gets `sysmeter.log`, one JSON object per line, written
  by structlog through a stdlib rotating handler once `configure()` runs.
"""

from __future__ import annotations

import logging
import logging.handlers
from datetime import datetime
from typing import TYPE_CHECKING

import structlog
from rich.console import Console
from rich.markup import escape

if TYPE_CHECKING:
    from sysmeter.config import Config

_console = Console(highlight=False)


# ─────────────────────────────────────────────────────────────────────────────
# Glyphs and levels
# ─────────────────────────────────────────────────────────────────────────────


class Icon:
    """Rich-marked glyphs placed between the level tag and the message."""

    OK = "[bold green]✓[/]"
    FAIL = "[bold red]✗[/]"
    WAIT = "⏳"
    HEARTBEAT = "[magenta]♡[/]"
    SIGNAL = "⚡"
    KILL = "[bright_red]☠[/]"
    GPU = "[cyan]▣[/]"


_LEVEL_TAGS = {
    "info": "[bright_blue]\\[info][/]",
    "error": "[bold red]\\[err][/] ",
}


def _emit(level: str, msg: str, icon: str) -> None:
    stamp = datetime.now().strftime("%H:%M:%S")
    tag = _LEVEL_TAGS.get(level, f"\\[{level}]")
    parts = [f"[dim]{stamp}[/]", tag]
    if icon:
        parts.append(icon)
    parts.append(msg)
    _console.print(" ".join(parts))


def info(msg: str, icon: str = "") -> None:
    _emit("info", msg, icon)


def error(msg: str, icon: str = "") -> None:
    _emit("error", msg, icon)


def usage_color(percent: float) -> str:
    """Rich colour for a 0-100 usage value: green, then yellow at 60, red at 90."""
    if percent >= 90:
        return "bright_red"
    if percent >= 60:
        return "bright_yellow"
    return "green"


# ─────────────────────────────────────────────────────────────────────────────
# Events
# ─────────────────────────────────────────────────────────────────────────────


def sampler_started(domains: list[str]) -> None:
    info(f"Sampling [cyan]{', '.join(domains)}[/]", Icon.OK)


def sampler_stopping() -> None:
    info("Sampler stopping...", Icon.WAIT)


def sampler_stopped() -> None:
    info("Sampler stopped", Icon.OK)


def signal_received(name: str) -> None:
    info(f"Got [bold]{name}[/], shutting down", Icon.SIGNAL)


def heartbeat(
    cpu_percent: float,
    mem_percent: float,
    process_count: int,
    ticks: int,
    rss_mb: float,
) -> None:
    """One-line health report: host load, then the sampler's own footprint."""
    load = (
        f"cpu [{usage_color(cpu_percent)}]{cpu_percent:.1f}%[/], "
        f"mem [{usage_color(mem_percent)}]{mem_percent:.1f}%[/], "
        f"[cyan]{process_count}[/] procs"
    )
    info(f"{load}, [dim]{ticks} ticks, {rss_mb:.1f}MB RSS[/]", Icon.HEARTBEAT)


def gpu_discovered(name: str, vendor: str, method: str) -> None:
    info(f"[cyan]{name}[/] [dim]({vendor}, via {method})[/]", Icon.GPU)


def process_killed(pid: int, name: str) -> None:
    info(f"Terminated [cyan]{name}[/] [dim]({pid})[/]", Icon.KILL)


def process_kill_failed(pid: int, reason: str) -> None:
    error(f"Could not terminate [dim]{pid}[/]: {reason}", Icon.FAIL)


def process_launched(pid: int, command: str) -> None:
    info(f"Started [cyan]{escape(command)}[/] [dim]({pid})[/]", Icon.OK)


def process_launch_failed(command: str, reason: str) -> None:
    error(f"Could not start [cyan]{escape(command)}[/]: {escape(reason)}", Icon.FAIL)


def config_created(path: str) -> None:
    info(f"Wrote default config to [cyan]{path}[/]", Icon.OK)


def config_summary(intervals: dict[str, float], history_size: int) -> None:
    """Print per-domain intervals as `1/2.5s (cpu/disk)` plus the ring size."""
    seconds = "/".join(f"{v:g}" for v in intervals.values())
    domains = "/".join(intervals)
    info(f"Intervals: [cyan]{seconds}[/]s [dim]({domains})[/], history=[cyan]{history_size}[/]")


def update_failed(domain: str, error_msg: str) -> None:
    error(f"{domain} update failed: {error_msg}", Icon.FAIL)


# ─────────────────────────────────────────────────────────────────────────────
# structlog
# ─────────────────────────────────────────────────────────────────────────────


def _tag_source(source: str) -> structlog.types.Processor:
    def processor(
        logger: structlog.types.WrappedLogger,
        method_name: str,
        event_dict: structlog.types.EventDict,
    ) -> structlog.types.EventDict:
        event_dict.setdefault("source", source)
        return event_dict

    return processor


def _json_file_handler(config: Config, source: str, level: int) -> logging.Handler:
    config.state_dir.mkdir(parents=True, exist_ok=True)
    handler = logging.handlers.RotatingFileHandler(
        config.log_path,
        maxBytes=config.system.log_max_bytes,
        backupCount=config.system.log_backup_count,
        encoding="utf-8",
    )
    handler.setLevel(level)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            processor=structlog.processors.JSONRenderer(),
            foreign_pre_chain=[
                structlog.contextvars.merge_contextvars,
                structlog.processors.add_log_level,
                structlog.processors.TimeStamper(fmt="iso", utc=False, key="ts"),
                _tag_source(source),
                structlog.processors.format_exc_info,
            ],
        )
    )
    return handler


def configure(config: Config, source: str = "sysmeter", level: int = logging.INFO) -> None:
    """Send structlog events (and stray stdlib records) to the JSON log file.

    Replaces any handlers already on the root logger. `source` is stamped on
    every record so CLI, TUI and sampler runs can be told apart in one file.
    The console helpers above are unaffected.
    """
    root = logging.getLogger()
    root.handlers.clear()
    root.setLevel(level)
    root.addHandler(_json_file_handler(config, source, level))

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.filter_by_level,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", utc=False, key="ts"),
            _tag_source(source),
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )
