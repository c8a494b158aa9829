"""Formatting utilities for consistent output across CLI and TUI."""

from sysmeter.network import SPEED_UNKNOWN

_UNITS = ("B", "KB", "MB", "GB", "TB")


def format_bytes(n: float) -> str:
    """Format a byte count with a binary unit suffix.

    Args:
        n: Size in bytes

    Returns:
        "512B", "1.5KB", "3.2GB", ...
    """
    value = float(n)
    for unit in _UNITS[:-1]:
        if abs(value) < 1024:
            return f"{value:.0f}{unit}" if unit == "B" else f"{value:.1f}{unit}"
        value /= 1024
    return f"{value:.1f}{_UNITS[-1]}"


def format_mb(mb: float) -> str:
    """Format a size given in MB: "812MB", "15.6GB"."""
    if mb >= 1024:
        return f"{mb / 1024:.1f}GB"
    return f"{mb:.0f}MB"


def format_kb(kb: int) -> str:
    """Format a size given in kB (as /proc reports RSS)."""
    return format_bytes(kb * 1024)


def format_rate(kbps: float) -> str:
    """Format a KB/s transfer rate: "12.0KB/s", "3.4MB/s"."""
    if kbps >= 1024:
        return f"{kbps / 1024:.1f}MB/s"
    return f"{kbps:.1f}KB/s"


def format_speed(mbps: int) -> str:
    """Format a link speed in Mb/s, "N/A" when unknown."""
    if mbps == SPEED_UNKNOWN or mbps < 0:
        return "N/A"
    if mbps >= 1000 and mbps % 1000 == 0:
        return f"{mbps // 1000}Gb/s"
    return f"{mbps}Mb/s"


def format_percent(value: float) -> str:
    """Format a percentage with one decimal: "42.5%"."""
    return f"{value:.1f}%"
