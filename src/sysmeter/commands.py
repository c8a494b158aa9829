"""Bounded subprocess calls for external data sources.

Every tool invocation (lsblk, nvidia-smi, lspci, glxinfo, modinfo,
intel_gpu_top, iw) goes through run(). A missing binary, non-zero exit or
timeout is reported as None, which collectors treat as "source unavailable".
"""

import shutil
import subprocess

import structlog

log = structlog.get_logger()

DEFAULT_TIMEOUT = 2.0


def which(name: str) -> str | None:
    """Path to an executable on PATH, or None."""
    return shutil.which(name)


def run(
    args: list[str],
    timeout: float = DEFAULT_TIMEOUT,
    *,
    accept_partial: bool = False,
) -> str | None:
    """Run a command and return its stdout, or None on any failure.

    Args:
        args: Program and arguments, no shell.
        timeout: Seconds before the process is killed.
        accept_partial: Return whatever stdout was captured before a
            timeout instead of None. Streaming tools (intel_gpu_top) never
            exit on their own.
    """
    try:
        result = subprocess.run(
            args,
            capture_output=True,
            text=True,
            errors="replace",
            timeout=timeout,
            stdin=subprocess.DEVNULL,
        )
    except FileNotFoundError:
        log.debug("command_not_found", command=args[0])
        return None
    except subprocess.TimeoutExpired as e:
        log.debug("command_timeout", command=args[0], timeout=timeout)
        if accept_partial and e.stdout:
            out = e.stdout
            return out.decode(errors="replace") if isinstance(out, bytes) else out
        return None
    except OSError as e:
        log.debug("command_failed", command=args[0], error=str(e))
        return None

    if result.returncode != 0:
        log.debug("command_exit_nonzero", command=args[0], returncode=result.returncode)
        return None
    return result.stdout
