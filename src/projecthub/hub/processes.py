"""Child process helpers: process-group signalling, PID files, port probes."""

import asyncio
import logging
import os
import signal
import socket
from pathlib import Path

logger = logging.getLogger(__name__)

TERMINATE_GRACE = 5.0


def signal_group(pid: int, sig: int) -> None:
    """Signal the process group led by pid, falling back to the single process."""
    try:
        if hasattr(os, "killpg") and hasattr(os, "getpgid"):
            os.killpg(os.getpgid(pid), sig)
        else:
            os.kill(pid, sig)
    except (ProcessLookupError, PermissionError, OSError):
        try:
            os.kill(pid, sig)
        except (ProcessLookupError, PermissionError, OSError):
            pass


def _kill_signal() -> int:
    return getattr(signal, "SIGKILL", signal.SIGTERM)


async def terminate_process(
    proc: asyncio.subprocess.Process, grace: float = TERMINATE_GRACE
) -> None:
    """SIGTERM the process group, SIGKILL it if it outlives the grace period."""
    if proc.returncode is not None:
        return
    signal_group(proc.pid, signal.SIGTERM)
    try:
        await asyncio.wait_for(proc.wait(), timeout=grace)
    except TimeoutError:
        signal_group(proc.pid, _kill_signal())
        await proc.wait()


async def terminate_pid(pid: int, grace: float = TERMINATE_GRACE) -> None:
    """Same as terminate_process for a process we only know by PID."""
    signal_group(pid, signal.SIGTERM)
    loop = asyncio.get_running_loop()
    deadline = loop.time() + grace
    while loop.time() < deadline:
        if not is_pid_alive(pid):
            return
        await asyncio.sleep(0.1)
    signal_group(pid, _kill_signal())


def is_pid_alive(pid: int) -> bool:
    """Check whether an OS process is still running."""
    try:
        os.kill(pid, 0)
        return True
    except PermissionError:
        return True
    except (ProcessLookupError, OSError):
        return False


def is_port_listening(host: str, port: int, timeout: float = 0.5) -> bool:
    """Check if something accepts TCP connections on host:port."""
    try:
        with socket.create_connection((host, int(port)), timeout=timeout):
            return True
    except (OSError, TypeError, ValueError):
        return False


# ─── PID files ───────────────────────────────────────────────────────────


def write_pid(pid_path: Path, pid: int) -> None:
    pid_path.write_text(str(pid), encoding="utf-8")


def read_pid(pid_path: Path) -> int | None:
    if not pid_path.exists():
        return None
    try:
        return int(pid_path.read_text(encoding="utf-8").strip())
    except (ValueError, OSError):
        return None


def clear_pid(pid_path: Path) -> None:
    pid_path.unlink(missing_ok=True)
