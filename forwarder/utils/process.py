"""Background process management: pid file, detached start, stop.

The pid file and the log file live beside the configuration file
(`forwarder.pid`, `forwarder.log`).
"""

import logging
import os
import signal
import subprocess
import time
from pathlib import Path
from typing import Sequence

from forwarder.core.errors import ForwarderError

logger = logging.getLogger(__name__)

PID_FILENAME = "forwarder.pid"
LOG_FILENAME = "forwarder.log"
STOP_TIMEOUT_SECONDS = 10.0


def pid_file_for(config_path: str | Path) -> Path:
    return Path(config_path).expanduser().resolve().parent / PID_FILENAME


def log_file_for(config_path: str | Path) -> Path:
    return Path(config_path).expanduser().resolve().parent / LOG_FILENAME


def write_pid_file(pid_file: Path, pid: int) -> None:
    pid_file.parent.mkdir(parents=True, exist_ok=True)
    pid_file.write_text(str(pid))


def read_pid_file(pid_file: Path) -> int | None:
    """PID stored in the file, or None if missing or unreadable."""
    if not pid_file.exists():
        return None
    try:
        return int(pid_file.read_text().strip())
    except (ValueError, OSError):
        return None


def remove_pid_file(pid_file: Path) -> None:
    if pid_file.exists():
        pid_file.unlink()


def is_process_running(pid: int) -> bool:
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        # exists, owned by someone else
        return True
    return True


def claim_pid_file(pid_file: Path, pid: int | None = None) -> None:
    """
    Write our pid, refusing when another live process owns the file.
    A stale file (dead pid) is replaced.
    """
    pid = os.getpid() if pid is None else pid
    existing = read_pid_file(pid_file)
    if existing is not None and existing != pid:
        if is_process_running(existing):
            raise ForwarderError(
                f"Forwarder is already running (PID {existing}). Use 'forwarder stop' first."
            )
        logger.warning("Removing stale PID file (PID %d no longer running)", existing)
    write_pid_file(pid_file, pid)


def start_background(argv: Sequence[str], pid_file: Path, log_file: Path) -> int:
    """Spawn `argv` detached from the terminal, output appended to `log_file`."""
    existing = read_pid_file(pid_file)
    if existing is not None and is_process_running(existing):
        raise ForwarderError(
            f"Forwarder is already running (PID {existing}). Use 'forwarder stop' first."
        )

    log_file.parent.mkdir(parents=True, exist_ok=True)
    with open(log_file, "ab") as out:
        proc = subprocess.Popen(
            list(argv),
            stdin=subprocess.DEVNULL,
            stdout=out,
            stderr=subprocess.STDOUT,
            start_new_session=True,
            close_fds=True,
        )
    claim_pid_file(pid_file, proc.pid)
    logger.info("Forwarder started in background (PID %d), logging to %s", proc.pid, log_file)
    return proc.pid


def stop_background(pid_file: Path, timeout: float = STOP_TIMEOUT_SECONDS) -> bool:
    """
    SIGTERM the process in the pid file and wait for it to exit.
    Returns False when nothing was running.
    """
    pid = read_pid_file(pid_file)
    if pid is None:
        logger.info("No PID file found at %s", pid_file)
        return False

    if not is_process_running(pid):
        logger.warning("PID %d not running, cleaning up stale PID file", pid)
        remove_pid_file(pid_file)
        return False

    logger.info("Sending SIGTERM to forwarder (PID %d)", pid)
    os.kill(pid, signal.SIGTERM)

    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if not is_process_running(pid):
            break
        time.sleep(0.5)
    else:
        logger.warning("PID %d still running after %.0fs", pid, timeout)

    remove_pid_file(pid_file)
    return True
