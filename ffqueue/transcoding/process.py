"""
Platform-specific process control for encoder subprocesses.
"""

import logging
import os
import signal
import subprocess
import sys
from typing import Any, Dict

logger = logging.getLogger(__name__)


def supports_suspend() -> bool:
    """True if the platform can suspend/continue a process with signals."""
    return sys.platform != "win32" and hasattr(signal, "SIGSTOP")


def spawn_kwargs() -> Dict[str, Any]:
    """Extra keyword arguments for create_subprocess_exec."""
    kwargs: Dict[str, Any] = {}
    if sys.platform == "win32":
        # New process group so CTRL_BREAK can be delivered to the child only
        kwargs["creationflags"] = subprocess.CREATE_NEW_PROCESS_GROUP
    return kwargs


def send_terminate(pid: int) -> bool:
    """
    Ask a process to exit.

    Sends SIGTERM on Unix and CTRL_BREAK_EVENT on Windows. Returns False if the
    process no longer exists.
    """
    try:
        if sys.platform == "win32":
            os.kill(pid, signal.CTRL_BREAK_EVENT)
        else:
            os.kill(pid, signal.SIGTERM)
        return True
    except (ProcessLookupError, OSError) as e:
        logger.debug(f"[Process] terminate {pid} failed: {e}")
        return False


def send_continue(pid: int) -> None:
    if not supports_suspend():
        return
    try:
        os.kill(pid, signal.SIGCONT)
    except (ProcessLookupError, OSError):
        pass


def suspend_process(pid: int) -> None:
    os.kill(pid, signal.SIGSTOP)


def resume_process(pid: int) -> None:
    os.kill(pid, signal.SIGCONT)


def kill_process_tree(pid: int) -> None:
    """
    Forcefully kill a process.

    On Windows ``taskkill /T`` is used so helper children spawned by the
    encoder go down with it.
    """
    if sys.platform == "win32":
        try:
            subprocess.run(
                ["taskkill", "/PID", str(pid), "/T", "/F"],
                stdout=subprocess.DEVNULL,
                stderr=subprocess.DEVNULL,
                check=False,
            )
        except OSError as e:
            logger.warning(f"[Process] taskkill for {pid} failed: {e}")
        return

    try:
        os.kill(pid, signal.SIGKILL)
    except (ProcessLookupError, OSError):
        pass
