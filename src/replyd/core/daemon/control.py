"""Start, stop and inspect the reply listener from another process."""

from __future__ import annotations

import os
import signal
import subprocess
import sys
import time
from dataclasses import dataclass
from typing import Any, Mapping

from replyd.core.daemon import service_utils as _service_utils
from replyd.core.daemon.constants import SECURE_DIR_MODE
from replyd.core.daemon.locking import _is_pid_alive, read_pid_file, running_pid
from replyd.core.daemon.state_store import DaemonState
from replyd.runtime import ReplyListenerPaths


@dataclass(frozen=True)
class DaemonStatus:
    running: bool
    pid: int
    stale_pid_file: bool
    state: DaemonState

    def to_payload(self) -> dict[str, Any]:
        return {
            "running": self.running,
            "pid": self.pid or None,
            "stalePidFile": self.stale_pid_file,
            "state": self.state.to_payload(),
        }


def daemon_status(paths: ReplyListenerPaths) -> DaemonStatus:
    recorded = read_pid_file(paths.pid_file)
    alive = bool(recorded) and _is_pid_alive(recorded)
    state = DaemonState.from_payload(_service_utils.read_json_dict(paths.state_file))
    return DaemonStatus(
        running=alive,
        pid=recorded if alive else 0,
        stale_pid_file=bool(recorded) and not alive,
        state=state,
    )


def start_detached(
    paths: ReplyListenerPaths,
    *,
    base_env: Mapping[str, str] | None = None,
    python_bin: str | None = None,
    wait_sec: float = 5.0,
) -> int:
    """Spawn the daemon in its own session; returns the child pid.

    The child only sees the allowlisted environment variables. Returns once
    the child has written its pid file. Raises RuntimeError when a live
    daemon is already recorded, or when the child exits or fails to record
    its pid within ``wait_sec``.
    """
    existing = running_pid(paths.pid_file)
    if existing:
        raise RuntimeError(f"reply listener already running (pid={existing})")
    paths.logs_dir.mkdir(mode=SECURE_DIR_MODE, parents=True, exist_ok=True)
    env = _service_utils.build_daemon_env(os.environ if base_env is None else base_env)
    cmd = [
        python_bin or sys.executable,
        "-m",
        "replyd.core.daemon.main",
        "--state-dir",
        str(paths.root),
    ]
    proc = subprocess.Popen(
        cmd,
        cwd=str(paths.root),
        env=env,
        stdin=subprocess.DEVNULL,
        stdout=subprocess.DEVNULL,
        stderr=subprocess.DEVNULL,
        start_new_session=True,
    )
    pid = int(proc.pid)
    deadline = time.monotonic() + max(0.0, wait_sec)
    while True:
        if read_pid_file(paths.pid_file) == pid:
            return pid
        code = proc.poll()
        if code is not None:
            raise RuntimeError(f"reply listener exited during startup (code={code}); see {paths.log_file}")
        if time.monotonic() >= deadline:
            break
        time.sleep(0.1)
    raise RuntimeError(f"reply listener (pid={pid}) did not record its pid within {wait_sec:.0f}s; see {paths.log_file}")


def stop_daemon(paths: ReplyListenerPaths, timeout_sec: float = 10.0) -> tuple[bool, str]:
    """Send SIGTERM to the recorded daemon and wait for its pid file to go away."""
    pid = read_pid_file(paths.pid_file)
    if not pid:
        return False, "not running"
    if not _is_pid_alive(pid):
        try:
            paths.pid_file.unlink()
        except OSError:
            pass
        return False, f"removed stale pid file (pid={pid})"
    try:
        os.kill(pid, signal.SIGTERM)
    except OSError as exc:
        return False, f"failed to signal pid={pid}: {exc}"
    deadline = time.monotonic() + max(0.0, timeout_sec)
    while time.monotonic() < deadline:
        if not _is_pid_alive(pid) or read_pid_file(paths.pid_file) != pid:
            return True, f"stopped (pid={pid})"
        time.sleep(0.1)
    return False, f"pid={pid} did not stop within {timeout_sec:.0f}s"


__all__ = ["DaemonStatus", "daemon_status", "start_detached", "stop_daemon"]
