from __future__ import annotations

import errno
import os
from pathlib import Path

import fcntl

from replyd.core.daemon.constants import SECURE_DIR_MODE, SECURE_FILE_MODE


class DaemonAlreadyRunning(RuntimeError):
    def __init__(self, message: str, pid: int = 0) -> None:
        super().__init__(message)
        self.pid = pid


def _is_pid_alive(pid: int) -> bool:
    """Send signal 0 to ``pid``, which checks existence without side effects."""
    if pid <= 0:
        return False
    try:
        os.kill(pid, 0)
        return True
    except OSError as exc:
        # EPERM: the process exists but belongs to another user.
        return exc.errno == errno.EPERM


def read_pid_file(pid_file: Path) -> int:
    try:
        return int(pid_file.read_text(encoding="utf-8").strip())
    except (OSError, ValueError):
        return 0


def running_pid(pid_file: Path) -> int:
    """Return the recorded pid when that process is alive, else 0."""
    pid = read_pid_file(pid_file)
    if pid and _is_pid_alive(pid):
        return pid
    return 0


def _write_pid_file(pid_file: Path, pid: int) -> None:
    tmp = pid_file.with_name(f".{pid_file.name}.tmp.{pid}")
    fd = os.open(str(tmp), os.O_WRONLY | os.O_CREAT | os.O_TRUNC, SECURE_FILE_MODE)
    try:
        os.write(fd, f"{pid}\n".encode("utf-8"))
        os.fsync(fd)
    finally:
        os.close(fd)
    os.replace(tmp, pid_file)


class _ProcessFileLock:
    """Single-instance guard backed by a pid file and an flock'd lock file."""

    def __init__(self, lock_file: Path, pid_file: Path, owner_label: str) -> None:
        self.lock_file = lock_file.resolve()
        self.pid_file = pid_file.resolve()
        self.owner_label = owner_label
        self._fd: int | None = None

    @property
    def held(self) -> bool:
        return self._fd is not None

    def _try_lock_fd(self, fd: int) -> bool:
        try:
            fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
            return True
        except OSError as exc:
            if exc.errno in (errno.EACCES, errno.EAGAIN):
                return False
            raise

    def acquire(self) -> int:
        """Take ownership or raise DaemonAlreadyRunning without touching any file."""
        self.lock_file.parent.mkdir(mode=SECURE_DIR_MODE, parents=True, exist_ok=True)
        self.pid_file.parent.mkdir(mode=SECURE_DIR_MODE, parents=True, exist_ok=True)
        existing = read_pid_file(self.pid_file)
        if existing and existing != os.getpid() and _is_pid_alive(existing):
            raise DaemonAlreadyRunning(f"{self.owner_label} already running (pid={existing})", pid=existing)

        fd = os.open(str(self.lock_file), os.O_RDWR | os.O_CREAT, SECURE_FILE_MODE)
        if not self._try_lock_fd(fd):
            os.close(fd)
            raise DaemonAlreadyRunning(f"{self.owner_label} lock is busy: {self.lock_file}")
        self._fd = fd
        # A stale pid (dead process) is simply overwritten.
        _write_pid_file(self.pid_file, os.getpid())
        return os.getpid()

    def release(self) -> None:
        if self._fd is None:
            return
        try:
            if read_pid_file(self.pid_file) == os.getpid() and self.pid_file.exists():
                self.pid_file.unlink()
        except OSError:
            pass

        try:
            fcntl.flock(self._fd, fcntl.LOCK_UN)
        except OSError:
            pass
        finally:
            try:
                os.close(self._fd)
            except OSError:
                pass
            self._fd = None


__all__ = ["DaemonAlreadyRunning", "_ProcessFileLock", "_is_pid_alive", "read_pid_file", "running_pid"]
