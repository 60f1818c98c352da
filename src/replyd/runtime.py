"""Fixed filesystem layout shared by the CLI and the daemon."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from replyd.core.daemon.constants import (
    CONFIG_FILENAME,
    DEFAULT_STATE_DIRNAME,
    LOCK_FILENAME,
    LOG_FILENAME,
    PID_FILENAME,
    REGISTRY_FILENAME,
    STATE_FILENAME,
)


def default_state_root() -> Path:
    """Return the per-user directory holding pid, state, config and logs."""
    return Path.home() / DEFAULT_STATE_DIRNAME


@dataclass(frozen=True)
class ReplyListenerPaths:
    root: Path
    pid_file: Path
    lock_file: Path
    state_file: Path
    config_file: Path
    registry_file: Path
    logs_dir: Path
    log_file: Path


def resolve_paths(state_root: Path | str | None = None) -> ReplyListenerPaths:
    root = Path(state_root).expanduser().resolve() if state_root else default_state_root()
    logs_dir = root / "logs"
    return ReplyListenerPaths(
        root=root,
        pid_file=root / PID_FILENAME,
        lock_file=root / LOCK_FILENAME,
        state_file=root / STATE_FILENAME,
        config_file=root / CONFIG_FILENAME,
        registry_file=root / REGISTRY_FILENAME,
        logs_dir=logs_dir,
        log_file=logs_dir / LOG_FILENAME,
    )
