"""Pure utility helpers for daemon service logic."""

from __future__ import annotations

import json
import os
import re
import time
from pathlib import Path
from typing import Any, Iterable, Mapping

from replyd.core.daemon.constants import DAEMON_ENV_ALLOWLIST, SECURE_FILE_MODE


def coerce_int(raw: object, default: int, minimum: int = 0) -> int:
    if isinstance(raw, bool) or raw is None:
        return max(minimum, default)
    if isinstance(raw, str):
        raw = raw.strip()
        if not raw:
            return max(minimum, default)
    try:
        return max(minimum, int(raw))  # type: ignore[call-overload]
    except (TypeError, ValueError):
        return max(minimum, default)


def coerce_float(raw: object, default: float, minimum: float = 0.0) -> float:
    if isinstance(raw, bool) or raw is None:
        return max(minimum, default)
    if isinstance(raw, str):
        raw = raw.strip()
        if not raw:
            return max(minimum, default)
    try:
        return max(minimum, float(raw))  # type: ignore[arg-type]
    except (TypeError, ValueError):
        return max(minimum, default)


def coerce_bool(raw: object, default: bool) -> bool:
    if isinstance(raw, bool):
        return raw
    normalized = str(raw if raw is not None else "").strip().lower()
    if not normalized:
        return default
    if normalized in {"1", "true", "yes", "on"}:
        return True
    if normalized in {"0", "false", "no", "off"}:
        return False
    return default


def normalize_id_list(raw: Any) -> frozenset[str]:
    if not isinstance(raw, (list, tuple, set, frozenset)):
        return frozenset()
    out: set[str] = set()
    for item in raw:
        if isinstance(item, bool) or item is None:
            continue
        text = str(item).strip()
        if text:
            out.add(text)
    return frozenset(out)


def normalize_id(raw: object) -> str:
    if isinstance(raw, bool) or raw is None:
        return ""
    return str(raw).strip()


def read_json_dict(path: Path) -> dict[str, Any]:
    if not path.exists():
        return {}
    try:
        raw = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, ValueError):
        return {}
    return raw if isinstance(raw, dict) else {}


def _fsync_dir(path: Path) -> None:
    try:
        fd = os.open(str(path), os.O_RDONLY)
    except OSError:
        return
    try:
        os.fsync(fd)
    except OSError:
        pass
    finally:
        os.close(fd)


def write_json_atomic(path: Path, payload: Mapping[str, Any], *, mode: int = SECURE_FILE_MODE) -> None:
    """Write JSON durably: temp file, fsync, rename over target, fsync dir.

    Raises OSError when any step fails; the target is left untouched then.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_name(f".{path.name}.tmp.{os.getpid()}.{time.time_ns()}")
    data = json.dumps(dict(payload), ensure_ascii=False, indent=2).encode("utf-8")
    try:
        fd = os.open(str(tmp), os.O_WRONLY | os.O_CREAT | os.O_TRUNC, mode)
        try:
            os.write(fd, data)
            os.fsync(fd)
        finally:
            os.close(fd)
        os.replace(tmp, path)
        _fsync_dir(path.parent)
    finally:
        if tmp.exists():
            try:
                tmp.unlink()
            except OSError:
                pass


def compact_text(value: object, max_len: int = 240) -> str:
    text = re.sub(r"\s+", " ", str(value or "")).strip()
    if not text:
        return ""
    if len(text) <= max_len:
        return text
    return text[: max_len - 3] + "..."


def mask_sensitive(value: object, show_start: int = 3, show_end: int = 2) -> str:
    """Mask a secret for logging, e.g. ``abc...yz``."""
    if not value:
        return "(not set)"
    text = str(value)
    if len(text) <= show_start + show_end + 3:
        return "***"
    return f"{text[:show_start]}...{text[-show_end:]}"


def build_daemon_env(
    base_env: Mapping[str, str],
    allowlist: Iterable[str] = DAEMON_ENV_ALLOWLIST,
) -> dict[str, str]:
    """Copy only allowlisted variables; everything else (tokens, API keys) is dropped."""
    env: dict[str, str] = {}
    for name in allowlist:
        value = base_env.get(name)
        if value is not None:
            env[name] = str(value)
    return env


def next_poll_at(now_epoch: float, interval_sec: float, *, failed: bool, multiplier: int) -> float:
    if failed:
        return now_epoch + interval_sec * max(1, int(multiplier))
    return now_epoch


__all__ = [name for name in globals() if not name.startswith("__")]
