from __future__ import annotations

from pathlib import Path

from loguru import logger as _loguru_logger

from replyd.core.daemon.constants import LOG_RETENTION, LOG_ROTATION

_LOGURU_FILE_SINKS: dict[str, int] = {}


def _ensure_daemon_log_sink(log_path: Path, component: str) -> None:
    path_key = f"{str(log_path)}|{component}"
    if path_key in _LOGURU_FILE_SINKS:
        return
    try:
        log_path.parent.mkdir(parents=True, exist_ok=True)
        sink_id = _loguru_logger.add(
            str(log_path),
            level="INFO",
            format=f"[{component}] [{{time:YYYY-MM-DD HH:mm:ss}}] {{level}} {{message}}",
            filter=lambda record: record["extra"].get("component") == component,
            rotation=LOG_ROTATION,
            retention=LOG_RETENTION,
            enqueue=True,
            backtrace=False,
            diagnose=False,
        )
        _LOGURU_FILE_SINKS[path_key] = sink_id
    except (OSError, ValueError):
        _LOGURU_FILE_SINKS[path_key] = -1


def remove_daemon_log_sinks() -> None:
    for path_key, sink_id in list(_LOGURU_FILE_SINKS.items()):
        if sink_id >= 0:
            try:
                _loguru_logger.remove(sink_id)
            except ValueError:
                pass
        _LOGURU_FILE_SINKS.pop(path_key, None)


def _resolve_level(message_text: str, level: str) -> str:
    level_name = str(level).upper()
    if message_text.startswith("ERROR:"):
        return "ERROR"
    if message_text.startswith("WARN:"):
        return "WARNING"
    if message_text.startswith("INFO:"):
        return "INFO"
    return level_name


def _log_with_loguru(
    message: str,
    *,
    log_path: Path | None,
    component: str = "reply-listener",
    level: str = "INFO",
) -> None:
    message_text = str(message).strip()
    if not message_text:
        return
    level_name = _resolve_level(message_text, level)
    if log_path is not None:
        _ensure_daemon_log_sink(log_path=log_path, component=component)
    _loguru_logger.bind(component=component).log(level_name, message_text)


__all__ = ["_ensure_daemon_log_sink", "_log_with_loguru", "remove_daemon_log_sinks"]
