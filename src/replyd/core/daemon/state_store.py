"""Durable delivery cursor for the reply listener.

The on-disk JSON record is the single source of truth for which replies
were already consumed. An offset is written (fsync + atomic rename) before
the matching injection is attempted, so a crash in between drops the reply
instead of typing it twice.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from replyd.core.daemon import service_utils as _service_utils
from replyd.core.daemon.constants import PLATFORM_DISCORD, PLATFORM_TELEGRAM
from replyd.core.daemon.models import Offset


class DeliveryStateWriteError(OSError):
    """The offset could not be persisted; the message is not consumed."""


class DeliveryStateReadError(OSError):
    """The state file exists but cannot be read; offsets are unknown."""


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="seconds")


@dataclass(frozen=True)
class DaemonState:
    discord_last_message_id: str | None = None
    telegram_last_update_id: int | None = None
    error_count: int = 0
    started_at: str = ""
    last_poll_at: str | None = None
    messages_injected: int = 0
    last_error: str | None = None

    def offset_for(self, platform: str) -> Offset | None:
        if platform == PLATFORM_DISCORD:
            return self.discord_last_message_id
        if platform == PLATFORM_TELEGRAM:
            return self.telegram_last_update_id
        raise ValueError(f"unknown platform: {platform}")

    def to_payload(self) -> dict[str, Any]:
        return {
            "discordLastMessageId": self.discord_last_message_id,
            "telegramLastUpdateId": self.telegram_last_update_id,
            "errorCount": self.error_count,
            "startedAt": self.started_at,
            "lastPollAt": self.last_poll_at,
            "messagesInjected": self.messages_injected,
            "lastError": self.last_error,
        }

    @classmethod
    def from_payload(cls, raw: dict[str, Any]) -> "DaemonState":
        # Snowflakes are compared numerically, so anything but digits is dropped.
        discord_id = _service_utils.normalize_id(raw.get("discordLastMessageId"))
        discord_id = discord_id if discord_id.isdigit() else None
        telegram_raw = raw.get("telegramLastUpdateId")
        telegram_id: int | None
        if isinstance(telegram_raw, bool) or telegram_raw is None:
            telegram_id = None
        else:
            try:
                telegram_id = int(telegram_raw)
            except (TypeError, ValueError):
                telegram_id = None
        last_poll = raw.get("lastPollAt")
        last_error = raw.get("lastError")
        return cls(
            discord_last_message_id=discord_id or None,
            telegram_last_update_id=telegram_id,
            error_count=_service_utils.coerce_int(raw.get("errorCount"), 0, minimum=0),
            started_at=str(raw.get("startedAt") or ""),
            last_poll_at=str(last_poll) if last_poll else None,
            messages_injected=_service_utils.coerce_int(raw.get("messagesInjected"), 0, minimum=0),
            last_error=str(last_error) if last_error else None,
        )


def offset_is_newer(platform: str, candidate: Offset | None, current: Offset | None) -> bool:
    if candidate is None:
        return False
    if current is None:
        return True
    if platform == PLATFORM_DISCORD:
        # Discord snowflakes grow with time; compare numerically.
        return int(str(candidate)) > int(str(current))
    return int(candidate) > int(current)


class DeliveryStateStore:
    def __init__(self, path: Path) -> None:
        self.path = path
        self._state: DaemonState | None = None
        self._dirty = False

    def _load(self) -> DaemonState:
        if not self.path.exists():
            return DaemonState()
        try:
            raw = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as exc:
            raise DeliveryStateReadError(f"state file unreadable: {self.path}: {type(exc).__name__}") from exc
        if not isinstance(raw, dict):
            raise DeliveryStateReadError(f"state file is not a JSON object: {self.path}")
        return DaemonState.from_payload(raw)

    def read_state(self) -> DaemonState:
        """Return the cached state, loading it on first use.

        Raises DeliveryStateReadError when the file exists but cannot be
        parsed. Starting from empty offsets would replay delivered replies.
        """
        if self._state is None:
            self._state = self._load()
        return self._state

    def _write(self, state: DaemonState) -> None:
        try:
            _service_utils.write_json_atomic(self.path, state.to_payload())
        except OSError as exc:
            raise DeliveryStateWriteError(exc.errno, f"state write failed: {self.path}: {exc.strerror or exc}") from exc
        self._state = state
        self._dirty = False

    def mark_started(self) -> DaemonState:
        """Create the record on first start and stamp ``startedAt``."""
        state = replace(self.read_state(), started_at=_utc_now_iso())
        self._write(state)
        return state

    def advance_offset(self, platform: str, new_id: Offset) -> DaemonState:
        """Durably persist ``new_id`` as the platform offset.

        Raises DeliveryStateWriteError; in that case the in-memory state is
        unchanged and the message must be treated as not consumed.
        """
        current = self.read_state()
        if platform == PLATFORM_DISCORD:
            updated = replace(current, discord_last_message_id=str(new_id))
        elif platform == PLATFORM_TELEGRAM:
            updated = replace(current, telegram_last_update_id=int(new_id))
        else:
            raise ValueError(f"unknown platform: {platform}")
        self._write(updated)
        return updated

    def record_error(self, message: str = "") -> DaemonState:
        current = self.read_state()
        updated = replace(
            current,
            error_count=current.error_count + 1,
            last_error=_service_utils.compact_text(message, max_len=200) or current.last_error,
        )
        try:
            self._write(updated)
        except DeliveryStateWriteError:
            # Counters are best effort; keep them in memory until the next flush.
            self._state = updated
            self._dirty = True
        return updated

    def record_injected(self) -> DaemonState:
        current = self.read_state()
        self._state = replace(current, messages_injected=current.messages_injected + 1)
        self._dirty = True
        return self._state

    def record_poll(self) -> DaemonState:
        current = self.read_state()
        self._state = replace(current, last_poll_at=_utc_now_iso())
        self._dirty = True
        return self._state

    def flush(self) -> bool:
        """Write pending counter updates; returns False when nothing was written."""
        if not self._dirty or self._state is None:
            return False
        self._write(self._state)
        return True


__all__ = [
    "DaemonState",
    "DeliveryStateReadError",
    "DeliveryStateStore",
    "DeliveryStateWriteError",
    "offset_is_newer",
]
