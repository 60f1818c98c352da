"""Map outbound notification message ids to the tmux pane that sent them.

The notification hook registers ``(platform, message_id) -> pane`` when it
posts; the daemon looks the pane up from the id a reply points at.
"""

from __future__ import annotations

import json
import os
import time
from contextlib import contextmanager
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Iterator

import fcntl

from replyd.core.daemon.constants import REGISTRY_TTL_SEC, SECURE_FILE_MODE


@dataclass(frozen=True)
class RegistryEntry:
    platform: str
    message_id: str
    pane_id: str
    session_id: str = ""
    created_at: float = 0.0

    def to_payload(self) -> dict[str, object]:
        payload = asdict(self)
        return {
            "platform": payload["platform"],
            "messageId": payload["message_id"],
            "paneId": payload["pane_id"],
            "sessionId": payload["session_id"],
            "createdAt": payload["created_at"],
        }

    @classmethod
    def from_payload(cls, raw: dict) -> "RegistryEntry | None":
        platform = str(raw.get("platform") or "").strip()
        message_id = str(raw.get("messageId") or "").strip()
        pane_id = str(raw.get("paneId") or "").strip()
        if not platform or not message_id or not pane_id:
            return None
        try:
            created_at = float(raw.get("createdAt") or 0.0)
        except (TypeError, ValueError):
            created_at = 0.0
        return cls(
            platform=platform,
            message_id=message_id,
            pane_id=pane_id,
            session_id=str(raw.get("sessionId") or ""),
            created_at=created_at,
        )


class SessionRegistry:
    def __init__(self, path: Path, ttl_sec: float = REGISTRY_TTL_SEC) -> None:
        self.path = path
        self.ttl_sec = float(ttl_sec)

    @contextmanager
    def _locked(self) -> Iterator[int]:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd = os.open(str(self.path), os.O_RDWR | os.O_CREAT | os.O_APPEND, SECURE_FILE_MODE)
        try:
            fcntl.flock(fd, fcntl.LOCK_EX)
            yield fd
        finally:
            try:
                fcntl.flock(fd, fcntl.LOCK_UN)
            finally:
                os.close(fd)

    def _read_entries(self) -> list[RegistryEntry]:
        if not self.path.exists():
            return []
        entries: list[RegistryEntry] = []
        try:
            lines = self.path.read_text(encoding="utf-8").splitlines()
        except OSError:
            return []
        for line in lines:
            line = line.strip()
            if not line:
                continue
            try:
                raw = json.loads(line)
            except ValueError:
                continue
            if isinstance(raw, dict):
                entry = RegistryEntry.from_payload(raw)
                if entry is not None:
                    entries.append(entry)
        return entries

    def register(self, platform: str, message_id: str, pane_id: str, session_id: str = "") -> RegistryEntry:
        entry = RegistryEntry(
            platform=str(platform).strip(),
            message_id=str(message_id).strip(),
            pane_id=str(pane_id).strip(),
            session_id=str(session_id or "").strip(),
            created_at=time.time(),
        )
        if not entry.platform or not entry.message_id or not entry.pane_id:
            raise ValueError("platform, message_id and pane_id are required")
        line = json.dumps(entry.to_payload(), ensure_ascii=False) + "\n"
        with self._locked() as fd:
            os.write(fd, line.encode("utf-8"))
        return entry

    def lookup(self, platform: str, message_id: str, now: float | None = None) -> RegistryEntry | None:
        if not message_id:
            return None
        current = time.time() if now is None else now
        for entry in reversed(self._read_entries()):
            if entry.platform != platform or entry.message_id != str(message_id):
                continue
            if current - entry.created_at > self.ttl_sec:
                return None
            return entry
        return None

    def prune(self, now: float | None = None) -> int:
        """Drop expired entries; returns how many were removed."""
        current = time.time() if now is None else now
        with self._locked() as fd:
            entries = self._read_entries()
            kept = [e for e in entries if current - e.created_at <= self.ttl_sec]
            removed = len(entries) - len(kept)
            if removed:
                data = "".join(json.dumps(e.to_payload(), ensure_ascii=False) + "\n" for e in kept)
                os.ftruncate(fd, 0)
                os.write(fd, data.encode("utf-8"))
        return removed


__all__ = ["RegistryEntry", "SessionRegistry"]
