from __future__ import annotations

import json
import os
import stat
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any

from replyd.core.daemon import constants as _constants
from replyd.core.daemon import service_utils as _service_utils


def _config_int(raw: dict[str, Any], key: str, default: int, minimum: int, warnings: list[str]) -> int:
    value = raw.get(key)
    result = _service_utils.coerce_int(value, default, minimum=minimum)
    if value is not None and str(result) != str(value).strip():
        warnings.append(f"invalid {key}={value!r}; using {result}")
    return result


@dataclass(slots=True)
class DaemonConfig:
    telegram_bot_token: str = ""
    telegram_chat_id: str = ""
    authorized_telegram_user_ids: frozenset[str] = field(default_factory=frozenset)
    discord_bot_token: str = ""
    discord_channel_id: str = ""
    authorized_discord_user_ids: frozenset[str] = field(default_factory=frozenset)
    poll_interval_ms: int = _constants.DEFAULT_POLL_INTERVAL_MS
    max_per_minute: int = _constants.DEFAULT_MAX_PER_MINUTE
    include_prefix: bool = _constants.DEFAULT_INCLUDE_PREFIX
    max_message_length: int = _constants.DEFAULT_MAX_MESSAGE_LENGTH
    default_pane_target: str = ""
    ack_replies: bool = _constants.DEFAULT_ACK_REPLIES
    request_timeout_sec: float = _constants.DEFAULT_REQUEST_TIMEOUT_SEC

    @property
    def poll_interval_sec(self) -> float:
        return self.poll_interval_ms / 1000.0

    @property
    def telegram_enabled(self) -> bool:
        return bool(self.telegram_bot_token and self.telegram_chat_id and self.authorized_telegram_user_ids)

    @property
    def discord_enabled(self) -> bool:
        return bool(self.discord_bot_token and self.discord_channel_id and self.authorized_discord_user_ids)

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> tuple["DaemonConfig", list[str]]:
        warnings: list[str] = []
        poll_interval_ms = _config_int(
            raw,
            "pollIntervalMs",
            _constants.DEFAULT_POLL_INTERVAL_MS,
            _constants.MIN_POLL_INTERVAL_MS,
            warnings,
        )
        max_per_minute = _config_int(raw, "maxPerMinute", _constants.DEFAULT_MAX_PER_MINUTE, 1, warnings)
        max_message_length = _config_int(
            raw,
            "maxMessageLength",
            _constants.DEFAULT_MAX_MESSAGE_LENGTH,
            1,
            warnings,
        )
        request_timeout_sec = _service_utils.coerce_float(
            raw.get("requestTimeoutSec"),
            _constants.DEFAULT_REQUEST_TIMEOUT_SEC,
            minimum=1.0,
        )
        for key in ("authorizedTelegramUserIds", "authorizedDiscordUserIds"):
            if key in raw and not isinstance(raw.get(key), list):
                warnings.append(f"{key} must be a list; platform disabled")
        config = cls(
            telegram_bot_token=_service_utils.normalize_id(raw.get("telegramBotToken")),
            telegram_chat_id=_service_utils.normalize_id(raw.get("telegramChatId")),
            authorized_telegram_user_ids=_service_utils.normalize_id_list(raw.get("authorizedTelegramUserIds")),
            discord_bot_token=_service_utils.normalize_id(raw.get("discordBotToken")),
            discord_channel_id=_service_utils.normalize_id(raw.get("discordChannelId")),
            authorized_discord_user_ids=_service_utils.normalize_id_list(raw.get("authorizedDiscordUserIds")),
            poll_interval_ms=poll_interval_ms,
            max_per_minute=max_per_minute,
            include_prefix=_service_utils.coerce_bool(raw.get("includePrefix"), _constants.DEFAULT_INCLUDE_PREFIX),
            max_message_length=max_message_length,
            default_pane_target=_service_utils.normalize_id(raw.get("defaultPaneTarget")),
            ack_replies=_service_utils.coerce_bool(raw.get("ackReplies"), _constants.DEFAULT_ACK_REPLIES),
            request_timeout_sec=request_timeout_sec,
        )
        return config, warnings

    @classmethod
    def from_file(cls, path: Path) -> tuple["DaemonConfig", list[str]]:
        warnings: list[str] = []
        if not path.exists():
            config, _ = cls.from_dict({})
            return config, [f"config file missing: {path}; all platforms disabled"]
        warnings.extend(_harden_config_permissions(path))
        try:
            raw = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as exc:
            config, _ = cls.from_dict({})
            return config, [*warnings, f"config file unreadable: {path}: {type(exc).__name__}"]
        if not isinstance(raw, dict):
            config, _ = cls.from_dict({})
            return config, [*warnings, f"config file is not a JSON object: {path}"]
        config, parse_warnings = cls.from_dict(raw)
        return config, [*warnings, *parse_warnings]

    def as_dict(self) -> dict[str, Any]:
        return asdict(self)

    def masked_summary(self) -> dict[str, Any]:
        return {
            "telegramBotToken": _service_utils.mask_sensitive(self.telegram_bot_token),
            "telegramChatId": self.telegram_chat_id,
            "authorizedTelegramUserIds": sorted(self.authorized_telegram_user_ids),
            "discordBotToken": _service_utils.mask_sensitive(self.discord_bot_token),
            "discordChannelId": self.discord_channel_id,
            "authorizedDiscordUserIds": sorted(self.authorized_discord_user_ids),
            "pollIntervalMs": self.poll_interval_ms,
            "maxPerMinute": self.max_per_minute,
            "includePrefix": self.include_prefix,
            "maxMessageLength": self.max_message_length,
            "defaultPaneTarget": self.default_pane_target or None,
            "ackReplies": self.ack_replies,
            "requestTimeoutSec": self.request_timeout_sec,
            "telegramEnabled": self.telegram_enabled,
            "discordEnabled": self.discord_enabled,
        }


def _harden_config_permissions(path: Path) -> list[str]:
    try:
        mode = stat.S_IMODE(path.stat().st_mode)
    except OSError:
        return []
    if not mode & 0o077:
        return []
    try:
        os.chmod(path, _constants.SECURE_FILE_MODE)
    except OSError as exc:
        return [f"config file {path} has mode {oct(mode)} and chmod failed: {exc}"]
    return [f"config file {path} had mode {oct(mode)}; tightened to {oct(_constants.SECURE_FILE_MODE)}"]


def config_template() -> dict[str, Any]:
    return {
        "telegramBotToken": "",
        "telegramChatId": "",
        "authorizedTelegramUserIds": [],
        "discordBotToken": "",
        "discordChannelId": "",
        "authorizedDiscordUserIds": [],
        "pollIntervalMs": _constants.DEFAULT_POLL_INTERVAL_MS,
        "maxPerMinute": _constants.DEFAULT_MAX_PER_MINUTE,
        "includePrefix": _constants.DEFAULT_INCLUDE_PREFIX,
        "maxMessageLength": _constants.DEFAULT_MAX_MESSAGE_LENGTH,
        "defaultPaneTarget": None,
        "ackReplies": _constants.DEFAULT_ACK_REPLIES,
        "requestTimeoutSec": _constants.DEFAULT_REQUEST_TIMEOUT_SEC,
    }


def write_config_template(path: Path) -> None:
    _service_utils.write_json_atomic(path, config_template(), mode=_constants.SECURE_FILE_MODE)
    os.chmod(path, _constants.SECURE_FILE_MODE)


__all__ = ["DaemonConfig", "config_template", "write_config_template"]
