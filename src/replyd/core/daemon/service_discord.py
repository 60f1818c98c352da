from __future__ import annotations

from datetime import datetime
from urllib.parse import quote

from replyd.core.daemon import service_utils as _service_utils
from replyd.core.daemon.constants import (
    DISCORD_ACK_EMOJI,
    DISCORD_API_BASE,
    DISCORD_FETCH_LIMIT,
    PLATFORM_DISCORD,
)
from replyd.core.daemon.models import PlatformApiError, PlatformPoller, PollBatch, ReplyMessage
from replyd.core.daemon.service_config import DaemonConfig
from replyd.core.daemon.state_store import DaemonState


def _snowflake(value: object) -> int | None:
    text = _service_utils.normalize_id(value)
    if not text.isdigit():
        return None
    return int(text)


def _parse_timestamp(value: object) -> float:
    text = str(value or "").strip()
    if not text:
        return 0.0
    try:
        return datetime.fromisoformat(text.replace("Z", "+00:00")).timestamp()
    except ValueError:
        return 0.0


class DiscordPoller(PlatformPoller):
    """Reads the bound channel over REST and keeps replies from authorized users."""

    platform = PLATFORM_DISCORD

    def __init__(self, session=None, timeout_sec: float = 10.0, api_base: str = DISCORD_API_BASE) -> None:
        super().__init__(session=session, timeout_sec=timeout_sec)
        self.api_base = api_base.rstrip("/")

    @staticmethod
    def _headers(config: DaemonConfig) -> dict[str, str]:
        return {"Authorization": f"Bot {config.discord_bot_token}"}

    def _messages_url(self, config: DaemonConfig) -> str:
        return f"{self.api_base}/channels/{config.discord_channel_id}/messages"

    def is_enabled(self, config: DaemonConfig) -> bool:
        return config.discord_enabled

    def _fetch(self, config: DaemonConfig, params: dict[str, object]) -> list[dict]:
        payload = self._request_json("GET", self._messages_url(config), headers=self._headers(config), params=params)
        if not isinstance(payload, list):
            raise PlatformApiError(self.platform, "channel messages: unexpected payload")
        return [row for row in payload if isinstance(row, dict) and _snowflake(row.get("id")) is not None]

    def poll_new_messages(self, state: DaemonState, config: DaemonConfig) -> PollBatch:
        batch = PollBatch(platform=self.platform)
        if not self.is_enabled(config):
            return batch
        last_id = _snowflake(state.discord_last_message_id)
        if last_id is None:
            # First run: pin the cursor to the newest message so history is never replayed.
            newest = self._fetch(config, {"limit": 1})
            if newest:
                batch.cursor = str(newest[0]["id"])
            return batch

        rows = self._fetch(config, {"limit": DISCORD_FETCH_LIMIT, "after": str(last_id)})
        rows.sort(key=lambda row: int(row["id"]))
        for row in rows:
            message_id = int(row["id"])
            if message_id <= last_id:
                continue
            if batch.cursor is None or message_id > int(str(batch.cursor)):
                batch.cursor = str(message_id)
            message = self._to_reply(row, config)
            if message is not None:
                batch.messages.append(message)
        return batch

    def _to_reply(self, row: dict, config: DaemonConfig) -> ReplyMessage | None:
        reference = row.get("message_reference")
        if not isinstance(reference, dict):
            return None
        target_id = _service_utils.normalize_id(reference.get("message_id"))
        if not target_id:
            return None
        author = row.get("author") if isinstance(row.get("author"), dict) else {}
        author_id = _service_utils.normalize_id(author.get("id"))
        if not author_id or author_id not in config.authorized_discord_user_ids:
            return None
        content = row.get("content")
        if not isinstance(content, str) or not content.strip():
            return None
        message_id = str(row["id"])
        return ReplyMessage(
            platform=self.platform,
            external_id=message_id,
            chat_or_channel_id=_service_utils.normalize_id(row.get("channel_id")) or config.discord_channel_id,
            author_id=author_id,
            raw_text=content,
            reply_target_id=target_id,
            timestamp=_parse_timestamp(row.get("timestamp")),
            offset=message_id,
        )

    def acknowledge(self, message: ReplyMessage, config: DaemonConfig) -> None:
        url = (
            f"{self.api_base}/channels/{message.chat_or_channel_id}/messages/{message.external_id}"
            f"/reactions/{quote(DISCORD_ACK_EMOJI)}/@me"
        )
        self._request_json("PUT", url, headers=self._headers(config))


__all__ = ["DiscordPoller"]
