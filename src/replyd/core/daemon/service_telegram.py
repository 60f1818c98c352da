from __future__ import annotations

import json
from typing import Any

from replyd.core.daemon import service_utils as _service_utils
from replyd.core.daemon.constants import PLATFORM_TELEGRAM, TELEGRAM_ACK_TEXT, TELEGRAM_API_BASE
from replyd.core.daemon.models import PlatformApiError, PlatformPoller, PollBatch, ReplyMessage
from replyd.core.daemon.service_config import DaemonConfig
from replyd.core.daemon.state_store import DaemonState


class TelegramPoller(PlatformPoller):
    """Short-polls ``getUpdates`` and keeps replies from authorized users in the bound chat."""

    platform = PLATFORM_TELEGRAM

    def __init__(self, session=None, timeout_sec: float = 10.0, api_base: str = TELEGRAM_API_BASE) -> None:
        super().__init__(session=session, timeout_sec=timeout_sec)
        self.api_base = api_base.rstrip("/")

    def _url(self, config: DaemonConfig, method: str) -> str:
        return f"{self.api_base}/bot{config.telegram_bot_token}/{method}"

    def _call(self, config: DaemonConfig, method: str, **kwargs: Any) -> Any:
        payload = self._request_json("POST" if "json_body" in kwargs else "GET", self._url(config, method), **kwargs)
        if not isinstance(payload, dict):
            raise PlatformApiError(self.platform, f"{method}: unexpected payload")
        if not payload.get("ok"):
            description = _service_utils.compact_text(payload.get("description", "unknown error"), max_len=120)
            raise PlatformApiError(self.platform, f"{method}: {description}")
        return payload.get("result")

    def is_enabled(self, config: DaemonConfig) -> bool:
        return config.telegram_enabled

    def poll_new_messages(self, state: DaemonState, config: DaemonConfig) -> PollBatch:
        batch = PollBatch(platform=self.platform)
        if not self.is_enabled(config):
            return batch
        params: dict[str, object] = {"timeout": 0, "allowed_updates": json.dumps(["message"])}
        last_update_id = state.telegram_last_update_id
        if last_update_id is not None:
            params["offset"] = int(last_update_id) + 1
        result = self._call(config, "getUpdates", params=params)
        if not isinstance(result, list):
            raise PlatformApiError(self.platform, "getUpdates: result is not a list")

        updates = [u for u in result if isinstance(u, dict) and isinstance(u.get("update_id"), int)]
        updates.sort(key=lambda u: int(u["update_id"]))
        for update in updates:
            update_id = int(update["update_id"])
            if batch.cursor is None or update_id > int(batch.cursor):
                batch.cursor = update_id
            if last_update_id is not None and update_id <= int(last_update_id):
                continue
            message = self._to_reply(update_id, update.get("message"), config)
            if message is not None:
                batch.messages.append(message)
        return batch

    def _to_reply(self, update_id: int, message: object, config: DaemonConfig) -> ReplyMessage | None:
        if not isinstance(message, dict):
            return None
        reply_to = message.get("reply_to_message")
        if not isinstance(reply_to, dict) or reply_to.get("message_id") is None:
            return None
        chat = message.get("chat") if isinstance(message.get("chat"), dict) else {}
        chat_id = _service_utils.normalize_id(chat.get("id"))
        if not chat_id or chat_id != config.telegram_chat_id:
            return None
        sender = message.get("from") if isinstance(message.get("from"), dict) else {}
        author_id = _service_utils.normalize_id(sender.get("id"))
        if not author_id or author_id not in config.authorized_telegram_user_ids:
            return None
        text = message.get("text")
        if not isinstance(text, str) or not text.strip():
            return None
        return ReplyMessage(
            platform=self.platform,
            external_id=_service_utils.normalize_id(message.get("message_id")),
            chat_or_channel_id=chat_id,
            author_id=author_id,
            raw_text=text,
            reply_target_id=_service_utils.normalize_id(reply_to.get("message_id")),
            timestamp=float(message.get("date") or 0),
            offset=update_id,
        )

    def acknowledge(self, message: ReplyMessage, config: DaemonConfig) -> None:
        body: dict[str, object] = {"chat_id": message.chat_or_channel_id, "text": TELEGRAM_ACK_TEXT}
        if message.external_id:
            body["reply_to_message_id"] = int(message.external_id)
        self._call(config, "sendMessage", json_body=body)

    def get_me(self, config: DaemonConfig) -> dict[str, Any]:
        result = self._call(config, "getMe")
        return result if isinstance(result, dict) else {}

    def get_raw_updates(self, config: DaemonConfig, offset: int | None = None) -> list[dict[str, Any]]:
        params: dict[str, object] = {"timeout": 1}
        if offset is not None:
            params["offset"] = offset
        result = self._call(config, "getUpdates", params=params)
        if not isinstance(result, list):
            return []
        return [u for u in result if isinstance(u, dict)]


__all__ = ["TelegramPoller"]
