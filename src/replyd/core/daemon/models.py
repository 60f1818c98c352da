from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Iterator, Union

import requests

if TYPE_CHECKING:
    from replyd.core.daemon.service_config import DaemonConfig
    from replyd.core.daemon.state_store import DaemonState

Offset = Union[str, int]


class PlatformApiError(RuntimeError):
    """Network, auth or payload failure while talking to a chat platform."""

    def __init__(self, platform: str, message: str) -> None:
        super().__init__(f"{platform}: {message}")
        self.platform = platform


@dataclass(frozen=True)
class ReplyMessage:
    platform: str
    external_id: str
    chat_or_channel_id: str
    author_id: str
    raw_text: str
    reply_target_id: str
    timestamp: float
    # Value persisted as the platform offset once this message is consumed.
    offset: Offset


@dataclass
class PollBatch:
    """Candidate replies from one poll plus the furthest offset the poll saw."""

    platform: str
    messages: list[ReplyMessage] = field(default_factory=list)
    cursor: Offset | None = None

    def __iter__(self) -> Iterator[ReplyMessage]:
        return iter(self.messages)

    def __len__(self) -> int:
        return len(self.messages)


class PlatformPoller(ABC):
    platform: str = ""

    def __init__(self, session: requests.Session | None = None, timeout_sec: float = 10.0) -> None:
        self.session = session or requests.Session()
        self.timeout_sec = float(timeout_sec)

    @abstractmethod
    def is_enabled(self, config: "DaemonConfig") -> bool:
        raise NotImplementedError

    @abstractmethod
    def poll_new_messages(self, state: "DaemonState", config: "DaemonConfig") -> PollBatch:
        """Return authorized replies newer than the stored offset, in arrival order.

        Raises PlatformApiError on network or API failures.
        """
        raise NotImplementedError

    def acknowledge(self, message: ReplyMessage, config: "DaemonConfig") -> None:
        """Tell the sender the reply was injected. Raises PlatformApiError."""

    def _request_json(
        self,
        method: str,
        url: str,
        *,
        headers: dict[str, str] | None = None,
        params: dict[str, object] | None = None,
        json_body: dict[str, object] | None = None,
    ) -> object:
        try:
            res = self.session.request(
                method,
                url,
                headers=headers,
                params=params,
                json=json_body,
                timeout=self.timeout_sec,
            )
        except requests.RequestException as exc:
            raise PlatformApiError(self.platform, f"request failed: {type(exc).__name__}") from exc
        if res.status_code == 204:
            return None
        if res.status_code >= 400:
            raise PlatformApiError(self.platform, f"http {res.status_code}")
        try:
            return res.json()
        except ValueError as exc:
            raise PlatformApiError(self.platform, "invalid json response") from exc


__all__ = ["Offset", "PlatformApiError", "PlatformPoller", "PollBatch", "ReplyMessage"]
