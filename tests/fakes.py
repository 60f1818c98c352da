"""Shared test doubles: HTTP session, tmux runner and platform poller."""

from __future__ import annotations

import subprocess
import sys
from pathlib import Path
from typing import Any

PROJECT_ROOT = Path(__file__).resolve().parents[1]
SRC_ROOT = PROJECT_ROOT / "src"
if str(SRC_ROOT) not in sys.path:
    sys.path.insert(0, str(SRC_ROOT))

import requests  # noqa: E402

from replyd.core.daemon.models import PlatformApiError, PlatformPoller, PollBatch, ReplyMessage  # noqa: E402

PROMPT_PANE = "some output\n\n> \n? for shortcuts\n"
BLOCKED_PANE = "Do you want to proceed?\n❯ 1. Yes\n  2. No\n"


class FakeResponse:
    def __init__(self, status_code: int = 200, payload: Any = None, *, bad_json: bool = False) -> None:
        self.status_code = status_code
        self._payload = payload
        self._bad_json = bad_json

    def json(self) -> Any:
        if self._bad_json:
            raise ValueError("not json")
        return self._payload


class FakeSession:
    """Replays queued responses and records every request."""

    def __init__(self, *responses: Any) -> None:
        self.responses = list(responses)
        self.calls: list[dict[str, Any]] = []

    def request(self, method: str, url: str, **kwargs: Any) -> FakeResponse:
        self.calls.append({"method": method, "url": url, **kwargs})
        if not self.responses:
            raise AssertionError(f"unexpected request: {method} {url}")
        item = self.responses.pop(0)
        if isinstance(item, BaseException):
            raise item
        return item


def connection_error() -> requests.ConnectionError:
    return requests.ConnectionError("connection refused")


class FakeTmuxRunner:
    """Stands in for ``subprocess.run`` when driving ``TmuxClient``."""

    def __init__(self, pane_text: str = PROMPT_PANE, *, panes: tuple[str, ...] = ("%1",)) -> None:
        self.pane_text = pane_text
        self.panes = set(panes)
        self.calls: list[list[str]] = []
        self.envs: list[Any] = []
        self.fail_send = False

    def sent_texts(self) -> list[str]:
        return [cmd[-1] for cmd in self.calls if cmd[1] == "send-keys" and "-l" in cmd]

    def __call__(self, cmd: list[str], **kwargs: Any) -> subprocess.CompletedProcess:
        self.calls.append(list(cmd))
        self.envs.append(kwargs.get("env"))
        verb = cmd[1]
        target = cmd[cmd.index("-t") + 1] if "-t" in cmd else ""
        if verb == "display-message":
            if target in self.panes:
                return subprocess.CompletedProcess(cmd, 0, stdout=f"{target}\n", stderr="")
            return subprocess.CompletedProcess(cmd, 1, stdout="", stderr="can't find pane")
        if verb == "capture-pane":
            if target in self.panes:
                return subprocess.CompletedProcess(cmd, 0, stdout=self.pane_text, stderr="")
            return subprocess.CompletedProcess(cmd, 1, stdout="", stderr="can't find pane")
        if verb == "send-keys":
            if self.fail_send:
                return subprocess.CompletedProcess(cmd, 1, stdout="", stderr="server exited")
            return subprocess.CompletedProcess(cmd, 0, stdout="", stderr="")
        return subprocess.CompletedProcess(cmd, 1, stdout="", stderr="unknown command")


def make_reply(
    platform: str,
    offset: int | str,
    text: str = "continue please",
    *,
    reply_to: str = "900",
    author: str = "42",
    chat: str = "-1001",
) -> ReplyMessage:
    return ReplyMessage(
        platform=platform,
        external_id=str(offset),
        chat_or_channel_id=chat,
        author_id=author,
        raw_text=text,
        reply_target_id=reply_to,
        timestamp=0.0,
        offset=offset,
    )


class FakePoller(PlatformPoller):
    """Returns queued batches in order; an exception in the queue is raised."""

    def __init__(self, platform: str, *batches: Any, enabled: bool = True) -> None:
        super().__init__(session=FakeSession())
        self.platform = platform
        self.batches = list(batches)
        self.enabled = enabled
        self.poll_calls = 0
        self.acked: list[ReplyMessage] = []
        self.fail_ack = False

    def is_enabled(self, config: Any) -> bool:
        return self.enabled

    def poll_new_messages(self, state: Any, config: Any) -> PollBatch:
        self.poll_calls += 1
        if not self.batches:
            return PollBatch(platform=self.platform)
        item = self.batches.pop(0)
        if isinstance(item, BaseException):
            raise item
        if isinstance(item, PollBatch):
            return item
        messages = list(item)
        cursor = messages[-1].offset if messages else None
        return PollBatch(platform=self.platform, messages=messages, cursor=cursor)

    def acknowledge(self, message: ReplyMessage, config: Any) -> None:
        if self.fail_ack:
            raise PlatformApiError(self.platform, "http 403")
        self.acked.append(message)
