"""Shared constants for daemon/service modules."""

from __future__ import annotations

SECURE_FILE_MODE = 0o600
SECURE_DIR_MODE = 0o700

DEFAULT_STATE_DIRNAME = ".replyd"
PID_FILENAME = "reply-listener.pid"
LOCK_FILENAME = "reply-listener.lock"
STATE_FILENAME = "reply-listener-state.json"
CONFIG_FILENAME = "reply-listener-config.json"
REGISTRY_FILENAME = "reply-session-registry.jsonl"
LOG_FILENAME = "reply-listener.log"
LOG_COMPONENT = "reply-listener"
LOG_ROTATION = "00:00"
LOG_RETENTION = "7 days"

PLATFORM_DISCORD = "discord"
PLATFORM_TELEGRAM = "telegram"
PLATFORM_ORDER = (PLATFORM_DISCORD, PLATFORM_TELEGRAM)

DEFAULT_POLL_INTERVAL_MS = 3000
MIN_POLL_INTERVAL_MS = 500
DEFAULT_MAX_PER_MINUTE = 10
DEFAULT_INCLUDE_PREFIX = True
DEFAULT_MAX_MESSAGE_LENGTH = 500
DEFAULT_ACK_REPLIES = True
DEFAULT_REQUEST_TIMEOUT_SEC = 10.0
ERROR_BACKOFF_MULTIPLIER = 2

RATE_WINDOW_SEC = 60.0
CONFIDENCE_THRESHOLD = 0.4
PANE_CAPTURE_LINES = 40
LOG_PREVIEW_CHARS = 50

REGISTRY_TTL_SEC = 24 * 60 * 60
REGISTRY_PRUNE_INTERVAL_SEC = 60 * 60

# Minimal environment passed to anything the daemon shells out to.
DAEMON_ENV_ALLOWLIST = ("PATH", "HOME", "PWD", "TMUX", "TMUX_PANE", "TERM")

TELEGRAM_API_BASE = "https://api.telegram.org"
DISCORD_API_BASE = "https://discord.com/api/v10"
DISCORD_FETCH_LIMIT = 50
DISCORD_ACK_EMOJI = "✅"
TELEGRAM_ACK_TEXT = "Injected into terminal session."

ASSISTANT_PROMPT_PATTERNS = (
    r"^\s*[>❯]\s",
    r"^\s*[>❯]\s*$",
    r"\? for shortcuts",
    r"esc to interrupt",
    r"\bClaude Code\b",
    r"╰─|╭─",
)
RATE_LIMIT_PATTERNS = (
    r"rate.?limit",
    r"usage limit",
    r"limit reached",
    r"too many requests",
    r"try again (?:in|later)",
)
BLOCKED_PATTERNS = (
    r"do you want to (?:proceed|continue|make this edit|run)",
    r"\(y/n\)",
    r"\[y/n\]",
    r"press enter to continue",
    r"waiting for (?:confirmation|approval)",
    r"^\s*❯?\s*\d\.\s+(?:yes|no)\b",
)

__all__ = [name for name in globals() if not name.startswith("__")]
