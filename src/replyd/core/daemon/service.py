"Reply listener poll loop and daemon lifecycle."
from __future__ import annotations

import enum
import os
import signal
import time
from typing import Callable, Mapping, Sequence

from replyd.core.daemon import service_utils as _service_utils
from replyd.core.daemon.constants import (
    ERROR_BACKOFF_MULTIPLIER,
    LOG_COMPONENT,
    LOG_PREVIEW_CHARS,
    PLATFORM_ORDER,
    REGISTRY_PRUNE_INTERVAL_SEC,
)
from replyd.core.daemon.locking import DaemonAlreadyRunning, _ProcessFileLock
from replyd.core.daemon.models import PlatformApiError, PlatformPoller, ReplyMessage
from replyd.core.daemon.pane import analyze_pane
from replyd.core.daemon.rate_limit import SlidingWindowRateLimiter
from replyd.core.daemon.runtime_shared import _log_with_loguru
from replyd.core.daemon.sanitize import sanitize_reply_text, truncate_reply_text
from replyd.core.daemon.service_config import DaemonConfig
from replyd.core.daemon.service_discord import DiscordPoller
from replyd.core.daemon.service_telegram import TelegramPoller
from replyd.core.daemon.session_registry import SessionRegistry
from replyd.core.daemon.state_store import (
    DeliveryStateReadError,
    DeliveryStateStore,
    DeliveryStateWriteError,
    offset_is_newer,
)
from replyd.core.daemon.tmux import InjectionError, TmuxClient, format_injection_text
from replyd.runtime import ReplyListenerPaths


class LifecycleState(str, enum.Enum):
    STOPPED = "stopped"
    STARTING = "starting"
    RUNNING = "running"
    STOPPING = "stopping"


def _default_pollers(config: DaemonConfig) -> list[PlatformPoller]:
    return [
        DiscordPoller(timeout_sec=config.request_timeout_sec),
        TelegramPoller(timeout_sec=config.request_timeout_sec),
    ]


class ReplyListenerService:
    def __init__(
        self,
        paths: ReplyListenerPaths,
        config: DaemonConfig | None = None,
        *,
        pollers: Sequence[PlatformPoller] | None = None,
        tmux: TmuxClient | None = None,
        store: DeliveryStateStore | None = None,
        registry: SessionRegistry | None = None,
        rate_limiter: SlidingWindowRateLimiter | None = None,
        base_env: Mapping[str, str] | None = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.paths = paths
        init_warnings: list[str] = []
        if config is None:
            config, init_warnings = DaemonConfig.from_file(paths.config_file)
        self.config = config
        self.env = _service_utils.build_daemon_env(os.environ if base_env is None else base_env)
        self.tmux = tmux or TmuxClient(self.env)
        order = {name: idx for idx, name in enumerate(PLATFORM_ORDER)}
        self.pollers = sorted(
            list(pollers) if pollers is not None else _default_pollers(config),
            key=lambda p: order.get(p.platform, len(order)),
        )
        self.store = store or DeliveryStateStore(paths.state_file)
        self.registry = registry or SessionRegistry(paths.registry_file)
        self.rate_limiter = rate_limiter or SlidingWindowRateLimiter(config.max_per_minute)
        self.clock = clock
        self.sleep = sleep
        self.state = LifecycleState.STOPPED
        self.stop_requested = False
        self._next_poll_at: dict[str, float] = {}
        self._last_registry_prune = float("-inf")
        self._process_lock: _ProcessFileLock | None = None
        for message in init_warnings:
            self._log(f"WARN: {message}")

    def _log(self, message: str, level: str = "INFO") -> None:
        _log_with_loguru(message, log_path=self.paths.log_file, component=LOG_COMPONENT, level=level)

    def _acquire_lock(self) -> None:
        if self._process_lock is None:
            self._process_lock = _ProcessFileLock(
                lock_file=self.paths.lock_file,
                pid_file=self.paths.pid_file,
                owner_label="Reply listener",
            )
        self._process_lock.acquire()

    def _release_lock(self) -> None:
        if self._process_lock is not None:
            self._process_lock.release()
            self._process_lock = None

    def _handle_signal(self, signum: int, _frame: object) -> None:
        self._log(f"Signal received: {signum}")
        self.stop_requested = True
        if self.state == LifecycleState.RUNNING:
            self.state = LifecycleState.STOPPING

    def enabled_pollers(self) -> list[PlatformPoller]:
        return [p for p in self.pollers if p.is_enabled(self.config)]

    def _resolve_pane(self, message: ReplyMessage) -> str:
        entry = self.registry.lookup(message.platform, message.reply_target_id)
        if entry is not None:
            return entry.pane_id
        return self.config.default_pane_target

    def _record_error(self, message: str) -> None:
        self.store.record_error(message)

    def _advance(self, message: ReplyMessage) -> bool:
        try:
            self.store.advance_offset(message.platform, message.offset)
        except DeliveryStateWriteError as exc:
            self._log(
                f"ERROR: offset_write_failed platform={message.platform} "
                f"offset={message.offset} err={exc}; message left for next poll"
            )
            self._record_error(f"offset write failed: {exc}")
            return False
        return True

    def _process_message(self, poller: PlatformPoller, message: ReplyMessage) -> bool:
        """Handle one candidate; returns False when its offset could not be persisted."""
        platform = message.platform
        if not self.rate_limiter.admit(self.clock()):
            self._log(f"reply_rate_limited platform={platform} id={message.external_id}")
            # Dropped replies are consumed too.
            return self._advance(message)

        if not self._advance(message):
            # The reply will be fetched again; it should not cost a second slot.
            self.rate_limiter.refund()
            return False

        target = self._resolve_pane(message)
        if not target:
            self._log(
                f"WARN: reply_unroutable platform={platform} id={message.external_id} "
                f"reply_to={message.reply_target_id}"
            )
            return True

        analysis = analyze_pane(self.tmux.capture_pane(target))
        if not analysis.is_safe:
            self._log(
                f"reply_low_confidence platform={platform} id={message.external_id} pane={target} "
                f"confidence={analysis.confidence:.2f} prompt={analysis.has_assistant_prompt} "
                f"rate_limited={analysis.has_rate_limit_message} blocked={analysis.is_blocked}"
            )
            return True

        text = truncate_reply_text(sanitize_reply_text(message.raw_text), self.config.max_message_length)
        if not text.strip():
            self._log(f"WARN: reply_empty_after_sanitize platform={platform} id={message.external_id}")
            return True
        payload = format_injection_text(text, platform, self.config.include_prefix)
        try:
            self.tmux.inject(target, payload)
        except InjectionError as exc:
            self._log(f"ERROR: injection_failed platform={platform} id={message.external_id} pane={target}: {exc}")
            self._record_error(f"injection failed: {exc}")
            return True

        self.store.record_injected()
        self._log(
            f"reply_injected platform={platform} id={message.external_id} pane={target} "
            f"chars={len(payload)} preview={_service_utils.compact_text(message.raw_text, LOG_PREVIEW_CHARS)!r}"
        )
        if self.config.ack_replies:
            try:
                poller.acknowledge(message, self.config)
            except PlatformApiError as exc:
                self._log(f"WARN: ack_failed platform={platform} id={message.external_id}: {exc}")
        return True

    def _poll_platform(self, poller: PlatformPoller) -> int:
        platform = poller.platform
        try:
            batch = poller.poll_new_messages(self.store.read_state(), self.config)
        except PlatformApiError as exc:
            # Measured from the failure; a timed-out request can outlast the interval.
            failed_at = self.clock()
            backoff_at = _service_utils.next_poll_at(
                failed_at,
                self.config.poll_interval_sec,
                failed=True,
                multiplier=ERROR_BACKOFF_MULTIPLIER,
            )
            self._next_poll_at[platform] = backoff_at
            self._log(f"WARN: poll_failed platform={platform} backoff={backoff_at - failed_at:.1f}s: {exc}")
            self._record_error(str(exc))
            return 0
        self._next_poll_at[platform] = self.clock()

        handled = 0
        for message in batch:
            if not self._process_message(poller, message):
                return handled
            handled += 1

        current = self.store.read_state().offset_for(platform)
        if offset_is_newer(platform, batch.cursor, current):
            try:
                self.store.advance_offset(platform, batch.cursor)  # type: ignore[arg-type]
            except DeliveryStateWriteError as exc:
                self._log(f"WARN: cursor_write_failed platform={platform} cursor={batch.cursor}: {exc}")
        return handled

    def _prune_registry_if_due(self, now: float) -> None:
        if (now - self._last_registry_prune) < REGISTRY_PRUNE_INTERVAL_SEC:
            return
        self._last_registry_prune = now
        try:
            removed = self.registry.prune()
        except OSError as exc:
            self._log(f"WARN: registry_prune_failed: {exc}")
            return
        if removed:
            self._log(f"registry_pruned removed={removed}")

    def run_cycle(self) -> int:
        """Poll every enabled platform once, in fixed order; returns candidates handled."""
        now = self.clock()
        handled = 0
        for poller in self.pollers:
            if not poller.is_enabled(self.config):
                continue
            if now < self._next_poll_at.get(poller.platform, float("-inf")):
                continue
            handled += self._poll_platform(poller)
        self.store.record_poll()
        try:
            self.store.flush()
        except DeliveryStateWriteError as exc:
            self._log(f"WARN: state_flush_failed: {exc}")
        self._prune_registry_if_due(now)
        return handled

    def _sleep_interval(self) -> None:
        remaining = self.config.poll_interval_sec
        while remaining > 0 and not self.stop_requested:
            step = min(0.25, remaining)
            self.sleep(step)
            remaining -= step

    def _log_started(self) -> None:
        enabled = ",".join(p.platform for p in self.enabled_pollers()) or "-"
        summary = self.config.masked_summary()
        self._log(
            "Reply listener started "
            f"pid={os.getpid()} poll={self.config.poll_interval_ms}ms "
            f"max_per_minute={self.config.max_per_minute} include_prefix={self.config.include_prefix} "
            f"platforms={enabled} telegram_token={summary['telegramBotToken']} "
            f"discord_token={summary['discordBotToken']} state={self.paths.state_file}"
        )
        if enabled == "-":
            self._log("WARN: no platform enabled; check tokens, chat/channel ids and authorized user ids")

    def run_once(self) -> int:
        try:
            self._acquire_lock()
        except DaemonAlreadyRunning as exc:
            self._log(f"ERROR: cannot run single poll: {exc}")
            return 1
        try:
            try:
                self.store.read_state()
            except DeliveryStateReadError as exc:
                self._log(f"ERROR: refusing to poll with unknown offsets: {exc}")
                return 1
            self.run_cycle()
            return 0
        finally:
            self._release_lock()

    def run(self) -> int:
        self.state = LifecycleState.STARTING
        signal.signal(signal.SIGINT, self._handle_signal)
        if hasattr(signal, "SIGTERM"):
            signal.signal(signal.SIGTERM, self._handle_signal)

        try:
            self._acquire_lock()
        except DaemonAlreadyRunning as exc:
            self._log(f"ERROR: {exc}")
            self.state = LifecycleState.STOPPED
            return 1
        try:
            self.store.mark_started()
        except DeliveryStateReadError as exc:
            # Left untouched so the offsets can be repaired by hand.
            self._log(f"ERROR: refusing to start with unknown offsets: {exc}")
            self._release_lock()
            self.state = LifecycleState.STOPPED
            return 1
        except DeliveryStateWriteError as exc:
            self._log(f"ERROR: cannot initialise state file: {exc}")
            self._release_lock()
            self.state = LifecycleState.STOPPED
            return 1

        self._log_started()
        self.state = LifecycleState.RUNNING
        try:
            while not self.stop_requested:
                self.run_cycle()
                self._sleep_interval()
        finally:
            self.state = LifecycleState.STOPPING
            try:
                self.store.flush()
            except DeliveryStateWriteError as exc:
                self._log(f"WARN: final state flush failed: {exc}")
            self._release_lock()
            self.state = LifecycleState.STOPPED
            self._log("Reply listener stopped")
        return 0


__all__ = ["LifecycleState", "ReplyListenerService"]
