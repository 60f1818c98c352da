"""Daemon package facade."""

from replyd.core.daemon.locking import DaemonAlreadyRunning
from replyd.core.daemon.models import PlatformApiError, ReplyMessage
from replyd.core.daemon.pane import PaneAnalysis, analyze_pane
from replyd.core.daemon.rate_limit import SlidingWindowRateLimiter
from replyd.core.daemon.sanitize import sanitize_reply_text
from replyd.core.daemon.service import LifecycleState, ReplyListenerService
from replyd.core.daemon.service_config import DaemonConfig
from replyd.core.daemon.state_store import (
    DaemonState,
    DeliveryStateReadError,
    DeliveryStateStore,
    DeliveryStateWriteError,
)
from replyd.core.daemon.main import main

__all__ = [
    "DaemonAlreadyRunning",
    "DaemonConfig",
    "DaemonState",
    "DeliveryStateReadError",
    "DeliveryStateStore",
    "DeliveryStateWriteError",
    "LifecycleState",
    "PaneAnalysis",
    "PlatformApiError",
    "ReplyListenerService",
    "ReplyMessage",
    "SlidingWindowRateLimiter",
    "analyze_pane",
    "main",
    "sanitize_reply_text",
]
