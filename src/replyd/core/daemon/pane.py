"""Heuristic safety gate for typing into a live terminal pane.

Three signals are read from the visible pane text:

* ``has_assistant_prompt``: the assistant's input prompt is on screen;
* ``has_rate_limit_message``: the assistant is showing a rate/usage limit notice;
* ``is_blocked``: the pane waits on a yes/no style confirmation.

They are combined by :func:`score_signals`::

    confidence = clamp(0.3 + 0.5 * prompt - 0.45 * rate_limited - 0.45 * blocked)

which rises with the prompt signal and falls with either negative signal.
Without a prompt the score is 0.3, below the 0.4 gate, so an unknown pane
is never typed into. A visible prompt alone scores 0.8; a prompt together
with either negative signal scores 0.35 and is rejected.
"""

from __future__ import annotations

import re
from dataclasses import dataclass

from replyd.core.daemon.constants import (
    ASSISTANT_PROMPT_PATTERNS,
    BLOCKED_PATTERNS,
    CONFIDENCE_THRESHOLD,
    RATE_LIMIT_PATTERNS,
)

BASE_CONFIDENCE = 0.3
PROMPT_WEIGHT = 0.5
RATE_LIMIT_PENALTY = 0.45
BLOCKED_PENALTY = 0.45
# Only the bottom of the pane reflects what the next keystroke lands in.
_TAIL_LINES = 15


def _compile(patterns: tuple[str, ...]) -> re.Pattern[str]:
    return re.compile("|".join(f"(?:{p})" for p in patterns), re.IGNORECASE | re.MULTILINE)


_PROMPT_RE = _compile(ASSISTANT_PROMPT_PATTERNS)
_RATE_LIMIT_RE = _compile(RATE_LIMIT_PATTERNS)
_BLOCKED_RE = _compile(BLOCKED_PATTERNS)


@dataclass(frozen=True)
class PaneAnalysis:
    has_assistant_prompt: bool
    has_rate_limit_message: bool
    is_blocked: bool
    confidence: float

    @property
    def is_safe(self) -> bool:
        return passes_confidence_gate(self.confidence)


def score_signals(has_assistant_prompt: bool, has_rate_limit_message: bool, is_blocked: bool) -> float:
    score = BASE_CONFIDENCE
    if has_assistant_prompt:
        score += PROMPT_WEIGHT
    if has_rate_limit_message:
        score -= RATE_LIMIT_PENALTY
    if is_blocked:
        score -= BLOCKED_PENALTY
    return round(min(1.0, max(0.0, score)), 4)


def passes_confidence_gate(confidence: float) -> bool:
    return float(confidence) >= CONFIDENCE_THRESHOLD


def _visible_tail(content: str) -> str:
    lines = [line.rstrip() for line in str(content or "").splitlines()]
    while lines and not lines[-1]:
        lines.pop()
    return "\n".join(lines[-_TAIL_LINES:])


def analyze_pane(content: str) -> PaneAnalysis:
    tail = _visible_tail(content)
    has_prompt = bool(_PROMPT_RE.search(tail))
    has_rate_limit = bool(_RATE_LIMIT_RE.search(tail))
    blocked = bool(_BLOCKED_RE.search(tail))
    return PaneAnalysis(
        has_assistant_prompt=has_prompt,
        has_rate_limit_message=has_rate_limit,
        is_blocked=blocked,
        confidence=score_signals(has_prompt, has_rate_limit, blocked),
    )


__all__ = ["PaneAnalysis", "analyze_pane", "passes_confidence_gate", "score_signals"]
