"""Make reply text safe to type into a shell-backed terminal pane."""

from __future__ import annotations

import re

_CONTROL_CHARS_RE = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f]")
_NEWLINE_RE = re.compile(r"\r\n|\n|\r")
_SHELL_EXPANSION_RE = re.compile(r"`|\$\(|\$\{")


def sanitize_reply_text(text: object) -> str:
    """Return ``text`` with control characters removed and shell expansions escaped.

    The steps run in a fixed order: backslashes are doubled before the escape
    backslashes for backticks, ``$(`` and ``${`` are inserted, so the inserted
    ones are never doubled themselves.
    """
    rendered = str(text or "")
    rendered = _CONTROL_CHARS_RE.sub("", rendered)
    rendered = _NEWLINE_RE.sub(" ", rendered)
    rendered = rendered.replace("\\", "\\\\")
    return _SHELL_EXPANSION_RE.sub(lambda match: "\\" + match.group(0), rendered)


def truncate_reply_text(text: str, max_len: int) -> str:
    if max_len <= 0 or len(text) <= max_len:
        return text
    cut = text[:max_len]
    # Never leave a dangling escape backslash at the cut point.
    trailing = len(cut) - len(cut.rstrip("\\"))
    if trailing % 2:
        cut = cut[:-1]
    return cut


__all__ = ["sanitize_reply_text", "truncate_reply_text"]
