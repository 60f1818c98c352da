from __future__ import annotations

import subprocess
from typing import Callable, Mapping, Sequence

from replyd.core.daemon.constants import PANE_CAPTURE_LINES

Runner = Callable[..., subprocess.CompletedProcess]


class InjectionError(RuntimeError):
    """Text could not be delivered to the target pane."""


def format_injection_text(text: str, platform: str, include_prefix: bool) -> str:
    if include_prefix:
        return f"[reply:{platform}] {text}"
    return text


class TmuxClient:
    """Thin wrapper over the ``tmux`` binary, run with a restricted environment."""

    def __init__(
        self,
        env: Mapping[str, str] | None = None,
        *,
        runner: Runner | None = None,
        timeout_sec: float = 3.0,
    ) -> None:
        self.env = dict(env) if env is not None else None
        self.runner = runner or subprocess.run
        self.timeout_sec = float(timeout_sec)

    def _run(self, args: Sequence[str]) -> tuple[int, str, str]:
        try:
            proc = self.runner(
                ["tmux", *args],
                capture_output=True,
                text=True,
                encoding="utf-8",
                errors="replace",
                env=self.env,
                timeout=self.timeout_sec,
                check=False,
            )
        except subprocess.TimeoutExpired:
            return 124, "", "tmux timeout"
        except OSError as exc:
            return 127, "", str(exc)
        return int(proc.returncode), (proc.stdout or ""), (proc.stderr or "")

    def pane_exists(self, target: str) -> bool:
        if not target:
            return False
        code, out, _ = self._run(["display-message", "-p", "-t", target, "#{pane_id}"])
        return code == 0 and bool(out.strip())

    def capture_pane(self, target: str, lines: int = PANE_CAPTURE_LINES) -> str:
        """Return the visible text of ``target``; an empty string when capture fails."""
        code, out, _ = self._run(["capture-pane", "-p", "-t", target, "-S", f"-{max(1, int(lines))}"])
        if code != 0:
            return ""
        return out

    def inject(self, target: str, text: str) -> None:
        """Type ``text`` into the pane and submit it. Raises InjectionError."""
        if not self.pane_exists(target):
            raise InjectionError(f"pane not found: {target}")
        # -l sends the text literally; "--" keeps a leading "-" from parsing as a flag.
        code, _, err = self._run(["send-keys", "-t", target, "-l", "--", text])
        if code != 0:
            raise InjectionError(f"send-keys failed target={target} rc={code}: {err.strip()}")
        code, _, err = self._run(["send-keys", "-t", target, "Enter"])
        if code != 0:
            raise InjectionError(f"send-keys Enter failed target={target} rc={code}: {err.strip()}")


__all__ = ["InjectionError", "TmuxClient", "format_injection_text"]
