"""Daemon entrypoint."""
from __future__ import annotations

import argparse

from replyd.core.daemon.service import ReplyListenerService
from replyd.runtime import resolve_paths


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Run the reply listener daemon in the foreground.")
    parser.add_argument(
        "--state-dir",
        default=None,
        help="Directory holding pid, state, config and logs (default: ~/.replyd).",
    )
    parser.add_argument(
        "--once",
        action="store_true",
        help="Run a single poll cycle and exit.",
    )
    return parser


def main(argv: list[str] | None = None) -> int:
    args = _build_parser().parse_args(argv)
    service = ReplyListenerService(resolve_paths(args.state_dir))
    if args.once:
        return service.run_once()
    return service.run()


if __name__ == "__main__":
    raise SystemExit(main())
