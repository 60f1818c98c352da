"""Unit tests for daemon service utility functions."""

from __future__ import annotations

import json
import sys
import tempfile
import unittest
from pathlib import Path

PROJECT_ROOT = Path(__file__).resolve().parents[1]
SRC_ROOT = PROJECT_ROOT / "src"
if str(SRC_ROOT) not in sys.path:
    sys.path.insert(0, str(SRC_ROOT))

from replyd.core.daemon import service_utils  # noqa: E402


class TestServiceUtilsCoerce(unittest.TestCase):
    def test_coerce_int(self) -> None:
        self.assertEqual(service_utils.coerce_int("42", 1, minimum=1), 42)
        self.assertEqual(service_utils.coerce_int(0, 5, minimum=1), 1)
        self.assertEqual(service_utils.coerce_int("bad", 7, minimum=0), 7)
        self.assertEqual(service_utils.coerce_int(True, 3), 3)

    def test_coerce_float(self) -> None:
        self.assertEqual(service_utils.coerce_float("3.14", 0.0, minimum=0.0), 3.14)
        self.assertEqual(service_utils.coerce_float("bad", 1.5, minimum=0.0), 1.5)

    def test_coerce_bool(self) -> None:
        self.assertTrue(service_utils.coerce_bool("yes", False))
        self.assertFalse(service_utils.coerce_bool("0", True))
        self.assertTrue(service_utils.coerce_bool("na", True))
        self.assertFalse(service_utils.coerce_bool(False, True))

    def test_normalize_id_list(self) -> None:
        self.assertEqual(service_utils.normalize_id_list([1, " 2 ", "", None, True]), frozenset({"1", "2"}))
        self.assertEqual(service_utils.normalize_id_list("1,2"), frozenset())


class TestServiceUtilsText(unittest.TestCase):
    def test_compact_text(self) -> None:
        self.assertEqual(service_utils.compact_text("  a \n\n b  "), "a b")
        self.assertEqual(service_utils.compact_text("x" * 60, max_len=50), "x" * 47 + "...")

    def test_mask_sensitive(self) -> None:
        self.assertEqual(service_utils.mask_sensitive(""), "(not set)")
        self.assertEqual(service_utils.mask_sensitive("short"), "***")
        self.assertEqual(service_utils.mask_sensitive("1234567890:secret"), "123...et")


class TestServiceUtilsEnv(unittest.TestCase):
    def test_build_daemon_env_drops_secrets(self) -> None:
        base = {
            "PATH": "/usr/bin",
            "HOME": "/home/u",
            "TMUX": "/tmp/tmux-1000/default,1,0",
            "TERM": "xterm-256color",
            "TELEGRAM_BOT_TOKEN": "secret",
            "AWS_SECRET_ACCESS_KEY": "secret",
        }
        env = service_utils.build_daemon_env(base)
        self.assertEqual(
            env,
            {"PATH": "/usr/bin", "HOME": "/home/u", "TMUX": "/tmp/tmux-1000/default,1,0", "TERM": "xterm-256color"},
        )

    def test_next_poll_at(self) -> None:
        self.assertEqual(service_utils.next_poll_at(100.0, 3.0, failed=False, multiplier=2), 100.0)
        self.assertEqual(service_utils.next_poll_at(100.0, 3.0, failed=True, multiplier=2), 106.0)


class TestServiceUtilsFiles(unittest.TestCase):
    def test_write_and_read_json(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            path = Path(tmp) / "nested" / "state.json"
            service_utils.write_json_atomic(path, {"a": 1})
            self.assertEqual(service_utils.read_json_dict(path), {"a": 1})
            path.write_text(json.dumps([1, 2]), encoding="utf-8")
            self.assertEqual(service_utils.read_json_dict(path), {})
            self.assertEqual(service_utils.read_json_dict(Path(tmp) / "missing.json"), {})


if __name__ == "__main__":
    unittest.main()
