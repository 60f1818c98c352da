from __future__ import annotations

import json
import os
import stat
import sys
import tempfile
import unittest
from pathlib import Path
from unittest import mock

PROJECT_ROOT = Path(__file__).resolve().parents[1]
SRC_ROOT = PROJECT_ROOT / "src"
if str(SRC_ROOT) not in sys.path:
    sys.path.insert(0, str(SRC_ROOT))

from click.testing import CliRunner  # noqa: E402

from replyd.cli import main  # noqa: E402
from replyd.core.daemon.runtime_shared import remove_daemon_log_sinks  # noqa: E402
from replyd.core.daemon.session_registry import SessionRegistry  # noqa: E402
from replyd.runtime import resolve_paths  # noqa: E402


class TestCli(unittest.TestCase):
    def setUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        self.paths = resolve_paths(self._tmp.name)
        self.runner = CliRunner()

    def tearDown(self) -> None:
        remove_daemon_log_sinks()
        self._tmp.cleanup()

    def _invoke(self, *args: str):
        return self.runner.invoke(main, ["--state-dir", str(self.paths.root), *args])

    def test_version(self) -> None:
        result = self._invoke("version")
        self.assertEqual(result.exit_code, 0)
        self.assertTrue(result.output.strip())

    def test_config_init_and_show(self) -> None:
        result = self._invoke("config", "init")
        self.assertEqual(result.exit_code, 0, result.output)
        self.assertEqual(stat.S_IMODE(os.stat(self.paths.config_file).st_mode), 0o600)

        again = self._invoke("config", "init")
        self.assertNotEqual(again.exit_code, 0)
        self.assertIn("use --force", again.output)

        raw = json.loads(self.paths.config_file.read_text(encoding="utf-8"))
        raw["telegramBotToken"] = "123456:TOPSECRETTOKEN"
        self.paths.config_file.write_text(json.dumps(raw), encoding="utf-8")
        shown = self._invoke("config", "show")
        self.assertEqual(shown.exit_code, 0, shown.output)
        self.assertNotIn("TOPSECRETTOKEN", shown.output)
        self.assertIn('"pollIntervalMs": 3000', shown.output)

    def test_register(self) -> None:
        result = self._invoke("register", "--platform", "discord", "--message-id", "900", "--pane", "%4")
        self.assertEqual(result.exit_code, 0, result.output)
        entry = SessionRegistry(self.paths.registry_file).lookup("discord", "900")
        self.assertEqual(entry.pane_id, "%4")

    def test_register_rejects_unknown_platform(self) -> None:
        result = self._invoke("register", "--platform", "slack", "--message-id", "1", "--pane", "%1")
        self.assertNotEqual(result.exit_code, 0)

    def test_status_json(self) -> None:
        result = self._invoke("status", "--json")
        self.assertEqual(result.exit_code, 0, result.output)
        payload = json.loads(result.output)
        self.assertFalse(payload["running"])
        self.assertEqual(payload["state"]["errorCount"], 0)

    def test_stop_when_not_running(self) -> None:
        result = self._invoke("stop")
        self.assertEqual(result.exit_code, 0)
        self.assertIn("not running", result.output)

    def test_start_detached(self) -> None:
        with mock.patch("replyd.core.daemon.control.start_detached", return_value=777) as start:
            result = self._invoke("start")
        self.assertEqual(result.exit_code, 0, result.output)
        self.assertIn("pid=777", result.output)
        start.assert_called_once()

    def test_start_reports_running_daemon(self) -> None:
        with mock.patch(
            "replyd.core.daemon.control.start_detached",
            side_effect=RuntimeError("reply listener already running (pid=1)"),
        ):
            result = self._invoke("start")
        self.assertNotEqual(result.exit_code, 0)
        self.assertIn("already running", result.output)

    def test_poll_once_without_config(self) -> None:
        result = self._invoke("poll-once")
        self.assertEqual(result.exit_code, 0, result.output)
        self.assertFalse(self.paths.pid_file.exists())

    def test_get_my_id_requires_token(self) -> None:
        result = self._invoke("get-my-id")
        self.assertNotEqual(result.exit_code, 0)
        self.assertIn("telegramBotToken", result.output)


if __name__ == "__main__":
    unittest.main()
