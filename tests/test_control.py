from __future__ import annotations

import os
import signal
import sys
import tempfile
import unittest
from pathlib import Path
from unittest import mock

PROJECT_ROOT = Path(__file__).resolve().parents[1]
SRC_ROOT = PROJECT_ROOT / "src"
if str(SRC_ROOT) not in sys.path:
    sys.path.insert(0, str(SRC_ROOT))

from replyd.core.daemon import control  # noqa: E402
from replyd.core.daemon.state_store import DeliveryStateStore  # noqa: E402
from replyd.runtime import resolve_paths  # noqa: E402


class TestDaemonControl(unittest.TestCase):
    def setUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        self.paths = resolve_paths(self._tmp.name)

    def tearDown(self) -> None:
        self._tmp.cleanup()

    def test_status_without_daemon(self) -> None:
        DeliveryStateStore(self.paths.state_file).advance_offset("telegram", 12)
        status = control.daemon_status(self.paths)
        self.assertFalse(status.running)
        self.assertFalse(status.stale_pid_file)
        payload = status.to_payload()
        self.assertIsNone(payload["pid"])
        self.assertEqual(payload["state"]["telegramLastUpdateId"], 12)

    def test_status_with_live_pid(self) -> None:
        self.paths.pid_file.write_text(str(os.getpid()), encoding="utf-8")
        status = control.daemon_status(self.paths)
        self.assertTrue(status.running)
        self.assertEqual(status.pid, os.getpid())

    def test_stop_not_running(self) -> None:
        self.assertEqual(control.stop_daemon(self.paths), (False, "not running"))

    def test_stop_removes_stale_pid_file(self) -> None:
        self.paths.pid_file.write_text("424242", encoding="utf-8")
        with mock.patch.object(control, "_is_pid_alive", return_value=False):
            stopped, detail = control.stop_daemon(self.paths)
        self.assertFalse(stopped)
        self.assertIn("stale", detail)
        self.assertFalse(self.paths.pid_file.exists())

    def test_stop_signals_and_waits(self) -> None:
        self.paths.pid_file.write_text("424242", encoding="utf-8")
        sent: list[tuple[int, int]] = []

        def _kill(pid: int, sig: int) -> None:
            sent.append((pid, sig))
            # The daemon removes its own pid file on the way out.
            self.paths.pid_file.unlink()

        with mock.patch.object(control, "_is_pid_alive", return_value=True), mock.patch.object(
            control.os, "kill", side_effect=_kill
        ):
            stopped, detail = control.stop_daemon(self.paths, timeout_sec=2)
        self.assertTrue(stopped, detail)
        self.assertEqual(sent, [(424242, signal.SIGTERM)])

    def _spawned(self, pid: int, *, exit_code: int | None = None, write_pid: bool = True):
        def _popen(*_args: object, **_kwargs: object) -> mock.Mock:
            if write_pid:
                self.paths.pid_file.write_text(str(pid), encoding="utf-8")
            proc = mock.Mock()
            proc.pid = pid
            proc.poll.return_value = exit_code
            return proc

        return _popen

    def test_start_detached_uses_allowlisted_env(self) -> None:
        base_env = {"PATH": "/usr/bin", "HOME": "/home/u", "DISCORD_BOT_TOKEN": "secret"}
        with mock.patch.object(control.subprocess, "Popen", side_effect=self._spawned(4321)) as popen:
            pid = control.start_detached(self.paths, base_env=base_env, python_bin="/usr/bin/python3")
        self.assertEqual(pid, 4321)
        args, kwargs = popen.call_args
        self.assertEqual(
            args[0],
            ["/usr/bin/python3", "-m", "replyd.core.daemon.main", "--state-dir", str(self.paths.root)],
        )
        self.assertEqual(kwargs["env"], {"PATH": "/usr/bin", "HOME": "/home/u"})
        self.assertTrue(kwargs["start_new_session"])

    def test_start_reports_child_exit_during_startup(self) -> None:
        spawned = self._spawned(4321, exit_code=1, write_pid=False)
        with mock.patch.object(control.subprocess, "Popen", side_effect=spawned):
            with self.assertRaises(RuntimeError) as ctx:
                control.start_detached(self.paths, base_env={}, wait_sec=2)
        self.assertIn("code=1", str(ctx.exception))

    def test_start_times_out_without_pid_file(self) -> None:
        spawned = self._spawned(4321, write_pid=False)
        with mock.patch.object(control.subprocess, "Popen", side_effect=spawned), mock.patch.object(
            control.time, "sleep"
        ):
            with self.assertRaises(RuntimeError) as ctx:
                control.start_detached(self.paths, base_env={}, wait_sec=0)
        self.assertIn("did not record its pid", str(ctx.exception))

    def test_start_refuses_when_running(self) -> None:
        self.paths.pid_file.write_text(str(os.getpid()), encoding="utf-8")
        with mock.patch.object(control.subprocess, "Popen") as popen:
            with self.assertRaises(RuntimeError):
                control.start_detached(self.paths)
        popen.assert_not_called()


if __name__ == "__main__":
    unittest.main()
