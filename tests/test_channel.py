import os
import sys
import tempfile
import textwrap
import unittest
from pathlib import Path
from unittest import mock

import psutil

from tcpview_live.errors import ChannelBroken, ElevationDenied, SpawnFailed
from tcpview_live.models import ConnKey, ResolverRequest
from tcpview_live.resolver.channel import ResolverChannel, helper_command

from procfs import add_socket_fd

ROOT = str(Path(__file__).resolve().parent.parent)
KEY_A = ConnKey("tcp", "127.0.0.1", 22, "10.0.0.5", 4444)
KEY_B = ConnKey("tcp", "127.0.0.1", 22, "10.0.0.6", 5555)


def script(body: str):
    return [sys.executable, "-c", textwrap.dedent(body)]


READY = 'sys.stdout.buffer.write(b\'{"ready": true, "pid": 1, "euid": 0}\\n\'); sys.stdout.buffer.flush()'

# answers odd inodes, writes each reply in two pieces, and sends one stale reply first
ECHO_HELPER = script(f"""
    import json, sys, time
    {READY}
    for line in sys.stdin.buffer:
        msg = json.loads(line)
        stale = json.dumps({{"seq": msg["seq"] - 1, "replies": []}}).encode() + b"\\n"
        replies = [{{"key": r["key"], "pid": r["inode"] + 1000, "name": "p%d" % r["inode"], "user": "root"}}
                   for r in msg["requests"] if r["inode"] % 2]
        out = stale + json.dumps({{"seq": msg["seq"], "replies": replies}}).encode() + b"\\n"
        half = len(out) // 2
        sys.stdout.buffer.write(out[:half]); sys.stdout.buffer.flush()
        time.sleep(0.02)
        sys.stdout.buffer.write(out[half:]); sys.stdout.buffer.flush()
""")

HUNG_HELPER = script(f"""
    import sys, time
    {READY}
    sys.stdin.buffer.readline()
    time.sleep(30)
""")

DYING_HELPER = script(f"""
    import sys
    {READY}
    sys.stdin.buffer.readline()
    sys.exit(1)
""")


def channel(command, **kw):
    kw.setdefault("timeout", 2.0)
    kw.setdefault("start_timeout", 5.0)
    return ResolverChannel(command=command, elevate_cmd="", **kw)


class TestChannelLifecycle(unittest.TestCase):
    def test_start_resolve_stop(self):
        ch = channel(ECHO_HELPER)
        ch.start()
        self.addCleanup(ch.stop)
        self.assertTrue(ch.running)
        out = ch.resolve([ResolverRequest(KEY_A, 5001), ResolverRequest(KEY_B, 5002)])
        self.assertEqual(list(out), [KEY_A])
        self.assertEqual((out[KEY_A].pid, out[KEY_A].name), (6001, "p5001"))
        # a second round-trip on the same helper
        out = ch.resolve([ResolverRequest(KEY_B, 7)])
        self.assertEqual(out[KEY_B].pid, 1007)
        ch.stop()
        self.assertFalse(ch.running)

    def test_start_is_idempotent(self):
        ch = channel(ECHO_HELPER)
        ch.start()
        self.addCleanup(ch.stop)
        proc = ch._proc
        ch.start()
        self.assertIs(ch._proc, proc)

    def test_empty_batch_needs_no_round_trip(self):
        ch = channel(ECHO_HELPER)
        ch.start()
        self.addCleanup(ch.stop)
        self.assertEqual(ch.resolve([]), {})

    def test_stop_without_start(self):
        ch = channel(ECHO_HELPER)
        ch.stop()
        ch.stop()
        self.assertFalse(ch.running)

    def test_resolve_before_start(self):
        with self.assertRaises(ChannelBroken):
            channel(ECHO_HELPER).resolve([ResolverRequest(KEY_A, 1)])


class TestChannelFailures(unittest.TestCase):
    def test_elevation_denied(self):
        ch = channel(script("import sys; sys.exit(126)"))
        with self.assertRaises(ElevationDenied):
            ch.start()
        self.assertFalse(ch.running)

    def test_auth_failed(self):
        with self.assertRaises(ElevationDenied):
            channel(script("import sys; sys.exit(127)")).start()

    def test_early_exit_is_spawn_failure(self):
        with self.assertRaises(SpawnFailed):
            channel(script("import sys; sys.exit(3)")).start()

    def test_missing_binary(self):
        with self.assertRaises(SpawnFailed):
            channel(["/nonexistent/tcpview-helper"]).start()

    def test_bad_handshake(self):
        ch = channel(script('import sys, time; sys.stdout.write(\'{"hello": 1}\\n\'); sys.stdout.flush(); time.sleep(5)'))
        with self.assertRaises(SpawnFailed):
            ch.start()
        self.assertFalse(ch.running)

    def test_silent_helper_times_out(self):
        ch = channel(script("import time; time.sleep(30)"), start_timeout=0.3)
        with self.assertRaises(SpawnFailed):
            ch.start()
        self.assertFalse(ch.running)

    def test_hung_helper(self):
        ch = channel(HUNG_HELPER, timeout=0.3)
        ch.start()
        with self.assertRaises(ChannelBroken):
            ch.resolve([ResolverRequest(KEY_A, 1)])
        self.assertFalse(ch.running)
        ch.stop()

    def test_dead_helper(self):
        ch = channel(DYING_HELPER)
        ch.start()
        with self.assertRaises(ChannelBroken):
            ch.resolve([ResolverRequest(KEY_A, 1)])
        self.assertFalse(ch.running)
        with self.assertRaises(ChannelBroken):
            ch.resolve([ResolverRequest(KEY_A, 1)])

    def test_restart_after_break(self):
        ch = channel(DYING_HELPER)
        ch.start()
        with self.assertRaises(ChannelBroken):
            ch.resolve([ResolverRequest(KEY_A, 1)])
        ch.start()
        self.addCleanup(ch.stop)
        self.assertTrue(ch.running)


class TestRealHelper(unittest.TestCase):
    """Runs the shipped helper module in a child process against a fake /proc."""

    def test_resolves_own_socket(self):
        with tempfile.TemporaryDirectory() as root:
            add_socket_fd(root, os.getpid(), 3, 5001)
            cmd = [sys.executable, "-c",
                   f"import sys; sys.path.insert(0, {ROOT!r}); "
                   f"from tcpview_live.resolver.helper import serve; "
                   f"sys.exit(serve(sys.stdin.buffer, sys.stdout.buffer, {root!r}))"]
            ch = channel(cmd, timeout=10.0, start_timeout=20.0)
            ch.start()
            try:
                out = ch.resolve([ResolverRequest(KEY_A, 5001), ResolverRequest(KEY_B, 5002)])
            finally:
                ch.stop()
        self.assertEqual(list(out), [KEY_A])
        self.assertEqual(out[KEY_A].pid, os.getpid())
        self.assertEqual(out[KEY_A].name, psutil.Process(os.getpid()).name())


class VanishingProcChannel(ResolverChannel):
    """``_proc`` reads as a live process once, then as None, like a concurrent stop()."""

    @property
    def _proc(self):
        return self._procs.pop(0) if self._procs else None

    @_proc.setter
    def _proc(self, value):
        pass


class TestRunning(unittest.TestCase):
    def test_reads_process_handle_once(self):
        ch = VanishingProcChannel(command=["helper"], elevate_cmd="")
        proc = mock.Mock()
        proc.poll.return_value = None
        ch._procs = [proc]
        self.assertTrue(ch.running)
        self.assertFalse(ch.running)


class TestArgv(unittest.TestCase):
    def test_default_command_runs_helper_mode(self):
        cmd = helper_command()
        self.assertEqual(cmd[0], sys.executable)
        self.assertEqual(cmd[1:], ["-m", "tcpview_live.main", "--rootmodule"])

    def test_elevation_prefix(self):
        ch = ResolverChannel(command=["helper"], elevate_cmd="pkexec --disable-internal-agent")
        with mock.patch("tcpview_live.resolver.channel.os.geteuid", return_value=1000):
            self.assertEqual(ch.argv(), ["pkexec", "--disable-internal-agent", "helper"])
        with mock.patch("tcpview_live.resolver.channel.os.geteuid", return_value=0):
            self.assertEqual(ch.argv(), ["helper"])

    def test_no_elevation(self):
        with mock.patch("tcpview_live.resolver.channel.os.geteuid", return_value=1000):
            self.assertEqual(ResolverChannel(command=["helper"], elevate_cmd="").argv(), ["helper"])


if __name__ == '__main__':
    unittest.main()
