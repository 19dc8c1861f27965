import os
import tempfile
import unittest
from unittest import mock

import psutil

from tcpview_live.collectors.owners import build_inode_pid_map, describe_process, resolve_inodes

from procfs import add_other_fd, add_socket_fd


class TestOwnerScan(unittest.TestCase):
    def setUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        self.root = self._tmp.name
        add_socket_fd(self.root, 100, 3, 5001)
        add_socket_fd(self.root, 100, 4, 5002)
        add_other_fd(self.root, 100, 5)
        add_socket_fd(self.root, 200, 7, 6001)
        os.makedirs(os.path.join(self.root, "net"))
        os.makedirs(os.path.join(self.root, "300"))  # no fd dir, e.g. permission denied

    def tearDown(self):
        self._tmp.cleanup()

    def test_full_map(self):
        self.assertEqual(build_inode_pid_map(proc_root=self.root), {5001: 100, 5002: 100, 6001: 200})

    def test_wanted_subset(self):
        self.assertEqual(build_inode_pid_map({6001}, proc_root=self.root), {6001: 200})

    def test_missing_root(self):
        self.assertEqual(build_inode_pid_map(proc_root=os.path.join(self.root, "nope")), {})

    def test_resolve_inodes_describes_each_pid_once(self):
        with mock.patch("tcpview_live.collectors.owners.describe_process",
                        side_effect=lambda pid: (f"proc{pid}", "root")) as described:
            out = resolve_inodes([5001, 5002, 6001, 9999, 0], proc_root=self.root)
        self.assertEqual(out, {
            5001: (100, "proc100", "root"),
            5002: (100, "proc100", "root"),
            6001: (200, "proc200", "root"),
        })
        self.assertEqual(sorted(c.args[0] for c in described.call_args_list), [100, 200])

    def test_resolve_nothing(self):
        self.assertEqual(resolve_inodes([], proc_root=self.root), {})


class TestDescribeProcess(unittest.TestCase):
    def test_own_process(self):
        me = psutil.Process(os.getpid())
        self.assertEqual(describe_process(os.getpid())[0], me.name())

    def test_vanished_process(self):
        with mock.patch("tcpview_live.collectors.owners.psutil.Process", side_effect=psutil.NoSuchProcess(1)):
            self.assertEqual(describe_process(1), ("", ""))


if __name__ == '__main__':
    unittest.main()
