# SPDX-License-Identifier: LGPL-3.0-or-later
import subprocess
import tempfile
import unittest
from pathlib import Path
from unittest.mock import Mock, patch

from peforge.core.exceptions import ErrorKind, HostCommandError
from peforge.core.file_ops import atomic_write
from peforge.core.utils import U

from fakes.fake_logger import FakeLogger


class TestUtilsFileOperations(unittest.TestCase):
    def test_ensure_dir_creates_directory(self):
        with tempfile.TemporaryDirectory() as td:
            new_dir = Path(td) / "subdir" / "nested"
            U.ensure_dir(new_dir)
            self.assertTrue(new_dir.is_dir())

    def test_checksum(self):
        with tempfile.TemporaryDirectory() as td:
            p = Path(td) / "f.bin"
            p.write_bytes(b"abc")
            self.assertEqual(
                U.checksum(p),
                "ba7816bf8f01cfea414140de5dae2223b00361a396177a9cb410ff61f20015ad",
            )

    def test_rmtree_best_effort_missing_ok(self):
        with tempfile.TemporaryDirectory() as td:
            self.assertTrue(U.rmtree_best_effort(FakeLogger(), Path(td) / "nope"))

    def test_human_bytes(self):
        self.assertEqual(U.human_bytes(None), "unknown")
        self.assertEqual(U.human_bytes(512), "512 B")
        self.assertEqual(U.human_bytes(2048), "2.00 KiB")


class TestAtomicWrite(unittest.TestCase):
    def test_replaces_target(self):
        with tempfile.TemporaryDirectory() as td:
            target = Path(td) / "startnet.cmd"
            target.write_bytes(b"old")
            with atomic_write(target) as tmp:
                tmp.write_bytes(b"new")
            self.assertEqual(target.read_bytes(), b"new")
            self.assertEqual(sorted(p.name for p in Path(td).iterdir()), ["startnet.cmd"])

    def test_failure_keeps_original_and_cleans_temp(self):
        with tempfile.TemporaryDirectory() as td:
            target = Path(td) / "startnet.cmd"
            target.write_bytes(b"old")
            with self.assertRaises(RuntimeError):
                with atomic_write(target) as tmp:
                    tmp.write_bytes(b"partial")
                    raise RuntimeError("disk full")
            self.assertEqual(target.read_bytes(), b"old")
            self.assertEqual(len(list(Path(td).iterdir())), 1)


class TestRunCmd(unittest.TestCase):
    @patch("subprocess.run")
    def test_success_returns_completed_process(self, mock_run):
        mock_run.return_value = Mock(returncode=0, stdout="ok", stderr="")
        cp = U.run_cmd(FakeLogger(), ["dism.exe", "/English"])
        self.assertEqual(cp.stdout, "ok")

    @patch("subprocess.run")
    def test_failure_carries_output_and_kind(self, mock_run):
        mock_run.return_value = Mock(returncode=5, stdout="Error: 0xc1420116", stderr="")
        with self.assertRaises(HostCommandError) as cm:
            U.run_cmd(FakeLogger(), ["dism.exe", "/Unmount-Image"])
        err = cm.exception
        self.assertEqual(err.returncode, 5)
        self.assertIn("0xc1420116", err.stdout)
        self.assertIs(err.kind, ErrorKind.TRANSIENT)

    @patch("subprocess.run")
    def test_check_false_returns_failure(self, mock_run):
        mock_run.return_value = Mock(returncode=1, stdout="", stderr="nope")
        cp = U.run_cmd(FakeLogger(), ["reg.exe"], check=False)
        self.assertEqual(cp.returncode, 1)

    @patch("subprocess.run", side_effect=subprocess.TimeoutExpired(cmd="dism.exe", timeout=3))
    def test_timeout(self, _mock_run):
        with self.assertRaises(HostCommandError) as cm:
            U.run_cmd(FakeLogger(), ["dism.exe"], timeout=3)
        self.assertEqual(cm.exception.returncode, 124)

    @patch("subprocess.run", side_effect=FileNotFoundError(2, "No such file or directory"))
    def test_missing_binary(self, _mock_run):
        with self.assertRaises(HostCommandError):
            U.run_cmd(FakeLogger(), ["wimlib-imagex", "info"])


if __name__ == "__main__":
    unittest.main()
