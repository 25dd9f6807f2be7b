# SPDX-License-Identifier: LGPL-3.0-or-later
"""
Unit Tests for CLI Configuration Loading

Tests YAML/JSON configuration file loading, merging, and two-phase parsing.
"""

import json
import tempfile
import unittest
import uuid
from pathlib import Path

from peforge.cli.argument_parser import build_config, parse_args_with_config
from peforge.core.exceptions import Fatal

from fakes.fake_logger import FakeLogger


class TestCLIConfigTwoPhaseParse(unittest.TestCase):
    def setUp(self):
        self._td = tempfile.TemporaryDirectory()
        self.td = Path(self._td.name)
        self.workspace = self.td / "WinPE_amd64"
        self.workspace.mkdir()

    def tearDown(self):
        self._td.cleanup()

    def _cfg(self, text, name="cfg.yaml"):
        p = self.td / name
        p.write_text(text, encoding="utf-8")
        return str(p)

    def test_config_supplies_paths(self):
        cfg = self._cfg(f"temp-path: {self.td / 'temp'}\nworkspace-path: {self.workspace}\nmount_max_retries: 7\n")

        args, conf, _logger = parse_args_with_config(["--config", cfg], logger=FakeLogger())
        config = build_config(args, conf)

        self.assertEqual(Path(args.workspace_path), self.workspace)
        self.assertEqual(config.temp_path, self.td / "temp")
        # config-only key with no CLI flag still reaches BuildConfig
        self.assertEqual(config.mount_max_retries, 7)

    def test_cli_args_override_config(self):
        cfg = self._cfg(
            f"temp_path: {self.td / 'temp'}\nworkspace_path: {self.workspace}\npowershell_version: 7.4.6\n"
        )

        args, conf, _ = parse_args_with_config(
            ["--config", cfg, "--powershell-version", "7.5.1", "--skip-cleanup"], logger=FakeLogger()
        )
        config = build_config(args, conf)

        self.assertEqual(config.powershell_version, "7.5.1")
        self.assertTrue(config.skip_cleanup)

    def test_yaml_null_backoff_and_string_booleans(self):
        cfg = self._cfg(
            f"temp_path: {self.td / 'temp'}\nworkspace_path: {self.workspace}\n"
            "max_backoff_s: null\nskip_cleanup: 'false'\n"
        )

        args, conf, _ = parse_args_with_config(["--config", cfg], logger=FakeLogger())
        config = build_config(args, conf)

        self.assertIsNone(config.max_backoff_s)
        self.assertFalse(config.skip_cleanup)

    def test_later_config_overrides_earlier(self):
        base = self._cfg(json.dumps({"temp_path": str(self.td), "workspace_path": str(self.workspace), "image_index": 1}), "a.json")
        over = self._cfg("image_index: 2\n", "b.yaml")

        args, conf, _ = parse_args_with_config(["--config", base, "--config", over], logger=FakeLogger())

        self.assertEqual(build_config(args, conf).image_index, 2)

    def test_max_backoff_off(self):
        args, conf, _ = parse_args_with_config(
            ["--temp-path", str(self.td), "--workspace-path", str(self.workspace), "--max-backoff", "off"],
            logger=FakeLogger(),
        )
        self.assertIsNone(build_config(args, conf).max_backoff_s)

    def test_default_backoff_cap(self):
        args, conf, _ = parse_args_with_config(
            ["--temp-path", str(self.td), "--workspace-path", str(self.workspace)], logger=FakeLogger()
        )
        self.assertEqual(build_config(args, conf).max_backoff_s, 300.0)


class TestCLIValidation(unittest.TestCase):
    def test_missing_workspace(self):
        with tempfile.TemporaryDirectory() as td:
            with self.assertRaises(Fatal) as cm:
                parse_args_with_config(
                    ["--temp-path", td, "--workspace-path", str(Path(td) / "nope")], logger=FakeLogger()
                )
            self.assertEqual(cm.exception.code, 2)
            self.assertIn("workspace not found", str(cm.exception))

    def test_missing_payload_file(self):
        with tempfile.TemporaryDirectory() as td:
            with self.assertRaises(Fatal):
                parse_args_with_config(
                    ["--temp-path", td, "--workspace-path", td, "--payload-path", str(Path(td) / "x.zip")],
                    logger=FakeLogger(),
                )

    def test_bad_instance_id(self):
        with tempfile.TemporaryDirectory() as td:
            with self.assertRaises(Fatal):
                parse_args_with_config(
                    ["--temp-path", td, "--workspace-path", td, "--instance-id", "not-a-uuid"], logger=FakeLogger()
                )

    def test_paths_required(self):
        with self.assertRaises(Fatal):
            parse_args_with_config([], logger=FakeLogger())

    def test_valid_instance_id(self):
        iid = str(uuid.uuid4())
        with tempfile.TemporaryDirectory() as td:
            args, conf, _ = parse_args_with_config(
                ["--temp-path", td, "--workspace-path", td, "--instance-id", iid], logger=FakeLogger()
            )
            self.assertEqual(build_config(args, conf).instance_id, iid)


if __name__ == "__main__":
    unittest.main()
