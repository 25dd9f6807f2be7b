# SPDX-License-Identifier: LGPL-3.0-or-later
from __future__ import annotations

from pathlib import Path
from unittest.mock import patch

import pytest

from peforge.core.exceptions import Fatal
from peforge.registry.editor import REG_DWORD, REG_SZ, RegExeHiveEditor, RegistryValue, create_hive_editor

from fakes.fake_logger import FakeLogger


@pytest.mark.unit
class TestRegExeHiveEditor:
    @patch("peforge.registry.editor.U.run_cmd")
    def test_command_lines(self, run_cmd):
        ed = RegExeHiveEditor(FakeLogger())
        ed.load(Path("SOFTWARE"), "PEFORGE_SOFTWARE")
        ed.set_value("PEFORGE_SOFTWARE", RegistryValue(r"Policies\Microsoft\PowerShellCore", "EnableScripts", REG_DWORD, 1))
        ed.set_value("PEFORGE_SOFTWARE", RegistryValue(r"\App Paths\pwsh.exe", "", REG_SZ, r"X:\pwsh.exe"))
        ed.unload("PEFORGE_SOFTWARE")

        cmds = [call[0][1] for call in run_cmd.call_args_list]
        assert cmds[0] == ["reg.exe", "load", r"HKLM\PEFORGE_SOFTWARE", "SOFTWARE"]
        assert cmds[1] == [
            "reg.exe", "add", r"HKLM\PEFORGE_SOFTWARE\Policies\Microsoft\PowerShellCore",
            "/v", "EnableScripts", "/t", "REG_DWORD", "/d", "1", "/f",
        ]
        assert cmds[2][2] == r"HKLM\PEFORGE_SOFTWARE\App Paths\pwsh.exe"
        assert "/ve" in cmds[2]
        assert cmds[3] == ["reg.exe", "unload", r"HKLM\PEFORGE_SOFTWARE"]


@pytest.mark.unit
class TestCreateHiveEditor:
    def test_reg_on_windows(self):
        with patch("peforge.registry.editor.U.is_windows", return_value=True):
            assert isinstance(create_hive_editor(FakeLogger()), RegExeHiveEditor)

    def test_unknown(self):
        with pytest.raises(Fatal):
            create_hive_editor(FakeLogger(), "regedit")
