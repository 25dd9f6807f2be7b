# SPDX-License-Identifier: LGPL-3.0-or-later
from __future__ import annotations

from unittest.mock import patch

import pytest

from peforge.core.exceptions import StartupConfigFailure
from peforge.core.locks import STARTUP_SCRIPT, CriticalSectionManager
from peforge.core.utils import U
from peforge.registry.patcher import PWSH_INSTALL_DIR
from peforge.startup.configurer import PROFILE_DIR, STARTNET, StartupConfigurer, render_startnet

from fakes.fake_logger import FakeLogger

ORIGINAL = b"wpeinit\r\n"


@pytest.fixture
def mount_point(tmp_path):
    script = tmp_path / STARTNET
    script.parent.mkdir(parents=True)
    script.write_bytes(ORIGINAL)
    return tmp_path


@pytest.fixture
def configurer():
    return StartupConfigurer(FakeLogger(), CriticalSectionManager(FakeLogger()))


@pytest.mark.unit
class TestPrepareProfile:
    def test_idempotent(self, mount_point, configurer, monkeypatch):
        calls = []
        real = U.ensure_dir

        def counting(p):
            calls.append(p)
            real(p)

        monkeypatch.setattr(U, "ensure_dir", staticmethod(counting))

        assert configurer.prepare_profile(mount_point) is True
        assert configurer.prepare_profile(mount_point) is False
        assert calls == [mount_point / PROFILE_DIR]
        assert (mount_point / PROFILE_DIR).is_dir()

    def test_failure(self, mount_point, configurer):
        with patch.object(U, "ensure_dir", side_effect=PermissionError(13, "denied")):
            with pytest.raises(StartupConfigFailure):
                configurer.prepare_profile(mount_point)


@pytest.mark.unit
class TestFinalize:
    def test_render(self):
        text = render_startnet(PWSH_INSTALL_DIR).decode("ascii")
        lines = text.split("\r\n")

        assert lines[0] == "@echo off"
        assert lines[1] == "wpeinit"
        assert "pwsh.exe" in lines[3] and "-ExecutionPolicy Bypass" in lines[3]
        assert "\n" not in text.replace("\r\n", "")

    def test_writes_script_and_backup(self, mount_point, configurer):
        script = configurer.finalize(mount_point, PWSH_INSTALL_DIR)

        assert script.read_bytes() == render_startnet(PWSH_INSTALL_DIR)
        assert script.with_name("startnet.cmd.bak").read_bytes() == ORIGINAL
        assert not CriticalSectionManager.is_held(STARTUP_SCRIPT)

    def test_failed_write_restores_original(self, mount_point, configurer):
        with patch("peforge.startup.configurer.render_startnet", side_effect=OSError(28, "No space left on device")):
            with pytest.raises(StartupConfigFailure) as ei:
                configurer.finalize(mount_point, PWSH_INSTALL_DIR)

        assert (mount_point / STARTNET).read_bytes() == ORIGINAL
        assert ei.value.context["restored"] is True
        assert not CriticalSectionManager.is_held(STARTUP_SCRIPT)

    def test_no_original_script(self, tmp_path, configurer):
        (tmp_path / STARTNET).parent.mkdir(parents=True)

        script = configurer.finalize(tmp_path, PWSH_INSTALL_DIR)

        assert script.is_file()
        assert not script.with_name("startnet.cmd.bak").exists()
