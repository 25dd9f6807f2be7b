# SPDX-License-Identifier: LGPL-3.0-or-later
from __future__ import annotations

import pytest

from peforge.core.exceptions import HostCommandError, RegistryPatchFailure
from peforge.core.locks import REGISTRY_PATCH, CriticalSectionManager
from peforge.core.retry import RetryPolicy
from peforge.registry.editor import REG_DWORD, REG_SZ, RegistryValue
from peforge.registry.patcher import (
    PATCH_SLOT,
    PWSH_INSTALL_DIR,
    SOFTWARE_HIVE,
    OfflineRegistryPatcher,
    default_registry_values,
)

from fakes.fake_hive_editor import FakeHiveEditor
from fakes.fake_logger import FakeLogger


@pytest.fixture
def mount_point(tmp_path):
    hive = tmp_path / SOFTWARE_HIVE
    hive.parent.mkdir(parents=True)
    hive.write_bytes(b"regf" + b"\0" * 60)
    return tmp_path


def _patcher(editor, **kw):
    return OfflineRegistryPatcher(
        FakeLogger(),
        editor,
        CriticalSectionManager(FakeLogger()),
        policy=RetryPolicy(max_retries=2, base_delay_s=0),
        sleep=lambda s: None,
        **kw,
    )


@pytest.mark.unit
class TestDefaultValues:
    def test_contents(self):
        values = {(v.key, v.name): v for v in default_registry_values("7.5.0")}

        app = values[(r"Microsoft\Windows\CurrentVersion\App Paths\pwsh.exe", "")]
        assert app.data == PWSH_INSTALL_DIR + r"\pwsh.exe"
        policy = values[(r"Policies\Microsoft\PowerShellCore", "EnableScripts")]
        assert (policy.type, policy.data) == (REG_DWORD, 1)
        assert any(v.name == "SemanticVersion" and v.data == "7.5.0" for v in values.values())

    def test_unknown_type_rejected(self):
        with pytest.raises(ValueError):
            RegistryValue("k", "n", "REG_BINARY", b"\0")


@pytest.mark.unit
class TestOfflineRegistryPatcher:
    def test_patch_writes_and_unloads(self, mount_point):
        editor = FakeHiveEditor()
        n = _patcher(editor).patch(mount_point, default_registry_values("7.5.0"))

        assert n == 6
        assert [c[0] for c in editor.calls].count("load") == 1
        assert editor.calls[-1] == ("unload", PATCH_SLOT)
        written = editor.committed[mount_point / SOFTWARE_HIVE]
        assert written[(r"Policies\Microsoft\PowerShellCore", "ExecutionPolicy")] == "Bypass"

    def test_write_failure_still_unloads_and_releases(self, mount_point):
        editor = FakeHiveEditor()
        editor.fail_on_set = 3

        with pytest.raises(RegistryPatchFailure) as ei:
            _patcher(editor).patch(mount_point, default_registry_values("7.5.0"))

        assert len(editor.calls_named("load")) == 1
        assert len(editor.calls_named("unload")) == 1
        assert editor.loaded == {}
        assert not CriticalSectionManager.is_held(REGISTRY_PATCH)
        assert isinstance(ei.value.cause, HostCommandError)

    def test_write_failure_survives_unload_failure(self, mount_point):
        editor = FakeHiveEditor()
        editor.fail_on_set = 1
        editor.unload_failures = [HostCommandError(msg="ERROR: Access is denied.")]
        log = FakeLogger()
        patcher = OfflineRegistryPatcher(log, editor, CriticalSectionManager(FakeLogger()), sleep=lambda s: None)

        with pytest.raises(RegistryPatchFailure) as ei:
            patcher.patch(mount_point, default_registry_values("7.5.0"))

        assert "Failed to write registry values" in ei.value.msg
        assert any("Failed to unload" in m for m in log.messages("error"))

    def test_transient_load_retried(self, mount_point):
        editor = FakeHiveEditor()
        editor.load_failures = [HostCommandError(msg="The process cannot access the file because it is being used by another process.")]

        _patcher(editor).patch(mount_point, default_registry_values("7.5.0"))

        assert len(editor.calls_named("load")) == 2

    def test_load_failure_skips_unload(self, mount_point):
        editor = FakeHiveEditor()
        editor.load_failures = [HostCommandError(msg="ERROR: The system was unable to load the hive")]

        with pytest.raises(RegistryPatchFailure):
            _patcher(editor).patch(mount_point, default_registry_values("7.5.0"))

        assert editor.calls_named("unload") == []
        assert not CriticalSectionManager.is_held(REGISTRY_PATCH)

    def test_unload_failure_after_clean_write_raises(self, mount_point):
        editor = FakeHiveEditor()
        editor.unload_failures = [HostCommandError(msg="ERROR: Access is denied.")]

        with pytest.raises(RegistryPatchFailure) as ei:
            _patcher(editor).patch(mount_point, default_registry_values("7.5.0"))
        assert "unload" in ei.value.msg

    def test_missing_hive(self, tmp_path):
        editor = FakeHiveEditor()
        with pytest.raises(RegistryPatchFailure):
            _patcher(editor).patch(tmp_path, [RegistryValue("k", "v", REG_SZ, "x")])
        assert editor.calls == []
