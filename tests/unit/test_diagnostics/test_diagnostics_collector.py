# SPDX-License-Identifier: LGPL-3.0-or-later
from __future__ import annotations

import json
from unittest.mock import patch

import pytest

from peforge.core.exceptions import HostCommandError
from peforge.diagnostics.collector import DiagnosticsCollector, export_slot_for, instance_token
from peforge.registry.patcher import PATCH_SLOT, SOFTWARE_HIVE

from fakes.fake_hive_editor import FakeHiveEditor
from fakes.fake_logger import FakeLogger

IID = "9f3c2a10-5b1e-4c7d-8e2f-0a1b2c3d4e5f"


@pytest.fixture
def mount_point(tmp_path):
    root = tmp_path / "Mount"
    (root / "Windows" / "Logs" / "DISM").mkdir(parents=True)
    (root / "Windows" / "Logs" / "DISM" / "dism.log").write_text("dism\n")
    (root / SOFTWARE_HIVE).parent.mkdir(parents=True)
    (root / SOFTWARE_HIVE).write_bytes(b"regf")
    (root / "Windows" / "System32" / "startnet.cmd").write_bytes(b"wpeinit\r\n")
    return root


@pytest.mark.unit
class TestDiagnosticsCollector:
    def test_bundle_layout(self, tmp_path, mount_point):
        bundle = DiagnosticsCollector(FakeLogger()).collect(tmp_path, mount_point, instance_id=IID, state="Diagnosed")

        assert bundle.path.name.startswith("Diagnostics_")
        assert [p.name for p in bundle.logs] == ["dism.log"]
        assert [p.name for p in bundle.config_snapshots] == ["startnet.cmd"]
        assert bundle.registry_export is None
        manifest = json.loads((bundle.path / "bundle.json").read_text())
        assert manifest["instance_id"] == IID
        assert manifest["state"] == "Diagnosed"

    def test_registry_export_uses_instance_slot(self, tmp_path, mount_point):
        editor = FakeHiveEditor()
        bundle = DiagnosticsCollector(FakeLogger(), editor).collect(
            tmp_path, mount_point, instance_id=IID, include_registry_export=True
        )

        slot = export_slot_for(IID)
        assert slot == "PEFORGE_DIAG_9F3C2A105B1E4C7D8E2F0A1B2C3D4E5F"
        assert slot != PATCH_SLOT
        assert [c[0] for c in editor.calls] == ["load", "export", "unload"]
        assert bundle.registry_export.read_text().startswith("REGEDIT4")

    def test_export_failure_is_recorded_not_raised(self, tmp_path, mount_point):
        editor = FakeHiveEditor()
        editor.unload_failures = [HostCommandError(msg="ERROR: Access is denied.")]

        with patch.object(editor, "export", side_effect=HostCommandError(msg="ERROR: export failed")):
            bundle = DiagnosticsCollector(FakeLogger(), editor).collect(
                tmp_path, mount_point, instance_id=IID, include_registry_export=True
            )

        assert bundle.registry_export is None
        assert any("export" in e for e in bundle.errors)
        assert any("unload" in e for e in bundle.errors)

    def test_never_raises(self, tmp_path, mount_point):
        log = FakeLogger()
        staging = tmp_path / "file"
        staging.write_text("not a directory")

        assert DiagnosticsCollector(log).collect(staging, mount_point, instance_id=IID) is None
        assert any("Diagnostics collection failed" in m for m in log.messages("warning"))

    def test_same_second_collision(self, tmp_path, mount_point):
        collector = DiagnosticsCollector(FakeLogger())
        with patch("peforge.diagnostics.collector.U.now_ts", return_value="20260101-120000"):
            a = collector.collect(tmp_path, mount_point, instance_id=IID)
            b = collector.collect(tmp_path, mount_point, instance_id="0badc0de-0000-4000-8000-000000000000")

        assert a.path.name == "Diagnostics_20260101-120000"
        assert b.path.name == "Diagnostics_20260101-120000_0badc0de000040008000000000000000"

    def test_ids_sharing_a_prefix_get_distinct_slots(self):
        a = "12345678-0000-4000-8000-000000000001"
        b = "12345678-0000-4000-8000-000000000002"

        assert export_slot_for(a) != export_slot_for(b)
        assert instance_token(a) != instance_token(b)

    def test_non_uuid_id_is_made_slot_safe(self):
        assert export_slot_for("lab run/1") == "PEFORGE_DIAG_LAB_RUN_1"

    def test_same_second_bundles_never_lost(self, tmp_path, mount_point):
        collector = DiagnosticsCollector(FakeLogger())
        ids = [
            "12345678-0000-4000-8000-000000000001",
            "12345678-0000-4000-8000-000000000002",
            "12345678-0000-4000-8000-000000000002",
        ]
        with patch("peforge.diagnostics.collector.U.now_ts", return_value="20260101-120000"):
            bundles = [collector.collect(tmp_path, mount_point, instance_id=i) for i in ids]

        assert all(b is not None for b in bundles)
        assert len({b.path for b in bundles}) == 3
        assert all((b.path / "bundle.json").is_file() for b in bundles)
