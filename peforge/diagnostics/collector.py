# SPDX-License-Identifier: LGPL-3.0-or-later
# -*- coding: utf-8 -*-
# peforge/diagnostics/collector.py
"""
Best-effort postmortem snapshot of a mounted image.

Layout:
    <staging>/Diagnostics_<timestamp>/
        Logs/        copied log files
        Config/      launcher/config snapshots
        Registry/    SOFTWARE.reg (only when a registry export is requested)
        bundle.json  what was captured and what failed

Nothing in here raises to the caller: a diagnostics problem must never hide
the failure being diagnosed.
"""
from __future__ import annotations

import json
import logging
import re
import shutil
import tempfile
import uuid
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional, Sequence, Tuple

from ..core.utils import U
from ..registry.editor import HiveEditor
from ..registry.patcher import SOFTWARE_HIVE

LOG_PATHS: Tuple[str, ...] = (
    "Windows/Logs/DISM/dism.log",
    "Windows/Logs/CBS/CBS.log",
    "Windows/Panther/setupact.log",
    "Windows/System32/wpeinit.log",
)
CONFIG_PATHS: Tuple[str, ...] = (
    "Windows/System32/startnet.cmd",
    "Windows/System32/startnet.cmd.bak",
    "Windows/System32/winpeshl.ini",
    "Windows/System32/unattend.xml",
)

# Distinct from the patcher's slot and unique per instance.
EXPORT_SLOT_PREFIX = "PEFORGE_DIAG_"
_TOKEN_UNSAFE_RE = re.compile(r"[^A-Za-z0-9_.-]+")


@dataclass(frozen=True)
class DiagnosticsBundle:
    path: Path
    logs: Tuple[Path, ...] = ()
    config_snapshots: Tuple[Path, ...] = ()
    registry_export: Optional[Path] = None
    errors: Tuple[str, ...] = field(default_factory=tuple)


def instance_token(instance_id: str) -> str:
    """Full 32-hex form of a UUID id; other ids are reduced to registry-safe chars."""
    try:
        return uuid.UUID(str(instance_id)).hex
    except ValueError:
        return _TOKEN_UNSAFE_RE.sub("_", str(instance_id))


def export_slot_for(instance_id: str) -> str:
    return EXPORT_SLOT_PREFIX + instance_token(instance_id).upper()


class DiagnosticsCollector:
    def __init__(
        self,
        logger: logging.Logger,
        editor: Optional[HiveEditor] = None,
        *,
        log_paths: Sequence[str] = LOG_PATHS,
        config_paths: Sequence[str] = CONFIG_PATHS,
    ):
        self.logger = logger
        self.editor = editor
        self.log_paths = tuple(log_paths)
        self.config_paths = tuple(config_paths)

    def collect(
        self,
        staging_root: Path,
        mount_point: Path,
        *,
        instance_id: str,
        include_registry_export: bool = False,
        state: Optional[str] = None,
    ) -> Optional[DiagnosticsBundle]:
        try:
            return self._collect(
                Path(staging_root),
                Path(mount_point),
                instance_id=instance_id,
                include_registry_export=include_registry_export,
                state=state,
            )
        except Exception as e:
            self.logger.warning("Diagnostics collection failed: %s", e)
            return None

    def _bundle_dir(self, staging_root: Path, instance_id: str) -> Path:
        ts = U.now_ts()
        token = instance_token(instance_id)
        path = None
        for candidate in (staging_root / f"Diagnostics_{ts}", staging_root / f"Diagnostics_{ts}_{token}"):
            try:
                candidate.mkdir(parents=True, exist_ok=False)
            except FileExistsError:
                continue
            path = candidate
            break
        if path is None:
            # this instance already collected within the same second
            path = Path(tempfile.mkdtemp(prefix=f"Diagnostics_{ts}_{token}_", dir=staging_root))
        for sub in ("Logs", "Config", "Registry"):
            (path / sub).mkdir()
        return path

    def _copy_many(self, mount_point: Path, rels: Sequence[str], dest_dir: Path, errors: List[str]) -> List[Path]:
        copied: List[Path] = []
        for rel in rels:
            src = mount_point / rel
            if not src.is_file():
                continue
            dest = dest_dir / src.name
            try:
                shutil.copy2(src, dest)
                copied.append(dest)
            except OSError as e:
                errors.append(f"copy {rel}: {e}")
                self.logger.warning("Diagnostics: failed to copy %s: %s", src, e)
        return copied

    def _export_registry(self, mount_point: Path, dest_dir: Path, instance_id: str, errors: List[str]) -> Optional[Path]:
        if self.editor is None:
            errors.append("registry export requested but no hive editor configured")
            return None
        hive = mount_point / SOFTWARE_HIVE
        if not hive.is_file():
            errors.append(f"registry export: hive missing at {hive}")
            return None

        slot = export_slot_for(instance_id)
        dest = dest_dir / "SOFTWARE.reg"
        try:
            self.editor.load(hive, slot)
        except Exception as e:
            errors.append(f"registry load {slot}: {e}")
            self.logger.warning("Diagnostics: failed to load hive at %s: %s", slot, e)
            return None
        try:
            self.editor.export(slot, dest)
        except Exception as e:
            errors.append(f"registry export {slot}: {e}")
            self.logger.warning("Diagnostics: registry export failed: %s", e)
            dest = None  # type: ignore[assignment]
        finally:
            try:
                self.editor.unload(slot)
            except Exception as e:
                errors.append(f"registry unload {slot}: {e}")
                self.logger.warning("Diagnostics: failed to unload %s: %s", slot, e)
        return dest

    def _collect(
        self,
        staging_root: Path,
        mount_point: Path,
        *,
        instance_id: str,
        include_registry_export: bool,
        state: Optional[str],
    ) -> DiagnosticsBundle:
        path = self._bundle_dir(staging_root, instance_id)
        errors: List[str] = []

        logs = self._copy_many(mount_point, self.log_paths, path / "Logs", errors)
        configs = self._copy_many(mount_point, self.config_paths, path / "Config", errors)

        export: Optional[Path] = None
        if include_registry_export:
            export = self._export_registry(mount_point, path / "Registry", instance_id, errors)

        bundle = DiagnosticsBundle(
            path=path,
            logs=tuple(logs),
            config_snapshots=tuple(configs),
            registry_export=export,
            errors=tuple(errors),
        )
        manifest = {
            "instance_id": instance_id,
            "state": state,
            "created": U.now_ts(),
            "mount_point": str(mount_point),
            "logs": [p.name for p in logs],
            "config": [p.name for p in configs],
            "registry_export": export.name if export else None,
            "errors": errors,
        }
        (path / "bundle.json").write_text(json.dumps(manifest, indent=2, sort_keys=True), encoding="utf-8")

        self.logger.info(
            "Diagnostics bundle %s (logs=%d config=%d registry=%s)",
            path,
            len(logs),
            len(configs),
            "yes" if export else "no",
        )
        return bundle
