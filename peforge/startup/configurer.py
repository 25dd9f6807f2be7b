# SPDX-License-Identifier: LGPL-3.0-or-later
# -*- coding: utf-8 -*-
# peforge/startup/configurer.py
"""
Startup launcher + profile directory inside the mounted image.

Finalize() replaces startnet.cmd with a launcher that starts pwsh after
wpeinit. The previous launcher is copied to startnet.cmd.bak first and copied
back if the write fails.
"""
from __future__ import annotations

import logging
import shutil
from pathlib import Path

from ..core.exceptions import StartupConfigFailure
from ..core.file_ops import atomic_write, safe_unlink
from ..core.locks import STARTUP_PROFILE, STARTUP_SCRIPT, CriticalSectionManager
from ..core.utils import U

PROFILE_DIR = Path("Windows") / "System32" / "config" / "systemprofile" / "Documents" / "PowerShell"
STARTNET = Path("Windows") / "System32" / "startnet.cmd"
BACKUP_SUFFIX = ".bak"


def render_startnet(install_dir: str) -> bytes:
    lines = [
        "@echo off",
        "wpeinit",
        f"set PATH=%PATH%;{install_dir}",
        f'start "PowerShell" /max "{install_dir}\\pwsh.exe" -NoLogo -NoExit -ExecutionPolicy Bypass',
        "",
    ]
    return "\r\n".join(lines).encode("ascii")


class StartupConfigurer:
    def __init__(
        self,
        logger: logging.Logger,
        sections: CriticalSectionManager,
        *,
        profile_rel: Path = PROFILE_DIR,
        startnet_rel: Path = STARTNET,
    ):
        self.logger = logger
        self.sections = sections
        self.profile_rel = Path(profile_rel)
        self.startnet_rel = Path(startnet_rel)

    def prepare_profile(self, mount_point: Path) -> bool:
        """Create the profile directory if absent. Returns True if it was created."""
        profile = Path(mount_point) / self.profile_rel
        with self.sections.section(STARTUP_PROFILE):
            if profile.is_dir():
                self.logger.debug("Profile directory already present: %s", profile)
                return False
            try:
                U.ensure_dir(profile)
            except OSError as e:
                raise StartupConfigFailure(
                    msg=f"Failed to create profile directory {profile}: {e}",
                    cause=e,
                    context={"profile": str(profile)},
                ) from e
        self.logger.info("Created profile directory %s", profile)
        return True

    def finalize(self, mount_point: Path, install_dir: str) -> Path:
        script = Path(mount_point) / self.startnet_rel
        backup = script.with_name(script.name + BACKUP_SUFFIX)

        with self.sections.section(STARTUP_SCRIPT):
            had_original = script.is_file()
            try:
                if had_original:
                    shutil.copy2(script, backup)
                    self.logger.debug("Backed up %s -> %s", script, backup)
            except OSError as e:
                raise StartupConfigFailure(
                    msg=f"Failed to back up {script}: {e}",
                    cause=e,
                    context={"script": str(script)},
                ) from e

            try:
                with atomic_write(script) as tmp:
                    tmp.write_bytes(render_startnet(install_dir))
            except Exception as e:
                self._restore(script, backup, had_original)
                raise StartupConfigFailure(
                    msg=f"Failed to write {script}: {e}",
                    cause=e,
                    context={"script": str(script), "restored": had_original},
                ) from e

        self.logger.info("Startup launcher written: %s", script)
        return script

    def _restore(self, script: Path, backup: Path, had_original: bool) -> None:
        try:
            if had_original:
                shutil.copy2(backup, script)
                self.logger.warning("Restored %s from %s", script, backup)
            else:
                safe_unlink(script)
        except OSError as e:
            self.logger.error("Failed to restore %s from backup: %s", script, e)
