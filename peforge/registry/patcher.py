# SPDX-License-Identifier: LGPL-3.0-or-later
# -*- coding: utf-8 -*-
# peforge/registry/patcher.py
from __future__ import annotations

import logging
import time
from pathlib import Path
from typing import Callable, Iterable, List, Optional

from ..core.exceptions import RegistryPatchFailure
from ..core.locks import REGISTRY_PATCH, CriticalSectionManager
from ..core.retry import RetryExecutor, RetryPolicy
from .editor import REG_DWORD, REG_SZ, HiveEditor, RegistryValue

SOFTWARE_HIVE = Path("Windows") / "System32" / "config" / "SOFTWARE"

# Fixed slot used by every patch run; the registry-patch section serializes it.
PATCH_SLOT = "PEFORGE_SOFTWARE"

PWSH_INSTALL_DIR = r"X:\Windows\System32\PowerShell7"
POWERSHELL_CORE_GUID = "31ab5147-9a97-4452-8443-d9709f0516e1"


def default_registry_values(version: str, install_dir: str = PWSH_INSTALL_DIR) -> List[RegistryValue]:
    """Keys that make pwsh resolvable and script-enabled inside the booted image."""
    app_paths = r"Microsoft\Windows\CurrentVersion\App Paths\pwsh.exe"
    installed = rf"Microsoft\PowerShellCore\InstalledVersions\{POWERSHELL_CORE_GUID}"
    policies = r"Policies\Microsoft\PowerShellCore"
    return [
        RegistryValue(app_paths, "", REG_SZ, install_dir + r"\pwsh.exe"),
        RegistryValue(app_paths, "Path", REG_SZ, install_dir),
        RegistryValue(installed, "SemanticVersion", REG_SZ, version),
        RegistryValue(installed, "InstallLocation", REG_SZ, install_dir + "\\"),
        RegistryValue(policies, "EnableScripts", REG_DWORD, 1),
        RegistryValue(policies, "ExecutionPolicy", REG_SZ, "Bypass"),
    ]


class OfflineRegistryPatcher:
    """
    load SOFTWARE hive -> write values -> unload, inside the registry-patch
    critical section. Unload always runs once the load succeeded, and the
    section is only released after it.
    """

    def __init__(
        self,
        logger: logging.Logger,
        editor: HiveEditor,
        sections: CriticalSectionManager,
        *,
        policy: Optional[RetryPolicy] = None,
        sleep: Callable[[float], None] = time.sleep,
        slot: str = PATCH_SLOT,
    ):
        self.logger = logger
        self.editor = editor
        self.sections = sections
        self.slot = slot
        self._retry = RetryExecutor(logger, policy or RetryPolicy(max_retries=3, base_delay_s=1.0), sleep=sleep)

    def patch(self, mount_point: Path, values: Iterable[RegistryValue]) -> int:
        hive = Path(mount_point) / SOFTWARE_HIVE
        values = list(values)
        if not hive.is_file():
            raise RegistryPatchFailure(msg=f"SOFTWARE hive not found in image: {hive}", context={"hive": str(hive)})

        with self.sections.section(REGISTRY_PATCH):
            try:
                self._retry.run(lambda: self.editor.load(hive, self.slot), operation_name=f"Load hive {self.slot}")
            except Exception as e:
                raise RegistryPatchFailure(
                    msg=f"Failed to load {hive} at {self.slot}: {e}",
                    cause=e,
                    context={"hive": str(hive), "slot": self.slot},
                ) from e

            written = False
            try:
                for v in values:
                    self.logger.debug("Setting %s\\%s\\%s = %r", self.slot, v.key, v.name or "(default)", v.data)
                    self.editor.set_value(self.slot, v)
                written = True
            except Exception as e:
                raise RegistryPatchFailure(
                    msg=f"Failed to write registry values into {self.slot}: {e}",
                    cause=e,
                    context={"hive": str(hive), "slot": self.slot},
                ) from e
            finally:
                self._unload(hive, raise_errors=written)

        self.logger.info("Wrote %d registry value(s) into %s", len(values), hive)
        return len(values)

    def _unload(self, hive: Path, *, raise_errors: bool) -> None:
        try:
            self._retry.run(lambda: self.editor.unload(self.slot), operation_name=f"Unload hive {self.slot}")
        except Exception as e:
            if raise_errors:
                raise RegistryPatchFailure(
                    msg=f"Failed to unload {self.slot}; the hive may still be loaded: {e}",
                    cause=e,
                    context={"hive": str(hive), "slot": self.slot},
                ) from e
            # an earlier error is already propagating; keep it
            self.logger.error("Failed to unload %s after a write error: %s", self.slot, e)
