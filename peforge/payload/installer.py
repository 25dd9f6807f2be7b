# SPDX-License-Identifier: LGPL-3.0-or-later
# -*- coding: utf-8 -*-
# peforge/payload/installer.py
from __future__ import annotations

import logging
import shutil
import sys
import zipfile
from pathlib import Path

from rich.progress import BarColumn, Progress, TextColumn, TimeElapsedColumn

from ..core.exceptions import InstallationVerificationFailed, PayloadError
from ..core.locks import PAYLOAD_COPY, CriticalSectionManager
from ..core.utils import U

PAYLOAD_DEST = Path("Windows") / "System32" / "PowerShell7"
ENTRY_POINT = "pwsh.exe"


class PayloadInstaller:
    def __init__(
        self,
        logger: logging.Logger,
        sections: CriticalSectionManager,
        *,
        dest_rel: Path = PAYLOAD_DEST,
        entry_point: str = ENTRY_POINT,
    ):
        self.logger = logger
        self.sections = sections
        self.dest_rel = Path(dest_rel)
        self.entry_point = entry_point

    def install(self, archive: Path, mount_point: Path) -> Path:
        """
        Extract `archive` into <mount_point>/<dest_rel> and verify the entry
        point exists. Returns the destination directory.
        """
        dest = Path(mount_point) / self.dest_rel

        with self.sections.section(PAYLOAD_COPY):
            U.ensure_dir(dest)
            self._extract(Path(archive), dest)

            entry = dest / self.entry_point
            if not entry.is_file():
                raise InstallationVerificationFailed(
                    msg=f"{self.entry_point} not found in {dest} after extraction",
                    context={"archive": str(archive), "dest": str(dest)},
                )

        self.logger.info("Installed payload into %s", dest)
        return dest

    def _extract(self, archive: Path, dest: Path) -> None:
        root = dest.resolve()
        try:
            with zipfile.ZipFile(archive) as zf:
                members = zf.infolist()
                with Progress(
                    TextColumn("{task.description}"),
                    BarColumn(),
                    TextColumn("{task.completed}/{task.total}"),
                    TimeElapsedColumn(),
                    transient=True,
                    disable=not sys.stderr.isatty(),
                ) as progress:
                    task = progress.add_task(f"Extracting {archive.name}", total=len(members))
                    for m in members:
                        target = (root / m.filename).resolve()
                        if target != root and root not in target.parents:
                            raise PayloadError(
                                msg=f"Archive member escapes destination: {m.filename!r}",
                                context={"archive": str(archive)},
                            )
                        if m.is_dir():
                            target.mkdir(parents=True, exist_ok=True)
                        else:
                            target.parent.mkdir(parents=True, exist_ok=True)
                            with zf.open(m) as src, open(target, "wb") as out:
                                shutil.copyfileobj(src, out)
                        progress.advance(task)
        except (zipfile.BadZipFile, OSError) as e:
            raise PayloadError(msg=f"Failed to extract {archive}: {e}", cause=e, context={"archive": str(archive)}) from e
        self.logger.debug("Extracted %d entries from %s", len(members), archive.name)
