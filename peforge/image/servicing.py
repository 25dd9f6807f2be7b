# SPDX-License-Identifier: LGPL-3.0-or-later
# -*- coding: utf-8 -*-
# peforge/image/servicing.py
"""
Host image-servicing backends.

peforge never parses WIM files itself; it drives the host tool:
  - dism.exe on Windows hosts
  - wimlib-imagex elsewhere (FUSE read-write mounts)

Both report failures as HostCommandError with the tool's output attached, so
"busy" conditions are classified transient by the retry layer.
"""
from __future__ import annotations

import logging
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional

from ..core.exceptions import Fatal
from ..core.utils import U

_KV_RE = re.compile(r"^\s*([A-Za-z][A-Za-z /]*?)\s*:\s*(.*?)\s*$")


@dataclass(frozen=True)
class ImageInfo:
    name: str
    architecture: str
    index: int = 1


def _parse_kv(text: str) -> Dict[str, str]:
    out: Dict[str, str] = {}
    for line in (text or "").splitlines():
        m = _KV_RE.match(line)
        if m and m.group(1).lower() not in out:
            out[m.group(1).lower()] = m.group(2)
    return out


class ImageServicer(ABC):
    tool_name = "servicer"

    def __init__(self, logger: logging.Logger, *, timeout_s: Optional[int] = None):
        self.logger = logger
        self.timeout_s = timeout_s

    @abstractmethod
    def get_image_info(self, image: Path, index: int = 1) -> ImageInfo:
        ...

    @abstractmethod
    def mount(self, image: Path, mount_dir: Path, index: int = 1) -> None:
        ...

    @abstractmethod
    def unmount(self, mount_dir: Path, *, commit: bool) -> None:
        ...

    def _run(self, cmd: List[str]) -> str:
        cp = U.run_cmd(self.logger, cmd, capture=True, timeout=self.timeout_s)
        return cp.stdout or ""

    def _info_from_output(self, out: str, image: Path, index: int) -> ImageInfo:
        kv = _parse_kv(out)
        name = kv.get("name", "").strip()
        arch = kv.get("architecture", "").strip()
        if not name or not arch:
            raise ValueError(f"{self.tool_name} returned no name/architecture for {image} index {index}")
        return ImageInfo(name=name, architecture=arch, index=index)


class DismServicer(ImageServicer):
    tool_name = "dism"

    def __init__(self, logger: logging.Logger, *, dism: str = "dism.exe", timeout_s: Optional[int] = None):
        super().__init__(logger, timeout_s=timeout_s)
        self.dism = dism

    def get_image_info(self, image: Path, index: int = 1) -> ImageInfo:
        out = self._run([self.dism, "/English", "/Get-ImageInfo", f"/ImageFile:{image}", f"/Index:{index}"])
        return self._info_from_output(out, image, index)

    def mount(self, image: Path, mount_dir: Path, index: int = 1) -> None:
        self._run([
            self.dism, "/English", "/Mount-Image",
            f"/ImageFile:{image}", f"/Index:{index}", f"/MountDir:{mount_dir}",
        ])

    def unmount(self, mount_dir: Path, *, commit: bool) -> None:
        self._run([
            self.dism, "/English", "/Unmount-Image",
            f"/MountDir:{mount_dir}", "/Commit" if commit else "/Discard",
        ])


class WimlibServicer(ImageServicer):
    tool_name = "wimlib-imagex"

    def __init__(self, logger: logging.Logger, *, wimlib: str = "wimlib-imagex", timeout_s: Optional[int] = None):
        super().__init__(logger, timeout_s=timeout_s)
        self.wimlib = wimlib

    def get_image_info(self, image: Path, index: int = 1) -> ImageInfo:
        out = self._run([self.wimlib, "info", str(image), str(index)])
        return self._info_from_output(out, image, index)

    def mount(self, image: Path, mount_dir: Path, index: int = 1) -> None:
        self._run([self.wimlib, "mountrw", str(image), str(index), str(mount_dir)])

    def unmount(self, mount_dir: Path, *, commit: bool) -> None:
        cmd = [self.wimlib, "unmount", str(mount_dir)]
        if commit:
            cmd.append("--commit")
        self._run(cmd)


def create_servicer(logger: logging.Logger, name: str = "auto") -> ImageServicer:
    if name == "auto":
        name = "dism" if U.is_windows() else "wimlib"
    if name == "dism":
        return DismServicer(logger)
    if name == "wimlib":
        if not U.which("wimlib-imagex"):
            logger.warning("wimlib-imagex not found on PATH; mount operations will fail")
        return WimlibServicer(logger)
    raise Fatal(2, f"Unknown image servicer: {name}")
