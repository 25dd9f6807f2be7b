# SPDX-License-Identifier: LGPL-3.0-or-later
# -*- coding: utf-8 -*-
# peforge/registry/editor.py
"""
Offline registry editing backends.

A hive is "loaded" into a named slot (for reg.exe: HKLM\\<slot>), edited, and
"unloaded". The host only allows one hive per slot, so callers serialize slot
use through a critical section.
"""
from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Union

from ..core.exceptions import Fatal
from ..core.utils import U

REG_SZ = "REG_SZ"
REG_EXPAND_SZ = "REG_EXPAND_SZ"
REG_DWORD = "REG_DWORD"

REG_TYPES = {REG_SZ: 1, REG_EXPAND_SZ: 2, REG_DWORD: 4}


@dataclass(frozen=True)
class RegistryValue:
    """
    key: path below the hive root, backslash separated
    name: value name; empty string means the key's default value
    """
    key: str
    name: str
    type: str
    data: Union[str, int]

    def __post_init__(self) -> None:
        if self.type not in REG_TYPES:
            raise ValueError(f"Unsupported registry type {self.type!r}")


class HiveEditor(ABC):
    def __init__(self, logger: logging.Logger):
        self.logger = logger

    @abstractmethod
    def load(self, hive_file: Path, slot: str) -> None:
        ...

    @abstractmethod
    def set_value(self, slot: str, value: RegistryValue) -> None:
        ...

    @abstractmethod
    def export(self, slot: str, dest: Path) -> None:
        ...

    @abstractmethod
    def unload(self, slot: str) -> None:
        ...


class RegExeHiveEditor(HiveEditor):
    """reg.exe backend (Windows hosts)."""

    def __init__(self, logger: logging.Logger, *, reg: str = "reg.exe", root: str = "HKLM", timeout_s: Optional[int] = 120):
        super().__init__(logger)
        self.reg = reg
        self.root = root
        self.timeout_s = timeout_s

    def _slot_key(self, slot: str, key: str = "") -> str:
        base = f"{self.root}\\{slot}"
        return f"{base}\\{key.strip(chr(92))}" if key else base

    def _run(self, args: List[str]) -> None:
        U.run_cmd(self.logger, [self.reg, *args], capture=True, timeout=self.timeout_s)

    def load(self, hive_file: Path, slot: str) -> None:
        self._run(["load", self._slot_key(slot), str(hive_file)])

    def set_value(self, slot: str, value: RegistryValue) -> None:
        args = ["add", self._slot_key(slot, value.key)]
        args += ["/v", value.name] if value.name else ["/ve"]
        args += ["/t", value.type, "/d", str(value.data), "/f"]
        self._run(args)

    def export(self, slot: str, dest: Path) -> None:
        self._run(["export", self._slot_key(slot), str(dest), "/y"])

    def unload(self, slot: str) -> None:
        self._run(["unload", self._slot_key(slot)])


def create_hive_editor(logger: logging.Logger, name: str = "auto") -> HiveEditor:
    if name == "auto":
        name = "reg" if U.is_windows() else "hivex"
    if name == "reg":
        return RegExeHiveEditor(logger)
    if name == "hivex":
        # python-hivex is an optional extra; only import it when selected
        from .hivex_editor import HivexHiveEditor

        return HivexHiveEditor(logger)
    raise Fatal(2, f"Unknown registry backend: {name}")
