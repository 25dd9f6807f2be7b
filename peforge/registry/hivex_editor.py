# SPDX-License-Identifier: LGPL-3.0-or-later
# -*- coding: utf-8 -*-
# peforge/registry/hivex_editor.py
"""
python-hivex backend for hosts without reg.exe.

"Loading" opens the hive file for writing and binds it to the slot name;
"unloading" commits (when something was written) and closes it. Values are
encoded the way Windows stores them (REG_SZ as UTF-16LE with a terminating NUL, REG_DWORD little-endian).
"""
from __future__ import annotations

import logging
import threading
from pathlib import Path
from typing import Any, Dict, List, Optional, Set, Tuple, Union

import hivex  # type: ignore

from .editor import REG_DWORD, REG_TYPES, HiveEditor, RegistryValue

NodeLike = Union[int, None]


def _is_probably_regf(path: Path) -> bool:
    """
    Windows registry hives start with ASCII 'regf' signature.
    Cheap corruption/truncation guardrail.
    """
    try:
        with open(path, "rb") as f:
            return f.read(4) == b"regf"
    except OSError:
        return False


def _node_id(n: NodeLike) -> int:
    """Convert node to int, treating None as 0 (python-hivex versions differ)."""
    if n is None:
        return 0
    try:
        return int(n)
    except (TypeError, ValueError):
        return 0


def _reg_sz(s: str) -> bytes:
    """Encode string as REG_SZ (UTF-16LE with null terminator)."""
    return (s + "\0").encode("utf-16le", errors="ignore")


def _decode_reg_sz(raw: bytes) -> str:
    return raw.decode("utf-16le", errors="ignore").rstrip("\x00")


def _encode_value(value: RegistryValue) -> Dict[str, Any]:
    t = REG_TYPES[value.type]
    if value.type == REG_DWORD:
        raw = int(value.data).to_bytes(4, "little", signed=False)
    else:
        raw = _reg_sz(str(value.data))
    return {"key": value.name, "t": t, "value": raw}


def _ensure_child(h: "hivex.Hivex", parent: NodeLike, name: str) -> int:
    """Get or create child node."""
    pid = _node_id(parent)
    if pid == 0:
        raise RuntimeError(f"invalid parent node while ensuring child {name}")

    ch = _node_id(h.node_get_child(pid, name))
    if ch == 0:
        ch = _node_id(h.node_add_child(pid, name))
    if ch == 0:
        raise RuntimeError(f"failed to create child key {name}")
    return ch


def _format_value(t: int, raw: bytes) -> str:
    if t in (1, 2):
        s = _decode_reg_sz(raw).replace("\\", "\\\\").replace('"', '\\"')
        return f'"{s}"' if t == 1 else "hex(2):" + ",".join(f"{b:02x}" for b in raw)
    if t == 4 and len(raw) >= 4:
        return f"dword:{int.from_bytes(raw[:4], 'little'):08x}"
    return f"hex({t:x}):" + ",".join(f"{b:02x}" for b in raw)


class HivexHiveEditor(HiveEditor):
    def __init__(self, logger: logging.Logger):
        super().__init__(logger)
        self._slots: Dict[str, Tuple[Any, Path]] = {}
        self._dirty: Set[str] = set()
        self._lock = threading.Lock()

    def _handle(self, slot: str) -> Any:
        try:
            return self._slots[slot][0]
        except KeyError:
            raise RuntimeError(f"No hive loaded in slot {slot!r}") from None

    def load(self, hive_file: Path, slot: str) -> None:
        p = Path(hive_file)
        if not p.is_file():
            raise FileNotFoundError(f"hive file missing: {p}")
        if not _is_probably_regf(p):
            raise RuntimeError(f"hive file does not look like a regf hive: {p}")
        with self._lock:
            if slot in self._slots:
                raise RuntimeError(f"Hive slot {slot!r} is already loaded")
            self._slots[slot] = (hivex.Hivex(str(p), write=True), p)
        self.logger.debug("Opened hive %s as %s", p, slot)

    def set_value(self, slot: str, value: RegistryValue) -> None:
        h = self._handle(slot)
        node = _node_id(h.root())
        for part in [x for x in value.key.split("\\") if x]:
            node = _ensure_child(h, node, part)
        h.node_set_value(node, _encode_value(value))
        self._dirty.add(slot)

    def export(self, slot: str, dest: Path) -> None:
        h = self._handle(slot)
        lines: List[str] = ["REGEDIT4", ""]

        def walk(node: int, path: str) -> None:
            lines.append(f"[{path}]")
            for v in h.node_values(node) or []:
                name = h.value_key(v)
                t, raw = h.value_value(v)
                label = f'"{name}"' if name else "@"
                lines.append(f"{label}={_format_value(int(t), bytes(raw))}")
            lines.append("")
            for child in h.node_children(node) or []:
                walk(_node_id(child), f"{path}\\{h.node_name(child)}")

        walk(_node_id(h.root()), f"HKEY_LOCAL_MACHINE\\{slot}")
        Path(dest).write_text("\r\n".join(lines), encoding="utf-8")

    def unload(self, slot: str) -> None:
        with self._lock:
            entry: Optional[Tuple[Any, Path]] = self._slots.pop(slot, None)
            dirty = slot in self._dirty
            self._dirty.discard(slot)
        if entry is None:
            return
        h, p = entry
        try:
            if dirty:
                h.commit(None)
        finally:
            close = getattr(h, "close", None)
            if callable(close):
                close()
        self.logger.debug("Closed hive %s from %s (committed=%s)", p, slot, dirty)
