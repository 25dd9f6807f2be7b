# SPDX-License-Identifier: LGPL-3.0-or-later
from __future__ import annotations

import threading
from pathlib import Path

from peforge.core.exceptions import HostCommandError
from peforge.registry.editor import HiveEditor

from fakes.fake_logger import FakeLogger


class FakeHiveEditor(HiveEditor):
    '''
    In-memory hive editor. Values live in self.values[slot][(key, name)].
    A slot can only hold one hive at a time, as with reg.exe.
    '''

    def __init__(self, logger=None):
        super().__init__(logger or FakeLogger())
        self.calls = []
        self.loaded = {}
        self.values = {}
        self.committed = {}         # hive path -> values written before unload
        self.fail_on_set = None     # 1-based index of the set_value call that fails
        self.load_failures = []
        self.unload_failures = []
        self.slot_collisions = 0
        self._sets = 0
        self._lock = threading.Lock()

    def calls_named(self, name):
        return [c for c in self.calls if c[0] == name]

    def load(self, hive_file, slot):
        with self._lock:
            self.calls.append(("load", slot, Path(hive_file)))
            if self.load_failures:
                raise self.load_failures.pop(0)
            if slot in self.loaded:
                self.slot_collisions += 1
                raise HostCommandError(msg=f"ERROR: slot {slot} is already loaded")
            self.loaded[slot] = Path(hive_file)
            self.values.setdefault(slot, {})

    def set_value(self, slot, value):
        with self._lock:
            self.calls.append(("set", slot, value.key, value.name))
            self._sets += 1
            if self.fail_on_set is not None and self._sets == self.fail_on_set:
                raise HostCommandError(msg="ERROR: Access is denied.")
            if slot not in self.loaded:
                raise HostCommandError(msg=f"ERROR: slot {slot} is not loaded")
            self.values[slot][(value.key, value.name)] = value.data

    def export(self, slot, dest):
        with self._lock:
            self.calls.append(("export", slot, Path(dest)))
            if slot not in self.loaded:
                raise HostCommandError(msg=f"ERROR: slot {slot} is not loaded")
            lines = ["REGEDIT4", ""]
            for (key, name), data in sorted(self.values.get(slot, {}).items()):
                lines.append(f"[{key}] {name or '@'}={data!r}")
        Path(dest).write_text("\n".join(lines) + "\n", encoding="utf-8")

    def unload(self, slot):
        with self._lock:
            self.calls.append(("unload", slot))
            if self.unload_failures:
                raise self.unload_failures.pop(0)
            hive = self.loaded.pop(slot, None)
            if hive is None:
                raise HostCommandError(msg=f"ERROR: slot {slot} is not loaded")
            self.committed[hive] = dict(self.values.pop(slot, {}))
