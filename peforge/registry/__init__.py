# SPDX-License-Identifier: LGPL-3.0-or-later
# peforge/registry/__init__.py
# hivex_editor is imported lazily by create_hive_editor(); python-hivex is optional.
from .editor import HiveEditor, RegExeHiveEditor, RegistryValue, create_hive_editor
from .patcher import OfflineRegistryPatcher, default_registry_values

__all__ = [
    "HiveEditor",
    "RegExeHiveEditor",
    "RegistryValue",
    "create_hive_editor",
    "OfflineRegistryPatcher",
    "default_registry_values",
]
