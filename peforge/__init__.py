# SPDX-License-Identifier: LGPL-3.0-or-later
# -*- coding: utf-8 -*-
# peforge/__init__.py
"""
peforge - WinPE boot image customization

Mounts a WinPE boot.wim, injects PowerShell 7, patches the offline SOFTWARE
hive, rewrites the startup launcher and commits the image. Any failure after
the mount is rolled back with the image discarded.

Usage as a library:

    from peforge import BuildConfig, Orchestrator
    from peforge.core.logger import Log

    logger = Log.setup(verbose=1)
    config = BuildConfig(temp_path=Path("C:/pe/temp"), workspace_path=Path("C:/WinPE_amd64"))
    result = Orchestrator(logger, config).run()
"""

__version__ = "0.1.0"

from .config.settings import BuildConfig
from .orchestrator import Orchestrator, PipelineResult, PipelineState, Pwsh7Customizer

__all__ = [
    "__version__",
    "BuildConfig",
    "Orchestrator",
    "PipelineResult",
    "PipelineState",
    "Pwsh7Customizer",
]
