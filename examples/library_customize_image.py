#!/usr/bin/env python3
# SPDX-License-Identifier: LGPL-3.0-or-later
"""
Example: customize a WinPE boot image using the peforge library.

This example demonstrates:
- Building a BuildConfig in code instead of YAML
- Running the Orchestrator and inspecting the PipelineResult
- Reporting the diagnostics bundle when a run fails

Usage:
    python library_customize_image.py C:\\WinPE_amd64 C:\\peforge\\temp [PowerShell-7.5.0-win-x64.zip]
"""

import sys
from pathlib import Path

from peforge import BuildConfig, Orchestrator
from peforge.core.exceptions import Fatal
from peforge.core.logger import Log


def customize(workspace: str, temp: str, payload: str = None) -> int:
    logger = Log.setup(verbose=1)
    config = BuildConfig(
        temp_path=Path(temp),
        workspace_path=Path(workspace),
        payload_path=Path(payload) if payload else None,
        max_backoff_s=120,
    )

    orchestrator = Orchestrator(logger, config)
    try:
        result = orchestrator.run()
    except Fatal as e:
        failed = orchestrator.last_result
        logger.error("Customization failed: %s", e)
        if failed is not None and failed.diagnostics is not None:
            logger.error("Diagnostics bundle: %s", failed.diagnostics.path)
        if failed is not None and failed.rollback_error is not None:
            logger.error("Image may still be mounted: %s", failed.rollback_error)
        return e.code

    logger.info("Committed %s", result.image_path)
    logger.info("States: %s", " -> ".join(s.value for s in result.history))
    return 0


if __name__ == "__main__":
    if len(sys.argv) < 3:
        print(__doc__)
        sys.exit(1)
    sys.exit(customize(*sys.argv[1:4]))
