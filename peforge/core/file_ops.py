# SPDX-License-Identifier: LGPL-3.0-or-later
# -*- coding: utf-8 -*-
# peforge/core/file_ops.py
"""
Atomic file operation utilities.

Files inside a mounted image are replaced via a temporary sibling + rename so
a failed write never leaves a half-written launcher script behind.
"""

from __future__ import annotations

import os
import tempfile
from contextlib import contextmanager
from pathlib import Path
from typing import Generator, Optional


@contextmanager
def atomic_write(
    target_path: Path,
    *,
    suffix: str = ".part",
    dir: Optional[Path] = None,
    delete_on_error: bool = True,
) -> Generator[Path, None, None]:
    """
    Context manager for atomic file writes using temporary file + rename.

    Creates a temporary file, yields its path for writing, then atomically
    renames it to the target path on success. Cleans up temp file on failure.

    Example:
        with atomic_write(mount / "Windows/System32/startnet.cmd") as tmp:
            tmp.write_bytes(data)
    """
    target_path = Path(target_path)
    temp_dir = Path(dir) if dir else target_path.parent
    temp_dir.mkdir(parents=True, exist_ok=True)

    fd, temp_name = tempfile.mkstemp(
        suffix=suffix,
        prefix=f".{target_path.name}.",
        dir=str(temp_dir),
    )
    temp_path = Path(temp_name)

    try:
        os.close(fd)  # caller opens temp_path
        yield temp_path
        os.replace(temp_path, target_path)
    except BaseException:
        if delete_on_error:
            safe_unlink(temp_path)
        raise


def safe_unlink(path: Path, missing_ok: bool = True) -> None:
    """
    Delete a file, optionally ignoring if it doesn't exist.
    """
    try:
        Path(path).unlink(missing_ok=missing_ok)
    except OSError:
        if not missing_ok:
            raise
