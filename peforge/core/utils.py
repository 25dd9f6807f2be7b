# SPDX-License-Identifier: LGPL-3.0-or-later
# -*- coding: utf-8 -*-
# peforge/core/utils.py
from __future__ import annotations

import datetime as _dt
import hashlib
import json
import logging
import os
import shlex
import shutil
import subprocess
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from .exceptions import Fatal, HostCommandError


class U:
    @staticmethod
    def die(logger: Any, msg: str, code: int = 1) -> None:
        logger.error(msg)
        raise Fatal(code, msg)

    @staticmethod
    def ensure_dir(p: Path) -> None:
        p.mkdir(parents=True, exist_ok=True)

    @staticmethod
    def which(prog: str) -> Optional[str]:
        return shutil.which(prog)

    @staticmethod
    def is_windows() -> bool:
        return os.name == "nt"

    @staticmethod
    def now_ts() -> str:
        return _dt.datetime.now().strftime("%Y%m%d-%H%M%S")

    @staticmethod
    def json_dump(obj: Any) -> str:
        try:
            return json.dumps(obj, indent=2, sort_keys=True, default=str)
        except Exception:
            return repr(obj)

    @staticmethod
    def human_bytes(n: Optional[int]) -> str:
        if n is None:
            return "unknown"
        x = float(n)
        for unit in ["B", "KiB", "MiB", "GiB", "TiB"]:
            if x < 1024 or unit == "TiB":
                return f"{x:.2f} {unit}" if unit != "B" else f"{int(x)} {unit}"
            x /= 1024
        return f"{n} B"

    @staticmethod
    def _pretty_cmd(cmd: List[str]) -> str:
        return " ".join(shlex.quote(x) for x in cmd)

    @staticmethod
    def run_cmd(
        logger: Any,
        cmd: List[str],
        *,
        check: bool = True,
        capture: bool = True,
        env: Optional[Dict[str, str]] = None,
        timeout: Optional[int] = None,
        cwd: Optional[Union[str, Path]] = None,
    ) -> subprocess.CompletedProcess:
        """
        Run a host tool.

        Failures (non-zero exit with check=True, timeouts, missing binaries) are
        raised as HostCommandError carrying stdout/stderr so the retry layer can
        classify them from the tool's own text.
        """
        pretty = U._pretty_cmd(cmd)
        logger.debug("Running: %s", pretty)

        try:
            cp = subprocess.run(
                cmd,
                check=False,
                capture_output=capture,
                text=True,
                env=env,
                timeout=timeout,
                cwd=str(cwd) if cwd is not None else None,
            )
        except subprocess.TimeoutExpired as e:
            logger.error("Command timed out: %s (timeout=%ss)", pretty, timeout)
            raise HostCommandError(msg=f"Command timed out: {pretty}", cause=e, returncode=124) from e
        except OSError as e:
            logger.error("Command error: %s (%s)", pretty, e)
            raise HostCommandError(msg=f"Command error: {pretty}: {e}", cause=e) from e

        if check and cp.returncode != 0:
            stdout = (cp.stdout or "").strip()
            stderr = (cp.stderr or "").strip()
            logger.error(
                "Command failed (rc=%s): %s%s%s",
                cp.returncode,
                pretty,
                f"\nstdout:\n{stdout}" if stdout else "",
                f"\nstderr:\n{stderr}" if stderr else "",
            )
            raise HostCommandError(
                msg=f"Command failed (rc={cp.returncode}): {pretty}",
                stdout=stdout,
                stderr=stderr,
                returncode=cp.returncode,
            )
        return cp

    @staticmethod
    def checksum(path: Path, algo: str = "sha256") -> str:
        h = hashlib.new(algo)
        with open(path, "rb") as f:
            for blk in iter(lambda: f.read(1024 * 1024), b""):
                h.update(blk)
        return h.hexdigest()

    @staticmethod
    def rmtree_best_effort(logger: logging.Logger, p: Path) -> bool:
        try:
            if p.exists():
                shutil.rmtree(p)
            return True
        except Exception as e:
            logger.warning("Failed to remove %s: %s", p, e)
            return False
