# SPDX-License-Identifier: LGPL-3.0-or-later
# -*- coding: utf-8 -*-
# peforge/payload/fetch.py
"""
Acquire the runtime archive: a caller-supplied file, a verified cached copy,
or a fresh download.
"""
from __future__ import annotations

import logging
import sys
import zipfile
from pathlib import Path
from typing import Any, Optional, Tuple

import requests
from rich.progress import (
    BarColumn,
    DownloadColumn,
    Progress,
    TextColumn,
    TimeRemainingColumn,
    TransferSpeedColumn,
)

from ..core.exceptions import PayloadError
from ..core.file_ops import safe_unlink
from ..core.utils import U


class PayloadFetcher:
    def __init__(
        self,
        logger: logging.Logger,
        *,
        version: str,
        url_template: str,
        cache_dir: Path,
        payload_path: Optional[Path] = None,
        sha256: Optional[str] = None,
        session: Any = None,
        chunk_bytes: int = 1024 * 1024,
        timeout: Tuple[int, int] = (15, 300),
    ):
        self.logger = logger
        self.version = version
        self.url_template = url_template
        self.cache_dir = Path(cache_dir)
        self.payload_path = Path(payload_path) if payload_path else None
        self.sha256 = sha256.strip().lower() if sha256 else None
        self.session = session
        self.chunk_bytes = int(chunk_bytes)
        self.timeout = timeout

    @property
    def archive_name(self) -> str:
        return f"PowerShell-{self.version}-win-x64.zip"

    @property
    def url(self) -> str:
        return self.url_template.format(version=self.version)

    def _hash_ok(self, p: Path) -> bool:
        if not self.sha256:
            return True
        actual = U.checksum(p)
        if actual != self.sha256:
            self.logger.warning("SHA-256 mismatch for %s: expected %s got %s", p, self.sha256, actual)
            return False
        return True

    def _check_archive(self, p: Path) -> Path:
        if not p.is_file():
            raise PayloadError(msg=f"Payload archive not found: {p}", context={"payload": str(p)})
        if not zipfile.is_zipfile(p):
            raise PayloadError(msg=f"Payload is not a zip archive: {p}", context={"payload": str(p)})
        if not self._hash_ok(p):
            raise PayloadError(msg=f"Payload hash verification failed: {p}", context={"payload": str(p)})
        return p

    def resolve(self) -> Path:
        if self.payload_path is not None:
            self.logger.info("Using pre-downloaded payload %s", self.payload_path)
            return self._check_archive(self.payload_path)

        cached = self.cache_dir / self.archive_name
        if cached.is_file() and zipfile.is_zipfile(cached) and self._hash_ok(cached):
            self.logger.info("Using cached payload %s", cached)
            return cached

        U.ensure_dir(self.cache_dir)
        self._download(self.url, cached)
        return self._check_archive(cached)

    def _download(self, url: str, dest: Path) -> None:
        temp = dest.parent / f"{dest.name}.part"
        session = self.session or requests.Session()
        self.logger.info("Downloading %s", url)

        progress = Progress(
            TextColumn("{task.description}"),
            BarColumn(),
            DownloadColumn(),
            TransferSpeedColumn(),
            TimeRemainingColumn(),
            transient=True,
            disable=not sys.stderr.isatty(),
        )
        try:
            with progress, session.get(url, stream=True, timeout=self.timeout, allow_redirects=True) as resp:
                resp.raise_for_status()
                length = resp.headers.get("Content-Length")
                total = int(length) if length and str(length).isdigit() else None
                task = progress.add_task(self.archive_name, total=total)
                written = 0
                with open(temp, "wb") as f:
                    for chunk in resp.iter_content(chunk_size=self.chunk_bytes):
                        if chunk:
                            f.write(chunk)
                            written += len(chunk)
                            progress.update(task, completed=written)
            if total is not None and written != total:
                raise PayloadError(msg=f"Size mismatch downloading {url}: expected {total}, got {written}")
            temp.replace(dest)
        except requests.RequestException as e:
            safe_unlink(temp)
            raise PayloadError(msg=f"Failed to download {url}: {e}", cause=e, context={"url": url}) from e
        except BaseException:
            safe_unlink(temp)
            raise
        self.logger.info("Downloaded %s (%s)", dest.name, U.human_bytes(dest.stat().st_size))
