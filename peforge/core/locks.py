# SPDX-License-Identifier: LGPL-3.0-or-later
# -*- coding: utf-8 -*-
# peforge/core/locks.py
"""
Named critical sections shared by every pipeline instance in the process.

Each name maps to one re-entrant lock held in a process-wide registry, so two
Orchestrator instances running in different threads contend on the same
object. When a lock directory is configured, the first (outermost) acquisition
also takes a FileLock on ``<lock_dir>/<name>.lock`` so separate processes are
serialized the same way.
"""
from __future__ import annotations

import logging
import re
import threading
import time
from contextlib import contextmanager
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Generator, Optional

from filelock import FileLock, Timeout

from .exceptions import CriticalSectionTimeout

PAYLOAD_COPY = "payload-copy"
REGISTRY_PATCH = "registry-patch"
STARTUP_SCRIPT = "startup-script"
STARTUP_PROFILE = "startup-profile"

_NAME_SAFE_RE = re.compile(r"[^A-Za-z0-9_.-]+")


@dataclass(frozen=True)
class CriticalSectionHandle:
    name: str
    owner_thread: int
    acquired_at: float = field(default_factory=time.monotonic)


class _NamedLock:
    def __init__(self, name: str):
        self.name = name
        self.rlock = threading.RLock()
        self.owner: Optional[int] = None
        self.depth = 0
        self.file_lock: Optional[FileLock] = None


_REGISTRY_LOCK = threading.Lock()
_REGISTRY: Dict[str, _NamedLock] = {}


def _named_lock(name: str) -> _NamedLock:
    with _REGISTRY_LOCK:
        nl = _REGISTRY.get(name)
        if nl is None:
            nl = _NamedLock(name)
            _REGISTRY[name] = nl
        return nl


class CriticalSectionManager:
    """
    Acquire/release named sections. Nested acquisition of the same name by the
    owning thread is allowed; only the outermost release frees the section.
    """

    def __init__(
        self,
        logger: logging.Logger,
        *,
        lock_dir: Optional[Path] = None,
        timeout_s: Optional[float] = None,
    ):
        self.logger = logger
        self.lock_dir = Path(lock_dir) if lock_dir else None
        self.timeout_s = timeout_s

    def lock_file(self, name: str) -> Path:
        assert self.lock_dir is not None
        return self.lock_dir / f"{_NAME_SAFE_RE.sub('-', name)}.lock"

    def _acquire_file_lock(self, nl: _NamedLock, deadline: Optional[float]) -> None:
        assert self.lock_dir is not None
        self.lock_dir.mkdir(parents=True, exist_ok=True)
        path = self.lock_file(nl.name)
        remaining = -1.0 if deadline is None else max(0.0, deadline - time.monotonic())
        lock = FileLock(str(path), timeout=remaining)
        try:
            lock.acquire()
        except Timeout as e:
            raise CriticalSectionTimeout(
                msg=f"Timed out waiting for critical section {nl.name!r} (held by another process)",
                cause=e,
                context={"name": nl.name, "lock_file": str(path)},
            ) from e
        nl.file_lock = lock

    def acquire(self, name: str) -> CriticalSectionHandle:
        nl = _named_lock(name)
        deadline = (time.monotonic() + self.timeout_s) if self.timeout_s is not None else None
        timeout = -1 if self.timeout_s is None else max(0.0, float(self.timeout_s))

        if not nl.rlock.acquire(timeout=timeout):
            raise CriticalSectionTimeout(
                msg=f"Timed out waiting for critical section {name!r}",
                context={"name": name, "timeout_s": self.timeout_s},
            )

        me = threading.get_ident()
        if nl.depth == 0 and self.lock_dir is not None:
            try:
                self._acquire_file_lock(nl, deadline)
            except BaseException:
                nl.rlock.release()
                raise

        nl.owner = me
        nl.depth += 1
        self.logger.debug("Entered critical section %r (depth=%d)", name, nl.depth)
        return CriticalSectionHandle(name=name, owner_thread=me)

    def release(self, handle: CriticalSectionHandle) -> None:
        nl = _named_lock(handle.name)
        me = threading.get_ident()
        if nl.owner != me or handle.owner_thread != me:
            raise RuntimeError(f"Critical section {handle.name!r} released by a thread that does not own it")

        nl.depth -= 1
        try:
            if nl.depth == 0:
                nl.owner = None
                lock, nl.file_lock = nl.file_lock, None
                if lock is not None:
                    lock.release()
        finally:
            nl.rlock.release()
        self.logger.debug("Left critical section %r (depth=%d)", handle.name, nl.depth)

    @contextmanager
    def section(self, name: str) -> Generator[CriticalSectionHandle, None, None]:
        """Hold `name` for the duration of the block, released on every exit path."""
        handle = self.acquire(name)
        try:
            yield handle
        finally:
            self.release(handle)

    @staticmethod
    def is_held(name: str) -> bool:
        return _named_lock(name).depth > 0
