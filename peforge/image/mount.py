# SPDX-License-Identifier: LGPL-3.0-or-later
# -*- coding: utf-8 -*-
# peforge/image/mount.py
from __future__ import annotations

import dataclasses
import logging
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Optional, Set

from ..core.exceptions import DismountFailure, ErrorKind, MountVerificationFailure
from ..core.retry import RetryExecutor, RetryPolicy
from .servicing import ImageServicer

# A mounted boot image always carries this directory at its root.
ROOT_MARKER = Path("Windows") / "System32"


@dataclass
class MountSession:
    image_path: Path
    mount_point: Path
    image_index: int = 1
    mounted: bool = False
    # set once dismounted; a closed session is never mounted again
    closed: bool = False


class ImageMountService:
    """
    Mount/dismount through the host servicer with retry.

    A mount is only trusted after the root marker is visible under the mount
    point; the servicer's own success report is not enough.
    """

    def __init__(
        self,
        logger: logging.Logger,
        servicer: ImageServicer,
        *,
        policy: Optional[RetryPolicy] = None,
        sleep: Callable[[float], None] = time.sleep,
        marker: Path = ROOT_MARKER,
    ):
        self.logger = logger
        self.servicer = servicer
        self.policy = policy or RetryPolicy(max_retries=5, base_delay_s=2.0)
        self._sleep = sleep
        self.marker = Path(marker)
        # mount points whose discard after a failed mount did not go through
        self._unclean: Set[Path] = set()

    def _executor(self, max_retries: Optional[int]) -> RetryExecutor:
        policy = self.policy
        if max_retries is not None:
            policy = dataclasses.replace(policy, max_retries=int(max_retries))
        return RetryExecutor(self.logger, policy, sleep=self._sleep)

    def is_mounted(self, mount_point: Path) -> bool:
        return (Path(mount_point) / self.marker).is_dir()

    def may_be_mounted(self, mount_point: Path) -> bool:
        """True if the image is visibly mounted or a discard of it failed."""
        return self.is_mounted(mount_point) or Path(mount_point) in self._unclean

    def _discard_best_effort(self, mount_point: Path) -> None:
        try:
            self.servicer.unmount(mount_point, commit=False)
        except Exception as e:
            self._unclean.add(Path(mount_point))
            self.logger.warning("Discard after failed verification also failed for %s: %s", mount_point, e)
        else:
            self._unclean.discard(Path(mount_point))

    def mount(
        self,
        image_path: Path,
        mount_point: Path,
        index: int = 1,
        max_retries: Optional[int] = None,
    ) -> MountSession:
        session = MountSession(image_path=Path(image_path), mount_point=Path(mount_point), image_index=int(index))

        def _attempt() -> None:
            self.servicer.mount(session.image_path, session.mount_point, session.image_index)
            if not self.is_mounted(session.mount_point):
                self._discard_best_effort(session.mount_point)
                raise MountVerificationFailure(
                    msg=f"Mount of {session.image_path} reported success but {self.marker} is missing under {session.mount_point}",
                    context={"image": str(session.image_path), "mount_point": str(session.mount_point)},
                )

        try:
            self._executor(max_retries).run(_attempt, operation_name=f"Mount {session.image_path.name}")
        except MountVerificationFailure as e:
            e.kind = ErrorKind.TERMINAL
            raise
        except Exception as e:
            raise MountVerificationFailure(
                msg=f"Failed to mount {session.image_path} at {session.mount_point}: {e}",
                cause=e,
                kind=ErrorKind.TERMINAL,
                context={"image": str(session.image_path), "mount_point": str(session.mount_point)},
            ) from e

        session.mounted = True
        self.logger.info("Mounted %s (index %d) at %s", session.image_path, session.image_index, session.mount_point)
        return session

    def dismount(self, session: MountSession, save: bool, max_retries: Optional[int] = None) -> None:
        """
        save=False discards every change made inside the mount (rollback).
        """
        if session.closed:
            raise RuntimeError(f"Mount session for {session.mount_point} was already dismounted")

        action = "commit" if save else "discard"

        def _attempt() -> None:
            self.servicer.unmount(session.mount_point, commit=save)

        try:
            self._executor(max_retries).run(_attempt, operation_name=f"Dismount ({action}) {session.mount_point}")
        except Exception as e:
            raise DismountFailure(
                msg=f"Failed to dismount {session.mount_point} ({action}); the image may still be mounted: {e}",
                cause=e,
                context={"image": str(session.image_path), "mount_point": str(session.mount_point), "save": save},
            ) from e

        session.mounted = False
        session.closed = True
        self.logger.info("Dismounted %s (%s)", session.mount_point, action)
