# SPDX-License-Identifier: LGPL-3.0-or-later
# -*- coding: utf-8 -*-
# peforge/image/allocator.py
from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Union

from ..core.exceptions import AllocationFailure
from ..core.utils import U


@dataclass(frozen=True)
class PipelineInstance:
    instance_id: str
    staging_root: Path
    mount_point: Path
    payload_staging_path: Path

    @property
    def short_id(self) -> str:
        return self.instance_id.replace("-", "")[:8]


class MountPointAllocator:
    """
    Derives the per-run working directories:

        <staging_root>/Mount_<id>
        <staging_root>/Payload_<id>

    Paths are a pure function of (staging_root, instance_id), so runs with
    distinct ids never share a mount point.
    """

    def __init__(self, logger: logging.Logger):
        self.logger = logger

    @staticmethod
    def paths_for(staging_root: Path, instance_id: str) -> PipelineInstance:
        root = Path(staging_root).expanduser().absolute()
        return PipelineInstance(
            instance_id=instance_id,
            staging_root=root,
            mount_point=root / f"Mount_{instance_id}",
            payload_staging_path=root / f"Payload_{instance_id}",
        )

    def allocate(self, staging_root: Path, instance_id: Optional[Union[str, uuid.UUID]] = None) -> PipelineInstance:
        iid = str(instance_id) if instance_id else str(uuid.uuid4())
        inst = self.paths_for(staging_root, iid)
        try:
            U.ensure_dir(inst.staging_root)
            U.ensure_dir(inst.mount_point)
            U.ensure_dir(inst.payload_staging_path)
        except OSError as e:
            raise AllocationFailure(
                msg=f"Failed to create working directories under {inst.staging_root}: {e}",
                cause=e,
                context={"instance": iid},
            ) from e

        self.logger.info("Allocated mount point %s", inst.mount_point)
        self.logger.debug("Payload staging: %s", inst.payload_staging_path)
        return inst
