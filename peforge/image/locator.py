# SPDX-License-Identifier: LGPL-3.0-or-later
# -*- coding: utf-8 -*-
# peforge/image/locator.py
from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional, Sequence, Tuple

from ..core.exceptions import ImageNotFound, InvalidImage
from .servicing import ImageInfo, ImageServicer

# Search order is part of the workspace contract: first match wins.
DEFAULT_IMAGE_CANDIDATES: Tuple[str, ...] = (
    "Media/sources/boot.wim",
    "Media/Sources/boot.wim",
    "sources/boot.wim",
    "boot.wim",
)


class BootImageLocator:
    def __init__(
        self,
        logger: logging.Logger,
        servicer: ImageServicer,
        *,
        candidates: Optional[Sequence[str]] = None,
        index: int = 1,
    ):
        self.logger = logger
        self.servicer = servicer
        self.candidates: Tuple[str, ...] = tuple(candidates) if candidates else DEFAULT_IMAGE_CANDIDATES
        self.index = int(index)
        self.info: Optional[ImageInfo] = None

    def locate(self, workspace: Path) -> Path:
        """
        Return the absolute path of the first candidate image that exists.

        The first existing candidate is validated and returned or rejected;
        later candidates are not consulted once one exists.
        """
        ws = Path(workspace).expanduser().absolute()
        for rel in self.candidates:
            p = ws / rel
            self.logger.debug("Checking image candidate %s", p)
            if p.is_file():
                return self._validate(p)

        raise ImageNotFound(
            msg=f"No boot image found under {ws}",
            context={"workspace": str(ws), "candidates": list(self.candidates)},
        )

    def _validate(self, p: Path) -> Path:
        try:
            info = self.servicer.get_image_info(p, self.index)
        except Exception as e:
            raise InvalidImage(
                msg=f"{p} exists but could not be read as an image: {e}",
                cause=e,
                context={"image": str(p), "index": self.index},
            ) from e

        self.info = info
        self.logger.info("Found boot image %s (%s, %s)", p, info.name, info.architecture)
        return p
