# SPDX-License-Identifier: LGPL-3.0-or-later
# -*- coding: utf-8 -*-
# peforge/config/settings.py
"""
Explicit configuration object handed to the Orchestrator.

Components never look settings up on their own; the Orchestrator passes each
one the values it needs.
"""
from __future__ import annotations

import dataclasses
import uuid
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, List, Mapping, Optional, Tuple

from ..core.exceptions import Fatal
from ..core.retry import RetryPolicy

DEFAULT_POWERSHELL_VERSION = "7.5.0"
DEFAULT_DOWNLOAD_URL = (
    "https://github.com/PowerShell/PowerShell/releases/download/"
    "v{version}/PowerShell-{version}-win-x64.zip"
)

SERVICER_CHOICES = ("auto", "dism", "wimlib")
REGISTRY_BACKEND_CHOICES = ("auto", "reg", "hivex")


def _opt_float(v: Any) -> Optional[float]:
    if v is None or v == "" or str(v).lower() in ("none", "null", "off"):
        return None
    return float(v)


_TRUE = ("1", "true", "yes", "y", "on")
_FALSE = ("0", "false", "no", "n", "off", "")

# explicit null means "no limit" for these, so None is kept rather than dropped
_NULLABLE_KEYS = ("max_backoff_s", "lock_timeout_s")


def _boolish(key: str, v: Any) -> bool:
    if isinstance(v, bool):
        return v
    s = str(v).strip().lower()
    if s in _TRUE:
        return True
    if s in _FALSE:
        return False
    raise Fatal(2, f"Invalid configuration: {key} must be a boolean (got {v!r})")


@dataclass(frozen=True)
class BuildConfig:
    temp_path: Path
    workspace_path: Path
    powershell_version: str = DEFAULT_POWERSHELL_VERSION
    payload_path: Optional[Path] = None
    payload_sha256: Optional[str] = None
    download_url: str = DEFAULT_DOWNLOAD_URL
    skip_cleanup: bool = False
    instance_id: Optional[str] = None
    image_index: int = 1

    mount_max_retries: int = 5
    mount_base_delay_s: float = 2.0
    max_backoff_s: Optional[float] = 300.0
    registry_max_retries: int = 3
    registry_base_delay_s: float = 1.0

    servicer: str = "auto"
    registry_backend: str = "auto"
    lock_dir: Optional[Path] = None
    lock_timeout_s: Optional[float] = None

    collect_diagnostics_on_success: bool = True
    image_candidates: Tuple[str, ...] = field(default_factory=tuple)

    @property
    def effective_lock_dir(self) -> Path:
        return self.lock_dir if self.lock_dir is not None else self.temp_path / ".locks"

    def mount_policy(self) -> RetryPolicy:
        return RetryPolicy(
            max_retries=self.mount_max_retries,
            base_delay_s=self.mount_base_delay_s,
            max_delay_s=self.max_backoff_s,
        )

    def registry_policy(self) -> RetryPolicy:
        return RetryPolicy(
            max_retries=self.registry_max_retries,
            base_delay_s=self.registry_base_delay_s,
            max_delay_s=self.max_backoff_s,
        )

    def validate(self) -> "BuildConfig":
        problems: List[str] = []
        if not str(self.temp_path or "").strip():
            problems.append("temp_path is required")
        if not str(self.workspace_path or "").strip():
            problems.append("workspace_path is required")
        if self.image_index < 1:
            problems.append(f"image_index must be >= 1 (got {self.image_index})")
        if self.mount_max_retries < 0 or self.registry_max_retries < 0:
            problems.append("retry counts must be >= 0")
        if self.mount_base_delay_s < 0 or self.registry_base_delay_s < 0:
            problems.append("retry delays must be >= 0")
        if self.max_backoff_s is not None and self.max_backoff_s < 0:
            problems.append("max_backoff_s must be >= 0 or unset")
        if self.servicer not in SERVICER_CHOICES:
            problems.append(f"servicer must be one of {SERVICER_CHOICES}")
        if self.registry_backend not in REGISTRY_BACKEND_CHOICES:
            problems.append(f"registry_backend must be one of {REGISTRY_BACKEND_CHOICES}")
        if self.instance_id:
            try:
                uuid.UUID(str(self.instance_id))
            except ValueError:
                problems.append(f"instance_id is not a UUID: {self.instance_id!r}")
        if self.payload_sha256 and len(self.payload_sha256.strip()) != 64:
            problems.append("payload_sha256 must be a 64-character hex digest")
        if problems:
            raise Fatal(2, "Invalid configuration: " + "; ".join(problems))
        return self

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "BuildConfig":
        """
        Build from a merged config dict or vars(argparse.Namespace). Unknown
        keys (logging flags, --config, ...) are ignored.
        """
        names = {f.name for f in dataclasses.fields(cls)}
        kw = {k: v for k, v in data.items() if k in names and (v is not None or k in _NULLABLE_KEYS)}

        for key in ("temp_path", "workspace_path", "payload_path", "lock_dir"):
            if key in kw:
                kw[key] = Path(kw[key]).expanduser()
        for key in ("image_index", "mount_max_retries", "registry_max_retries"):
            if key in kw:
                kw[key] = int(kw[key])
        for key in ("mount_base_delay_s", "registry_base_delay_s"):
            if key in kw:
                kw[key] = float(kw[key])
        # null/"off"/"none" uncaps the backoff; an absent key keeps the default cap
        for key in _NULLABLE_KEYS:
            if key in kw:
                kw[key] = _opt_float(kw[key])
        for key in ("skip_cleanup", "collect_diagnostics_on_success"):
            if key in kw:
                kw[key] = _boolish(key, kw[key])
        if "image_candidates" in kw:
            kw["image_candidates"] = tuple(str(x) for x in kw["image_candidates"])
        if "instance_id" in kw:
            kw["instance_id"] = str(kw["instance_id"])

        missing = [k for k in ("temp_path", "workspace_path") if k not in kw]
        if missing:
            raise Fatal(2, "Invalid configuration: missing " + ", ".join(missing))
        return cls(**kw)
