# SPDX-License-Identifier: LGPL-3.0-or-later
# -*- coding: utf-8 -*-
# peforge/orchestrator/orchestrator.py

from __future__ import annotations

import enum
import logging
import threading
import time
import uuid
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, List, Optional

from ..config.settings import BuildConfig
from ..core.exceptions import PipelineCancelled
from ..core.locks import CriticalSectionManager
from ..core.logger import Log
from ..core.logging_utils import log_step
from ..core.utils import U
from ..diagnostics.collector import DiagnosticsBundle, DiagnosticsCollector
from ..image.allocator import MountPointAllocator, PipelineInstance
from ..image.locator import BootImageLocator
from ..image.mount import ImageMountService, MountSession
from ..image.servicing import ImageServicer, create_servicer
from ..payload.fetch import PayloadFetcher
from ..payload.installer import PayloadInstaller
from ..registry.editor import HiveEditor, create_hive_editor
from ..registry.patcher import PWSH_INSTALL_DIR, OfflineRegistryPatcher, default_registry_values
from ..startup.configurer import StartupConfigurer


class PipelineState(str, enum.Enum):
    INIT = "Init"
    ALLOCATED = "Allocated"
    LOCATED = "Located"
    MOUNTED = "Mounted"
    PROFILE_READY = "ProfileReady"
    PAYLOAD_INSTALLED = "PayloadInstalled"
    REGISTRY_PATCHED = "RegistryPatched"
    STARTUP_CONFIGURED = "StartupConfigured"
    DIAGNOSED = "Diagnosed"
    COMMITTED = "Committed"
    DIAGNOSED_ON_ERROR = "DiagnosedOnError"
    ROLLED_BACK = "RolledBack"
    FAILED = "Failed"


_TERMINAL_STATES = (PipelineState.COMMITTED, PipelineState.FAILED)


@dataclass
class PipelineResult:
    instance_id: str
    state: PipelineState = PipelineState.INIT
    history: List[PipelineState] = field(default_factory=lambda: [PipelineState.INIT])
    instance: Optional[PipelineInstance] = None
    image_path: Optional[Path] = None
    diagnostics: Optional[DiagnosticsBundle] = None
    kept_artifacts: bool = False
    error: Optional[BaseException] = None
    # dismount(discard) failure during rollback; the image may still be mounted
    rollback_error: Optional[BaseException] = None

    @property
    def succeeded(self) -> bool:
        return self.state is PipelineState.COMMITTED


@dataclass
class _Components:
    allocator: MountPointAllocator
    locator: BootImageLocator
    fetcher: Any
    mounts: ImageMountService
    installer: PayloadInstaller
    patcher: OfflineRegistryPatcher
    startup: StartupConfigurer
    diagnostics: DiagnosticsCollector


class Orchestrator:
    """
    Runs one image customization:

      allocate -> locate -> mount -> profile -> payload -> registry
      -> startup -> diagnostics -> dismount(commit)

    Any failure once the image is mounted goes through diagnostics (with a
    registry export), dismount(discard) and cleanup before the original error
    is re-raised.
    """

    def __init__(
        self,
        logger: logging.Logger,
        config: BuildConfig,
        *,
        servicer: Optional[ImageServicer] = None,
        hive_editor: Optional[HiveEditor] = None,
        sections: Optional[CriticalSectionManager] = None,
        fetcher: Any = None,
        sleep: Callable[[float], None] = time.sleep,
        cancel_event: Optional[threading.Event] = None,
    ):
        self.logger = logger
        self.config = config.validate()
        self.servicer = servicer or create_servicer(logger, config.servicer)
        self.hive_editor = hive_editor or create_hive_editor(logger, config.registry_backend)
        self.sections = sections or CriticalSectionManager(
            logger,
            lock_dir=config.effective_lock_dir,
            timeout_s=config.lock_timeout_s,
        )
        self._fetcher = fetcher
        self._sleep = sleep
        self.cancel_event = cancel_event
        self.last_result: Optional[PipelineResult] = None

    # -----------------------
    # wiring
    # -----------------------

    def _components(self, log: Any) -> _Components:
        cfg = self.config
        fetcher = self._fetcher or PayloadFetcher(
            log,
            version=cfg.powershell_version,
            url_template=cfg.download_url,
            cache_dir=cfg.temp_path / "Cache",
            payload_path=cfg.payload_path,
            sha256=cfg.payload_sha256,
        )
        return _Components(
            allocator=MountPointAllocator(log),
            locator=BootImageLocator(
                log,
                self.servicer,
                candidates=cfg.image_candidates or None,
                index=cfg.image_index,
            ),
            fetcher=fetcher,
            mounts=ImageMountService(log, self.servicer, policy=cfg.mount_policy(), sleep=self._sleep),
            installer=PayloadInstaller(log, self.sections),
            patcher=OfflineRegistryPatcher(
                log,
                self.hive_editor,
                self.sections,
                policy=cfg.registry_policy(),
                sleep=self._sleep,
            ),
            startup=StartupConfigurer(log, self.sections),
            diagnostics=DiagnosticsCollector(log, self.hive_editor),
        )

    # -----------------------
    # state machine
    # -----------------------

    def _transition(self, log: Any, result: PipelineResult, state: PipelineState) -> None:
        Log.trace(log, "state %s -> %s", result.state.value, state.value)
        result.state = state
        result.history.append(state)
        if state not in _TERMINAL_STATES and self.cancel_event is not None and self.cancel_event.is_set():
            raise PipelineCancelled(msg=f"Run cancelled at {state.value}", context={"state": state.value})

    def run(self, instance_id: Optional[str] = None) -> PipelineResult:
        cfg = self.config
        iid = str(instance_id or cfg.instance_id or uuid.uuid4())
        log = Log.bind(self.logger, instance=iid[:8])
        comp = self._components(log)

        result = PipelineResult(instance_id=iid)
        self.last_result = result
        session: Optional[MountSession] = None

        Log.banner(log, f"peforge run {iid}")
        try:
            with log_step(log, "Allocate working directories"):
                result.instance = comp.allocator.allocate(cfg.temp_path, iid)
            self._transition(log, result, PipelineState.ALLOCATED)
            inst = result.instance

            with log_step(log, "Locate boot image"):
                result.image_path = comp.locator.locate(cfg.workspace_path)
                archive = comp.fetcher.resolve()
            self._transition(log, result, PipelineState.LOCATED)

            with log_step(log, "Mount image"):
                session = comp.mounts.mount(result.image_path, inst.mount_point, cfg.image_index)
            self._transition(log, result, PipelineState.MOUNTED)

            with log_step(log, "Prepare profile"):
                comp.startup.prepare_profile(inst.mount_point)
            self._transition(log, result, PipelineState.PROFILE_READY)

            with log_step(log, "Install payload"):
                comp.installer.install(archive, inst.mount_point)
            self._transition(log, result, PipelineState.PAYLOAD_INSTALLED)

            with log_step(log, "Patch offline registry"):
                comp.patcher.patch(inst.mount_point, default_registry_values(cfg.powershell_version))
            self._transition(log, result, PipelineState.REGISTRY_PATCHED)

            with log_step(log, "Configure startup"):
                comp.startup.finalize(inst.mount_point, PWSH_INSTALL_DIR)
            self._transition(log, result, PipelineState.STARTUP_CONFIGURED)

            if cfg.collect_diagnostics_on_success:
                result.diagnostics = comp.diagnostics.collect(
                    inst.staging_root,
                    inst.mount_point,
                    instance_id=iid,
                    include_registry_export=False,
                    state=result.state.value,
                )
            self._transition(log, result, PipelineState.DIAGNOSED)

            with log_step(log, "Dismount image (commit)"):
                comp.mounts.dismount(session, save=True)
            self._transition(log, result, PipelineState.COMMITTED)

        except BaseException as e:
            result.error = e
            self._rollback(log, comp, result, session)
            raise
        finally:
            self._cleanup(log, comp, result, session)

        Log.ok(log, f"Customized image committed: {result.image_path}")
        return result

    def _rollback(
        self,
        log: Any,
        comp: _Components,
        result: PipelineResult,
        session: Optional[MountSession],
    ) -> None:
        failed_at = result.state.value
        log.error("Run failed at %s: %s", failed_at, result.error)

        if session is not None and session.mounted and result.instance is not None:
            result.diagnostics = comp.diagnostics.collect(
                result.instance.staging_root,
                result.instance.mount_point,
                instance_id=result.instance_id,
                include_registry_export=True,
                state=failed_at,
            )
            result.state = PipelineState.DIAGNOSED_ON_ERROR
            result.history.append(result.state)

            try:
                with log_step(log, "Dismount image (discard)"):
                    comp.mounts.dismount(session, save=False)
                result.state = PipelineState.ROLLED_BACK
                result.history.append(result.state)
            except Exception as e:
                result.rollback_error = e
                Log.fail(log, f"Rollback dismount failed; image may remain mounted at {session.mount_point}: {e}")

        result.state = PipelineState.FAILED
        result.history.append(result.state)
        if result.diagnostics is not None:
            log.info("Diagnostics bundle: %s", result.diagnostics.path)

    def _cleanup(
        self,
        log: Any,
        comp: _Components,
        result: PipelineResult,
        session: Optional[MountSession],
    ) -> None:
        inst = result.instance
        if inst is None:
            return

        if self.config.skip_cleanup:
            result.kept_artifacts = True
            log.info("Keeping working directories: %s, %s", inst.mount_point, inst.payload_staging_path)
            if result.diagnostics is not None:
                log.info("Diagnostics bundle kept at %s", result.diagnostics.path)
            return

        live = session is not None and session.mounted
        if live or comp.mounts.may_be_mounted(inst.mount_point):
            # never delete through a live or half-mounted mount point
            Log.warn(log, f"Image still mounted at {inst.mount_point}; leaving it in place")
        else:
            U.rmtree_best_effort(log, inst.mount_point)
        U.rmtree_best_effort(log, inst.payload_staging_path)


# Backward-compat alias (old name kept so imports don't explode)
Pwsh7Customizer = Orchestrator
