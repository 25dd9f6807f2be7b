# SPDX-License-Identifier: LGPL-3.0-or-later
# -*- coding: utf-8 -*-
# peforge/cli/argument_parser.py
from __future__ import annotations

import argparse
import sys
import uuid
from pathlib import Path
from typing import Any, Dict, Optional, Sequence, Tuple

from .. import __version__
from ..config.config_loader import Config
from ..config.settings import (
    DEFAULT_POWERSHELL_VERSION,
    REGISTRY_BACKEND_CHOICES,
    SERVICER_CHOICES,
    BuildConfig,
)
from ..core.exceptions import Fatal
from ..core.logger import Log, c
from ..core.utils import U

YAML_EXAMPLE = r"""# peforge configuration (YAML)
#
# Run:
#   peforge --config build.yaml
#
# Merge multiple configs (later overrides earlier):
#   peforge --config base.yaml --config lab.yaml --skip-cleanup
#
temp_path: C:\peforge\temp
workspace_path: C:\WinPE_amd64
powershell_version: 7.5.0
# payload_path: C:\downloads\PowerShell-7.5.0-win-x64.zip
# payload_sha256: <64 hex chars>
skip_cleanup: false
mount_max_retries: 5
mount_base_delay_s: 2
max_backoff_s: 300        # "off" for uncapped exponential backoff
registry_max_retries: 3
servicer: auto            # auto | dism | wimlib
registry_backend: auto    # auto | reg | hivex
# lock_dir: C:\peforge\locks   # share between processes building in parallel
# image_candidates: [Media/sources/boot.wim, sources/boot.wim]
"""


class HelpFormatter(argparse.RawDescriptionHelpFormatter, argparse.ArgumentDefaultsHelpFormatter):
    """Raw epilog plus default values in help."""


def _add_global_config_logging(p: argparse.ArgumentParser) -> None:
    p.add_argument(
        "--config",
        action="append",
        default=[],
        help="YAML/JSON config file (repeatable; later overrides earlier).",
    )
    p.add_argument("--dump-config", action="store_true", help="Print merged normalized config and exit.")
    p.add_argument("--version", action="version", version=__version__)
    p.add_argument("-v", "--verbose", action="count", default=0, help="Verbosity: -v, -vv, -vvv")
    p.add_argument("-q", "--quiet", action="count", default=0, help="Less output: -q, -qq")
    p.add_argument("--log-file", dest="log_file", default=None, help="Write logs to file.")
    p.add_argument("--json-logs", dest="json_logs", action="store_true", help="Emit NDJSON logs on stderr.")


def _add_build_paths(p: argparse.ArgumentParser) -> None:
    p.add_argument("--temp-path", dest="temp_path", default=None, help="Staging root for mount points, payload and diagnostics.")
    p.add_argument("--workspace-path", dest="workspace_path", default=None, help="WinPE working tree containing boot.wim.")
    p.add_argument("--instance-id", dest="instance_id", default=None, help="UUID for this run (generated when omitted).")
    p.add_argument("--image-index", dest="image_index", type=int, default=1, help="Image index inside the WIM.")
    p.add_argument("--skip-cleanup", dest="skip_cleanup", action="store_true", help="Keep mount/payload directories afterwards.")


def _add_payload_knobs(p: argparse.ArgumentParser) -> None:
    p.add_argument(
        "--powershell-version",
        dest="powershell_version",
        default=DEFAULT_POWERSHELL_VERSION,
        help="PowerShell release to inject.",
    )
    p.add_argument("--payload-path", dest="payload_path", default=None, help="Pre-downloaded PowerShell zip.")
    p.add_argument("--payload-sha256", dest="payload_sha256", default=None, help="Expected SHA-256 of the payload zip.")


def _add_host_knobs(p: argparse.ArgumentParser) -> None:
    p.add_argument("--servicer", dest="servicer", choices=SERVICER_CHOICES, default="auto", help="Image servicing backend.")
    p.add_argument(
        "--registry-backend",
        dest="registry_backend",
        choices=REGISTRY_BACKEND_CHOICES,
        default="auto",
        help="Offline registry backend.",
    )
    p.add_argument(
        "--max-backoff",
        dest="max_backoff_s",
        default=None,
        help="Cap in seconds for retry backoff ('off' = uncapped; default 300).",
    )
    p.add_argument("--lock-dir", dest="lock_dir", default=None, help="Directory for cross-process lock files.")


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="peforge",
        description=c("peforge: inject PowerShell 7 into a WinPE boot image", "green", ["bold"]),
        formatter_class=HelpFormatter,
        epilog=c("YAML example:\n", "cyan", ["bold"]) + c(YAML_EXAMPLE, "cyan"),
    )
    _add_global_config_logging(p)
    _add_build_paths(p)
    _add_payload_knobs(p)
    _add_host_knobs(p)
    return p


def _build_preparser() -> argparse.ArgumentParser:
    pre = argparse.ArgumentParser(add_help=False)
    pre.add_argument("--config", action="append", default=[])
    pre.add_argument("-v", "--verbose", action="count", default=0)
    pre.add_argument("-q", "--quiet", action="count", default=0)
    pre.add_argument("--log-file", dest="log_file", default=None)
    pre.add_argument("--json-logs", dest="json_logs", action="store_true")
    pre.add_argument("--dump-config", action="store_true")
    return pre


def _load_merged_config(logger: Any, cfgs: Sequence[str]) -> Dict[str, Any]:
    if not cfgs:
        return {}
    expanded = Config.expand_configs(logger, list(cfgs))
    return Config.load_many(logger, expanded)


def validate_args(args: argparse.Namespace) -> None:
    """Checks that need the filesystem; shape checks live in BuildConfig.validate()."""
    problems = []
    if not args.temp_path:
        problems.append("--temp-path (or temp_path in config) is required")
    if not args.workspace_path:
        problems.append("--workspace-path (or workspace_path in config) is required")
    elif not Path(args.workspace_path).expanduser().is_dir():
        problems.append(f"workspace not found: {args.workspace_path}")
    if args.payload_path and not Path(args.payload_path).expanduser().is_file():
        problems.append(f"payload file not found: {args.payload_path}")
    if args.instance_id:
        try:
            uuid.UUID(str(args.instance_id))
        except ValueError:
            problems.append(f"--instance-id is not a UUID: {args.instance_id}")
    if problems:
        raise Fatal(2, "; ".join(problems))


def build_config(args: argparse.Namespace, conf: Dict[str, Any]) -> BuildConfig:
    # config-only keys (retry counts, candidates, ...) have no CLI flag
    cli = {k: v for k, v in vars(args).items() if v is not None}
    return BuildConfig.from_mapping(Config.merge_dicts(conf, cli)).validate()


def parse_args_with_config(
    argv: Optional[Sequence[str]] = None,
    logger: Any = None,
) -> Tuple[argparse.Namespace, Dict[str, Any], Any]:
    """
    Phase 0: parse only what is needed to find config files and set up logging
    Phase 1: load + merge config files
    Phase 2: apply config as argparse defaults
    Phase 3: full parse (CLI overrides config)
    Phase 4: validate
    """
    if argv is None:
        argv = sys.argv[1:]
    argv = list(argv)

    parser = build_parser()
    args0, _rest = _build_preparser().parse_known_args(argv)

    if logger is None:
        logger = Log.setup(
            args0.verbose,
            args0.log_file,
            quiet=args0.quiet,
            json_logs=args0.json_logs,
        )

    conf = _load_merged_config(logger, args0.config or [])

    if args0.dump_config:
        print(U.json_dump(conf))
        raise SystemExit(0)

    Config.apply_as_defaults(logger, parser, conf)
    args = parser.parse_args(argv)
    validate_args(args)
    return args, conf, logger
