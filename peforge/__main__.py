# SPDX-License-Identifier: LGPL-3.0-or-later
# -*- coding: utf-8 -*-
# peforge/__main__.py
from __future__ import annotations

import sys
import traceback
from typing import Any, Optional, Sequence

from .cli.argument_parser import build_config, parse_args_with_config
from .core.exceptions import Fatal, format_exception_for_cli
from .orchestrator.orchestrator import Orchestrator


def _print_stderr(msg: str) -> None:
    print(msg, file=sys.stderr)


def _safe_log(logger: Any, level: str, msg: str) -> None:
    if logger is None:
        _print_stderr(msg)
        return
    fn = getattr(logger, level, None)
    if callable(fn):
        fn(msg)
    else:
        _print_stderr(msg)


def main(argv: Optional[Sequence[str]] = None) -> None:
    logger: Any = None

    # Phase 1: parse + validate (Fatal can happen here)
    try:
        args, conf, logger = parse_args_with_config(argv)
        config = build_config(args, conf)
    except Fatal as e:
        _safe_log(logger, "error", format_exception_for_cli(e))
        raise SystemExit(getattr(e, "code", 1))
    except KeyboardInterrupt:
        _safe_log(logger, "warning", "Interrupted by user (Ctrl+C).")
        raise SystemExit(130)

    # Phase 2: run pipeline
    verbose = getattr(args, "verbose", 0)
    try:
        Orchestrator(logger, config).run()
        rc = 0
    except Fatal as e:
        _safe_log(logger, "error", format_exception_for_cli(e, verbose=verbose))
        rc = getattr(e, "code", 1)
    except KeyboardInterrupt:
        _safe_log(logger, "warning", "Interrupted by user (Ctrl+C).")
        rc = 130
    except Exception as e:
        _safe_log(logger, "error", f"💥 UNHANDLED {type(e).__name__}: {e}")
        _safe_log(logger, "debug", traceback.format_exc())
        rc = 1

    raise SystemExit(rc)


if __name__ == "__main__":
    main()
