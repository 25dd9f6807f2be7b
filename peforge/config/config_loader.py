# SPDX-License-Identifier: LGPL-3.0-or-later
# peforge/config/config_loader.py
from __future__ import annotations

import argparse
import glob
import json
import logging
from pathlib import Path
from typing import Any, Dict, List

import yaml

from ..core.utils import U


class Config:
    @staticmethod
    def load_one(logger: logging.Logger, path: str) -> Dict[str, Any]:
        p = Path(path).expanduser().resolve()
        if not p.exists():
            U.die(logger, f"Config not found: {p}", 1)
        try:
            text = p.read_text(encoding="utf-8")
            if p.suffix.lower() == ".json":
                data = json.loads(text)
            else:
                data = yaml.safe_load(text) or {}
        except yaml.YAMLError as e:
            U.die(logger, f"Invalid YAML in config {p}: {e}", 1)
        except json.JSONDecodeError as e:
            U.die(logger, f"Invalid JSON in config {p}: {e}", 1)
        except OSError as e:
            U.die(logger, f"Failed to load config {p}: {e}", 1)
        if not isinstance(data, dict):
            U.die(logger, f"Config must be a mapping/dict: {p}", 1)
        # normalize dash keys -> underscore keys
        out: Dict[str, Any] = {}
        for k, v in data.items():
            nk = str(k).replace("-", "_")
            out[nk] = v
            if nk != k:
                logger.debug("Normalized config key: %s -> %s", k, nk)
        logger.debug("Loaded config %s:\n%s", p, U.json_dump(out))
        return out

    @staticmethod
    def merge_dicts(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
        """
        Deep-ish merge:
        - dict + dict => recurse
        - list => override replaces (not concatenated)
        - scalar => override replaces
        """
        out = dict(base)
        for k, v in override.items():
            if k in out and isinstance(out[k], dict) and isinstance(v, dict):
                out[k] = Config.merge_dicts(out[k], v)
            else:
                out[k] = v
        return out

    @staticmethod
    def load_many(logger: logging.Logger, paths: List[str]) -> Dict[str, Any]:
        conf: Dict[str, Any] = {}
        for p in paths:
            conf = Config.merge_dicts(conf, Config.load_one(logger, p))
        return conf

    @staticmethod
    def apply_as_defaults(logger: logging.Logger, parser: argparse.ArgumentParser, conf: Dict[str, Any]) -> None:
        if not conf:
            return
        for act in parser._actions:
            dest = getattr(act, "dest", None)
            if not dest or dest not in conf:
                continue
            val = conf[dest]
            logger.debug("[Config] default %s: %r -> %r", dest, act.default, val)
            act.default = val
            if getattr(act, "required", False) and val is not None:
                act.required = False

    @staticmethod
    def expand_configs(logger: logging.Logger, configs: List[str]) -> List[str]:
        expanded: List[str] = []
        for c in configs:
            p = Path(c).expanduser()
            if p.is_dir():
                for f in sorted(p.rglob("*")):
                    if f.is_file() and f.suffix.lower() in (".yaml", ".yml", ".json"):
                        expanded.append(str(f))
            elif "*" in c or "?" in c:
                expanded.extend(sorted(glob.glob(c)))
            else:
                expanded.append(c)
        logger.debug("Expanded configs: %s", expanded)
        return expanded
