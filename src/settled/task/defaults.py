# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/settled/task/defaults.py

from __future__ import annotations

import copy
import functools
from pathlib import Path
from typing import Any, Dict

import yaml

from settled.task.errors import DefaultsError


DATA_DIR = Path(__file__).parent / "data"


def defaults_file(name: str) -> Path:
    """
    Resolve a defaults reference: bare names live in ``DATA_DIR``,
    absolute paths are used as-is.
    """
    path = Path(name)
    if path.is_absolute():
        return path
    return DATA_DIR / path


@functools.lru_cache(maxsize=None)
def _load(path: Path) -> Dict[str, Any]:
    if not path.is_file():
        raise DefaultsError(f"defaults file not found: {path}")

    with path.open() as f:
        try:
            raw = yaml.safe_load(f)
        except yaml.YAMLError as exc:
            raise DefaultsError(f"invalid defaults file {path}: {exc}") from exc

    if raw is None:
        return {}
    if not isinstance(raw, dict):
        raise DefaultsError(f"defaults file {path} must contain a mapping")
    return raw


def load_defaults(name: str = "") -> Dict[str, Any]:
    """
    Return the built-in defaults for one spec.

    Files are parsed once per process; every caller gets its own deep copy.
    An empty ``name`` means the spec has no defaults.
    """
    if not name:
        return {}
    return copy.deepcopy(_load(defaults_file(name)))
