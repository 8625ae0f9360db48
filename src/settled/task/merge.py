# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/settled/task/merge.py

from __future__ import annotations

import copy
from typing import Any, Mapping, Optional


def merge_config(defaults: Optional[Mapping[str, Any]], override: Any) -> Any:
    """
    Merge an override value on top of a defaults tree.

    - override ``None``          -> deep copy of defaults (``None`` if empty)
    - override not a mapping     -> override wins outright
    - both mappings              -> key-wise recursive merge

    Lists are never merged; the override list replaces the default.
    The result never aliases either input.
    """
    if override is None:
        if not defaults:
            return None
        return copy.deepcopy(dict(defaults))

    if not isinstance(override, Mapping):
        return copy.deepcopy(override)

    if not defaults:
        return copy.deepcopy(dict(override))

    return _merge_maps(defaults, override)


def _merge_maps(base: Mapping[str, Any], override: Mapping[str, Any]) -> dict:
    result = copy.deepcopy(dict(base))
    for key, value in override.items():
        current = result.get(key)
        if isinstance(current, Mapping) and isinstance(value, Mapping):
            result[key] = _merge_maps(current, value)
        else:
            result[key] = copy.deepcopy(value)
    return result
