# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/settled/task/decode.py

"""
Bridge between the untyped configuration tree and each task module's
typed configuration.

Task modules describe their configuration with pydantic models and hand a
``build(config) -> list[Task]`` function to :func:`spec_for`. The planner
only ever sees the resulting ``TaskSpec``: a key, a defaults reference and
an opaque builder taking the raw merged tree.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Iterable, List, NamedTuple, Optional, TypeVar

from pydantic import BaseModel, ConfigDict, TypeAdapter

from settled.task.base import Task

T = TypeVar("T")


class TaskConfig(BaseModel):
    """
    Base for task configuration models.

    Unrecognised fields are kept (not rejected) so they can be reported
    back to the user as unknown keys.
    """

    model_config = ConfigDict(extra="allow")


class BuildResult(NamedTuple):
    tasks: List[Task]
    unknown: List[str]


Builder = Callable[[Any], BuildResult]


@dataclass(frozen=True)
class TaskSpec:
    key: str
    builder: Builder
    defaults_path: str = ""


def decode_config(adapter: TypeAdapter, raw: Any) -> Any:
    """Validate ``raw`` into the adapter's type; ``None`` means an empty mapping."""
    if raw is None:
        raw = {}
    return adapter.validate_python(raw)


def unknown_fields(value: Any, prefix: str) -> List[str]:
    """
    Collect the dotted paths of every extra field kept on a decoded value.
    """
    found: List[str] = []
    if isinstance(value, BaseModel):
        for name in value.model_extra or {}:
            found.append(f"{prefix}.{name}")
        for name in type(value).model_fields:
            found.extend(unknown_fields(getattr(value, name), f"{prefix}.{name}"))
    elif isinstance(value, dict):
        for key, item in value.items():
            found.extend(unknown_fields(item, f"{prefix}.{key}"))
    elif isinstance(value, (list, tuple)):
        for idx, item in enumerate(value):
            found.extend(unknown_fields(item, f"{prefix}[{idx}]"))
    return found


def spec_for(
    key: str,
    defaults_path: str,
    config_type: Any,
    build: Callable[[T], Optional[Iterable[Task]]],
) -> TaskSpec:
    """
    Wrap a typed ``build`` function into a registry entry.

    Decoding errors (pydantic ``ValidationError``) and anything raised by
    ``build`` propagate to the planner, which attaches the key.
    """
    adapter = TypeAdapter(config_type)

    def builder(raw: Any) -> BuildResult:
        config = decode_config(adapter, raw)
        tasks = list(build(config) or [])
        return BuildResult(tasks=tasks, unknown=unknown_fields(config, key))

    return TaskSpec(key=key, builder=builder, defaults_path=defaults_path)
