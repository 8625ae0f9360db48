# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/settled/task/planner.py

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Sequence

from settled.task.base import Task
from settled.task.decode import TaskSpec
from settled.task.defaults import load_defaults
from settled.task.errors import DefaultsError, DuplicateSpecError, PlanningError
from settled.task.merge import merge_config


@dataclass
class Plan:
    """
    Ordered tasks for one target plus the configuration keys nothing
    recognised. Unknown keys are sorted and never fatal.
    """

    tasks: List[Task] = field(default_factory=list)
    unknown: List[str] = field(default_factory=list)


def _index_specs(specs: Sequence[TaskSpec]) -> Dict[str, TaskSpec]:
    index: Dict[str, TaskSpec] = {}
    for spec in specs:
        if spec.key in index:
            raise DuplicateSpecError(f"duplicate task key: {spec.key}", key=spec.key)
        index[spec.key] = spec
    return index


def create_tasks(config: Mapping[str, Any], specs: Sequence[TaskSpec]) -> Plan:
    """
    Build tasks from an already merged configuration.

    Builders run in spec registration order, and only for keys present in
    ``config``. Keys without a spec are reported as unknown, together with
    whatever residue the builders report.
    """
    index = _index_specs(specs)

    tasks: List[Task] = []
    unknown = set()
    for spec in specs:
        if spec.key not in config:
            continue
        try:
            result = spec.builder(config[spec.key])
        except PlanningError:
            raise
        except Exception as exc:
            raise PlanningError(
                f"failed to create tasks for {spec.key}: {exc}", key=spec.key
            ) from exc
        tasks.extend(result.tasks)
        unknown.update(result.unknown)

    unknown.update(str(key) for key in config if key not in index)
    return Plan(tasks=tasks, unknown=sorted(unknown))


def plan_tasks(overrides: Optional[Mapping[str, Any]], specs: Sequence[TaskSpec]) -> Plan:
    """
    Merge each spec's built-in defaults with the caller's overrides and
    turn the result into an ordered task list.

    Raises ``PlanningError`` (with ``.key`` set where one applies) on a
    duplicate spec key, a broken defaults file or a configuration that
    fails to decode. No partial plan is returned.
    """
    index = _index_specs(specs)

    if overrides is None:
        overrides = {}
    if not isinstance(overrides, Mapping):
        raise PlanningError(
            f"task configuration must be a mapping, got {type(overrides).__name__}"
        )

    unknown = {str(key) for key in overrides if key not in index}

    state: Dict[str, Any] = {}
    for spec in specs:
        try:
            defaults = load_defaults(spec.defaults_path)
        except DefaultsError as exc:
            raise DefaultsError(f"read defaults for {spec.key}: {exc}", key=spec.key) from exc
        state[spec.key] = merge_config(defaults, overrides.get(spec.key))

    plan = create_tasks(state, specs)
    unknown.update(plan.unknown)
    return Plan(tasks=plan.tasks, unknown=sorted(unknown))
