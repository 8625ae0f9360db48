# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/settled/task/errors.py

from __future__ import annotations

from typing import Optional

from settled.errors import SettledError


class PlanningError(SettledError):
    """
    Raised when a configuration tree cannot be turned into tasks.

    No partial task list is ever returned alongside it.
    """

    def __init__(self, message: str, *, key: Optional[str] = None):
        super().__init__(message)
        self.key = key


class DuplicateSpecError(PlanningError):
    """Two specs were registered under the same key."""


class DefaultsError(PlanningError):
    """A spec names a defaults file that is missing or malformed."""


class TaskError(SettledError):
    """
    A task failed while checking or applying its state.

    ``phase`` is ``check`` or ``execute``; the original error is chained
    as ``__cause__``.
    """

    def __init__(self, message: str, *, task_name: str, phase: str):
        super().__init__(message)
        self.task_name = task_name
        self.phase = phase
