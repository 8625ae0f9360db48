# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/settled/task/runner.py

from __future__ import annotations

import logging
from typing import Optional

from settled.context import RunContext
from settled.server.models import Server
from settled.task.base import Task
from settled.task.errors import TaskError

log = logging.getLogger("settled")


class Runner:
    """
    Drives the check-then-apply loop over a task list for one server.

    Tasks run strictly in order. The first failure stops the run; nothing
    is retried.
    """

    def __init__(self, logger: Optional[logging.Logger] = None):
        self.log = logger or log

    def run(self, ctx: RunContext, server: Server, *tasks: Task) -> None:
        for task in tasks:
            name = task.name
            self.log.info("Processing task task=%r server=%s", name, server.id)

            try:
                needs_exec = task.needs_execution(ctx, server)
            except Exception as exc:
                raise TaskError(
                    f"failed to check if task {name!r} needs execution: {exc}",
                    task_name=name,
                    phase="check",
                ) from exc

            if not needs_exec:
                self.log.info("Task is already satisfied task=%r server=%s", name, server.id)
                continue

            self.log.info("Applying task task=%r server=%s", name, server.id)
            try:
                task.execute(ctx, server)
            except Exception as exc:
                raise TaskError(
                    f"failed to execute task {name!r}: {exc}",
                    task_name=name,
                    phase="execute",
                ) from exc

            self.log.info("Task applied successfully task=%r server=%s", name, server.id)
