# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/settled/task/configurator.py

from __future__ import annotations

from typing import List

from settled.context import RunContext
from settled.server.models import Server
from settled.task.base import Task
from settled.task.runner import Runner


class TaskConfigurator:
    """Binds a runner and a fixed task list; one ``configure`` call per server."""

    def __init__(self, runner: Runner, *tasks: Task):
        self.runner = runner
        self.tasks: List[Task] = list(tasks)

    def configure(self, ctx: RunContext, server: Server) -> None:
        self.runner.run(ctx, server, *self.tasks)
