# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/settled/task/rootlogin/root_login.py

from __future__ import annotations

import logging
from typing import List

from settled.context import RunContext
from settled.server.models import Server
from settled.sshd import config as sshd
from settled.task import taskutil
from settled.task.base import Task
from settled.task.decode import TaskConfig, TaskSpec, spec_for

log = logging.getLogger("settled")

TASK_KEY = "root_login"


class RootLoginConfig(TaskConfig):
    disable: bool = False


def spec() -> TaskSpec:
    return spec_for(TASK_KEY, "root_login.yaml", RootLoginConfig, build_tasks)


def build_tasks(cfg: RootLoginConfig) -> List[Task]:
    if not cfg.disable:
        return []
    return [DisableRootLoginTask()]


class DisableRootLoginTask(Task):
    """Sets ``PermitRootLogin no`` unless the session itself is root."""

    def __init__(self):
        self.config_path = ""

    @property
    def name(self) -> str:
        return "disable root login"

    def needs_execution(self, ctx: RunContext, server: Server) -> bool:
        if is_logged_in_as_root(ctx, server):
            log.warning("skipping %s task because connected as root (server=%s)", self.name, server.id)
            return False

        path, output = sshd.read_config(ctx, server)
        self.config_path = path
        return not root_login_disabled(output)

    def execute(self, ctx: RunContext, server: Server) -> None:
        if not self.config_path:
            self.config_path, _ = sshd.read_config(ctx, server)
        sshd.set_options(
            ctx,
            server,
            self.config_path,
            [(sshd.KEY_PERMIT_ROOT_LOGIN, sshd.VALUE_NO)],
        )


def is_logged_in_as_root(ctx: RunContext, server: Server) -> bool:
    try:
        output = server.execute(ctx, "id -un")
    except Exception as exc:
        raise RuntimeError(f"check login user: {exc}") from exc
    return output.strip() == "root"


def root_login_disabled(output: str) -> bool:
    settings = taskutil.parse_key_value_settings(output)
    return settings.get(sshd.KEY_PERMIT_ROOT_LOGIN.lower()) == sshd.VALUE_NO
