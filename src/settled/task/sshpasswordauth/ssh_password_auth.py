# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/settled/task/sshpasswordauth/ssh_password_auth.py

from __future__ import annotations

from typing import List

from settled.context import RunContext
from settled.server.models import Server
from settled.sshd import config as sshd
from settled.task import taskutil
from settled.task.base import Task
from settled.task.decode import TaskConfig, TaskSpec, spec_for

TASK_KEY = "ssh_password_auth"

SETTINGS = [
    (sshd.KEY_PASSWORD_AUTHENTICATION, sshd.VALUE_NO),
    (sshd.KEY_KBD_INTERACTIVE_AUTH, sshd.VALUE_NO),
    (sshd.KEY_CHALLENGE_RESPONSE_AUTH, sshd.VALUE_NO),
]


class SSHPasswordAuthConfig(TaskConfig):
    disable: bool = False


def spec() -> TaskSpec:
    return spec_for(TASK_KEY, "ssh_password_auth.yaml", SSHPasswordAuthConfig, build_tasks)


def build_tasks(cfg: SSHPasswordAuthConfig) -> List[Task]:
    if not cfg.disable:
        return []
    return [DisableSSHPasswordAuthTask()]


class DisableSSHPasswordAuthTask(Task):
    def __init__(self):
        self.config_path = ""

    @property
    def name(self) -> str:
        return "disable ssh password authentication"

    def needs_execution(self, ctx: RunContext, server: Server) -> bool:
        path, output = sshd.read_config(ctx, server)
        self.config_path = path
        return not password_auth_disabled(output)

    def execute(self, ctx: RunContext, server: Server) -> None:
        if not self.config_path:
            self.config_path, _ = sshd.read_config(ctx, server)
        sshd.set_options(ctx, server, self.config_path, SETTINGS)


def password_auth_disabled(output: str) -> bool:
    """
    ``PasswordAuthentication no`` plus at least one keyboard-interactive
    style setting, with every one that is present set to ``no``.
    """
    settings = taskutil.parse_key_value_settings(output)

    if settings.get(sshd.KEY_PASSWORD_AUTHENTICATION.lower()) != sshd.VALUE_NO:
        return False

    interactive = [
        settings.get(sshd.KEY_KBD_INTERACTIVE_AUTH.lower(), ""),
        settings.get(sshd.KEY_CHALLENGE_RESPONSE_AUTH.lower(), ""),
    ]
    present = [value for value in interactive if value]
    if not present:
        return False
    return all(value == sshd.VALUE_NO for value in present)
