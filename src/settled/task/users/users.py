# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/settled/task/users/users.py

from __future__ import annotations

import posixpath
import shlex
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional, Set

from pydantic import field_validator

from settled.context import RunContext
from settled.server.errors import CommandError
from settled.server.models import Server
from settled.task import taskutil
from settled.task.base import Task
from settled.task.decode import TaskConfig, TaskSpec, spec_for

TASK_KEY = "users"

SUDOERS_DIR = "/etc/sudoers.d"
SUDOERS_FILE_PREFIX = "settled-"
SSH_DIR_NAME = ".ssh"
AUTHORIZED_KEYS_FILE_NAME = "authorized_keys"
SSH_DIR_MODE = 0o700
AUTHORIZED_KEYS_MODE = 0o600
SUDOERS_FILE_MODE = 0o440

_scripts = taskutil.ScriptRenderer(Path(__file__).parent / "scripts")


class UserConfig(TaskConfig):
    sudo: bool = False
    sudo_nopasswd: bool = False
    groups: List[str] = []
    authorized_keys: List[str] = []

    @field_validator("groups", "authorized_keys", mode="before")
    @classmethod
    def _none_is_empty(cls, v):
        return [] if v is None else v


UsersConfig = Dict[str, UserConfig]


def spec() -> TaskSpec:
    return spec_for(TASK_KEY, "users.yaml", UsersConfig, build_tasks)


def build_tasks(cfg: UsersConfig) -> List[Task]:
    tasks: List[Task] = []
    for name in sorted(cfg):
        taskutil.validate_identifier("user", name)
        user_cfg = cfg[name].model_copy(
            update={
                "groups": taskutil.clean_list(cfg[name].groups),
                "authorized_keys": taskutil.clean_list(cfg[name].authorized_keys),
            }
        )
        for group in user_cfg.groups:
            taskutil.validate_identifier("group", group)
        tasks.append(UserTask(name, user_cfg))
    return tasks


def sudoers_file_path(name: str) -> str:
    return posixpath.join(SUDOERS_DIR, SUDOERS_FILE_PREFIX + taskutil.sanitize_filename(name, "user"))


def authorized_keys_path(home: str) -> str:
    return posixpath.join(home, SSH_DIR_NAME, AUTHORIZED_KEYS_FILE_NAME)


@dataclass
class UserEntry:
    home: str


class UserTask(Task):
    """
    Ensures one account exists with its groups, sudo rule and keys.
    """

    def __init__(self, user: str, config: UserConfig):
        self.user = user
        self.config = config

    @property
    def name(self) -> str:
        return f"user: {self.user}"

    @property
    def sudoers_file(self) -> str:
        return sudoers_file_path(self.user)

    @property
    def sudoers_line(self) -> str:
        if self.config.sudo_nopasswd:
            return f"{self.user} ALL=(ALL) NOPASSWD:ALL"
        return f"{self.user} ALL=(ALL) ALL"

    def needs_execution(self, ctx: RunContext, server: Server) -> bool:
        entry = lookup_user(ctx, server, self.user)
        if entry is None:
            return True

        if self._needs_group_update(ctx, server):
            return True

        prefix = ""
        if self.config.sudo or self.config.authorized_keys:
            prefix = taskutil.sudo_prefix(ctx, server)

        if self.config.sudo and not self._sudoers_matches(ctx, server, prefix):
            return True

        if self.config.authorized_keys and not self._authorized_keys_match(ctx, server, prefix, entry.home):
            return True

        return False

    def execute(self, ctx: RunContext, server: Server) -> None:
        prefix = taskutil.sudo_prefix(ctx, server)
        taskutil.run_script(ctx, server, prefix, self.render_script())

    def render_script(self) -> str:
        return _scripts.render(
            "main",
            name=self.user,
            groups=self.config.groups,
            sudo=self.config.sudo,
            sudoers_file=self.sudoers_file,
            sudoers_line=self.sudoers_line,
            sudoers_mode=f"{SUDOERS_FILE_MODE:o}",
            authorized_keys=self.config.authorized_keys,
            ssh_dir_mode=f"{SSH_DIR_MODE:o}",
            authorized_keys_mode=f"{AUTHORIZED_KEYS_MODE:o}",
        )

    # ------------------ checks ------------------

    def _needs_group_update(self, ctx: RunContext, server: Server) -> bool:
        if not self.config.groups:
            return False
        groups = lookup_groups(ctx, server, self.user)
        return any(group not in groups for group in self.config.groups)

    def _sudoers_matches(self, ctx: RunContext, server: Server, prefix: str) -> bool:
        try:
            output, missing = taskutil.read_file_if_exists(ctx, server, prefix, self.sudoers_file)
        except Exception as exc:
            raise RuntimeError(f"read sudoers for {self.user!r}: {exc}") from exc
        if missing:
            return False
        return taskutil.has_exact_line(output, self.sudoers_line)

    def _authorized_keys_match(self, ctx: RunContext, server: Server, prefix: str, home: str) -> bool:
        if not home.strip():
            raise RuntimeError(f"empty home directory for {self.user!r}")

        try:
            output, missing = taskutil.read_file_if_exists(ctx, server, prefix, authorized_keys_path(home))
        except Exception as exc:
            raise RuntimeError(f"read authorized_keys for {self.user!r}: {exc}") from exc
        if missing:
            return False

        keys = taskutil.line_set(output)
        return all(key in keys for key in self.config.authorized_keys)


def lookup_user(ctx: RunContext, server: Server, name: str) -> Optional[UserEntry]:
    """Passwd entry for ``name``, or None when the account does not exist."""
    try:
        output = server.execute(ctx, f"getent passwd {shlex.quote(name)}")
    except CommandError as exc:
        # getent exits non-zero without output for a missing user
        if not exc.cancelled and not exc.output.strip():
            return None
        raise RuntimeError(f"lookup user {name!r}: {exc}") from exc

    line = output.strip()
    if not line:
        return None
    fields = line.split(":")
    if len(fields) < 6:
        raise RuntimeError(f"unexpected passwd entry for {name!r}: {line}")
    return UserEntry(home=fields[5])


def lookup_groups(ctx: RunContext, server: Server, name: str) -> Set[str]:
    try:
        output = server.execute(ctx, f"id -nG {shlex.quote(name)}")
    except Exception as exc:
        raise RuntimeError(f"lookup groups for {name!r}: {exc}") from exc
    return set(output.split())
