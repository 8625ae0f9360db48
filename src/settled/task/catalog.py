# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/settled/task/catalog.py

from __future__ import annotations

from typing import List

from settled.task.decode import TaskSpec
from settled.task.fail2ban import fail2ban
from settled.task.rootlogin import root_login
from settled.task.sshpasswordauth import ssh_password_auth
from settled.task.users import users


def builtins() -> List[TaskSpec]:
    """
    Built-in specs in execution order.

    Users come first so a sudo account exists before root login and
    password authentication are switched off.
    """
    return [
        users.spec(),
        root_login.spec(),
        ssh_password_auth.spec(),
        fail2ban.spec(),
    ]
