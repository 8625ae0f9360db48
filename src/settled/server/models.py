# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/settled/server/models.py

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Protocol, runtime_checkable

from settled.context import RunContext


@runtime_checkable
class Server(Protocol):
    """
    A remote host that can be configured.

    ``execute`` runs one command and returns its combined stdout/stderr.
    """

    @property
    def id(self) -> str: ...

    @property
    def address(self) -> str: ...

    def execute(self, ctx: RunContext, command: str) -> str: ...


@dataclass(frozen=True)
class User:
    """
    SSH login identity for a server.
    """
    name: str
    ssh_key: str = ""              # path to a private key, "~/" is expanded
    sudo_password: str = ""        # fed to "sudo -S" for "sudo -n" commands


@dataclass(frozen=True)
class SSHOptions:
    use_agent: Optional[bool] = None            # None means "use the agent if available"
    handshake_timeout: Optional[float] = None   # seconds; None or <= 0 uses the default
