# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/settled/server/errors.py

from __future__ import annotations

from typing import Optional

from settled.context import Cancelled
from settled.errors import SettledError


class TransportError(SettledError):
    """Base class for remote execution failures; ``phase`` names the failing step."""

    phase = "transport"

    def __init__(self, message: str, *, output: str = ""):
        super().__init__(message)
        self.output = output

    @property
    def cancelled(self) -> bool:
        """True when the failure was caused by the run context finishing."""
        return isinstance(self.__cause__, Cancelled)


class NoAuthMethodError(TransportError):
    phase = "auth"


class KeyLoadError(TransportError):
    phase = "auth"


class HostKeyError(TransportError):
    phase = "known_hosts"


class DialError(TransportError):
    phase = "dial"


class HandshakeError(TransportError):
    phase = "handshake"


class SessionError(TransportError):
    phase = "session"


class CommandError(TransportError):
    """The remote command failed; ``output`` holds what it printed before failing."""

    phase = "command"

    def __init__(
        self,
        message: str,
        *,
        command: str,
        output: str = "",
        exit_status: Optional[int] = None,
    ):
        super().__init__(message, output=output)
        self.command = command
        self.exit_status = exit_status
