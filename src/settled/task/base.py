# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/settled/task/base.py

from __future__ import annotations

from abc import ABC, abstractmethod

from settled.context import RunContext
from settled.server.models import Server


class Task(ABC):
    """
    One idempotent unit of remote configuration work.

    ``needs_execution`` inspects the host and reports whether ``execute``
    has anything to do. ``execute`` is only ever called right after a
    ``True`` answer, and must not rely on state cached by the check.
    """

    @property
    @abstractmethod
    def name(self) -> str:
        ...

    @abstractmethod
    def needs_execution(self, ctx: RunContext, server: Server) -> bool:
        ...

    @abstractmethod
    def execute(self, ctx: RunContext, server: Server) -> None:
        ...

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.name!r}>"
