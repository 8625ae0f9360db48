# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/settled/context.py

from __future__ import annotations

import itertools
import threading
import time
from typing import Callable, Dict, Optional


class Cancelled(Exception):
    """The context was cancelled before the operation finished."""

    def __init__(self, message: str = "context cancelled"):
        super().__init__(message)


class DeadlineExceeded(Cancelled):
    """The context deadline passed before the operation finished."""

    def __init__(self, message: str = "context deadline exceeded"):
        super().__init__(message)


class RunContext:
    """
    Cancellation signal threaded from the configurator down to every
    transport call.

    Deadlines are ``time.monotonic()`` values. A child context finishes
    when its parent does and never outlives the parent's deadline.
    """

    def __init__(
        self,
        *,
        parent: Optional["RunContext"] = None,
        deadline: Optional[float] = None,
    ):
        self._lock = threading.Lock()
        self._finished = threading.Event()
        self._error: Optional[Cancelled] = None
        self._callbacks: Dict[int, Callable[[], None]] = {}
        self._ids = itertools.count()
        self._timer: Optional[threading.Timer] = None
        self._parent = parent
        self._parent_handle: Optional[int] = None

        if parent is not None and parent.deadline is not None:
            if deadline is None or parent.deadline < deadline:
                deadline = parent.deadline
        self._deadline = deadline

        if parent is not None:
            self._parent_handle = parent.add_done_callback(self._inherit)

        if deadline is not None and not self._finished.is_set():
            delay = deadline - time.monotonic()
            if delay <= 0:
                self._finish(DeadlineExceeded())
            else:
                self._timer = threading.Timer(delay, self._finish, args=(DeadlineExceeded(),))
                self._timer.daemon = True
                self._timer.start()

    # ------------------ constructors ------------------

    @classmethod
    def background(cls) -> "RunContext":
        return cls()

    def with_cancel(self) -> "RunContext":
        return RunContext(parent=self)

    def with_deadline(self, deadline: float) -> "RunContext":
        return RunContext(parent=self, deadline=deadline)

    def with_timeout(self, seconds: float) -> "RunContext":
        return RunContext(parent=self, deadline=time.monotonic() + seconds)

    # ------------------ state ------------------

    @property
    def deadline(self) -> Optional[float]:
        return self._deadline

    def remaining(self) -> Optional[float]:
        """Seconds until the deadline (never negative), or None without one."""
        if self._deadline is None:
            return None
        return max(0.0, self._deadline - time.monotonic())

    def done(self) -> bool:
        return self._finished.is_set()

    def error(self) -> Optional[Cancelled]:
        return self._error

    def wait(self, timeout: Optional[float] = None) -> bool:
        return self._finished.wait(timeout)

    def raise_if_done(self) -> None:
        if self._error is not None:
            raise self._error

    def cancel(self) -> None:
        self._finish(Cancelled())

    # ------------------ callbacks ------------------

    def add_done_callback(self, fn: Callable[[], None]) -> Optional[int]:
        """
        Register ``fn`` to run once when the context finishes.

        Runs ``fn`` immediately (and returns None) if the context is
        already finished.
        """
        with self._lock:
            if not self._finished.is_set():
                handle = next(self._ids)
                self._callbacks[handle] = fn
                return handle
        fn()
        return None

    def remove_done_callback(self, handle: Optional[int]) -> None:
        if handle is None:
            return
        with self._lock:
            self._callbacks.pop(handle, None)

    # ------------------ internals ------------------

    def _inherit(self) -> None:
        parent_error = self._parent.error() if self._parent is not None else None
        self._finish(parent_error or Cancelled())

    def _finish(self, error: Cancelled) -> None:
        with self._lock:
            if self._finished.is_set():
                return
            self._error = error
            self._finished.set()
            callbacks = list(self._callbacks.values())
            self._callbacks.clear()

        if self._timer is not None:
            self._timer.cancel()
        if self._parent is not None:
            self._parent.remove_done_callback(self._parent_handle)

        for fn in callbacks:
            fn()

    def __enter__(self) -> "RunContext":
        return self

    def __exit__(self, *exc_info) -> None:
        self.cancel()


class Watcher:
    """
    Background thread that calls ``on_fire`` once when the context finishes
    or ``deadline`` passes, unless stopped first.
    """

    def __init__(
        self,
        ctx: RunContext,
        on_fire: Callable[[], None],
        *,
        deadline: Optional[float] = None,
        name: str = "settled-watcher",
    ):
        self._ctx = ctx
        self._on_fire = on_fire
        self._deadline = deadline
        self._wake = threading.Event()
        self._lock = threading.Lock()
        self._stopped = False
        self.fired = False
        self.timed_out = False

        self._handle = ctx.add_done_callback(self._wake.set)
        self._thread = threading.Thread(target=self._run, name=name, daemon=True)
        self._thread.start()

    def _run(self) -> None:
        timeout = None
        if self._deadline is not None:
            timeout = max(0.0, self._deadline - time.monotonic())
        woken = self._wake.wait(timeout)

        with self._lock:
            if self._stopped:
                return
            self.fired = True
            self.timed_out = not woken
        self._on_fire()

    def stop(self) -> bool:
        """Tear the watcher down; returns True if it had already fired."""
        with self._lock:
            self._stopped = True
            fired = self.fired
        self._ctx.remove_done_callback(self._handle)
        self._wake.set()
        return fired


def watch(
    ctx: RunContext,
    on_fire: Callable[[], None],
    *,
    deadline: Optional[float] = None,
    name: str = "settled-watcher",
) -> Watcher:
    return Watcher(ctx, on_fire, deadline=deadline, name=name)
