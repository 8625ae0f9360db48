# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/settled/server/ssh.py

from __future__ import annotations

import errno
import io
import logging
import os
import select
import socket
import time
from pathlib import Path
from typing import List, Optional, Tuple, Type

import paramiko

from settled.context import Cancelled, RunContext, watch
from settled.server.errors import (
    CommandError,
    DialError,
    HandshakeError,
    HostKeyError,
    KeyLoadError,
    NoAuthMethodError,
    SessionError,
    TransportError,
)
from settled.server.models import SSHOptions, User

log = logging.getLogger("settled")

DEFAULT_PORT = 22
DEFAULT_HANDSHAKE_TIMEOUT = 15.0

SUDO_NON_INTERACTIVE = "sudo -n "
SUDO_PROMPTING = "sudo -S -p '' "

_POLL_INTERVAL = 0.05
_RECV_SIZE = 32768
_IN_PROGRESS = {errno.EINPROGRESS, errno.EALREADY, errno.EWOULDBLOCK, errno.EAGAIN}

_KEY_CLASSES: Tuple[Type[paramiko.PKey], ...] = (
    paramiko.Ed25519Key,
    paramiko.RSAKey,
    paramiko.ECDSAKey,
)


# ------------------ helpers ------------------

def split_address(address: str) -> Tuple[str, int]:
    """
    Split ``host``, ``host:port``, ``[v6]:port`` or a bare IPv6 address.
    """
    if address.startswith("["):
        host, sep, rest = address[1:].partition("]")
        if not sep:
            raise ValueError(f"invalid address {address!r}")
        if rest.startswith(":") and len(rest) > 1:
            return host, int(rest[1:])
        return host, DEFAULT_PORT
    if address.count(":") == 1:
        host, port = address.split(":")
        return host, int(port)
    return address, DEFAULT_PORT


def expand_path(path: str) -> Path:
    return Path(path).expanduser()


def resolve_known_hosts_path(path: str = "") -> Path:
    if not path:
        return Path.home() / ".ssh" / "known_hosts"
    return expand_path(path)


def load_private_key(path: str) -> paramiko.PKey:
    """
    Read and parse an explicit private key. Failure is fatal for the call.
    """
    key_path = expand_path(path)
    try:
        data = key_path.read_text()
    except OSError as exc:
        raise KeyLoadError(f"failed to read ssh key {str(key_path)!r}: {exc}") from exc

    last_exc: Optional[Exception] = None
    for key_cls in _KEY_CLASSES:
        try:
            return key_cls.from_private_key(io.StringIO(data))
        except (paramiko.SSHException, ValueError) as exc:
            last_exc = exc
    raise KeyLoadError(f"failed to parse ssh key {str(key_path)!r}: {last_exc}") from last_exc


def handshake_deadline(ctx: RunContext, timeout: float) -> Optional[float]:
    """Earlier of ``now + timeout`` and the context deadline."""
    deadline = None
    if timeout > 0:
        deadline = time.monotonic() + timeout
    if ctx.deadline is not None and (deadline is None or ctx.deadline < deadline):
        deadline = ctx.deadline
    return deadline


def _wrap(
    ctx: RunContext,
    error_cls: Type[TransportError],
    message: str,
    cause: Optional[BaseException] = None,
    **kwargs,
) -> TransportError:
    # a finished context takes precedence so callers can tell cancellation apart
    ctx_error = ctx.error()
    if ctx_error is not None:
        error = error_cls(f"{message}: {ctx_error}", **kwargs)
        error.__cause__ = ctx_error
    elif cause is not None:
        error = error_cls(f"{message}: {cause}", **kwargs)
        error.__cause__ = cause
    else:
        error = error_cls(message, **kwargs)
    return error


def _connect(ctx: RunContext, sock: socket.socket, sockaddr) -> None:
    sock.setblocking(False)
    err = sock.connect_ex(sockaddr)
    while err in _IN_PROGRESS:
        ctx.raise_if_done()
        _, writable, _ = select.select([], [sock], [], _POLL_INTERVAL)
        if writable:
            err = sock.getsockopt(socket.SOL_SOCKET, socket.SO_ERROR)
    if err:
        raise OSError(err, os.strerror(err))
    sock.setblocking(True)


def _close_all(*resources) -> None:
    for resource in resources:
        if resource is None:
            continue
        try:
            resource.close()
        except (OSError, paramiko.SSHException) as exc:
            log.debug("closing %r failed: %s", resource, exc)


# ------------------ transport ------------------

class SSHServer:
    """
    Runs commands on a remote host over SSH.

    Every ``execute`` call opens its own connection, runs exactly one
    command and tears everything down again; nothing is pooled.
    """

    def __init__(
        self,
        name: str,
        address: str,
        user: User,
        known_hosts_path: str = "",
        options: Optional[SSHOptions] = None,
    ):
        self._name = name
        self._address = address
        self._user = user
        self._known_hosts_path = known_hosts_path
        self._options = options or SSHOptions()

    @property
    def id(self) -> str:
        return self._name

    @property
    def address(self) -> str:
        return self._address

    @property
    def user(self) -> User:
        return self._user

    def use_agent(self) -> bool:
        if self._options.use_agent is None:
            return True
        return self._options.use_agent

    def handshake_timeout(self) -> float:
        if self._options.handshake_timeout and self._options.handshake_timeout > 0:
            return self._options.handshake_timeout
        return DEFAULT_HANDSHAKE_TIMEOUT

    def execute(self, ctx: RunContext, command: str) -> str:
        agent: Optional[paramiko.Agent] = None
        sock: Optional[socket.socket] = None
        transport: Optional[paramiko.Transport] = None
        channel: Optional[paramiko.Channel] = None

        try:
            keys, agent = self._auth_keys()
            host_keys = self._host_keys()

            try:
                host, port = split_address(self._address)
            except ValueError as exc:
                raise DialError(f"failed to dial {self._address}: {exc}") from exc

            sock = self._dial(ctx, host, port)
            transport = self._handshake(ctx, sock, host, port, keys, host_keys)

            watcher = watch(ctx, transport.close, name=f"settled-ssh-{self._name}")
            try:
                channel = self._open_session(ctx, transport)
                return self._run(ctx, channel, command)
            finally:
                watcher.stop()
        finally:
            _close_all(channel, transport, sock, agent)

    # ------------------ phases ------------------

    def _auth_keys(self) -> Tuple[List[paramiko.PKey], Optional[paramiko.Agent]]:
        keys: List[paramiko.PKey] = []
        if self._user.ssh_key:
            keys.append(load_private_key(self._user.ssh_key))

        agent = None
        if self.use_agent() and os.environ.get("SSH_AUTH_SOCK"):
            try:
                agent = paramiko.Agent()
                agent_keys = list(agent.get_keys())
            except paramiko.SSHException as exc:
                log.debug("ssh agent unavailable: %s", exc)
                agent_keys = []
            if agent_keys:
                keys.extend(agent_keys)
            elif agent is not None:
                agent.close()
                agent = None

        if not keys:
            raise NoAuthMethodError("no ssh authentication methods available")
        return keys, agent

    def _host_keys(self) -> paramiko.HostKeys:
        path = resolve_known_hosts_path(self._known_hosts_path)
        try:
            return paramiko.HostKeys(str(path))
        except (OSError, paramiko.SSHException) as exc:
            raise HostKeyError(f"failed to load known_hosts file {str(path)!r}: {exc}") from exc

    def _dial(self, ctx: RunContext, host: str, port: int) -> socket.socket:
        addr = f"{host}:{port}"
        try:
            ctx.raise_if_done()
            infos = socket.getaddrinfo(host, port, type=socket.SOCK_STREAM)
        except (OSError, Cancelled) as exc:
            raise _wrap(ctx, DialError, f"failed to dial {addr}", exc)

        last_exc: Optional[BaseException] = None
        for family, socktype, proto, _, sockaddr in infos:
            sock = socket.socket(family, socktype, proto)
            try:
                _connect(ctx, sock, sockaddr)
            except (OSError, Cancelled) as exc:
                sock.close()
                last_exc = exc
                if ctx.done():
                    break
                continue
            log.debug("connected to %s (%s)", addr, self._name)
            return sock

        raise _wrap(ctx, DialError, f"failed to dial {addr}", last_exc)

    def _handshake(
        self,
        ctx: RunContext,
        sock: socket.socket,
        host: str,
        port: int,
        keys: List[paramiko.PKey],
        host_keys: paramiko.HostKeys,
    ) -> paramiko.Transport:
        addr = f"{host}:{port}"
        deadline = handshake_deadline(ctx, self.handshake_timeout())
        remaining = None if deadline is None else max(0.0, deadline - time.monotonic())

        transport = paramiko.Transport(sock)
        transport.banner_timeout = remaining
        transport.handshake_timeout = remaining
        transport.auth_timeout = remaining

        # closes the transport if the context finishes or the deadline passes mid-handshake
        watcher = watch(ctx, transport.close, deadline=deadline, name=f"settled-handshake-{self._name}")
        established = False
        try:
            failure: Optional[Exception] = None
            try:
                transport.start_client(timeout=remaining)
                self._verify_host_key(transport, host, port, host_keys)
                self._authenticate(transport, keys, addr)
            except (paramiko.SSHException, OSError, EOFError, TransportError) as exc:
                failure = exc

            fired = watcher.stop()
            if failure is None and not fired:
                established = True
                return transport

            if fired and ctx.error() is None:
                raise HandshakeError(
                    f"ssh handshake with {addr} timed out after {self.handshake_timeout():g}s"
                ) from failure
            if isinstance(failure, TransportError) and ctx.error() is None:
                raise failure
            raise _wrap(ctx, HandshakeError, f"failed to establish ssh connection to {addr}", failure)
        finally:
            watcher.stop()
            if not established:
                transport.close()

    def _verify_host_key(
        self,
        transport: paramiko.Transport,
        host: str,
        port: int,
        host_keys: paramiko.HostKeys,
    ) -> None:
        server_key = transport.get_remote_server_key()
        lookup = host if port == DEFAULT_PORT else f"[{host}]:{port}"
        if host_keys.lookup(lookup) is None:
            raise HostKeyError(f"host key for {lookup} not found in known_hosts")
        if not host_keys.check(lookup, server_key):
            raise HostKeyError(f"host key mismatch for {lookup} ({server_key.get_name()})")

    def _authenticate(self, transport: paramiko.Transport, keys: List[paramiko.PKey], addr: str) -> None:
        last_exc: Optional[Exception] = None
        for key in keys:
            try:
                transport.auth_publickey(self._user.name, key)
            except paramiko.AuthenticationException as exc:
                last_exc = exc
                continue
            if transport.is_authenticated():
                return
        raise HandshakeError(
            f"ssh authentication as {self._user.name!r} to {addr} failed: {last_exc}"
        )

    def _open_session(self, ctx: RunContext, transport: paramiko.Transport) -> paramiko.Channel:
        try:
            return transport.open_session(timeout=ctx.remaining())
        except (paramiko.SSHException, OSError, EOFError) as exc:
            raise _wrap(ctx, SessionError, "failed to create session", exc)

    def _elevate(self, command: str) -> Tuple[str, Optional[bytes]]:
        """
        Swap "sudo -n" for a prompting sudo fed from stdin when a password is set.
        """
        if self._user.sudo_password and command.startswith(SUDO_NON_INTERACTIVE):
            rewritten = SUDO_PROMPTING + command[len(SUDO_NON_INTERACTIVE):]
            return rewritten, (self._user.sudo_password + "\n").encode()
        return command, None

    def _run(self, ctx: RunContext, channel: paramiko.Channel, command: str) -> str:
        command_to_run, stdin_data = self._elevate(command)
        log.debug("[%s] $ %s", self._name, command_to_run)

        chunks: List[bytes] = []
        try:
            channel.set_combine_stderr(True)
            channel.exec_command(command_to_run)
            if stdin_data is not None:
                channel.sendall(stdin_data)
            channel.shutdown_write()
            while True:
                data = channel.recv(_RECV_SIZE)
                if not data:
                    break
                chunks.append(data)
            status = channel.recv_exit_status()
        except (paramiko.SSHException, OSError, EOFError) as exc:
            output = b"".join(chunks).decode("utf-8", errors="replace")
            raise _wrap(
                ctx,
                CommandError,
                f"command {command_to_run!r} failed",
                exc,
                command=command_to_run,
                output=output,
            )

        output = b"".join(chunks).decode("utf-8", errors="replace")
        if status != 0:
            raise _wrap(
                ctx,
                CommandError,
                f"command {command_to_run!r} failed with exit status {status}",
                command=command_to_run,
                output=output,
                exit_status=status,
            )
        return output
