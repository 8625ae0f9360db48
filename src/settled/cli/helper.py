# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/settled/cli/helper.py

from __future__ import annotations

import concurrent.futures
import logging
import shlex
from typing import Callable, Dict, List, Optional, Sequence

from settled.config.models import ServerConfig
from settled.context import RunContext
from settled.server.models import Server
from settled.server.ssh import SSHServer
from settled.task.taskutil import clean_list, shell_command
from settled.task.users.users import AUTHORIZED_KEYS_FILE_NAME, SSH_DIR_NAME

log = logging.getLogger("settled")


def new_ssh_server(cfg: ServerConfig, login_user: str = "") -> SSHServer:
    """Build the transport for one configured server, optionally as another login user."""
    return SSHServer(
        cfg.name,
        cfg.address,
        cfg.to_user(login_user),
        known_hosts_path=cfg.known_hosts,
        options=cfg.ssh_options(),
    )


def resolve_bootstrap_keys(
    ctx: RunContext,
    server: Server,
    provided: Optional[Sequence[str]],
    login_user: str,
) -> List[str]:
    """
    Keys given on the command line win; otherwise copy the login user's
    own authorized_keys from the host.
    """
    keys = clean_list(provided)
    if keys:
        return keys

    user = shlex.quote(login_user)
    script = (
        f"set -e; home=$(getent passwd {user} | cut -d: -f6); "
        f'if [ -z "$home" ]; then home=/root; fi; '
        f'cat "$home/{SSH_DIR_NAME}/{AUTHORIZED_KEYS_FILE_NAME}"'
    )
    try:
        output = server.execute(ctx, shell_command("", script))
    except Exception as exc:
        raise RuntimeError(
            f"read authorized_keys for {login_user} (use --authorized-key to override): {exc}"
        ) from exc

    keys = clean_list(output.splitlines())
    if not keys:
        raise RuntimeError(f"authorized_keys for {login_user} is empty")
    return keys


def run_for_servers(
    servers: Sequence[ServerConfig],
    fn: Callable[[ServerConfig], bool],
    workers: int = 1,
    ctx: Optional[RunContext] = None,
) -> Dict[str, bool]:
    """
    Call ``fn`` once per server, sequentially or on a thread pool.

    ``fn`` reports success; servers share nothing, so the order of
    completion does not matter. If anything escapes (Ctrl-C included),
    ``ctx`` is cancelled before waiting on the servers still in flight.
    """
    results: Dict[str, bool] = {}
    if workers <= 1 or len(servers) <= 1:
        try:
            for cfg in servers:
                results[cfg.name] = fn(cfg)
        except BaseException:
            if ctx is not None:
                ctx.cancel()
            raise
        return results

    with concurrent.futures.ThreadPoolExecutor(
        max_workers=workers, thread_name_prefix="settled-server"
    ) as pool:
        futures = {pool.submit(fn, cfg): cfg.name for cfg in servers}
        try:
            for future in concurrent.futures.as_completed(futures):
                results[futures[future]] = future.result()
        except BaseException:
            if ctx is not None:
                ctx.cancel()
            pool.shutdown(wait=True, cancel_futures=True)
            raise
    return results
