# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/settled/sshd/config.py

from __future__ import annotations

from pathlib import Path
from typing import Sequence, Tuple

from settled.context import RunContext
from settled.server.models import Server
from settled.task import taskutil

DEFAULT_CONFIG_PATH = "/etc/ssh/sshd_config"

KEY_PERMIT_ROOT_LOGIN = "PermitRootLogin"
KEY_PASSWORD_AUTHENTICATION = "PasswordAuthentication"
KEY_KBD_INTERACTIVE_AUTH = "KbdInteractiveAuthentication"
KEY_CHALLENGE_RESPONSE_AUTH = "ChallengeResponseAuthentication"
VALUE_NO = "no"

CONFIG_PATHS: Tuple[str, ...] = (DEFAULT_CONFIG_PATH,)

_scripts = taskutil.ScriptRenderer(Path(__file__).parent / "scripts")


def read_config(ctx: RunContext, server: Server) -> Tuple[str, str]:
    """
    Return ``(path, content)`` of the first sshd config found on the host.
    """
    prefix = taskutil.sudo_prefix(ctx, server)
    for path in CONFIG_PATHS:
        output, missing = taskutil.read_file_if_exists(ctx, server, prefix, path)
        if missing:
            continue
        return path, output
    raise RuntimeError(f"sshd config not found (checked: {', '.join(CONFIG_PATHS)})")


def render_set_options(config_path: str, settings: Sequence[Tuple[str, str]]) -> str:
    keys = "|".join(key for key, _ in settings)
    return _scripts.render(
        "set_options",
        config_path=config_path or DEFAULT_CONFIG_PATH,
        settings=list(settings),
        key_pattern=f"^[[:space:]]*({keys})([[:space:]]|=)",
    )


def set_options(
    ctx: RunContext,
    server: Server,
    config_path: str,
    settings: Sequence[Tuple[str, str]],
) -> None:
    """
    Pin ``settings`` at the top of the sshd config, validate it and reload
    the daemon. The previous file is restored if ``sshd -t`` rejects it.
    """
    prefix = taskutil.sudo_prefix(ctx, server)
    script = render_set_options(config_path, settings)
    taskutil.run_script(ctx, server, prefix, script)
