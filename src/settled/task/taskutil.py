# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/settled/task/taskutil.py

"""
Host-side helpers shared by the built-in task modules.
"""

from __future__ import annotations

import re
import shlex
from datetime import timedelta
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Set, Tuple

from jinja2 import Environment, FileSystemLoader, StrictUndefined, TemplateNotFound

from settled.context import RunContext
from settled.server.models import Server
from settled.server.ssh import SUDO_NON_INTERACTIVE

MISSING_FILE_SENTINEL = "__SETTLED_MISSING__"

_SAFE_NAME = re.compile(r"^[A-Za-z0-9._-]+$")
_UNSAFE_CHAR = re.compile(r"[^A-Za-z0-9._-]")
_DURATION_PART = re.compile(r"(\d+(?:\.\d+)?)(ms|s|m|h)")
_DURATION_UNITS = {"ms": 0.001, "s": 1, "m": 60, "h": 3600}


# ------------------ remote ------------------

def sudo_prefix(ctx: RunContext, server: Server) -> str:
    """
    Empty when connected as uid 0, otherwise the non-interactive sudo marker
    (which the transport turns into a password-fed sudo when configured).
    """
    try:
        output = server.execute(ctx, "id -u")
    except Exception as exc:
        raise RuntimeError(f"check for root user: {exc}") from exc
    if output.strip() == "0":
        return ""
    return SUDO_NON_INTERACTIVE


def shell_command(prefix: str, script: str) -> str:
    return f"{prefix}sh -c {shlex.quote(script)}"


def run_script(ctx: RunContext, server: Server, prefix: str, script: str) -> str:
    return server.execute(ctx, shell_command(prefix, script))


def read_file_if_exists(
    ctx: RunContext,
    server: Server,
    prefix: str,
    path: str,
) -> Tuple[str, bool]:
    """
    Read a remote file. Returns ``(content, missing)``.
    """
    marker = f"{MISSING_FILE_SENTINEL}:{path}"
    quoted = shlex.quote(path)
    script = f"if [ -f {quoted} ]; then cat {quoted}; else printf '%s' {shlex.quote(marker)}; fi"
    try:
        output = run_script(ctx, server, prefix, script)
    except Exception as exc:
        raise RuntimeError(f"read file {path!r}: {exc}") from exc
    if output.strip() == marker:
        return "", True
    return output, False


# ------------------ text ------------------

def has_exact_line(output: str, line: str) -> bool:
    return line in output.splitlines()


def line_set(output: str) -> Set[str]:
    return set(output.splitlines())


def parse_key_value_settings(output: str) -> Dict[str, str]:
    """
    Parse ``key value`` lines, skipping blanks and ``#`` comments.

    Keys and values are lowercased; the last occurrence of a key wins.
    """
    settings: Dict[str, str] = {}
    for line in output.splitlines():
        trimmed = line.strip()
        if not trimmed or trimmed.startswith("#"):
            continue
        fields = trimmed.split()
        if len(fields) < 2:
            continue
        settings[fields[0].lower()] = fields[1].lower()
    return settings


def clean_list(values: Optional[Iterable[str]]) -> List[str]:
    """Trimmed, non-empty, de-duplicated values in first-seen order."""
    out: List[str] = []
    seen = set()
    for value in values or []:
        value = value.strip()
        if not value or value in seen:
            continue
        seen.add(value)
        out.append(value)
    return out


def validate_identifier(kind: str, value: str) -> None:
    trimmed = value.strip()
    if not trimmed:
        raise ValueError(f"{kind} name cannot be empty")
    if trimmed != value:
        raise ValueError(f"{kind} name {value!r} has leading/trailing whitespace")
    match = _UNSAFE_CHAR.search(value)
    if match:
        raise ValueError(f"{kind} name {value!r} contains invalid character {match.group()!r}")


def sanitize_filename(value: str, fallback: str) -> str:
    if not value:
        return fallback
    return _UNSAFE_CHAR.sub("_", value)


def parse_duration(value: Any) -> timedelta:
    """
    Parse ``90``, ``"90"``, ``"10m"``, ``"1h30m"`` or ``"500ms"``.

    Bare numbers are seconds.
    """
    if isinstance(value, timedelta):
        return value
    if isinstance(value, bool):
        raise ValueError(f"invalid duration {value!r}")
    if isinstance(value, (int, float)):
        return timedelta(seconds=value)
    if not isinstance(value, str):
        raise ValueError(f"invalid duration {value!r}")

    text = value.strip()
    if re.fullmatch(r"\d+(?:\.\d+)?", text):
        return timedelta(seconds=float(text))

    parts = _DURATION_PART.findall(text)
    if not text or "".join(n + u for n, u in parts) != text:
        raise ValueError(f"invalid duration {value!r}")
    return timedelta(seconds=sum(float(n) * _DURATION_UNITS[u] for n, u in parts))


def whole_seconds(value: timedelta) -> int:
    if value <= timedelta(0):
        raise ValueError("duration must be positive")
    if value % timedelta(seconds=1):
        raise ValueError("duration must be in whole seconds")
    return int(value.total_seconds())


# ------------------ scripts ------------------

class ScriptRenderer:
    """Renders the ``*.sh.j2`` scripts shipped next to a task module."""

    def __init__(self, scripts_dir: Path):
        self.env = Environment(
            loader=FileSystemLoader(str(scripts_dir)),
            undefined=StrictUndefined,
            autoescape=False,
            trim_blocks=True,
            lstrip_blocks=True,
            keep_trailing_newline=True,
        )
        self.env.filters["shell_escape"] = shlex.quote

    def render(self, template: str, /, **context: Any) -> str:
        try:
            tmpl = self.env.get_template(f"{template}.sh.j2")
        except TemplateNotFound as e:
            raise RuntimeError(f"missing script template: {template}") from e
        return tmpl.render(**context)
