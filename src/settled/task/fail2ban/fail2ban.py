# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/settled/task/fail2ban/fail2ban.py

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import timedelta
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from pydantic import field_validator

from settled.context import RunContext
from settled.server.models import Server
from settled.task import taskutil
from settled.task.base import Task
from settled.task.decode import TaskConfig, TaskSpec, spec_for

TASK_KEY = "fail2ban"
DEFAULT_JAIL_CONFIG = "/etc/fail2ban/jail.d/settled.conf"
CONTINUATION_INDENT = " " * 10
HEADER = "# Managed by settled. Manual changes may be overwritten."

SERVICE_NAME = "fail2ban"
CLIENT_CMD = "fail2ban-client"
RESULT_YES = "yes"
RESULT_NO = "no"

# jail keys rendered from dedicated rule fields; ``options`` may not override them
RESERVED_OPTION_KEYS = frozenset(
    {
        "enabled",
        "filter",
        "port",
        "protocol",
        "logpath",
        "backend",
        "maxretry",
        "findtime",
        "bantime",
        "action",
        "ignoreip",
    }
)

_scripts = taskutil.ScriptRenderer(Path(__file__).parent / "scripts")


class Rule(TaskConfig):
    enabled: Optional[bool] = None
    filter: str = ""
    port: str = ""
    protocol: str = ""
    logpath: List[str] = []
    backend: str = ""
    max_retry: Optional[int] = None
    find_time: Optional[timedelta] = None
    ban_time: Optional[timedelta] = None
    action: List[str] = []
    ignore_ip: List[str] = []
    options: Dict[str, Any] = {}

    @field_validator("filter", "port", "protocol", "backend", mode="before")
    @classmethod
    def _scalar_to_str(cls, v):
        if v is None:
            return ""
        if isinstance(v, (int, float)) and not isinstance(v, bool):
            return str(v)
        return v

    @field_validator("logpath", "action", "ignore_ip", mode="before")
    @classmethod
    def _string_or_list(cls, v):
        if v is None:
            return []
        if isinstance(v, str):
            v = v.strip()
            return [v] if v else []
        return v

    @field_validator("find_time", "ban_time", mode="before")
    @classmethod
    def _duration(cls, v):
        if v is None:
            return None
        return taskutil.parse_duration(v)

    @field_validator("options", mode="before")
    @classmethod
    def _none_is_empty(cls, v):
        return {} if v is None else v


class Fail2banConfig(TaskConfig):
    rules: Dict[str, Rule] = {}

    @field_validator("rules", mode="before")
    @classmethod
    def _none_is_empty(cls, v):
        return {} if v is None else v


def spec() -> TaskSpec:
    return spec_for(TASK_KEY, "fail2ban.yaml", Fail2banConfig, build_tasks)


def build_tasks(cfg: Fail2banConfig) -> List[Task]:
    rules = normalize_rules(cfg.rules)
    if not rules:
        return []
    return [Fail2banTask(DEFAULT_JAIL_CONFIG, render_jail_config(rules))]


# ------------------ rules ------------------

@dataclass
class JailRule:
    name: str
    enabled: bool = True
    filter: str = ""
    port: str = ""
    protocol: str = ""
    logpath: List[str] = field(default_factory=list)
    backend: str = ""
    max_retry: Optional[int] = None
    find_time: Optional[timedelta] = None
    ban_time: Optional[timedelta] = None
    action: List[str] = field(default_factory=list)
    ignore_ip: List[str] = field(default_factory=list)
    options: List[Tuple[str, str]] = field(default_factory=list)


class RuleError(ValueError):
    def __init__(self, rule: str, message: str):
        super().__init__(f"fail2ban rule {rule!r} {message}")
        self.rule = rule


def normalize_rules(raw: Dict[str, Rule]) -> List[JailRule]:
    return [normalize_rule(name, raw[name]) for name in sorted(raw)]


def normalize_rule(name: str, rule: Rule) -> JailRule:
    taskutil.validate_identifier("fail2ban rule", name)

    normalized = JailRule(
        name=name,
        enabled=True if rule.enabled is None else rule.enabled,
        filter=rule.filter.strip() or name,
        port=rule.port.strip(),
        protocol=rule.protocol.strip(),
        logpath=taskutil.clean_list(rule.logpath),
        backend=rule.backend.strip(),
        max_retry=rule.max_retry,
        find_time=rule.find_time,
        ban_time=rule.ban_time,
        action=taskutil.clean_list(rule.action),
        ignore_ip=taskutil.clean_list(rule.ignore_ip),
    )
    _validate_rule_values(normalized)
    normalized.options = normalize_options(name, rule.options)
    return normalized


def _validate_rule_values(rule: JailRule) -> None:
    if rule.max_retry is not None and rule.max_retry <= 0:
        raise RuleError(rule.name, "max_retry must be positive")
    for field_name, value in (("find_time", rule.find_time), ("ban_time", rule.ban_time)):
        if value is not None and value <= timedelta(0):
            raise RuleError(rule.name, f"{field_name} must be positive")

    single = {
        "filter": [rule.filter],
        "port": [rule.port],
        "protocol": [rule.protocol],
        "backend": [rule.backend],
        "logpath": rule.logpath,
        "action": rule.action,
        "ignore_ip": rule.ignore_ip,
    }
    for field_name, values in single.items():
        for value in values:
            if "\r" in value or "\n" in value:
                raise RuleError(rule.name, f"{field_name} cannot contain newlines")


def normalize_options(rule_name: str, options: Dict[str, Any]) -> List[Tuple[str, str]]:
    normalized: List[Tuple[str, str]] = []
    for key, value in options.items():
        key = str(key).strip()
        if not key:
            raise RuleError(rule_name, "option key cannot be empty")
        taskutil.validate_identifier("fail2ban option", key)
        if key.lower() in RESERVED_OPTION_KEYS:
            raise RuleError(rule_name, f"option {key!r} conflicts with built-in settings")
        try:
            text = format_option_value(value)
        except ValueError as exc:
            raise RuleError(rule_name, f"option {key!r}: {exc}") from exc
        if "\r" in text or "\n" in text:
            raise RuleError(rule_name, f"option {key!r} cannot contain newlines")
        normalized.append((key, text))
    return sorted(normalized)


def format_option_value(value: Any) -> str:
    if isinstance(value, str):
        trimmed = value.strip()
        if not trimmed:
            raise ValueError("option value cannot be empty")
        return trimmed
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, int):
        return str(value)
    if isinstance(value, float):
        return str(int(value)) if value.is_integer() else repr(value)
    if isinstance(value, timedelta):
        return str(taskutil.whole_seconds(value))
    raise ValueError(f"unsupported option value type {type(value).__name__}")


# ------------------ rendering ------------------

class _JailWriter:
    def __init__(self, rule_name: str):
        self.rule_name = rule_name
        self.lines: List[str] = []

    def key_value(self, key: str, value: str) -> None:
        self.lines.append(f"{key} = {value}")

    def string(self, key: str, value: str) -> None:
        if value:
            self.key_value(key, value)

    def multiline(self, key: str, values: List[str]) -> None:
        if not values:
            return
        self.key_value(key, values[0])
        self.lines.extend(f"{CONTINUATION_INDENT}{value}" for value in values[1:])

    def integer(self, key: str, value: Optional[int]) -> None:
        if value is not None:
            self.key_value(key, str(value))

    def duration(self, key: str, field_name: str, value: Optional[timedelta]) -> None:
        if value is None:
            return
        try:
            seconds = taskutil.whole_seconds(value)
        except ValueError as exc:
            raise RuleError(self.rule_name, f"{field_name}: {exc}") from exc
        self.key_value(key, str(seconds))

    def joined(self, key: str, values: List[str]) -> None:
        if values:
            self.key_value(key, " ".join(values))


def render_jail_config(rules: List[JailRule]) -> str:
    """
    Render rules as a jail.d drop-in, one section per rule in name order.
    """
    sections: List[str] = []
    for rule in rules:
        w = _JailWriter(rule.name)
        w.lines.append(f"[{rule.name}]")
        w.key_value("enabled", "true" if rule.enabled else "false")
        w.string("filter", rule.filter)
        w.string("port", rule.port)
        w.string("protocol", rule.protocol)
        w.multiline("logpath", rule.logpath)
        w.string("backend", rule.backend)
        w.integer("maxretry", rule.max_retry)
        w.duration("findtime", "find_time", rule.find_time)
        w.duration("bantime", "ban_time", rule.ban_time)
        w.multiline("action", rule.action)
        w.joined("ignoreip", rule.ignore_ip)
        for key, value in rule.options:
            w.key_value(key, value)
        sections.append("\n".join(w.lines) + "\n")

    return HEADER + "\n" + "\n".join(sections)


def config_matches(existing: str, desired: str) -> bool:
    return existing.strip() == desired.strip()


# ------------------ task ------------------

def _script_context() -> Dict[str, str]:
    return {
        "service_name": SERVICE_NAME,
        "client_cmd": CLIENT_CMD,
        "result_yes": RESULT_YES,
        "result_no": RESULT_NO,
    }


class Fail2banTask(Task):
    """
    Installs fail2ban if needed, writes the managed jail file and keeps
    the service running.
    """

    def __init__(self, config_path: str, config_content: str):
        self.config_path = config_path
        self.config_content = config_content

    @property
    def name(self) -> str:
        return "configure fail2ban"

    def needs_execution(self, ctx: RunContext, server: Server) -> bool:
        if not fail2ban_installed(ctx, server):
            return True

        prefix = taskutil.sudo_prefix(ctx, server)
        output, missing = taskutil.read_file_if_exists(ctx, server, prefix, self.config_path)
        if missing or not config_matches(output, self.config_content):
            return True

        return not fail2ban_service_ready(ctx, server, prefix)

    def execute(self, ctx: RunContext, server: Server) -> None:
        prefix = taskutil.sudo_prefix(ctx, server)
        taskutil.run_script(ctx, server, prefix, self.render_script())

    def render_script(self) -> str:
        return _scripts.render(
            "main",
            config_path=self.config_path,
            config_content=self.config_content,
            **_script_context(),
        )


def fail2ban_installed(ctx: RunContext, server: Server) -> bool:
    script = (
        f"if command -v {CLIENT_CMD} >/dev/null 2>&1; "
        f"then echo {RESULT_YES}; else echo {RESULT_NO}; fi"
    )
    try:
        output = taskutil.run_script(ctx, server, "", script)
    except Exception as exc:
        raise RuntimeError(f"check fail2ban install: {exc}") from exc
    return output.strip() == RESULT_YES


def fail2ban_service_ready(ctx: RunContext, server: Server, prefix: str) -> bool:
    script = _scripts.render("service_ready", **_script_context())
    try:
        output = taskutil.run_script(ctx, server, prefix, script)
    except Exception as exc:
        raise RuntimeError(f"check fail2ban service: {exc}") from exc
    return output.strip() == RESULT_YES
