# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/settled/config/models.py

from __future__ import annotations

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, field_validator

from settled.server.models import SSHOptions, User
from settled.task.taskutil import parse_duration


class UserConfig(BaseModel):
    name: str = ""
    ssh_key: str = ""
    sudo_password: str = ""


class ServerConfig(BaseModel):
    name: str
    address: str
    user: UserConfig = Field(default_factory=UserConfig)
    known_hosts: str = ""
    use_agent: Optional[bool] = None
    # seconds
    handshake_timeout: Optional[float] = None
    tasks: Dict[str, Any] = Field(default_factory=dict)

    @field_validator("user", mode="before")
    @classmethod
    def _user_from_name(cls, v):
        if v is None:
            return {}
        if isinstance(v, str):
            return {"name": v}
        return v

    @field_validator("handshake_timeout", mode="before")
    @classmethod
    def _timeout_seconds(cls, v):
        if v is None or v == "":
            return None
        return parse_duration(v).total_seconds()

    @field_validator("tasks", mode="before")
    @classmethod
    def _none_is_empty(cls, v):
        return {} if v is None else v

    def to_user(self, login_user: str = "") -> User:
        return User(
            name=login_user or self.user.name,
            ssh_key=self.user.ssh_key,
            sudo_password=self.user.sudo_password,
        )

    def ssh_options(self) -> SSHOptions:
        return SSHOptions(use_agent=self.use_agent, handshake_timeout=self.handshake_timeout)


class SettledConfig(BaseModel):
    servers: List[ServerConfig] = Field(default_factory=list)

    @field_validator("servers", mode="before")
    @classmethod
    def _none_is_empty(cls, v):
        return [] if v is None else v
