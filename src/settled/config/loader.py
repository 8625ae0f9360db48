# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/settled/config/loader.py

import logging
import os
from pathlib import Path
from typing import Optional, Union

import yaml
from pydantic import ValidationError

from settled.config.models import SettledConfig
from settled.errors import ConfigError

log = logging.getLogger("settled")

CONFIG_ENV_VAR = "SETTLED_CONFIG"
DEFAULT_CONFIG_FILE_NAME = ".settled.yaml"


def find_config_file(path: Union[str, Path, None] = None) -> Optional[Path]:
    """
    Locate the configuration file using this priority:

    1. an explicit path (must exist)
    2. ``SETTLED_CONFIG`` env var (must exist when set)
    3. ``~/.settled.yaml``
    4. ``./.settled.yaml``

    Returns None when nothing is found.
    """
    if path:
        p = Path(path).expanduser()
        if not p.is_file():
            raise ConfigError(f"config file not found: {p}")
        return p

    env = os.environ.get(CONFIG_ENV_VAR)
    if env:
        p = Path(env).expanduser()
        if not p.is_file():
            raise ConfigError(f"{CONFIG_ENV_VAR}={env} does not exist")
        return p

    for candidate in (Path.home() / DEFAULT_CONFIG_FILE_NAME, Path(DEFAULT_CONFIG_FILE_NAME)):
        if candidate.is_file():
            return candidate

    return None


def _load_yaml(path: Path) -> dict:
    """Load a YAML file, expanding ${ENV_VAR} references."""
    raw = path.read_text()
    expanded = os.path.expandvars(raw)
    try:
        data = yaml.safe_load(expanded)
    except yaml.YAMLError as e:
        raise ConfigError(f"invalid YAML in {path}: {e}") from e
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigError(f"config file {path} must contain a mapping")
    return data


def load_config(path: Union[str, Path, None] = None) -> SettledConfig:
    """
    Load and validate the settled configuration.

    No file found means an empty configuration (no servers).
    """
    config_path = find_config_file(path)
    if config_path is None:
        log.debug("No config file found; using empty configuration")
        return SettledConfig()

    log.debug("Loading config from %s", config_path)
    data = _load_yaml(config_path)
    try:
        return SettledConfig.model_validate(data)
    except ValidationError as e:
        raise ConfigError(f"invalid config file {config_path}: {e}") from e
