# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/settled/errors.py


class SettledError(RuntimeError):
    """Base class for every failure raised by settled."""


class ConfigError(SettledError):
    """Raised when the configuration file cannot be found, read or validated."""
