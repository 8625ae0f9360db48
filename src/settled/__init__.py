# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

"""Settled: converge remote hosts to a declared configuration over SSH."""

__version__ = "0.1.0"
