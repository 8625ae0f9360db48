# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/settled/cli/app.py

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional

import typer

from settled.cli.helper import new_ssh_server, resolve_bootstrap_keys, run_for_servers
from settled.config.loader import load_config
from settled.config.models import ServerConfig, SettledConfig
from settled.context import RunContext
from settled.errors import ConfigError, SettledError
from settled.logging.log import init_logging
from settled.server.models import Server
from settled.task.catalog import builtins
from settled.task.configurator import TaskConfigurator
from settled.task.decode import TaskSpec
from settled.task.planner import plan_tasks
from settled.task.runner import Runner
from settled.task.users import users

PING_TIMEOUT = 15.0

app = typer.Typer(help="Settled: bring servers to a declared configuration over SSH")


@dataclass
class AppState:
    config: SettledConfig
    logger: logging.Logger
    run_id: str
    log_path: Path


@app.callback()
def main(
    ctx: typer.Context,
    config: Optional[Path] = typer.Option(
        None,
        "--config",
        help="Config file (default: $SETTLED_CONFIG, ~/.settled.yaml, ./.settled.yaml)",
    ),
    debug: bool = typer.Option(False, "--debug", help="Log debug output to the console"),
):
    logger, run_id, log_path = init_logging(verbose=debug)
    try:
        cfg = load_config(config)
    except ConfigError as e:
        typer.secho(f"loading config: {e}", fg=typer.colors.RED, err=True)
        raise typer.Exit(1)

    ctx.obj = AppState(config=cfg, logger=logger, run_id=run_id, log_path=log_path)


def _converge(
    run_ctx: RunContext,
    logger: logging.Logger,
    runner: Runner,
    server: Server,
    overrides: Dict[str, Any],
    specs: List[TaskSpec],
    *,
    action: str = "configure",
    done: str = "Server configured successfully",
) -> bool:
    try:
        plan = plan_tasks(overrides, specs)
    except SettledError as e:
        logger.error("Failed to plan tasks server=%s error=%s", server.id, e)
        return False

    if plan.unknown:
        logger.warning("Ignoring unknown task keys server=%s keys=%s", server.id, plan.unknown)

    if not plan.tasks:
        logger.info("No tasks to apply for server name=%s", server.id)
        return True

    try:
        TaskConfigurator(runner, *plan.tasks).configure(run_ctx, server)
    except SettledError as e:
        logger.error("Failed to %s server name=%s error=%s", action, server.id, e)
        return False

    logger.info("%s name=%s", done, server.id)
    return True


def _finish(state: AppState, results: Dict[str, bool]) -> None:
    failed = sorted(name for name, ok in results.items() if not ok)
    if failed:
        typer.secho(
            f"Failed servers: {', '.join(failed)} (run {state.run_id}, log: {state.log_path})",
            fg=typer.colors.RED,
            err=True,
        )
        raise typer.Exit(1)


@app.command()
def configure(
    ctx: typer.Context,
    workers: int = typer.Option(1, "--workers", min=1, help="Servers to configure concurrently"),
):
    """Apply hardening and configuration steps to the configured servers."""
    state: AppState = ctx.obj
    logger = state.logger
    logger.info("Starting configuration process")

    servers = state.config.servers
    if not servers:
        logger.warning("No servers provided for configuration")
        return

    logger.info("Configuring servers count=%d", len(servers))
    runner = Runner(logger)
    run_ctx = RunContext.background()

    def configure_one(server_cfg: ServerConfig) -> bool:
        logger.info("Configuring server name=%s address=%s", server_cfg.name, server_cfg.address)
        server = new_ssh_server(server_cfg)
        return _converge(run_ctx, logger, runner, server, server_cfg.tasks, builtins())

    results = run_for_servers(servers, configure_one, workers, run_ctx)
    _finish(state, results)


@app.command()
def bootstrap(
    ctx: typer.Context,
    user: str = typer.Option(..., "--user", help="Username for the new sudo user"),
    login_user: str = typer.Option("root", "--login-user", help="SSH user to run bootstrap as"),
    group: str = typer.Option("sudo", "--group", help="Additional group for the new user"),
    sudo_nopasswd: bool = typer.Option(False, "--sudo-nopasswd", help="Allow passwordless sudo"),
    authorized_key: Optional[List[str]] = typer.Option(
        None,
        "--authorized-key",
        help="Public key for the new user (repeatable; defaults to the login user's keys)",
    ),
):
    """Create the initial sudo user using the login user."""
    state: AppState = ctx.obj
    logger = state.logger
    logger.info("Starting bootstrap process")

    servers = state.config.servers
    if not servers:
        logger.warning("No servers provided for bootstrap")
        return

    new_user = user.strip()
    if not new_user:
        typer.secho("Bootstrap user is required", fg=typer.colors.RED, err=True)
        raise typer.Exit(1)
    login_user = login_user.strip() or "root"
    group = group.strip()

    runner = Runner(logger)
    run_ctx = RunContext.background()
    results: Dict[str, bool] = {}

    for server_cfg in servers:
        logger.info("Bootstrapping server name=%s address=%s", server_cfg.name, server_cfg.address)
        server = new_ssh_server(server_cfg, login_user)

        try:
            keys = resolve_bootstrap_keys(run_ctx, server, authorized_key, login_user)
        except Exception as e:
            logger.error("Failed to resolve authorized keys server=%s error=%s", server_cfg.name, e)
            results[server_cfg.name] = False
            continue

        user_cfg: Dict[str, Any] = {"sudo": True}
        if sudo_nopasswd:
            user_cfg["sudo_nopasswd"] = True
        if group:
            user_cfg["groups"] = [group]
        if keys:
            user_cfg["authorized_keys"] = keys

        overrides = {users.TASK_KEY: {new_user: user_cfg}}
        results[server_cfg.name] = _converge(
            run_ctx,
            logger,
            runner,
            server,
            overrides,
            [users.spec()],
            action="bootstrap",
            done="Server bootstrapped successfully",
        )

    _finish(state, results)


@app.command()
def ping(ctx: typer.Context):
    """Connect to every server and run a trivial command."""
    state: AppState = ctx.obj
    logger = state.logger
    logger.info("Starting connection verification")

    servers = state.config.servers
    if not servers:
        logger.warning("No servers configured")
        return

    results: Dict[str, bool] = {}
    for server_cfg in servers:
        server = new_ssh_server(server_cfg)
        logger.info("Checking server name=%s address=%s", server.id, server.address)

        with RunContext.background().with_timeout(PING_TIMEOUT) as run_ctx:
            try:
                output = server.execute(run_ctx, "echo 'pong'")
            except SettledError as e:
                logger.error("Verification failed server=%s error=%s", server.id, e)
                results[server.id] = False
                continue

        if output.strip() == "pong":
            logger.info("Verification successful server=%s", server.id)
        else:
            logger.warning(
                "Verification partially successful (unexpected output) server=%s output=%s",
                server.id,
                output.strip(),
            )
        results[server.id] = True

    _finish(state, results)
