"""Shared utilities for all CLI command modules.

Provides the Rich console instance, settings loading for the common
``--home``/``--path`` options, and the error printer every command
uses to turn sshman exceptions into exit codes.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

import click
from rich.console import Console
from rich.markup import escape

from .. import SSHMAN_HOME
from ..errors import KeyResolutionError, SshmanError
from ..settings import Settings, load_settings

console = Console()

HEADER_LINE = "═" * 65


def home_option(func):
    return click.option(
        "--home", default=SSHMAN_HOME, type=click.Path(), help="sshman home directory."
    )(func)


def path_option(func):
    return click.option(
        "--path", "ssh_path", default=None, type=click.Path(), help="Custom SSH directory path."
    )(func)


def get_settings(home: str, ssh_path: Optional[str]) -> Settings:
    """Load settings for a command invocation.

    The configured ``log_level`` of this home applies unless ``-v`` was given.
    """
    settings = load_settings(
        home=Path(home).expanduser(),
        ssh_dir=Path(ssh_path).expanduser() if ssh_path else None,
    )
    ctx = click.get_current_context(silent=True)
    verbose = bool(ctx and ctx.find_root().obj and ctx.find_root().obj.get("verbose"))
    if not verbose:
        level = getattr(logging, settings.log_level.upper(), None)
        if isinstance(level, int):
            logging.getLogger("sshman").setLevel(level)
    return settings


def header(title: str) -> None:
    console.print(f"[bold]{HEADER_LINE}[/]")
    console.print(f"[bold]  {escape(title)}[/]")
    console.print(f"[bold]{HEADER_LINE}[/]")


def report_error(exc: SshmanError) -> None:
    """Print an sshman error, plus candidate keys for resolution failures.

    Fatal errors end the process with exit code 1.
    """
    console.print(f"[red]✗ {escape(str(exc))}[/]")
    if isinstance(exc, KeyResolutionError) and exc.candidates:
        console.print("[yellow]Candidates:[/]")
        for name in exc.candidates:
            console.print(f"  [dim]-[/] {escape(name)}")
    if exc.fatal:
        raise SystemExit(1)
