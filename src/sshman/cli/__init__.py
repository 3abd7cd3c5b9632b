"""
sshman CLI — SSH key lifecycle from the command line.

The main Click group is defined here and every command module
registers its commands on it via a register function.

Entry point: sshman.cli:main
"""

from __future__ import annotations

import logging

import click

from .. import __version__


@click.group()
@click.version_option(version=__version__, prog_name="sshman")
@click.option("-v", "--verbose", is_flag=True, help="Enable debug logging.")
@click.pass_context
def main(ctx: click.Context, verbose: bool):
    """sshman — rotate, archive and restore SSH keys.

    Keeps ~/.ssh/config and saved connection profiles pointing at the
    keys that actually exist.
    """
    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose
    level = logging.DEBUG if verbose else logging.WARNING
    logging.basicConfig(level=level, format="%(asctime)s [%(levelname)s] %(name)s: %(message)s")
    logging.getLogger("sshman").setLevel(level)


# ---------------------------------------------------------------------------
# Register all commands from modular files
# ---------------------------------------------------------------------------

from .keys import register_key_commands
from .archive import register_archive_commands
from .rotate import register_rotate_commands
from .profile import register_profile_commands

register_key_commands(main)
register_archive_commands(main)
register_rotate_commands(main)
register_profile_commands(main)
