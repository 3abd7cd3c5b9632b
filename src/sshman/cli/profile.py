"""Connection profile commands: profile add, list, show, remove."""

from __future__ import annotations

import json
from typing import Optional

import click
from rich.markup import escape
from rich.table import Table

from ._common import console, get_settings, home_option, path_option, report_error
from ..archive import ArchiveEngine
from ..errors import SshmanError
from ..models import ConnectionProfile
from ..profiles import ProfileStore


def _store(home: str, ssh_path: Optional[str]):
    settings = get_settings(home, ssh_path)
    return settings, ProfileStore(settings.profiles_path, ssh_dir=settings.ssh_root)


def register_profile_commands(main: click.Group) -> None:
    """Register the profile command group."""

    @main.group("profile")
    def profile():
        """Saved SSH connection profiles."""

    @profile.command("add")
    @click.argument("alias")
    @click.option("--host", required=True, help="Remote host name or address.")
    @click.option("--user", required=True, help="Remote user name.")
    @click.option("--port", default=22, show_default=True, type=int, help="SSH port.")
    @click.option("--identity-file", default=None, help="Private key path used for this connection.")
    @click.option("--key", "key_name", default=None, help="Managed key name (sets the identity file).")
    @path_option
    @home_option
    def add(
        alias: str,
        host: str,
        user: str,
        port: int,
        identity_file: Optional[str],
        key_name: Optional[str],
        ssh_path: Optional[str],
        home: str,
    ):
        """Save a new connection profile.

        Examples:

            sshman profile add prod --host prod.example.com --user deploy --key work/prod
        """
        settings, store = _store(home, ssh_path)
        try:
            if key_name:
                key = ArchiveEngine.from_settings(settings).resolve_active(key_name)
                key_name = key.name
                identity_file = identity_file or str(key.private_path)
            store.add(ConnectionProfile(
                alias=alias,
                host=host,
                user=user,
                port=port,
                identity_file=identity_file,
                key_name=key_name,
            ))
        except SshmanError as exc:
            report_error(exc)
            raise SystemExit(1)
        console.print(f"[green]✓ Profile saved:[/] {escape(alias)}")

    @profile.command("list")
    @click.option("--json-out", is_flag=True, help="Output as JSON.")
    @path_option
    @home_option
    def list_profiles(json_out: bool, ssh_path: Optional[str], home: str):
        """List saved connection profiles."""
        _, store = _store(home, ssh_path)
        try:
            profiles = store.list_profiles()
        except SshmanError as exc:
            report_error(exc)
            raise SystemExit(1)

        if json_out:
            click.echo(json.dumps([p.model_dump() for p in profiles], indent=2))
            return
        if not profiles:
            console.print("[dim]No connection profiles.[/]")
            return

        table = Table(title=f"Connection Profiles ({len(profiles)})")
        table.add_column("Alias", style="cyan")
        table.add_column("Target")
        table.add_column("Port", justify="right")
        table.add_column("Identity", style="dim")
        for p in profiles:
            table.add_row(
                escape(p.alias),
                escape(f"{p.user}@{p.host}"),
                str(p.port),
                escape(p.key_name or p.identity_file or "-"),
            )
        console.print(table)

    @profile.command("show")
    @click.argument("alias")
    @path_option
    @home_option
    def show(alias: str, ssh_path: Optional[str], home: str):
        """Show one profile and its ssh command."""
        _, store = _store(home, ssh_path)
        try:
            p = store.get(alias)
        except SshmanError as exc:
            report_error(exc)
            raise SystemExit(1)
        if p is None:
            console.print(f"[red]✗ No profile named '{escape(alias)}'[/]")
            raise SystemExit(1)

        console.print(f"[bold cyan]{escape(p.alias)}[/]")
        console.print(f"  Host:     {escape(p.host)}")
        console.print(f"  User:     {escape(p.user)}")
        console.print(f"  Port:     {p.port}")
        if p.identity_file:
            console.print(f"  Identity: {escape(p.identity_file)}")
        if p.key_name:
            console.print(f"  Key:      {escape(p.key_name)}")
        console.print(f"  [dim]{escape(p.to_ssh_command())}[/]")

    @profile.command("remove")
    @click.argument("alias")
    @path_option
    @home_option
    def remove(alias: str, ssh_path: Optional[str], home: str):
        """Delete a saved profile."""
        _, store = _store(home, ssh_path)
        try:
            removed = store.remove(alias)
        except SshmanError as exc:
            report_error(exc)
            raise SystemExit(1)
        if not removed:
            console.print(f"[red]✗ No profile named '{escape(alias)}'[/]")
            raise SystemExit(1)
        console.print(f"[green]✓ Profile removed:[/] {escape(alias)}")
