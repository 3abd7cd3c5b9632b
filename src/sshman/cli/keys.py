"""Key inventory commands: list, info."""

from __future__ import annotations

import json
from typing import Optional

import click
from rich.markup import escape
from rich.table import Table

from ._common import console, get_settings, header, home_option, path_option, report_error
from ..archive import ArchiveEngine
from ..errors import SshmanError
from ..inventory import PUBLIC_KEY_SUFFIX, resolve_key
from ..keyinfo import KeyDetails, describe_key

SEPARATOR_LINE = "─" * 65


def _print_details(details: KeyDetails, show_public: bool, show_md5: bool) -> None:
    key = details.key
    header("SSH Key Information")
    console.print()
    console.print(f"  [dim]Name:[/]         [bold]{escape(key.name)}[/]")

    meta = details.metadata
    if meta is not None:
        console.print(f"  [dim]Use:[/]          [cyan]{meta.use.value.capitalize()}[/]")
        if meta.project:
            console.print(f"  [dim]Project:[/]      [cyan]{escape(meta.project)}[/]")
        if meta.description:
            console.print(f"  [dim]Description:[/]  {escape(meta.description)}")
        if meta.created_at:
            console.print(f"  [dim]Created:[/]      {meta.created_at:%Y-%m-%d %H:%M}")
        if meta.created_by:
            console.print(f"  [dim]Created by:[/]   {escape(meta.created_by)}")
        console.print()

    console.print(f"  [dim]Private key:[/]  {escape(str(key.private_path))}")
    console.print(f"  [dim]Format:[/]       [cyan]{escape(details.private_format)}[/]")
    perms = details.permissions
    if details.permissions_ok:
        console.print(f"  [dim]Permissions:[/]  {perms} [green]✓[/]")
    else:
        console.print(f"  [dim]Permissions:[/]  {perms} [yellow]⚠ (should be rw-------)[/]")
    size = f"{details.size} bytes" if details.size < 1024 else f"{details.size / 1024:.1f} KB"
    console.print(f"  [dim]Size:[/]         {size}")
    if details.modified:
        console.print(f"  [dim]Modified:[/]     {details.modified:%Y-%m-%d %H:%M}")
    console.print(
        "  [dim]Encrypted:[/]    "
        + ("[green]yes (passphrase protected)[/]" if details.encrypted else "[yellow]no[/]")
    )

    pub = details.public_key
    console.print()
    if pub is None:
        console.print("  [dim]Public key:[/]   [dim](not found)[/]")
    else:
        console.print(f"  [dim]Public key:[/]   {escape(str(key.public_path))}")
        console.print(f"  [dim]Algorithm:[/]    [green]{escape(pub.algorithm_name)}[/]")
        if pub.comment:
            console.print(f"  [dim]Comment:[/]      {escape(pub.comment)}")
        if pub.bits:
            console.print(f"  [dim]Key bits:[/]     {pub.bits}")
        console.print()
        console.print("[bold]Fingerprints:[/]")
        console.print(f"  [dim]SHA256:[/] {pub.sha256_fingerprint[len('SHA256:'):]}")
        if show_md5:
            console.print(f"  [dim]MD5:[/]    {pub.md5_fingerprint[len('MD5:'):]}")
        if show_public:
            console.print()
            console.print("[bold]Public Key Content:[/]")
            console.print(f"[dim]{SEPARATOR_LINE}[/]")
            click.echo(pub.text)
            console.print(f"[dim]{SEPARATOR_LINE}[/]")
    console.print()


def register_key_commands(main: click.Group) -> None:
    """Register the key listing and info commands."""

    @main.command("list")
    @click.option("--archived", is_flag=True, help="List archived keys instead of active ones.")
    @click.option("--json-out", is_flag=True, help="Output as JSON.")
    @path_option
    @home_option
    def list_keys(archived: bool, json_out: bool, ssh_path: Optional[str], home: str):
        """List SSH keys and flag unsafe permissions.

        Examples:

            sshman list

            sshman list --archived --path ~/keys
        """
        settings = get_settings(home, ssh_path)
        engine = ArchiveEngine.from_settings(settings)

        if not settings.ssh_root.is_dir():
            console.print(f"[red]SSH directory not found:[/] {escape(str(settings.ssh_root))}")
            raise SystemExit(1)

        keys = engine.archived_keys() if archived else engine.active_keys()

        if json_out:
            click.echo(json.dumps([k.model_dump(mode="json") for k in keys], indent=2))
            return

        where = "archived" if archived else "active"
        console.print()
        if not keys:
            console.print(f"  [dim]No {where} keys in {escape(str(settings.ssh_root))}.[/]")
            console.print()
            return

        table = Table(show_header=True, header_style="bold", box=None, padding=(0, 2),
                      title=f"{where.capitalize()} keys ({len(keys)})")
        table.add_column("Name", style="cyan")
        table.add_column("Type")
        table.add_column("Public")
        table.add_column("Mode")
        table.add_column("Comment", style="dim")

        for k in keys:
            mode = f"{k.permission_bits:o}"
            mode = mode if k.permissions_ok else f"[yellow]{mode} (expected 600)[/]"
            table.add_row(
                escape(k.name),
                k.key_type.value,
                "[green]yes[/]" if k.has_public_key else "[yellow]no[/]",
                mode,
                escape(k.comment),
            )

        console.print(table)
        console.print()

    @main.command("info")
    @click.argument("key")
    @click.option("-p", "--public", "show_public", is_flag=True, help="Show public key content.")
    @click.option("-f", "--fingerprint", "show_md5", is_flag=True,
                  help="Also show the legacy MD5 fingerprint.")
    @path_option
    @home_option
    def info(key: str, show_public: bool, show_md5: bool, ssh_path: Optional[str], home: str):
        """Show detailed information about one key, active or archived.

        Examples:

            sshman info id_ed25519

            sshman info work/prod --public --fingerprint
        """
        settings = get_settings(home, ssh_path)
        name = key[: -len(PUBLIC_KEY_SUFFIX)] if key.endswith(PUBLIC_KEY_SUFFIX) else key
        try:
            pair = resolve_key(settings.ssh_root, name, exclude=[settings.config_backup_dir])
            details = describe_key(pair)
        except SshmanError as exc:
            report_error(exc)
            raise SystemExit(1)
        except OSError as exc:
            console.print(f"[red]✗ Cannot read key {escape(name)}: {escape(str(exc))}[/]")
            raise SystemExit(1)
        _print_details(details, show_public, show_md5)
