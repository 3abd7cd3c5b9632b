"""Archive commands: archive, unarchive."""

from __future__ import annotations

from typing import Optional

import click
from rich.markup import escape

from ._common import console, get_settings, header, home_option, path_option, report_error
from ..archive import ArchiveEngine
from ..errors import ConflictError, SshmanError
from ..models import ArchiveResult


def _print_result(result: ArchiveResult, engine: ArchiveEngine) -> None:
    for move in result.moved:
        console.print(
            f"  [green]✓[/] {escape(_rel(move.source, engine))} [dim]→[/] "
            f"[cyan]{escape(_rel(move.destination, engine))}[/]"
        )
    for directory in result.removed_dirs:
        console.print(f"  [dim]Removed empty directory: {escape(_rel(directory, engine))}[/]")


def _rel(path, engine: ArchiveEngine) -> str:
    try:
        return path.relative_to(engine.ssh_dir).as_posix()
    except ValueError:
        return str(path)


def register_archive_commands(main: click.Group) -> None:
    """Register archive and unarchive."""

    @main.command("archive")
    @click.argument("keys", nargs=-1, required=True)
    @click.option("-f", "--force", is_flag=True, help="Skip confirmation when the key is in use.")
    @path_option
    @home_option
    def archive(keys: tuple[str, ...], force: bool, ssh_path: Optional[str], home: str):
        """Move key pair(s) into the archive directory.

        Examples:

            sshman archive id_rsa

            sshman archive work/id_work_ed25519 --force
        """
        settings = get_settings(home, ssh_path)
        engine = ArchiveEngine.from_settings(settings)
        failures = 0

        for name in keys:
            header(f"Archiving SSH key: {name}")
            try:
                plan = engine.plan_archive(name)
                if plan.overwrites and not force:
                    raise ConflictError(
                        f"Archived copy already exists: {_rel(plan.destination, engine)} "
                        "(use --force to replace it)"
                    )
                if plan.affected_hosts and not force:
                    console.print("[yellow]⚠ This key is used in SSH config for:[/]")
                    for host in plan.affected_hosts:
                        console.print(f"  [dim]-[/] [cyan]{escape(host)}[/]")
                    if not click.confirm("Archive this key anyway?", default=False):
                        console.print("[dim]Archive cancelled.[/]")
                        failures += 1
                        continue
                result = engine.archive(name, force=True)
            except SshmanError as exc:
                report_error(exc)
                failures += 1
                continue

            _print_result(result, engine)
            console.print(f"[green]✓ Key archived:[/] {escape(result.name)}")
            if result.affected_hosts:
                console.print(
                    "[yellow]⚠ Still referenced in SSH config by:[/] "
                    + escape(", ".join(result.affected_hosts))
                )
            console.print(f"[dim]To restore: sshman unarchive {escape(result.name)}[/]")

        if failures:
            raise SystemExit(1)

    @main.command("unarchive")
    @click.argument("keys", nargs=-1, required=True)
    @click.option("-f", "--force", is_flag=True, help="Overwrite an existing active key.")
    @path_option
    @home_option
    def unarchive(keys: tuple[str, ...], force: bool, ssh_path: Optional[str], home: str):
        """Restore archived key pair(s) to their original location.

        Examples:

            sshman unarchive id_rsa

            sshman unarchive personal/id_ed25519 --force
        """
        settings = get_settings(home, ssh_path)
        engine = ArchiveEngine.from_settings(settings)
        failures = 0

        for name in keys:
            header(f"Restoring SSH key: {name}")
            try:
                result = engine.unarchive(name, force=force)
            except SshmanError as exc:
                report_error(exc)
                if isinstance(exc, ConflictError):
                    console.print("[dim]Use --force to overwrite the existing key.[/]")
                failures += 1
                continue

            _print_result(result, engine)
            if result.overwrote:
                console.print("[yellow]⚠ Overwrote the existing key.[/]")
            console.print(f"[green]✓ Key restored:[/] {escape(result.name)}")

        if failures:
            raise SystemExit(1)
