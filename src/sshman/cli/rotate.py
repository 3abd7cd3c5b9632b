"""Rotation command: rotate."""

from __future__ import annotations

from typing import Optional

import click
from rich.markup import escape
from rich.panel import Panel

from ._common import console, get_settings, header, home_option, path_option, report_error
from ..errors import SshmanError
from ..models import KeyType, RotationOptions, RotationPlan, RotationResult
from ..rotation import RotationOrchestrator


def _print_plan(plan: RotationPlan) -> None:
    console.print(f"[dim]Key type:[/] {plan.current_type.value} → [cyan]{plan.new_type.value}[/]")
    console.print(f"[dim]Comment:[/] {escape(plan.comment)}")
    if plan.affected_hosts:
        console.print("[bold]Hosts using this key in SSH config:[/]")
        for host in plan.affected_hosts:
            console.print(f"  [cyan]-[/] {escape(host)}")
    if plan.affected_profiles:
        console.print("[bold]Connection profiles using this key:[/]")
        for alias in plan.affected_profiles:
            console.print(f"  [cyan]-[/] {escape(alias)}")


def _print_dry_run(plan: RotationPlan) -> None:
    console.print("[yellow][DRY RUN] Would perform the following:[/]")
    n = 1
    if plan.backup_path:
        console.print(f"  {n}. Back up SSH config to {escape(str(plan.backup_path))}")
        n += 1
    console.print(f"  {n}. Generate new {plan.new_type.value} key at {escape(str(plan.key_path))}")
    console.print(f"  {n + 1}. Archive old key to {escape(str(plan.archive_path))}")
    console.print(f"  {n + 2}. Update {len(plan.config_changes)} IdentityFile line(s) in SSH config")
    for change in plan.config_changes:
        console.print(f"       [dim]{escape(change.host)}:[/] {escape(change.new_line.strip())}")
    console.print(f"  {n + 3}. Update {len(plan.affected_profiles)} connection profile(s)")
    if plan.upload_targets:
        console.print(f"  {n + 4}. Upload new public key to {escape(', '.join(plan.upload_targets))}")


def _print_result(result: RotationResult) -> None:
    for warning in result.warnings:
        console.print(f"[yellow]⚠ {escape(warning)}[/]")
    if result.dry_run and result.succeeded:
        return
    if result.succeeded:
        console.print(f"[green]✓ Key rotation completed:[/] {escape(result.key)}")
    else:
        console.print(f"[dim]Steps completed: {', '.join(result.steps_completed) or 'none'}[/]")


def register_rotate_commands(main: click.Group) -> None:
    """Register the rotate command."""

    @main.command("rotate")
    @click.argument("keys", nargs=-1, required=True)
    @click.option("-t", "--type", "key_type", default=None,
                  type=click.Choice([t.value for t in KeyType if t != KeyType.OTHER]),
                  help="New key type. Default: keep the current type.")
    @click.option("-c", "--comment", default=None, help="Comment for the new key. Default: keep the current one.")
    @click.option("--dry-run", is_flag=True, help="Show the plan without changing anything.")
    @click.option("-f", "--force", is_flag=True, help="Skip confirmation prompts.")
    @click.option("--no-backup", is_flag=True, help="Do not back up the SSH config first.")
    @click.option("--no-test", is_flag=True, help="Skip connection tests.")
    @click.option("-u", "--upload", default=None,
                  help="Upload the new public key: user@host[,user@host...].")
    @path_option
    @home_option
    def rotate(
        keys: tuple[str, ...],
        key_type: Optional[str],
        comment: Optional[str],
        dry_run: bool,
        force: bool,
        no_backup: bool,
        no_test: bool,
        upload: Optional[str],
        ssh_path: Optional[str],
        home: str,
    ):
        """Rotate key(s): generate a replacement, archive the old pair,
        and repoint SSH config hosts and connection profiles.

        Examples:

            sshman rotate id_rsa

            sshman rotate id_old --type ed25519 --comment "work key"

            sshman rotate key1 key2 --dry-run

            sshman rotate id_rsa --upload deploy@example.com
        """
        settings = get_settings(home, ssh_path)
        options = RotationOptions(
            key_type=KeyType(key_type) if key_type else None,
            comment=comment,
            dry_run=dry_run,
            force=force,
            backup=not no_backup,
            test=not no_test,
            upload_targets=[t.strip() for t in (upload or "").split(",") if t.strip()],
        )

        def confirm(plan: RotationPlan) -> bool:
            _print_plan(plan)
            if plan.archive_exists:
                console.print(
                    f"[yellow]⚠ An archived copy already exists at "
                    f"{escape(str(plan.archive_path))}; it will be replaced.[/]"
                )
            return click.confirm(
                f"Rotate key '{plan.name}' (affects {len(plan.affected_hosts)} host(s) "
                f"and {len(plan.affected_profiles)} profile(s))?",
                default=False,
            )

        orchestrator = RotationOrchestrator.from_settings(settings, confirm=confirm)

        if dry_run:
            console.print("[yellow]=== DRY RUN MODE - No changes will be made ===[/]\n")

        def on_start(name: str) -> None:
            header(f"Rotating key: {name}")

        def on_result(result: RotationResult) -> None:
            if result.failure_reason:
                console.print(f"[red]✗ {escape(result.failure_reason)}[/]")
            if result.plan is not None and (dry_run or force):
                _print_plan(result.plan)
            if dry_run and result.plan is not None:
                _print_dry_run(result.plan)
            _print_result(result)
            console.print()

        try:
            summary = orchestrator.rotate_batch(
                keys, options, on_start=on_start, on_result=on_result
            )
        except SshmanError as exc:
            report_error(exc)
            raise SystemExit(1)

        style = "green" if not summary.failed else "red"
        console.print(Panel(
            f"Total keys: {len(summary.results)}\n"
            f"[green]Succeeded:[/] {summary.succeeded}\n"
            f"[yellow]Partial (warnings):[/] {summary.partial}\n"
            f"[red]Failed:[/] {summary.failed}",
            title="Rotation Summary",
            border_style=style,
        ))
        if not dry_run and summary.results:
            console.print(f"[dim]Rotation log: {escape(str(settings.rotation_log_path))}[/]")

        if summary.exit_code:
            raise SystemExit(summary.exit_code)
