"""
Archive engine — move key pairs between the active tree and the archive.

The archive mirrors the active tree: ``~/.ssh/work/prod`` is archived
to ``~/.ssh/archived/work/prod`` and restored back to the same place, so
the mapping is reversible from the path alone.

    Active ──archive──▶ Archived
    Archived ──unarchive──▶ Active

Each transition moves the private key plus any ``.pub`` and ``.meta``
companions, resets permissions (600 private, 644 public), and prunes
directories the move left empty. Planning is side-effect free and is
what the CLI uses to decide whether to ask for confirmation.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Optional

from ._fs import move_file, remove_empty_dirs
from .errors import (
    ConfirmationRequiredError,
    ConflictError,
    KeyMoveError,
    KeyResolutionError,
)
from .inventory import METADATA_SUFFIX, PUBLIC_KEY_SUFFIX, resolve_key, scan_keys
from .models import (
    PRIVATE_KEY_MODE,
    PUBLIC_KEY_MODE,
    ArchivePlan,
    ArchiveResult,
    FileMove,
    KeyPair,
)
from .settings import Settings
from .ssh_config import SshConfig

logger = logging.getLogger("sshman.archive")


class ArchiveEngine:
    """Archive and restore key pairs under one SSH directory.

    Args:
        ssh_dir: Root of the active key tree.
        archive_dir: Archive root. Defaults to ``<ssh_dir>/archived``.
        config_path: SSH client config consulted for references.
            Defaults to ``<ssh_dir>/config``.
        backup_dir: Config backup directory inside the archive, which is
            never treated as archived keys.
    """

    def __init__(
        self,
        ssh_dir: Path,
        archive_dir: Optional[Path] = None,
        config_path: Optional[Path] = None,
        backup_dir: Optional[Path] = None,
    ) -> None:
        self.ssh_dir = Path(os.path.normpath(Path(ssh_dir).expanduser()))
        self.archive_dir = Path(os.path.normpath(archive_dir)) if archive_dir else self.ssh_dir / "archived"
        self.config_path = Path(config_path) if config_path else self.ssh_dir / "config"
        self.backup_dir = Path(backup_dir) if backup_dir else self.archive_dir / "config_backups"

    @classmethod
    def from_settings(cls, settings: Settings) -> "ArchiveEngine":
        return cls(
            settings.ssh_root,
            archive_dir=settings.archive_root,
            config_path=settings.ssh_config_path,
            backup_dir=settings.config_backup_dir,
        )

    # ------------------------------------------------------------------
    # Lookup
    # ------------------------------------------------------------------

    def is_archived_path(self, path: Path) -> bool:
        archive = self.archive_dir.resolve()
        return archive in Path(path).resolve().parents

    def resolve_active(self, name: str) -> KeyPair:
        """Find an active key by name.

        Raises:
            KeyResolutionError: If the name points into the archive or
                matches zero or several active keys.
        """
        direct = self.ssh_dir / name
        if direct.exists() and self.is_archived_path(direct):
            raise KeyResolutionError(f"Key is already archived: {name}")
        return resolve_key(self.ssh_dir, name, exclude=[self.archive_dir])

    def resolve_archived(self, name: str) -> KeyPair:
        """Find an archived key by name.

        A leading ``<archive>/`` component is accepted and ignored.

        Raises:
            KeyResolutionError: If nothing has been archived yet, or the
                name matches zero or several archived keys.
        """
        if not self.archive_dir.is_dir():
            raise KeyResolutionError(
                f"Archive directory does not exist: {self.archive_dir}"
            )
        prefix = self.archive_dir.name + "/"
        if name.startswith(prefix) and not (self.archive_dir / name).exists():
            name = name[len(prefix):]
        return resolve_key(self.archive_dir, name, exclude=[self.backup_dir])

    def active_keys(self) -> list[KeyPair]:
        return list(scan_keys(self.ssh_dir, exclude=[self.archive_dir]))

    def archived_keys(self) -> list[KeyPair]:
        return list(scan_keys(self.archive_dir, exclude=[self.backup_dir]))

    def archive_path_for(self, key_path: Path) -> Path:
        """Mirror location of an active key inside the archive."""
        return self.archive_dir / Path(key_path).relative_to(self.ssh_dir)

    def active_path_for(self, archived_path: Path) -> Path:
        """Original location of an archived key."""
        return self.ssh_dir / Path(archived_path).relative_to(self.archive_dir)

    def referencing_hosts(self, key_path: Path) -> list[str]:
        """Aliases of SSH config blocks whose IdentityFile is ``key_path``.

        Raises:
            ConfigAccessError: If the config exists but cannot be read.
        """
        config = SshConfig.load(self.config_path, ssh_dir=self.ssh_dir)
        return [block.alias for block in config.find_hosts_referencing(key_path)]

    # ------------------------------------------------------------------
    # Planning
    # ------------------------------------------------------------------

    @staticmethod
    def _moves(key: KeyPair, destination: Path) -> list[FileMove]:
        moves = [FileMove(source=key.private_path, destination=destination)]
        for companion, suffix in (
            (key.public_path, PUBLIC_KEY_SUFFIX),
            (key.metadata_path, METADATA_SUFFIX),
        ):
            if companion is not None:
                moves.append(FileMove(
                    source=companion,
                    destination=destination.with_name(destination.name + suffix),
                ))
        return moves

    @staticmethod
    def _occupied(destination: Path) -> bool:
        """True if the key or any companion slot at ``destination`` is taken."""
        return any(
            destination.with_name(destination.name + suffix).exists()
            for suffix in ("", PUBLIC_KEY_SUFFIX, METADATA_SUFFIX)
        )

    def plan_archive(self, name: str) -> ArchivePlan:
        """Describe what archiving ``name`` would do, including affected hosts."""
        key = self.resolve_active(name)
        destination = self.archive_path_for(key.private_path)
        moves = self._moves(key, destination)
        return ArchivePlan(
            name=key.name,
            source=key.private_path,
            destination=destination,
            moves=moves,
            affected_hosts=self.referencing_hosts(key.private_path),
            overwrites=self._occupied(destination),
        )

    def plan_unarchive(self, name: str) -> ArchivePlan:
        """Describe what restoring ``name`` would do."""
        key = self.resolve_archived(name)
        destination = self.active_path_for(key.private_path)
        moves = self._moves(key, destination)
        return ArchivePlan(
            name=key.name,
            source=key.private_path,
            destination=destination,
            moves=moves,
            overwrites=self._occupied(destination),
        )

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def archive(self, name: str, force: bool = False) -> ArchiveResult:
        """Move an active key pair into the archive.

        Args:
            name: Key name or relative path.
            force: Proceed even if config hosts reference the key, and
                replace an existing archived copy.

        Raises:
            ConfirmationRequiredError: Hosts reference the key and ``force`` is False.
            ConflictError: An archived copy exists and ``force`` is False.
            KeyResolutionError: The name does not resolve to one key.
            KeyMoveError: A file could not be moved; moved files are put back.
        """
        plan = self.plan_archive(name)
        if plan.affected_hosts and not force:
            raise ConfirmationRequiredError(plan.name, plan.affected_hosts)
        if plan.overwrites and not force:
            raise ConflictError(f"Archived copy already exists: {plan.destination}")
        if plan.affected_hosts:
            logger.warning(
                "Archiving %s still referenced by %d host(s): %s",
                plan.name, len(plan.affected_hosts), ", ".join(plan.affected_hosts),
            )
        return self._execute(plan, source_root=self.ssh_dir)

    def unarchive(self, name: str, force: bool = False) -> ArchiveResult:
        """Restore an archived key pair to its original location.

        Raises:
            ConflictError: A file exists at the destination and ``force`` is False.
            KeyResolutionError: The name does not resolve to one archived key.
            KeyMoveError: A file could not be moved; moved files are put back.
        """
        plan = self.plan_unarchive(name)
        if plan.overwrites and not force:
            raise ConflictError(
                f"Key already exists at target location: "
                f"{plan.destination.relative_to(self.ssh_dir).as_posix()}"
            )
        if plan.overwrites:
            logger.warning("Overwriting existing key at %s", plan.destination)
        return self._execute(plan, source_root=self.archive_dir)

    def _execute(self, plan: ArchivePlan, source_root: Path) -> ArchiveResult:
        logger.info("Moving %s -> %s", plan.source, plan.destination)
        moved: list[FileMove] = []
        try:
            plan.destination.parent.mkdir(parents=True, exist_ok=True)
            for move in plan.moves:
                move_file(move.source, move.destination)
                moved.append(move)
        except OSError as exc:
            self._rollback(moved)
            raise KeyMoveError(f"Failed to move {plan.name}: {exc}") from exc

        try:
            for move in moved:
                if move.destination == plan.destination:
                    move.destination.chmod(PRIVATE_KEY_MODE)
                elif move.destination.name.endswith(PUBLIC_KEY_SUFFIX):
                    move.destination.chmod(PUBLIC_KEY_MODE)
        except OSError as exc:
            raise KeyMoveError(f"Moved {plan.name} but could not set permissions: {exc}") from exc

        discarded = self._discard_stale(plan) if plan.overwrites else []
        removed = remove_empty_dirs(plan.source.parent, source_root)
        return ArchiveResult(
            name=plan.name,
            source=plan.source,
            destination=plan.destination,
            moved=moved,
            removed_dirs=removed,
            discarded=discarded,
            affected_hosts=plan.affected_hosts,
            overwrote=plan.overwrites,
        )

    @staticmethod
    def _discard_stale(plan: ArchivePlan) -> list[Path]:
        """Delete companions at the destination that the move did not replace."""
        replaced = {m.destination for m in plan.moves}
        discarded = []
        for suffix in (PUBLIC_KEY_SUFFIX, METADATA_SUFFIX):
            stale = plan.destination.with_name(plan.destination.name + suffix)
            if stale in replaced or not stale.exists():
                continue
            try:
                stale.unlink()
            except OSError as exc:
                raise KeyMoveError(f"Cannot remove stale {stale}: {exc}") from exc
            logger.info("Removed stale companion %s", stale)
            discarded.append(stale)
        return discarded

    @staticmethod
    def _rollback(moved: list[FileMove]) -> None:
        for move in reversed(moved):
            try:
                move_file(move.destination, move.source)
            except OSError as exc:
                logger.error(
                    "Could not restore %s from %s: %s", move.source, move.destination, exc
                )
