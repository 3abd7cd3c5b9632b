"""
Key rotation — replace a key pair and repoint everything that used it.

Per key, the pipeline is:

    resolve → parameters → test-old → (dry run stops here)
    → generate → backup-config → archive → install
    → update-config → update-profiles → test-new → upload → log

Connectivity tests and uploads only ever add warnings. Generation,
archive and install failures stop that key. Nothing is rolled back
once the old key is archived: rotation is forward-only, and the
archived pair is the way back.

Batches run strictly one key at a time so config and profile writes
never interleave. Fatal errors (unreadable config or profile store)
abort the batch.
"""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Iterable, Optional

from ._fs import atomic_write_text, move_file
from .archive import ArchiveEngine
from .collaborators import ConnectionTester, KeyGenerator, KeyUploader
from .errors import CancelledError, CollaboratorError, ConflictError, KeyMoveError, SshmanError
from .inventory import PUBLIC_KEY_SUFFIX, default_comment
from .models import (
    PRIVATE_KEY_MODE,
    PUBLIC_KEY_MODE,
    ConfigChange,
    KeyPair,
    KeyType,
    RotationOptions,
    RotationPlan,
    RotationResult,
    RotationSummary,
)
from .profiles import ProfileStore
from .settings import Settings
from .ssh_config import SshConfig, backup_config, backup_name

logger = logging.getLogger("sshman.rotation")

STEP_RESOLVE = "resolve"
STEP_PARAMETERS = "parameters"
STEP_TEST_OLD = "test-old"
STEP_PLAN = "plan"
STEP_GENERATE = "generate"
STEP_BACKUP = "backup-config"
STEP_ARCHIVE = "archive"
STEP_INSTALL = "install"
STEP_UPDATE_CONFIG = "update-config"
STEP_UPDATE_PROFILES = "update-profiles"
STEP_TEST_NEW = "test-new"
STEP_UPLOAD = "upload"
STEP_LOG = "log"

STAGING_SUFFIX = ".rotating"


def _log_value(value: str) -> str:
    if value and not any(c in value for c in ' "=\t\n'):
        return value
    return json.dumps(value)


class RotationLog:
    """Append-only rotation history, one line per rotated key.

    Line format::

        <ISO timestamp> key=<name> outcome=<succeeded|partial|failed> steps=<a,b,c> [warnings="..."] [failure="..."]
    """

    def __init__(self, path: Path) -> None:
        self.path = Path(path)

    @staticmethod
    def format_entry(result: RotationResult, now: Optional[datetime] = None) -> str:
        stamp = (now or datetime.now(timezone.utc)).isoformat(timespec="seconds")
        fields = [
            stamp,
            f"key={_log_value(result.key)}",
            f"outcome={result.outcome}",
            f"steps={','.join(result.steps_completed) or '-'}",
        ]
        if result.warnings:
            fields.append(f"warnings={_log_value('; '.join(result.warnings))}")
        if result.failure_reason:
            fields.append(f"failure={_log_value(result.failure_reason)}")
        return " ".join(fields)

    def append(self, result: RotationResult, now: Optional[datetime] = None) -> None:
        """Add one entry, rewriting the file atomically.

        Raises:
            OSError: If the log cannot be read or written.
        """
        existing = self.path.read_text(encoding="utf-8") if self.path.exists() else ""
        if existing and not existing.endswith("\n"):
            existing += "\n"
        atomic_write_text(self.path, existing + self.format_entry(result, now) + "\n")

    def entries(self) -> list[str]:
        if not self.path.exists():
            return []
        return [line for line in self.path.read_text(encoding="utf-8").splitlines() if line.strip()]


class RotationOrchestrator:
    """Runs the rotation pipeline over one or more keys.

    Args:
        archive: Archive engine for the SSH directory being managed.
        profiles: Connection profile store.
        generator: Object with ``generate(path, key_type, comment, overwrite)``.
        tester: Object with ``test(target, identity)``.
        uploader: Object with ``upload(public_key, target)``.
        log: Rotation history file.
        confirm: Called with the plan before any mutation unless the
            rotation is forced; returning False cancels that key, and
            returning True also accepts replacing an existing archived
            copy. Without it, an existing archived copy is a conflict.
    """

    def __init__(
        self,
        archive: ArchiveEngine,
        profiles: ProfileStore,
        generator: KeyGenerator,
        tester: ConnectionTester,
        uploader: KeyUploader,
        log: RotationLog,
        confirm: Optional[Callable[[RotationPlan], bool]] = None,
    ) -> None:
        self.archive = archive
        self.profiles = profiles
        self.generator = generator
        self.tester = tester
        self.uploader = uploader
        self.log = log
        self.confirm = confirm

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        confirm: Optional[Callable[[RotationPlan], bool]] = None,
    ) -> "RotationOrchestrator":
        return cls(
            archive=ArchiveEngine.from_settings(settings),
            profiles=ProfileStore(settings.profiles_path, ssh_dir=settings.ssh_root),
            generator=KeyGenerator(rsa_bits=settings.rsa_bits, ecdsa_bits=settings.ecdsa_bits),
            tester=ConnectionTester(connect_timeout=settings.connect_timeout),
            uploader=KeyUploader(),
            log=RotationLog(settings.rotation_log_path),
            confirm=confirm,
        )

    # ------------------------------------------------------------------
    # Planning
    # ------------------------------------------------------------------

    def plan(self, key: KeyPair, options: RotationOptions) -> RotationPlan:
        """Compute everything a rotation of ``key`` would change. No side effects.

        Raises:
            ConfigAccessError: If the SSH config cannot be read.
            ProfileStorageError: If the profile store cannot be read.
        """
        new_type = options.key_type or key.key_type
        if new_type == KeyType.OTHER:
            new_type = KeyType.ED25519
        comment = options.comment or key.comment or default_comment(key.name)

        archive_plan = self.archive.plan_archive(key.name)
        config = SshConfig.load(self.archive.config_path, ssh_dir=self.archive.ssh_dir)
        changes = [
            ConfigChange(host=alias, old_line=old, new_line=new)
            for alias, old, new in config.preview_rewrite(key.private_path, key.private_path)
        ]
        connect_targets = [
            block.connect_target
            for block in config.find_hosts_referencing(key.private_path)
            if block.connect_target
        ]
        profiles = [p.alias for p in self.profiles.find_by_identity(str(key.private_path))]
        backup_path = None
        if options.backup and config.exists:
            backup_path = self.archive.backup_dir / backup_name()

        return RotationPlan(
            name=key.name,
            key_path=key.private_path,
            archive_path=archive_plan.destination,
            current_type=key.key_type,
            new_type=new_type,
            comment=comment,
            affected_hosts=archive_plan.affected_hosts,
            connect_targets=connect_targets,
            config_changes=changes,
            affected_profiles=profiles,
            archive_exists=archive_plan.overwrites,
            backup_path=backup_path,
            upload_targets=list(options.upload_targets),
        )

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    def rotate_batch(
        self,
        names: Iterable[str],
        options: RotationOptions,
        on_start: Optional[Callable[[str], None]] = None,
        on_result: Optional[Callable[[RotationResult], None]] = None,
    ) -> RotationSummary:
        """Rotate keys one after another.

        A per-key failure is recorded and the batch continues; a fatal
        error propagates immediately.

        Args:
            names: Key names, in rotation order.
            options: Applied to every key.
            on_start: Called with each name before its rotation begins.
            on_result: Called with each finished result.
        """
        summary = RotationSummary()
        for name in names:
            if on_start is not None:
                on_start(name)
            result = self.rotate(name, options)
            summary.results.append(result)
            if on_result is not None:
                on_result(result)
        logger.info(
            "Rotation batch: %d succeeded, %d partial, %d failed",
            summary.succeeded, summary.partial, summary.failed,
        )
        return summary

    def rotate(self, name: str, options: RotationOptions) -> RotationResult:
        """Run the full pipeline for one key and record the outcome.

        Raises:
            ConfigAccessError, ProfileStorageError: Fatal; logged, then re-raised.
        """
        result = RotationResult(key=name, dry_run=options.dry_run)
        try:
            self._pipeline(name, options, result)
        except SshmanError as exc:
            result.succeeded = False
            result.failure_reason = str(exc)
            logger.error("Rotation of %s failed: %s", result.key, exc)
            if exc.fatal:
                self._record(result, options)
                raise
        self._record(result, options)
        return result

    def _record(self, result: RotationResult, options: RotationOptions) -> None:
        if options.dry_run:
            return
        try:
            self.log.append(result)
        except OSError as exc:
            logger.warning("Cannot write rotation log %s: %s", self.log.path, exc)
            result.warnings.append(f"rotation log not written: {exc}")
            return
        result.steps_completed.append(STEP_LOG)

    def _pipeline(self, name: str, options: RotationOptions, result: RotationResult) -> None:
        steps = result.steps_completed

        key = self.archive.resolve_active(name)
        result.key = key.name
        steps.append(STEP_RESOLVE)

        plan = self.plan(key, options)
        result.plan = plan
        steps.append(STEP_PARAMETERS)

        if options.test:
            self._test_connection(plan, key.private_path, STEP_TEST_OLD, result)

        if options.dry_run:
            steps.append(STEP_PLAN)
            result.succeeded = True
            return

        if not options.force:
            if self.confirm is None:
                if plan.archive_exists:
                    raise ConflictError(
                        f"Archived copy already exists: {plan.archive_path} "
                        "(use --force to replace it)"
                    )
            elif not self.confirm(plan):
                raise CancelledError(f"Rotation of {key.name} cancelled")

        staging = key.private_path.with_name(f".{key.private_path.name}{STAGING_SUFFIX}")
        self.generator.generate(staging, plan.new_type, plan.comment, overwrite=True)
        steps.append(STEP_GENERATE)

        try:
            if options.backup:
                if backup_config(self.archive.config_path, self.archive.backup_dir):
                    steps.append(STEP_BACKUP)
            self.archive.archive(key.name, force=True)
            steps.append(STEP_ARCHIVE)
        except SshmanError:
            self._discard(staging)
            raise

        self._install(staging, key.private_path)
        steps.append(STEP_INSTALL)

        config = SshConfig.load(self.archive.config_path, ssh_dir=self.archive.ssh_dir)
        blocks = config.find_hosts_referencing(key.private_path)
        if blocks:
            before = config.serialize()
            for block in blocks:
                config.rewrite_identity_file(block, key.private_path, key.private_path)
            if config.serialize() != before:
                config.save()
            logger.info("Updated %d host(s) for %s", len(blocks), key.name)
        steps.append(STEP_UPDATE_CONFIG)

        updated = self.profiles.update_identity(str(key.private_path), str(key.private_path))
        logger.info("Updated %d profile(s) for %s", updated, key.name)
        steps.append(STEP_UPDATE_PROFILES)

        if options.test:
            self._test_connection(plan, key.private_path, STEP_TEST_NEW, result)

        public_key = key.private_path.with_name(key.private_path.name + PUBLIC_KEY_SUFFIX)
        for target in options.upload_targets:
            try:
                self.uploader.upload(public_key, target)
                steps.append(f"{STEP_UPLOAD}:{target}")
            except CollaboratorError as exc:
                logger.warning("Upload of %s to %s failed: %s", key.name, target, exc)
                result.warnings.append(f"upload to {target}: {exc}")

        result.succeeded = True

    def _connection_target(self, plan: RotationPlan) -> Optional[str]:
        if plan.connect_targets:
            return plan.connect_targets[0]
        for alias in plan.affected_profiles:
            profile = self.profiles.get(alias)
            if profile is None:
                continue
            if profile.port != 22:
                return f"ssh://{profile.user}@{profile.host}:{profile.port}"
            return f"{profile.user}@{profile.host}"
        return None

    def _test_connection(self, plan: RotationPlan, identity: Path, step: str, result: RotationResult) -> None:
        target = self._connection_target(plan)
        if target is None:
            logger.debug("No host or profile uses %s; skipping %s", plan.name, step)
            return
        try:
            self.tester.test(target, identity)
        except CollaboratorError as exc:
            logger.warning("%s for %s via %s failed: %s", step, plan.name, target, exc)
            result.warnings.append(f"{step} ({target}): {exc}")
            return
        result.steps_completed.append(step)

    @staticmethod
    def _install(staging: Path, key_path: Path) -> None:
        staged_pub = staging.with_name(staging.name + PUBLIC_KEY_SUFFIX)
        final_pub = key_path.with_name(key_path.name + PUBLIC_KEY_SUFFIX)
        try:
            move_file(staging, key_path)
            key_path.chmod(PRIVATE_KEY_MODE)
            if staged_pub.exists():
                move_file(staged_pub, final_pub)
                final_pub.chmod(PUBLIC_KEY_MODE)
        except OSError as exc:
            raise KeyMoveError(f"Failed to install new key at {key_path}: {exc}") from exc

    @staticmethod
    def _discard(staging: Path) -> None:
        for path in (staging, staging.with_name(staging.name + PUBLIC_KEY_SUFFIX)):
            try:
                path.unlink(missing_ok=True)
            except OSError as exc:
                logger.warning("Cannot remove staged file %s: %s", path, exc)
