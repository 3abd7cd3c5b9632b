"""
Pydantic models for key material, connection profiles, and the
outcomes of archive and rotation operations.

Nothing here is cached between commands: every model is rebuilt from
disk at the start of a command and thrown away at the end.
"""

from __future__ import annotations

from enum import Enum
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, Field

PRIVATE_KEY_MODE = 0o600
PUBLIC_KEY_MODE = 0o644


class KeyType(str, Enum):
    """Key algorithm families sshman knows how to regenerate."""

    ED25519 = "ed25519"
    RSA = "rsa"
    ECDSA = "ecdsa"
    OTHER = "other"


class KeyPair(BaseModel):
    """A private key file and its optional companions.

    Attributes:
        name: Path relative to the scanned root, POSIX separators.
        private_path: Absolute path to the private key.
        public_path: The ``.pub`` sibling, if present.
        metadata_path: The ``.meta`` sibling, if present.
        key_type: Detected algorithm family.
        comment: Comment field of the public key.
        permission_bits: Permission bits of the private file.
    """

    name: str
    private_path: Path
    public_path: Optional[Path] = None
    metadata_path: Optional[Path] = None
    key_type: KeyType = KeyType.OTHER
    comment: str = ""
    permission_bits: int = PRIVATE_KEY_MODE

    @property
    def permissions_ok(self) -> bool:
        """Private keys must be readable and writable by the owner only."""
        return self.permission_bits == PRIVATE_KEY_MODE

    @property
    def has_public_key(self) -> bool:
        return self.public_path is not None


class ConnectionProfile(BaseModel):
    """A saved SSH connection, keyed by a unique alias."""

    alias: str
    host: str
    user: str
    port: int = 22
    identity_file: Optional[str] = None
    key_name: Optional[str] = None

    def to_ssh_command(self) -> str:
        """Render the equivalent ``ssh`` command line."""
        parts = ["ssh"]
        if self.port != 22:
            parts += ["-p", str(self.port)]
        if self.identity_file:
            parts += ["-i", self.identity_file]
        parts.append(f"{self.user}@{self.host}")
        return " ".join(parts)


class FileMove(BaseModel):
    """One file relocated by the archive engine."""

    source: Path
    destination: Path


class ArchivePlan(BaseModel):
    """What archiving or restoring a key would do, computed without side effects."""

    name: str
    source: Path
    destination: Path
    moves: list[FileMove] = Field(default_factory=list)
    affected_hosts: list[str] = Field(default_factory=list)
    overwrites: bool = False


class ArchiveResult(BaseModel):
    """Outcome of a completed archive or unarchive."""

    name: str
    source: Path
    destination: Path
    moved: list[FileMove] = Field(default_factory=list)
    removed_dirs: list[Path] = Field(default_factory=list)
    discarded: list[Path] = Field(default_factory=list)
    affected_hosts: list[str] = Field(default_factory=list)
    overwrote: bool = False


class RotationOptions(BaseModel):
    """Per-invocation switches for the rotate command."""

    key_type: Optional[KeyType] = None
    comment: Optional[str] = None
    dry_run: bool = False
    force: bool = False
    backup: bool = True
    test: bool = True
    upload_targets: list[str] = Field(default_factory=list)


class ConfigChange(BaseModel):
    """A single IdentityFile line that rotation rewrites."""

    host: str
    old_line: str
    new_line: str


class RotationPlan(BaseModel):
    """Everything a rotation would touch, computed before any mutation."""

    name: str
    key_path: Path
    archive_path: Path
    current_type: KeyType
    new_type: KeyType
    comment: str
    affected_hosts: list[str] = Field(default_factory=list)
    connect_targets: list[str] = Field(default_factory=list)
    config_changes: list[ConfigChange] = Field(default_factory=list)
    affected_profiles: list[str] = Field(default_factory=list)
    archive_exists: bool = False
    backup_path: Optional[Path] = None
    upload_targets: list[str] = Field(default_factory=list)


class RotationResult(BaseModel):
    """Per-key outcome of the rotation pipeline."""

    key: str
    succeeded: bool = False
    steps_completed: list[str] = Field(default_factory=list)
    failure_reason: Optional[str] = None
    warnings: list[str] = Field(default_factory=list)
    dry_run: bool = False
    plan: Optional[RotationPlan] = None

    @property
    def outcome(self) -> str:
        if not self.succeeded:
            return "failed"
        return "partial" if self.warnings else "succeeded"


class RotationSummary(BaseModel):
    """Aggregated outcome of a batch rotation."""

    results: list[RotationResult] = Field(default_factory=list)

    @property
    def succeeded(self) -> int:
        return sum(1 for r in self.results if r.outcome == "succeeded")

    @property
    def partial(self) -> int:
        return sum(1 for r in self.results if r.outcome == "partial")

    @property
    def failed(self) -> int:
        return sum(1 for r in self.results if r.outcome == "failed")

    @property
    def exit_code(self) -> int:
        return 1 if self.failed else 0
