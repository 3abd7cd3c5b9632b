"""
SSH client config model — lossless parse, targeted rewrite.

The config is split into blocks: an optional global block for lines
before the first ``Host``/``Match``, then one block per ``Host`` or
``Match`` line. Every physical line is kept verbatim, so serializing an
untouched config reproduces it byte for byte. Only ``IdentityFile``
lines that are explicitly rewritten ever change.

Usage:
    config = SshConfig.load(ssh_dir / "config", ssh_dir=ssh_dir)
    for block in config.find_hosts_referencing(key_path):
        config.rewrite_identity_file(block, key_path, new_key_path)
    config.save()
"""

from __future__ import annotations

import logging
import os
import re
import shutil
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Optional

from ._fs import atomic_write_text, unique_path
from .errors import ConfigAccessError

logger = logging.getLogger("sshman.ssh_config")

GLOBAL_ALIAS = "(global)"
BACKUP_PREFIX = "config_"
BACKUP_TIMESTAMP_FORMAT = "%Y%m%d_%H%M%S"

_DIRECTIVE_RE = re.compile(
    r"^(?P<indent>[ \t]*)"
    r"(?P<key>[A-Za-z][A-Za-z0-9]*)"
    r"(?P<sep>[ \t]*=[ \t]*|[ \t]+)"
    r"(?P<value>.*?)"
    r"(?P<trail>[ \t]*)$"
)


@dataclass
class ConfigLine:
    """One physical line of the config.

    Directive lines keep their indentation, keyword spelling, separator
    and trailing whitespace so a rewrite can reproduce the original style.
    Comments, blank lines and anything unparseable have no keyword.
    """

    text: str
    eol: str = "\n"
    keyword: Optional[str] = None
    value: Optional[str] = None
    indent: str = ""
    key: str = ""
    sep: str = " "
    trail: str = ""
    quoted: bool = False

    @classmethod
    def parse(cls, text: str, eol: str) -> "ConfigLine":
        stripped = text.strip()
        if not stripped or stripped.startswith("#"):
            return cls(text=text, eol=eol)
        m = _DIRECTIVE_RE.match(text)
        if not m:
            return cls(text=text, eol=eol)
        value = m.group("value")
        quoted = len(value) >= 2 and value.startswith('"') and value.endswith('"')
        return cls(
            text=text,
            eol=eol,
            keyword=m.group("key").lower(),
            value=value[1:-1] if quoted else value,
            indent=m.group("indent"),
            key=m.group("key"),
            sep=m.group("sep"),
            trail=m.group("trail"),
            quoted=quoted,
        )

    @property
    def raw(self) -> str:
        return self.text + self.eol

    def with_value(self, value: str) -> "ConfigLine":
        """Copy of this directive with a new value in the same style."""
        quoted = self.quoted or " " in value
        rendered = f'"{value}"' if quoted else value
        text = f"{self.indent}{self.key}{self.sep}{rendered}{self.trail}"
        return ConfigLine(
            text=text,
            eol=self.eol,
            keyword=self.keyword,
            value=value,
            indent=self.indent,
            key=self.key,
            sep=self.sep,
            trail=self.trail,
            quoted=quoted,
        )


@dataclass
class HostBlock:
    """A ``Host``/``Match`` block, or the global block before the first one."""

    alias: str
    kind: str = "host"
    lines: list[ConfigLine] = field(default_factory=list)

    def directives(self, keyword: str) -> list[ConfigLine]:
        keyword = keyword.lower()
        return [line for line in self.lines if line.keyword == keyword]

    @property
    def identity_files(self) -> list[str]:
        return [line.value or "" for line in self.directives("identityfile")]

    @property
    def connect_target(self) -> Optional[str]:
        """First concrete ``Host`` pattern, usable as an ssh destination.

        Wildcard and negated patterns are skipped. Global and ``Match``
        blocks have no target.
        """
        if self.kind != "host":
            return None
        for pattern in self.alias.split():
            if pattern.startswith("!") or any(c in pattern for c in "*?"):
                continue
            return pattern
        return None


def _split_lines(text: str) -> list[tuple[str, str]]:
    """Split into (content, line ending) pairs without losing any bytes."""
    pieces = text.split("\n")
    result = []
    for i, piece in enumerate(pieces):
        last = i == len(pieces) - 1
        if last and piece == "":
            break
        eol = "" if last else "\n"
        if piece.endswith("\r") and not last:
            piece, eol = piece[:-1], "\r\n"
        result.append((piece, eol))
    return result


def render_identity_path(path: Path) -> str:
    """Spell a key path the way it is usually written in ssh config."""
    path = Path(os.path.normpath(path))
    home = Path(os.path.expanduser("~"))
    try:
        return "~/" + path.relative_to(home).as_posix()
    except ValueError:
        return str(path)


class SshConfig:
    """Parsed SSH client configuration.

    Args:
        blocks: Blocks in file order.
        path: File the config was loaded from.
        ssh_dir: Base directory for relative ``IdentityFile`` values.
        exists: False when the file was missing at load time.
    """

    def __init__(
        self,
        blocks: list[HostBlock],
        path: Optional[Path] = None,
        ssh_dir: Optional[Path] = None,
        exists: bool = True,
    ) -> None:
        self.blocks = blocks
        self.path = path
        self.ssh_dir = ssh_dir or (path.parent if path else Path("~/.ssh").expanduser())
        self.exists = exists

    @classmethod
    def parse(
        cls,
        text: str,
        path: Optional[Path] = None,
        ssh_dir: Optional[Path] = None,
    ) -> "SshConfig":
        blocks: list[HostBlock] = []
        current = HostBlock(alias=GLOBAL_ALIAS, kind="global")
        for content, eol in _split_lines(text):
            line = ConfigLine.parse(content, eol)
            if line.keyword in ("host", "match"):
                if current.lines or current.kind != "global":
                    blocks.append(current)
                alias = line.value or ""
                if line.keyword == "match":
                    alias = f"Match {alias}"
                current = HostBlock(alias=alias, kind=line.keyword, lines=[line])
            else:
                current.lines.append(line)
        if current.lines:
            blocks.append(current)
        return cls(blocks, path=path, ssh_dir=ssh_dir)

    @classmethod
    def load(cls, path: Path, ssh_dir: Optional[Path] = None) -> "SshConfig":
        """Read and parse a config file.

        A missing file is an empty config, not an error.

        Raises:
            ConfigAccessError: If the file exists but cannot be read or decoded.
        """
        path = Path(path)
        if not path.exists():
            logger.debug("No SSH config at %s", path)
            return cls([], path=path, ssh_dir=ssh_dir, exists=False)
        try:
            text = path.read_bytes().decode("utf-8")
        except (OSError, UnicodeDecodeError) as exc:
            raise ConfigAccessError(f"Cannot read SSH config {path}: {exc}") from exc
        return cls.parse(text, path=path, ssh_dir=ssh_dir)

    def serialize(self) -> str:
        return "".join(line.raw for block in self.blocks for line in block.lines)

    def save(self, path: Optional[Path] = None) -> None:
        """Atomically write the config back to disk.

        Raises:
            ConfigAccessError: If the file cannot be written.
        """
        target = Path(path or self.path)
        try:
            atomic_write_text(target, self.serialize(), mode=None if target.exists() else 0o600)
        except OSError as exc:
            raise ConfigAccessError(f"Cannot write SSH config {target}: {exc}") from exc
        self.exists = True
        logger.info("Wrote SSH config %s", target)

    @property
    def hosts(self) -> list[HostBlock]:
        return [b for b in self.blocks if b.kind != "global"]

    def get(self, alias: str) -> Optional[HostBlock]:
        for block in self.blocks:
            if block.alias == alias:
                return block
        return None

    def resolve_identity(self, value: str) -> str:
        """Normalize an ``IdentityFile`` value to an absolute path string.

        Expands ``~`` and environment variables; relative values are
        taken relative to the SSH directory.
        """
        expanded = os.path.expanduser(os.path.expandvars(value))
        if not os.path.isabs(expanded):
            expanded = os.path.join(str(self.ssh_dir), expanded)
        return os.path.normpath(expanded)

    def _matches(self, line: ConfigLine, target: str) -> bool:
        return line.value is not None and self.resolve_identity(line.value) == target

    def find_hosts_referencing(self, path: Path) -> list[HostBlock]:
        """Blocks with an ``IdentityFile`` that resolves to ``path``.

        Matching is an exact, case-sensitive comparison of normalized
        paths. ``Host`` patterns are not consulted.
        """
        target = os.path.normpath(os.path.expanduser(str(path)))
        return [
            block for block in self.blocks
            if any(self._matches(line, target) for line in block.directives("identityfile"))
        ]

    def rewrite_identity_file(self, block: HostBlock, old_path: Path, new_path: Path) -> int:
        """Point a block's ``IdentityFile`` lines for ``old_path`` at ``new_path``.

        A line whose value already resolves to ``new_path`` is left
        untouched so equivalent spellings are not churned.

        Returns:
            int: Number of matching lines (rewritten or already correct).
        """
        old = os.path.normpath(os.path.expanduser(str(old_path)))
        new = os.path.normpath(os.path.expanduser(str(new_path)))
        count = 0
        for i, line in enumerate(block.lines):
            if line.keyword != "identityfile" or not self._matches(line, old):
                continue
            count += 1
            if self._matches(line, new):
                continue
            block.lines[i] = line.with_value(render_identity_path(Path(new)))
            logger.debug("Host %s: %r -> %r", block.alias, line.text, block.lines[i].text)
        return count

    def preview_rewrite(self, old_path: Path, new_path: Path) -> list[tuple[str, str, str]]:
        """The (alias, old line, new line) triples a rewrite would produce, without mutating."""
        old = os.path.normpath(os.path.expanduser(str(old_path)))
        new = os.path.normpath(os.path.expanduser(str(new_path)))
        changes = []
        for block in self.blocks:
            for line in block.directives("identityfile"):
                if not self._matches(line, old):
                    continue
                if self._matches(line, new):
                    changes.append((block.alias, line.text, line.text))
                else:
                    rewritten = line.with_value(render_identity_path(Path(new)))
                    changes.append((block.alias, line.text, rewritten.text))
        return changes


def backup_name(now: Optional[datetime] = None) -> str:
    return BACKUP_PREFIX + (now or datetime.now()).strftime(BACKUP_TIMESTAMP_FORMAT)


def backup_config(config_path: Path, backup_dir: Path, now: Optional[datetime] = None) -> Optional[Path]:
    """Copy the config into ``backup_dir`` under a timestamped name.

    Earlier backups are never overwritten: a name collision gets a
    ``_<n>`` suffix.

    Returns:
        Optional[Path]: The backup file, or None if there was no config.

    Raises:
        ConfigAccessError: If the copy fails.
    """
    config_path = Path(config_path)
    if not config_path.exists():
        return None
    try:
        backup_dir.mkdir(parents=True, exist_ok=True)
        target = unique_path(backup_dir / backup_name(now))
        shutil.copy2(config_path, target)
    except OSError as exc:
        raise ConfigAccessError(f"Cannot back up SSH config {config_path}: {exc}") from exc
    logger.info("Backed up SSH config to %s", target)
    return target
