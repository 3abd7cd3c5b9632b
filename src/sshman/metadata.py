"""
Key metadata — the ``.meta`` companion of a key pair.

A ``.meta`` file is a Java-style properties file written next to the
private key (``work/id_ed25519`` → ``work/id_ed25519.meta``):

    # SSH Key Metadata - Generated by sshman
    use=work
    project=client/acme
    description=Deploy key for acme
    created_at=2024-03-01T10:15:30Z
    created_by=alice

Only reading is supported. The file travels with its key on archive,
unarchive and rotation.
"""

from __future__ import annotations

import logging
import re
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Optional

from pydantic import BaseModel

from .inventory import METADATA_SUFFIX

logger = logging.getLogger("sshman.metadata")

_ESCAPES = {"t": "\t", "n": "\n", "r": "\r", "f": "\f"}
_SEPARATOR_RE = re.compile(r"(?<!\\)(?:\\\\)*[=:\s]")


class KeyUse(str, Enum):
    """What a key is for."""

    WORK = "work"
    PERSONAL = "personal"
    OTHER = "other"

    @classmethod
    def parse(cls, value: Optional[str]) -> "KeyUse":
        value = (value or "").strip().lower()
        for use in cls:
            if use.value == value:
                return use
        return cls.OTHER


class KeyMetadata(BaseModel):
    """Descriptive information stored beside a key."""

    use: KeyUse = KeyUse.OTHER
    project: Optional[str] = None
    description: Optional[str] = None
    created_at: Optional[datetime] = None
    created_by: Optional[str] = None

    @property
    def use_path(self) -> str:
        """``use`` and ``project`` joined, e.g. ``work/client/acme``."""
        if self.project:
            return f"{self.use.value}/{self.project}"
        return self.use.value


def metadata_path_for(key_path: Path) -> Path:
    return key_path.with_name(key_path.name + METADATA_SUFFIX)


def parse_use_path(use_path: Optional[str]) -> tuple[KeyUse, Optional[str]]:
    """Split a use path into category and project.

    ``work`` → (WORK, None); ``work/client/acme`` → (WORK, "client/acme").
    An unknown leading category makes the whole string the project of
    ``other``.
    """
    if not use_path or not use_path.strip():
        return KeyUse.OTHER, None
    normalized = use_path.strip()
    lowered = normalized.lower()
    for use in (KeyUse.WORK, KeyUse.PERSONAL):
        if lowered == use.value:
            return use, None
        if lowered.startswith(use.value + "/"):
            project = normalized[len(use.value) + 1:]
            return use, project if project.strip() else None
    return KeyUse.OTHER, normalized


def _unescape(text: str) -> str:
    out = []
    i = 0
    while i < len(text):
        c = text[i]
        if c != "\\" or i + 1 >= len(text):
            out.append(c)
            i += 1
            continue
        nxt = text[i + 1]
        if nxt == "u" and re.fullmatch(r"[0-9a-fA-F]{4}", text[i + 2:i + 6]):
            out.append(chr(int(text[i + 2:i + 6], 16)))
            i += 6
            continue
        out.append(_ESCAPES.get(nxt, nxt))
        i += 2
    return "".join(out)


def _logical_lines(text: str):
    """Yield properties lines with backslash continuations joined."""
    pending = ""
    for raw in text.splitlines():
        if not pending and raw.lstrip()[:1] in ("#", "!"):
            continue
        line = raw.lstrip() if pending else raw
        trailing = len(line) - len(line.rstrip("\\"))
        if trailing % 2 == 1:
            pending += line[:-1]
            continue
        yield pending + line
        pending = ""
    if pending:
        yield pending


def parse_properties(text: str) -> dict[str, str]:
    """Parse Java properties text into a dict. Later keys win."""
    props: dict[str, str] = {}
    for line in _logical_lines(text):
        stripped = line.lstrip()
        if not stripped or stripped[0] in "#!":
            continue
        m = _SEPARATOR_RE.search(stripped)
        if m is None:
            props[_unescape(stripped)] = ""
            continue
        key = stripped[:m.end() - 1]
        rest = stripped[m.end() - 1:].lstrip(" \t\f")
        if rest[:1] in ("=", ":"):
            rest = rest[1:].lstrip(" \t\f")
        props[_unescape(key)] = _unescape(rest)
    return props


def _parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    if not value or not value.strip():
        return None
    value = value.strip()
    if value.endswith("Z"):
        value = value[:-1] + "+00:00"
    try:
        return datetime.fromisoformat(value)
    except ValueError:
        logger.debug("Ignoring unparseable created_at %r", value)
        return None


def load_metadata(key_path: Path) -> Optional[KeyMetadata]:
    """Read the ``.meta`` file of ``key_path``.

    Returns:
        Optional[KeyMetadata]: None when the file is missing or unreadable.
    """
    path = metadata_path_for(Path(key_path))
    if not path.is_file():
        return None
    try:
        props = parse_properties(path.read_text(encoding="utf-8"))
    except (OSError, UnicodeDecodeError) as exc:
        logger.warning("Cannot read key metadata %s: %s", path, exc)
        return None
    return KeyMetadata(
        use=KeyUse.parse(props.get("use")),
        project=props.get("project") or None,
        description=props.get("description") or None,
        created_at=_parse_timestamp(props.get("created_at")),
        created_by=props.get("created_by") or None,
    )
