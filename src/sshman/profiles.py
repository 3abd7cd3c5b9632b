"""
Connection profile store.

Profiles live in a single JSON object keyed by alias:

    {
      "prod": {"host": "prod.example.com", "user": "deploy", "port": 22,
               "identityFile": "/home/me/.ssh/work/prod"}
    }

Aliases are unique by construction. Insertion order is kept so the file
diffs cleanly, and every write goes through a temp file + rename so a
crash never leaves a half-written store behind.
"""

from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import Any, Optional

from ._fs import atomic_write_text
from .errors import DuplicateAliasError, ProfileStorageError
from .models import ConnectionProfile

logger = logging.getLogger("sshman.profiles")

# Field order in the JSON file
_FIELDS = (
    ("host", "host"),
    ("user", "user"),
    ("port", "port"),
    ("identity_file", "identityFile"),
    ("key_name", "keyName"),
)


def _to_record(profile: ConnectionProfile) -> dict[str, Any]:
    record: dict[str, Any] = {}
    for attr, key in _FIELDS:
        value = getattr(profile, attr)
        if value is not None:
            record[key] = value
    return record


def _from_record(alias: str, record: dict[str, Any]) -> ConnectionProfile:
    data = {attr: record[key] for attr, key in _FIELDS if record.get(key) is not None}
    return ConnectionProfile(alias=alias, **data)


def _from_legacy(record: dict[str, Any]) -> ConnectionProfile:
    """Convert an entry of the older list-shaped store."""
    return ConnectionProfile(
        alias=record["alias"],
        host=record.get("hostname") or record.get("host", ""),
        user=record.get("username") or record.get("user", ""),
        port=record.get("port") or 22,
        identity_file=record.get("sshKey") or record.get("identityFile"),
    )


class ProfileStore:
    """Alias-keyed collection of connection profiles backed by a JSON file.

    The file is read on every operation and rewritten at the end of each
    mutating one; nothing is cached between calls.

    Args:
        path: The JSON store file.
        ssh_dir: Base directory used to resolve relative identity references.
    """

    def __init__(self, path: Path, ssh_dir: Optional[Path] = None) -> None:
        self.path = Path(path)
        self.ssh_dir = Path(ssh_dir).expanduser() if ssh_dir else None

    def load(self) -> dict[str, ConnectionProfile]:
        """Read the whole store.

        Returns:
            dict[str, ConnectionProfile]: Profiles by alias, in file order.
            Empty if the file does not exist.

        Raises:
            ProfileStorageError: If the file cannot be read or parsed.
        """
        if not self.path.exists():
            return {}
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, UnicodeDecodeError) as exc:
            raise ProfileStorageError(f"Cannot read profiles {self.path}: {exc}") from exc
        except json.JSONDecodeError as exc:
            raise ProfileStorageError(f"Invalid profile JSON in {self.path}: {exc}") from exc

        profiles: dict[str, ConnectionProfile] = {}
        try:
            if isinstance(data, list):
                for record in data:
                    profile = _from_legacy(record)
                    if profile.alias in profiles:
                        raise ProfileStorageError(
                            f"Duplicate alias '{profile.alias}' in {self.path}"
                        )
                    profiles[profile.alias] = profile
            elif isinstance(data, dict):
                for alias, record in data.items():
                    profiles[alias] = _from_record(alias, record)
            else:
                raise ProfileStorageError(f"Unexpected profile store format in {self.path}")
        except (KeyError, TypeError, AttributeError, ValueError) as exc:
            raise ProfileStorageError(f"Malformed profile in {self.path}: {exc}") from exc
        return profiles

    def save(self, profiles: dict[str, ConnectionProfile]) -> None:
        """Atomically replace the store with ``profiles``.

        Raises:
            ProfileStorageError: If the file cannot be written.
        """
        payload = {alias: _to_record(p) for alias, p in profiles.items()}
        try:
            atomic_write_text(self.path, json.dumps(payload, indent=2) + "\n")
        except OSError as exc:
            raise ProfileStorageError(f"Cannot write profiles {self.path}: {exc}") from exc
        logger.debug("Saved %d profile(s) to %s", len(profiles), self.path)

    def list_profiles(self) -> list[ConnectionProfile]:
        return list(self.load().values())

    def get(self, alias: str) -> Optional[ConnectionProfile]:
        return self.load().get(alias)

    def add(self, profile: ConnectionProfile) -> ConnectionProfile:
        """Insert a new profile and persist.

        Raises:
            DuplicateAliasError: If the alias is taken. The store is not touched.
        """
        profiles = self.load()
        if profile.alias in profiles:
            raise DuplicateAliasError(profile.alias, str(self.path))
        profiles[profile.alias] = profile
        self.save(profiles)
        logger.info("Added profile '%s'", profile.alias)
        return profile

    def remove(self, alias: str) -> bool:
        """Delete a profile. Returns False if the alias was unknown."""
        profiles = self.load()
        if profiles.pop(alias, None) is None:
            return False
        self.save(profiles)
        logger.info("Removed profile '%s'", alias)
        return True

    def resolve_ref(self, ref: str) -> str:
        """Normalize a key name or path to an absolute path string."""
        expanded = os.path.expanduser(os.path.expandvars(ref))
        if not os.path.isabs(expanded) and self.ssh_dir is not None:
            expanded = os.path.join(str(self.ssh_dir), expanded)
        return os.path.normpath(expanded)

    def _refers_to(self, profile: ConnectionProfile, target: str) -> bool:
        refs = [r for r in (profile.identity_file, profile.key_name) if r]
        return any(self.resolve_ref(r) == target for r in refs)

    def find_by_identity(self, key_ref: str) -> list[ConnectionProfile]:
        """Profiles whose identity file or key name points at ``key_ref``."""
        target = self.resolve_ref(str(key_ref))
        return [p for p in self.load().values() if self._refers_to(p, target)]

    def update_identity(self, old_key_ref: str, new_key_ref: str) -> int:
        """Repoint every profile that references ``old_key_ref``.

        Matching profiles get ``identity_file`` set to ``new_key_ref``; a
        ``key_name`` link to the old key follows when the path changes. Nothing is
        written when no profile matches.

        Returns:
            int: Number of profiles updated.
        """
        target = self.resolve_ref(str(old_key_ref))
        new_target = self.resolve_ref(str(new_key_ref))
        profiles = self.load()
        updated = 0
        for alias, profile in profiles.items():
            if not self._refers_to(profile, target):
                continue
            changes: dict[str, Any] = {"identity_file": str(new_key_ref)}
            if (
                profile.key_name
                and self.resolve_ref(profile.key_name) == target
                and new_target != target
            ):
                changes["key_name"] = str(new_key_ref)
            profiles[alias] = profile.model_copy(update=changes)
            updated += 1
            logger.debug("Profile '%s' now uses %s", alias, new_key_ref)
        if updated:
            self.save(profiles)
        return updated
