"""
Key inventory — find SSH key pairs under a directory tree.

A file counts as a private key when it starts with a PEM/OpenSSH
``-----BEGIN`` header, or when it has no extension and owner-only
permissions. Its ``.pub`` and ``.meta`` siblings are paired with it.

Scanning is lazy and read-only: symlinks are never followed, hidden
entries are skipped, and an unreadable subdirectory is logged and
skipped rather than aborting the walk.
"""

from __future__ import annotations

import getpass
import logging
import os
import socket
import stat
from pathlib import Path
from typing import Iterable, Iterator, Optional

from .errors import KeyResolutionError
from .models import KeyPair, KeyType

logger = logging.getLogger("sshman.inventory")

PRIVATE_KEY_MAGIC = b"-----BEGIN"
PUBLIC_KEY_SUFFIX = ".pub"
METADATA_SUFFIX = ".meta"

# Well-known files that live in ~/.ssh but are never keys
NON_KEY_NAMES = frozenset({
    "config",
    "known_hosts",
    "known_hosts.old",
    "authorized_keys",
    "authorized_keys2",
    "environment",
    "rc",
})
NON_KEY_SUFFIXES = (PUBLIC_KEY_SUFFIX, METADATA_SUFFIX, ".db", ".old", ".bak", ".log", ".tmp")

_PEM_TYPES = {
    "BEGIN RSA PRIVATE KEY": KeyType.RSA,
    "BEGIN EC PRIVATE KEY": KeyType.ECDSA,
    "BEGIN DSA PRIVATE KEY": KeyType.OTHER,
}
_PUBLIC_PREFIXES = {
    "ssh-ed25519": KeyType.ED25519,
    "ssh-rsa": KeyType.RSA,
    "ecdsa-sha2-": KeyType.ECDSA,
}


def is_private_key(path: Path) -> bool:
    """Check whether a file looks like a private SSH key.

    Args:
        path: File to inspect.

    Returns:
        bool: True for a ``-----BEGIN`` header, or for an extension-less
        file that only its owner can read and write.
    """
    name = path.name
    if name in NON_KEY_NAMES or name.endswith(NON_KEY_SUFFIXES):
        return False

    try:
        with open(path, "rb") as f:
            header = f.read(32)
        st = path.stat()
    except OSError:
        return False

    if header.startswith(PRIVATE_KEY_MAGIC):
        return True
    return (
        not path.suffix
        and st.st_size > 0
        and stat.S_IMODE(st.st_mode) & 0o177 == 0
    )


def detect_key_type(private_path: Path, public_path: Optional[Path] = None) -> KeyType:
    """Work out the algorithm of a key pair.

    Legacy PEM headers name the algorithm directly. OpenSSH-format
    private keys do not, so the public key prefix decides.
    """
    try:
        with open(private_path, "r", encoding="utf-8", errors="replace") as f:
            first_line = f.readline()
    except OSError:
        first_line = ""

    for marker, key_type in _PEM_TYPES.items():
        if marker in first_line:
            return key_type

    if public_path is None:
        return KeyType.OTHER
    try:
        content = public_path.read_text(encoding="utf-8").strip()
    except OSError:
        return KeyType.OTHER
    for prefix, key_type in _PUBLIC_PREFIXES.items():
        if content.startswith(prefix):
            return key_type
    return KeyType.OTHER


def read_comment(public_path: Optional[Path]) -> str:
    """Return the comment field (third column onwards) of a public key."""
    if public_path is None:
        return ""
    try:
        parts = public_path.read_text(encoding="utf-8").strip().split()
    except OSError:
        return ""
    return " ".join(parts[2:])


def default_comment(name: str) -> str:
    """Comment for a rotated key whose predecessor had none."""
    try:
        user = getpass.getuser()
    except (KeyError, OSError):
        user = "unknown"
    return f"{user}@{socket.gethostname() or 'localhost'} (rotated {name})"


def build_key_pair(root: Path, private_path: Path) -> KeyPair:
    """Describe the key at ``private_path`` relative to ``root``.

    Raises:
        KeyResolutionError: If ``private_path`` is not inside ``root``.
    """
    try:
        name = private_path.relative_to(root).as_posix()
    except ValueError:
        raise KeyResolutionError(f"Key is outside {root}: {private_path}") from None
    public_path = private_path.with_name(private_path.name + PUBLIC_KEY_SUFFIX)
    metadata_path = private_path.with_name(private_path.name + METADATA_SUFFIX)
    pub = public_path if public_path.is_file() else None

    return KeyPair(
        name=name,
        private_path=private_path,
        public_path=pub,
        metadata_path=metadata_path if metadata_path.is_file() else None,
        key_type=detect_key_type(private_path, pub),
        comment=read_comment(pub),
        permission_bits=stat.S_IMODE(private_path.stat().st_mode),
    )


def scan_keys(root: Path, exclude: Iterable[Path] = ()) -> Iterator[KeyPair]:
    """Lazily yield every key pair under ``root``.

    Args:
        root: Directory to walk.
        exclude: Directories to prune from the walk (e.g. the archive root
            when listing active keys).

    Yields:
        KeyPair: One per private key, in sorted path order.
    """
    root = Path(root)
    if not root.is_dir():
        return
    excluded = {Path(p).resolve() for p in exclude}

    def _on_error(exc: OSError) -> None:
        logger.warning("Skipping unreadable directory %s: %s", exc.filename, exc.strerror)

    for dirpath, dirnames, filenames in os.walk(root, onerror=_on_error, followlinks=False):
        current = Path(dirpath)
        dirnames[:] = sorted(
            d for d in dirnames
            if not d.startswith(".") and (current / d).resolve() not in excluded
        )
        for filename in sorted(filenames):
            if filename.startswith("."):
                continue
            path = current / filename
            if path.is_symlink() or not path.is_file():
                continue
            if not is_private_key(path):
                continue
            try:
                key = build_key_pair(root, path)
            except OSError as exc:
                logger.warning("Skipping %s: %s", path, exc)
                continue
            if not key.permissions_ok:
                logger.warning(
                    "Private key %s has permissions %o (expected 600)",
                    key.name, key.permission_bits,
                )
            yield key


def contained_path(root: Path, name: str) -> Optional[Path]:
    """Return ``root / name`` spelled under ``root``, or None if it points outside.

    ``..`` components are collapsed first. An absolute name is accepted
    when it lies inside ``root``, including through a symlinked prefix.
    """
    root_norm = Path(os.path.normpath(root))
    candidate = Path(os.path.normpath(root_norm / name))
    if root_norm in candidate.parents:
        return candidate
    try:
        relative = candidate.resolve().relative_to(root_norm.resolve())
    except (OSError, ValueError):
        return None
    if relative == Path("."):
        return None
    return root_norm / relative


def list_key_names(root: Path, exclude: Iterable[Path] = ()) -> list[str]:
    """Relative names of every key under ``root``."""
    return [k.name for k in scan_keys(root, exclude)]


def resolve_key(root: Path, name: str, exclude: Iterable[Path] = ()) -> KeyPair:
    """Find a key by name, searching subdirectories when needed.

    ``name`` is first tried as a path relative to ``root``. Otherwise
    every key whose relative path equals or ends with ``/<name>`` is a
    candidate, and exactly one must match.

    Raises:
        KeyResolutionError: If the name points outside ``root``, the file
            is not a private key, or zero or several keys match.
            ``candidates`` lists the ambiguous matches, or all available
            keys when nothing matched.
    """
    root = Path(os.path.normpath(root))
    exclude = [Path(p) for p in exclude]
    direct = contained_path(root, name)
    if direct is None:
        raise KeyResolutionError(f"Key is outside {root}: {name}")
    excluded_resolved = {p.resolve() for p in exclude}
    in_excluded = any(p in excluded_resolved for p in direct.resolve().parents)

    if direct.is_file() and not in_excluded:
        if not is_private_key(direct):
            raise KeyResolutionError(f"Not a valid private key: {name}")
        return build_key_pair(root, direct)

    keys = list(scan_keys(root, exclude))
    suffix = "/" + name.strip("/")
    matches = [k for k in keys if k.name == name or k.name.endswith(suffix)]

    if len(matches) == 1:
        logger.debug("Resolved '%s' to %s", name, matches[0].name)
        return matches[0]
    if matches:
        raise KeyResolutionError(
            f"Key name '{name}' is ambiguous ({len(matches)} matches)",
            candidates=[k.name for k in matches],
        )
    raise KeyResolutionError(
        f"Key not found: {name}",
        candidates=[k.name for k in keys],
    )
