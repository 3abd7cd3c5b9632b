"""Filesystem helpers shared by the stores and the archive engine."""

from __future__ import annotations

import errno
import logging
import os
import shutil
from pathlib import Path
from typing import Optional

logger = logging.getLogger("sshman.fs")


def atomic_write_bytes(path: Path, data: bytes, mode: Optional[int] = None) -> None:
    """Replace a file's contents without ever exposing a partial write.

    Writes a hidden ``.tmp`` sibling in the same directory and renames
    it over the target, so readers see either the old or the new file.

    Args:
        path: Target file.
        data: Complete new contents.
        mode: Permission bits for the new file. Defaults to the mode of
            the file being replaced, if any.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    if mode is None and path.exists():
        mode = path.stat().st_mode & 0o777

    tmp = path.parent / f".{path.name}.tmp"
    try:
        tmp.write_bytes(data)
        if mode is not None:
            tmp.chmod(mode)
        tmp.replace(path)
    except OSError:
        tmp.unlink(missing_ok=True)
        raise


def atomic_write_text(path: Path, text: str, mode: Optional[int] = None) -> None:
    atomic_write_bytes(path, text.encode("utf-8"), mode=mode)


def move_file(source: Path, destination: Path) -> None:
    """Move one file, falling back to copy + verify + delete across volumes.

    The source is removed only after the copy has the same size and
    permission bits as the original.

    Raises:
        OSError: If the move or the verified copy fails.
    """
    try:
        os.replace(source, destination)
        return
    except OSError as exc:
        if exc.errno != errno.EXDEV:
            raise

    logger.debug("Cross-device move %s -> %s, copying", source, destination)
    shutil.copy2(source, destination)
    src_stat = source.stat()
    dst_stat = destination.stat()
    if (
        src_stat.st_size != dst_stat.st_size
        or (src_stat.st_mode & 0o777) != (dst_stat.st_mode & 0o777)
    ):
        destination.unlink(missing_ok=True)
        raise OSError(f"Copy verification failed for {source} -> {destination}")
    source.unlink()


def remove_empty_dirs(start: Path, root: Path) -> list[Path]:
    """Remove ``start`` and its ancestors while they are empty.

    Stops at ``root``, which is never removed, and at the first
    directory that still has entries.

    Returns:
        list[Path]: Directories that were removed, deepest first.
    """
    removed: list[Path] = []
    root = root.resolve()
    current = start.resolve()
    while current != root and root in current.parents:
        try:
            next(current.iterdir())
            break
        except StopIteration:
            pass
        except OSError as exc:
            logger.warning("Cannot inspect %s: %s", current, exc)
            break
        try:
            current.rmdir()
        except OSError as exc:
            logger.warning("Cannot remove empty directory %s: %s", current, exc)
            break
        logger.debug("Removed empty directory %s", current)
        removed.append(current)
        current = current.parent
    return removed


def unique_path(path: Path) -> Path:
    """Return ``path``, or ``path_1``, ``path_2``... whichever does not exist yet."""
    if not path.exists():
        return path
    n = 1
    while True:
        candidate = path.with_name(f"{path.name}_{n}")
        if not candidate.exists():
            return candidate
        n += 1
