"""
Adapters around the OpenSSH tools sshman delegates to.

    KeyGenerator      → ssh-keygen   (new key material)
    ConnectionTester  → ssh          (BatchMode login check)
    KeyUploader       → ssh-copy-id  (install a public key remotely)

Each call blocks until the tool exits and raises CollaboratorError on a
non-zero exit. sshman imposes no timeout of its own; ``ssh`` is given
``ConnectTimeout`` so an unreachable host cannot hang a rotation.

The orchestrator accepts any object with the same method signature, so
tests substitute in-memory fakes.
"""

from __future__ import annotations

import logging
import shlex
import subprocess
from pathlib import Path
from typing import Optional

from .errors import CollaboratorError
from .models import KeyType

logger = logging.getLogger("sshman.collaborators")


def format_command(cmd: list[str]) -> str:
    """Render a command for display, masking the ``-N`` passphrase."""
    shown = []
    for i, arg in enumerate(cmd):
        if i > 0 and cmd[i - 1] == "-N":
            shown.append('"***"')
        else:
            shown.append(shlex.quote(arg))
    return " ".join(shown)


def _run(cmd: list[str], operation: str, capture: bool = True) -> subprocess.CompletedProcess:
    """Run a tool and turn every failure mode into CollaboratorError."""
    logger.debug("Running %s", format_command(cmd))
    try:
        result = subprocess.run(cmd, capture_output=capture, text=True)
    except OSError as exc:
        raise CollaboratorError(operation, f"cannot run {cmd[0]}: {exc}") from exc
    if result.returncode != 0:
        detail = (result.stderr or result.stdout or "").strip() if capture else ""
        raise CollaboratorError(
            operation, detail or f"{cmd[0]} exited with status {result.returncode}"
        )
    return result


class KeyGenerator:
    """Generate key pairs with ``ssh-keygen`` (no passphrase).

    Args:
        rsa_bits: Modulus size for RSA keys.
        ecdsa_bits: Curve size for ECDSA keys.
        executable: ssh-keygen binary.
    """

    def __init__(self, rsa_bits: int = 4096, ecdsa_bits: int = 256, executable: str = "ssh-keygen") -> None:
        self.rsa_bits = rsa_bits
        self.ecdsa_bits = ecdsa_bits
        self.executable = executable

    def command(self, path: Path, key_type: KeyType, comment: str) -> list[str]:
        cmd = [self.executable, "-t", key_type.value, "-f", str(path), "-C", comment, "-N", ""]
        if key_type == KeyType.RSA:
            cmd += ["-b", str(self.rsa_bits)]
        elif key_type == KeyType.ECDSA:
            cmd += ["-b", str(self.ecdsa_bits)]
        return cmd

    def generate(self, path: Path, key_type: KeyType, comment: str, overwrite: bool = False) -> None:
        """Write ``path`` and ``path.pub``.

        Raises:
            CollaboratorError: If the files exist and ``overwrite`` is False,
                the type is not generatable, or ssh-keygen fails.
        """
        if key_type == KeyType.OTHER:
            raise CollaboratorError("generate", "cannot generate a key of type 'other'")
        path = Path(path)
        pub = path.with_name(path.name + ".pub")
        if path.exists() or pub.exists():
            if not overwrite:
                raise CollaboratorError("generate", f"{path} already exists")
            path.unlink(missing_ok=True)
            pub.unlink(missing_ok=True)
        path.parent.mkdir(parents=True, exist_ok=True)
        _run(self.command(path, key_type, comment), "generate")
        logger.info("Generated %s key at %s", key_type.value, path)


class ConnectionTester:
    """Try a login with ``ssh -o BatchMode=yes <target> exit``."""

    def __init__(self, connect_timeout: int = 10, executable: str = "ssh") -> None:
        self.connect_timeout = connect_timeout
        self.executable = executable

    def command(self, target: str, identity: Optional[Path] = None) -> list[str]:
        cmd = [self.executable]
        if identity is not None:
            cmd += ["-i", str(identity), "-o", "IdentitiesOnly=yes"]
        cmd += [
            "-o", "BatchMode=yes",
            "-o", f"ConnectTimeout={self.connect_timeout}",
            "-o", "StrictHostKeyChecking=accept-new",
            target,
            "exit",
        ]
        return cmd

    def test(self, target: str, identity: Optional[Path] = None) -> None:
        """Raises CollaboratorError if the login does not succeed."""
        _run(self.command(target, identity), "test-connection")


class KeyUploader:
    """Install a public key on a remote account with ``ssh-copy-id``."""

    def __init__(self, executable: str = "ssh-copy-id") -> None:
        self.executable = executable

    def command(self, public_key: Path, target: str) -> list[str]:
        return [self.executable, "-i", str(public_key), target]

    def upload(self, public_key: Path, target: str) -> None:
        """Raises CollaboratorError if ssh-copy-id fails.

        Output is not captured so password prompts reach the terminal.
        """
        _run(self.command(public_key, target), "upload", capture=False)
