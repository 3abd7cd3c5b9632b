"""
Key details for ``sshman info``.

Everything is derived from the files themselves: the public key blob
gives the algorithm, size and fingerprints, and the private key header
tells the file format and whether a passphrase protects it. No
``ssh-keygen`` call is needed.
"""

from __future__ import annotations

import base64
import binascii
import hashlib
import logging
import stat
import struct
from datetime import datetime
from pathlib import Path
from typing import Optional

from pydantic import BaseModel

from .metadata import KeyMetadata, load_metadata
from .models import PRIVATE_KEY_MODE, KeyPair

logger = logging.getLogger("sshman.keyinfo")

OPENSSH_MAGIC = b"openssh-key-v1\x00"

ALGORITHM_NAMES = {
    "ssh-ed25519": "ED25519 (recommended)",
    "ssh-rsa": "RSA",
    "ecdsa-sha2-nistp256": "ECDSA (P-256)",
    "ecdsa-sha2-nistp384": "ECDSA (P-384)",
    "ecdsa-sha2-nistp521": "ECDSA (P-521)",
    "ssh-dss": "DSA (deprecated)",
}

_FIXED_BITS = {
    "ssh-ed25519": 256,
    "ecdsa-sha2-nistp256": 256,
    "ecdsa-sha2-nistp384": 384,
    "ecdsa-sha2-nistp521": 521,
}


class PublicKey(BaseModel):
    """One parsed ``<algorithm> <base64> [comment]`` line."""

    algorithm: str
    blob: bytes
    comment: str = ""
    text: str = ""

    @property
    def algorithm_name(self) -> str:
        return ALGORITHM_NAMES.get(self.algorithm, self.algorithm)

    @property
    def bits(self) -> Optional[int]:
        return key_bits(self.algorithm, self.blob)

    @property
    def sha256_fingerprint(self) -> str:
        return fingerprint_sha256(self.blob)

    @property
    def md5_fingerprint(self) -> str:
        return fingerprint_md5(self.blob)


class KeyDetails(BaseModel):
    """Everything ``info`` reports about one key pair."""

    key: KeyPair
    metadata: Optional[KeyMetadata] = None
    private_format: str = "unknown"
    encrypted: bool = False
    size: int = 0
    modified: Optional[datetime] = None
    public_key: Optional[PublicKey] = None

    @property
    def permissions(self) -> str:
        return stat.filemode(stat.S_IFREG | self.key.permission_bits)[1:]

    @property
    def permissions_ok(self) -> bool:
        return self.key.permission_bits == PRIVATE_KEY_MODE


def fingerprint_sha256(blob: bytes) -> str:
    """``SHA256:<base64>`` without padding, as ``ssh-keygen -l`` prints it."""
    digest = base64.b64encode(hashlib.sha256(blob).digest()).decode("ascii")
    return "SHA256:" + digest.rstrip("=")


def fingerprint_md5(blob: bytes) -> str:
    """``MD5:aa:bb:...``, the legacy fingerprint format."""
    digest = hashlib.md5(blob).hexdigest()
    return "MD5:" + ":".join(digest[i:i + 2] for i in range(0, len(digest), 2))


def _read_string(data: bytes, offset: int) -> tuple[bytes, int]:
    (length,) = struct.unpack(">I", data[offset:offset + 4])
    start = offset + 4
    if start + length > len(data):
        raise ValueError("truncated SSH string")
    return data[start:start + length], start + length


def key_bits(algorithm: str, blob: bytes) -> Optional[int]:
    """Key size in bits. RSA and DSA sizes are read from the modulus."""
    if algorithm in _FIXED_BITS:
        return _FIXED_BITS[algorithm]
    if algorithm not in ("ssh-rsa", "ssh-dss"):
        return None
    try:
        _, offset = _read_string(blob, 0)
        if algorithm == "ssh-rsa":
            _, offset = _read_string(blob, offset)
        modulus, _ = _read_string(blob, offset)
    except (ValueError, struct.error):
        return None
    return int.from_bytes(modulus, "big").bit_length()


def parse_public_key(text: str) -> Optional[PublicKey]:
    """Parse the first line of a ``.pub`` file. None if it is not a key line."""
    parts = text.strip().split(None, 2)
    if len(parts) < 2:
        return None
    try:
        blob = base64.b64decode(parts[1], validate=True)
    except (binascii.Error, ValueError):
        return None
    return PublicKey(
        algorithm=parts[0],
        blob=blob,
        comment=parts[2] if len(parts) > 2 else "",
        text=text.strip(),
    )


def private_key_format(header: bytes) -> str:
    text = header.decode("ascii", errors="replace")
    if "OPENSSH PRIVATE KEY" in text:
        return "OpenSSH"
    if "RSA PRIVATE KEY" in text:
        return "RSA (PEM)"
    if "EC PRIVATE KEY" in text:
        return "ECDSA (PEM)"
    if "DSA PRIVATE KEY" in text:
        return "DSA (PEM, deprecated)"
    if "PRIVATE KEY" in text:
        return "PKCS#8"
    return "unknown"


def is_encrypted(content: bytes) -> bool:
    """Whether a private key is passphrase protected.

    PEM keys carry ``Proc-Type``/``DEK-Info`` headers or an ``ENCRYPTED``
    label. OpenSSH keys name their cipher inside the base64 body, and
    ``none`` means unencrypted.
    """
    text = content.decode("ascii", errors="replace")
    first_line = text.split("\n", 1)[0]
    if "ENCRYPTED" in first_line or "Proc-Type: 4,ENCRYPTED" in text or "DEK-Info:" in text:
        return True
    if "BEGIN OPENSSH PRIVATE KEY" not in text:
        return False
    body = "".join(
        line.strip() for line in text.splitlines() if line.strip() and "-----" not in line
    )
    try:
        raw = base64.b64decode(body)
    except (binascii.Error, ValueError):
        return False
    if not raw.startswith(OPENSSH_MAGIC):
        return False
    try:
        cipher, _ = _read_string(raw, len(OPENSSH_MAGIC))
    except (ValueError, struct.error):
        return False
    return cipher != b"none"


def describe_key(key: KeyPair) -> KeyDetails:
    """Collect the details of ``key`` from disk.

    Raises:
        OSError: If the private key cannot be read.
    """
    path = key.private_path
    content = path.read_bytes()
    st = path.stat()

    public_key = None
    if key.public_path is not None:
        try:
            public_key = parse_public_key(key.public_path.read_text(encoding="utf-8"))
        except (OSError, UnicodeDecodeError) as exc:
            logger.warning("Cannot read public key %s: %s", key.public_path, exc)

    return KeyDetails(
        key=key,
        metadata=load_metadata(path),
        private_format=private_key_format(content[:128]),
        encrypted=is_encrypted(content),
        size=st.st_size,
        modified=datetime.fromtimestamp(st.st_mtime),
        public_key=public_key,
    )
