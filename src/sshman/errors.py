"""Exception taxonomy for key lifecycle operations.

Fatal errors abort the whole command. Everything else fails only the
key being processed; batch commands record it and move on.
"""

from __future__ import annotations

from typing import Iterable, Optional


class SshmanError(Exception):
    """Base class for all sshman errors."""

    fatal = False


class ConfigAccessError(SshmanError):
    """The SSH config file cannot be read or written."""

    fatal = True


class ProfileStorageError(SshmanError):
    """The profile store cannot be read, parsed, or written."""

    fatal = True


class DuplicateAliasError(SshmanError):
    """A profile with the same alias already exists."""

    def __init__(self, alias: str, store: Optional[str] = None) -> None:
        self.alias = alias
        where = f" in {store}" if store else ""
        super().__init__(f"Profile with alias '{alias}' already exists{where}")


class KeyResolutionError(SshmanError):
    """A key name matched zero or several files.

    Attributes:
        candidates: The ambiguous matches, or every available key when
            nothing matched.
    """

    def __init__(self, message: str, candidates: Iterable[str] = ()) -> None:
        self.candidates = list(candidates)
        super().__init__(message)


class ConflictError(SshmanError):
    """The destination of a move already exists."""


class KeyMoveError(SshmanError):
    """Moving key files between the active tree and the archive failed."""


class ConfirmationRequiredError(SshmanError):
    """Archiving would orphan IdentityFile references; caller must confirm."""

    def __init__(self, key: str, hosts: Iterable[str]) -> None:
        self.key = key
        self.hosts = list(hosts)
        super().__init__(
            f"Key '{key}' is referenced by SSH config host(s): {', '.join(self.hosts)}"
        )


class CancelledError(SshmanError):
    """The operator declined a confirmation prompt."""


class CollaboratorError(SshmanError):
    """An external tool (ssh-keygen, ssh, ssh-copy-id) failed."""

    def __init__(self, operation: str, message: str) -> None:
        self.operation = operation
        super().__init__(f"{operation} failed: {message}")
