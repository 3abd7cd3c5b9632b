"""
User configuration for sshman.

Read from ``<SSHMAN_HOME>/config.yaml`` when present. Every field has a
default, so a missing or broken file never stops a command.

Example config.yaml:

    ssh_dir: ~/.ssh
    archive_dir_name: archived
    rsa_bits: 4096
    log_level: INFO
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

import yaml
from pydantic import BaseModel

from . import SSHMAN_HOME

logger = logging.getLogger("sshman.settings")

CONFIG_FILE = "config.yaml"


class Settings(BaseModel):
    """Resolved configuration for one invocation."""

    home: Path = Path(SSHMAN_HOME)
    ssh_dir: Path = Path("~/.ssh")
    archive_dir_name: str = "archived"
    config_backup_dir_name: str = "config_backups"
    profiles_file: Optional[Path] = None
    rotation_log_name: str = "rotation.log"
    rsa_bits: int = 4096
    ecdsa_bits: int = 256
    connect_timeout: int = 10
    log_level: str = "WARNING"

    @property
    def ssh_root(self) -> Path:
        return self.ssh_dir.expanduser()

    @property
    def archive_root(self) -> Path:
        return self.ssh_root / self.archive_dir_name

    @property
    def config_backup_dir(self) -> Path:
        return self.archive_root / self.config_backup_dir_name

    @property
    def ssh_config_path(self) -> Path:
        return self.ssh_root / "config"

    @property
    def profiles_path(self) -> Path:
        if self.profiles_file is not None:
            return self.profiles_file.expanduser()
        return self.home.expanduser() / "profiles.json"

    @property
    def rotation_log_path(self) -> Path:
        return self.ssh_root / self.rotation_log_name


def load_settings(
    home: Optional[Path] = None,
    ssh_dir: Optional[Path] = None,
) -> Settings:
    """Load settings from disk and apply command-line overrides.

    Args:
        home: Override sshman home. Defaults to $SSHMAN_HOME or ~/.sshman.
        ssh_dir: Override the SSH directory (the CLI ``--path`` flag).

    Returns:
        Settings: Loaded settings, or defaults if the file is missing or invalid.
    """
    home_path = Path(home or SSHMAN_HOME).expanduser()
    config_file = home_path / CONFIG_FILE

    data: dict = {}
    if config_file.exists():
        try:
            data = yaml.safe_load(config_file.read_text(encoding="utf-8")) or {}
            if not isinstance(data, dict):
                raise ValueError("top-level YAML value must be a mapping")
        except (yaml.YAMLError, ValueError, OSError) as exc:
            logger.warning("Failed to load %s: %s; using defaults", config_file, exc)
            data = {}

    data["home"] = home_path
    if ssh_dir is not None:
        data["ssh_dir"] = Path(ssh_dir)

    try:
        return Settings(**data)
    except ValueError as exc:
        logger.warning("Invalid settings in %s: %s; using defaults", config_file, exc)
        overrides = {"home": home_path}
        if ssh_dir is not None:
            overrides["ssh_dir"] = Path(ssh_dir)
        return Settings(**overrides)
