"""Tests for settings loading."""

from __future__ import annotations

import logging
from pathlib import Path

from sshman.settings import Settings, load_settings


class TestLoadSettings:
    """Tests for config.yaml handling."""

    def test_defaults_without_file(self, sshman_home: Path, home: Path) -> None:
        settings = load_settings(home=sshman_home)
        assert settings.ssh_root == home / ".ssh"
        assert settings.archive_root == home / ".ssh" / "archived"
        assert settings.config_backup_dir == home / ".ssh" / "archived" / "config_backups"
        assert settings.profiles_path == sshman_home / "profiles.json"
        assert settings.rotation_log_path == home / ".ssh" / "rotation.log"
        assert settings.rsa_bits == 4096

    def test_reads_yaml(self, sshman_home: Path, tmp_path: Path) -> None:
        (sshman_home / "config.yaml").write_text(
            f"ssh_dir: {tmp_path / 'keys'}\n"
            "archive_dir_name: old\n"
            "rsa_bits: 3072\n"
            "log_level: INFO\n"
        )
        settings = load_settings(home=sshman_home)
        assert settings.ssh_root == tmp_path / "keys"
        assert settings.archive_root == tmp_path / "keys" / "old"
        assert settings.rsa_bits == 3072
        assert settings.log_level == "INFO"

    def test_path_override_wins(self, sshman_home: Path, tmp_path: Path) -> None:
        (sshman_home / "config.yaml").write_text("ssh_dir: /nowhere\n")
        settings = load_settings(home=sshman_home, ssh_dir=tmp_path / "custom")
        assert settings.ssh_root == tmp_path / "custom"

    def test_broken_yaml_falls_back(self, sshman_home: Path, caplog) -> None:
        (sshman_home / "config.yaml").write_text("ssh_dir: [unclosed\n")
        caplog.set_level(logging.WARNING, logger="sshman.settings")

        settings = load_settings(home=sshman_home)

        assert settings == Settings(home=sshman_home)
        assert "using defaults" in caplog.text

    def test_invalid_value_falls_back(self, sshman_home: Path) -> None:
        (sshman_home / "config.yaml").write_text("rsa_bits: lots\n")
        assert load_settings(home=sshman_home).rsa_bits == 4096

    def test_non_mapping_falls_back(self, sshman_home: Path) -> None:
        (sshman_home / "config.yaml").write_text("- just\n- a list\n")
        assert load_settings(home=sshman_home).archive_dir_name == "archived"
