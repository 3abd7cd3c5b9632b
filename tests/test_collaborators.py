"""Tests for the OpenSSH tool adapters."""

from __future__ import annotations

import subprocess
from pathlib import Path

import pytest

import sshman.collaborators as collab
from sshman.collaborators import ConnectionTester, KeyGenerator, KeyUploader, format_command
from sshman.errors import CollaboratorError
from sshman.models import KeyType


def _fake_run(returncode: int = 0, stderr: str = ""):
    calls = []

    def _run(cmd, **kwargs):
        calls.append(cmd)
        return subprocess.CompletedProcess(cmd, returncode, stdout="", stderr=stderr)

    return _run, calls


class TestKeyGenerator:
    def test_command_per_type(self, tmp_path: Path) -> None:
        gen = KeyGenerator(rsa_bits=3072)
        rsa = gen.command(tmp_path / "k", KeyType.RSA, "me")
        assert rsa[-2:] == ["-b", "3072"]
        ed = gen.command(tmp_path / "k", KeyType.ED25519, "me")
        assert "-b" not in ed
        assert ed[:3] == ["ssh-keygen", "-t", "ed25519"]

    def test_passphrase_is_masked(self, tmp_path: Path) -> None:
        shown = format_command(KeyGenerator().command(tmp_path / "k", KeyType.ED25519, "me"))
        assert shown.endswith('-N "***"')

    def test_generate_runs_ssh_keygen(self, tmp_path: Path, monkeypatch) -> None:
        run, calls = _fake_run()
        monkeypatch.setattr(collab.subprocess, "run", run)
        KeyGenerator().generate(tmp_path / "sub" / "k", KeyType.ECDSA, "me")
        assert calls[0][-2:] == ["-b", "256"]
        assert (tmp_path / "sub").is_dir()

    def test_refuses_existing_without_overwrite(self, tmp_path: Path) -> None:
        (tmp_path / "k").write_text("x")
        with pytest.raises(CollaboratorError, match="already exists"):
            KeyGenerator().generate(tmp_path / "k", KeyType.ED25519, "me")

    def test_overwrite_clears_old_files(self, tmp_path: Path, monkeypatch) -> None:
        (tmp_path / "k").write_text("x")
        (tmp_path / "k.pub").write_text("y")
        run, _ = _fake_run()
        monkeypatch.setattr(collab.subprocess, "run", run)
        KeyGenerator().generate(tmp_path / "k", KeyType.ED25519, "me", overwrite=True)
        assert not (tmp_path / "k").exists()

    def test_other_type_rejected(self, tmp_path: Path) -> None:
        with pytest.raises(CollaboratorError):
            KeyGenerator().generate(tmp_path / "k", KeyType.OTHER, "me")

    def test_failure_carries_stderr(self, tmp_path: Path, monkeypatch) -> None:
        run, _ = _fake_run(returncode=1, stderr="unknown key type\n")
        monkeypatch.setattr(collab.subprocess, "run", run)
        with pytest.raises(CollaboratorError, match="generate failed: unknown key type"):
            KeyGenerator().generate(tmp_path / "k", KeyType.RSA, "me")

    def test_missing_binary(self, tmp_path: Path) -> None:
        gen = KeyGenerator(executable=str(tmp_path / "no-such-keygen"))
        with pytest.raises(CollaboratorError, match="cannot run"):
            gen.generate(tmp_path / "k", KeyType.ED25519, "me")


class TestConnectionTester:
    def test_command(self) -> None:
        cmd = ConnectionTester(connect_timeout=5).command("prod", Path("/k"))
        assert cmd[:5] == ["ssh", "-i", "/k", "-o", "IdentitiesOnly=yes"]
        assert "BatchMode=yes" in cmd
        assert "ConnectTimeout=5" in cmd
        assert cmd[-2:] == ["prod", "exit"]

    def test_failure(self, monkeypatch) -> None:
        run, _ = _fake_run(returncode=255, stderr="Permission denied (publickey).")
        monkeypatch.setattr(collab.subprocess, "run", run)
        with pytest.raises(CollaboratorError, match="Permission denied"):
            ConnectionTester().test("prod")


class TestKeyUploader:
    def test_command(self) -> None:
        assert KeyUploader().command(Path("/k.pub"), "me@host") == ["ssh-copy-id", "-i", "/k.pub", "me@host"]

    def test_failure_without_captured_output(self, monkeypatch) -> None:
        run, _ = _fake_run(returncode=1)
        monkeypatch.setattr(collab.subprocess, "run", run)
        with pytest.raises(CollaboratorError, match="exited with status 1"):
            KeyUploader().upload(Path("/k.pub"), "me@host")
