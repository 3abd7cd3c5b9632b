"""Tests for .meta key metadata."""

from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path

import pytest

from sshman.metadata import KeyUse, load_metadata, parse_properties, parse_use_path


class TestParseProperties:
    """Tests for the properties file reader."""

    def test_separators_and_comments(self) -> None:
        text = (
            "# comment\n"
            "! also a comment\n"
            "use=work\n"
            "project : client/acme\n"
            "created_by alice\n"
            "\n"
        )
        assert parse_properties(text) == {
            "use": "work",
            "project": "client/acme",
            "created_by": "alice",
        }

    def test_escapes(self) -> None:
        props = parse_properties("created_at=2024-03-01T10\\:15\\:30Z\nkey\\ name=a\\tb\\u00e9\n")
        assert props["created_at"] == "2024-03-01T10:15:30Z"
        assert props["key name"] == "a\tbé"

    def test_line_continuation(self) -> None:
        props = parse_properties("description=first \\\n    second\n")
        assert props["description"] == "first second"

    def test_empty_value(self) -> None:
        assert parse_properties("project=\nflag\n") == {"project": "", "flag": ""}


class TestUsePath:
    @pytest.mark.parametrize(
        "value, expected",
        [
            ("work", (KeyUse.WORK, None)),
            ("Personal", (KeyUse.PERSONAL, None)),
            ("work/project-a", (KeyUse.WORK, "project-a")),
            ("work/client/acme", (KeyUse.WORK, "client/acme")),
            ("work/", (KeyUse.WORK, None)),
            ("hobby/robots", (KeyUse.OTHER, "hobby/robots")),
            ("", (KeyUse.OTHER, None)),
            (None, (KeyUse.OTHER, None)),
        ],
    )
    def test_parse(self, value, expected) -> None:
        assert parse_use_path(value) == expected

    def test_unknown_use_value(self) -> None:
        assert KeyUse.parse("WORK") == KeyUse.WORK
        assert KeyUse.parse("gaming") == KeyUse.OTHER


class TestLoadMetadata:
    """Tests for reading the .meta companion of a key."""

    def test_full_file(self, ssh_dir: Path) -> None:
        key = ssh_dir / "id_ed25519"
        key.with_name("id_ed25519.meta").write_text(
            "#SSH Key Metadata - Generated by sshman\n"
            "use=personal\n"
            "project=github\n"
            "description=Laptop key\n"
            "created_at=2024-03-01T10\\:15\\:30Z\n"
            "created_by=alice\n"
        )

        meta = load_metadata(key)

        assert meta.use == KeyUse.PERSONAL
        assert meta.project == "github"
        assert meta.use_path == "personal/github"
        assert meta.description == "Laptop key"
        assert meta.created_at == datetime(2024, 3, 1, 10, 15, 30, tzinfo=timezone.utc)
        assert meta.created_by == "alice"

    def test_missing_file(self, ssh_dir: Path) -> None:
        assert load_metadata(ssh_dir / "id_ed25519") is None

    def test_bad_timestamp_is_dropped(self, ssh_dir: Path) -> None:
        (ssh_dir / "k.meta").write_text("use=work\ncreated_at=yesterday\n")
        meta = load_metadata(ssh_dir / "k")
        assert meta.use == KeyUse.WORK
        assert meta.created_at is None
        assert meta.use_path == "work"
