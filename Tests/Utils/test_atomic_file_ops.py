"""
Tests for atomic file writes.
"""
import json
import os
import stat
from unittest.mock import patch

import pytest

from draftkeeper.Utils.atomic_file_ops import atomic_write_json, atomic_write_text


def test_writes_content_and_creates_parents(tmp_path):
    target = tmp_path / "nested" / "dir" / "file.txt"
    atomic_write_text(target, "hello")
    assert target.read_text(encoding="utf-8") == "hello"


def test_replaces_existing_file(tmp_path):
    target = tmp_path / "file.txt"
    target.write_text("old", encoding="utf-8")
    atomic_write_text(target, "new")
    assert target.read_text(encoding="utf-8") == "new"


@pytest.mark.skipif(os.name == "nt", reason="POSIX permissions")
def test_private_permissions_by_default(tmp_path):
    target = tmp_path / "file.txt"
    atomic_write_text(target, "secret")
    assert stat.S_IMODE(target.stat().st_mode) == 0o600


def test_failed_replace_keeps_old_file_and_cleans_up(tmp_path):
    target = tmp_path / "file.txt"
    target.write_text("old", encoding="utf-8")

    with patch("draftkeeper.Utils.atomic_file_ops.os.replace", side_effect=OSError("disk gone")):
        with pytest.raises(OSError):
            atomic_write_text(target, "new")

    assert target.read_text(encoding="utf-8") == "old"
    assert [p.name for p in tmp_path.iterdir()] == ["file.txt"]


def test_atomic_write_json(tmp_path):
    target = tmp_path / "data.json"
    atomic_write_json(target, {"a": "é"})
    assert json.loads(target.read_text(encoding="utf-8")) == {"a": "é"}
