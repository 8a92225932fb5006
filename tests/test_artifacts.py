"""Tests for locating the produced image."""

import hashlib
import os
import time

import pytest

from zori_builder.artifacts import SUMS_NAME, locate_artifact, write_checksums
from zori_builder.errors import ArtifactNotProduced


def _iso(path, data: bytes, mtime: float):
    path.write_bytes(data)
    os.utime(path, (mtime, mtime))
    return path


class TestLocateArtifact:
    def test_newest_match_wins(self, tmp_path):
        now = time.time()
        _iso(tmp_path / "zori-old.iso", b"old", now - 5)
        newest = _iso(tmp_path / "zori-new.iso", b"new image", now + 5)
        (tmp_path / "notes.txt").write_text("not an image")

        art = locate_artifact(tmp_path, since=now)
        assert art.path == str(newest)
        assert art.size == len(b"new image")
        assert art.sha256 == hashlib.sha256(b"new image").hexdigest()

    def test_no_match(self, tmp_path):
        (tmp_path / "readme").write_text("x")
        with pytest.raises(ArtifactNotProduced):
            locate_artifact(tmp_path, since=0)

    def test_missing_directory(self, tmp_path):
        with pytest.raises(ArtifactNotProduced):
            locate_artifact(tmp_path / "out", since=0)

    def test_leftover_from_previous_run_is_rejected(self, tmp_path):
        now = time.time()
        _iso(tmp_path / "zori.iso", b"yesterday", now - 86400)
        with pytest.raises(ArtifactNotProduced, match="predates"):
            locate_artifact(tmp_path, since=now)


class TestChecksums:
    def test_sha256sums_format(self, tmp_path):
        _iso(tmp_path / "b.iso", b"bbb", time.time())
        _iso(tmp_path / "a.iso", b"aaa", time.time())
        sums = write_checksums(tmp_path)
        assert sums.name == SUMS_NAME
        assert sums.read_text().splitlines() == [
            f"{hashlib.sha256(b'aaa').hexdigest()}  a.iso",
            f"{hashlib.sha256(b'bbb').hexdigest()}  b.iso",
        ]
