"""Tests for the local filesystem StorageResolver."""

from __future__ import annotations

import io
import os
import stat
import threading
from pathlib import Path

import pytest

from rtalks.config.settings import PRODUCTION_UPLOAD_PATH, UploadSettings
from rtalks.core.errors import StorageError, ValidationError
from rtalks.core.storage.file.local_backend import StorageResolver


@pytest.fixture
def base_dir(tmp_path):
    return tmp_path / "uploads"


@pytest.fixture
def resolver(base_dir):
    return StorageResolver(UploadSettings(base_path=str(base_dir)))


def write(resolver, name, data=b"\xFF\xD8\xFF\xE0payload", **kwargs):
    return resolver.write(
        name,
        io.BytesIO(data),
        original_filename="me.jpg",
        declared_type="image/jpeg",
        verified_type="jpeg",
        **kwargs,
    )


class FailingStream(io.RawIOBase):
    """Yields one chunk, then fails like a dropped connection."""

    def __init__(self):
        self.calls = 0

    def readable(self):
        return True

    def seek(self, *args):
        return 0

    def read(self, size=-1):
        self.calls += 1
        if self.calls == 1:
            return b"\xFF\xD8\xFF" + b"x" * 100
        raise OSError("connection reset")


class TestBasePath:

    def test_configured_override_wins(self, base_dir):
        resolver = StorageResolver(UploadSettings(base_path=str(base_dir)), production=True)
        assert resolver.base_path() == base_dir

    def test_production_default(self):
        resolver = StorageResolver(UploadSettings(), production=True)
        assert resolver.base_path() == Path(PRODUCTION_UPLOAD_PATH)

    def test_development_default(self, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        resolver = StorageResolver(UploadSettings(), production=False)
        assert resolver.base_path() == tmp_path / "uploads"


class TestEnsureReady:

    def test_creates_directory(self, resolver, base_dir):
        assert resolver.ensure_ready() == base_dir
        assert base_dir.is_dir()
        assert list(base_dir.iterdir()) == []

    def test_concurrent_first_use(self, resolver, base_dir):
        errors = []

        def first_use():
            try:
                resolver.ensure_ready()
            except Exception as e:  # pragma: no cover - reported below
                errors.append(e)

        threads = [threading.Thread(target=first_use) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert errors == []
        assert base_dir.is_dir()

    def test_unusable_directory_fails(self, tmp_path):
        blocker = tmp_path / "not-a-dir"
        blocker.write_text("occupied")
        resolver = StorageResolver(UploadSettings(base_path=str(blocker)))

        with pytest.raises(StorageError):
            resolver.ensure_ready()


class TestPublicUrl:

    def test_configured_base_url(self, base_dir):
        resolver = StorageResolver(UploadSettings(
            base_path=str(base_dir), public_base_url="https://cdn.example.com/uploads/"))
        assert resolver.public_url("a.png", "http://ignored") == \
            "https://cdn.example.com/uploads/a.png"

    def test_derived_from_request(self, resolver):
        assert resolver.public_url("a.png", "https://rtalks.example/") == \
            "https://rtalks.example/uploads/a.png"

    def test_relative_fallback(self, resolver):
        assert resolver.public_url("a.png") == "/uploads/a.png"


class TestWrite:

    def test_write_persists_and_describes(self, resolver, base_dir):
        data = b"\xFF\xD8\xFF\xE0" + os.urandom(4096)
        uploaded = write(resolver, "image-1-ab.jpg", data, owner_id=7,
                         request_base_url="http://testserver")

        assert (base_dir / "image-1-ab.jpg").read_bytes() == data
        assert uploaded.size_bytes == len(data)
        assert uploaded.storage_path == (base_dir / "image-1-ab.jpg").resolve()
        assert uploaded.public_url == "http://testserver/uploads/image-1-ab.jpg"
        assert uploaded.owner_id == 7
        assert uploaded.to_dict()["url"] == uploaded.public_url
        assert "storage_path" not in uploaded.to_dict()

    def test_no_partial_left_behind(self, resolver, base_dir):
        write(resolver, "image-1-ab.jpg")
        assert [p.name for p in base_dir.iterdir()] == ["image-1-ab.jpg"]

    def test_stored_file_is_not_writable_or_executable(self, resolver, base_dir):
        write(resolver, "image-1-ab.jpg")
        mode = (base_dir / "image-1-ab.jpg").stat().st_mode
        assert not mode & (stat.S_IWUSR | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)

    def test_existing_file_never_overwritten(self, resolver, base_dir):
        write(resolver, "image-1-ab.jpg", b"\xFF\xD8\xFFfirst")

        with pytest.raises(StorageError):
            write(resolver, "image-1-ab.jpg", b"\xFF\xD8\xFFsecond")

        assert (base_dir / "image-1-ab.jpg").read_bytes() == b"\xFF\xD8\xFFfirst"
        assert [p.name for p in base_dir.iterdir()] == ["image-1-ab.jpg"]

    def test_failed_stream_leaves_nothing(self, resolver, base_dir):
        with pytest.raises(StorageError):
            resolver.write(
                "image-2-cd.jpg", FailingStream(),
                original_filename="me.jpg", declared_type="image/jpeg",
                verified_type="jpeg")

        assert list(base_dir.iterdir()) == []

    @pytest.mark.parametrize("name", ["../escape.jpg", "a/b.jpg", "..", ".", "", "a\\b.jpg"])
    def test_traversal_names_rejected(self, resolver, name):
        with pytest.raises(ValidationError):
            write(resolver, name)


class TestDelete:

    def test_delete_existing(self, resolver, base_dir):
        write(resolver, "image-1-ab.jpg")
        assert resolver.delete("image-1-ab.jpg") is True
        assert not (base_dir / "image-1-ab.jpg").exists()

    def test_delete_missing_is_noop(self, resolver):
        resolver.ensure_ready()
        assert resolver.delete("image-9-zz.jpg") is False

    def test_delete_twice(self, resolver):
        write(resolver, "image-1-ab.jpg")
        assert resolver.delete("image-1-ab.jpg") is True
        assert resolver.delete("image-1-ab.jpg") is False

    def test_delete_rejects_traversal(self, resolver):
        with pytest.raises(ValidationError):
            resolver.delete("../config.yaml")
