"""Tests for generated storage filenames."""

from __future__ import annotations

import re

import pytest

from rtalks.core.errors import ValidationError
from rtalks.core.storage.file.filenames import FilenameGenerator, extension_for

NAME_RE = re.compile(r"^image-\d{13}-[0-9a-f]{16}\.(jpg|jpeg|png|gif)$")


@pytest.fixture
def generator():
    return FilenameGenerator()


def test_format(generator):
    name = generator.generate("Portrait.JPG", "image")
    assert NAME_RE.match(name)
    assert name.endswith(".jpg")


def test_timestamp_from_clock():
    generator = FilenameGenerator(clock=lambda: 1700000000.123)
    assert generator.generate("a.png").startswith("image-1700000000123-")


def test_ten_thousand_names_are_distinct_and_safe(generator):
    original = "speaker photo.jpeg"
    names = [generator.generate(original, "image") for _ in range(10_000)]

    assert len(set(names)) == 10_000
    for name in names:
        assert "/" not in name
        assert "\\" not in name
        assert ".." not in name
        assert original not in name


@pytest.mark.parametrize("original", [
    "../../etc/passwd.png",
    "..\\..\\windows\\system32\\evil.gif",
    "/var/www/html/index.jpg",
])
def test_path_components_discarded(generator, original):
    name = generator.generate(original, "image")
    assert NAME_RE.match(name)


@pytest.mark.parametrize("original,expected", [
    ("a.JPG", ".jpg"),
    ("b.jpeg", ".jpeg"),
    ("c.Png", ".png"),
    ("d.gif", ".gif"),
    ("C:\\Users\\me\\photo.PNG", ".png"),
])
def test_extension_for(original, expected):
    assert extension_for(original) == expected


@pytest.mark.parametrize("original", [
    None,
    "",
    "noextension",
    "shell.php",
    "photo.jpg.exe",
    "photo.svg",
    "archive.tar.gz",
    "dir.png/file",
])
def test_disallowed_extensions_rejected(generator, original):
    with pytest.raises(ValidationError, match="Invalid file extension"):
        generator.generate(original, "image")


@pytest.mark.parametrize("field", ["", "Image", "../x", "image name", "9image", "a" * 33])
def test_field_name_must_be_identifier(generator, field):
    with pytest.raises(ValueError):
        generator.generate("a.png", field)


def test_custom_field(generator):
    assert generator.generate("a.gif", "avatar").startswith("avatar-")


@pytest.mark.parametrize("original", [".png", "dir/.gif", "..jpg", "C:\\photos\\.jpeg"])
def test_bare_extension_rejected(generator, original):
    with pytest.raises(ValidationError, match="Invalid file name"):
        generator.generate(original, "image")
