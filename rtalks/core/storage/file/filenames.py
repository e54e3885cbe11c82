"""Server-side filenames for stored uploads."""

from __future__ import annotations

import re
import secrets
import time
from typing import Callable

from rtalks.core.errors import UploadRejectedError

ALLOWED_EXTENSIONS = frozenset({".jpg", ".jpeg", ".png", ".gif"})

_FIELD_RE = re.compile(r"^[a-z][a-z0-9_]{0,31}$")
_MAX_ATTEMPTS = 16


def _basename(original: str) -> str:
    # Clients on Windows send backslash-separated paths
    return original.replace("\\", "/").rsplit("/", 1)[-1]


def extension_for(original: str | None) -> str:
    """
    Return the lower-cased extension of a client filename.

    Raises:
        UploadRejectedError: If the extension is missing or not an image extension
    """
    name = _basename(original or "")
    stem, dot, ext = name.rpartition(".")
    extension = f".{ext.lower()}" if dot else ""
    if extension not in ALLOWED_EXTENSIONS:
        raise UploadRejectedError(
            "Invalid file extension. Only .jpg, .jpeg, .png and .gif are allowed.")
    if not stem.strip("."):
        # ".png" alone would reappear verbatim in every generated name
        raise UploadRejectedError("Invalid file name.")
    return extension


class FilenameGenerator:
    """
    Builds ``<field>-<epoch ms>-<random hex><ext>`` names.

    Nothing from the client filename except its extension reaches the
    result; 64 random bits keep concurrent uploads in the same
    millisecond apart.
    """

    def __init__(
        self,
        clock: Callable[[], float] = time.time,
        token_bytes: int = 8,
    ):
        self._clock = clock
        self._token_bytes = token_bytes

    def generate(self, original: str | None, field: str = "image") -> str:
        if not _FIELD_RE.match(field):
            raise ValueError(f"Invalid field name: {field!r}")
        extension = extension_for(original)
        basename = _basename(original or "")

        for _ in range(_MAX_ATTEMPTS):
            millis = int(self._clock() * 1000)
            name = f"{field}-{millis}-{secrets.token_hex(self._token_bytes)}{extension}"
            # Never echo the client's name back, even by coincidence
            if basename not in name:
                return name
        raise UploadRejectedError("Could not generate a filename for this upload.")


__all__ = ['ALLOWED_EXTENSIONS', 'FilenameGenerator', 'extension_for']
