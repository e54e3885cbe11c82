"""
Streaming validation for image uploads.

Three independent checks, all of which must pass:

1. Declared type whitelist, checked before any body byte is read
2. Size ceiling, enforced while bytes arrive
3. Magic number of the payload against the declared type

The checks run in an incremental consumer: feed it chunks as they arrive
and it either rejects mid-stream or yields a final verdict.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from rtalks.config.settings import MAX_UPLOAD_BYTES
from rtalks.core.errors import UploadRejectedError

# Declared MIME type -> (verified type name, magic number)
IMAGE_SIGNATURES = {
    "image/jpeg": ("jpeg", b"\xFF\xD8\xFF"),
    "image/png": ("png", b"\x89PNG"),
    "image/gif": ("gif", b"GIF8"),
}

ALLOWED_MIME_TYPES = tuple(IMAGE_SIGNATURES)


class InspectionState(str, Enum):
    RECEIVING = "receiving"
    ACCEPTED = "accepted"
    REJECTED = "rejected"


@dataclass(frozen=True)
class Accepted:
    """Terminal verdict for a payload that passed every check."""
    size_bytes: int
    verified_type: str


@dataclass(frozen=True)
class Rejected:
    """Terminal verdict for a payload that failed a check."""
    reason: str


def normalize_content_type(content_type: str | None) -> str:
    """Lower-case the media type and drop parameters such as charset."""
    if not content_type:
        return ""
    return content_type.split(";", 1)[0].strip().lower()


class UploadInspection:
    """
    Incremental consumer for one upload body.

    Usage:
        inspection = validator.start("image/png")
        for chunk in body:
            inspection.feed(chunk)      # raises UploadRejectedError on violation
        verdict = inspection.finish()   # Accepted(size, type)
    """

    def __init__(self, declared_type: str, max_bytes: int):
        self.declared_type = declared_type
        self.max_bytes = max_bytes
        self.verified_type, self._signature = IMAGE_SIGNATURES[declared_type]
        self.size_bytes = 0
        self.state = InspectionState.RECEIVING
        self.verdict: Accepted | Rejected | None = None
        self._prefix = b""

    def feed(self, chunk: bytes) -> None:
        """
        Account for a chunk of payload.

        Raises:
            UploadRejectedError: If the ceiling is crossed or the magic number
                does not match; the inspection is then terminal
        """
        if self.state is not InspectionState.RECEIVING:
            raise RuntimeError(f"Cannot feed a {self.state.value} inspection")
        if not chunk:
            return

        self.size_bytes += len(chunk)
        if self.size_bytes > self.max_bytes:
            max_mb = self.max_bytes / (1024 * 1024)
            self._reject(f"File size too large. Maximum size is {max_mb:g}MB.")

        if len(self._prefix) < len(self._signature):
            needed = len(self._signature) - len(self._prefix)
            self._prefix += chunk[:needed]
            if len(self._prefix) == len(self._signature):
                self._check_signature()

    def finish(self) -> Accepted:
        """
        Close the stream and return the verdict.

        Raises:
            UploadRejectedError: If the payload was empty or shorter than the
                signature of its declared type
        """
        if self.state is InspectionState.REJECTED:
            raise UploadRejectedError(self.verdict.reason)
        if self.state is InspectionState.RECEIVING:
            if self.size_bytes == 0:
                self._reject("Uploaded file is empty.")
            if len(self._prefix) < len(self._signature):
                self._reject(
                    "File content does not match its declared type.")
            self.state = InspectionState.ACCEPTED
            self.verdict = Accepted(self.size_bytes, self.verified_type)
        return self.verdict

    def _check_signature(self) -> None:
        if self._prefix != self._signature:
            self._reject("File content does not match its declared type.")

    def _reject(self, reason: str) -> None:
        self.state = InspectionState.REJECTED
        self.verdict = Rejected(reason)
        raise UploadRejectedError(reason)


class UploadValidator:
    """
    Validates image uploads against the type whitelist and size ceiling.
    """

    def __init__(
        self,
        max_bytes: int = MAX_UPLOAD_BYTES,
        allowed_types: tuple[str, ...] = ALLOWED_MIME_TYPES,
    ):
        unknown = set(allowed_types) - set(IMAGE_SIGNATURES)
        if unknown:
            raise ValueError(f"No magic number known for: {sorted(unknown)}")
        self.max_bytes = max_bytes
        self.allowed_types = allowed_types

    def check_declared_type(self, content_type: str | None) -> str:
        """
        Check the client-declared MIME type.

        Returns:
            The normalized MIME type

        Raises:
            UploadRejectedError: If the type is not in the whitelist
        """
        declared = normalize_content_type(content_type)
        if declared not in self.allowed_types:
            raise UploadRejectedError(
                "Invalid file type. Only JPEG, PNG and GIF images are allowed.")
        return declared

    def start(self, content_type: str | None) -> UploadInspection:
        """Check the declared type, then open an inspection for the body."""
        declared = self.check_declared_type(content_type)
        return UploadInspection(declared, self.max_bytes)
