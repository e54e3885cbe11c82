"""Descriptor for a file persisted by the upload pipeline."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any


@dataclass(frozen=True)
class UploadedFile:
    """
    A stored upload.

    ``original_filename`` is client supplied and untrusted; it is kept for
    display only and never used to build a path.
    """
    filename: str
    original_filename: str | None
    declared_type: str
    verified_type: str
    size_bytes: int
    storage_path: Path
    public_url: str
    owner_id: int | None = None
    created_at: datetime = field(
        default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> dict[str, Any]:
        """Public representation (the storage path is not exposed)."""
        return {
            "filename": self.filename,
            "original_filename": self.original_filename,
            "declared_type": self.declared_type,
            "verified_type": self.verified_type,
            "size_bytes": self.size_bytes,
            "url": self.public_url,
            "owner_id": self.owner_id,
            "created_at": self.created_at.isoformat(),
        }
