"""Upload storage: validation, naming, local persistence and the pipeline."""

from __future__ import annotations

from .validator import UploadValidator, UploadInspection, Accepted, Rejected
from .filenames import FilenameGenerator, extension_for
from .models import UploadedFile
from .local_backend import StorageResolver
from .pipeline import UploadPipeline, UploadAttempt, UploadState

__all__ = [
    "UploadValidator",
    "UploadInspection",
    "Accepted",
    "Rejected",
    "FilenameGenerator",
    "extension_for",
    "UploadedFile",
    "StorageResolver",
    "UploadPipeline",
    "UploadAttempt",
    "UploadState",
]
