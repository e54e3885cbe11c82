"""Upload pipeline: rate limit, authentication, validation and storage."""

from __future__ import annotations

import tempfile
from dataclasses import dataclass
from enum import Enum
from typing import AsyncIterator, Protocol

from starlette.concurrency import run_in_threadpool

from rtalks.core.api.rate_limiter import RateLimiter
from rtalks.core.auth.service import AdminIdentity, AuthGate
from rtalks.core.errors import UploadRejectedError
from rtalks.core.monitoring import MetricsCollector
from rtalks.core.storage.file.filenames import FilenameGenerator, extension_for
from rtalks.core.storage.file.local_backend import StorageResolver
from rtalks.core.storage.file.models import UploadedFile
from rtalks.core.storage.file.validator import UploadValidator
from rtalks.logging.setup import get_logger

logger = get_logger(__name__)

# Bodies above this size spill from memory to an anonymous temp file
SPOOL_MEMORY_BYTES = 1024 * 1024


class UploadState(str, Enum):
    RECEIVED = "received"
    RATE_CHECKED = "rate_checked"
    AUTHENTICATED = "authenticated"
    VALIDATING = "validating"
    STORED = "stored"
    REJECTED = "rejected"


class UploadPart(Protocol):
    """A file part of a multipart body, read incrementally."""
    name: str
    filename: str | None
    content_type: str | None

    def chunks(self) -> AsyncIterator[bytes]: ...


@dataclass
class UploadAttempt:
    """Progress of one upload request through the pipeline."""
    client_key: str
    state: UploadState = UploadState.RECEIVED
    identity: AdminIdentity | None = None
    file: UploadedFile | None = None

    def advance(self, state: UploadState) -> None:
        logger.debug(f"Upload from {self.client_key}: {self.state.value} -> {state.value}")
        self.state = state


class UploadPipeline:
    """
    Runs one upload through RateLimiter, AuthGate, UploadValidator,
    FilenameGenerator and StorageResolver, in that order.

    The first failing step marks the attempt rejected and re-raises its
    typed error. Nothing is written under the storage directory until the
    payload has passed validation.

    Usage:
        attempt = pipeline.admit(client_key, request.headers.get("Authorization"))
        async for part in reader:
            if isinstance(part, FilePart):
                uploaded = await pipeline.receive(attempt, part)
    """

    def __init__(
        self,
        limiter: RateLimiter,
        gate: AuthGate,
        validator: UploadValidator,
        filenames: FilenameGenerator,
        resolver: StorageResolver,
        metrics: MetricsCollector | None = None,
    ):
        self.limiter = limiter
        self.gate = gate
        self.validator = validator
        self.filenames = filenames
        self.resolver = resolver
        self.metrics = metrics

    def admit(self, client_key: str, authorization: str | None) -> UploadAttempt:
        """
        Apply the upload rate limit and authenticate the caller.

        Raises:
            RateLimitError: If the client exhausted its upload window
            AuthError: If the bearer token is not valid
        """
        attempt = UploadAttempt(client_key=client_key)
        try:
            self.limiter.enforce(client_key, "upload")
            attempt.advance(UploadState.RATE_CHECKED)
            attempt.identity = self.gate.authenticate(authorization)
            attempt.advance(UploadState.AUTHENTICATED)
        except Exception:
            self._reject(attempt)
            raise
        return attempt

    async def receive(
        self,
        attempt: UploadAttempt,
        part: UploadPart | None,
        field_name: str = "image",
        request_base_url: str | None = None,
    ) -> UploadedFile:
        """
        Validate and persist the file part of an admitted attempt.

        Raises:
            UploadRejectedError: Missing file, bad type, extension, size or content
            StorageError: If the validated file could not be written
        """
        if attempt.state is not UploadState.AUTHENTICATED:
            raise RuntimeError(f"Upload attempt is {attempt.state.value}, not authenticated")

        attempt.advance(UploadState.VALIDATING)
        try:
            if part is None or not part.filename:
                raise UploadRejectedError("No file uploaded")
            if part.name != field_name:
                raise UploadRejectedError(f"Unexpected file field '{part.name}'")

            inspection = self.validator.start(part.content_type)
            extension_for(part.filename)

            with tempfile.SpooledTemporaryFile(max_size=SPOOL_MEMORY_BYTES) as spool:
                async for chunk in part.chunks():
                    inspection.feed(chunk)
                    spool.write(chunk)
                verdict = inspection.finish()

                filename = self.filenames.generate(part.filename, field_name)
                # Disk write and fsync run in a worker thread
                attempt.file = await run_in_threadpool(
                    self.resolver.write,
                    filename,
                    spool,
                    original_filename=part.filename,
                    declared_type=inspection.declared_type,
                    verified_type=verdict.verified_type,
                    owner_id=attempt.identity.id if attempt.identity else None,
                    request_base_url=request_base_url,
                )
        except Exception as e:
            logger.warning(f"Upload from {attempt.client_key} rejected: {e}")
            self._reject(attempt)
            raise

        attempt.advance(UploadState.STORED)
        if self.metrics:
            self.metrics.track_upload("stored")
        logger.info(
            f"Upload stored: {attempt.file.filename} "
            f"({attempt.file.size_bytes} bytes, {attempt.file.verified_type}) "
            f"by admin {attempt.file.owner_id}"
        )
        return attempt.file

    def _reject(self, attempt: UploadAttempt) -> None:
        attempt.advance(UploadState.REJECTED)
        if self.metrics:
            self.metrics.track_upload("rejected")
