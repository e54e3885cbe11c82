"""Local filesystem storage for uploads."""

from __future__ import annotations

import os
import threading
from pathlib import Path
from typing import BinaryIO

from rtalks.config.settings import PRODUCTION_UPLOAD_PATH, UploadSettings
from rtalks.core.errors import StorageError, ValidationError
from rtalks.core.storage.file.models import UploadedFile
from rtalks.logging.setup import get_logger

logger = get_logger(__name__)

PUBLIC_MOUNT = "/uploads"


class StorageResolver:
    """
    Maps generated filenames to files on disk and to public URLs.

    Layout is flat: every upload lives directly under the base directory.
    - production: /opt/render/project/uploads (persistent volume)
    - otherwise:  ./uploads relative to the working directory
    - ``uploads.base_path`` overrides both

    Writes go to a hidden ``.<name>.part`` sibling and are renamed into
    place, so a failed or rejected upload never leaves a partial file under
    its final name. Stored files are made read-only.
    """

    def __init__(self, config: UploadSettings, production: bool = False):
        """
        Args:
            config: Upload settings
            production: Whether the process runs in production mode
        """
        self.config = config
        self.production = production
        self._ready = False
        self._lock = threading.Lock()

    def base_path(self) -> Path:
        if self.config.base_path:
            return Path(self.config.base_path)
        if self.production:
            return Path(PRODUCTION_UPLOAD_PATH)
        return Path.cwd() / "uploads"

    def ensure_ready(self) -> Path:
        """
        Create the upload directory if needed and check it is writable.

        Safe to call from concurrent first requests. The outcome is cached
        once the directory is known to work.

        Raises:
            StorageError: If the directory cannot be created or written
        """
        base = self.base_path()
        if self._ready:
            return base

        with self._lock:
            if self._ready:
                return base
            try:
                base.mkdir(parents=True, exist_ok=True)
                probe = base / f".write-probe-{os.getpid()}"
                probe.write_bytes(b"")
                probe.unlink()
            except OSError as e:
                logger.error(f"Upload directory {base} is not usable: {e}")
                raise StorageError(f"Upload directory {base} is not usable: {e}") from e
            self._ready = True
            logger.info(f"Upload directory ready: {base}")
        return base

    def path_for(self, filename: str) -> Path:
        """
        Resolve a stored filename to its path.

        Raises:
            ValidationError: If the name would leave the base directory
        """
        if (not filename or filename in (".", "..") or "/" in filename
                or "\\" in filename or "\x00" in filename):
            raise ValidationError("Invalid filename")
        base = self.base_path().resolve()
        path = (base / filename).resolve()
        if path.parent != base:
            raise ValidationError("Invalid filename")
        return path

    def public_url(self, filename: str, request_base_url: str | None = None) -> str:
        """
        Externally reachable URL for a stored file.

        The configured ``public_base_url`` wins; otherwise the URL is derived
        from the inbound request, falling back to a root-relative path.
        """
        if self.config.public_base_url:
            return f"{self.config.public_base_url.rstrip('/')}/{filename}"
        if request_base_url:
            return f"{request_base_url.rstrip('/')}{PUBLIC_MOUNT}/{filename}"
        return f"{PUBLIC_MOUNT}/{filename}"

    def write(
        self,
        filename: str,
        stream: BinaryIO,
        *,
        original_filename: str | None,
        declared_type: str,
        verified_type: str,
        owner_id: int | None = None,
        request_base_url: str | None = None,
    ) -> UploadedFile:
        """
        Persist an already validated stream under ``filename``.

        Raises:
            StorageError: On any disk failure, or if the name is taken
        """
        self.ensure_ready()
        target = self.path_for(filename)
        partial = target.with_name(f".{filename}.part")

        size = 0
        try:
            stream.seek(0)
            with open(partial, "xb") as f:
                while True:
                    chunk = stream.read(self.config.chunk_size)
                    if not chunk:
                        break
                    f.write(chunk)
                    size += len(chunk)
                f.flush()
                os.fsync(f.fileno())

            if target.exists():
                raise StorageError(f"Refusing to overwrite existing upload {filename}")
            os.chmod(partial, 0o444)
            os.replace(partial, target)
        except OSError as e:
            self._discard(partial)
            logger.error(f"Failed to write upload {filename}: {e}")
            raise StorageError(f"Failed to write upload {filename}") from e
        except BaseException:
            self._discard(partial)
            raise

        logger.info(f"Stored upload {filename} ({size} bytes)")
        return UploadedFile(
            filename=filename,
            original_filename=original_filename,
            declared_type=declared_type,
            verified_type=verified_type,
            size_bytes=size,
            storage_path=target,
            public_url=self.public_url(filename, request_base_url),
            owner_id=owner_id,
        )

    def delete(self, filename: str) -> bool:
        """
        Remove a stored file.

        Returns:
            True if a file was removed, False if it was already absent

        Raises:
            StorageError: If the file exists but cannot be removed
        """
        path = self.path_for(filename)
        try:
            path.unlink()
        except FileNotFoundError:
            logger.debug(f"Upload {filename} already absent")
            return False
        except OSError as e:
            logger.error(f"Failed to delete upload {filename}: {e}")
            raise StorageError(f"Failed to delete upload {filename}") from e
        logger.info(f"Deleted upload {filename}")
        return True

    def exists(self, filename: str) -> bool:
        return self.path_for(filename).is_file()

    @staticmethod
    def _discard(path: Path) -> None:
        try:
            path.unlink()
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.warning(f"Could not remove partial upload {path}: {e}")
