"""Content-addressed local storage for uploaded bills."""

import asyncio
import hashlib
import os
import tempfile
from pathlib import Path
from typing import Optional

from billtracker.core.config import settings
from billtracker.core.exceptions import AppError
from billtracker.schemas.ingestion import StoredFile
from billtracker.utils.logging import get_logger

LOGGER = get_logger(__name__)


def compute_file_hash(content: bytes) -> str:
    """SHA-256 hex digest used as file identity."""
    return hashlib.sha256(content).hexdigest()


class StorageService:
    """Stores files under ``<root>/<first two hex chars>/<sha256>.pdf``.

    Storing the same bytes twice reuses the existing file.
    """

    def __init__(self, root: Optional[str] = None):
        self.root = Path(root or settings.storage_dir)

    def path_for(self, identity: str) -> Path:
        return self.root / identity[:2] / f"{identity}.pdf"

    async def store(self, content: bytes, file_name: str) -> StoredFile:
        """Write content to storage unless already present.

        Args:
            content: File bytes
            file_name: Original name, used for logging only

        Returns:
            StoredFile with identity, absolute path and size

        Raises:
            AppError: If the file cannot be written
        """
        identity = compute_file_hash(content)
        target = self.path_for(identity)

        try:
            reused = await asyncio.to_thread(self._write_if_absent, target, content)
        except OSError as e:
            LOGGER.error(
                f"Error storing file {file_name}: {str(e)}",
                exc_info=True,
                extra={"path": str(target)}
            )
            raise AppError(f"Storage error: {str(e)}", original_error=e)

        LOGGER.info(
            f"{'Reused' if reused else 'Stored'} file {file_name}",
            extra={"identity": identity, "size_bytes": len(content)}
        )
        return StoredFile(
            identity=identity,
            path=str(target.resolve()),
            size_bytes=len(content),
            reused=reused,
        )

    async def read(self, identity: str) -> bytes:
        return await asyncio.to_thread(self.path_for(identity).read_bytes)

    async def exists(self, identity: str) -> bool:
        return await asyncio.to_thread(self.path_for(identity).exists)

    @staticmethod
    def _write_if_absent(target: Path, content: bytes) -> bool:
        if target.exists():
            return True
        target.parent.mkdir(parents=True, exist_ok=True)
        # Write to a temp file then rename so readers never see a partial file
        fd, tmp_path = tempfile.mkstemp(dir=target.parent, suffix=".part")
        try:
            with os.fdopen(fd, "wb") as handle:
                handle.write(content)
            os.replace(tmp_path, target)
        except BaseException:
            if os.path.exists(tmp_path):
                os.unlink(tmp_path)
            raise
        return False
