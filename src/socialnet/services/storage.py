"""Object storage for uploaded post images."""

import logging
import secrets
from abc import ABC, abstractmethod
from pathlib import PurePosixPath

import anyio
from starlette.requests import HTTPConnection

from socialnet.services.base import TransientBackendError
from socialnet.services.errors import ValidationError

logger = logging.getLogger(__name__)

ALLOWED_IMAGE_TYPES = {
    "image/jpeg": "jpg",
    "image/png": "png",
    "image/gif": "gif",
    "image/webp": "webp",
}


def generate_image_path(owner_id: int, filename: str | None, content_type: str | None) -> str:
    """Build a random storage path ``<owner_id>/<token>.<ext>`` for an upload."""
    ext = None
    if filename and "." in filename:
        ext = filename.rsplit(".", 1)[1].lower()
    if not ext or not ext.isalnum():
        ext = ALLOWED_IMAGE_TYPES.get(content_type or "", "bin")
    return f"{owner_id}/{secrets.token_hex(8)}.{ext}"


def validate_image(data: bytes, content_type: str | None, max_bytes: int) -> None:
    """Reject uploads that are not images or exceed ``max_bytes``."""
    if content_type not in ALLOWED_IMAGE_TYPES:
        raise ValidationError("Only JPEG, PNG, GIF and WebP images are allowed", field="image")
    if len(data) > max_bytes:
        limit_mb = max_bytes // (1024 * 1024)
        raise ValidationError(f"Image size should be less than {limit_mb}MB", field="image")


class ObjectStorage(ABC):
    """Bucket-style storage addressed by relative paths."""

    @abstractmethod
    async def upload(self, path: str, data: bytes, content_type: str | None = None) -> str:
        """Store ``data`` at ``path`` and return the stored path."""
        ...

    @abstractmethod
    async def delete(self, path: str) -> None:
        """Remove the object at ``path``. Missing objects are ignored."""
        ...

    @abstractmethod
    def get_public_url(self, path: str) -> str:
        """Return the URL clients use to fetch ``path``."""
        ...


class LocalObjectStorage(ObjectStorage):
    """Stores objects below a local directory served as static files."""

    def __init__(self, root: str, base_url: str) -> None:
        self.root = anyio.Path(root)
        self.base_url = base_url.rstrip("/")

    def _resolve(self, path: str) -> anyio.Path:
        relative = PurePosixPath(path)
        if relative.is_absolute() or ".." in relative.parts or not relative.parts:
            raise ValidationError(f"Invalid storage path: {path}")
        return self.root.joinpath(*relative.parts)

    async def upload(self, path: str, data: bytes, content_type: str | None = None) -> str:
        target = self._resolve(path)
        try:
            await target.parent.mkdir(parents=True, exist_ok=True)
            await target.write_bytes(data)
        except OSError as e:
            raise TransientBackendError(f"Error uploading image: {e}") from e
        logger.info("Stored %s (%d bytes, %s)", path, len(data), content_type or "unknown type")
        return path

    async def delete(self, path: str) -> None:
        target = self._resolve(path)
        try:
            await target.unlink(missing_ok=True)
        except OSError as e:
            raise TransientBackendError(f"Error deleting image: {e}") from e
        logger.info("Deleted %s", path)

    def get_public_url(self, path: str) -> str:
        self._resolve(path)
        return f"{self.base_url}/{path}"


def get_storage(connection: HTTPConnection) -> ObjectStorage:
    """Dependency returning the process-wide object storage."""
    return connection.app.state.storage
