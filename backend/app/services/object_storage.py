"""Local-disk object storage with public URLs, organised in buckets."""

import logging
import re
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from app.config import get_settings

logger = logging.getLogger(__name__)

BLOG_IMAGES_BUCKET = "blog-images"
ALLOWED_IMAGE_TYPES = {"image/jpeg", "image/png", "image/webp", "image/gif"}
MAX_IMAGE_BYTES = 5 * 1024 * 1024

_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9._-]+")


class StorageError(ValueError):
    pass


class StorageValidationError(StorageError):
    pass


def sanitize_filename(filename: str) -> str:
    name = Path(filename or "").name
    cleaned = _UNSAFE_CHARS.sub("_", name).strip("._")
    return cleaned or "image"


def blog_image_key(filename: str, timestamp_ms: Optional[int] = None) -> str:
    stamp = timestamp_ms if timestamp_ms is not None else int(time.time() * 1000)
    return f"blog/{stamp}_{sanitize_filename(filename)}"


@dataclass
class ObjectStorage:
    root_dir: str
    public_base_url: str

    def __post_init__(self) -> None:
        self.root = Path(self.root_dir)
        self.root.mkdir(parents=True, exist_ok=True)

    def _object_path(self, bucket: str, key: str) -> Path:
        path = (self.root / bucket / key).resolve()
        if self.root.resolve() not in path.parents:
            raise StorageValidationError("Invalid object key")
        return path

    def public_url(self, bucket: str, key: str) -> str:
        return f"{self.public_base_url.rstrip('/')}/{bucket}/{key}"

    def put(self, bucket: str, key: str, data: bytes) -> str:
        path = self._object_path(bucket, key)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(data)
        logger.info("storage_put bucket=%s key=%s bytes=%s", bucket, key, len(data))
        return self.public_url(bucket, key)

    def upload_blog_image(self, filename: str, content_type: Optional[str], data: bytes) -> tuple[str, str]:
        if content_type not in ALLOWED_IMAGE_TYPES:
            raise StorageValidationError("Only JPEG, PNG, WEBP or GIF images are allowed")
        if not data:
            raise StorageValidationError("Empty file")
        if len(data) > MAX_IMAGE_BYTES:
            raise StorageValidationError("Image exceeds 5 MB")
        key = blog_image_key(filename)
        return key, self.put(BLOG_IMAGES_BUCKET, key, data)


_settings = get_settings()
object_storage = ObjectStorage(root_dir=_settings.storage_dir, public_base_url=_settings.public_storage_url)


def get_object_storage() -> ObjectStorage:
    return object_storage
