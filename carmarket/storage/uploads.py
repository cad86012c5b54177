"""
Image upload handling shared by car photos, brand logos and dealership logos.
"""
import io
import os
import uuid
from datetime import datetime
from typing import Tuple

from PIL import Image as PILImage, UnidentifiedImageError
from slugify import slugify

from ..config import settings
from ..services.errors import ValidationFailed
from .provider import StorageProvider
from .local_provider import LocalStorageProvider
from .blob_provider import BlobStorageProvider


ALLOWED_FORMATS = {
    "JPEG": ("image/jpeg", ".jpg"),
    "PNG": ("image/png", ".png"),
    "WEBP": ("image/webp", ".webp"),
    "GIF": ("image/gif", ".gif"),
}


def get_storage() -> StorageProvider:
    """Blob storage when STORAGE_PROVIDER=blob, local filesystem otherwise."""
    if settings.storage_provider == "blob":
        return BlobStorageProvider()
    return LocalStorageProvider()


def validate_image(data: bytes, max_bytes: int) -> Tuple[str, str]:
    """Returns (content_type, extension) for an acceptable image."""
    if not data:
        raise ValidationFailed("Empty file")
    if len(data) > max_bytes:
        raise ValidationFailed(f"File too large (max {max_bytes // (1024 * 1024)} MB)")
    try:
        with PILImage.open(io.BytesIO(data)) as im:
            fmt = im.format
            im.verify()
    except (UnidentifiedImageError, OSError, SyntaxError):
        raise ValidationFailed("File is not a valid image")
    if fmt not in ALLOWED_FORMATS:
        raise ValidationFailed(f"Unsupported image format {fmt}")
    return ALLOWED_FORMATS[fmt]


def object_key(prefix: str, original_name: str, ext: str) -> str:
    stem = slugify(os.path.splitext(original_name or "")[0]) or "image"
    today = datetime.utcnow().strftime("%Y/%m")
    return f"{prefix}/{today}/{uuid.uuid4().hex[:12]}-{stem[:60]}{ext}"


def store_image(
    storage: StorageProvider,
    bucket: str,
    prefix: str,
    original_name: str,
    data: bytes,
    max_bytes: int,
) -> Tuple[str, str]:
    """Validate and upload; returns (key, public_url)."""
    content_type, ext = validate_image(data, max_bytes)
    key = object_key(prefix, original_name, ext)
    storage.put(bucket, key, data, content_type)
    return key, storage.public_url(bucket, key)
