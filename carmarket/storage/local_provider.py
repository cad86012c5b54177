"""
Local filesystem storage provider for development.
Objects live under <base_dir>/<bucket>/<key> and are served by /storage.
"""
from pathlib import Path
from typing import Optional
from urllib.parse import quote

from ..config import settings
from .provider import StorageProvider, BUCKETS


class LocalStorageProvider(StorageProvider):
    name = "local"

    def __init__(self, base_dir: Optional[str] = None):
        self.base_dir = Path(base_dir or settings.storage_local_dir)
        for bucket in BUCKETS:
            (self.base_dir / bucket).mkdir(parents=True, exist_ok=True)

    def path_for(self, bucket: str, key: str) -> Path:
        if bucket not in BUCKETS:
            raise ValueError(f"Unknown bucket {bucket}")
        clean_key = key.lstrip("/").replace("..", "").replace("\\", "/")
        return self.base_dir / bucket / clean_key

    def put(self, bucket: str, key: str, data: bytes, content_type: Optional[str] = None) -> None:
        path = self.path_for(bucket, key)
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "wb") as f:
            f.write(data)

    def public_url(self, bucket: str, key: str) -> str:
        return f"{settings.public_base_url}/storage/{bucket}/{quote(key.lstrip('/'))}"

    def exists(self, bucket: str, key: str) -> bool:
        return self.path_for(bucket, key).exists()

    def delete(self, bucket: str, key: str) -> None:
        self.path_for(bucket, key).unlink(missing_ok=True)
