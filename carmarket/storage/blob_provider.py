from typing import Optional

from azure.core.exceptions import ResourceNotFoundError
from azure.storage.blob import BlobServiceClient, ContentSettings

from ..config import settings
from .provider import StorageProvider, BUCKETS


class BlobStorageProvider(StorageProvider):
    """One public-read container per bucket, optionally prefixed per environment."""

    name = "blob"

    def __init__(self) -> None:
        if not settings.azure_blob_connection:
            raise RuntimeError("AZURE_BLOB_CONNECTION must be set")
        self._service = BlobServiceClient.from_connection_string(settings.azure_blob_connection)
        self._prefix = settings.azure_blob_container_prefix

    def _container(self, bucket: str) -> str:
        if bucket not in BUCKETS:
            raise ValueError(f"Unknown bucket {bucket}")
        return f"{self._prefix}{bucket}"

    def put(self, bucket: str, key: str, data: bytes, content_type: Optional[str] = None) -> None:
        client = self._service.get_blob_client(self._container(bucket), key.lstrip("/"))
        client.upload_blob(
            data,
            overwrite=True,
            content_settings=ContentSettings(content_type=content_type) if content_type else None,
        )

    def public_url(self, bucket: str, key: str) -> str:
        return self._service.get_blob_client(self._container(bucket), key.lstrip("/")).url

    def exists(self, bucket: str, key: str) -> bool:
        return self._service.get_blob_client(self._container(bucket), key.lstrip("/")).exists()

    def delete(self, bucket: str, key: str) -> None:
        client = self._service.get_blob_client(self._container(bucket), key.lstrip("/"))
        try:
            client.delete_blob()
        except ResourceNotFoundError:
            pass
