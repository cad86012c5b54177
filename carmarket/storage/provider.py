from typing import Optional


# Public buckets; objects are readable by anyone with the URL
BUCKETS = ("car-images", "brand-logos", "dealership-logos")


class StorageProvider:
    name = "base"

    def put(self, bucket: str, key: str, data: bytes, content_type: Optional[str] = None) -> None:
        raise NotImplementedError

    def public_url(self, bucket: str, key: str) -> str:
        raise NotImplementedError

    def exists(self, bucket: str, key: str) -> bool:
        raise NotImplementedError

    def delete(self, bucket: str, key: str) -> None:
        raise NotImplementedError
