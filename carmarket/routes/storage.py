from fastapi import APIRouter, Depends
from fastapi.responses import FileResponse

from ..services.errors import NotFound
from ..storage.local_provider import LocalStorageProvider
from ..storage.provider import StorageProvider, BUCKETS
from ..storage.uploads import get_storage


router = APIRouter(prefix="/storage", tags=["storage"])


@router.get("/{bucket}/{key:path}")
def serve_local_object(bucket: str, key: str, storage: StorageProvider = Depends(get_storage)):
    """Public objects of the local provider; blob URLs point straight at Azure."""
    if bucket not in BUCKETS or not isinstance(storage, LocalStorageProvider):
        raise NotFound("Object not found")
    path = storage.path_for(bucket, key)
    if not path.is_file():
        raise NotFound("Object not found")
    return FileResponse(path, headers={"Cache-Control": "public, max-age=86400"})
