from mimetypes import guess_type

from fastapi import APIRouter, HTTPException
from fastapi.responses import FileResponse

from ..config import settings
from ..storage.blob_provider import BlobStorageProvider
from ..storage.local_provider import LocalStorageProvider
from ..storage.provider import StorageProvider


router = APIRouter(prefix="/files", tags=["files"])


def get_storage() -> StorageProvider:
    """
    Get storage provider based on configuration.
    Uses BlobStorageProvider when STORAGE_PROVIDER=blob and Azure Blob is configured,
    LocalStorageProvider otherwise.
    """
    if settings.storage_provider == "blob" and settings.azure_blob_connection and settings.azure_blob_container:
        return BlobStorageProvider()
    return LocalStorageProvider()


@router.get("/local/{file_path:path}")
def serve_local_file(file_path: str):
    """Serve files from local storage."""
    local_storage = LocalStorageProvider()
    path = local_storage.path_for(file_path)

    # Ensure the file is within the storage directory
    storage_base = local_storage.base_dir.resolve()
    if not str(path.resolve()).startswith(str(storage_base)):
        raise HTTPException(status_code=403, detail="Access denied")
    if not path.exists():
        raise HTTPException(status_code=404, detail="File not found")

    content_type = guess_type(str(path))[0] or "application/octet-stream"
    return FileResponse(path=str(path), media_type=content_type, filename=path.name)
