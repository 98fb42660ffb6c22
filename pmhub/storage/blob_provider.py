from typing import Optional, BinaryIO
from urllib.parse import unquote, urlparse

from azure.storage.blob import BlobServiceClient, ContentSettings

from ..config import settings
from .provider import StorageProvider


class BlobStorageProvider(StorageProvider):
    name = "blob"

    def __init__(self) -> None:
        if not settings.azure_blob_connection or not settings.azure_blob_container:
            raise RuntimeError("AZURE_BLOB_CONNECTION and AZURE_BLOB_CONTAINER must be set")
        self._service = BlobServiceClient.from_connection_string(settings.azure_blob_connection)
        self._container = settings.azure_blob_container

    def _client(self, key: str):
        return self._service.get_blob_client(self._container, key.lstrip("/"))

    def put(self, key: str, stream: BinaryIO, content_type: Optional[str] = None) -> str:
        client = self._client(key)
        client.upload_blob(
            stream,
            overwrite=True,
            content_settings=ContentSettings(content_type=content_type) if content_type else None,
        )
        return client.url

    def public_url(self, key: str) -> str:
        return self._client(key).url

    def key_from_url(self, url: str) -> Optional[str]:
        # https://<account>.blob.core.windows.net/<container>/<key>
        path = unquote(urlparse(url or "").path).lstrip("/")
        prefix = f"{self._container}/"
        if not path.startswith(prefix):
            return None
        return path[len(prefix):]

    def exists(self, key: str) -> bool:
        return self._client(key).exists()

    def delete(self, key: str) -> None:
        self._client(key).delete_blob()
