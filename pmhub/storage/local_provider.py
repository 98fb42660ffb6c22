"""
Local filesystem storage provider for development.
Saves files to a local directory instead of Azure Blob Storage.
"""
import shutil
from typing import Optional, BinaryIO
from pathlib import Path
from urllib.parse import quote, unquote

from ..config import settings
from .provider import StorageProvider


class LocalStorageProvider(StorageProvider):
    """Local filesystem storage provider, served back through /files/local/{key}."""

    name = "local"

    def __init__(self, base_dir: Optional[str] = None):
        self.base_dir = Path(base_dir or settings.local_storage_dir)
        self.base_dir.mkdir(parents=True, exist_ok=True)

    def path_for(self, key: str) -> Path:
        # Remove leading slash and sanitize
        clean_key = key.lstrip("/").replace("..", "").replace("\\", "/")
        return self.base_dir / clean_key

    def _url_prefix(self) -> str:
        return f"{settings.public_base_url.rstrip('/')}/files/local/"

    def put(self, key: str, stream: BinaryIO, content_type: Optional[str] = None) -> str:
        path = self.path_for(key)
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "wb") as f:
            shutil.copyfileobj(stream, f)
        return self.public_url(key)

    def public_url(self, key: str) -> str:
        return f"{self._url_prefix()}{quote(key.lstrip('/'))}"

    def key_from_url(self, url: str) -> Optional[str]:
        prefix = self._url_prefix()
        if not url or not url.startswith(prefix):
            return None
        return unquote(url[len(prefix):].split("?", 1)[0])

    def exists(self, key: str) -> bool:
        return self.path_for(key).exists()

    def delete(self, key: str) -> None:
        path = self.path_for(key)
        if not path.exists():
            raise FileNotFoundError(key)
        path.unlink()
