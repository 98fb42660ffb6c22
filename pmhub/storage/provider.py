from typing import BinaryIO, Optional


class StorageProvider:
    """Object store used for uploaded documents and message attachments.

    Keys are relative paths such as ``uploads/files-1712345678901-123456789.pdf``.
    ``delete`` raises on failure; callers that treat deletion as best-effort
    catch and log.
    """

    name = "base"

    def put(self, key: str, stream: BinaryIO, content_type: Optional[str] = None) -> str:
        """Store the stream under key and return its public URL."""
        raise NotImplementedError

    def public_url(self, key: str) -> str:
        raise NotImplementedError

    def key_from_url(self, url: str) -> Optional[str]:
        """Inverse of public_url; None when the URL does not belong to this store."""
        raise NotImplementedError

    def exists(self, key: str) -> bool:
        raise NotImplementedError

    def delete(self, key: str) -> None:
        raise NotImplementedError
