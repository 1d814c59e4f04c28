"""Object store for uploaded documents and per-page artifacts."""
import asyncio
import uuid
from pathlib import Path
from typing import Optional
from urllib.parse import unquote, urlparse

import httpx

from lexivault.exceptions import AssetNotFoundError
from lexivault.utils.logger import logger


CONTENT_TYPE_SUFFIXES = {
    "application/pdf": ".pdf",
    "image/png": ".png",
    "image/jpeg": ".jpg",
}


class AssetStore:
    """Stores opaque blobs in a local directory and resolves them to URLs."""

    def __init__(self, root_dir: str = "./data/assets", fetch_timeout: float = 60.0):
        """
        Initialize asset store.

        Args:
            root_dir: Directory holding stored blobs
            fetch_timeout: Timeout in seconds for fetching remote URLs
        """
        self.root_dir = Path(root_dir)
        self.root_dir.mkdir(parents=True, exist_ok=True)
        self.fetch_timeout = fetch_timeout

    def _path_for(self, reference: str) -> Path:
        # References are generated names; refuse anything that escapes root_dir
        path = (self.root_dir / reference).resolve()
        if path.parent != self.root_dir.resolve():
            raise AssetNotFoundError(f"Invalid asset reference: {reference}")
        return path

    def store(self, data: bytes, content_type: str = "application/pdf") -> str:
        """
        Store bytes and return an opaque reference.

        Args:
            data: Blob content
            content_type: MIME type used to pick the file suffix

        Returns:
            Reference string usable with get_url
        """
        reference = f"{uuid.uuid4().hex}{CONTENT_TYPE_SUFFIXES.get(content_type, '.bin')}"
        self._path_for(reference).write_bytes(data)
        logger.debug(f"Stored asset {reference} ({len(data)} bytes)")
        return reference

    def get_url(self, reference: Optional[str]) -> Optional[str]:
        """Return a fetchable URL for a reference, or None if it does not exist."""
        if not reference:
            return None
        try:
            path = self._path_for(reference)
        except AssetNotFoundError:
            return None
        if not path.exists():
            return None
        return path.as_uri()

    async def fetch(self, url: str) -> bytes:
        """
        Fetch the bytes behind a URL returned by get_url (or any http(s) URL).

        Raises:
            AssetNotFoundError: If the resource cannot be read
        """
        parsed = urlparse(url)
        if parsed.scheme == "file":
            path = Path(unquote(parsed.path))
            if not path.exists():
                raise AssetNotFoundError(f"Asset not found: {url}")
            return await asyncio.to_thread(path.read_bytes)

        if parsed.scheme in ("http", "https"):
            async with httpx.AsyncClient(timeout=self.fetch_timeout) as client:
                try:
                    response = await client.get(url)
                    response.raise_for_status()
                except httpx.HTTPError as e:
                    raise AssetNotFoundError(f"Failed to fetch {url}: {str(e)}") from e
                return response.content

        raise AssetNotFoundError(f"Unsupported asset URL: {url}")

    def delete(self, reference: Optional[str]) -> None:
        if not reference:
            return
        try:
            self._path_for(reference).unlink(missing_ok=True)
        except AssetNotFoundError:
            logger.warning(f"Refusing to delete invalid asset reference: {reference}")
