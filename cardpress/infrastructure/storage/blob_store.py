# infrastructure/storage/blob_store.py
"""Read side of the blob store holding uploaded portraits and backgrounds.

A store only has to answer ``open(key)`` with the complete bytes of the blob
or raise ``AssetUnavailable``. Stores are long-lived and shared between render
passes, so they keep no per-pass state.
"""

import logging
import os
from pathlib import Path
from typing import Optional, Protocol

import aiofiles
import aiohttp
import cloudinary
import cloudinary.utils

from cardpress.config.settings import settings
from cardpress.domain.errors import AssetUnavailable

logger = logging.getLogger(__name__)


class BlobStore(Protocol):
    async def open(self, key: str) -> bytes: ...

    async def close(self) -> None: ...


class LocalBlobStore:
    """Blobs stored as files in a single directory, keyed by file name."""

    def __init__(self, root: Path):
        self.root = Path(root)

    def _path_for(self, key: str) -> Path:
        name = os.path.basename(key)
        if not name or name in (".", ".."):
            raise AssetUnavailable(key, "invalid key")
        return self.root / name

    async def open(self, key: str) -> bytes:
        path = self._path_for(key)
        if not path.is_file():
            raise AssetUnavailable(key, "not found")
        async with aiofiles.open(path, "rb") as f:
            return await f.read()

    async def close(self) -> None:
        return None


class CloudinaryBlobStore:
    """Blobs uploaded to Cloudinary under ``folder``, keyed by original file name."""

    def __init__(self, folder: str = settings.CLOUDINARY_FOLDER, timeout: int = settings.REQUEST_TIMEOUT):
        # CLOUDINARY_URL in the environment is read by the SDK itself; split vars override it.
        overrides = {
            "cloud_name": settings.CLOUDINARY_CLOUD_NAME,
            "api_key": settings.CLOUDINARY_API_KEY,
            "api_secret": settings.CLOUDINARY_API_SECRET,
        }
        cloudinary.config(secure=True, **{k: v for k, v in overrides.items() if v})
        self.folder = folder.strip("/")
        self.timeout = aiohttp.ClientTimeout(total=timeout)
        self._session: Optional[aiohttp.ClientSession] = None

    def url_for(self, key: str) -> str:
        stem, ext = os.path.splitext(os.path.basename(key))
        public_id = f"{self.folder}/{stem}" if self.folder else stem
        url, _options = cloudinary.utils.cloudinary_url(
            public_id,
            resource_type="image",
            format=ext.lstrip(".") or None,
            secure=True,
        )
        return url

    async def open(self, key: str) -> bytes:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=self.timeout)
        try:
            url = self.url_for(key)
        except ValueError as e:
            # e.g. "Must supply cloud_name" when credentials are missing
            raise AssetUnavailable(key, f"cannot build delivery URL: {e}") from e
        async with self._session.get(url) as response:
            if response.status == 404:
                raise AssetUnavailable(key, "not found")
            response.raise_for_status()
            return await response.read()

    async def close(self) -> None:
        if self._session is not None and not self._session.closed:
            await self._session.close()


def build_blob_store(backend: str = settings.BLOB_STORE_BACKEND) -> BlobStore:
    if backend == "cloudinary":
        logger.info(f"Blob store: Cloudinary folder '{settings.CLOUDINARY_FOLDER}'.")
        return CloudinaryBlobStore()
    if backend == "local":
        logger.info(f"Blob store: local directory '{settings.BLOB_STORE_DIR}'.")
        return LocalBlobStore(Path(settings.BLOB_STORE_DIR))
    raise ValueError(f"Unknown blob store backend: {backend}")
