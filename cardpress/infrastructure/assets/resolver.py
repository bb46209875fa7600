# infrastructure/assets/resolver.py
import asyncio
import logging
from typing import Optional
from urllib.parse import urljoin, urlsplit

import aiohttp

from cardpress.config.settings import settings
from cardpress.domain.errors import AssetUnavailable
from cardpress.domain.models import AssetReference, RemoteAsset, StoredAsset
from cardpress.infrastructure.storage.blob_store import BlobStore

# --- LOGGER SETUP ---
logger = logging.getLogger(__name__)
if not logger.handlers:
    handler = logging.StreamHandler()
    formatter = logging.Formatter('%(asctime)s [%(levelname)s] [ASSET] %(message)s', '%Y-%m-%d %H:%M:%S')
    handler.setFormatter(formatter)
    logger.addHandler(handler)
    logger.setLevel(logging.INFO)
    logger.propagate = False


class AssetResolver:
    """Single entry point turning an asset reference into image bytes.

    ``resolve`` returns ``None`` when the asset is absent for any reason; a
    missing image is never fatal to the render pass. Use as an async context
    manager so the HTTP session lives exactly as long as one render pass.
    """

    def __init__(
        self,
        blob_store: BlobStore,
        base_url: str = settings.ASSET_BASE_URL,
        timeout: int = settings.REQUEST_TIMEOUT,
        session: Optional[aiohttp.ClientSession] = None,
    ):
        self.blob_store = blob_store
        self.base_url = base_url
        self.timeout = aiohttp.ClientTimeout(total=timeout)
        self._session = session
        self._owns_session = session is None

    async def __aenter__(self) -> "AssetResolver":
        if self._session is None:
            self._session = aiohttp.ClientSession(timeout=self.timeout)
        return self

    async def __aexit__(self, *exc_info) -> None:
        if self._owns_session and self._session is not None:
            await self._session.close()
            self._session = None

    def absolute_url(self, url: str) -> str:
        parts = urlsplit(url)
        if parts.scheme:
            return url
        if parts.netloc:
            # protocol-relative, e.g. //cdn.example.com/a.png
            return f"{urlsplit(self.base_url).scheme or 'https'}:{url}"
        return urljoin(self.base_url.rstrip("/") + "/", url.lstrip("/"))

    async def resolve(self, ref: AssetReference) -> Optional[bytes]:
        try:
            if isinstance(ref, RemoteAsset):
                return await self._fetch_remote(ref.url)
            if isinstance(ref, StoredAsset):
                return await self.blob_store.open(ref.key)
            raise TypeError(f"Unsupported asset reference: {ref!r}")
        except AssetUnavailable as e:
            logger.warning(f"Asset unavailable: {e}")
        except (aiohttp.ClientError, asyncio.TimeoutError, OSError) as e:
            logger.warning(f"Failed to load image from source '{_describe(ref)[:70]}': {type(e).__name__}: {e}")
        except Exception as e:
            logger.warning(f"Unexpected error loading '{_describe(ref)[:70]}': {type(e).__name__}: {e}")
        return None

    async def _fetch_remote(self, url: str) -> bytes:
        if self._session is None:
            raise RuntimeError("AssetResolver must be entered before resolving remote assets")
        async with self._session.get(self.absolute_url(url)) as response:
            response.raise_for_status()
            return await response.read()


def _describe(ref: AssetReference) -> str:
    if isinstance(ref, RemoteAsset):
        return ref.url
    if isinstance(ref, StoredAsset):
        return f"blob:{ref.key}"
    return repr(ref)
