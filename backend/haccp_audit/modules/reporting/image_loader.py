"""
Evidence image loading for the PDF renderer.

Images are fetched before layout starts. Every failure is turned into an
``ImageFailure`` so one bad photo never aborts a report.
"""

import asyncio
import base64
import binascii
from dataclasses import dataclass
from io import BytesIO
from typing import Dict, Iterable, Optional, Union

import httpx
from PIL import Image as PILImage, UnidentifiedImageError

from haccp_audit.core.config import settings
from haccp_audit.core.exceptions import StorageError
from haccp_audit.core.logging_config import logger
from haccp_audit.services.blob_store import BlobStore

# Formats reportlab embeds without conversion
EMBEDDABLE_FORMATS = ("JPEG", "PNG")


@dataclass(frozen=True)
class EvidenceImage:
    data: bytes
    width: int
    height: int
    format: str  # JPEG or PNG
    transcoded: bool = False

    def stream(self) -> BytesIO:
        return BytesIO(self.data)


@dataclass(frozen=True)
class ImageFailure:
    reason: str


ImageResult = Union[EvidenceImage, ImageFailure]


class UnsupportedImageReference(ValueError):
    """Reference is neither inline data, a blob URL nor an http(s) URL"""


def prepare_image(raw: bytes) -> EvidenceImage:
    """
    Probe raw bytes with Pillow; anything other than JPEG/PNG is re-encoded
    as PNG (first frame only for animated formats).
    """
    with PILImage.open(BytesIO(raw)) as img:
        img.load()
        width, height = img.size
        if img.format in EMBEDDABLE_FORMATS:
            return EvidenceImage(raw, width, height, img.format)

        if img.mode not in ("1", "L", "LA", "P", "RGB", "RGBA"):
            img = img.convert("RGBA")
        out = BytesIO()
        img.save(out, format="PNG")
        return EvidenceImage(out.getvalue(), width, height, "PNG", transcoded=True)


class EvidenceImageLoader:
    """Fetch evidence images from data URIs, the blob store or http(s)"""

    def __init__(
        self,
        blob_store: Optional[BlobStore] = None,
        timeout: Optional[float] = None,
        max_bytes: Optional[int] = None,
    ):
        self.blob_store = blob_store
        self.timeout = timeout or settings.IMAGE_FETCH_TIMEOUT_SECONDS
        self.max_bytes = max_bytes or settings.MAX_IMAGE_BYTES

    async def _fetch_http(self, client: httpx.AsyncClient, url: str) -> bytes:
        response = await client.get(url)
        response.raise_for_status()
        return response.content

    async def _fetch(self, ref: str, client: httpx.AsyncClient) -> bytes:
        if ref.startswith("data:"):
            _, _, payload = ref.partition(",")
            return base64.b64decode("".join(payload.split()), validate=True)

        if self.blob_store is not None:
            key = self.blob_store.key_from_url(ref)
            if key is not None:
                data = await self.blob_store.get(key)
                if data is None:
                    raise FileNotFoundError(f"blob '{key}' does not exist")
                return data

        if ref.startswith(("http://", "https://")):
            return await self._fetch_http(client, ref)

        if "://" in ref or ref.startswith(("/", "./", "../", "~")):
            raise UnsupportedImageReference("unsupported image reference")

        # Legacy documents stored bare base64 without a data: prefix
        return base64.b64decode("".join(ref.split()), validate=True)

    async def load(self, ref: str, client: Optional[httpx.AsyncClient] = None) -> ImageResult:
        owns_client = client is None
        if owns_client:
            client = httpx.AsyncClient(timeout=self.timeout, follow_redirects=True)
        try:
            raw = await asyncio.wait_for(self._fetch(ref, client), timeout=self.timeout)
            if len(raw) > self.max_bytes:
                return ImageFailure(f"image exceeds {self.max_bytes} bytes")
            return await asyncio.to_thread(prepare_image, raw)
        except asyncio.TimeoutError:
            logger.warning(f"[Evidence] Timed out loading image {ref[:80]}")
            return ImageFailure("timed out fetching image")
        except httpx.HTTPStatusError as e:
            logger.warning(f"[Evidence] HTTP {e.response.status_code} for {ref[:80]}")
            return ImageFailure(f"HTTP {e.response.status_code}")
        except httpx.HTTPError as e:
            logger.warning(f"[Evidence] Fetch failed for {ref[:80]}: {e}")
            return ImageFailure(f"fetch failed: {type(e).__name__}")
        except (UnidentifiedImageError, PILImage.DecompressionBombError, SyntaxError, binascii.Error) as e:
            logger.warning(f"[Evidence] Unreadable image {ref[:80]}: {e}")
            return ImageFailure("unreadable image data")
        except UnsupportedImageReference:
            logger.warning(f"[Evidence] Refusing image reference {ref[:80]}")
            return ImageFailure("unsupported image reference")
        except (OSError, ValueError, StorageError) as e:
            logger.warning(f"[Evidence] Could not load {ref[:80]}: {e}")
            return ImageFailure("image could not be loaded")
        finally:
            if owns_client:
                await client.aclose()

    async def load_many(self, refs: Iterable[str]) -> Dict[str, ImageResult]:
        """Load distinct references concurrently"""
        unique = list(dict.fromkeys(ref for ref in refs if ref))
        if not unique:
            return {}
        async with httpx.AsyncClient(timeout=self.timeout, follow_redirects=True) as client:
            results = await asyncio.gather(*(self.load(ref, client) for ref in unique))
        failed = sum(1 for r in results if isinstance(r, ImageFailure))
        logger.info(f"[Evidence] Loaded {len(unique) - failed}/{len(unique)} image(s)")
        return dict(zip(unique, results))
