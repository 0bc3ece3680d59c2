"""
Media Resolver - moves inline evidence images into the blob store

Auditors attach photos as data URIs (or bare base64) in the form body. They
are uploaded before anything is written to the database, so a stored form
only ever references images by URL.
"""

import asyncio
import base64
import binascii
import re
import uuid
from io import BytesIO
from typing import List, Optional, Tuple

from PIL import Image as PILImage, UnidentifiedImageError

from haccp_audit.core.config import settings
from haccp_audit.core.exceptions import MediaResolutionError, StorageError
from haccp_audit.core.logging_config import logger
from haccp_audit.schemas.audit import Section
from haccp_audit.services.blob_store import BlobStore


DATA_URI_RE = re.compile(r"^data:(?P<mime>[\w.+-]+/[\w.+-]+)?(?P<params>(;[^,;]+)*),(?P<data>.*)$", re.DOTALL)

# Pillow format name -> (extension, content type)
IMAGE_FORMATS = {
    "JPEG": ("jpg", "image/jpeg"),
    "PNG": ("png", "image/png"),
    "GIF": ("gif", "image/gif"),
    "WEBP": ("webp", "image/webp"),
    "BMP": ("bmp", "image/bmp"),
    "TIFF": ("tiff", "image/tiff"),
}


def is_inline_image(value: Optional[str]) -> bool:
    """True for payloads that still need uploading"""
    if not value:
        return False
    if value.startswith("data:"):
        return True
    if "://" in value or value.startswith(("/", "./", "../", "~")):
        return False
    return True


def is_image_url(value: str) -> bool:
    """http(s) URLs, including our own blob store's, are stored as they are"""
    return value.startswith(("http://", "https://"))


def decode_inline_image(value: str, max_bytes: int) -> bytes:
    """Decode a data URI or bare base64 string into raw bytes"""
    if value.startswith("data:"):
        match = DATA_URI_RE.match(value)
        if not match:
            raise MediaResolutionError("malformed data URI")
        if ";base64" not in (match.group("params") or ""):
            raise MediaResolutionError("data URI is not base64 encoded")
        payload = match.group("data")
    else:
        payload = value

    payload = "".join(payload.split())
    try:
        data = base64.b64decode(payload, validate=True)
    except (binascii.Error, ValueError):
        raise MediaResolutionError("image payload is not valid base64")

    if not data:
        raise MediaResolutionError("image payload is empty")
    if len(data) > max_bytes:
        raise MediaResolutionError(f"image is {len(data)} bytes, limit is {max_bytes}")
    return data


def sniff_image_format(data: bytes) -> Tuple[str, str]:
    """Return (extension, content type) of an encoded image"""
    try:
        with PILImage.open(BytesIO(data)) as img:
            fmt = img.format
            img.verify()
    except (UnidentifiedImageError, OSError, SyntaxError) as e:
        raise MediaResolutionError(f"payload is not a readable image ({e})")

    if fmt in IMAGE_FORMATS:
        return IMAGE_FORMATS[fmt]
    return (fmt or "bin").lower(), f"image/{(fmt or 'octet-stream').lower()}"


class MediaResolver:
    """Uploads inline images found in checklist sections"""

    def __init__(self, blob_store: BlobStore, max_bytes: Optional[int] = None, prefix: str = "evidence"):
        self.blob_store = blob_store
        self.max_bytes = max_bytes or settings.MAX_IMAGE_BYTES
        self.prefix = prefix

    async def _upload(self, value: str, location: str) -> str:
        try:
            data = decode_inline_image(value, self.max_bytes)
            ext, content_type = sniff_image_format(data)
        except MediaResolutionError as e:
            e.details["location"] = location
            raise

        key = f"{self.prefix}/{uuid.uuid4().hex}.{ext}"
        url = await self.blob_store.put(key, data, content_type)
        logger.debug(f"[Media] {location} -> {key}")
        return url

    async def _discard(self, urls: List[str]) -> None:
        """Remove images uploaded before a sibling upload failed"""
        for url in urls:
            key = self.blob_store.key_from_url(url)
            if key is None:
                continue
            try:
                await self.blob_store.delete(key)
            except (StorageError, OSError) as e:
                logger.warning(f"[Media] Could not remove orphaned image {key}: {e}")

    async def resolve_sections(self, sections: List[Section]) -> List[Section]:
        """
        Return a copy of ``sections`` with every inline image replaced by a
        blob-store URL. Any failure aborts the whole resolution.
        """
        jobs = []
        for s_idx, section in enumerate(sections):
            for q_idx, question in enumerate(section.questions):
                image = question.image
                if is_inline_image(image):
                    jobs.append((s_idx, q_idx, image))
                elif image and not is_image_url(image):
                    raise MediaResolutionError(
                        "image must be an http(s) URL or inline base64 data",
                        location=f"sections[{s_idx}].questions[{q_idx}].image",
                    )

        if not jobs:
            return list(sections)

        results = await asyncio.gather(*(
            self._upload(image, f"sections[{s_idx}].questions[{q_idx}].image")
            for s_idx, q_idx, image in jobs
        ), return_exceptions=True)
        errors = [r for r in results if isinstance(r, BaseException)]
        if errors:
            await self._discard([r for r in results if isinstance(r, str)])
            raise errors[0]
        urls = results
        logger.info(f"[Media] Resolved {len(urls)} inline image(s)")

        replacements = {(s_idx, q_idx): url for (s_idx, q_idx, _), url in zip(jobs, urls)}
        resolved = []
        for s_idx, section in enumerate(sections):
            questions = [
                question.model_copy(update={"image": replacements[(s_idx, q_idx)]})
                if (s_idx, q_idx) in replacements else question
                for q_idx, question in enumerate(section.questions)
            ]
            resolved.append(section.model_copy(update={"questions": questions}))
        return resolved
