"""
Blob Store - durable storage for rendered PDFs and evidence images

Backends:
- local: files under LOCAL_STORAGE_PATH, served by the app at MEDIA_URL_PATH
- s3 / minio: boto3 client, public URLs through CDN_DOMAIN when configured

boto3 is blocking, so every S3 call runs in a worker thread.
"""

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Optional
import asyncio
import time
from functools import wraps

from haccp_audit.core.config import settings
from haccp_audit.core.exceptions import BlobDownloadError, BlobUploadError, StorageError
from haccp_audit.core.logging_config import logger


TRANSIENT_ERRORS = (ClientError, BotoCoreError, ConnectionError, TimeoutError)


def retry_with_backoff(max_retries: int = 3, base_delay: float = 1.0, max_delay: float = 30.0):
    """
    Decorator for retry logic with exponential backoff.

    Args:
        max_retries: Maximum number of retry attempts
        base_delay: Initial delay in seconds
        max_delay: Maximum delay cap in seconds
    """
    def decorator(func):
        @wraps(func)
        async def async_wrapper(*args, **kwargs):
            last_exception = None
            for attempt in range(max_retries):
                try:
                    return await func(*args, **kwargs)
                except TRANSIENT_ERRORS as e:
                    last_exception = e
                    if attempt < max_retries - 1:
                        delay = min(base_delay * (2 ** attempt), max_delay)
                        logger.warning(f"[Blob-Retry] Attempt {attempt + 1}/{max_retries} failed: {e}. Retrying in {delay:.1f}s...")
                        await asyncio.sleep(delay)
                    else:
                        logger.error(f"[Blob-Retry] All {max_retries} attempts failed: {e}")
            raise last_exception

        @wraps(func)
        def sync_wrapper(*args, **kwargs):
            last_exception = None
            for attempt in range(max_retries):
                try:
                    return func(*args, **kwargs)
                except TRANSIENT_ERRORS as e:
                    last_exception = e
                    if attempt < max_retries - 1:
                        delay = min(base_delay * (2 ** attempt), max_delay)
                        logger.warning(f"[Blob-Retry] Attempt {attempt + 1}/{max_retries} failed: {e}. Retrying in {delay:.1f}s...")
                        time.sleep(delay)
                    else:
                        logger.error(f"[Blob-Retry] All {max_retries} attempts failed: {e}")
            raise last_exception

        if asyncio.iscoroutinefunction(func):
            return async_wrapper
        return sync_wrapper
    return decorator


def artifact_name(form_id: str, version_number: int) -> str:
    """Blob key and download filename of a rendered form"""
    return f"Audit_Form_{form_id}_v{version_number}.pdf"


def _normalize_key(key: str) -> str:
    normalized = key.replace("\\", "/").lstrip("/")
    if not normalized or ".." in normalized.split("/"):
        raise StorageError(f"Invalid blob key: {key!r}")
    return normalized


class BlobStore(ABC):
    """Async interface shared by every storage backend"""

    def __init__(self, public_base_url: str):
        self.public_base_url = public_base_url.rstrip("/")

    def url_for(self, key: str) -> str:
        return f"{self.public_base_url}/{_normalize_key(key)}"

    def key_from_url(self, url: str) -> Optional[str]:
        """Map one of our own public URLs back to its key"""
        prefix = self.public_base_url + "/"
        if url.startswith(prefix):
            return url[len(prefix):].split("?", 1)[0]
        return None

    @abstractmethod
    async def put(self, key: str, data: bytes, content_type: str = "application/octet-stream") -> str:
        """Store bytes under key and return the public URL"""

    @abstractmethod
    async def get(self, key: str) -> Optional[bytes]:
        """Return stored bytes, or None when the key does not exist"""

    @abstractmethod
    async def delete(self, key: str) -> bool:
        ...

    @abstractmethod
    async def ping(self) -> bool:
        """Readiness probe"""


class LocalBlobStore(BlobStore):
    """Filesystem backend for development and tests"""

    def __init__(self, root: Path, public_base_url: str):
        super().__init__(public_base_url)
        self.root = Path(root)
        self.root.mkdir(parents=True, exist_ok=True)

    def _path(self, key: str) -> Path:
        return self.root / _normalize_key(key)

    def _write(self, path: Path, data: bytes) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = path.with_name(path.name + ".part")
        tmp_path.write_bytes(data)
        tmp_path.replace(path)

    async def put(self, key: str, data: bytes, content_type: str = "application/octet-stream") -> str:
        path = self._path(key)
        try:
            await asyncio.to_thread(self._write, path, data)
        except OSError as e:
            logger.error(f"[Blob-Local] ✗ Failed to write {key}: {e}")
            raise BlobUploadError(key, str(e))
        logger.info(f"[Blob-Local] ✓ Stored: {key} ({len(data)} bytes)")
        return self.url_for(key)

    async def get(self, key: str) -> Optional[bytes]:
        path = self._path(key)
        if not path.is_file():
            return None
        try:
            return await asyncio.to_thread(path.read_bytes)
        except OSError as e:
            raise BlobDownloadError(key, str(e))

    async def delete(self, key: str) -> bool:
        path = self._path(key)
        if not path.exists():
            return False
        await asyncio.to_thread(path.unlink)
        logger.info(f"[Blob-Local] Deleted: {key}")
        return True

    async def ping(self) -> bool:
        return self.root.is_dir()


class S3BlobStore(BlobStore):
    """AWS S3 or MinIO backend"""

    def __init__(self, bucket_name: str, use_minio: bool = False, public_base_url: Optional[str] = None):
        self._bucket_name = bucket_name
        self._use_minio = use_minio
        self._client = None
        self._initialized = False
        super().__init__(public_base_url or self._default_public_base_url())
        logger.info(f"S3BlobStore initialized with bucket: {self._bucket_name}")

    def _default_public_base_url(self) -> str:
        if settings.CDN_DOMAIN:
            return f"https://{settings.CDN_DOMAIN}"
        if self._use_minio:
            scheme = "https" if settings.MINIO_SECURE else "http"
            return f"{scheme}://{settings.MINIO_ENDPOINT}/{self._bucket_name}"
        return f"https://{self._bucket_name}.s3.{settings.AWS_REGION}.amazonaws.com"

    def _get_client(self):
        """Lazy initialization of S3/MinIO client"""
        if self._client is None:
            if self._use_minio:
                scheme = "https" if settings.MINIO_SECURE else "http"
                self._client = boto3.client(
                    's3',
                    endpoint_url=f"{scheme}://{settings.MINIO_ENDPOINT}",
                    aws_access_key_id=settings.AWS_ACCESS_KEY_ID,
                    aws_secret_access_key=settings.AWS_SECRET_ACCESS_KEY,
                    config=Config(
                        signature_version='s3v4',
                        s3={'addressing_style': 'path'}
                    ),
                    region_name=settings.AWS_REGION
                )
            elif settings.AWS_ACCESS_KEY_ID and settings.AWS_SECRET_ACCESS_KEY:
                self._client = boto3.client(
                    's3',
                    aws_access_key_id=settings.AWS_ACCESS_KEY_ID,
                    aws_secret_access_key=settings.AWS_SECRET_ACCESS_KEY,
                    region_name=settings.AWS_REGION
                )
            else:
                # Use IAM role credentials (automatic in ECS/EC2)
                self._client = boto3.client('s3', region_name=settings.AWS_REGION)
                logger.info("S3 client using IAM role credentials")

            self._ensure_bucket()

        return self._client

    def _ensure_bucket(self):
        """Create bucket if it doesn't exist"""
        if self._initialized:
            return

        try:
            self._client.head_bucket(Bucket=self._bucket_name)
            logger.info(f"Bucket '{self._bucket_name}' exists")
        except ClientError as e:
            error_code = e.response.get('Error', {}).get('Code', '')
            if error_code in ['404', 'NoSuchBucket']:
                try:
                    if self._use_minio or settings.AWS_REGION == 'us-east-1':
                        self._client.create_bucket(Bucket=self._bucket_name)
                    else:
                        # AWS S3 requires LocationConstraint for non-us-east-1
                        self._client.create_bucket(
                            Bucket=self._bucket_name,
                            CreateBucketConfiguration={'LocationConstraint': settings.AWS_REGION}
                        )
                    logger.info(f"Created bucket '{self._bucket_name}'")
                except ClientError as create_error:
                    logger.error(f"Failed to create bucket: {create_error}")
            else:
                logger.error(f"Error checking bucket: {e}")

        self._initialized = True

    @retry_with_backoff(max_retries=settings.UPLOAD_MAX_RETRIES, base_delay=settings.UPLOAD_RETRY_BASE_DELAY)
    async def _put_object(self, key: str, data: bytes, content_type: str) -> None:
        client = await asyncio.to_thread(self._get_client)
        await asyncio.to_thread(
            client.put_object,
            Bucket=self._bucket_name,
            Key=key,
            Body=data,
            ContentType=content_type,
        )

    async def put(self, key: str, data: bytes, content_type: str = "application/octet-stream") -> str:
        key = _normalize_key(key)
        try:
            await self._put_object(key, data, content_type)
        except TRANSIENT_ERRORS as e:
            logger.error(f"[S3-Upload] ✗ Failed to upload {key}: {e}")
            raise BlobUploadError(key, str(e))
        logger.info(f"[S3-Upload] ✓ Uploaded: {key} ({len(data)} bytes)")
        return self.url_for(key)

    async def get(self, key: str) -> Optional[bytes]:
        key = _normalize_key(key)
        try:
            client = await asyncio.to_thread(self._get_client)
            response = await asyncio.to_thread(client.get_object, Bucket=self._bucket_name, Key=key)
            return await asyncio.to_thread(response['Body'].read)
        except ClientError as e:
            if e.response.get('Error', {}).get('Code') in ('NoSuchKey', '404'):
                logger.warning(f"[S3-Download] File not found: {key}")
                return None
            raise BlobDownloadError(key, str(e))
        except (BotoCoreError, ConnectionError, TimeoutError) as e:
            raise BlobDownloadError(key, str(e))

    async def delete(self, key: str) -> bool:
        key = _normalize_key(key)
        try:
            client = await asyncio.to_thread(self._get_client)
            await asyncio.to_thread(client.delete_object, Bucket=self._bucket_name, Key=key)
            logger.info(f"Deleted blob from S3: {key}")
            return True
        except TRANSIENT_ERRORS as e:
            logger.error(f"Failed to delete blob from S3: {e}")
            return False

    async def ping(self) -> bool:
        try:
            client = await asyncio.to_thread(self._get_client)
            await asyncio.to_thread(client.head_bucket, Bucket=self._bucket_name)
            return True
        except TRANSIENT_ERRORS as e:
            logger.warning(f"S3 readiness check failed: {e}")
            return False


def create_blob_store() -> BlobStore:
    """Build the backend selected by STORAGE_MODE"""
    mode = settings.STORAGE_MODE.lower()
    if mode == "local":
        return LocalBlobStore(
            Path(settings.LOCAL_STORAGE_PATH),
            f"{settings.PUBLIC_BASE_URL.rstrip('/')}{settings.MEDIA_URL_PATH}",
        )
    if mode in ("s3", "minio"):
        return S3BlobStore(settings.effective_bucket_name, use_minio=(mode == "minio"))
    raise ValueError(f"Unknown STORAGE_MODE: {settings.STORAGE_MODE}")


_blob_store: Optional[BlobStore] = None


def get_blob_store() -> BlobStore:
    """FastAPI dependency returning the process-wide blob store"""
    global _blob_store
    if _blob_store is None:
        _blob_store = create_blob_store()
    return _blob_store
