"""Object storage client for generated images (Supabase Storage REST API)."""

import base64
import secrets
import time
from typing import Protocol

import httpx
import structlog

from floragen.core.config import Settings
from floragen.services.exceptions import StorageUploadError

logger = structlog.get_logger(__name__)

_EXTENSIONS = {
    "image/png": "png",
    "image/jpeg": "jpg",
    "image/jpg": "jpg",
    "image/webp": "webp",
}


class ObjectStorage(Protocol):
    """Upload contract used by the pipeline."""

    async def upload(self, image_base64: str, mime_type: str, path: str) -> str: ...


def extension_for(mime_type: str | None) -> str:
    """File extension for an image MIME type (png when unknown)."""
    if not mime_type:
        return "png"
    return _EXTENSIONS.get(mime_type.lower(), "png")


def generate_storage_path(
    organization_id: str,
    product_id: str,
    image_type: str,
    extension: str = "png",
) -> str:
    """Build a unique object path for one generated image.

    Format: {org}/{product}/{image_type}-{timestamp_ms}-{suffix}.{ext}

    The random suffix keeps two uploads in the same millisecond apart, since the
    store rejects duplicate paths.
    """
    timestamp_ms = int(time.time() * 1000)
    suffix = secrets.token_hex(4)
    return f"{organization_id}/{product_id}/{image_type}-{timestamp_ms}-{suffix}.{extension}"


class ObjectStorageClient:
    """Uploads images to a storage bucket and returns their public URLs."""

    def __init__(
        self,
        base_url: str,
        service_key: str,
        bucket: str = "generated-images",
        http_client: httpx.AsyncClient | None = None,
        timeout: float = 60.0,
    ):
        """Initialize storage client.

        Args:
            base_url: Storage project URL (from STORAGE_URL env var)
            service_key: Service role key (from STORAGE_SERVICE_KEY env var)
            bucket: Target bucket name
            http_client: Shared AsyncClient; one is created (and owned) if omitted
            timeout: Upload timeout in seconds
        """
        self.base_url = base_url.rstrip("/")
        self.bucket = bucket
        self.timeout = timeout
        self.headers = {
            "Authorization": f"Bearer {service_key}",
            "apikey": service_key,
        }
        self._owns_client = http_client is None
        self._http = http_client or httpx.AsyncClient()

    @classmethod
    def from_settings(
        cls, settings: Settings, http_client: httpx.AsyncClient | None = None
    ) -> "ObjectStorageClient":
        return cls(
            base_url=settings.storage_url,
            service_key=settings.storage_service_key,
            bucket=settings.storage_bucket,
            http_client=http_client,
        )

    async def aclose(self) -> None:
        if self._owns_client:
            await self._http.aclose()

    def public_url(self, path: str) -> str:
        return f"{self.base_url}/storage/v1/object/public/{self.bucket}/{path}"

    async def upload(self, image_base64: str, mime_type: str, path: str) -> str:
        """Upload a base64 image to ``path`` (never overwrites).

        Args:
            image_base64: Image payload
            mime_type: Content type stored with the object
            path: Object path inside the bucket, see generate_storage_path

        Returns:
            Public URL of the stored object

        Raises:
            StorageUploadError: Invalid payload, duplicate path, HTTP or network error
        """
        try:
            payload = base64.b64decode(image_base64, validate=True)
        except ValueError as e:
            raise StorageUploadError(f"Storage upload failed: invalid image payload ({e})") from e

        try:
            response = await self._http.post(
                f"{self.base_url}/storage/v1/object/{self.bucket}/{path}",
                headers={**self.headers, "Content-Type": mime_type, "x-upsert": "false"},
                content=payload,
                timeout=self.timeout,
            )
        except httpx.TimeoutException as e:
            raise StorageUploadError(f"Storage upload timed out after {self.timeout:g}s") from e
        except httpx.HTTPError as e:
            raise StorageUploadError(f"Storage upload failed: {e}") from e

        if response.is_error:
            raise StorageUploadError(
                f"Storage upload failed ({response.status_code}): {response.text}"
            )

        logger.debug("storage.upload.completed", path=path, size_bytes=len(payload))
        return self.public_url(path)
