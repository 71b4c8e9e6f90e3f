"""Archive of original invoice uploads in S3-compatible storage (MinIO).

Objects are laid out per tenant as ``{company_id}/{ocr_result_id}/original{ext}``
in a single bucket. Archiving is best effort: callers get an ``ArchiveResult``
instead of an exception and keep processing when the upload fails.

Based on MinIO Python SDK:
https://min.io/docs/minio/linux/developers/python/API.html
"""

import io
import logging
from datetime import timedelta
from pathlib import PurePath

from minio import Minio
from minio.error import S3Error
from pydantic import BaseModel
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential_jitter,
)

from intake.shared.config import Settings

logger = logging.getLogger(__name__)


def original_object_name(company_id: str, ocr_result_id: str, filename: str) -> str:
    """Object name of an archived upload; keeps the file extension."""
    suffix = PurePath(filename).suffix.lower() or ".bin"
    return f"{company_id}/{ocr_result_id}/original{suffix}"


class ArchiveResult(BaseModel):
    """Outcome of archiving one object.

    Attributes:
        success: Whether the object was written
        bucket: Target bucket
        object_name: Object name inside the bucket
        etag: ETag reported by the server
        size: Bytes written
        error: Reason for failure
    """

    success: bool
    bucket: str | None = None
    object_name: str | None = None
    etag: str | None = None
    size: int | None = None
    error: str | None = None

    @property
    def path(self) -> str | None:
        """``bucket/object`` path stored on the OCR result, or None on failure."""
        if not self.success or not self.object_name:
            return None
        return f"{self.bucket}/{self.object_name}"


class StorageService:
    """Writes originals to MinIO and hands out download links."""

    def __init__(self, settings: Settings) -> None:
        self.settings = settings
        self._client: Minio | None = None
        self._known_buckets: set[str] = set()

    def is_available(self) -> bool:
        """Archiving is enabled and both credentials are configured."""
        return bool(
            self.settings.storage_enabled
            and self.settings.storage_access_key
            and self.settings.storage_secret_key
        )

    def _get_client(self) -> Minio:
        """Create the MinIO client on first use.

        Raises:
            ValueError: If a storage credential is missing
        """
        if self._client is not None:
            return self._client

        missing = [
            name
            for name, value in (
                ("INTAKE_STORAGE_ACCESS_KEY", self.settings.storage_access_key),
                ("INTAKE_STORAGE_SECRET_KEY", self.settings.storage_secret_key),
            )
            if not value
        ]
        if missing:
            raise ValueError(f"Storage credentials not configured: set {', '.join(missing)}")

        self._client = Minio(
            endpoint=self.settings.storage_endpoint,
            access_key=self.settings.storage_access_key,
            secret_key=self.settings.storage_secret_key,
            secure=self.settings.storage_secure,
        )
        logger.info(f"MinIO client connected to {self.settings.storage_endpoint}")
        return self._client

    def health_check(self) -> bool:
        """True when the MinIO server answers a bucket listing."""
        if not self.is_available():
            return False
        try:
            self._get_client().list_buckets()
        except Exception as e:
            logger.warning(f"Storage health check failed: {e}")
            return False
        return True

    @retry(
        retry=retry_if_exception_type(S3Error),
        stop=stop_after_attempt(3),
        wait=wait_exponential_jitter(initial=1, max=10),
        reraise=True,
    )
    def _put(self, bucket: str, object_name: str, data: bytes, content_type: str) -> str:
        client = self._get_client()
        if bucket not in self._known_buckets:
            if not client.bucket_exists(bucket):
                client.make_bucket(bucket)
                logger.info(f"Created bucket {bucket}")
            self._known_buckets.add(bucket)
        written = client.put_object(
            bucket_name=bucket,
            object_name=object_name,
            data=io.BytesIO(data),
            length=len(data),
            content_type=content_type,
        )
        return written.etag

    def upload_bytes(
        self,
        data: bytes,
        object_name: str,
        content_type: str = "application/octet-stream",
        bucket: str | None = None,
    ) -> ArchiveResult:
        """Write ``data`` to ``bucket/object_name``; S3 errors are retried three times."""
        bucket = bucket or self.settings.storage_bucket
        try:
            etag = self._put(bucket, object_name, data, content_type)
        except S3Error as e:
            logger.error(f"Archiving {bucket}/{object_name} failed: {e}")
            return ArchiveResult(
                success=False,
                bucket=bucket,
                object_name=object_name,
                error=f"S3 error: {e.code} - {e.message}",
            )
        except Exception as e:
            logger.error(f"Archiving {bucket}/{object_name} failed: {e}")
            return ArchiveResult(success=False, bucket=bucket, object_name=object_name, error=str(e))

        logger.info(f"Archived {bucket}/{object_name} ({len(data)} bytes)")
        return ArchiveResult(
            success=True, bucket=bucket, object_name=object_name, etag=etag, size=len(data)
        )

    def archive_original(
        self,
        company_id: str,
        ocr_result_id: str,
        filename: str,
        data: bytes,
        content_type: str,
    ) -> ArchiveResult:
        """Archive the uploaded file of an OCR result under the tenant's prefix."""
        return self.upload_bytes(
            data, original_object_name(company_id, ocr_result_id, filename), content_type
        )

    def get_presigned_url(self, path: str, expires_seconds: int = 3600) -> str | None:
        """Presigned download URL for an archived ``bucket/object`` path, or None."""
        bucket, _, object_name = path.partition("/")
        try:
            return self._get_client().presigned_get_object(
                bucket_name=bucket,
                object_name=object_name,
                expires=timedelta(seconds=expires_seconds),
            )
        except Exception as e:
            logger.error(f"Presigned URL for {path} failed: {e}")
            return None
