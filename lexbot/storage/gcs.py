from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Protocol

from lexbot.config import settings
from lexbot.errors import ConfigurationError, CredentialIssuanceError
from lexbot.utils.backoff import retry
from lexbot.utils.logging import get_logger

log = get_logger(__name__)

try:
    from google.cloud import storage
except Exception:
    storage = None


class UrlSigner(Protocol):
    def sign_url(self, bucket: str, object_key: str, ttl_seconds: int) -> str: ...


class GcsStorage:
    """Thin wrapper over google-cloud-storage for WhatsApp media objects."""

    def __init__(self, project_id: str | None = None, client=None):
        self.project_id = project_id or settings.VERTEX_PROJECT_ID
        self._client = client

    def _get_client(self):
        if self._client is None:
            if storage is None:
                raise ConfigurationError("google-cloud-storage is not installed")
            self._client = storage.Client(project=self.project_id)
        return self._client

    def sign_url(self, bucket: str, object_key: str, ttl_seconds: int) -> str:
        """V4 GET URL for one object, valid for ``ttl_seconds``. Raises on a missing object."""
        blob = self._get_client().bucket(bucket).blob(object_key)
        if not retry(blob.exists, operation="gcs_exists"):
            raise CredentialIssuanceError(f"object not found: gs://{bucket}/{object_key}")
        return retry(
            lambda: blob.generate_signed_url(
                version="v4",
                expiration=timedelta(seconds=ttl_seconds),
                method="GET",
            ),
            operation="gcs_sign",
        )

    def upload_bytes(
        self,
        bucket: str,
        object_key: str,
        data: bytes,
        content_type: str | None = None,
        metadata: dict[str, str] | None = None,
    ) -> str:
        blob = self._get_client().bucket(bucket).blob(object_key)
        if metadata:
            blob.metadata = metadata
        retry(
            lambda: blob.upload_from_string(data, content_type=content_type or "application/octet-stream"),
            operation="gcs_upload",
        )
        return f"gs://{bucket}/{object_key}"

    def delete_object(self, bucket: str, object_key: str) -> None:
        blob = self._get_client().bucket(bucket).blob(object_key)
        retry(blob.delete, operation="gcs_delete")

    def delete_older_than(self, bucket: str, prefix: str, max_age_seconds: int) -> int:
        cutoff = datetime.now(timezone.utc) - timedelta(seconds=max_age_seconds)
        deleted = 0
        for blob in self._get_client().list_blobs(bucket, prefix=prefix):
            created = getattr(blob, "time_created", None)
            if created is None or created > cutoff:
                continue
            try:
                retry(blob.delete, operation="gcs_delete")
                deleted += 1
            except Exception as exc:  # pragma: no cover - depends on GCS client
                log.error(
                    "gcs_delete_failed",
                    extra={
                        "extra_fields": {
                            "bucket": bucket,
                            "object_key": blob.name,
                            "error": exc.__class__.__name__,
                        }
                    },
                )
        return deleted


__all__ = ["GcsStorage", "UrlSigner"]
