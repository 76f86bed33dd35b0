from __future__ import annotations

import secrets
import time

from lexbot.config import settings
from lexbot.errors import ConfigurationError
from lexbot.models import MediaItem, StorageLocation
from lexbot.storage.gcs import GcsStorage
from lexbot.utils.http import download_bytes
from lexbot.utils.logging import get_logger

log = get_logger(__name__)


def _object_key(content_type: str) -> str:
    ext = content_type.split("/", 1)[1] if "/" in content_type else ""
    ext = ext.split(";", 1)[0].strip() or "bin"
    return f"{settings.GCS_MEDIA_PREFIX}/{int(time.time() * 1000)}-{secrets.token_hex(6)}.{ext}"


def store_channel_media(
    media_url: str,
    content_type: str,
    storage: GcsStorage,
    account_sid: str | None = None,
    auth_token: str | None = None,
) -> MediaItem:
    """Copy one Twilio-hosted attachment into the media bucket and describe it."""
    bucket = settings.GCS_BUCKET
    if not bucket:
        raise ConfigurationError("GCS_BUCKET is not configured")
    sid = account_sid or settings.TWILIO_ACCOUNT_SID
    token = auth_token or settings.TWILIO_AUTH_TOKEN
    if not sid or not token:
        raise ConfigurationError("Twilio credentials not configured")

    data = download_bytes(media_url, auth=(sid, token))
    object_key = _object_key(content_type)
    storage.upload_bytes(
        bucket,
        object_key,
        data,
        content_type=content_type,
        metadata={"source": "whatsapp"},
    )
    log.info(
        "whatsapp_media_stored",
        extra={
            "extra_fields": {
                "bucket": bucket,
                "object_key": object_key,
                "content_type": content_type,
                "size": len(data),
            }
        },
    )
    return MediaItem(
        storage_location=StorageLocation(bucket=bucket, object_key=object_key),
        content_type=content_type,
        size_bytes=len(data),
    )


def purge_expired_media(storage: GcsStorage, max_age_seconds: int | None = None) -> int:
    """Delete stored WhatsApp media past the retention window; returns the count removed."""
    bucket = settings.GCS_BUCKET
    if not bucket:
        raise ConfigurationError("GCS_BUCKET is not configured")
    age = max_age_seconds if max_age_seconds is not None else settings.GCS_MEDIA_RETENTION_SECONDS
    deleted = storage.delete_older_than(bucket, f"{settings.GCS_MEDIA_PREFIX}/", age)
    log.info("whatsapp_media_purged", extra={"extra_fields": {"bucket": bucket, "deleted": deleted}})
    return deleted


__all__ = ["store_channel_media", "purge_expired_media"]
