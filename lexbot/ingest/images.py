from __future__ import annotations

import asyncio
from typing import List, Optional

from lexbot.config import settings
from lexbot.models import EphemeralCredential, MediaReference
from lexbot.storage.gcs import UrlSigner
from lexbot.utils.logging import get_logger
from lexbot.utils.metrics import record_media

log = get_logger(__name__)


def _issue_one(thread_id: str, ref: MediaReference, signer: UrlSigner) -> Optional[EphemeralCredential]:
    # TTL is read per call so a settings change applies to the next issuance.
    ttl_seconds = int(settings.GCS_DOWNLOAD_URL_TTL_SECONDS)
    loc = ref.storage_location
    try:
        url = signer.sign_url(loc.bucket, loc.object_key, ttl_seconds)
    except Exception as exc:
        log.warning(
            "credential_issue_failed",
            extra={
                "extra_fields": {
                    "thread_id": thread_id,
                    "bucket": loc.bucket,
                    "object_key": loc.object_key,
                    "content_type": ref.content_type,
                    "error": exc.__class__.__name__,
                }
            },
        )
        record_media("image_failed")
        return None
    return EphemeralCredential(url=url, content_type=ref.content_type)


async def issue_image_credentials(
    thread_id: str, refs: List[MediaReference], signer: UrlSigner
) -> List[EphemeralCredential]:
    """Sign a short-lived URL for every image, dropping the ones that fail.

    Call this right before the model invocation. The returned credentials must
    not be stored or logged.
    """
    if not refs:
        return []
    issued = await asyncio.gather(*(asyncio.to_thread(_issue_one, thread_id, ref, signer) for ref in refs))
    record_media("image", len(refs))
    return [cred for cred in issued if cred is not None]


__all__ = ["issue_image_credentials"]
