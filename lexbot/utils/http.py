from __future__ import annotations

from typing import Any

import requests  # type: ignore[import-untyped]

from lexbot.utils.backoff import retry
from lexbot.utils.logging import get_logger, redact_urls

log = get_logger(__name__)


def post_form(
    url: str,
    data: dict[str, str],
    auth: tuple[str, str] | None = None,
    timeout: int = 20,
    operation: str = "http_post_form",
    max_attempts: int = 5,
) -> dict[str, Any]:
    """POST a urlencoded form and return the decoded JSON body.

    Errors propagate after retries; callers decide whether a failed post is fatal.
    Pass ``max_attempts=1`` for posts that must not be repeated, such as sends
    the server may have accepted before the connection dropped.
    """

    def _call() -> dict[str, Any]:
        resp = requests.post(url, data=data, auth=auth, timeout=timeout)
        resp.raise_for_status()
        return resp.json()

    try:
        return retry(_call, max_attempts=max_attempts, operation=operation)
    except Exception as exc:
        log.error(
            "http_post_failed",
            extra={"extra_fields": {"operation": operation, "error": redact_urls(str(exc))[:200]}},
        )
        raise


def download_bytes(
    url: str,
    auth: tuple[str, str] | None = None,
    timeout: int = 60,
) -> bytes:
    def _call() -> bytes:
        with requests.get(url, stream=True, auth=auth, timeout=timeout) as r:
            r.raise_for_status()
            chunks = []
            for chunk in r.iter_content(chunk_size=8192):
                if chunk:
                    chunks.append(chunk)
        return b"".join(chunks)

    try:
        return retry(_call, operation="http_download")
    except Exception as exc:
        log.error(
            "http_download_failed",
            extra={"extra_fields": {"operation": "http_download", "error": exc.__class__.__name__}},
        )
        raise
