from __future__ import annotations

from typing import Iterable, List, Tuple

from lexbot.models import MediaItem, MediaReference

IMAGE_PREFIX = "image/"
AUDIO_PREFIX = "audio/"


def classify_media(items: Iterable[MediaItem] | None) -> Tuple[List[MediaItem], List[MediaItem]]:
    """Split attachments into (images, audio) by content-type prefix.

    Anything else (video, documents, vcards) is dropped. Input order is kept
    within each list.
    """
    images: List[MediaItem] = []
    audio: List[MediaItem] = []
    for item in items or ():
        ct = (item.content_type or "").strip().lower()
        if ct.startswith(IMAGE_PREFIX):
            images.append(item)
        elif ct.startswith(AUDIO_PREFIX):
            audio.append(item)
    return images, audio


def to_references(items: Iterable[MediaItem]) -> List[MediaReference]:
    return [item.to_reference() for item in items]


__all__ = ["classify_media", "to_references"]
