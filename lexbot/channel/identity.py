from __future__ import annotations

from typing import Optional, Protocol

from lexbot.errors import UnlinkedChannelError
from lexbot.models import ChannelLink
from lexbot.utils.logging import get_logger

log = get_logger(__name__)

THREAD_OWNER_PREFIX = "whatsapp:"
ADDRESS_PREFIX = "whatsapp:"


class IdentityDirectory(Protocol):
    def resolve_owner(self, thread_id: str) -> Optional[str]:
        """Owner identity recorded on the thread, e.g. ``whatsapp:<userId>``."""

    def get_channel_link(self, user_id: str) -> Optional[ChannelLink]:
        """The user's stored WhatsApp link, or None when the user does not exist."""


def normalize_address(address: str) -> str:
    address = address.strip()
    return address if address.startswith(ADDRESS_PREFIX) else f"{ADDRESS_PREFIX}{address}"


def resolve_channel_address(thread_id: str, directory: IdentityDirectory) -> str:
    """Map a thread to its owner's verified outbound address or raise UnlinkedChannelError."""
    owner = directory.resolve_owner(thread_id)
    if not owner or not owner.startswith(THREAD_OWNER_PREFIX):
        raise UnlinkedChannelError(f"invalid WhatsApp thread owner format: {owner!r}", thread_id=thread_id)

    user_id = owner[len(THREAD_OWNER_PREFIX):]
    if not user_id:
        raise UnlinkedChannelError("thread owner has an empty user id", thread_id=thread_id)

    link = directory.get_channel_link(user_id)
    if link is None:
        raise UnlinkedChannelError(f"user not found: {user_id}", thread_id=thread_id)
    if not link.address or not link.verified:
        log.info(
            "channel_unlinked",
            extra={"extra_fields": {"thread_id": thread_id, "user_id": user_id, "verified": link.verified}},
        )
        raise UnlinkedChannelError("WhatsApp account not connected or verified", thread_id=thread_id)
    return normalize_address(link.address)


__all__ = ["IdentityDirectory", "resolve_channel_address", "normalize_address"]
