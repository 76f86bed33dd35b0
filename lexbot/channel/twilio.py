from __future__ import annotations

import re
from typing import List, Protocol

from lexbot.channel.identity import normalize_address
from lexbot.config import settings
from lexbot.errors import ConfigurationError, DeliveryError
from lexbot.utils.http import post_form
from lexbot.utils.logging import get_logger, mask_address
from lexbot.utils.metrics import record_delivery

log = get_logger(__name__)

MESSAGES_URL = "https://api.twilio.com/2010-04-01/Accounts/{sid}/Messages.json"
TYPING_URL = "https://messaging.twilio.com/v2/Indicators/Typing.json"
MESSAGE_SID_RE = re.compile(r"^(SM|MM)[a-zA-Z0-9]{32}$")
# Split points are only taken this close to the length limit.
SPLIT_WINDOW = 50

UNLINKED_NOTICE = "Por favor, conecta tu cuenta de WhatsApp en tus preferencias de usuario en iAlex."


class DeliveryGateway(Protocol):
    def send(self, address: str, body: str) -> None: ...

    def set_typing_indicator(self, message_id: str) -> None: ...


def chunk_message(text: str, max_length: int) -> List[str]:
    """Split ``text`` into pieces of at most ``max_length`` characters, preferring word breaks."""
    if len(text) <= max_length:
        return [text]

    chunks: List[str] = []
    remaining = text
    while len(remaining) > max_length:
        split_at = max_length
        last_space = remaining.rfind(" ", 0, max_length + 1)
        if last_space > max(0, max_length - SPLIT_WINDOW):
            split_at = last_space
        else:
            last_newline = remaining.rfind("\n", 0, max_length + 1)
            if last_newline > max(0, max_length - SPLIT_WINDOW):
                split_at = last_newline
        chunks.append(remaining[:split_at].strip())
        remaining = remaining[split_at:].strip()
    if remaining:
        chunks.append(remaining)
    return chunks


class TwilioGateway:
    """WhatsApp delivery through the Twilio REST API."""

    def __init__(
        self,
        account_sid: str | None = None,
        auth_token: str | None = None,
        from_number: str | None = None,
    ):
        self.account_sid = account_sid or settings.TWILIO_ACCOUNT_SID
        self.auth_token = auth_token or settings.TWILIO_AUTH_TOKEN
        self.from_number = from_number or settings.TWILIO_WHATSAPP_NUMBER

    def _auth(self) -> tuple[str, str]:
        if not self.account_sid or not self.auth_token:
            raise ConfigurationError("Twilio credentials not configured")
        return self.account_sid, self.auth_token

    def send(self, address: str, body: str) -> None:
        auth = self._auth()
        if not self.from_number:
            raise ConfigurationError("Twilio WhatsApp number not configured")
        to = normalize_address(address)
        sender = normalize_address(self.from_number)
        chunks = chunk_message(body, settings.WHATSAPP_MAX_MESSAGE_LENGTH)
        for i, chunk in enumerate(chunks, start=1):
            try:
                result = post_form(
                    MESSAGES_URL.format(sid=self.account_sid),
                    {"To": to, "From": sender, "Body": chunk},
                    auth=auth,
                    operation="twilio_send",
                    max_attempts=1,
                )
            except Exception as exc:
                raise DeliveryError(f"failed to send chunk {i}/{len(chunks)}") from exc
            record_delivery()
            log.info(
                "whatsapp_chunk_sent",
                extra={
                    "extra_fields": {
                        "to": mask_address(to),
                        "chunk": i,
                        "chunks": len(chunks),
                        "message_sid": result.get("sid"),
                        "status": result.get("status"),
                        "chunk_length": len(chunk),
                    }
                },
            )

    def set_typing_indicator(self, message_id: str) -> None:
        """Show "typing..." on the user's side; it clears itself after 25s or on the next message."""
        if not MESSAGE_SID_RE.match(message_id or ""):
            raise ValueError("messageId must be a Twilio Message SID (SM...) or Media SID (MM...)")
        post_form(
            TYPING_URL,
            {"messageId": message_id, "channel": "whatsapp"},
            auth=self._auth(),
            operation="twilio_typing",
        )


def send_unlinked_notice(gateway: DeliveryGateway, to: str) -> None:
    """Ask a sender with no linked account to connect WhatsApp in their preferences."""
    gateway.send(to, UNLINKED_NOTICE)


__all__ = ["TwilioGateway", "DeliveryGateway", "chunk_message", "send_unlinked_notice", "UNLINKED_NOTICE"]
