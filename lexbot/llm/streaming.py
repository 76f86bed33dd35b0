from __future__ import annotations

import re
from typing import Iterator, List, Optional, Protocol

from lexbot.channel.twilio import DeliveryGateway
from lexbot.errors import DeliveryError, MediaFetchError
from lexbot.llm.prompts import MEDIA_FETCH_APOLOGY
from lexbot.models import PromptMessage, StreamOutcome
from lexbot.utils.backoff import status_from_exception
from lexbot.utils.logging import get_logger, mask_address, redact_urls

log = get_logger(__name__)

# Provider error texts that point at an attachment the model could not fetch or decode.
MEDIA_FETCH_MARKERS = re.compile(
    r"\b(fetch\w*|download\w*|retriev\w*|file_?uri|urls?|uris?|images?|mime|media)\b"
)


class StreamListener(Protocol):
    def on_step_start(self) -> None: ...

    def on_chunk(self, text: str) -> None: ...

    def on_error(self, exc: BaseException, recoverable: bool) -> None: ...


class ModelHooks(Protocol):
    """What a model client calls back into while streaming."""

    def on_step_start(self) -> None: ...

    def on_chunk(self, text: str) -> None: ...

    def on_error(self, exc: BaseException) -> None: ...


class ModelClient(Protocol):
    def stream(self, message: PromptMessage, listener: ModelHooks) -> None: ...


def _causes(exc: BaseException) -> Iterator[BaseException]:
    seen: set[int] = set()
    current: Optional[BaseException] = exc
    while current is not None and id(current) not in seen:
        seen.add(id(current))
        yield current
        current = current.__cause__ or current.__context__


def is_media_fetch_error(exc: BaseException, has_images: bool = True) -> bool:
    """True for failures of the model provider to download or read an image URL.

    A prompt that carried no images never produces one.
    """
    if not has_images:
        return False
    for err in _causes(exc):
        if isinstance(err, MediaFetchError):
            return True
        # Our own outbound sends fail with URLs in the message too.
        if isinstance(err, DeliveryError):
            return False
        status = status_from_exception(err)
        if status is None or not 400 <= status < 500 or status == 429:
            continue
        if MEDIA_FETCH_MARKERS.search(str(err).lower()):
            return True
    return False


class ChannelListener:
    """Turns stream events into WhatsApp side effects for one destination."""

    def __init__(self, gateway: DeliveryGateway, address: str, typing_message_id: str):
        self.gateway = gateway
        self.address = address
        self.typing_message_id = typing_message_id
        self.delivered: List[str] = []

    def on_step_start(self) -> None:
        self.gateway.set_typing_indicator(self.typing_message_id)

    def on_chunk(self, text: str) -> None:
        self.gateway.send(self.address, text)
        self.delivered.append(text)

    def on_error(self, exc: BaseException, recoverable: bool) -> None:
        if not recoverable:
            return
        try:
            self.gateway.send(self.address, MEDIA_FETCH_APOLOGY)
        except Exception as send_exc:
            log.error(
                "apology_send_failed",
                extra={
                    "extra_fields": {
                        "to": mask_address(self.address),
                        "error": send_exc.__class__.__name__,
                    }
                },
            )


class _RunHooks:
    def __init__(self, listener: StreamListener, thread_id: str, has_images: bool):
        self.listener = listener
        self.thread_id = thread_id
        self.has_images = has_images
        self.degraded = False
        self.chunks = 0
        self._raised: Optional[BaseException] = None

    def on_step_start(self) -> None:
        try:
            self.listener.on_step_start()
        except Exception as exc:
            log.warning(
                "typing_indicator_failed",
                extra={"extra_fields": {"thread_id": self.thread_id, "error": exc.__class__.__name__}},
            )

    def on_chunk(self, text: str) -> None:
        if not text:
            return
        self.listener.on_chunk(text)
        self.chunks += 1

    def on_error(self, exc: BaseException) -> None:
        if exc is self._raised:
            raise exc
        if is_media_fetch_error(exc, self.has_images):
            log.warning(
                "stream_media_fetch_error",
                extra={
                    "extra_fields": {
                        "thread_id": self.thread_id,
                        "error": exc.__class__.__name__,
                        "chunks_delivered": self.chunks,
                    }
                },
            )
            if not self.degraded:
                self.degraded = True
                self.listener.on_error(exc, True)
            return
        log.error(
            "stream_fatal_error",
            extra={
                "extra_fields": {
                    "thread_id": self.thread_id,
                    "error": exc.__class__.__name__,
                    "message": redact_urls(str(exc))[:200],
                    "chunks_delivered": self.chunks,
                }
            },
        )
        self._raised = exc
        self.listener.on_error(exc, False)
        raise exc


class StreamingResponseEngine:
    """Runs one streamed model call and applies the media-fetch recovery policy.

    The same classifier is applied to errors the client reports through
    ``on_error`` and to errors that escape ``stream`` itself.
    """

    def __init__(self, model: ModelClient):
        self.model = model

    def run(self, message: PromptMessage, listener: StreamListener, thread_id: str = "") -> StreamOutcome:
        hooks = _RunHooks(listener, thread_id, bool(message.images))
        try:
            self.model.stream(message, hooks)
        except Exception as exc:
            hooks.on_error(exc)
        outcome = StreamOutcome.DEGRADED if hooks.degraded else StreamOutcome.COMPLETED
        log.info(
            "stream_finished",
            extra={"extra_fields": {"thread_id": thread_id, "outcome": outcome.value, "chunks": hooks.chunks}},
        )
        return outcome


__all__ = [
    "StreamingResponseEngine",
    "StreamListener",
    "ChannelListener",
    "ModelClient",
    "is_media_fetch_error",
]
