from __future__ import annotations

from typing import TYPE_CHECKING, List

from google import genai
from google.genai import types

from lexbot.config import settings
from lexbot.errors import ConfigurationError
from lexbot.llm.prompts import EMPTY_REPLY_FALLBACK, make_system_prompt
from lexbot.models import PromptMessage, ThreadMessage
from lexbot.utils.logging import get_logger

if TYPE_CHECKING:  # pragma: no cover - imported for type checking only
    from lexbot.llm.streaming import ModelHooks

log = get_logger(__name__)

PARAGRAPH_BREAK = "\n\n"


def init_genai() -> genai.Client:
    if not settings.VERTEX_PROJECT_ID:
        raise ConfigurationError("VERTEX_PROJECT_ID is not configured")
    return genai.Client(vertexai=True, project=settings.VERTEX_PROJECT_ID, location=settings.VERTEX_LOCATION)


def _history_content(message: ThreadMessage) -> types.Content:
    text = message.text
    if message.image_refs:
        text += "\n" + "\n".join("[imagen adjunta]" for _ in message.image_refs)
    role = "model" if message.role == "assistant" else "user"
    return types.Content(role=role, parts=[types.Part.from_text(text=text)])


def build_contents(message: PromptMessage) -> List[types.Content]:
    contents = [_history_content(m) for m in message.history]
    parts = [types.Part.from_text(text=message.text)]
    for image in message.images:
        parts.append(types.Part.from_uri(file_uri=image.url, mime_type=image.content_type))
    contents.append(types.Content(role="user", parts=parts))
    return contents


def _finish_reason(chunk) -> str | None:
    candidates = getattr(chunk, "candidates", None) or []
    reason = getattr(candidates[0], "finish_reason", None) if candidates else None
    return getattr(reason, "name", None) or (str(reason) if reason else None)


class GeminiClient:
    """Streams a reply from Gemini on Vertex AI.

    Fragments are coalesced into paragraphs so every increment handed to the
    listener is a complete piece of text worth a message of its own.
    """

    def __init__(self, client: genai.Client | None = None, model: str | None = None):
        self._client = client
        self.model = model or settings.VERTEX_MODEL

    @property
    def client(self) -> genai.Client:
        if self._client is None:
            self._client = init_genai()
        return self._client

    def stream(self, message: PromptMessage, listener: "ModelHooks") -> None:
        config = types.GenerateContentConfig(
            system_instruction=make_system_prompt(),
            max_output_tokens=settings.MODEL_MAX_OUTPUT_TOKENS,
        )
        listener.on_step_start()
        emitted = 0
        finish_reason = None
        try:
            buffer = ""
            for chunk in self.client.models.generate_content_stream(
                model=self.model, contents=build_contents(message), config=config
            ):
                buffer += chunk.text or ""
                finish_reason = _finish_reason(chunk) or finish_reason
                while PARAGRAPH_BREAK in buffer:
                    head, buffer = buffer.split(PARAGRAPH_BREAK, 1)
                    if head.strip():
                        listener.on_chunk(head.strip())
                        emitted += 1
            if buffer.strip():
                listener.on_chunk(buffer.strip())
                emitted += 1
        except Exception as exc:
            listener.on_error(exc)
            return
        if not emitted:
            # Safety-blocked or empty candidates yield no text.
            log.warning("stream_empty", extra={"extra_fields": {"model": self.model, "finish_reason": finish_reason}})
            listener.on_chunk(EMPTY_REPLY_FALLBACK)
