from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field


class StorageLocation(BaseModel):
    model_config = ConfigDict(frozen=True)

    bucket: str
    object_key: str

    @property
    def uri(self) -> str:
        return f"gs://{self.bucket}/{self.object_key}"


class MediaItem(BaseModel):
    """Attachment metadata as reported by the messaging gateway."""

    model_config = ConfigDict(frozen=True)

    storage_location: StorageLocation
    content_type: str
    size_bytes: int = 0

    def to_reference(self) -> "MediaReference":
        return MediaReference(storage_location=self.storage_location, content_type=self.content_type)


class MediaReference(BaseModel):
    """Attachment identity passed between stages; size and validation data stay behind."""

    model_config = ConfigDict(frozen=True)

    storage_location: StorageLocation
    content_type: str


class EphemeralCredential(BaseModel):
    """Short-lived URL for one stored object. Lives only for one model call."""

    model_config = ConfigDict(frozen=True)

    url: str = Field(repr=False)
    content_type: str

    def __str__(self) -> str:
        return f"EphemeralCredential(content_type={self.content_type!r}, url=<redacted>)"


class InboundMessage(BaseModel):
    model_config = ConfigDict(frozen=True)

    thread_id: str
    raw_text: str = ""
    media_items: tuple[MediaItem, ...] = ()
    correlation_id: str


class ChannelLink(BaseModel):
    address: Optional[str] = None
    verified: bool = False


class ThreadMessage(BaseModel):
    role: Literal["user", "assistant"]
    text: str
    # Storage URIs (gs://...) of image attachments; never signed URLs.
    image_refs: List[MediaReference] = []
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class PromptMessage(BaseModel):
    """Multi-part user turn handed to the model: text plus resolved image parts."""

    text: str
    images: List[EphemeralCredential] = []
    history: List[ThreadMessage] = []


class WorkflowState(str, Enum):
    RECEIVED = "received"
    MEDIA_RESOLVED = "media_resolved"
    TRANSCRIBED = "transcribed"
    PROMPT_COMPOSED = "prompt_composed"
    STREAMING = "streaming"
    COMPLETED = "completed"
    DEGRADED_COMPLETED = "degraded_completed"
    FAILED = "failed"


class StreamOutcome(str, Enum):
    COMPLETED = "completed"
    DEGRADED = "degraded"


class WorkflowResult(BaseModel):
    state: WorkflowState
    history: List[WorkflowState]
    delivered: int = 0
