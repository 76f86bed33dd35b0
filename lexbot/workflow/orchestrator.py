from __future__ import annotations

import asyncio
from dataclasses import dataclass, replace
from typing import List, Optional, Tuple

from lexbot.channel.identity import IdentityDirectory, resolve_channel_address
from lexbot.channel.twilio import DeliveryGateway
from lexbot.errors import UnclassifiedError, UnlinkedChannelError
from lexbot.ingest.audio import Transcriber, append_transcription, transcribe_audio_items
from lexbot.ingest.images import issue_image_credentials
from lexbot.ingest.media import classify_media, to_references
from lexbot.llm.streaming import ChannelListener, StreamingResponseEngine
from lexbot.memory.threads import ThreadStore, assistant_turn, user_turn
from lexbot.models import (
    InboundMessage,
    MediaItem,
    MediaReference,
    PromptMessage,
    StreamOutcome,
    ThreadMessage,
    WorkflowResult,
    WorkflowState,
)
from lexbot.storage.gcs import UrlSigner
from lexbot.utils.backoff import is_retryable_exception
from lexbot.utils.logging import get_logger, mask_address
from lexbot.utils.metrics import record_workflow_state
from lexbot.workflow.steps import Fatal, Ok, Retryable, Step, StepInterpreter, StepResult

log = get_logger(__name__)


@dataclass(frozen=True)
class RunState:
    message: InboundMessage
    images: Tuple[MediaReference, ...] = ()
    audio: Tuple[MediaItem, ...] = ()
    transcription: str = ""
    prompt: str = ""
    history: Tuple[ThreadMessage, ...] = ()
    address: Optional[str] = None
    outcome: Optional[StreamOutcome] = None
    delivered: int = 0


# State reached when the named step returns Ok.
STEP_STATES = {
    "classify_media": WorkflowState.MEDIA_RESOLVED,
    "transcribe_audio": WorkflowState.TRANSCRIBED,
    "compose_prompt": WorkflowState.PROMPT_COMPOSED,
}


class WhatsAppWorkflow:
    """Processes one inbound WhatsApp message end to end.

    Every run keeps its transient state (media references, signed URLs,
    visited states) inside the ``run`` call, so runs for different threads or
    successive messages can execute concurrently on one instance.
    """

    def __init__(
        self,
        *,
        transcriber: Transcriber,
        signer: UrlSigner,
        directory: IdentityDirectory,
        engine: StreamingResponseEngine,
        gateway: DeliveryGateway,
        threads: ThreadStore,
        max_attempts: Optional[int] = None,
    ):
        self.transcriber = transcriber
        self.signer = signer
        self.directory = directory
        self.engine = engine
        self.gateway = gateway
        self.threads = threads
        self.max_attempts = max_attempts

    async def _classify_media(self, state: RunState) -> StepResult:
        images, audio = classify_media(state.message.media_items)
        return Ok(replace(state, images=tuple(to_references(images)), audio=tuple(audio)))

    async def _transcribe_audio(self, state: RunState) -> StepResult:
        text = await transcribe_audio_items(state.message.thread_id, list(state.audio), self.transcriber)
        return Ok(replace(state, transcription=text))

    async def _compose_prompt(self, state: RunState) -> StepResult:
        return Ok(replace(state, prompt=append_transcription(state.message.raw_text, state.transcription)))

    async def _resolve_channel(self, state: RunState) -> StepResult:
        address = await asyncio.to_thread(resolve_channel_address, state.message.thread_id, self.directory)
        return Ok(replace(state, address=address))

    async def _save_user_message(self, state: RunState) -> StepResult:
        thread_id = state.message.thread_id
        history = self.threads.history(thread_id)
        self.threads.append(thread_id, user_turn(state.prompt, list(state.images)))
        return Ok(replace(state, history=tuple(history)))

    async def _stream_reply(self, state: RunState) -> StepResult:
        thread_id = state.message.thread_id
        # Signed just before the model call; the URLs never leave this frame.
        credentials = await issue_image_credentials(thread_id, list(state.images), self.signer)
        prompt = PromptMessage(text=state.prompt, images=credentials, history=list(state.history))
        listener = ChannelListener(self.gateway, state.address or "", state.message.correlation_id)
        try:
            outcome = await asyncio.to_thread(self.engine.run, prompt, listener, thread_id)
        except Exception as exc:
            # Once text reached the user a retry would repeat it.
            if listener.delivered or not is_retryable_exception(exc):
                return Fatal(exc)
            return Retryable(exc)
        finally:
            if listener.delivered:
                self.threads.append(thread_id, assistant_turn("\n\n".join(listener.delivered)))
        return Ok(replace(state, outcome=outcome, delivered=len(listener.delivered)))

    async def run(self, message: InboundMessage) -> WorkflowResult:
        visited: List[WorkflowState] = [WorkflowState.RECEIVED]

        def on_step_done(name: str, state: RunState) -> None:
            reached = STEP_STATES.get(name)
            if reached is not None:
                visited.append(reached)
            if name == "save_user_message":
                visited.append(WorkflowState.STREAMING)

        interpreter: StepInterpreter[RunState] = StepInterpreter(
            [
                Step("classify_media", self._classify_media),
                Step("transcribe_audio", self._transcribe_audio),
                Step("compose_prompt", self._compose_prompt),
                Step("resolve_channel", self._resolve_channel),
                Step("save_user_message", self._save_user_message),
                Step("stream_reply", self._stream_reply),
            ],
            max_attempts=self.max_attempts,
            on_step_done=on_step_done,
        )

        log_fields = {"thread_id": message.thread_id, "correlation_id": message.correlation_id}
        try:
            final = await interpreter.run(RunState(message=message))
        except UnlinkedChannelError:
            visited.append(WorkflowState.FAILED)
            record_workflow_state(WorkflowState.FAILED.value)
            log.error(
                "workflow_failed",
                extra={"extra_fields": {**log_fields, "reason": "unlinked_channel", "states": [s.value for s in visited]}},
            )
            raise
        except Exception as exc:
            visited.append(WorkflowState.FAILED)
            record_workflow_state(WorkflowState.FAILED.value)
            log.error(
                "workflow_failed",
                extra={
                    "extra_fields": {
                        **log_fields,
                        "reason": "unclassified",
                        "error": exc.__class__.__name__,
                        "states": [s.value for s in visited],
                    }
                },
            )
            if isinstance(exc, UnclassifiedError):
                raise
            raise UnclassifiedError(
                f"workflow failed for thread {message.thread_id}: {exc.__class__.__name__}",
                thread_id=message.thread_id,
            ) from exc

        end = (
            WorkflowState.DEGRADED_COMPLETED
            if final.outcome == StreamOutcome.DEGRADED
            else WorkflowState.COMPLETED
        )
        visited.append(end)
        record_workflow_state(end.value)
        log.info(
            "workflow_completed",
            extra={
                "extra_fields": {
                    **log_fields,
                    "state": end.value,
                    "to": mask_address(final.address),
                    "images": len(final.images),
                    "audio": len(final.audio),
                    "delivered": final.delivered,
                }
            },
        )
        return WorkflowResult(state=end, history=visited, delivered=final.delivered)


__all__ = ["WhatsAppWorkflow", "RunState"]
