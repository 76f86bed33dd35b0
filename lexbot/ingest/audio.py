from __future__ import annotations

import asyncio
from typing import List, Protocol

from lexbot.config import settings
from lexbot.errors import ConfigurationError, TranscriptionItemError
from lexbot.models import MediaItem
from lexbot.utils.backoff import is_retryable_exception, retry
from lexbot.utils.logging import get_logger
from lexbot.utils.metrics import record_media

try:
    from google.cloud import speech_v2 as speech
except Exception:
    speech = None

log = get_logger(__name__)

TRANSCRIPTION_SEPARATOR = "\n\n"
TRANSCRIPTION_LABEL = "Transcripción del audio"


class Transcriber(Protocol):
    def transcribe(self, bucket: str, object_key: str) -> str: ...


class SpeechTranscriber:
    """Speech-to-Text v2 over the stored object's gs:// URI."""

    def __init__(self, project_id: str | None = None, language_code: str | None = None):
        self.project_id = project_id or settings.VERTEX_PROJECT_ID
        self.language_code = language_code or settings.SPEECH_LANGUAGE
        self._client = None

    def _get_client(self):
        if speech is None or not self.project_id:
            raise ConfigurationError("google-cloud-speech is not installed or VERTEX_PROJECT_ID is unset")
        if self._client is None:
            self._client = speech.SpeechClient()
        return self._client

    def transcribe(self, bucket: str, object_key: str) -> str:
        client = self._get_client()
        uri = f"gs://{bucket}/{object_key}"
        config = speech.RecognitionConfig(
            auto_decoding_config=speech.AutoDetectDecodingConfig(),
            language_codes=[self.language_code],
            model=settings.SPEECH_MODEL,
        )
        # Synchronous Recognize caps audio at one minute; batch has no such limit.
        request = speech.BatchRecognizeRequest(
            recognizer=f"projects/{self.project_id}/locations/{settings.SPEECH_LOCATION}/recognizers/_",
            config=config,
            files=[speech.BatchRecognizeFileMetadata(uri=uri)],
            recognition_output_config=speech.RecognitionOutputConfig(
                inline_response_config=speech.InlineOutputConfig(),
            ),
        )

        def _call():
            operation = client.batch_recognize(request=request)
            return operation.result(timeout=settings.SPEECH_BATCH_TIMEOUT_SECONDS)

        try:
            response = retry(_call, operation="speech_batch_recognize")
        except Exception as exc:
            if is_retryable_exception(exc):
                raise
            raise TranscriptionItemError(f"speech batch recognize failed for {uri}") from exc
        file_result = response.results.get(uri)
        if file_result is None:
            raise TranscriptionItemError(f"no transcription result for {uri}")
        if file_result.error.code:
            raise TranscriptionItemError(f"speech error {file_result.error.code} for {uri}: {file_result.error.message}")
        lines = []
        for result in file_result.transcript.results:
            if result.alternatives:
                lines.append(result.alternatives[0].transcript)
        return " ".join(line.strip() for line in lines if line.strip())


def _transcribe_one(thread_id: str, item: MediaItem, transcriber: Transcriber) -> str:
    loc = item.storage_location
    try:
        return (transcriber.transcribe(loc.bucket, loc.object_key) or "").strip()
    except Exception as exc:
        log.warning(
            "transcription_failed",
            extra={
                "extra_fields": {
                    "thread_id": thread_id,
                    "bucket": loc.bucket,
                    "object_key": loc.object_key,
                    "content_type": item.content_type,
                    "error": exc.__class__.__name__,
                }
            },
        )
        record_media("audio_failed")
        return ""


async def transcribe_audio_items(thread_id: str, audio: List[MediaItem], transcriber: Transcriber) -> str:
    """Transcribe every audio item concurrently and join the usable texts.

    A failed item yields "" and never cancels its siblings. Returns "" when
    nothing is attached or nothing could be transcribed; both cases look the same.
    """
    if not audio:
        return ""
    results = await asyncio.gather(
        *(asyncio.to_thread(_transcribe_one, thread_id, item, transcriber) for item in audio)
    )
    record_media("audio", len(audio))
    return TRANSCRIPTION_SEPARATOR.join(text for text in results if text)


def append_transcription(prompt: str, transcription: str) -> str:
    if not transcription:
        return prompt
    return f"{prompt}\n\n{TRANSCRIPTION_LABEL}: {transcription}"


__all__ = ["SpeechTranscriber", "Transcriber", "transcribe_audio_items", "append_transcription"]
