from __future__ import annotations

from lexbot.channel.identity import IdentityDirectory
from lexbot.channel.twilio import TwilioGateway
from lexbot.ingest.audio import SpeechTranscriber
from lexbot.llm.gemini import GeminiClient
from lexbot.llm.streaming import StreamingResponseEngine
from lexbot.memory.threads import InMemoryThreadStore, ThreadStore
from lexbot.storage.gcs import GcsStorage
from lexbot.workflow.orchestrator import WhatsAppWorkflow


def build_workflow(directory: IdentityDirectory, threads: ThreadStore | None = None) -> WhatsAppWorkflow:
    """Wire the production adapters. Google and Twilio clients are created on first use."""
    return WhatsAppWorkflow(
        transcriber=SpeechTranscriber(),
        signer=GcsStorage(),
        directory=directory,
        engine=StreamingResponseEngine(GeminiClient()),
        gateway=TwilioGateway(),
        threads=threads or InMemoryThreadStore(),
    )
