"""Exception types for the WhatsApp assistant workflow.

Only ``UnlinkedChannelError`` and ``UnclassifiedError`` end a run visibly.
The per-item and media-fetch errors are absorbed at the boundary that raises
them so one bad attachment never denies the user a reply.
"""


class LexbotError(Exception):
    """Base exception for all lexbot errors."""


class ConfigurationError(LexbotError):
    """Raised when a collaborator is used without its credentials or bucket configured."""


class TransientStepError(LexbotError):
    """A collaborator failure the step executor may retry."""


class UnlinkedChannelError(LexbotError):
    """The thread or its owner has no verified outbound channel address."""

    def __init__(self, message: str, thread_id: str | None = None):
        super().__init__(message)
        self.thread_id = thread_id


class TranscriptionItemError(LexbotError):
    """Transcription of a single audio item failed."""


class CredentialIssuanceError(LexbotError):
    """Signing a short-lived URL for a single image failed."""


class MediaFetchError(LexbotError):
    """The model provider could not download or decode an attached image URL."""


class DeliveryError(LexbotError):
    """The delivery gateway rejected an outbound message."""


class UnclassifiedError(LexbotError):
    """Any other failure during a run. The original exception is kept as ``__cause__``."""

    def __init__(self, message: str, thread_id: str | None = None, step: str | None = None):
        super().__init__(message)
        self.thread_id = thread_id
        self.step = step
