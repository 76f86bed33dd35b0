from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # Vertex / Gemini
    VERTEX_PROJECT_ID: str | None = None
    VERTEX_LOCATION: str = "us-central1"
    VERTEX_MODEL: str = "gemini-2.5-flash"
    MODEL_MAX_OUTPUT_TOKENS: int = 1024

    # Speech-to-Text
    SPEECH_LANGUAGE: str = "es-US"
    SPEECH_MODEL: str = "long"
    SPEECH_LOCATION: str = "global"
    SPEECH_BATCH_TIMEOUT_SECONDS: int = 300

    # GCS media
    GCS_BUCKET: str | None = None
    GCS_MEDIA_PREFIX: str = "whatsapp-media"
    GCS_MEDIA_RETENTION_SECONDS: int = 86400
    GCS_DOWNLOAD_URL_TTL_SECONDS: int = 600

    # Twilio / WhatsApp
    TWILIO_ACCOUNT_SID: str | None = None
    TWILIO_AUTH_TOKEN: str | None = None
    TWILIO_WHATSAPP_NUMBER: str | None = None
    WHATSAPP_MAX_MESSAGE_LENGTH: int = 1200

    # Workflow step retries
    RETRY_MAX_ATTEMPTS: int = 5
    RETRY_BASE_DELAY: float = 0.5
    RETRY_MAX_DELAY: float = 8.0

    LOG_LEVEL: str = "INFO"

    class Config:
        env_file = ".env"
        extra = "ignore"


settings = Settings()  # singleton
