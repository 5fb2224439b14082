"""
Application configuration using Pydantic Settings.
Loads from environment variables with sensible defaults.
"""

from functools import lru_cache
from typing import Literal

from pydantic import Field, RedisDsn
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Application
    app_name: str = "Agent G Orchestrator"
    app_version: str = "1.0.0"
    debug: bool = False
    environment: Literal["development", "staging", "production"] = "development"

    # API
    api_v1_prefix: str = "/api/v1"
    cors_origins: list[str] = ["http://localhost:3000", "http://localhost:8000"]

    # Public origin of the web app. Delegate calls and dashboard links are built from it.
    public_app_url: str = "http://localhost:3000"
    # Public origin of this API. Telephony providers fetch callback audio from it.
    public_api_url: str = "http://localhost:8000"

    # Storage: "memory" keeps everything in-process, "redis" persists to redis_url
    store_backend: Literal["memory", "redis"] = "memory"
    redis_url: RedisDsn = Field(default="redis://localhost:6379/0")
    agent_task_ttl: int = 30 * 24 * 3600  # 30 days
    link_code_ttl: int = 900  # 15 minutes

    # Authentication
    jwt_secret_key: str = "your-secret-key-change-in-production"
    jwt_algorithm: str = "HS256"

    # Service-to-service trust for /agent/delegate.
    # Must match the x-agent-g-secret header sent by the executor.
    agent_g_internal_secret: str = ""

    # Delegation
    delegate_timeout_seconds: float = 45.0

    # Telegram
    telegram_bot_token: str = ""
    # Must match the secret_token registered with setWebhook.
    telegram_webhook_secret: str = ""

    # Voice callbacks
    agent_g_voice_enabled: bool = False
    agent_g_voice_max_seconds: int = 45
    agent_g_quiet_hours_start: str = "22:00"
    agent_g_quiet_hours_end: str = "08:00"

    # ElevenLabs (voice synthesis)
    elevenlabs_api_key: str = ""
    elevenlabs_voice_id: str = ""
    elevenlabs_model_id: str = "eleven_multilingual_v2"
    elevenlabs_base_url: str = "https://api.elevenlabs.io"
    tts_timeout_seconds: float = 12.0
    tts_max_attempts: int = 2
    callback_audio_ttl: int = 3600  # 1 hour

    # OpenAI (voice-note transcription)
    openai_api_key: str = ""
    stt_model: str = "whisper-1"
    stt_timeout_seconds: float = 30.0
    stt_max_attempts: int = 2

    # Telephony: "mock" or "twilio"
    calls_provider: Literal["mock", "twilio"] = "mock"
    twilio_account_sid: str = ""
    twilio_auth_token: str = ""
    twilio_from_number: str = ""

    # Logging
    log_level: str = "INFO"
    log_format: Literal["json", "console"] = "console"

    # Sentry (Error Tracking)
    sentry_dsn: str = ""
    sentry_environment: str = "development"
    sentry_traces_sample_rate: float = 0.1


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


settings = get_settings()
