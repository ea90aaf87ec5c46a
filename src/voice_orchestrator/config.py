"""Application configuration using Pydantic settings."""

from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

MIN_TOKEN_TTL_SECONDS = 60
MAX_TOKEN_TTL_SECONDS = 24 * 60 * 60


class Settings(BaseSettings):
    """Application settings loaded from environment variables.

    The instance is frozen: components receive it at construction time and
    never mutate it afterwards.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        frozen=True,
    )

    # Channel credentials
    app_id: str = ""
    app_certificate: str = ""
    token_ttl_seconds: int = Field(
        default=3600, ge=MIN_TOKEN_TTL_SECONDS, le=MAX_TOKEN_TTL_SECONDS
    )

    # Conversational agent provider
    agent_api_base_url: str = "https://api.agora.io/api/conversational-ai-agent/v2"
    agent_api_key: str = ""
    agent_api_secret: str = ""
    agent_uid: int = 10001
    agent_idle_timeout_seconds: int = 120

    # Reasoning (LLM)
    groq_api_key: str = ""
    llm_provider: str = "groq"
    llm_model: str = "llama-3.1-8b-instant"
    llm_max_tokens: int = 256
    llm_temperature: float = 0.5
    default_system_prompt: str = (
        "You are a friendly voice assistant. Be warm but brief. "
        "Keep replies to one or two short sentences."
    )

    # Speech synthesis, performed by the remote agent
    tts_enabled: bool = True
    tts_vendor: str = "elevenlabs"
    tts_model: str = "eleven_turbo_v2_5"
    tts_voice_id: str = "21m00Tcm4TlvDq8ikWAM"

    # Transcript ingestion
    webhook_secret: str = ""
    webhook_tolerance_seconds: int = 300
    poll_staleness_seconds: float = 10.0
    poll_interval_seconds: float = 2.0

    # Outbound call policy
    retry_max_retries: int = Field(default=3, ge=0)
    retry_base_delay_seconds: float = 0.5
    retry_max_delay_seconds: float = 8.0
    retry_jitter: float = Field(default=0.1, ge=0.0, le=1.0)
    provider_timeout_seconds: float = 15.0

    stop_speech_grace_seconds: float = 5.0
    session_archive_size: int = 1000

    # Server Configuration
    api_host: str = "0.0.0.0"
    api_port: int = 8000


@lru_cache
def get_settings() -> Settings:
    """Get cached application settings."""
    return Settings()
