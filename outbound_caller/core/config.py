"""Application configuration."""
from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # OpenAI
    openai_api_key: Optional[str] = None
    openai_model: str = "gpt-4o-mini"
    llm_timeout_seconds: float = 8.0

    # Twilio
    twilio_account_sid: Optional[str] = None
    twilio_auth_token: Optional[str] = None
    twilio_phone_number: Optional[str] = None

    # Database
    database_url: str

    # Public URL the telephony provider calls back into (e.g. an ngrok tunnel)
    base_url: Optional[str] = None

    # Conversation
    agent_name: str = "Alex"
    max_conversation_turns: int = 10
    max_silent_prompts: int = 2
    tts_voice: str = "Polly.Joanna-Neural"
    speech_language: str = "en-US"

    # Scheduling
    dispatch_tolerance_minutes: int = 5
    cron_secret: Optional[str] = None

    # Destinations without a country code are parsed in this region
    default_phone_region: str = "IN"

    # Server
    host: str = "0.0.0.0"
    port: int = 8000

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    @property
    def twilio_configured(self) -> bool:
        return all(
            [self.twilio_account_sid, self.twilio_auth_token, self.twilio_phone_number]
        )

    @property
    def openai_configured(self) -> bool:
        return bool(self.openai_api_key)


settings = Settings()
