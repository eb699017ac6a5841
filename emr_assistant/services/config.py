"""
Configuration settings for the EMR Assistant API
"""
from typing import List, Optional
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field, field_validator
import json


class Settings(BaseSettings):
    """Application settings with environment variable support"""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    # API Configuration
    API_VERSION: str = "1.0.0"
    ENVIRONMENT: str = Field(default="development")
    DEBUG: bool = Field(default=False)

    # Logging
    LOG_LEVEL: str = Field(default="INFO")
    LOG_JSON: bool = Field(default=False)

    # CORS Settings
    CORS_ORIGINS: List[str] = Field(
        default=[
            "http://localhost:3000",
            "http://localhost:8000",
        ]
    )

    @field_validator("CORS_ORIGINS", mode="before")
    @classmethod
    def parse_cors_origins(cls, v):
        """Parse CORS_ORIGINS from JSON string if needed"""
        if isinstance(v, str):
            try:
                return json.loads(v)
            except json.JSONDecodeError:
                # If not JSON, treat as comma-separated list
                return [origin.strip() for origin in v.split(",") if origin.strip()]
        return v

    # Links in answers are built against this base; empty means "use the request's own base URL"
    APP_BASE_URL: str = Field(default="")

    # Knowledge base document, read fresh on every request
    KNOWLEDGE_BASE_PATH: str = Field(default="AI_KNOWLEDGE_BASE.md")

    # Model Service (OpenAI-compatible chat completions API)
    LLM_URL: str = Field(default="http://localhost:8080")
    LLM_API_KEY: Optional[str] = Field(default=None)
    MODEL_NAME: str = Field(default="claude-3-haiku")
    MAX_TOKENS: int = Field(default=1000)
    SUMMARY_MAX_TOKENS: int = Field(default=800)
    TEMPERATURE: float = Field(default=0.7)

    # Timeouts (seconds)
    REQUEST_TIMEOUT: int = Field(default=30)
    STREAM_TIMEOUT: int = Field(default=60)

    # Assistant persona and canned texts
    ASSISTANT_NAME: str = Field(default="Wellovis AI")
    ERROR_MESSAGE: str = Field(
        default="I encountered an error processing your request. Please try again."
    )

    # Upper bound for system + user prompt together
    MAX_PROMPT_CHARS: int = Field(default=48000)

    # OpenTelemetry Configuration
    OTEL_ENABLED: bool = Field(default=False)
    OTEL_ENDPOINT: str = Field(default="http://localhost:4317")
    OTEL_SERVICE_NAME: str = Field(default="emr-assistant-api")

    @property
    def generic_system_prompt(self) -> str:
        """Persona used for questions that have nothing to do with the application"""
        return (
            f"You are {self.ASSISTANT_NAME}, a helpful and friendly assistant. "
            "Provide concise, accurate answers in a conversational tone. "
            "Keep responses under 200 words unless asked for more detail."
        )

    def get_chat_completions_url(self) -> str:
        """Get the chat completions endpoint of the model service"""
        return f"{self.LLM_URL.rstrip('/')}/v1/chat/completions"
