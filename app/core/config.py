"""Configuration management for the Lightpoint complaint engine."""

from functools import lru_cache

from dotenv import load_dotenv
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

# Load environment variables from .env file (only if accessible)
try:
    load_dotenv()
except (PermissionError, OSError):
    # In sandboxed environments, .env might not be accessible
    # Environment variables should be set directly
    pass


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=True,
        extra="ignore",
    )

    # Supabase configuration (required)
    SUPABASE_URL: str = Field(..., description="Supabase project URL")
    SUPABASE_SERVICE_ROLE_KEY: str = Field(..., description="Supabase service role key")

    # OpenAI configuration (required, used for embeddings)
    OPENAI_API_KEY: str = Field(..., description="OpenAI API key")

    # Optional provider keys
    OPENROUTER_API_KEY: str | None = Field(default=None, description="OpenRouter API key")
    COHERE_API_KEY: str | None = Field(default=None, description="Cohere API key for reranking")
    VOYAGE_API_KEY: str | None = Field(
        default=None, description="Voyage AI key for legal embeddings and reranking"
    )
    ADMIN_API_KEY: str | None = Field(default=None, description="Admin API key (X-API-Key)")

    # Environment
    LIGHTPOINT_ENV: str = Field(default="dev", description="Environment: dev, staging, prod")

    # Letter generation models (OpenRouter model ids)
    ANALYSIS_MODEL: str = Field(
        default="anthropic/claude-sonnet-4.5", description="Model for analysis and fact extraction"
    )
    STRUCTURE_MODEL: str = Field(
        default="anthropic/claude-opus-4.1", description="Model for letter structuring"
    )
    TONE_MODEL: str = Field(default="anthropic/claude-opus-4.1", description="Model for tone pass")
    FOLLOW_UP_MODEL: str = Field(
        default="anthropic/claude-sonnet-4.5", description="Model for follow-up letters"
    )
    COMPARISON_MODEL: str = Field(
        default="anthropic/claude-sonnet-4.5", description="Model for knowledge comparison"
    )
    CHAT_MODEL: str = Field(
        default="anthropic/claude-sonnet-4.5", description="Model for knowledge base chat"
    )

    # Embedding configuration
    EMBEDDING_PROFILE: str = Field(
        default="primary", description="Embedding profile: primary, small, legal"
    )
    EMBEDDING_DIM: int = Field(default=1536, description="Embedding vector dimension")

    # Uploads
    MAX_UPLOAD_BYTES: int = Field(
        default=10 * 1024 * 1024, description="Max file upload size in bytes"
    )
    DOCUMENTS_BUCKET: str = Field(
        default="complaint-documents", description="Storage bucket for complaint documents"
    )

    # Billing
    DEFAULT_CHARGE_OUT_RATE: float = Field(
        default=185.0, description="Default hourly charge-out rate in GBP"
    )

    # Rate limiting
    RATE_LIMIT_ENABLED: bool = Field(default=True, description="Enable API rate limiting")

    # Job worker
    JOB_POLL_INTERVAL_SECONDS: float = Field(default=5.0, description="Job queue poll interval")
    JOB_MAX_CONCURRENT: int = Field(default=3, description="Max concurrent jobs per worker")


@lru_cache
def get_settings() -> Settings:
    """
    Get cached settings instance.

    Returns:
        Settings instance

    Raises:
        ValidationError: If required environment variables are missing
    """
    return Settings()
