"""
RepoChat Configuration

Centralized settings management using Pydantic BaseSettings.
All values are loaded from environment variables or .env file.

Pipeline defaults are sized for all-MiniLM-L6-v2 (384 dimensions)
and a ~16k token generation context.
"""

from __future__ import annotations

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Application settings with environment variable binding.

    Required env vars (no defaults):
        POSTGRES_USER, POSTGRES_PASSWORD, POSTGRES_HOST, POSTGRES_DB

    Everything else has a default and can be overridden per deployment.
    """

    PROJECT_NAME: str = "RepoChat"

    # Database
    POSTGRES_USER: str
    POSTGRES_PASSWORD: str
    POSTGRES_HOST: str
    POSTGRES_PORT: int = 5432
    POSTGRES_DB: str
    # Request sessions plus one session per running ingestion
    DB_POOL_SIZE: int = Field(default=5, ge=1)
    DB_MAX_OVERFLOW: int = Field(default=10, ge=0)

    # Logging
    LOG_LEVEL: str = "INFO"

    # Embeddings
    EMBEDDING_PROVIDER: str = "local"  # local | huggingface | openai
    EMBEDDING_MODEL: str = "sentence-transformers/all-MiniLM-L6-v2"
    EMBEDDING_DIMENSION: int = 384
    EMBEDDING_BATCH_SIZE: int = Field(default=64, ge=1)
    HF_TOKEN: str | None = None
    HF_INFERENCE_URL: str = "https://router.huggingface.co/hf-inference/models"

    # Generation
    GENERATION_PROVIDER: str = "ollama"  # ollama | openai
    OLLAMA_BASE_URL: str = "http://host.docker.internal:11434"
    OLLAMA_MODEL: str = "mistral"
    OPENAI_API_KEY: str | None = None
    OPENAI_MODEL: str = "gpt-4o-mini"
    OPENAI_EMBEDDING_MODEL: str = "text-embedding-3-small"
    MAX_RESPONSE_TOKENS: int = 2048
    TEMPERATURE: float = 0.7

    # Provider calls that never return are bounded by this timeout (seconds)
    PROVIDER_TIMEOUT: float = 60.0

    # GitHub source
    GITHUB_API_URL: str = "https://api.github.com"
    GITHUB_RAW_URL: str = "https://raw.githubusercontent.com"
    GITHUB_TOKEN: str | None = None
    MAX_FILES: int = Field(default=50, ge=0)
    MAX_FILE_BYTES: int = 1_000_000

    # Chunking
    CHUNK_SIZE: int = 2000
    CHUNK_OVERLAP: int = 400

    # Retrieval
    TOP_K: int = Field(default=10, ge=1)
    MIN_SIMILARITY: float = 0.0
    HISTORY_TURNS: int = Field(default=10, ge=0)
    CONTEXT_TOKEN_BUDGET: int = 16000

    # Vector store
    INSERT_BATCH_SIZE: int = Field(default=100, ge=1)
    SERVER_SEARCH_RETRY_SECONDS: float = 300.0

    model_config = SettingsConfigDict(
        env_file=".env",
        env_ignore_empty=True,
        extra="ignore",  # Silently ignore unknown env vars
    )

    @property
    def DATABASE_URL(self) -> str:
        """Async PostgreSQL connection string using asyncpg driver."""
        return (
            f"postgresql+asyncpg://{self.POSTGRES_USER}:{self.POSTGRES_PASSWORD}"
            f"@{self.POSTGRES_HOST}:{self.POSTGRES_PORT}/{self.POSTGRES_DB}"
        )


settings = Settings()  # type: ignore[call-arg]
