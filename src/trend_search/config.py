"""Configuration settings using Pydantic."""

from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field
from typing import Literal, Optional


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Blob storage
    blob_backend: Literal["sqlite", "vercel"] = Field(
        default="sqlite", description="Blob store backend (sqlite for local, vercel for production)"
    )
    blob_prefix: str = Field(default="now-trending/", description="Key prefix for the trends document")
    blob_sqlite_path: str = Field(default="./data/blobs.db", description="SQLite path for the local blob store")
    blob_read_write_token: Optional[str] = Field(default=None, description="Vercel Blob read/write token")

    # Document store
    cache_ttl_seconds: float = Field(default=60.0, ge=0, description="Freshness window of the document cache")
    retention_days: int = Field(default=30, ge=1, description="Days before topics and scrapes are pruned")

    # Embeddings
    openai_api_key: Optional[str] = Field(default=None, description="OpenAI API key")
    embedding_model: str = Field(default="text-embedding-3-small", description="OpenAI embedding model")
    embedding_batch_size: int = Field(default=100, ge=1, le=2048, description="Topics per embedding request")

    # Auth
    cron_secret: str = Field(default="dev-secret", description="Bearer token for the scrape endpoints")

    # Sources
    geo: str = Field(default="US", description="Google Trends geo code")
    serpapi_key: Optional[str] = Field(default=None, description="SerpApi key (source disabled when unset)")
    browser_enabled: bool = Field(default=False, description="Scrape the trending page with Playwright")
    scrape_max_pages: int = Field(default=20, ge=1, description="Maximum result pages walked by the browser")
    scrape_interval_minutes: int = Field(default=0, ge=0, description="Scheduled scrape interval (0 disables)")

    # Server
    host: str = Field(default="0.0.0.0", description="HTTP bind address")
    port: int = Field(default=8080, description="HTTP port")

    # Logging
    log_level: str = Field(default="INFO", description="Log level")

    @property
    def document_key(self) -> str:
        """Blob key of the trends document."""
        return f"{self.blob_prefix}trends.json"

    @property
    def cache_ttl_ms(self) -> int:
        return int(self.cache_ttl_seconds * 1000)


# Global settings instance
settings = Settings()
