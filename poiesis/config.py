"""Application configuration — reads from environment variables and Docker Swarm secrets."""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path

from pydantic_settings import BaseSettings


def _read_secret(name: str) -> str | None:
    """Read a Docker Swarm secret from /run/secrets/."""
    secret_path = Path(f"/run/secrets/{name}")
    if secret_path.exists():
        return secret_path.read_text().strip()
    return None


class Settings(BaseSettings):
    """Application settings with env var and secret support."""

    supabase_url: str = ""
    supabase_key: str = ""

    llm_gateway: str = "http://localhost:18789"
    llm_api_key: str = ""
    chat_model: str = "gemini-2.5-flash"
    reasoning_model: str = "gemini-2.5-flash"
    title_model: str = "gemini-2.5-flash"
    embedding_model: str = "text-embedding-3-small"
    embedding_dimensions: int = 1536

    # memory | nats | none
    stream_broker: str = "memory"
    nats_url: str = "nats://localhost:4222"
    stream_retention_seconds: int = 300

    max_generation_seconds: float = 60.0
    resume_freshness_seconds: float = 15.0
    memory_recall_limit: int = 5
    admission_fail_open: bool = True

    port: int = 8400
    log_level: str = "INFO"

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}

    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        # Override with Docker Swarm secrets if available
        if secret := _read_secret("supabase_url"):
            self.supabase_url = secret
        if secret := _read_secret("supabase_key"):
            self.supabase_key = secret
        if secret := _read_secret("llm_api_key"):
            self.llm_api_key = secret
        if secret := _read_secret("nats_url"):
            self.nats_url = secret


@lru_cache
def get_settings() -> Settings:
    """Get cached application settings."""
    return Settings()
