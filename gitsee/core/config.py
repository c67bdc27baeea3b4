"""
Application Configuration - Environment settings and constants.

Loads configuration from environment variables with sensible defaults.
Uses Pydantic Settings for validation and type safety.
"""

from typing import List, Optional
from pydantic_settings import BaseSettings
from functools import lru_cache


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    Usage:
        from gitsee.core.config import get_settings
        settings = get_settings()
    """

    # Application
    app_name: str = "GitSee Exploration Service"
    app_version: str = "1.0.0"
    debug: bool = False
    environment: str = "development"
    log_level: str = "INFO"

    # HTTP Server Configuration
    server_host: str = "0.0.0.0"
    server_port: int = 3000
    api_prefix: str = "/api/gitsee"
    allowed_origins: List[str] = ["*"]
    sse_heartbeat_seconds: float = 30.0

    # Snapshot / clone configuration
    clone_base_path: str = "/tmp/gitsee"
    clone_timeout_seconds: int = 300
    clone_registry_grace_seconds: float = 5.0

    # Result store and metadata cache
    data_dir: str = "./data/repos"
    cache_ttl_seconds: int = 300
    exploration_max_age_hours: float = 24.0
    subscriber_wait_seconds: float = 5.0

    # Search tool limits
    search_timeout_seconds: float = 5.0
    search_max_output_chars: int = 10_000

    # Language model
    llm_model: str = "claude-sonnet-4-5"
    llm_max_tokens: int = 4096
    anthropic_api_key: Optional[str] = None
    max_exploration_steps: int = 25

    # GitHub metadata
    github_token: Optional[str] = None
    github_api_url: str = "https://api.github.com"

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        env_prefix = "GITSEE_"
        case_sensitive = False


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached settings instance.

    Uses lru_cache to ensure settings are only loaded once.
    """
    return Settings()
