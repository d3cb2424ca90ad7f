"""
Application settings.
Loaded from environment variables and an optional .env file.

Version: 1.0.0
"""
from enum import Enum
from functools import lru_cache
from typing import List, Optional
import logging

from pydantic import Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)


class SessionStoreType(str, Enum):
    """Supported session/approval storage backends."""
    IN_MEMORY = "in_memory"
    REDIS = "redis"


class Settings(BaseSettings):
    """
    Global application configuration.

    Policy heuristics (keywords, thresholds) live in
    :class:`~support_orchestrator.config.policy_settings.PolicySettings`.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    # ===========================
    # Application
    # ===========================

    app_name: str = Field(default="Support Orchestrator")
    app_version: str = Field(default="1.0.0")
    environment: str = Field(
        default="development",
        description="development, testing or production"
    )
    debug: bool = Field(default=False)
    log_level: str = Field(default="INFO")

    api_host: str = Field(default="0.0.0.0")
    api_port: int = Field(default=8000, ge=1, le=65535)
    api_prefix: str = Field(default="/api")

    cors_origins: List[str] = Field(
        default_factory=lambda: ["http://localhost:3000"]
    )
    cors_allow_credentials: bool = Field(default=True)

    enable_telemetry: bool = Field(
        default=True,
        description="Expose /metrics and record request metrics"
    )

    # ===========================
    # Session Storage
    # ===========================

    session_store_type: SessionStoreType = Field(default=SessionStoreType.IN_MEMORY)
    redis_url: str = Field(default="redis://localhost:6379/0")
    redis_key_prefix: str = Field(default="support:")
    redis_max_connections: int = Field(default=50, ge=1)
    redis_socket_timeout: int = Field(default=5, ge=1)
    redis_retry_attempts: int = Field(default=3, ge=1, le=10)

    session_history_cap: int = Field(
        default=100,
        ge=1,
        description="Maximum messages retained per session (oldest dropped)"
    )
    session_history_default_limit: int = Field(default=50, ge=1)
    session_lock_timeout_seconds: int = Field(
        default=60,
        ge=1,
        description="Turn lock TTL; renewed every third of it while the turn runs"
    )
    session_lock_wait_seconds: float = Field(
        default=300.0,
        gt=0,
        description="How long a turn waits behind another turn on the same session"
    )
    session_lock_retry_attempts: Optional[int] = Field(default=None, ge=1)

    # ===========================
    # Language / Embedding Services
    # ===========================

    openai_api_key: Optional[SecretStr] = Field(default=None)
    openai_base_url: Optional[str] = Field(default=None)
    generation_model: str = Field(default="gpt-4o-mini")
    generation_temperature: float = Field(default=0.7, ge=0.0, le=2.0)
    generation_max_tokens: int = Field(default=1024, ge=1)
    generation_retry_attempts: int = Field(default=2, ge=1, le=5)
    embedding_model: str = Field(default="text-embedding-3-small")
    embedding_cache_size: int = Field(default=1000, ge=0)
    embedding_cache_ttl: int = Field(default=3600, ge=1)

    # ===========================
    # Vector Index
    # ===========================

    chroma_persist_directory: str = Field(default="./data/chroma")
    chroma_host: Optional[str] = Field(
        default=None,
        description="Use a remote Chroma server instead of a local directory"
    )
    chroma_port: int = Field(default=8000)

    # ===========================
    # Timeouts (seconds)
    # ===========================

    generation_timeout: float = Field(default=30.0, gt=0)
    embedding_timeout: float = Field(default=10.0, gt=0)
    vector_timeout: float = Field(default=10.0, gt=0)
    tool_timeout: float = Field(default=10.0, gt=0)
    notification_timeout: float = Field(default=5.0, gt=0)

    # ===========================
    # Resilience
    # ===========================

    circuit_breaker_fail_max: int = Field(default=5, ge=1)
    circuit_breaker_reset_seconds: int = Field(default=60, ge=1)

    # ===========================
    # Tenants / Approvals
    # ===========================

    tenant_config_dir: Optional[str] = Field(
        default=None,
        description="Directory of <tenant_id>.json files; in-memory samples when unset"
    )
    tenant_config_cache_ttl: int = Field(default=300, ge=1)
    approval_webhook_url: Optional[str] = Field(
        default=None,
        description="Default approval notification webhook for all tenants"
    )

    @field_validator('cors_origins', mode='before')
    @classmethod
    def parse_cors_origins(cls, v):
        """Accept JSON lists or comma-separated origins."""
        if isinstance(v, str):
            if v.startswith('['):
                import json
                try:
                    return json.loads(v)
                except json.JSONDecodeError:
                    pass
            return [origin.strip() for origin in v.split(',') if origin.strip()]
        return v

    @field_validator('log_level')
    @classmethod
    def normalize_log_level(cls, v: str) -> str:
        level = v.upper()
        if level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"Invalid log level: {v}")
        return level

    def get_openai_api_key(self) -> Optional[str]:
        """Get OpenAI API key value."""
        if self.openai_api_key:
            return self.openai_api_key.get_secret_value()
        return None


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


settings = get_settings()

__all__ = ['Settings', 'SessionStoreType', 'settings', 'get_settings']
