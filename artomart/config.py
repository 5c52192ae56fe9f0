"""Configuration management for the orchestration service."""
from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Optional, Tuple


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


def _env_origins(name: str, default: Tuple[str, ...]) -> Tuple[str, ...]:
    raw = os.getenv(name)
    if raw is None:
        return default
    return tuple(origin.strip() for origin in raw.split(",") if origin.strip())


@dataclass(frozen=True)
class ModelProviderConfig:
    """Upstream generative-language provider configuration."""

    api_key: Optional[str] = None
    model: str = "gemini-2.0-flash"
    base_url: Optional[str] = "https://generativelanguage.googleapis.com/v1beta/openai/"
    timeout_seconds: float = 15.0
    max_concurrent: int = 8
    requests_per_minute: int = 120
    max_attempts: int = 3


@dataclass(frozen=True)
class GatewayConfig:
    """Settings applied at the HTTP boundary."""

    allowed_origins: Tuple[str, ...] = ("http://localhost:3000", "http://localhost:5173")
    rate_limit_window_seconds: float = 60.0
    rate_limit_max_requests: int = 60
    max_body_bytes: int = 64 * 1024
    auth_required: bool = False


@dataclass(frozen=True)
class Config:
    """Application configuration loaded from environment variables."""

    provider: ModelProviderConfig = field(default_factory=ModelProviderConfig)
    gateway: GatewayConfig = field(default_factory=GatewayConfig)
    environment: str = "development"
    log_level: str = "INFO"
    log_format: str = "console"
    performance_logging: bool = False
    security_logging: bool = True
    task_deadline_seconds: float = 30.0
    task_retention_seconds: float = 300.0
    session_idle_seconds: float = 1800.0
    result_journal_path: Optional[str] = None
    host: str = "0.0.0.0"
    port: int = 8000
    service_name: str = "Art-O-Mart AI Backend"
    version: str = "2.0.0"

    @property
    def is_development(self) -> bool:
        return self.environment in {"development", "test"}

    @classmethod
    def from_env(cls) -> Config:
        """Load configuration from environment variables."""
        provider = ModelProviderConfig(
            api_key=os.getenv("MODEL_API_KEY") or None,
            model=os.getenv("MODEL_NAME", ModelProviderConfig.model),
            base_url=os.getenv("MODEL_BASE_URL", ModelProviderConfig.base_url) or None,
            timeout_seconds=float(os.getenv("MODEL_TIMEOUT_SECONDS", "15")),
            max_concurrent=int(os.getenv("MODEL_MAX_CONCURRENT", "8")),
            requests_per_minute=int(os.getenv("MODEL_REQUESTS_PER_MINUTE", "120")),
            max_attempts=int(os.getenv("MODEL_MAX_ATTEMPTS", "3")),
        )
        gateway = GatewayConfig(
            allowed_origins=_env_origins("ALLOWED_ORIGINS", GatewayConfig.allowed_origins),
            rate_limit_window_seconds=float(os.getenv("RATE_LIMIT_WINDOW_SECONDS", "60")),
            rate_limit_max_requests=int(os.getenv("RATE_LIMIT_MAX_REQUESTS", "60")),
            max_body_bytes=int(os.getenv("MAX_BODY_BYTES", str(64 * 1024))),
            auth_required=_env_bool("AUTH_REQUIRED", False),
        )
        return cls(
            provider=provider,
            gateway=gateway,
            environment=os.getenv("ENVIRONMENT", "development"),
            log_level=os.getenv("LOG_LEVEL", "INFO"),
            log_format=os.getenv("LOG_FORMAT", "console"),
            performance_logging=_env_bool("ENABLE_PERFORMANCE_LOGGING", False),
            security_logging=_env_bool("ENABLE_SECURITY_LOGGING", True),
            task_deadline_seconds=float(os.getenv("TASK_DEADLINE_SECONDS", "30")),
            task_retention_seconds=float(os.getenv("TASK_RETENTION_SECONDS", "300")),
            session_idle_seconds=float(os.getenv("SESSION_IDLE_SECONDS", "1800")),
            result_journal_path=os.getenv("RESULT_JOURNAL_PATH") or None,
            host=os.getenv("HOST", "0.0.0.0"),
            port=int(os.getenv("PORT", "8000")),
        )
